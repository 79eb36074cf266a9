"""Database package."""
from dossier_migration.db.base import Base
from dossier_migration.db.session import build_engine, build_session_factory, unit_of_work

__all__ = ["Base", "build_engine", "build_session_factory", "unit_of_work"]
