"""Database models package."""
from dossier_migration.db.models.doc_staging import DocStaging
from dossier_migration.db.models.document_mapping import DocumentMapping
from dossier_migration.db.models.enums import (
    DossierType,
    KdpAction,
    MigrationPhase,
    MigrationStatus,
    PhaseStatus,
)
from dossier_migration.db.models.folder_staging import FolderStaging
from dossier_migration.db.models.kdp_document import KdpDocument
from dossier_migration.db.models.phase_checkpoint import PhaseCheckpoint

__all__ = [
    "FolderStaging",
    "DocStaging",
    "PhaseCheckpoint",
    "DocumentMapping",
    "KdpDocument",
    "KdpAction",
    "MigrationStatus",
    "MigrationPhase",
    "PhaseStatus",
    "DossierType",
]
