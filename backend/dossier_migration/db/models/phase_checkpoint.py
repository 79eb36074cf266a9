"""Durable per-phase progress record."""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Integer, String, Text

from dossier_migration.db.base import Base
from dossier_migration.db.models.enums import PhaseStatus


class PhaseCheckpoint(Base):
    """One row per pipeline phase."""

    __tablename__ = "phase_checkpoint"

    phase = Column(Integer, primary_key=True, autoincrement=False)  # MigrationPhase value
    status = Column(String(20), nullable=False, default=PhaseStatus.NOT_STARTED.value)
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    last_processed_index = Column(Integer)
    last_processed_id = Column(String(255))
    total_processed = Column(BigInteger, nullable=False, default=0)
    total_items = Column(BigInteger)  # Unknown until counted
    error_message = Column(Text)
    doc_types = Column(String(1000))  # Comma joined snapshot of configured type codes
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
