"""Staged source folder awaiting document discovery."""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, String, Text

from dossier_migration.db.base import Base
from dossier_migration.db.models.enums import MigrationStatus


class FolderStaging(Base):
    """One row per source folder to process."""

    __tablename__ = "folder_staging"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    node_id = Column(String(255), unique=True, nullable=False)  # Source repository folder id
    parent_id = Column(String(255))
    name = Column(String(500))
    status = Column(String(50), nullable=False, default=MigrationStatus.READY.value)
    dest_folder_id = Column(String(255))
    dossier_dest_folder_id = Column(String(255))

    # Dossier classification
    core_id = Column(String(100), index=True)
    client_type = Column(String(50))
    client_segment = Column(String(50))
    tip_dosijea = Column(String(255))
    target_dossier_type = Column(Integer)
    source = Column(String(50))
    unique_identifier = Column(String(255))

    # Client enrichment
    client_name = Column(String(500))
    mbr_jmbg = Column(String(50))
    residency = Column(String(50))
    segment = Column(String(50))
    client_subtype = Column(String(100))
    staff = Column(String(50))
    opu_user = Column(String(100))
    opu_realization = Column(String(100))
    barclex = Column(String(255))
    collaborator = Column(String(255))

    # Deposit specific
    contract_number = Column(String(100))
    product_type = Column(String(50))

    error = Column(Text)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("idx_folder_staging_status", "status", "id"),
    )

    def __repr__(self) -> str:
        return f"<FolderStaging id={self.id} node_id={self.node_id} name={self.name} status={self.status}>"
