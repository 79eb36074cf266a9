"""KDP documents loaded for the post-migration property update."""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Index, Integer, String, Text

from dossier_migration.db.base import Base
from dossier_migration.db.models.enums import KdpAction, MigrationStatus


class KdpDocument(Base):
    """One row per KDP document (types 00824 and 00099) found in the repository."""

    __tablename__ = "kdp_document_staging"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    node_id = Column(String(255), unique=True, nullable=False)
    document_name = Column(String(500))
    document_path = Column(String(2000))
    parent_folder_id = Column(String(255))
    parent_folder_name = Column(String(500))
    document_type = Column(String(50))
    document_status = Column(String(50))
    created_date = Column(DateTime(timezone=True))
    account_numbers = Column(String(2000))
    acc_folder_name = Column(String(255))
    core_id = Column(String(100))

    # Classification and update outcome
    action = Column(Integer, nullable=False, default=KdpAction.NONE.value)
    is_exception = Column(Boolean, nullable=False, default=False)
    status = Column(String(50), nullable=False, default=MigrationStatus.READY.value)
    update_message = Column(Text)

    loaded_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("idx_kdp_document_status", "status", "action", "id"),
        Index("idx_kdp_document_folder", "acc_folder_name"),
    )

    def __repr__(self) -> str:
        return f"<KdpDocument(id={self.id}, node_id={self.node_id}, action={self.action}, status={self.status})>"
