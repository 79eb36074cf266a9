"""Staged document awaiting folder preparation and move."""
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Index, Integer, String, Text

from dossier_migration.db.base import Base
from dossier_migration.db.models.enums import MigrationStatus


class DocStaging(Base):
    """One row per document to migrate."""

    __tablename__ = "doc_staging"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    node_id = Column(String(255), unique=True, nullable=False)  # Source repository content id
    name = Column(String(500))
    parent_id = Column(String(255))
    node_type = Column(String(100))
    from_path = Column(String(2000))
    to_path = Column(String(2000))
    status = Column(String(50), nullable=False, default=MigrationStatus.READY.value)
    retry_count = Column(Integer, nullable=False, default=0)
    error_msg = Column(Text)

    # Type and name mapping
    doc_description = Column(String(500))
    original_document_code = Column(String(50))
    document_type = Column(String(50))
    new_document_code = Column(String(50))
    original_document_name = Column(String(500))
    new_document_name = Column(String(500))
    will_receive_migration_suffix = Column(Boolean, default=False)
    code_will_change = Column(Boolean, default=False)

    # Assigned together by the type transformation rules
    document_type_migration = Column(String(60))
    final_document_type = Column(String(50))
    requires_type_transformation = Column(Boolean, default=False)

    # Classification and status
    tip_dosijea = Column(String(255))
    target_dossier_type = Column(Integer)
    client_segment = Column(String(50))
    source = Column(String(50))
    is_active = Column(Boolean, default=True)
    old_alfresco_status = Column(String(50))
    new_alfresco_status = Column(String(50))
    category_code = Column(String(50))
    category_name = Column(String(255))

    # Client / product data
    core_id = Column(String(100), index=True)
    account_numbers = Column(Text)  # Comma joined
    contract_number = Column(String(100))
    product_type = Column(String(50))
    dut_offer_id = Column(String(100))

    # Destination
    dossier_dest_folder_id = Column(String(255))
    destination_folder_id = Column(String(255))
    dossier_dest_folder_is_created = Column(Boolean, default=False)

    version = Column(String(20))
    is_signed = Column(Boolean, default=False)
    original_created_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("idx_doc_staging_status", "status", "id"),
        Index("idx_doc_staging_destination", "target_dossier_type", "dossier_dest_folder_id"),
    )

    def __repr__(self) -> str:
        return f"<DocStaging id={self.id} node_id={self.node_id} status={self.status}>"
