"""Reference data translating legacy document types into migrated ones."""
from sqlalchemy import Column, Index, Integer, String

from dossier_migration.db.base import Base


class DocumentMapping(Base):
    """Externally maintained mapping row, read-only during migration."""

    __tablename__ = "document_mapping"

    id = Column(Integer, primary_key=True, autoincrement=True)
    naziv = Column(String(500))  # English name
    sifra_dokumenta = Column(String(50))  # Original code
    naziv_dokumenta = Column(String(500))  # Serbian name
    tip_dosijea = Column(String(255))
    tip_proizvoda = Column(String(50))
    sifra_dokumenta_migracija = Column(String(50))  # Migrated code
    naziv_dokumenta_migracija = Column(String(500))  # Migrated name
    politika_cuvanja = Column(String(100))  # Retention policy

    __table_args__ = (
        Index("idx_document_mapping_code", "sifra_dokumenta"),
    )
