"""Cached document mapping lookups backed by the document_mapping table."""
import asyncio
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dossier_migration.db.models.document_mapping import DocumentMapping
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.document_mapping_repository import DocumentMappingRepository
from dossier_migration.services.document_name_mapper import DOCUMENT_MAPPINGS, MappingRecord, has_migration_suffix

logger = logging.getLogger(__name__)


def record_from_row(row: DocumentMapping) -> MappingRecord:
    return MappingRecord(
        naziv=row.naziv or "",
        sifra_dokumenta=(row.sifra_dokumenta or "").strip(),
        naziv_dokumenta=row.naziv_dokumenta or "",
        tip_dosijea=row.tip_dosijea or "",
        sifra_dokumenta_migracija=(row.sifra_dokumenta_migracija or "").strip(),
        naziv_dokumenta_migracija=row.naziv_dokumenta_migracija or "",
        tip_proizvoda=row.tip_proizvoda,
        politika_cuvanja=row.politika_cuvanja,
    )


def row_from_record(record: MappingRecord) -> DocumentMapping:
    return DocumentMapping(
        naziv=record.naziv,
        sifra_dokumenta=record.sifra_dokumenta,
        naziv_dokumenta=record.naziv_dokumenta,
        tip_dosijea=record.tip_dosijea,
        tip_proizvoda=record.tip_proizvoda,
        sifra_dokumenta_migracija=record.sifra_dokumenta_migracija,
        naziv_dokumenta_migracija=record.naziv_dokumenta_migracija,
        politika_cuvanja=record.politika_cuvanja,
    )


class DocumentMappingService:
    """
    In-memory view of the document mapping reference data.

    Rows are read once on first use. When the table is empty the static
    mapping table is used instead.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
                 records: Optional[List[MappingRecord]] = None):
        """
        Args:
            session_factory: Staging session factory to read document_mapping from
            records: Preloaded records; skips the database entirely
        """
        self.session_factory = session_factory
        self._records: Optional[List[MappingRecord]] = list(records) if records is not None else None
        self._load_lock = asyncio.Lock()

    @property
    def records(self) -> List[MappingRecord]:
        return self._records if self._records is not None else DOCUMENT_MAPPINGS

    async def load(self) -> int:
        """Load mapping rows (once).

        Returns:
            Number of records in use
        """
        async with self._load_lock:
            if self._records is not None:
                return len(self._records)
            if self.session_factory is None:
                self._records = list(DOCUMENT_MAPPINGS)
            else:
                async with unit_of_work(self.session_factory) as session:
                    rows = await DocumentMappingRepository(session).list_all()
                if rows:
                    self._records = [record_from_row(row) for row in rows]
                    logger.info(f"Loaded {len(rows)} document mappings from database")
                else:
                    logger.warning("document_mapping table is empty, using built-in mapping table")
                    self._records = list(DOCUMENT_MAPPINGS)
            return len(self._records)

    def find_by_name(self, name: Optional[str]) -> Optional[MappingRecord]:
        """Find by English or Serbian name, ignoring case and surrounding whitespace."""
        if not name or not name.strip():
            return None
        needle = name.strip().lower()
        for record in self.records:
            if record.naziv.strip().lower() == needle:
                return record
        for record in self.records:
            if record.naziv_dokumenta.strip().lower() == needle:
                return record
        return None

    def find_by_code(self, code: Optional[str]) -> Optional[MappingRecord]:
        if not code or not code.strip():
            return None
        needle = code.strip()
        for record in self.records:
            if record.sifra_dokumenta == needle:
                return record
        return None

    def find(self, description: Optional[str], code: Optional[str]) -> Optional[MappingRecord]:
        """Look up by document description, falling back to the type code."""
        return self.find_by_name(description) or self.find_by_code(code)

    def will_receive_migration_suffix(self, name: str) -> bool:
        record = self.find_by_name(name)
        return record is not None and has_migration_suffix(record.naziv_dokumenta_migracija)

    def code_will_change(self, code: str) -> bool:
        record = self.find_by_code(code)
        return record is not None and record.sifra_dokumenta != record.sifra_dokumenta_migracija
