"""Document mapping reference data repository."""
from typing import List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dossier_migration.db.models.document_mapping import DocumentMapping
from dossier_migration.repositories.base_repository import BaseRepository


class DocumentMappingRepository(BaseRepository[DocumentMapping]):
    """Repository for DocumentMapping rows."""

    def __init__(self, session: AsyncSession):
        super().__init__(DocumentMapping, session)

    async def find_by_name(self, name: str) -> Optional[DocumentMapping]:
        """Find mapping by English or Serbian name, case-insensitive.

        Args:
            name: Document description

        Returns:
            First matching mapping or None
        """
        if not name:
            return None
        needle = name.strip().lower()
        result = await self.session.execute(
            select(DocumentMapping)
            .filter(
                (func.lower(DocumentMapping.naziv) == needle)
                | (func.lower(DocumentMapping.naziv_dokumenta) == needle)
            )
            .order_by(DocumentMapping.id)
            .limit(1)
        )
        return result.scalars().first()

    async def find_by_code(self, code: str) -> Optional[DocumentMapping]:
        """Find mapping by original document code.

        Args:
            code: Original document type code

        Returns:
            First matching mapping or None
        """
        if not code:
            return None
        result = await self.session.execute(
            select(DocumentMapping)
            .filter(DocumentMapping.sifra_dokumenta == code.strip())
            .order_by(DocumentMapping.id)
            .limit(1)
        )
        return result.scalars().first()

    async def list_all(self) -> List[DocumentMapping]:
        result = await self.session.execute(select(DocumentMapping).order_by(DocumentMapping.id))
        return list(result.scalars().all())

    async def replace_all(self, rows: Sequence[DocumentMapping]) -> int:
        """Replace the whole mapping table.

        Args:
            rows: Transient DocumentMapping instances

        Returns:
            Number of rows inserted
        """
        await self.session.execute(delete(DocumentMapping))
        self.session.add_all(rows)
        await self.session.flush()
        return len(rows)
