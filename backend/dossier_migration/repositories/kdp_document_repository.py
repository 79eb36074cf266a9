"""KDP document staging repository."""
from datetime import timedelta
from typing import Dict, List, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dossier_migration.db.models.enums import KdpAction, MigrationStatus
from dossier_migration.db.models.kdp_document import KdpDocument
from dossier_migration.repositories.base_repository import BaseRepository, truncate_error, utc_now


class KdpDocumentRepository(BaseRepository[KdpDocument]):
    """Repository for KdpDocument rows."""

    def __init__(self, session: AsyncSession):
        super().__init__(KdpDocument, session)

    async def clear(self) -> int:
        """Delete every staged KDP document.

        Returns:
            Number of deleted rows
        """
        result = await self.session.execute(delete(KdpDocument).execution_options(synchronize_session=False))
        return result.rowcount or 0

    async def insert_many_ignore_duplicates(self, documents: Sequence[KdpDocument]) -> int:
        return await self.insert_ignore_duplicates(documents, "node_id")

    async def list_ordered(self) -> List[KdpDocument]:
        """All staged KDP documents grouped by ACC folder, oldest first."""
        result = await self.session.execute(
            select(KdpDocument).order_by(
                KdpDocument.acc_folder_name, KdpDocument.created_date, KdpDocument.id
            )
        )
        return list(result.scalars().all())

    async def take_pending_batch(self, take: int) -> List[KdpDocument]:
        """Claim up to `take` documents that still need a property update.

        Only rows with an action other than NONE and no exception flag are
        claimed. Claimed rows move from READY to IN PROGRESS.

        Args:
            take: Maximum number of documents to claim

        Returns:
            Claimed documents in id order
        """
        return await self.claim(
            take,
            MigrationStatus.READY.value,
            MigrationStatus.IN_PROGRESS.value,
            KdpDocument.action > KdpAction.NONE.value,
            KdpDocument.is_exception.is_(False),
        )

    async def mark_result(self, doc_id: int, success: bool, message: str) -> None:
        """Record the outcome of one property update."""
        await self.session.execute(
            update(KdpDocument)
            .where(KdpDocument.id == doc_id)
            .values(
                status=MigrationStatus.DONE.value if success else MigrationStatus.ERROR.value,
                update_message=truncate_error(f"{'OK' if success else 'FAILED'}: {message}"),
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )

    async def count_pending(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(KdpDocument)
            .filter(
                KdpDocument.status == MigrationStatus.READY.value,
                KdpDocument.action > KdpAction.NONE.value,
                KdpDocument.is_exception.is_(False),
            )
        )
        return int(result.scalar_one())

    async def count_by_status(self) -> Dict[str, int]:
        """Count documents needing an update per status."""
        result = await self.session.execute(
            select(KdpDocument.status, func.count())
            .filter(KdpDocument.action > KdpAction.NONE.value, KdpDocument.is_exception.is_(False))
            .group_by(KdpDocument.status)
        )
        return {status: int(count) for status, count in result.all()}

    async def reset_stuck(self, timeout_minutes: int) -> int:
        """Return documents stuck IN PROGRESS to READY.

        Args:
            timeout_minutes: Age after which an IN PROGRESS document counts as stuck

        Returns:
            Number of documents reset
        """
        cutoff = utc_now() - timedelta(minutes=timeout_minutes)
        result = await self.session.execute(
            update(KdpDocument)
            .where(
                KdpDocument.status == MigrationStatus.IN_PROGRESS.value,
                KdpDocument.updated_at < cutoff,
            )
            .values(status=MigrationStatus.READY.value, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
