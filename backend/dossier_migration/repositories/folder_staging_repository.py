"""Folder staging repository with skip-locked claiming."""
from datetime import timedelta
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dossier_migration.db.models.enums import MigrationStatus
from dossier_migration.db.models.folder_staging import FolderStaging
from dossier_migration.repositories.base_repository import BaseRepository, truncate_error, utc_now

FINAL_FOLDER_STATUSES = (MigrationStatus.PROCESSED.value, MigrationStatus.ERROR.value)


class FolderStagingRepository(BaseRepository[FolderStaging]):
    """Repository for FolderStaging rows."""

    def __init__(self, session: AsyncSession):
        """Initialize folder staging repository.

        Args:
            session: Async database session
        """
        super().__init__(FolderStaging, session)

    async def take_ready_batch(self, take: int) -> List[FolderStaging]:
        """Claim up to `take` READY folders for this worker.

        Two concurrent claimers never receive the same folder.

        Args:
            take: Maximum number of folders to claim

        Returns:
            Claimed folders in id order
        """
        return await self.claim(take, MigrationStatus.READY.value, MigrationStatus.PREPARED.value)

    async def set_status(self, folder_id: int, status: MigrationStatus, error: Optional[str] = None) -> None:
        """Set folder status and error message.

        Args:
            folder_id: FolderStaging id
            status: New status
            error: Optional error message, truncated to the column limit
        """
        await self.session.execute(
            update(FolderStaging)
            .where(FolderStaging.id == folder_id)
            .values(status=status.value, error=truncate_error(error), updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    async def mark_processed(self, folder_id: int) -> None:
        await self.set_status(folder_id, MigrationStatus.PROCESSED)

    async def fail(self, folder_id: int, error: str) -> None:
        """Mark folder as ERROR with a truncated message."""
        await self.set_status(folder_id, MigrationStatus.ERROR, error)

    async def insert_many_ignore_duplicates(self, folders: Sequence[FolderStaging]) -> int:
        """Insert folders, skipping node ids that are already staged.

        Args:
            folders: Transient FolderStaging instances

        Returns:
            Number of inserted rows
        """
        return await self.insert_ignore_duplicates(folders, "node_id")

    async def count_ready(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(FolderStaging)
            .filter(FolderStaging.status == MigrationStatus.READY.value)
        )
        return int(result.scalar_one())

    async def count_by_status(self) -> Dict[str, int]:
        """Count folders per status."""
        result = await self.session.execute(
            select(FolderStaging.status, func.count()).group_by(FolderStaging.status)
        )
        return {status: int(count) for status, count in result.all()}

    async def reset_stuck(self, timeout_minutes: int) -> int:
        """Return folders claimed longer than the timeout ago to READY.

        Args:
            timeout_minutes: Age after which a PREPARED folder counts as stuck

        Returns:
            Number of folders reset
        """
        cutoff = utc_now() - timedelta(minutes=timeout_minutes)
        result = await self.session.execute(
            update(FolderStaging)
            .where(
                FolderStaging.status == MigrationStatus.PREPARED.value,
                FolderStaging.updated_at < cutoff,
            )
            .values(
                status=MigrationStatus.READY.value,
                error="Reset from stuck PREPARED state",
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def count_incomplete(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(FolderStaging)
            .filter(FolderStaging.status.notin_(FINAL_FOLDER_STATUSES))
        )
        return int(result.scalar_one())

    async def delete_incomplete(self) -> int:
        """Delete folders that never reached a final status."""
        result = await self.session.execute(
            delete(FolderStaging)
            .where(FolderStaging.status.notin_(FINAL_FOLDER_STATUSES))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
