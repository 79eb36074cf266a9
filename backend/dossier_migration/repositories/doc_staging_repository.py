"""Document staging repository."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dossier_migration.db.models.doc_staging import DocStaging
from dossier_migration.db.models.enums import DossierType, MigrationStatus
from dossier_migration.repositories.base_repository import BaseRepository, truncate_error, utc_now

FINAL_DOCUMENT_STATUSES = (
    MigrationStatus.DONE.value,
    MigrationStatus.ERROR.value,
    MigrationStatus.FAILED.value,
)

# Documents still waiting for (or holding) a destination folder
AWAITING_FOLDER_STATUSES = (MigrationStatus.READY.value, MigrationStatus.PREPARED.value)


@dataclass
class UniqueFolderInfo:
    """One destination dossier folder referenced by staged documents."""

    target_dossier_type: int
    folder_path: str
    product_type: Optional[str] = None
    core_id: Optional[str] = None
    creation_date: Optional[datetime] = None

    @property
    def root_folder_name(self) -> str:
        try:
            return DossierType(self.target_dossier_type).root_folder_name
        except ValueError:
            return DossierType.UNKNOWN.root_folder_name

    @property
    def cache_key(self) -> str:
        return f"{self.target_dossier_type}_{self.folder_path}"


class DocStagingRepository(BaseRepository[DocStaging]):
    """Repository for DocStaging rows."""

    def __init__(self, session: AsyncSession):
        """Initialize document staging repository.

        Args:
            session: Async database session
        """
        super().__init__(DocStaging, session)

    async def insert_many_ignore_duplicates(self, documents: Sequence[DocStaging]) -> int:
        """Insert documents, skipping node ids that are already staged.

        Args:
            documents: Transient DocStaging instances

        Returns:
            Number of inserted rows
        """
        return await self.insert_ignore_duplicates(documents, "node_id")

    async def take_ready_for_move(self, take: int) -> List[DocStaging]:
        """Claim up to `take` documents whose destination folder exists.

        Claimed rows move from PREPARED to IN PROGRESS.

        Args:
            take: Maximum number of documents to claim

        Returns:
            Claimed documents in id order
        """
        return await self.claim(
            take,
            MigrationStatus.PREPARED.value,
            MigrationStatus.IN_PROGRESS.value,
            DocStaging.destination_folder_id.isnot(None),
        )

    async def set_status(self, doc_id: int, status: MigrationStatus, error: Optional[str] = None) -> None:
        """Set document status and error message.

        Args:
            doc_id: DocStaging id
            status: New status
            error: Optional error message, truncated to the column limit
        """
        await self.session.execute(
            update(DocStaging)
            .where(DocStaging.id == doc_id)
            .values(status=status.value, error_msg=truncate_error(error), updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

    async def mark_done(self, doc_ids: Iterable[int], warning: str = "") -> int:
        """Mark documents as DONE.

        Args:
            doc_ids: DocStaging ids
            warning: Stored in error_msg for documents that moved with a follow-up problem

        Returns:
            Number of rows updated
        """
        ids = list(doc_ids)
        if not ids:
            return 0
        result = await self.session.execute(
            update(DocStaging)
            .where(DocStaging.id.in_(ids))
            .values(status=MigrationStatus.DONE.value, error_msg=truncate_error(warning), updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def fail(self, doc_id: int, error: str, max_retries: int = 3) -> None:
        """Record a failed attempt.

        The retry counter is incremented; the document becomes FAILED once
        the counter reaches `max_retries`, otherwise ERROR.

        Args:
            doc_id: DocStaging id
            error: Error message, truncated to the column limit
            max_retries: Attempts allowed before the document is given up
        """
        await self.session.execute(
            update(DocStaging)
            .where(DocStaging.id == doc_id)
            .values(
                retry_count=DocStaging.retry_count + 1,
                status=case(
                    (DocStaging.retry_count + 1 >= max_retries, MigrationStatus.FAILED.value),
                    else_=MigrationStatus.ERROR.value,
                ),
                error_msg=truncate_error(error),
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )

    async def requeue_errors(self) -> int:
        """Put retryable ERROR documents back in the move queue."""
        result = await self.session.execute(
            update(DocStaging)
            .where(
                DocStaging.status == MigrationStatus.ERROR.value,
                DocStaging.destination_folder_id.isnot(None),
            )
            .values(status=MigrationStatus.PREPARED.value, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def count_ready_for_move(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(DocStaging)
            .filter(
                DocStaging.status == MigrationStatus.PREPARED.value,
                DocStaging.destination_folder_id.isnot(None),
            )
        )
        return int(result.scalar_one())

    async def count_by_status(self) -> Dict[str, int]:
        """Count documents per status."""
        result = await self.session.execute(
            select(DocStaging.status, func.count()).group_by(DocStaging.status)
        )
        return {status: int(count) for status, count in result.all()}

    async def get_unique_destination_folders(self) -> List[UniqueFolderInfo]:
        """Unique (dossier type, folder path) pairs referenced by staged documents.

        Grouped in the database and ordered deterministically, so a resumed
        run can skip already handled entries by position.

        Returns:
            One UniqueFolderInfo per destination folder
        """
        result = await self.session.execute(
            select(
                DocStaging.target_dossier_type,
                DocStaging.dossier_dest_folder_id,
                func.min(DocStaging.product_type),
                func.min(DocStaging.core_id),
                func.min(DocStaging.original_created_at),
            )
            .filter(
                DocStaging.status.in_(AWAITING_FOLDER_STATUSES),
                DocStaging.target_dossier_type.isnot(None),
                DocStaging.dossier_dest_folder_id.isnot(None),
            )
            .group_by(DocStaging.target_dossier_type, DocStaging.dossier_dest_folder_id)
            .order_by(DocStaging.target_dossier_type, DocStaging.dossier_dest_folder_id)
        )
        return [
            UniqueFolderInfo(
                target_dossier_type=row[0],
                folder_path=row[1],
                product_type=row[2],
                core_id=row[3],
                creation_date=row[4],
            )
            for row in result.all()
        ]

    async def update_destination_folder_id(
        self,
        target_dossier_type: int,
        dossier_dest_folder_id: str,
        destination_folder_id: str,
        is_created: bool,
        error: Optional[str] = None,
    ) -> int:
        """Attach a created destination folder to its documents.

        Documents still awaiting a folder become PREPARED, i.e. eligible for move.

        Args:
            target_dossier_type: Dossier type of the documents
            dossier_dest_folder_id: Destination folder path the documents reference
            destination_folder_id: Repository id of the created folder
            is_created: True when the folder was newly created
            error: Optional enrichment warning to store on the documents

        Returns:
            Number of documents updated
        """
        result = await self.session.execute(
            update(DocStaging)
            .where(
                DocStaging.target_dossier_type == target_dossier_type,
                DocStaging.dossier_dest_folder_id == dossier_dest_folder_id,
                DocStaging.status.in_(AWAITING_FOLDER_STATUSES),
            )
            .values(
                destination_folder_id=destination_folder_id,
                dossier_dest_folder_is_created=is_created,
                status=MigrationStatus.PREPARED.value,
                error_msg=truncate_error(error),
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def reset_stuck(self, timeout_minutes: int) -> int:
        """Return documents stuck IN PROGRESS to the move queue.

        Args:
            timeout_minutes: Age after which an IN PROGRESS document counts as stuck

        Returns:
            Number of documents reset
        """
        cutoff = utc_now() - timedelta(minutes=timeout_minutes)
        result = await self.session.execute(
            update(DocStaging)
            .where(
                DocStaging.status == MigrationStatus.IN_PROGRESS.value,
                DocStaging.updated_at < cutoff,
            )
            .values(
                status=MigrationStatus.PREPARED.value,
                error_msg="Reset from stuck IN PROGRESS state",
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def get_documents_requiring_transformation(self) -> List[DocStaging]:
        """Moved documents migrated under a temporary type that has a final type."""
        result = await self.session.execute(
            select(DocStaging)
            .filter(
                DocStaging.status == MigrationStatus.DONE.value,
                DocStaging.requires_type_transformation.is_(True),
                DocStaging.final_document_type.isnot(None),
            )
            .order_by(DocStaging.id)
        )
        return list(result.scalars().all())

    async def save(self, document: DocStaging) -> DocStaging:
        """Flush pending changes of a loaded document."""
        self.session.add(document)
        await self.session.flush()
        return document

    async def count_incomplete(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(DocStaging)
            .filter(DocStaging.status.notin_(FINAL_DOCUMENT_STATUSES))
        )
        return int(result.scalar_one())

    async def delete_incomplete(self) -> int:
        """Delete documents that never reached a final status."""
        result = await self.session.execute(
            delete(DocStaging)
            .where(DocStaging.status.notin_(FINAL_DOCUMENT_STATUSES))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
