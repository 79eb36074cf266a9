"""Phase checkpoint repository."""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dossier_migration.core.exceptions import PhaseNotFoundError
from dossier_migration.db.models.enums import MigrationPhase, PhaseStatus
from dossier_migration.db.models.phase_checkpoint import PhaseCheckpoint
from dossier_migration.repositories.base_repository import BaseRepository, truncate_error, utc_now

logger = logging.getLogger(__name__)


class PhaseCheckpointRepository(BaseRepository[PhaseCheckpoint]):
    """Repository for per-phase checkpoint rows."""

    def __init__(self, session: AsyncSession):
        """Initialize checkpoint repository.

        Args:
            session: Async database session
        """
        super().__init__(PhaseCheckpoint, session)

    async def ensure_phases(self) -> None:
        """Create a NOT_STARTED row for every phase that has none."""
        result = await self.session.execute(select(PhaseCheckpoint.phase))
        existing = set(result.scalars().all())
        missing = [phase for phase in MigrationPhase if phase.value not in existing]
        for phase in missing:
            self.session.add(
                PhaseCheckpoint(
                    phase=phase.value,
                    status=PhaseStatus.NOT_STARTED.value,
                    total_processed=0,
                )
            )
        if missing:
            await self.session.flush()
            logger.info(f"Created checkpoints for phases: {[p.display_name for p in missing]}")

    async def get(self, phase: MigrationPhase) -> PhaseCheckpoint:
        """Get checkpoint of a phase.

        Args:
            phase: Pipeline phase

        Returns:
            Checkpoint row

        Raises:
            PhaseNotFoundError: If the phase has no checkpoint row
        """
        checkpoint = await self.session.get(PhaseCheckpoint, int(phase), populate_existing=True)
        if checkpoint is None:
            raise PhaseNotFoundError(f"No checkpoint for phase {int(phase)}")
        return checkpoint

    async def list_ordered(self) -> List[PhaseCheckpoint]:
        """All checkpoints in phase order."""
        result = await self.session.execute(
            select(PhaseCheckpoint)
            .order_by(PhaseCheckpoint.phase)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def mark_in_progress(self, phase: MigrationPhase) -> int:
        """Mark phase IN_PROGRESS and stamp its start time.

        Returns:
            Number of rows updated (0 means the phase row is missing)
        """
        now = utc_now()
        result = await self.session.execute(
            update(PhaseCheckpoint)
            .where(PhaseCheckpoint.phase == int(phase))
            .values(
                status=PhaseStatus.IN_PROGRESS.value,
                started_at=now,
                completed_at=None,
                error_message=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def mark_completed(self, phase: MigrationPhase) -> int:
        now = utc_now()
        result = await self.session.execute(
            update(PhaseCheckpoint)
            .where(PhaseCheckpoint.phase == int(phase))
            .values(
                status=PhaseStatus.COMPLETED.value,
                completed_at=now,
                error_message=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def mark_failed(self, phase: MigrationPhase, error: str) -> int:
        """Mark phase FAILED with a truncated error message."""
        result = await self.session.execute(
            update(PhaseCheckpoint)
            .where(PhaseCheckpoint.phase == int(phase))
            .values(
                status=PhaseStatus.FAILED.value,
                error_message=truncate_error(error),
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def save_progress(
        self,
        phase: MigrationPhase,
        last_processed_index: Optional[int] = None,
        total_processed: Optional[int] = None,
        total_items: Optional[int] = None,
        last_processed_id: Optional[str] = None,
    ) -> None:
        """Persist progress counters of a phase.

        Only the given values are written.

        Args:
            phase: Pipeline phase
            last_processed_index: Resume position
            total_processed: Items processed so far
            total_items: Total items, when known
            last_processed_id: Identifier of the last processed item
        """
        values = {"updated_at": utc_now()}
        if last_processed_index is not None:
            values["last_processed_index"] = last_processed_index
        if total_processed is not None:
            values["total_processed"] = total_processed
        if total_items is not None:
            values["total_items"] = total_items
        if last_processed_id is not None:
            values["last_processed_id"] = last_processed_id

        await self.session.execute(
            update(PhaseCheckpoint)
            .where(PhaseCheckpoint.phase == int(phase))
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def reset(self, phase: Optional[MigrationPhase] = None) -> int:
        """Return one phase (or all phases) to NOT_STARTED.

        The document type snapshot is kept.

        Args:
            phase: Phase to reset, or None for every phase

        Returns:
            Number of rows reset
        """
        stmt = update(PhaseCheckpoint).values(
            status=PhaseStatus.NOT_STARTED.value,
            started_at=None,
            completed_at=None,
            last_processed_index=None,
            last_processed_id=None,
            total_processed=0,
            total_items=None,
            error_message=None,
            updated_at=utc_now(),
        )
        if phase is not None:
            stmt = stmt.where(PhaseCheckpoint.phase == int(phase))
        result = await self.session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount or 0

    async def get_doc_types(self) -> Optional[List[str]]:
        """Document type codes stored with the last discovery run, if any."""
        checkpoint = await self.session.get(PhaseCheckpoint, int(MigrationPhase.FOLDER_DISCOVERY))
        if checkpoint is None or not checkpoint.doc_types:
            return None
        return [code for code in checkpoint.doc_types.split(",") if code]

    async def set_doc_types(self, codes: Iterable[str]) -> None:
        await self.session.execute(
            update(PhaseCheckpoint)
            .where(PhaseCheckpoint.phase == int(MigrationPhase.FOLDER_DISCOVERY))
            .values(doc_types=",".join(codes), updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
