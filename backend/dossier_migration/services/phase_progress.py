"""Progress writes of a running phase to its checkpoint row."""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dossier_migration.core.exceptions import PhaseNotFoundError
from dossier_migration.db.models.enums import MigrationPhase
from dossier_migration.db.models.phase_checkpoint import PhaseCheckpoint
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.phase_checkpoint_repository import PhaseCheckpointRepository

logger = logging.getLogger(__name__)


class PhaseProgress:
    """Reads and writes resume data of one phase in short checkpoint transactions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], phase: MigrationPhase):
        self.session_factory = session_factory
        self.phase = phase

    async def load(self) -> Optional[PhaseCheckpoint]:
        """Checkpoint row of the phase, or None when it does not exist yet."""
        async with unit_of_work(self.session_factory) as session:
            try:
                return await PhaseCheckpointRepository(session).get(self.phase)
            except PhaseNotFoundError:
                return None

    async def resume_index(self) -> int:
        checkpoint = await self.load()
        if checkpoint is None or not checkpoint.last_processed_index:
            return 0
        return int(checkpoint.last_processed_index)

    async def save(
        self,
        last_processed_index: Optional[int] = None,
        total_processed: Optional[int] = None,
        total_items: Optional[int] = None,
        last_processed_id: Optional[str] = None,
    ) -> None:
        async with unit_of_work(self.session_factory) as session:
            await PhaseCheckpointRepository(session).save_progress(
                self.phase,
                last_processed_index=last_processed_index,
                total_processed=total_processed,
                total_items=total_items,
                last_processed_id=last_processed_id,
            )
        logger.debug(
            f"{self.phase.display_name} progress saved: index={last_processed_index}, processed={total_processed}"
        )
