"""
Migration Worker

Runs the four pipeline phases strictly in order, gated by their checkpoints:
FolderDiscovery -> DocumentDiscovery -> FolderPreparation -> Move.

All checkpoint bookkeeping goes through the checkpoint session factory, never
through the staging factory the phases use for their own work.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dossier_migration.core.exceptions import OperationTimeoutError, PhaseNotFoundError, RetryExhaustedError
from dossier_migration.db.models.enums import MigrationPhase, PhaseStatus
from dossier_migration.db.models.phase_checkpoint import PhaseCheckpoint
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.doc_staging_repository import DocStagingRepository
from dossier_migration.repositories.folder_staging_repository import FolderStagingRepository
from dossier_migration.repositories.phase_checkpoint_repository import PhaseCheckpointRepository
from dossier_migration.services.document_discovery import DocumentDiscoveryService
from dossier_migration.services.document_search import DocumentSearchService
from dossier_migration.services.document_type_transformation import DocumentTypeTransformationService
from dossier_migration.services.error_tracker import ErrorMetrics, GlobalErrorTracker
from dossier_migration.services.folder_discovery import FolderDiscoveryService
from dossier_migration.services.folder_preparation import FolderPreparationService
from dossier_migration.services.move_service import MoveService

logger = logging.getLogger(__name__)

_STATUS_TEXT = {
    PhaseStatus.NOT_STARTED: "not started",
    PhaseStatus.IN_PROGRESS: "in progress",
    PhaseStatus.COMPLETED: "completed",
    PhaseStatus.FAILED: "failed",
}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timezone-aware copy of a datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def calculate_phase_progress(checkpoint: PhaseCheckpoint) -> int:
    """
    Progress of one phase in percent.

    Uses processed/total when the total is known; otherwise an estimate that
    grows with the processed count and stays below 95 while running.
    """
    status = PhaseStatus(checkpoint.status)
    total_processed = int(checkpoint.total_processed or 0)
    if checkpoint.total_items:
        return min(100, int(total_processed / checkpoint.total_items * 100))
    if status == PhaseStatus.IN_PROGRESS and total_processed > 0:
        return min(95, 10 + total_processed // 100)
    return {
        PhaseStatus.NOT_STARTED: 0,
        PhaseStatus.IN_PROGRESS: 10,
        PhaseStatus.COMPLETED: 100,
        PhaseStatus.FAILED: 0,
    }[status]


@dataclass
class PipelineStatus:
    """Snapshot of pipeline progress derived from the checkpoints."""

    current_phase: MigrationPhase
    status: PhaseStatus
    progress_percent: float
    phase_progress_percent: int
    started_at: Optional[datetime]
    elapsed: Optional[timedelta]
    total_processed: int
    error_message: Optional[str]
    status_message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_phase": self.current_phase.name,
            "current_phase_number": int(self.current_phase),
            "status": self.status.value,
            "progress_percent": round(self.progress_percent, 1),
            "phase_progress_percent": self.phase_progress_percent,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "elapsed_seconds": self.elapsed.total_seconds() if self.elapsed is not None else None,
            "total_processed": self.total_processed,
            "error_message": self.error_message,
            "status_message": self.status_message,
        }


class MigrationWorker:
    """Checkpoint-gated orchestrator of the migration phases."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        checkpoint_session_factory: async_sessionmaker[AsyncSession],
        folder_discovery: FolderDiscoveryService,
        document_discovery: DocumentDiscoveryService,
        folder_preparation: FolderPreparationService,
        move_service: MoveService,
        error_tracker: GlobalErrorTracker,
        document_search: Optional[DocumentSearchService] = None,
        type_transformation: Optional[DocumentTypeTransformationService] = None,
        migration_by_document: bool = False,
        cleanup_incomplete_on_start: bool = False,
        break_empty_results: int = 3,
    ):
        """
        Initialize the orchestrator.

        Args:
            session_factory: Staging session factory, used for cleanup only
            checkpoint_session_factory: Independent factory for checkpoint bookkeeping
            folder_discovery: Phase 1 service
            document_discovery: Phase 2 service
            folder_preparation: Phase 3 service
            move_service: Phase 4 service
            error_tracker: Global error tracker, reset at the start of each run
            document_search: Replaces phases 1 and 2 when migrating by document
            type_transformation: Runs after the move when set
            migration_by_document: Use document search instead of folder discovery
            cleanup_incomplete_on_start: Delete unfinished staging rows before a fresh run
            break_empty_results: Consecutive empty claims that end document discovery
        """
        if migration_by_document and document_search is None:
            raise ValueError("Migration by document requires a document search service")
        self.session_factory = session_factory
        self.checkpoint_session_factory = checkpoint_session_factory
        self.folder_discovery = folder_discovery
        self.document_discovery = document_discovery
        self.folder_preparation = folder_preparation
        self.move_service = move_service
        self.error_tracker = error_tracker
        self.document_search = document_search
        self.type_transformation = type_transformation
        self.migration_by_document = migration_by_document
        self.cleanup_incomplete_on_start = cleanup_incomplete_on_start
        self.break_empty_results = break_empty_results

    @property
    def phases(self) -> List[MigrationPhase]:
        """Phases run in the configured mode."""
        if self.migration_by_document:
            return [p for p in MigrationPhase if p != MigrationPhase.DOCUMENT_DISCOVERY]
        return list(MigrationPhase)

    def phase_name(self, phase: MigrationPhase) -> str:
        if phase == MigrationPhase.FOLDER_DISCOVERY and self.migration_by_document:
            return "Document Search"
        if phase == MigrationPhase.MOVE:
            return "Document Move"
        return phase.display_name

    async def run(self) -> None:
        """
        Run every phase that is not completed yet.

        Raises:
            Exception: The first phase failure, after it is recorded in its checkpoint
        """
        start = time.perf_counter()
        self.error_tracker.reset()
        logger.info("Migration pipeline started")
        try:
            await self._ensure_checkpoints()
            if self.cleanup_incomplete_on_start and await self._is_fresh_start():
                await self.prepare_for_migration()

            if self.migration_by_document:
                logger.info("Mode: migration by document (DocumentSearch -> FolderPreparation -> Move)")
                await self.validate_doc_types_checkpoint()
                await self._execute_phase(MigrationPhase.FOLDER_DISCOVERY, self.document_search.run_loop)
                logger.info("Skipping document discovery, documents are staged by the search")
            else:
                logger.info("Mode: migration by folder (FolderDiscovery -> DocumentDiscovery -> FolderPreparation -> Move)")
                await self._execute_phase(MigrationPhase.FOLDER_DISCOVERY, self.folder_discovery.run_loop)
                await self._execute_phase(
                    MigrationPhase.DOCUMENT_DISCOVERY,
                    lambda: self.document_discovery.run_loop(max_empty_results=self.break_empty_results),
                )

            await self._execute_phase(MigrationPhase.FOLDER_PREPARATION, self.folder_preparation.prepare_all_folders)
            await self._execute_phase(MigrationPhase.MOVE, self.move_service.run_loop)

            if self.type_transformation is not None:
                transformed = await self.type_transformation.transform_active_documents()
                logger.info(f"Document type transformation finished: {transformed} documents activated")
        except Exception as e:
            metrics = self.error_tracker.get_metrics()
            logger.error(
                f"Migration pipeline failed: {e}. Errors: timeouts {metrics.timeout_count}/{metrics.max_timeouts}, "
                f"retry failures {metrics.retry_failure_count}/{metrics.max_retry_failures}, "
                f"total {metrics.total_error_count}/{metrics.max_total_errors}"
            )
            raise

        metrics = self.error_tracker.get_metrics()
        logger.info(
            f"Migration pipeline completed in {time.perf_counter() - start:.1f}s. Errors: "
            f"timeouts {metrics.timeout_count}, retry failures {metrics.retry_failure_count}, "
            f"total {metrics.total_error_count}"
        )

    async def _execute_phase(self, phase: MigrationPhase, action: Callable[[], Awaitable[Any]]) -> None:
        """
        Run one phase unless its checkpoint says it is completed.

        Args:
            phase: Phase to run
            action: Entry point of the phase service
        """
        name = self.phase_name(phase)
        async with unit_of_work(self.checkpoint_session_factory) as session:
            checkpoint = await PhaseCheckpointRepository(session).get(phase)
            status = PhaseStatus(checkpoint.status)
        if status == PhaseStatus.COMPLETED:
            logger.info(f"Phase {int(phase)} ({name}) already completed, skipping")
            return

        logger.info(f"Phase {int(phase)} ({name}) starting")
        async with unit_of_work(self.checkpoint_session_factory) as session:
            updated = await PhaseCheckpointRepository(session).mark_in_progress(phase)
        if updated == 0:
            logger.warning(f"Phase {int(phase)} checkpoint was not updated, no rows affected")

        try:
            await action()
        except Exception as e:
            if isinstance(e, OperationTimeoutError):
                self.error_tracker.record_timeout(e)
                logger.error(f"Phase {int(phase)} ({name}) failed: timeout after {e.timeout_duration}s")
            elif isinstance(e, RetryExhaustedError):
                self.error_tracker.record_retry_exhausted(e)
                logger.error(f"Phase {int(phase)} ({name}) failed: retries exhausted after {e.retry_count} attempts")
            else:
                logger.error(f"Phase {int(phase)} ({name}) failed: {e}")
            if self.error_tracker.should_stop_migration:
                logger.critical("Stopping migration: error thresholds exceeded")
            await self._mark_failed(phase, str(e) or e.__class__.__name__)
            raise

        async with unit_of_work(self.checkpoint_session_factory) as session:
            await PhaseCheckpointRepository(session).mark_completed(phase)
        logger.info(f"Phase {int(phase)} ({name}) completed")

    async def _mark_failed(self, phase: MigrationPhase, error: str) -> None:
        try:
            async with unit_of_work(self.checkpoint_session_factory) as session:
                await PhaseCheckpointRepository(session).mark_failed(phase, error)
        except Exception as e:
            logger.error(f"Could not record failure of phase {int(phase)}: {e}")

    async def _ensure_checkpoints(self) -> None:
        async with unit_of_work(self.checkpoint_session_factory) as session:
            await PhaseCheckpointRepository(session).ensure_phases()

    async def _is_fresh_start(self) -> bool:
        async with unit_of_work(self.checkpoint_session_factory) as session:
            checkpoints = await PhaseCheckpointRepository(session).list_ordered()
        return all(PhaseStatus(c.status) == PhaseStatus.NOT_STARTED for c in checkpoints)

    async def validate_doc_types_checkpoint(self) -> bool:
        """
        Compare configured search type codes with the stored snapshot.

        A changed set resets the document search, folder preparation and move
        checkpoints and stores the new snapshot.

        Returns:
            True when the checkpoints were reset
        """
        current = sorted(code.strip() for code in self.document_search.current_doc_types() if code.strip())
        if not current:
            logger.warning("No document types configured for migration by document")
            return False

        async with unit_of_work(self.checkpoint_session_factory) as session:
            repository = PhaseCheckpointRepository(session)
            stored = await repository.get_doc_types()
            if stored is None:
                logger.info(f"Saving document types to checkpoint: {','.join(current)}")
                await repository.set_doc_types(current)
                return False

            if sorted(code.strip() for code in stored) == current:
                logger.info(f"Document types unchanged, continuing from checkpoint: {','.join(current)}")
                return False

            logger.warning(
                f"Document types changed from [{','.join(stored)}] to [{','.join(current)}], resetting checkpoints"
            )
            for phase in (MigrationPhase.FOLDER_DISCOVERY, MigrationPhase.FOLDER_PREPARATION, MigrationPhase.MOVE):
                await repository.reset(phase)
            await repository.set_doc_types(current)
        return True

    async def get_status(self) -> PipelineStatus:
        """Derive overall progress from the phase checkpoints."""
        async with unit_of_work(self.checkpoint_session_factory) as session:
            checkpoints = await PhaseCheckpointRepository(session).list_ordered()

        relevant = [c for c in checkpoints if MigrationPhase(c.phase) in self.phases]
        if not relevant:
            raise PhaseNotFoundError("No phase checkpoints found, run init-db or start a migration first")

        total_processed = sum(int(c.total_processed or 0) for c in relevant)
        started = [as_utc(c.started_at) for c in relevant if c.started_at is not None]
        first_started = min(started) if started else None
        completed = [c for c in relevant if PhaseStatus(c.status) == PhaseStatus.COMPLETED]
        current = next((c for c in relevant if PhaseStatus(c.status) != PhaseStatus.COMPLETED), None)

        if current is None:
            last = relevant[-1]
            completed_at = as_utc(last.completed_at)
            return PipelineStatus(
                current_phase=MigrationPhase(last.phase),
                status=PhaseStatus.COMPLETED,
                progress_percent=100.0,
                phase_progress_percent=100,
                started_at=first_started,
                elapsed=completed_at - first_started if completed_at and first_started else None,
                total_processed=total_processed,
                error_message=None,
                status_message="Migration completed successfully",
            )

        phase = MigrationPhase(current.phase)
        status = PhaseStatus(current.status)
        phase_progress = calculate_phase_progress(current)
        overall = (len(completed) + phase_progress / 100) / len(relevant) * 100
        started_at = as_utc(current.started_at)
        logger.debug(
            f"Status: phase {int(phase)} {status.value}, {current.total_processed}/{current.total_items} "
            f"({phase_progress}%)"
        )
        return PipelineStatus(
            current_phase=phase,
            status=status,
            progress_percent=overall,
            phase_progress_percent=phase_progress,
            started_at=started_at,
            elapsed=datetime.now(timezone.utc) - started_at if started_at else None,
            total_processed=total_processed,
            error_message=current.error_message,
            status_message=f"{self.phase_name(phase)} is {_STATUS_TEXT[status]}",
        )

    async def reset(self) -> int:
        """Return every phase to NOT_STARTED."""
        logger.warning("Resetting all migration phases")
        async with unit_of_work(self.checkpoint_session_factory) as session:
            repository = PhaseCheckpointRepository(session)
            await repository.ensure_phases()
            count = await repository.reset()
        logger.info(f"{count} phases reset to NOT_STARTED")
        return count

    async def reset_phase(self, phase: MigrationPhase) -> int:
        logger.warning(f"Resetting phase {int(phase)} ({phase.display_name})")
        async with unit_of_work(self.checkpoint_session_factory) as session:
            count = await PhaseCheckpointRepository(session).reset(phase)
        if count == 0:
            raise PhaseNotFoundError(f"No checkpoint for phase {int(phase)}")
        return count

    async def prepare_for_migration(self) -> Dict[str, int]:
        """
        Delete staging rows left unfinished by an earlier run.

        Returns:
            Deleted counts per table
        """
        async with unit_of_work(self.session_factory) as session:
            folders = FolderStagingRepository(session)
            documents = DocStagingRepository(session)
            incomplete_folders = await folders.count_incomplete()
            incomplete_documents = await documents.count_incomplete()
            deleted_documents = await documents.delete_incomplete() if incomplete_documents else 0
            deleted_folders = await folders.delete_incomplete() if incomplete_folders else 0

        if deleted_folders or deleted_documents:
            logger.warning(
                f"Deleted incomplete staging rows: {deleted_folders} folders, {deleted_documents} documents"
            )
        else:
            logger.info("No incomplete staging rows to clean up")
        return {"folders": deleted_folders, "documents": deleted_documents}

    def get_error_metrics(self) -> ErrorMetrics:
        return self.error_tracker.get_metrics()
