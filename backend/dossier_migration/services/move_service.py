"""
Move Execution

Claims documents whose destination folder is prepared, moves them in the
content repository and records the outcome per document. One failing
document never affects the others in its batch.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dossier_migration.clients.content_repository import ContentWriter
from dossier_migration.core.exceptions import MigrationError
from dossier_migration.db.models.doc_staging import DocStaging
from dossier_migration.db.models.enums import MigrationPhase
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.doc_staging_repository import DocStagingRepository
from dossier_migration.services.error_tracker import GlobalErrorTracker
from dossier_migration.services.phase_progress import PhaseProgress

logger = logging.getLogger(__name__)

MOVE_RETURNED_FALSE = "Move returned false"
PROPERTY_UPDATE_FAILED = "Moved, property update failed"


def migrated_properties(document: DocStaging) -> Dict[str, Any]:
    """Properties written to a moved document: migrated type, name, status and category."""
    properties: Dict[str, Any] = {}
    doc_type = document.new_document_code or document.document_type
    if doc_type:
        properties["ecm:docType"] = doc_type
    name = document.new_document_name or document.doc_description
    if name:
        properties["ecm:naziv"] = name
        if document.new_document_name:
            properties["ecm:docTypeName"] = document.new_document_name
    if document.new_alfresco_status:
        properties["ecm:docStatus"] = document.new_alfresco_status
    if document.category_code:
        properties["ecm:docCategory"] = document.category_code
    if document.category_name:
        properties["ecm:docCategoryName"] = document.category_name
    properties["ecm:active"] = bool(document.is_active)
    return properties


class MoveExecutor:
    """Moves one staged document and stamps its migrated properties."""

    def __init__(self, writer: ContentWriter, update_properties: bool = True):
        self.writer = writer
        self.update_properties = update_properties

    async def move(self, document: DocStaging) -> bool:
        """
        Move a document into its prepared destination folder.

        Args:
            document: Claimed document with destination_folder_id set

        Returns:
            False when the repository refused the move

        Raises:
            MigrationError: If the document has no destination folder
        """
        if not document.destination_folder_id:
            raise MigrationError(
                f"Document {document.id} ({document.node_id}) has no destination folder, "
                "folder preparation must run first"
            )

        moved = await self.writer.move_document(document.node_id, document.destination_folder_id)
        if not moved:
            logger.warning(f"Move of document {document.id} ({document.node_id}) was refused")
        return moved

    async def stamp_properties(self, document: DocStaging) -> bool:
        """
        Write the migrated properties onto a moved document.

        Returns:
            False when updates are disabled or the node was not found
        """
        if not self.update_properties:
            return False
        properties = migrated_properties(document)
        updated = await self.writer.update_node_properties(document.node_id, properties)
        if updated:
            logger.debug(f"Document {document.id} updated: {', '.join(properties)}")
        return updated


@dataclass
class MoveOutcome:
    """Result of one document: a failed move has an error, a moved one may carry a warning."""

    document: DocStaging
    error: Optional[str] = None
    warning: Optional[str] = None


@dataclass
class MoveBatchResult:
    done: int = 0
    failed: int = 0

    @property
    def claimed(self) -> int:
        return self.done + self.failed


class MoveService:
    """Runs move batches until no document is ready."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        checkpoint_session_factory: async_sessionmaker[AsyncSession],
        executor: MoveExecutor,
        error_tracker: Optional[GlobalErrorTracker] = None,
        batch_size: int = 100,
        max_degree_of_parallelism: int = 5,
        max_retries: int = 3,
        idle_delay_ms: int = 1000,
        delay_between_batches_ms: int = 0,
        max_empty_results: int = 3,
        stuck_timeout_minutes: int = 30,
    ):
        """
        Initialize move service.

        Args:
            session_factory: Staging session factory
            checkpoint_session_factory: Checkpoint session factory for progress writes
            executor: Single-document move
            error_tracker: Optional global error tracker
            batch_size: Documents claimed per batch
            max_degree_of_parallelism: Concurrent moves
            max_retries: Failed attempts before a document is FAILED
            idle_delay_ms: Pause after an empty batch
            delay_between_batches_ms: Pause after a non-empty batch
            max_empty_results: Consecutive empty batches that end the loop
            stuck_timeout_minutes: Age after which an IN PROGRESS document is reset
        """
        self.session_factory = session_factory
        self.executor = executor
        self.error_tracker = error_tracker
        self.batch_size = batch_size
        self.max_degree_of_parallelism = max(1, max_degree_of_parallelism)
        self.max_retries = max_retries
        self.idle_delay_ms = idle_delay_ms
        self.delay_between_batches_ms = delay_between_batches_ms
        self.max_empty_results = max_empty_results
        self.stuck_timeout_minutes = stuck_timeout_minutes
        self.progress = PhaseProgress(checkpoint_session_factory, MigrationPhase.MOVE)
        # Advisory counters of this instance, not persisted per document
        self.total_moved = 0
        self.total_failed = 0
        self.batch_counter = 0

    async def run_batch(self) -> MoveBatchResult:
        """
        Claim and move one batch of documents.

        Returns:
            MoveBatchResult; zero counts when nothing was ready
        """
        start = time.perf_counter()
        async with unit_of_work(self.session_factory) as session:
            documents = await DocStagingRepository(session).take_ready_for_move(self.batch_size)
        if not documents:
            logger.debug("No documents ready for move")
            return MoveBatchResult()

        semaphore = asyncio.Semaphore(self.max_degree_of_parallelism)

        async def move(document: DocStaging) -> MoveOutcome:
            async with semaphore:
                return await self._move_one(document)

        outcomes = await asyncio.gather(*(move(document) for document in documents))
        succeeded = [o.document.id for o in outcomes if o.error is None and o.warning is None]
        warnings = [(o.document.id, o.warning) for o in outcomes if o.error is None and o.warning is not None]
        failures = [(o.document.id, o.error) for o in outcomes if o.error is not None]

        async with unit_of_work(self.session_factory) as session:
            repository = DocStagingRepository(session)
            if succeeded:
                await repository.mark_done(succeeded)
            for doc_id, warning in warnings:
                await repository.mark_done([doc_id], warning=warning)
            for doc_id, error in failures:
                await repository.fail(doc_id, error, max_retries=self.max_retries)

        result = MoveBatchResult(done=len(succeeded) + len(warnings), failed=len(failures))
        self.total_moved += result.done
        self.total_failed += result.failed
        self.batch_counter += 1
        await self.progress.save(total_processed=self.total_moved, last_processed_index=self.batch_counter)

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Move batch {self.batch_counter}: {result.done} moved, {result.failed} failed in {elapsed_ms:.0f}ms "
            f"(total {self.total_moved} moved, {self.total_failed} failed)"
        )
        return result

    async def _move_one(self, document: DocStaging) -> MoveOutcome:
        """Move a document, then stamp its properties.

        Once the move succeeded the document counts as moved. A failed
        property update is only recorded as a warning on the row.
        """
        try:
            if not await self.executor.move(document):
                return MoveOutcome(document, error=MOVE_RETURNED_FALSE)
        except Exception as e:
            logger.error(f"Failed to move document {document.id} ({document.node_id}): {e}")
            if self.error_tracker is not None:
                self.error_tracker.record(e)
            return MoveOutcome(document, error=str(e) or e.__class__.__name__)

        try:
            if self.executor.update_properties and not await self.executor.stamp_properties(document):
                return MoveOutcome(document, warning=f"{PROPERTY_UPDATE_FAILED}: node not found")
        except Exception as e:
            logger.error(f"Document {document.id} ({document.node_id}) moved but property update failed: {e}")
            if self.error_tracker is not None:
                self.error_tracker.record(e)
            return MoveOutcome(document, warning=f"{PROPERTY_UPDATE_FAILED}: {str(e) or e.__class__.__name__}")
        return MoveOutcome(document)

    async def prepare_queue(self) -> Tuple[int, int]:
        """Requeue retryable ERROR documents and reset stuck ones.

        Returns:
            (requeued, reset)
        """
        async with unit_of_work(self.session_factory) as session:
            repository = DocStagingRepository(session)
            requeued = await repository.requeue_errors()
            reset = await repository.reset_stuck(self.stuck_timeout_minutes)
        if requeued:
            logger.info(f"Requeued {requeued} documents in ERROR for another move attempt")
        if reset:
            logger.warning(f"Reset {reset} documents stuck in IN PROGRESS")
        return requeued, reset

    async def load_checkpoint(self) -> None:
        checkpoint = await self.progress.load()
        if checkpoint is not None:
            self.total_moved = int(checkpoint.total_processed or 0)
            self.batch_counter = int(checkpoint.last_processed_index or 0)

    async def run_loop(self) -> int:
        """
        Move documents until `max_empty_results` consecutive batches are empty.

        Returns:
            Total number of moved documents, including earlier runs of the phase
        """
        await self.prepare_queue()
        await self.load_checkpoint()
        logger.info(
            f"Move started: batch size {self.batch_size}, parallelism {self.max_degree_of_parallelism}, "
            f"{self.total_moved} already moved"
        )

        empty_results = 0
        while True:
            try:
                result = await self.run_batch()
            except Exception as e:
                logger.error(f"Move batch failed, backing off: {e}")
                if self.error_tracker is not None:
                    self.error_tracker.record(e)
                self._raise_if_threshold_reached()
                await asyncio.sleep(self.idle_delay_ms * 2 / 1000)
                continue

            self._raise_if_threshold_reached()
            if result.claimed == 0:
                empty_results += 1
                if empty_results >= self.max_empty_results:
                    logger.info(f"No documents ready after {empty_results} attempts, move finished")
                    break
                await asyncio.sleep(self.idle_delay_ms / 1000)
                continue

            empty_results = 0
            if self.delay_between_batches_ms > 0:
                await asyncio.sleep(self.delay_between_batches_ms / 1000)

        logger.info(f"Move completed: {self.total_moved} moved, {self.total_failed} failed")
        return self.total_moved

    def _raise_if_threshold_reached(self) -> None:
        if self.error_tracker is not None and self.error_tracker.should_stop_migration:
            raise MigrationError("Error thresholds reached, stopping move")
