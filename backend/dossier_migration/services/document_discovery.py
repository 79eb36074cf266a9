"""
Document Discovery

Claims READY folders, reads their documents, maps each document and stages
it for folder preparation. A failing folder is marked ERROR and the rest of
the batch continues.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dossier_migration.clients.content_repository import ContentReader, NodeEntry
from dossier_migration.core.exceptions import MigrationError
from dossier_migration.db.models.doc_staging import DocStaging
from dossier_migration.db.models.enums import DossierType
from dossier_migration.db.models.folder_staging import FolderStaging
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.doc_staging_repository import DocStagingRepository
from dossier_migration.repositories.folder_staging_repository import FolderStagingRepository
from dossier_migration.services.client_enrichment import ClientEnrichmentService, DisabledEnrichment
from dossier_migration.services.document_mapper import DocumentMetadataMapper
from dossier_migration.services.document_resolver import DocumentResolver
from dossier_migration.services.error_tracker import GlobalErrorTracker

logger = logging.getLogger(__name__)


@dataclass
class DocumentBatchResult:
    folders_claimed: int = 0
    folders_processed: int = 0
    folders_failed: int = 0
    documents_inserted: int = 0


def root_folder_name_for(target_dossier_type: Optional[int]) -> str:
    try:
        return DossierType(target_dossier_type).root_folder_name
    except ValueError:
        return DossierType.UNKNOWN.root_folder_name


class DocumentDiscoveryService:
    """Stages the documents of claimed folders."""

    def __init__(
        self,
        reader: ContentReader,
        session_factory: async_sessionmaker[AsyncSession],
        mapper: DocumentMetadataMapper,
        resolver: DocumentResolver,
        enrichment: Union[ClientEnrichmentService, DisabledEnrichment],
        destination_root_id: str,
        error_tracker: Optional[GlobalErrorTracker] = None,
        batch_size: int = 100,
        max_degree_of_parallelism: int = 5,
        page_size: int = 100,
        idle_delay_ms: int = 1000,
        delay_between_batches_ms: int = 0,
        stuck_timeout_minutes: int = 30,
    ):
        """
        Initialize document discovery.

        Args:
            reader: Content repository read side
            session_factory: Staging session factory
            mapper: Document metadata mapper
            resolver: Destination folder resolver
            enrichment: Client enrichment stage
            destination_root_id: Destination folder holding the DOSSIERS-* roots
            error_tracker: Optional global error tracker
            batch_size: Folders claimed per batch
            max_degree_of_parallelism: Folders processed concurrently
            page_size: Children read per request
            idle_delay_ms: Pause after an empty claim
            delay_between_batches_ms: Pause after a non-empty batch
            stuck_timeout_minutes: Age after which a claimed folder is reset
        """
        self.reader = reader
        self.session_factory = session_factory
        self.mapper = mapper
        self.resolver = resolver
        self.enrichment = enrichment
        self.destination_root_id = destination_root_id
        self.error_tracker = error_tracker
        self.batch_size = batch_size
        self.max_degree_of_parallelism = max(1, max_degree_of_parallelism)
        self.page_size = page_size
        self.idle_delay_ms = idle_delay_ms
        self.delay_between_batches_ms = delay_between_batches_ms
        self.stuck_timeout_minutes = stuck_timeout_minutes
        self.total_inserted = 0

    async def reset_stuck_folders(self) -> int:
        async with unit_of_work(self.session_factory) as session:
            count = await FolderStagingRepository(session).reset_stuck(self.stuck_timeout_minutes)
        if count:
            logger.warning(f"Reset {count} folders stuck in PREPARED for over {self.stuck_timeout_minutes} minutes")
        return count

    async def run_batch(self) -> DocumentBatchResult:
        """
        Claim a batch of folders and stage their documents.

        Returns:
            DocumentBatchResult
        """
        start = time.perf_counter()
        async with unit_of_work(self.session_factory) as session:
            folders = await FolderStagingRepository(session).take_ready_batch(self.batch_size)

        result = DocumentBatchResult(folders_claimed=len(folders))
        if not folders:
            return result

        semaphore = asyncio.Semaphore(self.max_degree_of_parallelism)

        async def process(folder: FolderStaging) -> Optional[int]:
            async with semaphore:
                return await self._process_folder_safe(folder)

        outcomes = await asyncio.gather(*(process(folder) for folder in folders))
        for inserted in outcomes:
            if inserted is None:
                result.folders_failed += 1
            else:
                result.folders_processed += 1
                result.documents_inserted += inserted

        self.total_inserted += result.documents_inserted
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Document discovery batch: {result.folders_processed}/{result.folders_claimed} folders, "
            f"{result.documents_inserted} documents staged, {result.folders_failed} failed in {elapsed_ms:.0f}ms "
            f"(total {self.total_inserted})"
        )
        return result

    async def _process_folder_safe(self, folder: FolderStaging) -> Optional[int]:
        try:
            return await self.process_folder(folder)
        except Exception as e:
            logger.error(f"Failed to process folder {folder.id} ({folder.name}): {e}")
            if self.error_tracker is not None:
                self.error_tracker.record(e)
            async with unit_of_work(self.session_factory) as session:
                await FolderStagingRepository(session).fail(folder.id, str(e))
            return None

    async def process_folder(self, folder: FolderStaging) -> int:
        """
        Stage all documents of one claimed folder and mark it PROCESSED.

        Args:
            folder: Claimed folder

        Returns:
            Number of documents inserted
        """
        entries = await self.read_documents(folder.node_id)
        documents: List[DocStaging] = []
        for entry in entries:
            document = await self.mapper.map_document(entry, folder)
            await self._assign_destination(document)
            if self.enrichment.enabled:
                await self.enrichment.enrich_document_accounts(document)
            documents.append(document)

        async with unit_of_work(self.session_factory) as session:
            inserted = 0
            if documents:
                inserted = await DocStagingRepository(session).insert_many_ignore_duplicates(documents)
            await FolderStagingRepository(session).mark_processed(folder.id)

        logger.debug(f"Folder {folder.name}: {len(entries)} documents read, {inserted} staged")
        return inserted

    async def read_documents(self, folder_id: str) -> List[NodeEntry]:
        """All non-folder children of a folder, page by page."""
        entries: List[NodeEntry] = []
        skip = 0
        while True:
            page = await self.reader.get_children(folder_id, skip=skip, take=self.page_size)
            entries.extend(entry for entry in page.entries if not entry.is_folder)
            skip += len(page.entries)
            if not page.has_more or not page.entries:
                return entries

    async def _assign_destination(self, document: DocStaging) -> None:
        root_name = root_folder_name_for(document.target_dossier_type)
        root_id = await self.resolver.resolve(self.destination_root_id, root_name)
        document.to_path = f"{root_id}/{document.dossier_dest_folder_id}"

    async def run_loop(self, max_empty_results: Optional[int] = None) -> int:
        """
        Process folders until stopped.

        Args:
            max_empty_results: Stop after this many consecutive empty claims;
                None polls until cancelled

        Returns:
            Total number of documents staged by this loop
        """
        await self.reset_stuck_folders()
        logger.info("Document discovery started")
        empty_results = 0
        while True:
            try:
                result = await self.run_batch()
            except Exception as e:
                logger.error(f"Document discovery batch failed, backing off: {e}")
                if self.error_tracker is not None:
                    self.error_tracker.record(e)
                self._raise_if_threshold_reached()
                await asyncio.sleep(self.idle_delay_ms * 2 / 1000)
                continue

            self._raise_if_threshold_reached()
            if result.folders_claimed == 0:
                empty_results += 1
                if max_empty_results is not None and empty_results >= max_empty_results:
                    logger.info(f"No ready folders after {empty_results} attempts, document discovery finished")
                    break
                await asyncio.sleep(self.idle_delay_ms / 1000)
                continue

            empty_results = 0
            if self.delay_between_batches_ms > 0:
                await asyncio.sleep(self.delay_between_batches_ms / 1000)

        return self.total_inserted

    def _raise_if_threshold_reached(self) -> None:
        if self.error_tracker is not None and self.error_tracker.should_stop_migration:
            raise MigrationError("Error thresholds reached, stopping document discovery")
