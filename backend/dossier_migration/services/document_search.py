"""
Document Search

Alternate discovery that searches documents by type code directly, one
DOSSIERS-{TYPE} root at a time. Parent folders are taken from the result
paths, so no per-document folder lookup is needed.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dossier_migration.clients.afts import sanitize
from dossier_migration.clients.content_repository import ContentReader, NodeEntry
from dossier_migration.core.exceptions import MigrationError
from dossier_migration.db.models.doc_staging import DocStaging
from dossier_migration.db.models.enums import MigrationPhase, MigrationStatus
from dossier_migration.db.models.folder_staging import FolderStaging
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.doc_staging_repository import DocStagingRepository
from dossier_migration.repositories.folder_staging_repository import FolderStagingRepository
from dossier_migration.services.client_enrichment import ClientEnrichmentService, DisabledEnrichment
from dossier_migration.services.document_mapper import DocumentMetadataMapper
from dossier_migration.services.error_tracker import GlobalErrorTracker
from dossier_migration.services.folder_discovery import build_folder_staging
from dossier_migration.services.phase_progress import PhaseProgress

logger = logging.getLogger(__name__)

DOSSIER_FOLDER_PREFIX = "DOSSIERS-"

DOCUMENT_SORT = [
    {"type": "FIELD", "field": "cm:created", "ascending": True},
    {"type": "FIELD", "field": "cm:name", "ascending": True},
]


@dataclass
class SearchCursor:
    """Position of the search: dossier type folder index and skip count within it."""

    type_index: int = 0
    skip: int = 0

    def next_page(self, batch_size: int) -> None:
        self.skip += batch_size

    def next_type(self) -> None:
        self.type_index += 1
        self.skip = 0


@dataclass
class DocumentSearchBatchResult:
    documents_found: int = 0
    documents_inserted: int = 0
    folders_found: int = 0
    folders_inserted: int = 0
    has_more: bool = False


def parent_name_pattern(folder_type: str) -> "re.Pattern[str]":
    """Names of dossier folders of a type: the type followed by a digit. Type D matches DE."""
    prefix = "DE" if folder_type.upper() == "D" else folder_type
    return re.compile(f"^{re.escape(prefix)}[0-9]", re.IGNORECASE)


def parent_name_from_path(path: Optional[str]) -> Optional[str]:
    """Immediate parent folder name: the last element of the node's path."""
    if not path:
        return None
    parts = [part for part in path.split("/") if part]
    return parts[-1] if parts else None


class DocumentSearchService:
    """Discovers documents by type code across the DOSSIERS-* roots."""

    def __init__(
        self,
        reader: ContentReader,
        session_factory: async_sessionmaker[AsyncSession],
        checkpoint_session_factory: async_sessionmaker[AsyncSession],
        mapper: DocumentMetadataMapper,
        enrichment: Union[ClientEnrichmentService, DisabledEnrichment],
        root_folder_id: str,
        doc_types: Sequence[str],
        folder_types: Optional[Sequence[str]] = None,
        batch_size: int = 100,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        use_date_filter: bool = False,
        max_documents_to_process: Optional[int] = None,
        error_tracker: Optional[GlobalErrorTracker] = None,
        idle_delay_ms: int = 1000,
        delay_between_batches_ms: int = 0,
        max_empty_results: int = 3,
        cursor: Optional[SearchCursor] = None,
    ):
        """
        Initialize document search.

        Args:
            reader: Content repository read side
            session_factory: Staging session factory
            checkpoint_session_factory: Checkpoint session factory for progress writes
            mapper: Document metadata mapper
            enrichment: Client enrichment stage for new folders
            root_folder_id: Folder holding the DOSSIERS-* folders
            doc_types: Document type codes to search for
            folder_types: Dossier folder types to include (PI, LE, ACC, D); empty means all
            batch_size: Search page size
            date_from: Creation date lower bound (YYYY-MM-DD)
            date_to: Creation date upper bound (YYYY-MM-DD)
            use_date_filter: Apply the creation date range
            max_documents_to_process: Stop after staging this many documents
            error_tracker: Optional global error tracker
            idle_delay_ms: Pause after an empty batch
            delay_between_batches_ms: Pause after a non-empty batch
            max_empty_results: Consecutive empty batches that end the loop
            cursor: Initial cursor
        """
        self.reader = reader
        self.session_factory = session_factory
        self.mapper = mapper
        self.enrichment = enrichment
        self.root_folder_id = root_folder_id
        self._doc_types = list(doc_types)
        self._doc_types_override: Optional[List[str]] = None
        self.folder_types = [t.upper() for t in (folder_types or [])]
        self.batch_size = batch_size
        self.date_range = self._parse_date_range(date_from, date_to) if use_date_filter else None
        self.max_documents_to_process = max_documents_to_process
        self.error_tracker = error_tracker
        self.idle_delay_ms = idle_delay_ms
        self.delay_between_batches_ms = delay_between_batches_ms
        self.max_empty_results = max_empty_results
        self.cursor = cursor or SearchCursor()
        self.progress = PhaseProgress(checkpoint_session_factory, MigrationPhase.FOLDER_DISCOVERY)
        self._dossier_folders: Optional[List[Tuple[str, str]]] = None
        self._folder_cache: Dict[str, FolderStaging] = {}
        self.total_documents = 0
        self.total_folders = 0

    @staticmethod
    def _parse_date_range(date_from: Optional[str], date_to: Optional[str]) -> Optional[Tuple[date, date]]:
        if not date_from or not date_to:
            return None
        try:
            return date.fromisoformat(date_from), date.fromisoformat(date_to)
        except ValueError:
            logger.warning(f"Invalid document search date range '{date_from}' - '{date_to}', date filter disabled")
            return None

    def set_doc_types(self, doc_types: Sequence[str]) -> None:
        """Override the searched type codes and restart from the first dossier type."""
        self._doc_types_override = list(doc_types)
        self.cursor = SearchCursor()

    def current_doc_types(self) -> List[str]:
        return self._doc_types_override if self._doc_types_override is not None else self._doc_types

    def build_dossier_folder_query(self) -> str:
        return f'PARENT:"{sanitize(self.root_folder_id)}" AND TYPE:"cm:folder" AND =cm:name:{DOSSIER_FOLDER_PREFIX}*'

    def build_document_query(self, ancestor_id: str) -> str:
        conditions = " OR ".join(f'=ecm\\:docType:"{sanitize(code)}"' for code in self.current_doc_types())
        query = f'({conditions}) AND ANCESTOR:"{sanitize(ancestor_id)}" AND TYPE:"cm:content"'
        if self.date_range is not None:
            start, end = self.date_range
            query += f" AND cm\\:created:[{start:%Y-%m-%d} TO {end:%Y-%m-%d}]"
        return query

    async def dossier_folders(self) -> List[Tuple[str, str]]:
        """(type, folder id) of every DOSSIERS-{TYPE} folder, sorted by type. Looked up once."""
        if self._dossier_folders is not None:
            return self._dossier_folders

        found: Dict[str, str] = {}
        skip = 0
        page_size = 100
        while True:
            page = await self.reader.search(
                self.build_dossier_folder_query(),
                skip,
                page_size,
                [{"type": "FIELD", "field": "cm:name", "ascending": True}],
            )
            for entry in page.entries:
                if not entry.name.upper().startswith(DOSSIER_FOLDER_PREFIX):
                    continue
                folder_type = entry.name[len(DOSSIER_FOLDER_PREFIX):].upper()
                if self.folder_types and folder_type not in self.folder_types:
                    continue
                found[folder_type] = entry.id
            if not page.has_more or not page.entries:
                break
            skip += len(page.entries)

        self._dossier_folders = sorted(found.items())
        logger.info(f"Found {len(self._dossier_folders)} dossier folders: {', '.join(t for t, _ in self._dossier_folders)}")
        return self._dossier_folders

    def _remaining_capacity(self) -> Optional[int]:
        if not self.max_documents_to_process or self.max_documents_to_process <= 0:
            return None
        return max(0, self.max_documents_to_process - self.total_documents)

    async def run_batch(self) -> DocumentSearchBatchResult:
        """
        Stage the next page of matching documents.

        Pages without matching documents are skipped until a page with matches
        is found or every dossier type is exhausted.

        Returns:
            DocumentSearchBatchResult; empty once all types are exhausted
        """
        start = time.perf_counter()
        result = DocumentSearchBatchResult()
        if not self.current_doc_types():
            logger.warning("No document types configured for document search")
            return result

        folders = await self.dossier_folders()
        while self.cursor.type_index < len(folders):
            folder_type, folder_id = folders[self.cursor.type_index]
            page = await self.reader.search(
                self.build_document_query(folder_id), self.cursor.skip, self.batch_size, DOCUMENT_SORT
            )
            pattern = parent_name_pattern(folder_type)
            matches = [
                entry for entry in page.entries
                if (name := parent_name_from_path(entry.path)) is not None and pattern.match(name)
            ]

            if not matches:
                if page.has_more:
                    logger.debug(
                        f"No matching documents in DOSSIERS-{folder_type} page at skip {self.cursor.skip}, continuing"
                    )
                    self.cursor.next_page(self.batch_size)
                else:
                    logger.info(f"DOSSIERS-{folder_type} exhausted, moving to next dossier type")
                    self.cursor.next_type()
                continue

            remaining = self._remaining_capacity()
            if remaining is not None:
                if remaining == 0:
                    return result
                matches = matches[:remaining]

            result.documents_found = len(matches)
            result.has_more = page.has_more
            await self._stage(matches, result)

            if page.has_more:
                self.cursor.next_page(self.batch_size)
            else:
                self.cursor.next_type()

            await self.progress.save(
                total_processed=self.total_documents,
                last_processed_index=self.cursor.skip,
                last_processed_id=folder_type,
            )
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.info(
                f"Document search batch (DOSSIERS-{folder_type}): {result.documents_found} found, "
                f"{result.documents_inserted} staged, {result.folders_inserted} new folders in {elapsed_ms:.0f}ms "
                f"(total {self.total_documents} documents, {self.total_folders} folders)"
            )
            return result

        return result

    async def _stage(self, entries: List[NodeEntry], result: DocumentSearchBatchResult) -> None:
        new_folders: Dict[str, FolderStaging] = {}
        for entry in entries:
            parent_id = entry.parent_id
            if not parent_id or parent_id in self._folder_cache or parent_id in new_folders:
                continue
            folder = build_folder_staging(parent_id, parent_name_from_path(entry.path) or "Unknown")
            # Documents are staged directly below, the folder needs no discovery pass
            folder.status = MigrationStatus.PROCESSED.value
            new_folders[parent_id] = folder
        result.folders_found = len(new_folders)

        if self.enrichment.enabled:
            for folder in new_folders.values():
                await self.enrichment.enrich_folder(folder)

        documents: List[DocStaging] = []
        for entry in entries:
            folder = new_folders.get(entry.parent_id) or self._folder_cache.get(entry.parent_id)
            if folder is None:
                logger.warning(f"No parent folder for document {entry.name} ({entry.id}), skipping")
                continue
            documents.append(await self.mapper.map_document(entry, folder))

        async with unit_of_work(self.session_factory) as session:
            if new_folders:
                result.folders_inserted = await FolderStagingRepository(session).insert_many_ignore_duplicates(
                    list(new_folders.values())
                )
            if documents:
                result.documents_inserted = await DocStagingRepository(session).insert_many_ignore_duplicates(documents)

        self._folder_cache.update(new_folders)
        self.total_folders += result.folders_inserted
        self.total_documents += result.documents_inserted

    async def run_loop(self) -> int:
        """
        Search until every dossier type is exhausted.

        Ends after `max_empty_results` consecutive empty batches or when the
        document cap is reached. Failed batches are retried after a back-off.

        Returns:
            Total number of documents staged
        """
        logger.info(f"Document search started for types {', '.join(self.current_doc_types())}")
        empty_results = 0
        while True:
            capacity = self._remaining_capacity()
            if capacity == 0:
                logger.info(f"Reached maximum of {self.max_documents_to_process} documents, document search finished")
                break

            try:
                result = await self.run_batch()
            except Exception as e:
                logger.error(f"Document search batch failed, backing off: {e}")
                if self.error_tracker is not None:
                    self.error_tracker.record(e)
                    if self.error_tracker.should_stop_migration:
                        raise MigrationError("Error thresholds reached, stopping document search") from e
                await asyncio.sleep(self.idle_delay_ms * 2 / 1000)
                continue

            if result.documents_found == 0:
                empty_results += 1
                if empty_results >= self.max_empty_results:
                    logger.info(f"Document search finished after {empty_results} consecutive empty batches")
                    break
                await asyncio.sleep(self.idle_delay_ms / 1000)
                continue

            empty_results = 0
            if self.delay_between_batches_ms > 0:
                await asyncio.sleep(self.delay_between_batches_ms / 1000)

        logger.info(f"Document search staged {self.total_documents} documents and {self.total_folders} folders")
        return self.total_documents
