"""
KDP Document Update

Runs after the move: stages every KDP document (types 00824 and 00099),
decides per ACC folder which document stays active, and rewrites the
status properties of the others in bounded-concurrency batches.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from itertools import groupby
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dossier_migration.clients.afts import sanitize
from dossier_migration.clients.alfresco_client import parse_alfresco_datetime
from dossier_migration.clients.content_repository import ContentReader, ContentWriter, NodeEntry
from dossier_migration.core.exceptions import MigrationError
from dossier_migration.db.models.enums import KdpAction, MigrationStatus
from dossier_migration.db.models.kdp_document import KdpDocument
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.kdp_document_repository import KdpDocumentRepository
from dossier_migration.services.document_search import parent_name_from_path
from dossier_migration.services.error_tracker import GlobalErrorTracker

logger = logging.getLogger(__name__)

KDP_DOC_TYPES = ("00824", "00099")
ACTIVE_KDP_TYPE = "00099"
ACTIVE_KDP_TYPE_NAME = "KDP za fizička lica"
ACTIVE_STATUS = "1"
INACTIVE_STATUS = "2"

ACC_FOLDER_PATTERN = re.compile(r"ACC-\d+")
KDP_SORT = [{"type": "FIELD", "field": "cm:created", "ascending": True}]

NO_ACC_FOLDER = "No update needed: document is not in an ACC folder"
NO_UPDATE_NEEDED = "No update needed"
AMBIGUOUS_NEWEST = "Skipped: several newest documents in the ACC folder"


def build_update_properties(document: KdpDocument) -> Dict[str, Any]:
    """Properties written for the document's action; empty for NONE."""
    if document.action == KdpAction.ACTIVATE:
        properties: Dict[str, Any] = {
            "ecm:docStatus": ACTIVE_STATUS,
            "ecm:docType": ACTIVE_KDP_TYPE,
            "ecm:docTypeCode": ACTIVE_KDP_TYPE,
            "ecm:docTypeName": ACTIVE_KDP_TYPE_NAME,
        }
        if document.account_numbers:
            properties["ecm:docAccountNumbers"] = document.account_numbers
        return properties
    if document.action == KdpAction.DEACTIVATE:
        return {"ecm:docStatus": INACTIVE_STATUS}
    return {}


def acc_folder_from_path(path: Optional[str]) -> Optional[str]:
    """Innermost ACC-<digits> folder on the node's path."""
    if not path:
        return None
    found = ACC_FOLDER_PATTERN.findall(path)
    return found[-1] if found else None


def kdp_document_from_entry(entry: NodeEntry) -> KdpDocument:
    acc_folder = acc_folder_from_path(entry.path)
    created = (
        parse_alfresco_datetime(entry.prop("ecm:docCreationDate"))
        or parse_alfresco_datetime(entry.prop("ecm:docCreatedDate"))
        or entry.created_at
    )
    return KdpDocument(
        node_id=entry.id,
        document_name=entry.name,
        document_path=entry.path,
        parent_folder_id=entry.parent_id,
        parent_folder_name=parent_name_from_path(entry.path),
        document_type=entry.prop("ecm:docType"),
        document_status=entry.prop("ecm:docStatus"),
        created_date=created,
        account_numbers=entry.prop("ecm:bnkAccountNumber"),
        acc_folder_name=acc_folder,
        core_id=acc_folder[len("ACC-"):] if acc_folder else None,
        action=KdpAction.NONE.value,
        is_exception=False,
        status=MigrationStatus.READY.value,
    )


@dataclass
class KdpUpdateProgress:
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    batches: int = 0

    @property
    def percentage(self) -> float:
        return self.processed / self.total * 100 if self.total else 0.0


@dataclass
class KdpUpdateResult:
    """Outcome of one update run."""

    total_processed: int = 0
    succeeded: int = 0
    failed: int = 0
    elapsed_seconds: float = 0.0


class KdpDocumentService:
    """Loads, classifies and updates KDP documents."""

    def __init__(
        self,
        reader: ContentReader,
        writer: ContentWriter,
        session_factory: async_sessionmaker[AsyncSession],
        client_api: Any = None,
        error_tracker: Optional[GlobalErrorTracker] = None,
        doc_types: Sequence[str] = KDP_DOC_TYPES,
        ancestor_folder_id: str = "",
        page_size: int = 1000,
        stuck_timeout_minutes: int = 30,
    ):
        """
        Initialize the KDP document service.

        Args:
            reader: Content repository searched for KDP documents
            writer: Content repository receiving the property updates
            session_factory: Staging session factory
            client_api: Optional client data API filling account numbers of activated documents
            error_tracker: Optional global error tracker
            doc_types: KDP document type codes
            ancestor_folder_id: Restrict the search to this subtree; empty searches everywhere
            page_size: Search page size
            stuck_timeout_minutes: Age after which an IN PROGRESS row is reset
        """
        self.reader = reader
        self.writer = writer
        self.session_factory = session_factory
        self.client_api = client_api
        self.error_tracker = error_tracker
        self.doc_types = list(doc_types)
        self.ancestor_folder_id = ancestor_folder_id
        self.page_size = max(1, page_size)
        self.stuck_timeout_minutes = stuck_timeout_minutes
        self.progress = KdpUpdateProgress()

    def build_query(self) -> str:
        conditions = " OR ".join(f'=ecm\\:docType:"{sanitize(code)}"' for code in self.doc_types)
        query = f'({conditions}) AND TYPE:"cm:content"'
        if self.ancestor_folder_id:
            query += f' AND ANCESTOR:"{sanitize(self.ancestor_folder_id)}"'
        return query

    async def load_to_staging(self) -> int:
        """
        Replace the KDP staging table with the current search results.

        Returns:
            Number of staged documents
        """
        start = time.perf_counter()
        async with unit_of_work(self.session_factory) as session:
            cleared = await KdpDocumentRepository(session).clear()
        if cleared:
            logger.info(f"Cleared {cleared} previously staged KDP documents")

        query = self.build_query()
        logger.info(f"Loading KDP documents: {query}")
        loaded = 0
        skip = 0
        while True:
            page = await self.reader.search(query, skip, self.page_size, KDP_SORT)
            if page.entries:
                documents = [kdp_document_from_entry(entry) for entry in page.entries]
                async with unit_of_work(self.session_factory) as session:
                    loaded += await KdpDocumentRepository(session).insert_many_ignore_duplicates(documents)
                logger.debug(f"Staged KDP page at skip {skip}: {len(documents)} documents")
            if not page.has_more or not page.entries:
                break
            skip += len(page.entries)

        logger.info(f"Loaded {loaded} KDP documents into staging in {time.perf_counter() - start:.1f}s")
        return loaded

    async def classify(self) -> Dict[str, int]:
        """
        Decide the action of every staged document, per ACC folder.

        The newest document of a folder is activated, all older ones are
        deactivated. Documents already in the target state need no update.
        When several documents share the newest date the folder is flagged
        as an exception and left for manual review.

        Returns:
            Count of documents per action name, plus "exceptions"
        """
        counts = {action.name: 0 for action in KdpAction}
        counts["exceptions"] = 0
        async with unit_of_work(self.session_factory) as session:
            documents = await KdpDocumentRepository(session).list_ordered()
            for acc_folder, group in groupby(documents, key=lambda d: d.acc_folder_name):
                group = list(group)
                if acc_folder is None:
                    for document in group:
                        self._set_action(document, KdpAction.NONE, NO_ACC_FOLDER)
                    counts[KdpAction.NONE.name] += len(group)
                    continue
                for document, action in self._decide(group):
                    counts[action.name] += 1
                    if document.is_exception:
                        counts["exceptions"] += 1
                for document in group:
                    if document.action == KdpAction.ACTIVATE and not document.is_exception:
                        await self._fill_accounts(document)

        logger.info(
            f"Classified KDP documents: {counts[KdpAction.ACTIVATE.name]} to activate, "
            f"{counts[KdpAction.DEACTIVATE.name]} to deactivate, {counts[KdpAction.NONE.name]} unchanged, "
            f"{counts['exceptions']} exceptions"
        )
        return counts

    def _decide(self, group: List[KdpDocument]) -> List[Tuple[KdpDocument, KdpAction]]:
        newest = max((d.created_date for d in group if d.created_date is not None), default=None)
        latest = [d for d in group if d.created_date is not None and d.created_date == newest]
        if not latest:
            latest = group[-1:]
        decisions = []
        for document in group:
            if document in latest:
                if len(latest) > 1:
                    self._set_action(document, KdpAction.ACTIVATE, AMBIGUOUS_NEWEST)
                    document.is_exception = True
                    decisions.append((document, KdpAction.ACTIVATE))
                elif document.document_type == ACTIVE_KDP_TYPE and document.document_status == ACTIVE_STATUS:
                    self._set_action(document, KdpAction.NONE, NO_UPDATE_NEEDED)
                    decisions.append((document, KdpAction.NONE))
                else:
                    self._set_action(document, KdpAction.ACTIVATE)
                    decisions.append((document, KdpAction.ACTIVATE))
            elif document.document_status == INACTIVE_STATUS:
                self._set_action(document, KdpAction.NONE, NO_UPDATE_NEEDED)
                decisions.append((document, KdpAction.NONE))
            else:
                self._set_action(document, KdpAction.DEACTIVATE)
                decisions.append((document, KdpAction.DEACTIVATE))
        return decisions

    @staticmethod
    def _set_action(document: KdpDocument, action: KdpAction, message: Optional[str] = None) -> None:
        document.action = action.value
        document.is_exception = False
        document.update_message = message
        # Nothing to write, so the row is final right away
        document.status = MigrationStatus.DONE.value if action == KdpAction.NONE else MigrationStatus.READY.value

    async def _fill_accounts(self, document: KdpDocument) -> None:
        if self.client_api is None or document.account_numbers or not document.core_id:
            return
        as_of = document.created_date or datetime.now(timezone.utc)
        try:
            accounts = await self.client_api.get_active_accounts(document.core_id, as_of)
        except Exception as e:
            logger.warning(f"Account lookup for KDP document {document.node_id} (client {document.core_id}) failed: {e}")
            if self.error_tracker is not None:
                self.error_tracker.record(e)
            return
        if accounts:
            document.account_numbers = ",".join(accounts)

    async def update_documents(
        self,
        batch_size: int = 500,
        max_degree_of_parallelism: int = 5,
        delay_between_batches_ms: int = 500,
        progress_callback: Optional[Callable[[KdpUpdateProgress], None]] = None,
    ) -> KdpUpdateResult:
        """
        Write the decided properties for every pending document.

        Args:
            batch_size: Documents claimed per batch
            max_degree_of_parallelism: Concurrent property updates within a batch
            delay_between_batches_ms: Pause after each batch
            progress_callback: Called with the progress after each batch

        Returns:
            KdpUpdateResult of this run

        Raises:
            MigrationError: If the error tracker's thresholds are reached
        """
        start = time.perf_counter()
        async with unit_of_work(self.session_factory) as session:
            repository = KdpDocumentRepository(session)
            reset = await repository.reset_stuck(self.stuck_timeout_minutes)
            pending = await repository.count_pending()
        if reset:
            logger.warning(f"Reset {reset} KDP documents stuck in IN PROGRESS")
        self.progress = KdpUpdateProgress(total=pending)
        logger.info(
            f"KDP update started: {pending} documents, batch size {batch_size}, "
            f"parallelism {max_degree_of_parallelism}"
        )

        semaphore = asyncio.Semaphore(max(1, max_degree_of_parallelism))

        async def update(document: KdpDocument) -> Tuple[int, bool, str]:
            async with semaphore:
                return await self._update_one(document)

        while True:
            async with unit_of_work(self.session_factory) as session:
                documents = await KdpDocumentRepository(session).take_pending_batch(batch_size)
            if not documents:
                break

            results = await asyncio.gather(*(update(document) for document in documents))
            async with unit_of_work(self.session_factory) as session:
                repository = KdpDocumentRepository(session)
                for doc_id, success, message in results:
                    await repository.mark_result(doc_id, success, message)

            succeeded = sum(1 for _, success, _ in results if success)
            self.progress.batches += 1
            self.progress.processed += len(results)
            self.progress.succeeded += succeeded
            self.progress.failed += len(results) - succeeded
            logger.info(
                f"KDP batch {self.progress.batches}: {succeeded} updated, {len(results) - succeeded} failed "
                f"({self.progress.processed}/{self.progress.total}, {self.progress.percentage:.1f}%)"
            )
            if progress_callback is not None:
                progress_callback(self.progress)

            if self.error_tracker is not None and self.error_tracker.should_stop_migration:
                raise MigrationError("Error thresholds reached, stopping KDP update")
            if delay_between_batches_ms > 0:
                await asyncio.sleep(delay_between_batches_ms / 1000)

        result = KdpUpdateResult(
            total_processed=self.progress.processed,
            succeeded=self.progress.succeeded,
            failed=self.progress.failed,
            elapsed_seconds=time.perf_counter() - start,
        )
        logger.info(
            f"KDP update completed: {result.succeeded} updated, {result.failed} failed "
            f"in {result.elapsed_seconds:.1f}s"
        )
        return result

    async def _update_one(self, document: KdpDocument) -> Tuple[int, bool, str]:
        properties = build_update_properties(document)
        if not properties:
            return document.id, True, NO_UPDATE_NEEDED
        try:
            if not await self.writer.update_node_properties(document.node_id, properties):
                return document.id, False, "node not found"
        except Exception as e:
            logger.error(f"KDP property update failed for {document.node_id}: {e}")
            if self.error_tracker is not None:
                self.error_tracker.record(e)
            return document.id, False, str(e) or e.__class__.__name__
        action = KdpAction(document.action).name.lower()
        logger.debug(f"KDP document {document.node_id}: {action}")
        return document.id, True, action

    async def get_progress(self) -> KdpUpdateProgress:
        """Progress of the running update, with pending rows counted from staging."""
        async with unit_of_work(self.session_factory) as session:
            pending = await KdpDocumentRepository(session).count_pending()
        if not self.progress.total:
            return KdpUpdateProgress(total=pending)
        return self.progress
