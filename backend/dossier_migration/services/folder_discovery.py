"""
Folder Discovery

Pages folders under the discovery root whose name contains the configured
filter and stages each as a READY FolderStaging row. The page offset is saved
to the FOLDER_DISCOVERY checkpoint after every page, so an interrupted scan
resumes where it stopped.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dossier_migration.clients.afts import sanitize
from dossier_migration.clients.content_repository import ContentReader, NodeEntry
from dossier_migration.db.models.enums import MigrationPhase, MigrationStatus
from dossier_migration.db.models.folder_staging import FolderStaging
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.folder_staging_repository import FolderStagingRepository
from dossier_migration.services.client_enrichment import ClientEnrichmentService, DisabledEnrichment
from dossier_migration.services.destination_resolver import determine_source
from dossier_migration.services.dossier_id_formatter import convert_to_new_format, extract_core_id, extract_prefix
from dossier_migration.services.dossier_type_detector import detect_from_folder_prefix
from dossier_migration.services.phase_progress import PhaseProgress

logger = logging.getLogger(__name__)

FOLDER_SORT = [
    {"type": "FIELD", "field": "cm:created", "ascending": True},
    {"type": "FIELD", "field": "cm:name", "ascending": True},
]

_CLIENT_TYPE_BY_PREFIX = {"PI": "FL", "FL": "FL", "LE": "PL", "PL": "PL"}


def client_type_from_prefix(folder_name: Optional[str]) -> Optional[str]:
    """FL for PI folders, PL for LE folders."""
    return _CLIENT_TYPE_BY_PREFIX.get(extract_prefix(folder_name))


def build_folder_staging(
    node_id: str,
    name: str,
    parent_id: Optional[str] = None,
    properties: Optional[Dict[str, Any]] = None,
) -> FolderStaging:
    """
    READY FolderStaging for a source dossier folder.

    Args:
        node_id: Source folder id
        name: Folder name, e.g. PI102206
        parent_id: Source parent folder id
        properties: Folder properties from the repository

    Returns:
        Transient FolderStaging
    """
    node = NodeEntry(id=node_id, name=name, is_folder=True, parent_id=parent_id, properties=properties or {})
    dossier_type = detect_from_folder_prefix(name)
    prefix = extract_prefix(name)
    return FolderStaging(
        node_id=node_id,
        parent_id=parent_id,
        name=name,
        status=MigrationStatus.READY.value,
        core_id=node.prop("ecm:coreId") or extract_core_id(name) or None,
        client_type=client_type_from_prefix(name),
        client_segment=node.prop("ecm:bnkClientType") or prefix or None,
        tip_dosijea=node.prop("ecm:bnkDossierType"),
        target_dossier_type=dossier_type.value,
        source=node.prop("ecm:bnkSource") or determine_source(dossier_type),
        unique_identifier=node.prop("ecm:uniqueFolderId"),
        dossier_dest_folder_id=convert_to_new_format(name),
        contract_number=node.prop("ecm:bnkNumberOfContract"),
        product_type=node.prop("ecm:bnkTypeOfProduct"),
    )


@dataclass
class FolderBatchResult:
    inserted: int
    fetched: int
    has_more: bool


class FolderDiscoveryService:
    """Stages source dossier folders for document discovery."""

    def __init__(
        self,
        reader: ContentReader,
        session_factory: async_sessionmaker[AsyncSession],
        checkpoint_session_factory: async_sessionmaker[AsyncSession],
        enrichment: Union[ClientEnrichmentService, DisabledEnrichment],
        root_folder_id: str,
        name_filter: str = "-",
        batch_size: int = 100,
        delay_between_batches_ms: int = 0,
    ):
        """
        Initialize folder discovery.

        Args:
            reader: Content repository read side
            session_factory: Staging session factory
            checkpoint_session_factory: Checkpoint session factory for progress writes
            enrichment: Client enrichment stage
            root_folder_id: Folder whose children are scanned
            name_filter: Substring a folder name must contain
            batch_size: Page size
            delay_between_batches_ms: Pause after each non-empty page
        """
        self.reader = reader
        self.session_factory = session_factory
        self.enrichment = enrichment
        self.root_folder_id = root_folder_id
        self.name_filter = name_filter
        self.batch_size = batch_size
        self.delay_between_batches_ms = delay_between_batches_ms
        self.progress = PhaseProgress(checkpoint_session_factory, MigrationPhase.FOLDER_DISCOVERY)
        self.skip = 0
        self.total_inserted = 0

    def build_query(self) -> str:
        query = f'PARENT:"{sanitize(self.root_folder_id)}" AND TYPE:"cm:folder"'
        if self.name_filter:
            query += f" AND cm:name:*{sanitize(self.name_filter)}*"
        return query

    async def load_checkpoint(self) -> None:
        checkpoint = await self.progress.load()
        if checkpoint is not None:
            self.skip = int(checkpoint.last_processed_index or 0)
            self.total_inserted = int(checkpoint.total_processed or 0)
        if self.skip:
            logger.info(f"Resuming folder discovery at offset {self.skip} ({self.total_inserted} already staged)")

    async def run_batch(self) -> FolderBatchResult:
        """
        Stage one page of folders.

        A failing page query or insert propagates; pages already staged stay.

        Returns:
            FolderBatchResult
        """
        start = time.perf_counter()
        page = await self.reader.search(self.build_query(), self.skip, self.batch_size, FOLDER_SORT)
        folders: List[FolderStaging] = [
            build_folder_staging(entry.id, entry.name, entry.parent_id or self.root_folder_id, entry.properties)
            for entry in page.entries
        ]

        if self.enrichment.enabled:
            for folder in folders:
                await self.enrichment.enrich_folder(folder)

        inserted = 0
        if folders:
            async with unit_of_work(self.session_factory) as session:
                inserted = await FolderStagingRepository(session).insert_many_ignore_duplicates(folders)

        self.skip += len(page.entries)
        self.total_inserted += inserted
        await self.progress.save(last_processed_index=self.skip, total_processed=self.total_inserted)

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Folder discovery page: {len(page.entries)} fetched, {inserted} staged in {elapsed_ms:.0f}ms "
            f"(offset {self.skip}, total {self.total_inserted})"
        )
        return FolderBatchResult(inserted=inserted, fetched=len(page.entries), has_more=page.has_more)

    async def run_loop(self) -> int:
        """
        Page through all matching folders.

        Returns:
            Total number of folders staged
        """
        await self.load_checkpoint()
        logger.info(f"Folder discovery started under {self.root_folder_id} (filter '{self.name_filter}')")
        while True:
            result = await self.run_batch()
            if not result.has_more or result.fetched == 0:
                break
            if self.delay_between_batches_ms > 0:
                await asyncio.sleep(self.delay_between_batches_ms / 1000)
        logger.info(f"Folder discovery finished: {self.total_inserted} folders staged")
        return self.total_inserted
