"""
Folder Preparation

Creates every destination dossier folder referenced by staged documents
before any document is moved, and attaches the created folder ids to the
documents. Folder creation goes through the DocumentResolver, so re-running
the phase never creates duplicates.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dossier_migration.db.models.enums import DossierType, MigrationPhase
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.doc_staging_repository import DocStagingRepository, UniqueFolderInfo
from dossier_migration.services.client_enrichment import ClientEnrichmentService, DisabledEnrichment
from dossier_migration.services.destination_resolver import determine_source
from dossier_migration.services.document_resolver import DocumentResolver
from dossier_migration.services.dossier_id_formatter import parse_deposit_dossier_id
from dossier_migration.services.phase_progress import PhaseProgress

logger = logging.getLogger(__name__)

MAX_LOGGED_ERRORS = 10


class FolderPreparationService:
    """Creates destination folder hierarchies with bounded parallelism."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        checkpoint_session_factory: async_sessionmaker[AsyncSession],
        resolver: DocumentResolver,
        enrichment: Union[ClientEnrichmentService, DisabledEnrichment],
        destination_root_id: str,
        max_parallelism: int = 50,
        checkpoint_interval: int = 1000,
        stuck_timeout_minutes: int = 30,
    ):
        """
        Initialize folder preparation.

        Args:
            session_factory: Staging session factory
            checkpoint_session_factory: Checkpoint session factory for progress writes
            resolver: Idempotent folder create-or-get
            enrichment: Builds properties of new dossier folders
            destination_root_id: Destination folder holding the DOSSIERS-* roots
            max_parallelism: Concurrent hierarchy creations
            checkpoint_interval: Completed folders between checkpoint writes
            stuck_timeout_minutes: Age after which an IN PROGRESS document is reset
        """
        self.session_factory = session_factory
        self.resolver = resolver
        self.enrichment = enrichment
        self.destination_root_id = destination_root_id
        self.max_parallelism = max(1, max_parallelism)
        self.checkpoint_interval = max(1, checkpoint_interval)
        self.stuck_timeout_minutes = stuck_timeout_minutes
        self.progress = PhaseProgress(checkpoint_session_factory, MigrationPhase.FOLDER_PREPARATION)
        self.folders_processed = 0
        self.total_folders = 0
        self.errors: List[str] = []

    async def prepare_all_folders(self) -> int:
        """
        Create all destination folders.

        Per-folder failures are collected and logged at the end; they never
        abort the run.

        Returns:
            Number of folders handled, successful or not, including resumed ones
        """
        start = time.perf_counter()
        logger.info(f"Folder preparation started with {self.max_parallelism} concurrent tasks")
        self.errors = []

        async with unit_of_work(self.session_factory) as session:
            reset = await DocStagingRepository(session).reset_stuck(self.stuck_timeout_minutes)
        if reset:
            logger.warning(f"Reset {reset} documents stuck in IN PROGRESS")

        folders = await self.get_unique_folders()
        self.total_folders = len(folders)
        if not folders:
            logger.warning("No destination folders to create, document staging may be empty")
            return 0
        logger.info(f"Found {self.total_folders} unique destination folders")
        await self.progress.save(total_items=self.total_folders)

        start_index = min(await self.progress.resume_index(), self.total_folders)
        self.folders_processed = start_index
        if start_index:
            logger.info(f"Resuming folder preparation at {start_index}/{self.total_folders}")

        semaphore = asyncio.Semaphore(self.max_parallelism)

        async def prepare(folder: UniqueFolderInfo) -> None:
            async with semaphore:
                folder_id, error = await self.create_folder(folder)
                if error is not None:
                    self.errors.append(f"{folder.root_folder_name}/{folder.folder_path}: {error}")
                # A completed count, not a contiguous prefix. A folder still in flight
                # at a crash can be skipped on resume; resetting the phase re-runs
                # from 0, and existing folders are reused.
                self.folders_processed += 1
                if self.folders_processed % self.checkpoint_interval == 0:
                    await self.progress.save(
                        last_processed_index=self.folders_processed,
                        total_processed=self.folders_processed,
                    )
                    logger.info(
                        f"Folder preparation progress: {self.folders_processed}/{self.total_folders} "
                        f"({self.folders_processed / self.total_folders * 100:.1f}%)"
                    )

        await asyncio.gather(*(prepare(folder) for folder in folders[start_index:]))
        await self.progress.save(last_processed_index=self.folders_processed, total_processed=self.folders_processed)

        elapsed = time.perf_counter() - start
        if self.errors:
            logger.warning(
                f"Folder preparation completed with {len(self.errors)} errors out of {self.total_folders} folders "
                f"in {elapsed:.1f}s"
            )
            for error in self.errors[:MAX_LOGGED_ERRORS]:
                logger.error(f"Folder preparation error: {error}")
            if len(self.errors) > MAX_LOGGED_ERRORS:
                logger.error(f"... and {len(self.errors) - MAX_LOGGED_ERRORS} more errors")
        else:
            logger.info(f"Folder preparation completed: {self.total_folders} folders in {elapsed:.1f}s")
        return self.folders_processed

    async def get_unique_folders(self) -> List[UniqueFolderInfo]:
        async with unit_of_work(self.session_factory) as session:
            return await DocStagingRepository(session).get_unique_destination_folders()

    async def create_folder(self, folder: UniqueFolderInfo) -> Tuple[Optional[str], Optional[str]]:
        """
        Create one dossier hierarchy and attach it to its documents.

        The DOSSIERS-* root is resolved first, then each path segment.
        Only the dossier folder itself (first segment) gets properties.

        Args:
            folder: Unique destination folder

        Returns:
            (folder id, None) on success, (None, error message) on failure
        """
        parts = [part for part in folder.folder_path.split("/") if part]
        if not parts:
            logger.warning(f"Empty folder path under {folder.root_folder_name}")
            return None, "Empty folder path"

        try:
            parent_id = await self.resolver.resolve(self.destination_root_id, folder.root_folder_name)
            created = False
            for index, name in enumerate(parts):
                properties = await self.folder_properties(folder) if index == 0 else None
                parent_id, created = await self.resolver.resolve_with_status(parent_id, name, properties)
        except Exception as e:
            logger.error(f"Failed to create folder {folder.root_folder_name}/{folder.folder_path}: {e}")
            return None, str(e)

        try:
            async with unit_of_work(self.session_factory) as session:
                updated = await DocStagingRepository(session).update_destination_folder_id(
                    folder.target_dossier_type, folder.folder_path, parent_id, created
                )
        except Exception as e:
            logger.error(f"Failed to attach folder {parent_id} to documents of {folder.folder_path}: {e}")
            return parent_id, str(e)

        logger.debug(
            f"Prepared {folder.root_folder_name}/{folder.folder_path} -> {parent_id} "
            f"({'created' if created else 'existing'}, {updated} documents)"
        )
        return parent_id, None

    async def folder_properties(self, folder: UniqueFolderInfo) -> Dict[str, str]:
        try:
            dossier_type = DossierType(folder.target_dossier_type)
        except ValueError:
            dossier_type = DossierType.UNKNOWN

        contract_number = None
        product_type = folder.product_type
        core_id = folder.core_id
        if dossier_type == DossierType.DEPOSIT:
            parsed = parse_deposit_dossier_id(folder.folder_path)
            if parsed is not None:
                core_id, product_type, contract_number = parsed

        return await self.enrichment.build_folder_properties(
            core_id,
            product_type=product_type,
            contract_number=contract_number,
            source=determine_source(dossier_type),
            creation_date=folder.creation_date,
        )

    async def get_total_folder_count(self) -> int:
        """Number of unique destination folders, cached after the first lookup."""
        if self.total_folders:
            return self.total_folders
        self.total_folders = len(await self.get_unique_folders())
        return self.total_folders

    def get_progress(self) -> Tuple[int, int]:
        """(folders handled, total folders) of the current run."""
        return self.folders_processed, self.total_folders
