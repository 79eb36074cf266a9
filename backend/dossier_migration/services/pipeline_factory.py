"""
Pipeline factory.

The only place where Settings are turned into the object graph: engines,
session factories, HTTP clients, rule objects, phase services, the
MigrationWorker and the KDP document update.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from dossier_migration.clients.alfresco_client import AlfrescoClient
from dossier_migration.clients.client_api import ClientApi
from dossier_migration.clients.offer_api import OfferApi
from dossier_migration.core.config import Settings
from dossier_migration.db.session import build_engine, build_session_factory
from dossier_migration.services.client_enrichment import build_enrichment
from dossier_migration.services.document_discovery import DocumentDiscoveryService
from dossier_migration.services.document_mapper import DocumentMetadataMapper
from dossier_migration.services.document_mapping_service import DocumentMappingService
from dossier_migration.services.document_resolver import DocumentResolver
from dossier_migration.services.document_search import DocumentSearchService
from dossier_migration.services.document_status_detector import DocumentStatusDetector
from dossier_migration.services.document_type_transformation import DocumentTypeTransformationService
from dossier_migration.services.error_tracker import GlobalErrorTracker
from dossier_migration.services.folder_discovery import FolderDiscoveryService
from dossier_migration.services.folder_preparation import FolderPreparationService
from dossier_migration.services.kdp_documents import KdpDocumentService
from dossier_migration.services.migration_worker import MigrationWorker
from dossier_migration.services.move_service import MoveExecutor, MoveService

logger = logging.getLogger(__name__)


@dataclass
class MigrationPipeline:
    """A wired MigrationWorker plus the resources it owns."""

    worker: MigrationWorker
    content_client: AlfrescoClient
    client_api: Optional[ClientApi] = None
    offer_api: Optional[OfferApi] = None
    kdp: Optional[KdpDocumentService] = None
    engines: List[AsyncEngine] = field(default_factory=list)

    async def close(self) -> None:
        """Close HTTP clients and dispose engines created by the factory."""
        await self.content_client.close()
        if self.client_api is not None:
            await self.client_api.close()
        if self.offer_api is not None:
            await self.offer_api.close()
        for engine in self.engines:
            await engine.dispose()


def build_migration_worker(
    settings: Settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    checkpoint_session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    content_client: Optional[AlfrescoClient] = None,
) -> MigrationPipeline:
    """
    Build the migration pipeline from settings.

    Args:
        settings: Application settings
        session_factory: Staging session factory; built from settings when omitted
        checkpoint_session_factory: Checkpoint session factory; built from settings when omitted
        content_client: Content repository client; built from settings when omitted

    Returns:
        MigrationPipeline; call close() when done
    """
    engines: List[AsyncEngine] = []
    if session_factory is None:
        engine = build_engine(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            echo=settings.SQL_ECHO,
        )
        engines.append(engine)
        session_factory = build_session_factory(engine)
    if checkpoint_session_factory is None:
        checkpoint_engine = build_engine(settings.CHECKPOINT_DATABASE_URL, pool_size=2, max_overflow=2)
        engines.append(checkpoint_engine)
        checkpoint_session_factory = build_session_factory(checkpoint_engine)

    if content_client is None:
        content_client = AlfrescoClient(
            settings.ALFRESCO_BASE_URL,
            settings.ALFRESCO_USERNAME,
            settings.ALFRESCO_PASSWORD,
            timeout=settings.ALFRESCO_TIMEOUT_SECONDS,
            retry_count=settings.ALFRESCO_RETRY_COUNT,
        )
    client_api = None
    if settings.CLIENT_API_BASE_URL:
        client_api = ClientApi(
            settings.CLIENT_API_BASE_URL,
            timeout=settings.CLIENT_API_TIMEOUT_SECONDS,
            retry_count=settings.CLIENT_API_RETRY_COUNT,
            max_concurrent_requests=settings.CLIENT_API_MAX_CONCURRENT_REQUESTS,
            cache_ttl_seconds=settings.CLIENT_API_CACHE_TTL_SECONDS,
        )
    offer_api = None
    if settings.OFFER_API_BASE_URL:
        offer_api = OfferApi(
            settings.OFFER_API_BASE_URL,
            timeout=settings.OFFER_API_TIMEOUT_SECONDS,
            retry_count=settings.OFFER_API_RETRY_COUNT,
        )
    else:
        logger.info("Offer API not configured, deposit offer matching disabled")

    error_tracker = GlobalErrorTracker(
        max_timeouts=settings.MAX_TIMEOUTS_BEFORE_STOP,
        max_retry_failures=settings.MAX_RETRY_FAILURES_BEFORE_STOP,
        max_total_errors=settings.MAX_TOTAL_ERRORS_BEFORE_STOP,
    )
    enrichment = build_enrichment(client_api)
    mapping_service = DocumentMappingService(session_factory)
    mapper = DocumentMetadataMapper(
        mapping_service,
        DocumentStatusDetector(
            active_codes=settings.ACTIVE_SENTINEL_CODES,
            enable_retention_policy_rule=settings.ENABLE_RETENTION_POLICY_RULE,
        ),
        offer_api=offer_api,
    )
    resolver = DocumentResolver(content_client, content_client, stripe_count=settings.LOCK_STRIPE_COUNT)

    folder_discovery = FolderDiscoveryService(
        content_client,
        session_factory,
        checkpoint_session_factory,
        enrichment,
        root_folder_id=settings.ROOT_DISCOVERY_FOLDER_ID,
        name_filter=settings.FOLDER_NAME_FILTER,
        batch_size=settings.BATCH_SIZE,
        delay_between_batches_ms=settings.DELAY_BETWEEN_BATCHES_MS,
    )
    document_discovery = DocumentDiscoveryService(
        content_client,
        session_factory,
        mapper,
        resolver,
        enrichment,
        destination_root_id=settings.ROOT_DESTINATION_FOLDER_ID,
        error_tracker=error_tracker,
        batch_size=settings.BATCH_SIZE,
        max_degree_of_parallelism=settings.MAX_DEGREE_OF_PARALLELISM,
        page_size=settings.DOCUMENT_PAGE_SIZE,
        idle_delay_ms=settings.IDLE_DELAY_MS,
        delay_between_batches_ms=settings.DELAY_BETWEEN_BATCHES_MS,
        stuck_timeout_minutes=settings.STUCK_ITEMS_TIMEOUT_MINUTES,
    )
    document_search = None
    if settings.MIGRATION_BY_DOCUMENT:
        document_search = DocumentSearchService(
            content_client,
            session_factory,
            checkpoint_session_factory,
            mapper,
            enrichment,
            root_folder_id=settings.ROOT_DISCOVERY_FOLDER_ID,
            doc_types=settings.DOC_SEARCH_DOC_TYPES,
            folder_types=settings.DOC_SEARCH_FOLDER_TYPES,
            batch_size=settings.DOC_SEARCH_BATCH_SIZE,
            date_from=settings.DOC_SEARCH_DATE_FROM,
            date_to=settings.DOC_SEARCH_DATE_TO,
            use_date_filter=settings.DOC_SEARCH_USE_DATE_FILTER,
            max_documents_to_process=settings.MAX_DOCUMENTS_TO_PROCESS,
            error_tracker=error_tracker,
            idle_delay_ms=settings.IDLE_DELAY_MS,
            delay_between_batches_ms=settings.DELAY_BETWEEN_BATCHES_MS,
            max_empty_results=settings.BREAK_EMPTY_RESULTS,
        )
    folder_preparation = FolderPreparationService(
        session_factory,
        checkpoint_session_factory,
        resolver,
        enrichment,
        destination_root_id=settings.ROOT_DESTINATION_FOLDER_ID,
        max_parallelism=settings.FOLDER_PREPARATION_MAX_PARALLELISM,
        checkpoint_interval=settings.FOLDER_PREPARATION_CHECKPOINT_INTERVAL,
        stuck_timeout_minutes=settings.STUCK_ITEMS_TIMEOUT_MINUTES,
    )
    move_service = MoveService(
        session_factory,
        checkpoint_session_factory,
        MoveExecutor(content_client),
        error_tracker=error_tracker,
        batch_size=settings.MOVE_BATCH_SIZE,
        max_degree_of_parallelism=settings.MOVE_MAX_DEGREE_OF_PARALLELISM,
        max_retries=settings.MAX_DOCUMENT_RETRIES,
        idle_delay_ms=settings.IDLE_DELAY_MS,
        delay_between_batches_ms=settings.DELAY_BETWEEN_BATCHES_MS,
        max_empty_results=settings.BREAK_EMPTY_RESULTS,
        stuck_timeout_minutes=settings.STUCK_ITEMS_TIMEOUT_MINUTES,
    )
    type_transformation = None
    if settings.ENABLE_TYPE_TRANSFORMATION:
        type_transformation = DocumentTypeTransformationService(session_factory, writer=content_client)

    worker = MigrationWorker(
        session_factory,
        checkpoint_session_factory,
        folder_discovery,
        document_discovery,
        folder_preparation,
        move_service,
        error_tracker,
        document_search=document_search,
        type_transformation=type_transformation,
        migration_by_document=settings.MIGRATION_BY_DOCUMENT,
        cleanup_incomplete_on_start=settings.CLEANUP_INCOMPLETE_ON_START,
        break_empty_results=settings.BREAK_EMPTY_RESULTS,
    )
    kdp = KdpDocumentService(
        content_client,
        content_client,
        session_factory,
        client_api=client_api,
        error_tracker=error_tracker,
        doc_types=settings.KDP_DOC_TYPES,
        ancestor_folder_id=settings.KDP_ANCESTOR_FOLDER_ID,
        page_size=settings.KDP_PAGE_SIZE,
        stuck_timeout_minutes=settings.STUCK_ITEMS_TIMEOUT_MINUTES,
    )
    return MigrationPipeline(
        worker=worker,
        kdp=kdp,
        content_client=content_client,
        client_api=client_api,
        offer_api=offer_api,
        engines=engines,
    )
