"""Tests for DocumentDiscoveryService."""
import pytest

from dossier_migration.core.exceptions import ContentRepositoryTimeoutError, MigrationError
from dossier_migration.db.models.enums import MigrationStatus
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.doc_staging_repository import DocStagingRepository
from dossier_migration.repositories.folder_staging_repository import FolderStagingRepository
from dossier_migration.services.client_enrichment import DisabledEnrichment
from dossier_migration.services.document_discovery import DocumentDiscoveryService, root_folder_name_for
from dossier_migration.services.document_mapper import DocumentMetadataMapper
from dossier_migration.services.document_mapping_service import DocumentMappingService
from dossier_migration.services.document_resolver import DocumentResolver
from dossier_migration.services.document_status_detector import DocumentStatusDetector
from dossier_migration.services.error_tracker import GlobalErrorTracker
from dossier_migration.services.folder_discovery import build_folder_staging
from fakes import ROOT_ID


@pytest.fixture
def tree(content):
    """Source folders PI102206 and LE500342 with documents, plus a destination root."""
    content.add_folder(ROOT_ID, "Destination", node_id="dest-root")
    content.add_folder(ROOT_ID, "PI102206", node_id="src-pi")
    content.add_document("src-pi", "gdpr.pdf", {"ecm:docDesc": "GDPR saglasnost", "ecm:docType": "00253"}, node_id="d1")
    content.add_document("src-pi", "package.pdf", {"ecm:docDesc": "Account Package", "ecm:docType": "00102"}, node_id="d2")
    content.add_folder("src-pi", "nested", node_id="src-pi-nested")
    content.add_folder(ROOT_ID, "LE500342", node_id="src-le")
    content.add_document("src-le", "kyc.pdf", {"ecm:docDesc": "KYC Questionnaire for LE", "ecm:docType": "00130"}, node_id="d3")
    return content


def make_service(content, staging_factory, error_tracker=None, page_size=100):
    mapper = DocumentMetadataMapper(DocumentMappingService(staging_factory), DocumentStatusDetector())
    return DocumentDiscoveryService(
        content,
        staging_factory,
        mapper,
        DocumentResolver(content, content),
        DisabledEnrichment(),
        destination_root_id="dest-root",
        error_tracker=error_tracker,
        batch_size=10,
        max_degree_of_parallelism=2,
        page_size=page_size,
        idle_delay_ms=0,
    )


async def stage_folders(factory, *pairs):
    async with unit_of_work(factory) as session:
        await FolderStagingRepository(session).insert_many_ignore_duplicates(
            [build_folder_staging(node_id, name, parent_id=ROOT_ID) for node_id, name in pairs]
        )


async def load_rows(factory):
    async with unit_of_work(factory) as session:
        folders = {f.node_id: f for f in await FolderStagingRepository(session).list_all()}
        documents = {d.node_id: d for d in await DocStagingRepository(session).list_all()}
    return folders, documents


def test_root_folder_name_for() -> None:
    """Test root folder names of stored dossier types."""
    assert root_folder_name_for(500) == "DOSSIERS-PI"
    assert root_folder_name_for(42) == "DOSSIERS-UNKNOWN"


@pytest.mark.asyncio
async def test_stages_documents_of_claimed_folders(tree, staging_factory) -> None:
    """Test that every document of every ready folder is staged once."""
    await stage_folders(staging_factory, ("src-pi", "PI102206"), ("src-le", "LE500342"))
    service = make_service(tree, staging_factory, page_size=1)

    total = await service.run_loop(max_empty_results=1)

    folders, documents = await load_rows(staging_factory)
    assert total == 3
    assert set(documents) == {"d1", "d2", "d3"}
    assert all(f.status == MigrationStatus.PROCESSED.value for f in folders.values())
    assert all(d.status == MigrationStatus.READY.value for d in documents.values())

    pi_root = tree.child_named("dest-root", "DOSSIERS-PI").id
    acc_root = tree.child_named("dest-root", "DOSSIERS-ACC").id
    le_root = tree.child_named("dest-root", "DOSSIERS-LE").id
    assert documents["d1"].to_path == f"{pi_root}/PI-102206"
    assert documents["d2"].to_path == f"{acc_root}/ACC-102206"
    assert documents["d3"].to_path == f"{le_root}/LE-500342"
    assert documents["d3"].target_dossier_type == 400


@pytest.mark.asyncio
async def test_rerun_inserts_nothing_new(tree, staging_factory) -> None:
    """Test that rediscovering a folder does not duplicate its documents."""
    await stage_folders(staging_factory, ("src-pi", "PI102206"))
    await make_service(tree, staging_factory).run_loop(max_empty_results=1)

    async with unit_of_work(staging_factory) as session:
        folder = (await FolderStagingRepository(session).list_all())[0]
    service = make_service(tree, staging_factory)
    assert await service.process_folder(folder) == 0

    _, documents = await load_rows(staging_factory)
    assert len(documents) == 2


@pytest.mark.asyncio
async def test_failing_folder_does_not_stop_batch(tree, staging_factory) -> None:
    """Test that one failing folder is marked ERROR and the other proceeds."""
    await stage_folders(staging_factory, ("src-pi", "PI102206"), ("src-le", "LE500342"))
    original = tree.get_children

    async def get_children(folder_id, skip=0, take=100):
        if folder_id == "src-le":
            raise RuntimeError("listing failed")
        return await original(folder_id, skip, take)

    tree.get_children = get_children
    result = await make_service(tree, staging_factory).run_batch()

    folders, documents = await load_rows(staging_factory)
    assert result.folders_claimed == 2
    assert result.folders_processed == 1
    assert result.folders_failed == 1
    assert folders["src-le"].status == MigrationStatus.ERROR.value
    assert folders["src-le"].error == "listing failed"
    assert folders["src-pi"].status == MigrationStatus.PROCESSED.value
    assert set(documents) == {"d1", "d2"}


@pytest.mark.asyncio
async def test_stops_when_error_threshold_reached(tree, staging_factory) -> None:
    """Test that repeated timeouts stop discovery."""
    await stage_folders(staging_factory, ("src-pi", "PI102206"))

    async def get_children(folder_id, skip=0, take=100):
        raise ContentRepositoryTimeoutError("get_children", 60)

    tree.get_children = get_children
    tracker = GlobalErrorTracker(max_timeouts=1)

    with pytest.raises(MigrationError):
        await make_service(tree, staging_factory, error_tracker=tracker).run_loop(max_empty_results=3)
    assert tracker.timeout_count == 1
