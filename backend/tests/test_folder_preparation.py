"""Tests for FolderPreparationService."""
import pytest
import pytest_asyncio

from dossier_migration.core.exceptions import ContentRepositoryError
from dossier_migration.db.models.doc_staging import DocStaging
from dossier_migration.db.models.enums import MigrationPhase, MigrationStatus
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.doc_staging_repository import DocStagingRepository
from dossier_migration.repositories.phase_checkpoint_repository import PhaseCheckpointRepository
from dossier_migration.services.client_enrichment import DisabledEnrichment
from dossier_migration.services.document_resolver import DocumentResolver
from dossier_migration.services.folder_preparation import FolderPreparationService
from fakes import ROOT_ID


def doc(node_id, dossier_type, path, core_id, product_type=None, status=MigrationStatus.READY):
    return DocStaging(
        node_id=node_id,
        name=f"{node_id}.pdf",
        status=status.value,
        target_dossier_type=dossier_type,
        dossier_dest_folder_id=path,
        core_id=core_id,
        product_type=product_type,
    )


@pytest_asyncio.fixture
async def staged_documents(staging_factory):
    async with unit_of_work(staging_factory) as session:
        await DocStagingRepository(session).insert_many_ignore_duplicates([
            doc("d1", 500, "PI-102206", "102206"),
            doc("d2", 500, "PI-102206", "102206"),
            doc("d3", 700, "DE-500342-00008_12345", "500342", product_type="00008"),
            doc("d4", 400, "LE-777/2021", "777"),
            doc("d5", 500, "PI-999", "999", status=MigrationStatus.DONE),
        ])


@pytest.fixture
def destination(content):
    return content.add_folder(ROOT_ID, "Destination", node_id="dest-root")


def make_service(content, staging_factory, checkpoint_factory):
    return FolderPreparationService(
        staging_factory,
        checkpoint_factory,
        DocumentResolver(content, content),
        DisabledEnrichment(),
        destination_root_id="dest-root",
        max_parallelism=4,
        checkpoint_interval=2,
    )


async def documents_by_node(factory):
    async with unit_of_work(factory) as session:
        return {d.node_id: d for d in await DocStagingRepository(session).list_all()}


def properties_of(content, name):
    return [call["properties"] for call in content.create_calls if call["name"] == name]


@pytest.mark.asyncio
async def test_creates_hierarchies_and_prepares_documents(
    content, destination, staged_documents, staging_factory, checkpoint_factory
) -> None:
    """Test folder creation under the type roots and the PREPARED transition."""
    service = make_service(content, staging_factory, checkpoint_factory)

    handled = await service.prepare_all_folders()

    assert handled == 3
    assert service.errors == []
    assert service.get_progress() == (3, 3)

    pi_root = content.child_named(destination, "DOSSIERS-PI")
    pi_folder = content.child_named(pi_root.id, "PI-102206")
    le_folder = content.child_named(content.child_named(destination, "DOSSIERS-LE").id, "LE-777")
    year_folder = content.child_named(le_folder.id, "2021")
    assert pi_folder is not None
    assert year_folder is not None
    assert content.child_named(pi_root.id, "PI-999") is None

    assert properties_of(content, "DOSSIERS-PI") == [None]
    assert properties_of(content, "PI-102206") == [
        {"ecm:coreId": "102206", "ecm:bnkSource": "Heimdall", "ecm:source": "Heimdall"}
    ]
    assert properties_of(content, "2021") == [None]

    documents = await documents_by_node(staging_factory)
    for node_id in ("d1", "d2"):
        assert documents[node_id].status == MigrationStatus.PREPARED.value
        assert documents[node_id].destination_folder_id == pi_folder.id
        assert documents[node_id].dossier_dest_folder_is_created is True
    assert documents["d4"].destination_folder_id == year_folder.id
    assert documents["d5"].status == MigrationStatus.DONE.value
    assert documents["d5"].destination_folder_id is None

    async with unit_of_work(checkpoint_factory) as session:
        checkpoint = await PhaseCheckpointRepository(session).get(MigrationPhase.FOLDER_PREPARATION)
    assert checkpoint.total_items == 3
    assert checkpoint.last_processed_index == 3


@pytest.mark.asyncio
async def test_deposit_properties_come_from_folder_name(
    content, destination, staged_documents, staging_factory, checkpoint_factory
) -> None:
    """Test that deposit folders carry product type, contract and DUT source."""
    await make_service(content, staging_factory, checkpoint_factory).prepare_all_folders()

    assert properties_of(content, "DE-500342-00008_12345") == [{
        "ecm:coreId": "500342",
        "ecm:bnkTypeOfProduct": "00008",
        "ecm:productType": "00008",
        "ecm:bnkNumberOfContract": "12345",
        "ecm:contractNumber": "12345",
        "ecm:bnkSource": "DUT",
        "ecm:source": "DUT",
    }]


@pytest.mark.asyncio
async def test_rerun_creates_no_duplicates(
    content, destination, staged_documents, staging_factory, checkpoint_factory
) -> None:
    """Test that preparing again finds the existing folders."""
    await make_service(content, staging_factory, checkpoint_factory).prepare_all_folders()
    node_count = len(content.nodes)
    async with unit_of_work(checkpoint_factory) as session:
        await PhaseCheckpointRepository(session).reset(MigrationPhase.FOLDER_PREPARATION)

    handled = await make_service(content, staging_factory, checkpoint_factory).prepare_all_folders()

    assert handled == 3
    assert len(content.nodes) == node_count
    documents = await documents_by_node(staging_factory)
    assert documents["d1"].status == MigrationStatus.PREPARED.value
    assert documents["d1"].dossier_dest_folder_is_created is False


@pytest.mark.asyncio
async def test_resumes_after_checkpoint(
    content, destination, staged_documents, staging_factory, checkpoint_factory
) -> None:
    """Test that a completed checkpoint position skips handled folders."""
    await make_service(content, staging_factory, checkpoint_factory).prepare_all_folders()
    calls = len(content.create_calls)

    handled = await make_service(content, staging_factory, checkpoint_factory).prepare_all_folders()

    assert handled == 3
    assert len(content.create_calls) == calls


@pytest.mark.asyncio
async def test_folder_errors_are_collected(
    content, destination, staged_documents, staging_factory, checkpoint_factory
) -> None:
    """Test that one failing hierarchy does not stop the others."""
    original = content.create_folder

    async def create_folder(parent_id, name, properties=None, node_type=None):
        if name == "DOSSIERS-LE":
            raise ContentRepositoryError("Access denied", status_code=403)
        return await original(parent_id, name, properties, node_type)

    content.create_folder = create_folder
    service = make_service(content, staging_factory, checkpoint_factory)

    handled = await service.prepare_all_folders()

    assert handled == 3
    assert service.errors == ["DOSSIERS-LE/LE-777/2021: Access denied"]
    documents = await documents_by_node(staging_factory)
    assert documents["d4"].status == MigrationStatus.READY.value
    assert documents["d1"].status == MigrationStatus.PREPARED.value


@pytest.mark.asyncio
async def test_no_documents(content, destination, staging_factory, checkpoint_factory) -> None:
    """Test an empty staging table."""
    service = make_service(content, staging_factory, checkpoint_factory)
    assert await service.prepare_all_folders() == 0
    assert await service.get_total_folder_count() == 0
