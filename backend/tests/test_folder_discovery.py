"""Tests for FolderDiscoveryService."""
import pytest

from dossier_migration.clients.client_api import ClientData
from dossier_migration.core.exceptions import ContentRepositoryError
from dossier_migration.db.models.enums import MigrationPhase, MigrationStatus
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.folder_staging_repository import FolderStagingRepository
from dossier_migration.repositories.phase_checkpoint_repository import PhaseCheckpointRepository
from dossier_migration.services.client_enrichment import ClientEnrichmentService, DisabledEnrichment
from dossier_migration.services.folder_discovery import (
    FolderDiscoveryService,
    build_folder_staging,
    client_type_from_prefix,
)
from fakes import ROOT_ID, FakeClientApi


def make_service(content, staging_factory, checkpoint_factory, enrichment=None, batch_size=2):
    return FolderDiscoveryService(
        content,
        staging_factory,
        checkpoint_factory,
        enrichment or DisabledEnrichment(),
        root_folder_id=ROOT_ID,
        name_filter="-",
        batch_size=batch_size,
    )


async def staged_folders(factory):
    async with unit_of_work(factory) as session:
        rows = await FolderStagingRepository(session).list_all()
    return {row.node_id: row for row in rows}


def test_build_folder_staging_from_name() -> None:
    """Test classification of a source folder by its name."""
    folder = build_folder_staging("n1", "PI102206", parent_id="root")

    assert folder.status == MigrationStatus.READY.value
    assert folder.core_id == "102206"
    assert folder.client_type == "FL"
    assert folder.client_segment == "PI"
    assert folder.target_dossier_type == 500
    assert folder.source == "Heimdall"
    assert folder.dossier_dest_folder_id == "PI-102206"


def test_build_folder_staging_prefers_properties() -> None:
    """Test that repository properties override name derived values."""
    folder = build_folder_staging(
        "n1",
        "DE500342",
        properties={"ecm:coreId": "777", "ecm:bnkNumberOfContract": "C-1", "ecm:bnkTypeOfProduct": "00010"},
    )
    assert folder.core_id == "777"
    assert folder.target_dossier_type == 700
    assert folder.source == "DUT"
    assert folder.contract_number == "C-1"
    assert folder.product_type == "00010"
    assert client_type_from_prefix("LE1") == "PL"
    assert client_type_from_prefix("ACC1") is None


def test_query_escapes_values(content) -> None:
    """Test the folder query text."""
    service = FolderDiscoveryService(content, None, None, DisabledEnrichment(), root_folder_id="a-b", name_filter="-")
    assert service.build_query() == 'PARENT:"a\\-b" AND TYPE:"cm:folder" AND cm:name:*\\-*'


@pytest.mark.asyncio
async def test_discovers_matching_folders(content, staging_factory, checkpoint_factory) -> None:
    """Test paging through the root and staging only matching folders."""
    for name in ("PI-1", "PI-2", "LE-3", "NOHYPHEN", "ACC-4"):
        content.add_folder(ROOT_ID, name, node_id=name)
    content.add_document(ROOT_ID, "stray-file.pdf")

    service = make_service(content, staging_factory, checkpoint_factory)
    total = await service.run_loop()

    folders = await staged_folders(staging_factory)
    assert total == 4
    assert set(folders) == {"PI-1", "PI-2", "LE-3", "ACC-4"}
    assert all(f.status == MigrationStatus.READY.value for f in folders.values())

    async with unit_of_work(checkpoint_factory) as session:
        checkpoint = await PhaseCheckpointRepository(session).get(MigrationPhase.FOLDER_DISCOVERY)
    assert checkpoint.last_processed_index == 4
    assert checkpoint.total_processed == 4


@pytest.mark.asyncio
async def test_resumes_from_checkpoint(content, staging_factory, checkpoint_factory) -> None:
    """Test that a second run continues at the saved offset without duplicates."""
    for name in ("PI-1", "PI-2", "PI-3"):
        content.add_folder(ROOT_ID, name, node_id=name)

    first = make_service(content, staging_factory, checkpoint_factory)
    result = await first.run_batch()
    assert result.inserted == 2
    assert result.has_more

    second = make_service(content, staging_factory, checkpoint_factory)
    total = await second.run_loop()

    assert total == 3
    assert len(await staged_folders(staging_factory)) == 3
    assert second.skip == 3


@pytest.mark.asyncio
async def test_page_failure_propagates(content, staging_factory, checkpoint_factory) -> None:
    """Test that a failing page query is raised and earlier pages stay staged."""
    for name in ("PI-1", "PI-2", "PI-3"):
        content.add_folder(ROOT_ID, name, node_id=name)
    service = make_service(content, staging_factory, checkpoint_factory)
    await service.run_batch()
    content.search_failures = 1

    with pytest.raises(ContentRepositoryError):
        await service.run_loop()
    assert len(await staged_folders(staging_factory)) == 2


@pytest.mark.asyncio
async def test_enriches_folders(content, staging_factory, checkpoint_factory) -> None:
    """Test client enrichment of staged folders."""
    content.add_folder(ROOT_ID, "PI-102206", node_id="f1")
    client_api = FakeClientApi(clients={
        "102206": ClientData(coreId="102206", clientName="Petar Petrović", clientType="FL", segment="RETAIL"),
    })
    service = make_service(content, staging_factory, checkpoint_factory, ClientEnrichmentService(client_api))

    await service.run_loop()

    folder = (await staged_folders(staging_factory))["f1"]
    assert folder.client_name == "Petar Petrović"
    assert folder.segment == "RETAIL"
