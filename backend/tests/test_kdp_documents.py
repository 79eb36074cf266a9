"""Tests for the KDP document load, classification and property update."""
import asyncio
from typing import Dict

import pytest
import pytest_asyncio

from dossier_migration.core.config import Settings
from dossier_migration.core.exceptions import ContentRepositoryTimeoutError
from dossier_migration.db.models.enums import KdpAction, MigrationStatus
from dossier_migration.db.models.kdp_document import KdpDocument
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.kdp_document_repository import KdpDocumentRepository
from dossier_migration.services.kdp_documents import (
    AMBIGUOUS_NEWEST,
    NO_ACC_FOLDER,
    KdpDocumentService,
    acc_folder_from_path,
    build_update_properties,
)
from dossier_migration.services.pipeline_factory import build_migration_worker
from fakes import ROOT_ID, FakeClientApi, FakeContentRepository


def kdp(doc_type, status, created):
    return {"ecm:docType": doc_type, "ecm:docStatus": status, "ecm:docCreationDate": created}


@pytest.fixture
def tree(content):
    content.add_folder(ROOT_ID, "Klijenti", node_id="clients")
    content.add_folder("clients", "ACC-100", node_id="acc100")
    content.add_folder("clients", "ACC-200", node_id="acc200")
    content.add_folder("clients", "ACC-300", node_id="acc300")
    content.add_folder(ROOT_ID, "Arhiva", node_id="archive")

    content.add_document("acc100", "kdp-2022.pdf", kdp("00824", "1", "2022-01-01T09:00:00.000+0000"), node_id="k1")
    content.add_document("acc100", "kdp-2023.pdf", kdp("00824", "1", "2023-03-01T09:00:00.000+0000"), node_id="k2")
    content.add_document("acc100", "kdp-2021.pdf", kdp("00824", "2", "2021-06-01T09:00:00.000+0000"), node_id="k3")
    content.add_document("acc200", "kdp.pdf", kdp("00099", "1", "2024-01-01T09:00:00.000+0000"), node_id="k4")
    content.add_document("acc300", "kdp-a.pdf", kdp("00824", "1", "2023-05-05T10:00:00.000+0000"), node_id="k5")
    content.add_document("acc300", "kdp-b.pdf", kdp("00824", "1", "2023-05-05T10:00:00.000+0000"), node_id="k6")
    content.add_document("archive", "kdp-loose.pdf", kdp("00824", "1", "2020-01-01T09:00:00.000+0000"), node_id="k7")
    content.add_document("acc100", "gdpr.pdf", kdp("00849", "1", "2023-01-01T09:00:00.000+0000"), node_id="other")
    return content


def make_service(content, staging_factory, client_api=None, **kwargs):
    return KdpDocumentService(content, content, staging_factory, client_api=client_api, **kwargs)


async def staged_rows(staging_factory) -> Dict[str, KdpDocument]:
    async with unit_of_work(staging_factory) as session:
        return {row.node_id: row for row in await KdpDocumentRepository(session).list_ordered()}


@pytest_asyncio.fixture
async def classified(tree, staging_factory):
    service = make_service(tree, staging_factory, client_api=FakeClientApi(accounts={"100": ["160-1", "160-2"]}))
    await service.load_to_staging()
    counts = await service.classify()
    return service, counts


def test_acc_folder_from_path() -> None:
    """Test that the innermost ACC folder is taken from the path."""
    assert acc_folder_from_path("/Company Home/Klijenti/ACC-100") == "ACC-100"
    assert acc_folder_from_path("/Company Home/ACC-1/Stari/ACC-22") == "ACC-22"
    assert acc_folder_from_path("/Company Home/Arhiva") is None
    assert acc_folder_from_path(None) is None


def test_update_properties_per_action() -> None:
    """Test the properties written for each action."""
    activate = KdpDocument(action=KdpAction.ACTIVATE.value, account_numbers="160-1")
    assert build_update_properties(activate) == {
        "ecm:docStatus": "1",
        "ecm:docType": "00099",
        "ecm:docTypeCode": "00099",
        "ecm:docTypeName": "KDP za fizička lica",
        "ecm:docAccountNumbers": "160-1",
    }
    assert "ecm:docAccountNumbers" not in build_update_properties(KdpDocument(action=KdpAction.ACTIVATE.value))
    assert build_update_properties(KdpDocument(action=KdpAction.DEACTIVATE.value)) == {"ecm:docStatus": "2"}
    assert build_update_properties(KdpDocument(action=KdpAction.NONE.value)) == {}


@pytest.mark.asyncio
async def test_load_stages_only_kdp_documents(tree, staging_factory) -> None:
    """Test that loading stages KDP types with their ACC folder and creation date."""
    service = make_service(tree, staging_factory)
    assert await service.load_to_staging() == 7

    rows = await staged_rows(staging_factory)
    assert set(rows) == {"k1", "k2", "k3", "k4", "k5", "k6", "k7"}
    assert rows["k2"].acc_folder_name == "ACC-100"
    assert rows["k2"].core_id == "100"
    assert rows["k2"].parent_folder_id == "acc100"
    assert rows["k2"].parent_folder_name == "ACC-100"
    assert rows["k2"].created_date.year == 2023
    assert rows["k7"].acc_folder_name is None
    assert all(row.status == MigrationStatus.READY.value for row in rows.values())
    assert 'TYPE:"cm:content"' in tree.queries[-1]
    assert "ANCESTOR" not in tree.queries[-1]


@pytest.mark.asyncio
async def test_reload_replaces_staging(tree, staging_factory) -> None:
    """Test that a second load starts from an empty table and honours the ancestor filter."""
    await make_service(tree, staging_factory).load_to_staging()

    loaded = await make_service(tree, staging_factory, ancestor_folder_id="acc300", page_size=1).load_to_staging()

    assert loaded == 2
    assert set(await staged_rows(staging_factory)) == {"k5", "k6"}
    assert 'ANCESTOR:"acc300"' in tree.queries[-1]


@pytest.mark.asyncio
async def test_classify_keeps_newest_document_active(classified, staging_factory) -> None:
    """Test the per ACC folder decision."""
    _, counts = classified
    assert counts == {"NONE": 3, "ACTIVATE": 3, "DEACTIVATE": 1, "exceptions": 2}

    rows = await staged_rows(staging_factory)
    assert rows["k2"].action == KdpAction.ACTIVATE
    assert rows["k2"].account_numbers == "160-1,160-2"
    assert rows["k1"].action == KdpAction.DEACTIVATE
    # Already inactive or already active
    assert rows["k3"].action == KdpAction.NONE
    assert rows["k4"].action == KdpAction.NONE
    assert rows["k3"].status == MigrationStatus.DONE.value
    # Two documents share the newest date
    assert rows["k5"].is_exception and rows["k6"].is_exception
    assert rows["k5"].update_message == AMBIGUOUS_NEWEST
    assert rows["k7"].action == KdpAction.NONE
    assert rows["k7"].update_message == NO_ACC_FOLDER


@pytest.mark.asyncio
async def test_update_writes_properties_and_skips_exceptions(classified, staging_factory, tree) -> None:
    """Test that only pending documents are updated and each row records its result."""
    service, _ = classified
    seen = []

    result = await service.update_documents(
        batch_size=10, delay_between_batches_ms=0, progress_callback=lambda p: seen.append(p.processed)
    )

    assert (result.total_processed, result.succeeded, result.failed) == (2, 2, 0)
    assert seen == [2]
    assert {node_id for node_id, _ in tree.property_updates} == {"k1", "k2"}
    assert tree.nodes["k2"].properties["ecm:docType"] == "00099"
    assert tree.nodes["k2"].properties["ecm:docAccountNumbers"] == "160-1,160-2"
    assert tree.nodes["k1"].properties["ecm:docStatus"] == "2"
    assert tree.nodes["k5"].properties["ecm:docType"] == "00824"

    rows = await staged_rows(staging_factory)
    assert rows["k2"].status == MigrationStatus.DONE.value
    assert rows["k2"].update_message == "OK: activate"
    assert rows["k1"].update_message == "OK: deactivate"
    assert rows["k5"].status == MigrationStatus.READY.value

    again = await service.update_documents(delay_between_batches_ms=0)
    assert again.total_processed == 0


@pytest.mark.asyncio
async def test_update_records_failures_per_document(classified, staging_factory, tree, error_tracker) -> None:
    """Test that a failed update marks only its own row."""
    service, _ = classified
    service.error_tracker = error_tracker
    tree.failing_property_updates["k1"] = ContentRepositoryTimeoutError("update_node_properties", 60)

    result = await service.update_documents(delay_between_batches_ms=0)

    assert (result.succeeded, result.failed) == (1, 1)
    rows = await staged_rows(staging_factory)
    assert rows["k1"].status == MigrationStatus.ERROR.value
    assert rows["k1"].update_message.startswith("FAILED: ")
    assert rows["k2"].status == MigrationStatus.DONE.value
    assert error_tracker.timeout_count == 1


@pytest.mark.asyncio
async def test_update_of_missing_node_fails(classified, staging_factory, tree) -> None:
    """Test that a node deleted since the load is reported as not found."""
    service, _ = classified
    del tree.nodes["k2"]

    result = await service.update_documents(delay_between_batches_ms=0)

    assert result.failed == 1
    assert (await staged_rows(staging_factory))["k2"].update_message == "FAILED: node not found"


class CountingContentRepository(FakeContentRepository):
    """Records the highest number of simultaneous property updates."""

    def __init__(self):
        super().__init__()
        self.active = 0
        self.max_active = 0

    async def update_node_properties(self, node_id, properties):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0.01)
            return await super().update_node_properties(node_id, properties)
        finally:
            self.active -= 1


@pytest.mark.asyncio
async def test_update_concurrency_is_bounded(staging_factory) -> None:
    """Test that at most max_degree_of_parallelism updates run at once."""
    content = CountingContentRepository()
    content.add_folder(ROOT_ID, "ACC-9", node_id="acc9")
    rows = []
    for index in range(12):
        node_id = content.add_document("acc9", f"kdp-{index}.pdf", node_id=f"n{index}")
        rows.append(KdpDocument(node_id=node_id, acc_folder_name="ACC-9", action=KdpAction.DEACTIVATE.value))
    async with unit_of_work(staging_factory) as session:
        await KdpDocumentRepository(session).insert_many_ignore_duplicates(rows)

    service = make_service(content, staging_factory)
    seen = []
    result = await service.update_documents(
        batch_size=5,
        max_degree_of_parallelism=3,
        delay_between_batches_ms=0,
        progress_callback=lambda p: seen.append(p.processed),
    )

    assert result.succeeded == 12
    assert content.max_active == 3
    assert seen == [5, 10, 12]
    progress = await service.get_progress()
    assert (progress.total, progress.processed, progress.batches) == (12, 12, 3)


def test_pipeline_builds_kdp_service(staging_factory, checkpoint_factory, content) -> None:
    """Test that the factory wires the KDP service from settings."""
    settings = Settings(KDP_DOC_TYPES=["00824"], KDP_ANCESTOR_FOLDER_ID="acc100", CLIENT_API_BASE_URL="")

    pipeline = build_migration_worker(settings, staging_factory, checkpoint_factory, content_client=content)

    assert isinstance(pipeline.kdp, KdpDocumentService)
    assert pipeline.kdp.writer is content
    assert pipeline.kdp.client_api is None
    assert pipeline.kdp.build_query() == '(=ecm\\:docType:"00824") AND TYPE:"cm:content" AND ANCESTOR:"acc100"'
