"""Tests for the staging and checkpoint repositories."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from dossier_migration.core.exceptions import PhaseNotFoundError
from dossier_migration.db.models.doc_staging import DocStaging
from dossier_migration.db.models.enums import MigrationPhase, MigrationStatus, PhaseStatus
from dossier_migration.db.models.folder_staging import FolderStaging
from dossier_migration.db.session import unit_of_work
from dossier_migration.repositories.base_repository import MAX_ERROR_LENGTH, truncate_error
from dossier_migration.repositories.doc_staging_repository import DocStagingRepository, UniqueFolderInfo
from dossier_migration.repositories.folder_staging_repository import FolderStagingRepository
from dossier_migration.repositories.phase_checkpoint_repository import PhaseCheckpointRepository


def make_document(node_id: str, **fields) -> DocStaging:
    values = dict(
        node_id=node_id,
        name=f"{node_id}.pdf",
        status=MigrationStatus.READY.value,
        target_dossier_type=500,
        dossier_dest_folder_id="PI-102206",
    )
    values.update(fields)
    return DocStaging(**values)


async def documents_by_node(factory) -> dict:
    async with unit_of_work(factory) as session:
        rows = await DocStagingRepository(session).list_all()
    return {row.node_id: row for row in rows}


def test_truncate_error() -> None:
    """Test error clipping."""
    assert truncate_error(None) == ""
    assert len(truncate_error("x" * (MAX_ERROR_LENGTH + 10))) == MAX_ERROR_LENGTH


def test_unique_folder_info_root_name() -> None:
    """Test root folder names of unique destination folders."""
    assert UniqueFolderInfo(target_dossier_type=300, folder_path="ACC-1").root_folder_name == "DOSSIERS-ACC"
    assert UniqueFolderInfo(target_dossier_type=123, folder_path="X-1").root_folder_name == "DOSSIERS-UNKNOWN"
    assert UniqueFolderInfo(target_dossier_type=500, folder_path="PI-1").cache_key == "500_PI-1"


class TestFolderStagingRepository:
    """Test folder staging operations."""

    @pytest.mark.asyncio
    async def test_insert_ignores_duplicates(self, staging_factory):
        """Test that already staged node ids are skipped."""
        async with unit_of_work(staging_factory) as session:
            repository = FolderStagingRepository(session)
            first = await repository.insert_many_ignore_duplicates(
                [FolderStaging(node_id="a", name="PI1"), FolderStaging(node_id="b", name="PI2")]
            )
            second = await repository.insert_many_ignore_duplicates(
                [FolderStaging(node_id="b", name="PI2"), FolderStaging(node_id="c", name="PI3"),
                 FolderStaging(node_id="c", name="PI3")]
            )
            assert await repository.count() == 3
            assert await repository.count_ready() == 3

        assert first == 2
        assert second == 1

    @pytest.mark.asyncio
    async def test_claim_moves_ready_to_prepared(self, staging_factory):
        """Test that claimed folders are never handed out twice."""
        async with unit_of_work(staging_factory) as session:
            await FolderStagingRepository(session).insert_many_ignore_duplicates(
                [FolderStaging(node_id=f"n{i}", name=f"PI{i}") for i in range(5)]
            )

        async with unit_of_work(staging_factory) as session:
            first = await FolderStagingRepository(session).take_ready_batch(3)
        async with unit_of_work(staging_factory) as session:
            second = await FolderStagingRepository(session).take_ready_batch(3)
        async with unit_of_work(staging_factory) as session:
            third = await FolderStagingRepository(session).take_ready_batch(3)

        assert [f.node_id for f in first] == ["n0", "n1", "n2"]
        assert [f.node_id for f in second] == ["n3", "n4"]
        assert third == []
        assert all(f.status == MigrationStatus.PREPARED.value for f in first + second)

    @pytest.mark.asyncio
    async def test_concurrent_claims_never_overlap(self, staging_factory):
        """Test two workers claiming at the same time on separate sessions."""
        async with unit_of_work(staging_factory) as session:
            await FolderStagingRepository(session).insert_many_ignore_duplicates(
                [FolderStaging(node_id=f"n{i}", name=f"PI{i}") for i in range(10)]
            )
            all_ids = {f.id for f in await FolderStagingRepository(session).list_all()}

        async def worker():
            async with unit_of_work(staging_factory) as session:
                return {f.id for f in await FolderStagingRepository(session).take_ready_batch(6)}

        first, second = await asyncio.gather(worker(), worker())

        assert first.isdisjoint(second)
        assert first | second == all_ids
        async with unit_of_work(staging_factory) as session:
            assert await FolderStagingRepository(session).count_ready() == 0

    @pytest.mark.asyncio
    async def test_claim_selects_again_after_losing_rows(self, staging_factory):
        """Test a claimer whose candidates are taken by a transaction committing first."""
        async with unit_of_work(staging_factory) as session:
            await FolderStagingRepository(session).insert_many_ignore_duplicates(
                [FolderStaging(node_id=f"n{i}", name=f"PI{i}") for i in range(10)]
            )

        async def late_worker():
            async with unit_of_work(staging_factory) as session:
                return [f.node_id for f in await FolderStagingRepository(session).take_ready_batch(6)]

        async with unit_of_work(staging_factory) as session:
            first = [f.node_id for f in await FolderStagingRepository(session).take_ready_batch(6)]
            late = asyncio.create_task(late_worker())
            await asyncio.sleep(0.2)
        second = await late

        assert first == [f"n{i}" for i in range(6)]
        assert second == [f"n{i}" for i in range(6, 10)]

    @pytest.mark.asyncio
    async def test_fail_and_processed(self, staging_factory):
        """Test final folder statuses and cleanup of unfinished folders."""
        async with unit_of_work(staging_factory) as session:
            repository = FolderStagingRepository(session)
            await repository.insert_many_ignore_duplicates(
                [FolderStaging(node_id=n, name=n) for n in ("a", "b", "c")]
            )
            folders = {f.node_id: f for f in await repository.list_all()}
            await repository.mark_processed(folders["a"].id)
            await repository.fail(folders["b"].id, "x" * 5000)

        async with unit_of_work(staging_factory) as session:
            repository = FolderStagingRepository(session)
            counts = await repository.count_by_status()
            assert counts == {"PROCESSED": 1, "ERROR": 1, "READY": 1}
            failed = await repository.get_by_id(folders["b"].id)
            assert len(failed.error) == MAX_ERROR_LENGTH
            assert await repository.count_incomplete() == 1
            assert await repository.delete_incomplete() == 1
            assert await repository.count() == 2

    @pytest.mark.asyncio
    async def test_reset_stuck(self, staging_factory):
        """Test that only old PREPARED folders go back to READY."""
        async with unit_of_work(staging_factory) as session:
            repository = FolderStagingRepository(session)
            await repository.insert_many_ignore_duplicates(
                [FolderStaging(node_id="old", name="PI1"), FolderStaging(node_id="new", name="PI2")]
            )
            await repository.take_ready_batch(10)
            await session.execute(
                update(FolderStaging)
                .where(FolderStaging.node_id == "old")
                .values(updated_at=datetime.now(timezone.utc) - timedelta(hours=2))
            )

        async with unit_of_work(staging_factory) as session:
            assert await FolderStagingRepository(session).reset_stuck(30) == 1
        async with unit_of_work(staging_factory) as session:
            counts = await FolderStagingRepository(session).count_by_status()
        assert counts == {"READY": 1, "PREPARED": 1}


class TestDocStagingRepository:
    """Test document staging operations."""

    @pytest.mark.asyncio
    async def test_unique_destination_folders(self, staging_factory):
        """Test grouping documents by dossier type and folder path."""
        async with unit_of_work(staging_factory) as session:
            await DocStagingRepository(session).insert_many_ignore_duplicates([
                make_document("d1", core_id="102206", original_created_at=datetime(2022, 3, 1)),
                make_document("d2", core_id="102206", original_created_at=datetime(2021, 3, 1)),
                make_document("d3", target_dossier_type=300, dossier_dest_folder_id="ACC-102206"),
                make_document("d4", status=MigrationStatus.DONE.value, dossier_dest_folder_id="PI-999"),
                make_document("d5", dossier_dest_folder_id=None),
            ])

        async with unit_of_work(staging_factory) as session:
            folders = await DocStagingRepository(session).get_unique_destination_folders()

        assert [(f.target_dossier_type, f.folder_path) for f in folders] == [(300, "ACC-102206"), (500, "PI-102206")]
        assert folders[1].core_id == "102206"
        assert folders[1].creation_date.year == 2021

    @pytest.mark.asyncio
    async def test_update_destination_then_claim(self, staging_factory):
        """Test that attached documents become claimable for move."""
        async with unit_of_work(staging_factory) as session:
            repository = DocStagingRepository(session)
            await repository.insert_many_ignore_duplicates([make_document("d1"), make_document("d2")])
            assert await repository.take_ready_for_move(10) == []
            updated = await repository.update_destination_folder_id(500, "PI-102206", "dest-1", True)
            assert updated == 2
            assert await repository.count_ready_for_move() == 2

        async with unit_of_work(staging_factory) as session:
            claimed = await DocStagingRepository(session).take_ready_for_move(1)
        async with unit_of_work(staging_factory) as session:
            rest = await DocStagingRepository(session).take_ready_for_move(10)

        assert [d.node_id for d in claimed] == ["d1"]
        assert [d.node_id for d in rest] == ["d2"]
        assert claimed[0].status == MigrationStatus.IN_PROGRESS.value
        assert claimed[0].destination_folder_id == "dest-1"
        assert claimed[0].dossier_dest_folder_is_created is True

    @pytest.mark.asyncio
    async def test_concurrent_move_claims_never_overlap(self, staging_factory):
        """Test two movers claiming prepared documents at the same time."""
        async with unit_of_work(staging_factory) as session:
            await DocStagingRepository(session).insert_many_ignore_duplicates(
                [make_document(f"d{i}", status=MigrationStatus.PREPARED.value, destination_folder_id="dest")
                 for i in range(10)]
                + [make_document("no-dest", status=MigrationStatus.PREPARED.value)]
            )
        documents = await documents_by_node(staging_factory)
        movable = {d.id for d in documents.values() if d.destination_folder_id}

        async def mover():
            async with unit_of_work(staging_factory) as session:
                return {d.id for d in await DocStagingRepository(session).take_ready_for_move(6)}

        first, second = await asyncio.gather(mover(), mover())

        assert first.isdisjoint(second)
        assert first | second == movable
        documents = await documents_by_node(staging_factory)
        assert documents["no-dest"].status == MigrationStatus.PREPARED.value
        assert all(documents[f"d{i}"].status == MigrationStatus.IN_PROGRESS.value for i in range(10))

    @pytest.mark.asyncio
    async def test_fail_counts_retries_until_failed(self, staging_factory):
        """Test ERROR until the retry limit, then FAILED."""
        async with unit_of_work(staging_factory) as session:
            repository = DocStagingRepository(session)
            await repository.insert_many_ignore_duplicates([make_document("d1")])
            doc = (await repository.list_all())[0]

        statuses = []
        for _ in range(3):
            async with unit_of_work(staging_factory) as session:
                await DocStagingRepository(session).fail(doc.id, "Move returned false", max_retries=3)
            row = (await documents_by_node(staging_factory))["d1"]
            statuses.append((row.status, row.retry_count))

        assert statuses == [("ERROR", 1), ("ERROR", 2), ("FAILED", 3)]
        assert row.error_msg == "Move returned false"

    @pytest.mark.asyncio
    async def test_requeue_and_mark_done(self, staging_factory):
        """Test putting ERROR documents back and finishing them."""
        async with unit_of_work(staging_factory) as session:
            repository = DocStagingRepository(session)
            await repository.insert_many_ignore_duplicates([
                make_document("d1", status=MigrationStatus.ERROR.value, destination_folder_id="dest"),
                make_document("d2", status=MigrationStatus.ERROR.value),
                make_document("d3", status=MigrationStatus.FAILED.value, destination_folder_id="dest"),
            ])
            assert await repository.requeue_errors() == 1

        rows = await documents_by_node(staging_factory)
        assert rows["d1"].status == MigrationStatus.PREPARED.value
        assert rows["d2"].status == MigrationStatus.ERROR.value
        assert rows["d3"].status == MigrationStatus.FAILED.value

        async with unit_of_work(staging_factory) as session:
            assert await DocStagingRepository(session).mark_done([rows["d1"].id]) == 1
            assert await DocStagingRepository(session).mark_done([]) == 0
        assert (await documents_by_node(staging_factory))["d1"].status == MigrationStatus.DONE.value

    @pytest.mark.asyncio
    async def test_reset_stuck_documents(self, staging_factory):
        """Test that old IN PROGRESS documents return to the move queue."""
        async with unit_of_work(staging_factory) as session:
            await DocStagingRepository(session).insert_many_ignore_duplicates([
                make_document(
                    "d1",
                    status=MigrationStatus.IN_PROGRESS.value,
                    destination_folder_id="dest",
                    updated_at=datetime.now(timezone.utc) - timedelta(hours=1),
                ),
                make_document("d2", status=MigrationStatus.IN_PROGRESS.value, destination_folder_id="dest"),
            ])

        async with unit_of_work(staging_factory) as session:
            assert await DocStagingRepository(session).reset_stuck(30) == 1
        rows = await documents_by_node(staging_factory)
        assert rows["d1"].status == MigrationStatus.PREPARED.value
        assert rows["d2"].status == MigrationStatus.IN_PROGRESS.value

    @pytest.mark.asyncio
    async def test_delete_incomplete_keeps_final_rows(self, staging_factory):
        """Test cleanup of unfinished documents."""
        async with unit_of_work(staging_factory) as session:
            repository = DocStagingRepository(session)
            await repository.insert_many_ignore_duplicates([
                make_document("d1"),
                make_document("d2", status=MigrationStatus.DONE.value),
                make_document("d3", status=MigrationStatus.FAILED.value),
            ])
            assert await repository.count_incomplete() == 1
            assert await repository.delete_incomplete() == 1
        assert set(await documents_by_node(staging_factory)) == {"d2", "d3"}


class TestPhaseCheckpointRepository:
    """Test checkpoint bookkeeping."""

    @pytest.mark.asyncio
    async def test_lifecycle(self, checkpoint_factory):
        """Test in progress, progress, completion and reset."""
        async with unit_of_work(checkpoint_factory) as session:
            repository = PhaseCheckpointRepository(session)
            assert len(await repository.list_ordered()) == len(MigrationPhase)
            assert await repository.mark_in_progress(MigrationPhase.MOVE) == 1
            await repository.save_progress(MigrationPhase.MOVE, last_processed_index=2, total_processed=150)
            await repository.save_progress(MigrationPhase.MOVE, total_items=300)

        async with unit_of_work(checkpoint_factory) as session:
            checkpoint = await PhaseCheckpointRepository(session).get(MigrationPhase.MOVE)
            assert checkpoint.status == PhaseStatus.IN_PROGRESS.value
            assert checkpoint.started_at is not None
            assert (checkpoint.last_processed_index, checkpoint.total_processed, checkpoint.total_items) == (2, 150, 300)

        async with unit_of_work(checkpoint_factory) as session:
            repository = PhaseCheckpointRepository(session)
            await repository.mark_completed(MigrationPhase.MOVE)
            await repository.mark_failed(MigrationPhase.FOLDER_PREPARATION, "boom")

        async with unit_of_work(checkpoint_factory) as session:
            repository = PhaseCheckpointRepository(session)
            assert (await repository.get(MigrationPhase.MOVE)).status == PhaseStatus.COMPLETED.value
            failed = await repository.get(MigrationPhase.FOLDER_PREPARATION)
            assert failed.status == PhaseStatus.FAILED.value
            assert failed.error_message == "boom"
            assert await repository.reset() == len(MigrationPhase)

        async with unit_of_work(checkpoint_factory) as session:
            checkpoint = await PhaseCheckpointRepository(session).get(MigrationPhase.MOVE)
            assert checkpoint.status == PhaseStatus.NOT_STARTED.value
            assert checkpoint.total_processed == 0
            assert checkpoint.total_items is None

    @pytest.mark.asyncio
    async def test_doc_types_snapshot_survives_reset(self, checkpoint_factory):
        """Test that the stored document types are kept by a reset."""
        async with unit_of_work(checkpoint_factory) as session:
            repository = PhaseCheckpointRepository(session)
            assert await repository.get_doc_types() is None
            await repository.set_doc_types(["00099", "00824"])
            await repository.reset(MigrationPhase.FOLDER_DISCOVERY)

        async with unit_of_work(checkpoint_factory) as session:
            assert await PhaseCheckpointRepository(session).get_doc_types() == ["00099", "00824"]

    @pytest.mark.asyncio
    async def test_ensure_phases_is_idempotent(self, checkpoint_factory):
        """Test that existing rows are left alone."""
        async with unit_of_work(checkpoint_factory) as session:
            repository = PhaseCheckpointRepository(session)
            await repository.ensure_phases()
            assert await repository.count() == len(MigrationPhase)

    @pytest.mark.asyncio
    async def test_missing_phase_raises(self, staging_factory):
        """Test a database without checkpoint rows."""
        async with unit_of_work(staging_factory) as session:
            with pytest.raises(PhaseNotFoundError):
                await PhaseCheckpointRepository(session).get(MigrationPhase.MOVE)
