"""Tests for the Celery migration task."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dossier_migration.db.models.enums import MigrationPhase, PhaseStatus
from dossier_migration.services.error_tracker import GlobalErrorTracker
from dossier_migration.services.migration_worker import PipelineStatus
from dossier_migration.workers.tasks import run_migration, run_pipeline


def fake_pipeline():
    worker = MagicMock()
    worker.reset = AsyncMock(return_value=4)
    worker.reset_phase = AsyncMock(return_value=1)
    worker.run = AsyncMock()
    worker.get_status = AsyncMock(return_value=PipelineStatus(
        current_phase=MigrationPhase.MOVE,
        status=PhaseStatus.COMPLETED,
        progress_percent=100.0,
        phase_progress_percent=100,
        started_at=None,
        elapsed=None,
        total_processed=42,
        error_message=None,
        status_message="Migration completed successfully",
    ))
    worker.get_error_metrics = MagicMock(return_value=GlobalErrorTracker().get_metrics())
    pipeline = MagicMock(worker=worker)
    pipeline.close = AsyncMock()
    return pipeline


@pytest.mark.asyncio
async def test_run_pipeline_resets_phase_then_runs() -> None:
    """Test a run with a single phase reset."""
    pipeline = fake_pipeline()
    with patch("dossier_migration.workers.tasks.build_migration_worker", return_value=pipeline):
        result = await run_pipeline(reset_phase=3)

    pipeline.worker.reset_phase.assert_awaited_once_with(MigrationPhase.FOLDER_PREPARATION)
    pipeline.worker.reset.assert_not_awaited()
    pipeline.worker.run.assert_awaited_once()
    pipeline.close.assert_awaited_once()
    assert result["status"] == "completed"
    assert result["pipeline"]["total_processed"] == 42
    assert result["errors"] == {"timeouts": 0, "retry_failures": 0, "total": 0}


@pytest.mark.asyncio
async def test_run_pipeline_closes_on_failure() -> None:
    """Test that clients are closed when the run fails."""
    pipeline = fake_pipeline()
    pipeline.worker.run.side_effect = RuntimeError("boom")
    with patch("dossier_migration.workers.tasks.build_migration_worker", return_value=pipeline):
        with pytest.raises(RuntimeError):
            await run_pipeline(reset=True)

    pipeline.worker.reset.assert_awaited_once()
    pipeline.close.assert_awaited_once()


def test_task_returns_pipeline_result() -> None:
    """Test the task body run eagerly."""
    with patch("dossier_migration.workers.tasks.run_pipeline", new=AsyncMock(return_value={"status": "completed"})) as run, \
            patch.object(run_migration, "update_state"):
        result = run_migration.apply(kwargs={"reset": True})

    assert result.successful()
    assert result.get() == {"status": "completed"}
    run.assert_awaited_once_with(reset=True, reset_phase=None)


def test_task_failure_propagates() -> None:
    """Test that a failed run marks the task as failed."""
    with patch("dossier_migration.workers.tasks.run_pipeline", new=AsyncMock(side_effect=RuntimeError("boom"))), \
            patch.object(run_migration, "update_state"):
        result = run_migration.apply()

    assert result.failed()
    assert isinstance(result.result, RuntimeError)
