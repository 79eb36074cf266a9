"""
Migration Control API Endpoints

Status, run, reset and error metrics of the migration pipeline. Runs are
queued as Celery tasks; the endpoints themselves only touch checkpoints.
"""

import logging
from typing import AsyncGenerator, Optional

from celery.result import AsyncResult
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from dossier_migration.core.config import settings
from dossier_migration.core.exceptions import PhaseNotFoundError
from dossier_migration.db.models.enums import MigrationPhase
from dossier_migration.services.migration_worker import MigrationWorker
from dossier_migration.services.pipeline_factory import build_migration_worker
from dossier_migration.workers.tasks import run_migration

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/migration", tags=["migration"])


async def get_migration_worker() -> AsyncGenerator[MigrationWorker, None]:
    """Dependency providing a wired MigrationWorker, closed after the request."""
    pipeline = build_migration_worker(settings)
    try:
        yield pipeline.worker
    finally:
        await pipeline.close()


class PipelineStatusResponse(BaseModel):
    """Derived pipeline progress."""

    current_phase: str
    current_phase_number: int
    status: str
    progress_percent: float
    phase_progress_percent: int
    started_at: Optional[str] = None
    elapsed_seconds: Optional[float] = None
    total_processed: int
    error_message: Optional[str] = None
    status_message: str


class RunMigrationRequest(BaseModel):
    """Options for a queued run."""

    reset: bool = False
    """Reset every phase before running"""

    reset_phase: Optional[int] = None
    """Reset a single phase (1-4) before running"""


class RunMigrationResponse(BaseModel):
    task_id: str
    message: str
    status: str = "queued"


class TaskStatusResponse(BaseModel):
    task_id: str
    state: str
    status: Optional[str] = None
    result: Optional[dict] = None
    error: Optional[str] = None


class ResetResponse(BaseModel):
    reset_phases: int
    message: str


class ErrorMetricsResponse(BaseModel):
    """Global error tracker counters of this process."""

    timeout_count: int
    retry_failure_count: int
    total_error_count: int
    max_timeouts: int
    max_retry_failures: int
    max_total_errors: int
    timeout_percentage: float
    retry_failure_percentage: float
    total_error_percentage: float
    should_stop: bool


def _parse_phase(phase: int) -> MigrationPhase:
    try:
        return MigrationPhase(phase)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown phase {phase}, expected 1-{len(MigrationPhase)}",
        )


@router.get("/status", response_model=PipelineStatusResponse)
async def get_status(worker: MigrationWorker = Depends(get_migration_worker)) -> PipelineStatusResponse:
    """
    Current phase, its status and the overall progress.

    Returns:
        Pipeline status derived from the phase checkpoints
    """
    try:
        pipeline_status = await worker.get_status()
    except PhaseNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return PipelineStatusResponse(**pipeline_status.to_dict())


@router.post("/run", response_model=RunMigrationResponse, status_code=status.HTTP_202_ACCEPTED)
async def run(request: Optional[RunMigrationRequest] = None) -> RunMigrationResponse:
    """
    Queue a migration run.

    Completed phases are skipped. Use the task id with `/migration/tasks/{task_id}`
    to follow the run.

    Args:
        request: Optional reset options

    Returns:
        Celery task id
    """
    request = request or RunMigrationRequest()
    if request.reset_phase is not None:
        _parse_phase(request.reset_phase)

    task = run_migration.apply_async(kwargs={"reset": request.reset, "reset_phase": request.reset_phase})
    logger.info(f"Queued migration run {task.id} (reset={request.reset}, reset_phase={request.reset_phase})")
    return RunMigrationResponse(task_id=task.id, message="Migration run queued")


@router.get("/tasks/{task_id}", response_model=TaskStatusResponse)
async def get_task_status(task_id: str) -> TaskStatusResponse:
    """State of a queued migration run."""
    task_result = AsyncResult(task_id, app=run_migration.app)
    response = TaskStatusResponse(task_id=task_id, state=task_result.state)

    if task_result.state == "PENDING":
        response.status = "Waiting to start..."
    elif task_result.state in ("STARTED", "PROCESSING"):
        info = task_result.info if isinstance(task_result.info, dict) else {}
        response.status = info.get("status", "Running...")
    elif task_result.state == "SUCCESS":
        response.result = task_result.result
        response.status = "Completed successfully"
    elif task_result.state == "FAILURE":
        response.error = str(task_result.info)
        response.status = "Failed"
    else:
        response.status = f"Unknown state: {task_result.state}"
    return response


@router.post("/reset", response_model=ResetResponse)
async def reset(worker: MigrationWorker = Depends(get_migration_worker)) -> ResetResponse:
    """Return every phase to NOT_STARTED."""
    count = await worker.reset()
    return ResetResponse(reset_phases=count, message="All phases reset")


@router.post("/reset/{phase}", response_model=ResetResponse)
async def reset_phase(phase: int, worker: MigrationWorker = Depends(get_migration_worker)) -> ResetResponse:
    """
    Return a single phase to NOT_STARTED.

    Args:
        phase: Phase number, 1 (folder discovery) to 4 (move)
    """
    migration_phase = _parse_phase(phase)
    try:
        count = await worker.reset_phase(migration_phase)
    except PhaseNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return ResetResponse(reset_phases=count, message=f"Phase {migration_phase.display_name} reset")


@router.get("/errors", response_model=ErrorMetricsResponse)
async def get_errors(worker: MigrationWorker = Depends(get_migration_worker)) -> ErrorMetricsResponse:
    """Error tracker counters and how close they are to their stop thresholds."""
    metrics = worker.get_error_metrics()
    return ErrorMetricsResponse(
        timeout_count=metrics.timeout_count,
        retry_failure_count=metrics.retry_failure_count,
        total_error_count=metrics.total_error_count,
        max_timeouts=metrics.max_timeouts,
        max_retry_failures=metrics.max_retry_failures,
        max_total_errors=metrics.max_total_errors,
        timeout_percentage=metrics.timeout_percentage,
        retry_failure_percentage=metrics.retry_failure_percentage,
        total_error_percentage=metrics.total_error_percentage,
        should_stop=metrics.should_stop,
    )
