"""
Celery Tasks for Background Migration

The migration pipeline is async; each task builds a fresh pipeline, runs it
with asyncio.run and closes its clients and engines afterwards.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from celery import Task

from dossier_migration.core.celery_app import celery_app
from dossier_migration.core.config import settings
from dossier_migration.core.exceptions import StagingStoreError
from dossier_migration.db.models.enums import MigrationPhase
from dossier_migration.services.pipeline_factory import build_migration_worker

logger = logging.getLogger(__name__)


async def run_pipeline(reset: bool = False, reset_phase: Optional[int] = None) -> Dict[str, Any]:
    """
    Run the migration pipeline once.

    Args:
        reset: Reset every phase before running
        reset_phase: Reset this phase (1-4) before running

    Returns:
        Final pipeline status and error metrics
    """
    pipeline = build_migration_worker(settings)
    try:
        worker = pipeline.worker
        if reset:
            await worker.reset()
        elif reset_phase is not None:
            await worker.reset_phase(MigrationPhase(reset_phase))
        await worker.run()
        status = await worker.get_status()
        metrics = worker.get_error_metrics()
        return {
            "status": "completed",
            "pipeline": status.to_dict(),
            "errors": {
                "timeouts": metrics.timeout_count,
                "retry_failures": metrics.retry_failure_count,
                "total": metrics.total_error_count,
            },
        }
    finally:
        await pipeline.close()


@celery_app.task(
    bind=True,
    name="run_migration",
    max_retries=3,
    default_retry_delay=60,
)
def run_migration(self: Task, reset: bool = False, reset_phase: Optional[int] = None) -> Dict[str, Any]:
    """
    Run the migration pipeline in a Celery worker.

    Completed phases are skipped, so a retried task resumes where the failed
    one stopped.

    Args:
        reset: Reset every phase before running
        reset_phase: Reset this phase (1-4) before running

    Returns:
        Final pipeline status and error metrics
    """
    logger.info(f"Migration task {self.request.id} started (reset={reset}, reset_phase={reset_phase})")
    self.update_state(state="PROCESSING", meta={"status": "Migration running"})
    try:
        result = asyncio.run(run_pipeline(reset=reset, reset_phase=reset_phase))
    except StagingStoreError as e:
        logger.error(f"Migration task could not reach the staging database: {e}")
        # Retries never reset phases again
        raise self.retry(
            exc=e,
            countdown=min(60 * (2**self.request.retries), 600),
            kwargs={"reset": False, "reset_phase": None},
        )
    except Exception as e:
        logger.error(f"Migration task failed: {e}")
        raise

    logger.info(f"Migration task {self.request.id} completed")
    return result
