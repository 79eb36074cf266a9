"""Celery application for background migration runs."""
from celery import Celery

from dossier_migration.core.config import settings

celery_app = Celery(
    "dossier_migration",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["dossier_migration.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # A migration run holds its claims until it finishes
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)
