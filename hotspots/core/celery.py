"""Celery app for scheduled and on-demand clustering."""

from celery import Celery
from celery.schedules import crontab

from hotspots.core.config import settings

celery_app = Celery(
    "hotspots",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# A task must finish before the run lock's TTL lets another run in
_HARD_TIME_LIMIT = settings.clustering_lock_timeout_seconds
_SOFT_TIME_LIMIT = max(1, _HARD_TIME_LIMIT - 60)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    timezone="UTC",
    enable_utc=True,

    task_track_started=True,
    task_time_limit=_HARD_TIME_LIMIT,
    task_soft_time_limit=_SOFT_TIME_LIMIT,

    result_expires=3600,

    # Clustering is CPU-bound; one task at a time per worker
    worker_prefetch_multiplier=1,

    task_routes={
        "hotspots.workers.clustering.*": {"queue": "clustering"},
    },
    task_default_queue="default",

    task_acks_late=True,
    task_reject_on_worker_lost=True,

    beat_schedule={
        "cluster-hotspots": {
            "task": "hotspots.workers.clustering.cluster_hotspots",
            "schedule": crontab(minute=f"*/{settings.clustering_schedule_minutes}"),
            "options": {"queue": "clustering"},
        },
    },
)

# Import worker modules to register tasks with Celery.
import hotspots.workers.clustering  # noqa: F401, E402
