"""Celery application, with Redis as broker and result backend.

Workers run in a separate process from the API server. The only scheduled
job today is the periodic sweep of expired recommendation sets, driven by
``celery beat``::

    celery -A reviewshelf.infrastructure.tasks.celery_app worker --beat
"""

from celery import Celery

from reviewshelf.core.config import settings

celery_app = Celery(
    "reviewshelf",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["reviewshelf.infrastructure.tasks.cache_tasks"],
)

celery_app.conf.update(
    # Serialisation
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # State tracking
    task_track_started=True,
    result_expires=86400,           # keep results in Redis for 24 h
    # Reliability
    task_acks_late=True,            # ack only after the task finishes, not before
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    # Periodic jobs
    beat_schedule={
        "purge-expired-recommendations": {
            "task": "recommendations.purge_expired_cache",
            "schedule": float(settings.cache_sweep_interval_seconds),
        },
    },
)
