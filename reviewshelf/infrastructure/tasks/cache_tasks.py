"""Celery task wrappers for recommendation-cache maintenance.

Each task is a thin synchronous wrapper around the async coroutine defined in
``reviewshelf.services.background_tasks``.

Retry policy: up to 3 additional attempts, 60 s apart. A missed sweep is
harmless since expiry is also enforced on read.
"""

import asyncio
import logging

from reviewshelf.infrastructure.tasks.celery_app import celery_app
from reviewshelf.services.background_tasks import purge_expired_recommendations_task

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="recommendations.purge_expired_cache", max_retries=3)
def purge_expired_cache(self) -> int:
    """Celery task: delete expired rows from the persistent cache tier."""
    try:
        return asyncio.run(purge_expired_recommendations_task())
    except Exception as exc:
        logger.warning(
            "purge_expired_cache failed (attempt %d/%d): %s",
            self.request.retries + 1,
            self.max_retries + 1,
            exc,
        )
        raise self.retry(exc=exc, countdown=60)
