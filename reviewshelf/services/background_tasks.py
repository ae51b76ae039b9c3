"""Async implementations of background work.

These coroutines hold the logic executed by Celery workers. Each one opens
its own DB sessions through the NullPool worker session maker, independent
of any request lifecycle.

The Celery task wrappers in ``reviewshelf.infrastructure.tasks.cache_tasks``
call these with ``asyncio.run()``, which is safe because each worker process
runs its own event loop.
"""

import logging
from datetime import datetime
from typing import Optional

from reviewshelf.infrastructure.database.connection import worker_session_maker
from reviewshelf.infrastructure.database.repository import RecommendationHistoryRepository

logger = logging.getLogger(__name__)


async def purge_expired_recommendations_task(now: Optional[datetime] = None) -> int:
    """Delete persisted recommendation sets whose TTL has passed.

    Expiry is also checked lazily on every read, so this sweep only reclaims
    storage; skipping a run never serves stale data.
    """
    now = now or datetime.utcnow()
    logger.info("BG-TASK: purging recommendation sets expired before %s", now.isoformat())
    try:
        repo = RecommendationHistoryRepository(worker_session_maker)
        deleted = await repo.delete_expired(now)
    except Exception as exc:
        logger.error("BG-TASK: recommendation purge failed: %s", exc, exc_info=True)
        raise
    logger.info("BG-TASK: purged %d expired recommendation sets", deleted)
    return deleted
