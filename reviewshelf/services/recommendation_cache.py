"""Two-tier recommendation cache.

Memory tier: a plain dict owned by this object, checked first.
Persistent tier: the ``recommendation_history`` table, which survives
restarts and keeps at most one *active* row per user.

Per user the cache is in one of four states:

* absent: nothing stored, or invalidated;
* memory-only: the persistent write failed, this process still serves it;
* persisted: stored in both tiers (or only in the table after a restart,
  in which case the next read repopulates memory);
* expired: past ``expires_at``; treated as absent and dropped on read.

Expiry is checked lazily on read.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from reviewshelf.domain.entities import CacheEntry, RecommendationResponse
from reviewshelf.domain.exceptions import DataAccessError
from reviewshelf.domain.repositories import IRecommendationHistoryRepository

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


class RecommendationCache:

    def __init__(
        self,
        history_repo: IRecommendationHistoryRepository,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.history_repo = history_repo
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._entries: dict[UUID, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: UUID) -> bool:
        return user_id in self._entries

    async def get(self, user_id: UUID) -> Optional[RecommendationResponse]:
        now = self.clock()
        entry = self._entries.get(user_id)
        if entry is not None:
            if not entry.is_expired(now):
                logger.debug("Cache hit (memory) for %s", user_id)
                return entry.response
            del self._entries[user_id]
            logger.info("Cache entry for %s expired", user_id)

        try:
            record = await self.history_repo.find_active_for_user(user_id, now)
        except DataAccessError as exc:
            logger.warning("Persistent cache read failed for %s: %s", user_id, exc)
            return None
        if record is None or record.is_expired(now):
            logger.info("Cache miss for %s", user_id)
            return None

        self._entries[user_id] = CacheEntry(
            response=record.response,
            created_at=record.created_at,
            expires_at=record.expires_at,
        )
        logger.info("Cache hit (persistent) for %s, memory tier repopulated", user_id)
        return record.response

    async def put(
        self, user_id: UUID, response: RecommendationResponse, persist: bool = True
    ) -> CacheEntry:
        """Store ``response`` in both tiers, superseding any previous entry."""
        now = self.clock()
        entry = CacheEntry(response=response, created_at=now, expires_at=now + self.ttl)
        self._entries[user_id] = entry
        self._purge_expired(now)

        if persist:
            try:
                await self.history_repo.deactivate_for_user(user_id)
                await self.history_repo.create(user_id, response, entry.expires_at)
            except DataAccessError as exc:
                logger.warning(
                    "Persistent cache write failed for %s, continuing memory-only: %s",
                    user_id,
                    exc,
                )
        return entry

    async def invalidate(self, user_id: UUID) -> None:
        self._entries.pop(user_id, None)
        try:
            await self.history_repo.deactivate_for_user(user_id)
        except DataAccessError as exc:
            logger.warning("Persistent cache invalidation failed for %s: %s", user_id, exc)
        logger.info("User recommendation cache invalidated for %s", user_id)

    async def clear_all(self) -> None:
        self._entries.clear()
        try:
            deleted = await self.history_repo.delete_all()
        except DataAccessError as exc:
            logger.warning("Persistent cache clear failed: %s", exc)
        else:
            logger.info("Recommendation cache cleared (%d persisted rows removed)", deleted)

    def evict(self, user_id: UUID) -> None:
        """Drop the memory-tier entry only."""
        self._entries.pop(user_id, None)

    def stats(self) -> dict:
        now = self.clock()
        entries = [
            {
                "user_id": user_id,
                "expires_in_ms": max(0, int((entry.expires_at - now).total_seconds() * 1000)),
            }
            for user_id, entry in self._entries.items()
        ]
        return {"size": len(self._entries), "entries": entries}

    def _purge_expired(self, now: datetime) -> None:
        expired = [uid for uid, entry in self._entries.items() if entry.is_expired(now)]
        for uid in expired:
            del self._entries[uid]
        if expired:
            logger.info("Cleaned up %d expired cache entries", len(expired))
