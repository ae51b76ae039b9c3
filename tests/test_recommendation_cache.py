"""Two-tier cache: read-through, supersede-on-write, expiry, degraded store."""

import asyncio
from uuid import uuid4

import pytest

from conftest import NOW
from reviewshelf.domain.entities import (
    PreferenceSnapshot,
    RecommendationItem,
    RecommendationMetadata,
    RecommendationResponse,
    RecommendationSource,
)
from reviewshelf.services.recommendation_cache import RecommendationCache


def make_response(user_id, title="Dune"):
    return RecommendationResponse(
        recommendations=[
            RecommendationItem(
                title=title,
                author="Frank Herbert",
                reason="Classic",
                confidence=0.5,
                source=RecommendationSource.FALLBACK,
            )
        ],
        metadata=RecommendationMetadata(
            user_id=user_id,
            source=RecommendationSource.FALLBACK,
            user_preferences=PreferenceSnapshot(),
            generated_at=NOW,
        ),
    )


def test_put_then_get_from_memory(cache, user_id):
    response = make_response(user_id)
    asyncio.run(cache.put(user_id, response))

    assert asyncio.run(cache.get(user_id)) is response
    assert user_id in cache


def test_miss_for_unknown_user(cache):
    assert asyncio.run(cache.get(uuid4())) is None


def test_put_supersedes_previous_persistent_entry(cache, history_repo, user_id, clock):
    asyncio.run(cache.put(user_id, make_response(user_id, "First")))
    asyncio.run(cache.put(user_id, make_response(user_id, "Second")))
    asyncio.run(cache.put(uuid4(), make_response(user_id, "Other user")))

    assert len(history_repo.records) == 3
    assert asyncio.run(history_repo.count_active(clock())) == 2
    active = asyncio.run(history_repo.find_active_for_user(user_id, clock()))
    assert active.response.recommendations[0].title == "Second"


def test_persistent_tier_repopulates_memory(history_repo, user_id, clock):
    response = make_response(user_id)
    asyncio.run(RecommendationCache(history_repo, clock=clock).put(user_id, response))

    # a fresh process: empty memory tier, same table
    restarted = RecommendationCache(history_repo, clock=clock)
    assert user_id not in restarted

    found = asyncio.run(restarted.get(user_id))

    assert found.recommendations[0].title == "Dune"
    assert user_id in restarted
    assert restarted.stats()["entries"][0]["expires_in_ms"] == 3600 * 1000


def test_entry_expires_after_ttl(cache, user_id, clock):
    asyncio.run(cache.put(user_id, make_response(user_id)))

    clock.advance(minutes=59)
    assert asyncio.run(cache.get(user_id)) is not None

    clock.advance(minutes=1)
    assert asyncio.run(cache.get(user_id)) is None
    assert user_id not in cache


def test_invalidate_clears_both_tiers(cache, history_repo, user_id, clock):
    asyncio.run(cache.put(user_id, make_response(user_id)))
    asyncio.run(cache.invalidate(user_id))

    assert user_id not in cache
    assert asyncio.run(history_repo.find_active_for_user(user_id, clock())) is None
    assert asyncio.run(cache.get(user_id)) is None
    # rows are kept for history
    assert len(history_repo.records) == 1


def test_clear_all(cache, history_repo):
    for _ in range(3):
        uid = uuid4()
        asyncio.run(cache.put(uid, make_response(uid)))

    asyncio.run(cache.clear_all())

    assert len(cache) == 0
    assert history_repo.records == []


def test_persistent_failures_degrade_to_memory_only(cache, history_repo, user_id):
    history_repo.fail = True
    response = make_response(user_id)

    asyncio.run(cache.put(user_id, response))
    assert asyncio.run(cache.get(user_id)) is response

    asyncio.run(cache.invalidate(user_id))
    assert asyncio.run(cache.get(user_id)) is None
    asyncio.run(cache.clear_all())


def test_memory_only_put_skips_persistent_tier(cache, history_repo, user_id):
    asyncio.run(cache.put(user_id, make_response(user_id), persist=False))

    assert history_repo.records == []
    assert user_id in cache


def test_stats_report_remaining_ttl(cache, user_id, clock):
    asyncio.run(cache.put(user_id, make_response(user_id)))
    clock.advance(minutes=10)

    stats = cache.stats()

    assert stats["size"] == 1
    assert stats["entries"] == [{"user_id": user_id, "expires_in_ms": 50 * 60 * 1000}]


def test_expired_entries_purged_on_write(cache, clock):
    stale = uuid4()
    asyncio.run(cache.put(stale, make_response(stale)))
    clock.advance(hours=2)

    fresh = uuid4()
    asyncio.run(cache.put(fresh, make_response(fresh)))

    assert stale not in cache
    assert fresh in cache


@pytest.mark.parametrize("ttl", [1, 60])
def test_custom_ttl(history_repo, clock, user_id, ttl):
    cache = RecommendationCache(history_repo, ttl_seconds=ttl, clock=clock)
    asyncio.run(cache.put(user_id, make_response(user_id)))

    clock.advance(seconds=ttl)

    assert asyncio.run(cache.get(user_id)) is None
