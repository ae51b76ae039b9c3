"""Preference analyzer: genre/author scoring, rating buckets, eligibility."""

import asyncio
from datetime import datetime, timedelta

import pytest

from conftest import NOW, make_book, make_favorite, make_review
from reviewshelf.domain.exceptions import DataAccessError
from reviewshelf.services.preference_service import (
    PreferenceService,
    months_before,
    rating_bucket,
)


@pytest.fixture
def service(activity_repo, clock):
    return PreferenceService(activity_repo, clock=clock)


def test_favorites_outrank_a_single_high_rated_review(service, activity_repo, user_id):
    review_book = make_book("Dune", "Frank Herbert", "A")
    activity_repo.reviews.append(make_review(user_id, review_book, 5))
    for title in ("B1", "B2"):
        activity_repo.favorites.append(make_favorite(user_id, make_book(title, "X", "B")))

    profile = asyncio.run(service.analyze(user_id))

    assert profile.favorite_genres == ["B", "A"]


def test_rating_distribution_rounds_and_clamps(service, activity_repo, user_id):
    for rating in (0.5, 5.5, 3.7, 4.2):
        activity_repo.reviews.append(make_review(user_id, make_book("T", "A", "G"), rating))

    profile = asyncio.run(service.analyze(user_id))

    assert profile.rating_distribution == {1: 1, 2: 0, 3: 0, 4: 2, 5: 1}


@pytest.mark.parametrize(
    "rating,bucket",
    [(0.5, 1), (1.49, 1), (2.5, 3), (3.7, 4), (4.2, 4), (5.5, 5), (-2, 1), (9, 5)],
)
def test_rating_bucket(rating, bucket):
    assert rating_bucket(rating) == bucket


def test_preferred_authors_need_two_books_and_high_average(service, activity_repo, user_id):
    for rating in (5, 4):
        activity_repo.reviews.append(make_review(user_id, make_book("X book", "Author X", "G"), rating))
    for rating in (2, 3):
        activity_repo.reviews.append(make_review(user_id, make_book("Y book", "Author Y", "G"), rating))
    activity_repo.reviews.append(make_review(user_id, make_book("Z book", "Author Z", "G"), 5))

    profile = asyncio.run(service.analyze(user_id))

    assert profile.preferred_authors == ["Author X"]


def test_preferred_authors_sorted_by_average_then_count(service, activity_repo, user_id):
    for rating in (4, 4, 4):
        activity_repo.reviews.append(make_review(user_id, make_book("b", "Steady", "G"), rating))
    for rating in (5, 5):
        activity_repo.reviews.append(make_review(user_id, make_book("b", "Top", "G"), rating))
    for rating in (4, 4):
        activity_repo.reviews.append(make_review(user_id, make_book("b", "Less", "G"), rating))

    profile = asyncio.run(service.analyze(user_id))

    assert profile.preferred_authors == ["Top", "Steady", "Less"]


def test_recent_genres_only_use_last_six_months(service, activity_repo, user_id):
    old = NOW - timedelta(days=300)
    activity_repo.reviews.append(make_review(user_id, make_book("Old", "A", "History"), 3, old))
    activity_repo.reviews.append(make_review(user_id, make_book("New", "B", "Poetry"), 3))

    profile = asyncio.run(service.analyze(user_id))

    assert profile.recent_genres == ["Poetry"]
    assert set(profile.favorite_genres) == {"History", "Poetry"}


def test_missing_book_join_only_counts_toward_rating_stats(service, activity_repo, user_id):
    activity_repo.reviews.append(make_review(user_id, None, 5))
    activity_repo.reviews.append(make_review(user_id, make_book("Kept", "K", "Drama"), 3))
    activity_repo.favorites.append(make_favorite(user_id, None))

    profile = asyncio.run(service.analyze(user_id))

    assert profile.total_reviews == 2
    assert profile.average_rating == pytest.approx(4.0)
    assert profile.favorite_genres == ["Drama"]
    assert profile.high_rated_books == []


def test_high_rated_books_newest_first_and_capped(service, activity_repo, user_id):
    for i in range(12):
        book = make_book(f"Book {i}", "A", "G")
        activity_repo.reviews.append(make_review(user_id, book, 4.5, NOW - timedelta(days=i)))

    profile = asyncio.run(service.analyze(user_id))

    assert len(profile.high_rated_books) == 10
    assert profile.high_rated_books[0].title == "Book 0"
    assert profile.high_rated_books[0].genre == "G"


def test_only_fifty_most_recent_reviews_are_analyzed(service, activity_repo, user_id):
    for i in range(60):
        activity_repo.reviews.append(
            make_review(user_id, make_book("b", "a", "G"), 2, NOW - timedelta(hours=i))
        )

    profile = asyncio.run(service.analyze(user_id))

    assert profile.total_reviews == 50


def test_empty_user_profile(service, user_id):
    profile = asyncio.run(service.analyze(user_id))

    assert profile.favorite_genres == []
    assert profile.average_rating == 0.0
    assert profile.total_reviews == 0
    assert profile.reading_patterns.has_genre_preference is True
    assert profile.reading_patterns.is_selective_reader is False


def test_reading_patterns(service, activity_repo, user_id):
    genres = ["A", "B", "C", "D", "E"]
    for i in range(10):
        book = make_book(f"b{i}", "a", genres[i % 5])
        activity_repo.reviews.append(make_review(user_id, book, 4.5))

    patterns = asyncio.run(service.analyze(user_id)).reading_patterns

    assert patterns.is_selective_reader is True
    assert patterns.is_active_reviewer is True
    # five genres, each with a 20% share
    assert patterns.has_genre_preference is False


def test_genre_preference_uses_raw_occurrences(service, activity_repo, user_id):
    loved = make_book("Loved", "a", "A")
    activity_repo.reviews.append(make_review(user_id, loved, 5))
    activity_repo.favorites.append(make_favorite(user_id, loved))
    for genre in ["B", "C", "D", "E"]:
        activity_repo.reviews.append(make_review(user_id, make_book(genre, "a", genre), 2))

    patterns = asyncio.run(service.analyze(user_id)).reading_patterns

    # "A" is 2 of 6 tags; its weighted score would be 4 of 8
    assert patterns.has_genre_preference is False


def test_analyze_propagates_data_access_errors(service, activity_repo, user_id):
    activity_repo.fail = True
    with pytest.raises(DataAccessError):
        asyncio.run(service.analyze(user_id))


def test_eligibility_thresholds(service, activity_repo, user_id):
    assert asyncio.run(service.has_enough_data_for_personalization(user_id)) is False

    activity_repo.favorites.append(make_favorite(user_id, make_book("f1", "a", "G")))
    assert asyncio.run(service.has_enough_data_for_personalization(user_id)) is False

    activity_repo.favorites.append(make_favorite(user_id, make_book("f2", "a", "G")))
    assert asyncio.run(service.has_enough_data_for_personalization(user_id)) is True


def test_three_reviews_make_a_user_eligible(service, activity_repo, user_id):
    for i in range(3):
        activity_repo.reviews.append(make_review(user_id, make_book(f"r{i}", "a", "G"), 3))
    assert asyncio.run(service.has_enough_data_for_personalization(user_id)) is True


def test_eligibility_fails_closed(service, activity_repo, user_id):
    for i in range(5):
        activity_repo.reviews.append(make_review(user_id, make_book(f"r{i}", "a", "G"), 3))
    activity_repo.fail = True
    assert asyncio.run(service.has_enough_data_for_personalization(user_id)) is False


def test_reviewed_books(service, activity_repo, user_id):
    activity_repo.reviews.append(make_review(user_id, make_book("Dune", "Frank Herbert"), 4))
    activity_repo.reviews.append(make_review(user_id, None, 4))

    assert asyncio.run(service.get_user_reviewed_books(user_id)) == ["Dune by Frank Herbert"]

    activity_repo.fail = True
    assert asyncio.run(service.get_user_reviewed_books(user_id)) == []


def test_months_before_clamps_day():
    assert months_before(datetime(2025, 8, 31, 9, 30), 6) == datetime(2025, 2, 28, 9, 30)
    assert months_before(datetime(2025, 3, 15), 6) == datetime(2024, 9, 15)
