from __future__ import annotations

import pytest

from database.models import PremiumState, RatingBucket


@pytest.mark.parametrize("stored", [float("nan"), float("inf"), float("-inf"), "30", True, None])
def test_malformed_auto_close_falls_back_to_zero(stored) -> None:
    state = PremiumState.from_dict(1, {"isPremium": True, "features": {"autoCloseMinutes": stored}})

    assert state.features.auto_close_minutes == 0
    assert state.is_premium is True


def test_auto_close_is_clamped() -> None:
    assert PremiumState.from_dict(1, {"features": {"autoCloseMinutes": 9999}}).features.auto_close_minutes == 1440
    assert PremiumState.from_dict(1, {"features": {"autoCloseMinutes": 12.7}}).features.auto_close_minutes == 12


@pytest.mark.parametrize("stored", [None, "5,4", {"a": 5}, 7])
def test_rating_bucket_ignores_non_list_reviews(stored) -> None:
    bucket = RatingBucket.from_dict({"reviews": stored, "count": 3, "avg": 4.5})

    assert (bucket.reviews, bucket.count, bucket.avg) == ([], 0, 0.0)


def test_rating_bucket_skips_bad_scores() -> None:
    bucket = RatingBucket.from_dict({"reviews": [5, "4", None, float("nan"), True, 3.0]})

    assert bucket.reviews == [5, 3]
    assert bucket.avg == 4.0
