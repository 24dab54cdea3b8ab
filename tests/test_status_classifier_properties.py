"""
Property-based tests for the lifecycle status classifier.

Uses Hypothesis to check the classification boundaries against a fixed
reference time.
"""

from datetime import datetime, timedelta, timezone

from hypothesis import given, settings
from hypothesis import strategies as st

from domain_resolver.enums import LifecycleStatus
from domain_resolver.status_classifier import (
    classify,
    classify_status,
    days_left,
    has_availability_marker,
)


NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

registered_tokens = st.lists(
    st.sampled_from([
        "active",
        "client transfer prohibited",
        "serverDeleteProhibited",
        "ok",
        "pendingDelete",
        "redemption period",
    ]),
    max_size=4,
)


class TestClassifierExamples:
    """Concrete cases every caller relies on."""

    def test_expired_yesterday(self) -> None:
        assert classify(NOW - timedelta(days=1), [], 30, now=NOW) == LifecycleStatus.EXPIRED

    def test_expiring_within_threshold(self) -> None:
        assert classify(NOW + timedelta(days=5), [], 30, now=NOW) == LifecycleStatus.EXPIRING

    def test_active_beyond_threshold(self) -> None:
        assert classify(NOW + timedelta(days=400), [], 30, now=NOW) == LifecycleStatus.ACTIVE

    def test_free_token_wins_over_expiration(self) -> None:
        assert classify(NOW + timedelta(days=400), ["free"], 30, now=NOW) == LifecycleStatus.AVAILABLE
        assert classify(NOW - timedelta(days=400), ["free"], 30, now=NOW) == LifecycleStatus.AVAILABLE

    def test_missing_expiration_is_unknown(self) -> None:
        assert classify(None, ["active"], 30, now=NOW) == LifecycleStatus.UNKNOWN

    def test_threshold_day_itself_is_expiring(self) -> None:
        assert classify(NOW + timedelta(days=30), [], 30, now=NOW) == LifecycleStatus.EXPIRING
        assert classify(NOW + timedelta(days=31), [], 30, now=NOW) == LifecycleStatus.ACTIVE

    def test_partial_day_rounds_down(self) -> None:
        # 12 hours left is day 0, not expired
        assert days_left(NOW + timedelta(hours=12), now=NOW) == 0
        # 12 hours past is day -1
        assert days_left(NOW - timedelta(hours=12), now=NOW) == -1

    def test_naive_dates_are_treated_as_utc(self) -> None:
        naive = (NOW + timedelta(days=10)).replace(tzinfo=None)
        assert classify(naive, [], 5, now=NOW) == LifecycleStatus.ACTIVE

    def test_classify_status_alias(self) -> None:
        assert classify_status is classify


class TestClassifierProperties:
    """
    Property tests for the day arithmetic.

    For any expiration date and threshold, the classification agrees with
    floor((expiration - now) / 86400) compared against 0 and the threshold.
    """

    @given(
        offset_seconds=st.integers(min_value=-10 * 365 * 86400, max_value=10 * 365 * 86400),
        threshold=st.integers(min_value=0, max_value=365),
        tokens=registered_tokens,
    )
    @settings(max_examples=100)
    def test_classification_matches_day_arithmetic(
        self, offset_seconds: int, threshold: int, tokens: list[str]
    ) -> None:
        expiration = NOW + timedelta(seconds=offset_seconds)
        remaining = offset_seconds // 86400

        status = classify(expiration, tokens, threshold, now=NOW)

        if remaining < 0:
            assert status == LifecycleStatus.EXPIRED
        elif remaining <= threshold:
            assert status == LifecycleStatus.EXPIRING
        else:
            assert status == LifecycleStatus.ACTIVE

    @given(
        marker=st.sampled_from(["free", "available", "AVAILABLE", "Is Free", "available for registration"]),
        others=registered_tokens,
        offset_days=st.one_of(st.none(), st.integers(min_value=-1000, max_value=1000)),
    )
    @settings(max_examples=100)
    def test_availability_marker_always_wins(
        self, marker: str, others: list[str], offset_days
    ) -> None:
        expiration = None if offset_days is None else NOW + timedelta(days=offset_days)
        tokens = others + [marker]

        assert has_availability_marker(tokens)
        assert classify(expiration, tokens, 30, now=NOW) == LifecycleStatus.AVAILABLE

    @given(tokens=registered_tokens, threshold=st.integers(min_value=0, max_value=365))
    @settings(max_examples=100)
    def test_no_expiration_without_marker_is_unknown(
        self, tokens: list[str], threshold: int
    ) -> None:
        assert classify(None, tokens, threshold, now=NOW) == LifecycleStatus.UNKNOWN
