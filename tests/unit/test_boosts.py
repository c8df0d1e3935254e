"""Boost aggregation and session cap tests."""

from datetime import datetime, timedelta, timezone

import pytest

from arxledger.ledger.boosts import (
    BoostSnapshot,
    capped_elapsed,
    effective_hourly_rate,
    max_session_award,
    total_boost,
)


class TestTotalBoost:
    """Each source is capped on its own, then the sum is capped."""

    def test_no_boosts(self):
        assert total_boost(BoostSnapshot()) == 0

    def test_referral_streak_and_social_caps(self):
        """Referral 60% counts as 50, streak 40 as 30, social 20 as-is: 100% total."""
        boosts = BoostSnapshot(referral=60, streak=40, social_post=20)
        assert total_boost(boosts) == 100
        assert effective_hourly_rate(total_boost(boosts)) == 20

    def test_social_post_uncapped(self):
        assert total_boost(BoostSnapshot(social_post=180)) == 180

    def test_arena_and_nexus_are_summed(self):
        boosts = BoostSnapshot(arena=[25, 25], nexus=[10, 15], profile_scan=5)
        assert total_boost(boosts) == 80

    def test_total_capped_at_500(self):
        boosts = BoostSnapshot(referral=50, social_post=400, streak=30, arena=[100])
        assert total_boost(boosts) == 500

    def test_negative_inputs_ignored(self):
        assert total_boost(BoostSnapshot(referral=-20, social_post=-5, arena=[-10])) == 0


class TestHourlyRate:
    def test_base_rate(self):
        assert effective_hourly_rate(0) == 10

    def test_rate_capped_at_60(self):
        assert effective_hourly_rate(500) == 60
        assert effective_hourly_rate(400) == 50


class TestSessionAward:
    """Award is floor(hours * rate), capped at 8 hours and 480 points."""

    def test_five_hours_no_boost(self):
        assert max_session_award(timedelta(hours=5), 0) == 50

    def test_partial_hour_floors(self):
        assert max_session_award(timedelta(minutes=90), 0) == 15
        assert max_session_award(timedelta(minutes=59, seconds=59), 0) == 9

    def test_elapsed_capped_at_eight_hours(self):
        assert max_session_award(timedelta(hours=30), 0) == 80

    def test_absolute_ceiling(self):
        assert max_session_award(timedelta(hours=8), 500) == 480

    def test_negative_elapsed_is_zero(self):
        assert max_session_award(timedelta(hours=-2), 100) == 0

    @pytest.mark.parametrize("minutes", [1, 37, 61, 125, 299, 480, 600])
    @pytest.mark.parametrize("boost", [0, 25, 100, 250, 500])
    def test_award_never_exceeds_rate_bound(self, minutes, boost):
        elapsed = timedelta(minutes=minutes)
        hours = min(minutes, 480) / 60
        bound = hours * min(10 * (1 + boost / 100), 60)
        award = max_session_award(elapsed, boost)
        assert award <= bound
        assert award <= 480


class TestCappedElapsed:
    def test_end_before_start(self):
        start = datetime(2026, 3, 1, 12, tzinfo=timezone.utc)
        assert capped_elapsed(start, start - timedelta(minutes=5)) == timedelta(0)

    def test_capped(self):
        start = datetime(2026, 3, 1, 0, tzinfo=timezone.utc)
        assert capped_elapsed(start, start + timedelta(hours=11)) == timedelta(hours=8)
