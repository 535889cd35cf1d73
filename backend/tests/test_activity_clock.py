"""
Tests for the Activity Clock.

Whole calendar months, never negative, anchored on the latest of join
date, last referral given and reinstatement.
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

from council_engine.services.governance.activity_clock import (
    add_months, escalation_anchor, months_between, months_inactive, tenure_months,
)


class TestMonthsBetween:
    """Tests for months_between."""

    def test_whole_months_only(self):
        """Jan 31 -> Apr 30 is two whole months, not three."""
        assert months_between(datetime(2025, 1, 31), datetime(2025, 4, 30)) == 2

    def test_exact_month_boundary(self):
        assert months_between(datetime(2025, 1, 15), datetime(2025, 4, 15)) == 3

    def test_one_day_short_of_a_month(self):
        assert months_between(datetime(2025, 1, 15), datetime(2025, 2, 14)) == 0

    def test_month_end_to_shorter_month_end(self):
        """Aug 31 -> Feb 28 is five months; the sixth completes on Mar 1."""
        assert months_between(datetime(2024, 8, 31), datetime(2025, 2, 28)) == 5
        assert months_between(datetime(2024, 8, 31), datetime(2025, 3, 1)) == 6

    def test_time_of_day_counts(self):
        assert months_between(datetime(2025, 1, 15, 12), datetime(2025, 2, 15, 11)) == 0
        assert months_between(datetime(2025, 1, 15, 12), datetime(2025, 2, 15, 12)) == 1

    def test_across_years(self):
        assert months_between(datetime(2023, 11, 1), datetime(2025, 2, 1)) == 15

    def test_never_negative(self):
        assert months_between(datetime(2025, 6, 1), datetime(2025, 1, 1)) == 0

    def test_missing_start(self):
        assert months_between(None, datetime(2025, 1, 1)) == 0


class TestAddMonths:
    """Tests for add_months, the inverse used for the reentry date."""

    def test_same_day_when_it_exists(self):
        assert add_months(datetime(2025, 1, 15, 9), 6) == datetime(2025, 7, 15, 9)

    def test_missing_day_rolls_to_next_month(self):
        start = datetime(2024, 8, 31, 12)
        result = add_months(start, 6)
        assert result == datetime(2025, 3, 1)
        assert months_between(start, result) == 6
        assert months_between(start, result - timedelta(seconds=1)) == 5


class TestEscalationAnchor:
    """Tests for the start of the inactivity cycle."""

    def _member(self, joined_at, last_referral=None, reinstated_at=None):
        member = MagicMock()
        member.joined_at = joined_at
        member.last_given_referral_at = last_referral
        member.reinstated_at = reinstated_at
        return member

    def test_falls_back_to_join_date(self):
        member = self._member(datetime(2024, 1, 1))
        assert escalation_anchor(member) == datetime(2024, 1, 1)

    def test_latest_referral_wins(self):
        member = self._member(datetime(2024, 1, 1), last_referral=datetime(2025, 3, 1))
        assert escalation_anchor(member) == datetime(2025, 3, 1)

    def test_reinstatement_starts_a_new_cycle(self):
        """A readmitted member is not charged for the months spent expelled."""
        member = self._member(
            datetime(2023, 1, 1),
            last_referral=datetime(2024, 1, 1),
            reinstated_at=datetime(2025, 2, 1),
        )
        assert escalation_anchor(member) == datetime(2025, 2, 1)
        assert months_inactive(member, datetime(2025, 6, 1)) == 4

    def test_tenure_counts_from_join_date(self):
        member = self._member(datetime(2025, 1, 10), last_referral=datetime(2025, 5, 1))
        assert tenure_months(member, datetime(2025, 6, 10)) == 5
