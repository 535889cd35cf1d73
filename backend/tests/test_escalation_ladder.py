"""
Tests for the Escalation Ladder.

Tests the inactivity ladder end to end:
1. Pure evaluation: thresholds, tenure gate, skipped stages, cycles
2. Warnings are issued in strictly increasing order, never repeated
3. Level 4 opens a review case instead of writing a warning
4. Re-runs with unchanged inputs write nothing
5. A referral starts a new cycle
"""
from datetime import timedelta
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest
from dateutil.relativedelta import relativedelta

from council_engine.models.db_models import (
    CaseStatus, InactivityWarningDB, MemberStatus, ReviewCaseDB, TriggerType,
)
from council_engine.services.governance import MemberNotActive
from council_engine.services.governance.escalation_ladder import (
    EscalationAction, EscalationLadder, WarningRecord, evaluate,
)
from council_engine.services.governance.review_cases import ReviewCaseEngine

from conftest import NOW


def _member(months_inactive: int, tenure: int = 12, status=MemberStatus.ACTIVE):
    member = MagicMock()
    member.id = str(uuid4())
    member.status = status
    member.joined_at = NOW - relativedelta(months=tenure)
    member.last_given_referral_at = NOW - relativedelta(months=months_inactive)
    member.reinstated_at = None
    return member


@pytest.fixture
def ladder(db, dispatcher, committee_provider):
    engine = ReviewCaseEngine(db, dispatcher=dispatcher, committee_provider=committee_provider)
    return EscalationLadder(db, dispatcher=dispatcher, case_engine=engine)


# =============================================================================
# TEST: PURE EVALUATION
# =============================================================================

class TestEvaluate:
    """Tests for evaluate()."""

    def test_non_active_member_rejected(self):
        """Escalation on a member under review is a precondition violation."""
        with pytest.raises(MemberNotActive):
            evaluate(_member(6, status=MemberStatus.UNDER_REVIEW), [], NOW)

    def test_young_member_skipped(self):
        """Members with less than 3 months of tenure are never escalated."""
        member = _member(0, tenure=2)
        member.last_given_referral_at = None
        decision = evaluate(member, [], NOW)
        assert decision.action == EscalationAction.NONE
        assert decision.reason == "tenure_below_minimum"

    def test_active_referrer_gets_nothing(self):
        decision = evaluate(_member(2), [], NOW)
        assert decision.action == EscalationAction.NONE

    @pytest.mark.parametrize("months,level,warning_type", [
        (3, 1, "first_warning"),
        (4, 2, "second_warning"),
        (5, 3, "final_warning"),
    ])
    def test_thresholds(self, months, level, warning_type):
        history = [WarningRecord(lv) for lv in range(1, level)]
        decision = evaluate(_member(months), history, NOW)
        assert decision.action == EscalationAction.WARNING
        assert decision.level == level
        assert decision.stage["type"] == warning_type

    def test_six_months_opens_case(self):
        decision = evaluate(_member(6), [WarningRecord(1), WarningRecord(2), WarningRecord(3)], NOW)
        assert decision.action == EscalationAction.OPEN_CASE
        assert decision.level == 4

    def test_skipped_stages_not_replayed(self):
        """After downtime only the most advanced stage is issued."""
        decision = evaluate(_member(5), [], NOW)
        assert decision.level == 3

    def test_already_issued_level_not_repeated(self):
        decision = evaluate(_member(3), [WarningRecord(1)], NOW)
        assert decision.action == EscalationAction.NONE
        assert decision.highest_issued == 1

    def test_previous_cycle_history_ignored(self):
        """Warnings from before the last referral do not count in the new cycle."""
        member = _member(3)
        old_cycle = member.last_given_referral_at - relativedelta(months=8)
        history = [WarningRecord(3, cycle_started_at=old_cycle)]
        decision = evaluate(member, history, NOW)
        assert decision.level == 1

    def test_case_in_cycle_counts_as_level_four(self):
        """An absolved member is not re-sent to the committee for the same inactivity."""
        member = _member(7)
        history = [WarningRecord(4, cycle_started_at=member.last_given_referral_at)]
        decision = evaluate(member, history, NOW)
        assert decision.action == EscalationAction.NONE


# =============================================================================
# TEST: LADDER WRITES
# =============================================================================

class TestEscalationLadder:
    """Tests for EscalationLadder.apply against the database."""

    def test_monotonic_progression(self, db, ladder, make_member):
        """Monthly runs issue levels 1, 2, 3 in order, then open a case."""
        member = make_member(last_given_referral_at=NOW - relativedelta(months=3))

        results = [ladder.apply(member, NOW + relativedelta(months=i)) for i in range(4)]

        assert [r["action"] for r in results] == ["warning", "warning", "warning", "open_case"]
        warnings = db.query(InactivityWarningDB).filter(
            InactivityWarningDB.member_id == member.id
        ).order_by(InactivityWarningDB.created_at).all()
        assert [w.level for w in warnings] == [1, 2, 3]
        assert member.warning_level == 3

        case = db.query(ReviewCaseDB).filter(ReviewCaseDB.member_id == member.id).one()
        assert case.trigger_type == TriggerType.INACTIVITY
        assert case.trigger_details["months_inactive"] == 6
        assert case.cycle_started_at == member.last_given_referral_at
        assert member.status == MemberStatus.UNDER_REVIEW

    def test_no_level_four_warning_row(self, db, ladder, make_member):
        member = make_member(last_given_referral_at=NOW - relativedelta(months=6))
        result = ladder.apply(member, NOW)
        assert result["action"] == "open_case"
        assert db.query(InactivityWarningDB).filter(InactivityWarningDB.level == 4).count() == 0

    def test_rerun_is_noop(self, db, ladder, make_member, dispatcher):
        member = make_member(last_given_referral_at=NOW - relativedelta(months=3))
        ladder.apply(member, NOW)
        dispatcher.reset_mock()

        result = ladder.apply(member, NOW + timedelta(hours=1))

        assert result["action"] == "none"
        assert db.query(InactivityWarningDB).count() == 1
        dispatcher.send.assert_not_called()

    def test_pending_case_skips_member(self, db, ladder, make_member):
        member = make_member(last_given_referral_at=NOW - relativedelta(months=6))
        ladder.apply(member, NOW)

        result = ladder.apply(member, NOW + timedelta(days=1))

        assert result["action"] == "skipped"
        assert db.query(ReviewCaseDB).filter(ReviewCaseDB.status == CaseStatus.PENDING).count() == 1

    def test_warning_notifies_member(self, ladder, make_member, dispatcher):
        member = make_member(last_given_referral_at=NOW - relativedelta(months=3))
        ladder.apply(member, NOW)
        notification = dispatcher.send.call_args[0][0]
        assert notification.recipient_id == member.id
        assert notification.title == "First inactivity warning"

    def test_failed_notification_keeps_warning(self, db, ladder, make_member, dispatcher):
        """A push failure never undoes the warning record."""
        dispatcher.send.side_effect = RuntimeError("push gateway down")
        member = make_member(last_given_referral_at=NOW - relativedelta(months=3))

        result = ladder.apply(member, NOW)

        assert result["action"] == "warning"
        assert db.query(InactivityWarningDB).filter(InactivityWarningDB.member_id == member.id).count() == 1

    def test_concurrent_duplicate_is_noop(self, db, ladder, make_member):
        """If another run wrote the same warning first, the unique guard turns this one into a no-op."""
        member = make_member(last_given_referral_at=NOW - relativedelta(months=3))
        db.add(InactivityWarningDB(
            id=str(uuid4()),
            member_id=member.id,
            level=1,
            warning_type="first_warning",
            message="already sent",
            months_inactive=3,
            cycle_started_at=member.last_given_referral_at,
            created_at=NOW,
        ))
        db.commit()

        with patch.object(ladder, "warning_history", return_value=[]):
            result = ladder.apply(member, NOW)

        assert result["action"] == "noop"
        assert db.query(InactivityWarningDB).count() == 1

    def test_absolved_member_starts_over_after_referral(self, db, ladder, make_member, committee):
        """Absolution keeps the paper trail; a new referral opens a fresh cycle."""
        member = make_member(last_given_referral_at=NOW - relativedelta(months=6))
        case_id = ladder.apply(member, NOW)["case_id"]
        for voter in committee[:2]:
            ladder.case_engine.cast_vote(case_id, voter.id, "absolve", "Member explained the absence",
                                         now=NOW + timedelta(days=1))
        db.refresh(member)
        assert member.status == MemberStatus.ACTIVE

        # Same cycle: nothing new
        assert ladder.apply(member, NOW + timedelta(days=2))["action"] == "none"

        member.last_given_referral_at = NOW + timedelta(days=2)
        db.commit()
        result = ladder.apply(member, NOW + timedelta(days=2) + relativedelta(months=3))

        assert result["action"] == "warning"
        assert result["level"] == 1
        assert db.query(InactivityWarningDB).filter(InactivityWarningDB.member_id == member.id).count() == 1
