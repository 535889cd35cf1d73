"""
Tests for the daily governance batch.
"""
import random
from datetime import timedelta
from unittest.mock import patch

import pytest
from dateutil.relativedelta import relativedelta
from sqlalchemy import func

from council_engine.models.db_models import (
    CaseStatus, InactivityWarningDB, MemberStatus, ReviewCaseDB, TriggerType,
)
from council_engine.services.governance import GovernanceError, GovernanceScheduler

from conftest import NOW


@pytest.fixture
def scheduler(db, dispatcher, committee_provider):
    return GovernanceScheduler(db, dispatcher=dispatcher, committee_provider=committee_provider)


class TestRunDaily:

    def test_summary(self, db, scheduler, make_member, committee):
        idle = make_member(last_given_referral_at=NOW - relativedelta(months=3))
        gone = make_member(last_given_referral_at=NOW - relativedelta(months=6))
        stale = make_member()
        scheduler.case_engine.open_case(stale, TriggerType.OTHER, {}, NOW - timedelta(days=8))

        summary = scheduler.run_daily(NOW)

        assert summary["case_sweep"]["expired_processed"] == 1
        assert summary["case_sweep"]["details"]["review_cases"]["expired_processed"] == 1
        inactivity = summary["inactivity_check"]
        assert inactivity["members_checked"] == 5
        assert inactivity["warnings_issued"] == 1
        assert inactivity["cases_opened"] == 1
        assert inactivity["errors"] == 0
        assert summary["vote_reminders"]["cases_reminded"] == 0
        assert summary["committee_rotation"]["rotated"] == 1

        db.refresh(stale)
        db.refresh(gone)
        assert stale.status == MemberStatus.EXPELLED
        assert gone.status == MemberStatus.UNDER_REVIEW
        assert db.query(InactivityWarningDB).filter(InactivityWarningDB.member_id == idle.id).count() == 1

    def test_second_run_same_day_changes_nothing(self, db, scheduler, make_member, committee):
        make_member(last_given_referral_at=NOW - relativedelta(months=4))
        scheduler.run_daily(NOW)

        again = scheduler.run_daily(NOW + timedelta(hours=1))

        assert again["inactivity_check"]["warnings_issued"] == 0
        assert again["inactivity_check"]["cases_opened"] == 0
        assert again["committee_rotation"]["rotated"] == 0
        assert db.query(InactivityWarningDB).count() == 1


class TestInactivityCheck:

    def test_one_failure_does_not_stop_the_run(self, db, scheduler, make_member, committee):
        broken = make_member(last_given_referral_at=NOW - relativedelta(months=3))
        fine = make_member(last_given_referral_at=NOW - relativedelta(months=6))
        original = scheduler.ladder.apply

        def flaky(member, now):
            if member.id == broken.id:
                raise RuntimeError("ranking service unavailable")
            return original(member, now)

        with patch.object(scheduler.ladder, "apply", side_effect=flaky):
            result = scheduler.run_inactivity_check(NOW)

        assert result["errors"] == 1
        assert result["details"]["errors"][0]["member_id"] == broken.id
        assert result["cases_opened"] == 1
        case = db.query(ReviewCaseDB).filter(ReviewCaseDB.member_id == fine.id).one()
        assert case.status == CaseStatus.PENDING

    def test_only_active_members_checked(self, scheduler, make_member, committee):
        make_member(status=MemberStatus.EXPELLED, last_given_referral_at=NOW - relativedelta(months=9))
        result = scheduler.run_inactivity_check(NOW)
        assert result["members_checked"] == 3


class TestRandomInterleavings:
    """Batch runs and votes in random order never leave two pending cases for one member."""

    @pytest.mark.parametrize("seed", [1, 7, 42, 2025])
    def test_at_most_one_pending_case(self, db, scheduler, make_member, committee, seed):
        rng = random.Random(seed)
        for _ in range(6):
            make_member(last_given_referral_at=NOW - relativedelta(months=rng.randint(0, 8)))

        now = NOW
        for _ in range(40):
            now += timedelta(days=rng.randint(1, 10))
            step = rng.choice(["inactivity", "sweep", "vote", "vote"])
            if step == "inactivity":
                scheduler.run_inactivity_check(now)
            elif step == "sweep":
                scheduler.run_case_sweep(now)
            else:
                pending = scheduler.case_engine.list_cases(status=CaseStatus.PENDING)
                if pending:
                    case = rng.choice(pending)
                    try:
                        scheduler.case_engine.cast_vote(
                            case.id, rng.choice(committee).id,
                            rng.choice(["expel", "absolve", "extend"]), "random ballot", now=now,
                        )
                    except GovernanceError:
                        pass

            busiest = (
                db.query(ReviewCaseDB.member_id, func.count(ReviewCaseDB.id))
                .filter(ReviewCaseDB.status == CaseStatus.PENDING)
                .group_by(ReviewCaseDB.member_id)
                .having(func.count(ReviewCaseDB.id) > 1)
                .all()
            )
            assert busiest == []
