"""
Tests for misconduct reports.

1. Sanction applies the mildest severity voted and deducts its points
2. A very serious sanction opens a misconduct review case
3. Dismiss / escalate by quorum, escalate on timeout
4. Ballot validation (severity)
"""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from council_engine.models.db_models import (
    CaseStatus, MemberStatus, PenaltyDB, ReportStatus, ReviewCaseDB, Severity, TriggerType,
)
from council_engine.services.governance import (
    CaseAlreadyDecided, EmptyReasoning, InvalidChoice, InvalidReport,
    MisconductService, StaticCommitteeProvider, SubjectNotFound,
)
from council_engine.services.governance.misconduct import mildest_severity

from conftest import NOW


@pytest.fixture
def parties(make_member):
    reporter = make_member(full_name="Reporter")
    reported = make_member(full_name="Reported", total_points=500)
    return reporter, reported


@pytest.fixture
def service(db, dispatcher, committee_provider):
    return MisconductService(db, dispatcher=dispatcher, committee_provider=committee_provider)


def _file(service, parties):
    reporter, reported = parties
    return service.file_report(
        reporter.id, reported.id, "client_poaching",
        "Contacted my client behind my back", context="referral #42", now=NOW,
    )


class TestMildestSeverity:

    def test_picks_least_severe(self):
        assert mildest_severity(["very_serious", "serious"]) == Severity.SERIOUS
        assert mildest_severity(["light", "very_serious"]) == Severity.LIGHT
        assert mildest_severity(["very_serious", "very_serious"]) == Severity.VERY_SERIOUS


class TestFileReport:

    def test_self_report_rejected(self, service, parties):
        reporter, _ = parties
        with pytest.raises(InvalidReport):
            service.file_report(reporter.id, reporter.id, "other", "I did it", now=NOW)

    def test_description_required(self, service, parties):
        reporter, reported = parties
        with pytest.raises(EmptyReasoning):
            service.file_report(reporter.id, reported.id, "other", "", now=NOW)

    def test_unknown_member(self, service, parties):
        with pytest.raises(SubjectNotFound):
            service.file_report(parties[0].id, "nobody", "other", "Ghost", now=NOW)

    def test_parties_kept_off_committee(self, db, dispatcher, parties, committee):
        reporter, reported = parties
        provider = StaticCommitteeProvider([reporter.id, reported.id] + [m.id for m in committee])
        service = MisconductService(db, dispatcher=dispatcher, committee_provider=provider)

        report = _file(service, parties)

        assert report.committee_member_ids == [m.id for m in committee]
        assert report.auto_expire_at == NOW + timedelta(days=7)


class TestSanction:

    def test_mildest_severity_applied(self, db, service, parties, committee):
        _, reported = parties
        report = _file(service, parties)

        service.cast_vote(report.id, committee[0].id, "sanction", "Clear breach", severity="very_serious", now=NOW)
        outcome = service.cast_vote(report.id, committee[1].id, "sanction", "Breach", severity="serious", now=NOW)

        assert outcome.decided is True
        db.refresh(report)
        db.refresh(reported)
        assert report.status == ReportStatus.SANCTIONED
        assert report.severity == "serious"
        assert reported.total_points == 350
        penalty = db.query(PenaltyDB).filter(PenaltyDB.member_id == reported.id).one()
        assert penalty.points_deducted == 150
        assert penalty.source_report_id == report.id
        # Serious is below the review threshold
        assert db.query(ReviewCaseDB).count() == 0

    def test_points_never_below_zero(self, db, service, make_member, committee):
        reporter = make_member()
        reported = make_member(total_points=20)
        report = service.file_report(reporter.id, reported.id, "other", "Rude", now=NOW)

        for voter in committee[:2]:
            service.cast_vote(report.id, voter.id, "sanction", "Rude", severity="light", now=NOW)

        db.refresh(reported)
        assert reported.total_points == 0

    def test_very_serious_opens_review_case(self, db, service, parties, committee):
        _, reported = parties
        report = _file(service, parties)

        for voter in committee[:2]:
            service.cast_vote(report.id, voter.id, "sanction", "Fraud", severity="very_serious", now=NOW)

        db.refresh(reported)
        case = db.query(ReviewCaseDB).filter(ReviewCaseDB.member_id == reported.id).one()
        assert case.trigger_type == TriggerType.MISCONDUCT
        assert case.status == CaseStatus.PENDING
        assert case.trigger_details["report_id"] == report.id
        assert reported.status == MemberStatus.UNDER_REVIEW
        assert reported.total_points == 200

    def test_very_serious_with_pending_case(self, db, service, parties, committee):
        """The existing case stands; no second case is opened."""
        from council_engine.services.governance import ReviewCaseEngine
        _, reported = parties
        existing = ReviewCaseEngine(db, committee_provider=service.committee_provider).open_case(
            reported, TriggerType.INACTIVITY, {}, NOW,
        )
        report = _file(service, parties)

        for voter in committee[:2]:
            service.cast_vote(report.id, voter.id, "sanction", "Fraud", severity="very_serious", now=NOW)

        cases = db.query(ReviewCaseDB).filter(ReviewCaseDB.member_id == reported.id).all()
        assert [c.id for c in cases] == [existing.id]

    def test_external_ledger_called_once(self, db, dispatcher, committee_provider, parties, committee):
        ledger = MagicMock()
        service = MisconductService(
            db, dispatcher=dispatcher, committee_provider=committee_provider, penalty_ledger=ledger,
        )
        _, reported = parties
        report = _file(service, parties)

        for voter in committee:
            service.cast_vote(report.id, voter.id, "sanction", "Late invoices", severity="light", now=NOW)

        ledger.deduct.assert_called_once()
        args, kwargs = ledger.deduct.call_args
        assert args[0] == reported.id
        assert args[1] == 50
        assert args[2] == Severity.LIGHT
        assert kwargs["source_report_id"] == report.id


class TestOtherOutcomes:

    def test_dismiss(self, db, service, parties, committee, dispatcher):
        reporter, reported = parties
        report = _file(service, parties)
        dispatcher.reset_mock()

        for voter in committee[:2]:
            service.cast_vote(report.id, voter.id, "dismiss", "Not misconduct", now=NOW)

        db.refresh(report)
        db.refresh(reported)
        assert report.status == ReportStatus.DISMISSED
        assert reported.total_points == 500
        assert dispatcher.send.call_args[0][0].recipient_id == reporter.id

    def test_escalate_by_quorum_accepts_late_ballot(self, db, service, parties, committee):
        report = _file(service, parties)
        for voter in committee[:2]:
            service.cast_vote(report.id, voter.id, "escalate", "Needs an admin", now=NOW)

        late = service.cast_vote(report.id, committee[2].id, "dismiss", "Disagree", now=NOW)

        assert late.late is True
        db.refresh(report)
        assert report.status == ReportStatus.ESCALATED
        assert report.escalated_to_admin is True

    def test_timeout_escalates(self, db, service, parties, committee):
        report = _file(service, parties)
        service.cast_vote(report.id, committee[0].id, "dismiss", "Meh", now=NOW)

        summary = service.sweep_expired(NOW + timedelta(days=8))

        assert summary["expired_processed"] == 1
        db.refresh(report)
        assert report.status == ReportStatus.ESCALATED
        assert report.escalated_to_admin is True
        with pytest.raises(CaseAlreadyDecided):
            service.cast_vote(report.id, committee[1].id, "dismiss", "Too late", now=NOW + timedelta(days=9))


class TestSeverityBallots:

    def test_sanction_requires_severity(self, service, parties, committee):
        report = _file(service, parties)
        with pytest.raises(InvalidChoice):
            service.cast_vote(report.id, committee[0].id, "sanction", "Bad", now=NOW)

    def test_unknown_severity(self, service, parties, committee):
        report = _file(service, parties)
        with pytest.raises(InvalidChoice):
            service.cast_vote(report.id, committee[0].id, "sanction", "Bad", severity="capital", now=NOW)

    def test_dismiss_takes_no_severity(self, service, parties, committee):
        report = _file(service, parties)
        with pytest.raises(InvalidChoice):
            service.cast_vote(report.id, committee[0].id, "dismiss", "Fine", severity="light", now=NOW)
