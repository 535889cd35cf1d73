"""
Misconduct Reports

A member reports another member; the committee adjudicates with the same
quorum primitive as expulsion cases.

Choices:
- sanction  (with severity light / serious / very_serious): points are
  deducted through the penalty ledger. A very_serious sanction also opens
  a misconduct review case against the reported member.
- dismiss: the report is closed without consequence.
- escalate: the report is handed to an administrator.

Timeout fallback: escalate.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ... import config
from ...database import utcnow
from ...models.db_models import (
    ActorType, MemberDB, MemberStatus, MisconductReportDB, ReportStatus,
    ReportVoteChoice, Severity, TriggerType, VoteDB, VoteSubject,
)
from .committee import CommitteeProvider, RankingCommitteeProvider
from .errors import EmptyReasoning, InvalidReport, SubjectNotFound
from .notifications import (
    Notification, NotificationDispatcher, committee_notifications,
    default_dispatcher, dispatch_all,
)
from .penalties import SANCTION_POINTS, PenaltyLedger, SqlPenaltyLedger
from .quorum import QuorumVoter, VoteOutcome, VotingPolicy
from .review_cases import ReviewCaseEngine
from .state_machine import log_transition

logger = logging.getLogger(__name__)

SEVERITY_ORDER = [Severity.LIGHT, Severity.SERIOUS, Severity.VERY_SERIOUS]


def mildest_severity(severities: List[str]) -> Severity:
    """The least severe of the sanction ballots."""
    return min((Severity(s) for s in severities), key=SEVERITY_ORDER.index)


class MisconductPolicy(VotingPolicy):
    """sanction / dismiss / escalate."""

    subject_type = VoteSubject.MISCONDUCT_REPORT
    model = MisconductReportDB
    pending_status = ReportStatus.PENDING
    choices = {
        ReportVoteChoice.SANCTION.value: "votes_sanction",
        ReportVoteChoice.DISMISS.value: "votes_dismiss",
        ReportVoteChoice.ESCALATE.value: "votes_escalate",
    }
    severity_choices = {
        ReportVoteChoice.SANCTION.value: [s.value for s in SEVERITY_ORDER],
    }

    def __init__(
        self,
        penalty_ledger: Optional[PenaltyLedger] = None,
        committee_provider: Optional[CommitteeProvider] = None,
    ):
        self.penalty_ledger = penalty_ledger
        self.committee_provider = committee_provider

    def is_pending(self, subject: MisconductReportDB) -> bool:
        return subject.status == ReportStatus.PENDING

    def accepts_late_votes(self, subject: MisconductReportDB) -> bool:
        if subject.status in (ReportStatus.SANCTIONED, ReportStatus.DISMISSED):
            return True
        # Escalated by quorum, not by the deadline
        return subject.status == ReportStatus.ESCALATED and (subject.votes_escalate or 0) >= self.majority

    def on_decision(self, db: Session, subject: MisconductReportDB, choice: str, now: datetime) -> List[Notification]:
        previous = subject.status
        subject.decided_at = now

        if choice == ReportVoteChoice.SANCTION.value:
            return self._sanction(db, subject, previous, now)

        if choice == ReportVoteChoice.DISMISS.value:
            subject.status = ReportStatus.DISMISSED
            log_transition(
                db, "misconduct_report", subject.id, subject.reported_id,
                previous, subject.status, "quorum_dismiss", ActorType.COMMITTEE, now=now,
            )
            return [Notification(
                subject.reporter_id,
                "Report reviewed",
                "The ethics committee reviewed your report and dismissed it.",
                "/dashboard",
            )]

        subject.status = ReportStatus.ESCALATED
        subject.escalated_to_admin = True
        log_transition(
            db, "misconduct_report", subject.id, subject.reported_id,
            previous, subject.status, "quorum_escalate", ActorType.COMMITTEE, now=now,
        )
        return [Notification(
            subject.reporter_id,
            "Report escalated",
            "The ethics committee escalated your report to the administrators.",
            "/dashboard",
        )]

    def on_timeout(self, db: Session, subject: MisconductReportDB, now: datetime) -> List[Notification]:
        previous = subject.status
        subject.status = ReportStatus.ESCALATED
        subject.escalated_to_admin = True
        subject.decided_at = now
        log_transition(
            db, "misconduct_report", subject.id, subject.reported_id,
            previous, subject.status, "deadline_expired", ActorType.SYSTEM,
            metadata={"auto_expire_at": subject.auto_expire_at.isoformat()}, now=now,
        )
        logger.info(f"Misconduct report {subject.id} escalated to admin after deadline")
        return [Notification(
            subject.reporter_id,
            "Report escalated",
            "The committee did not reach a decision in time; your report was sent to the administrators.",
            "/dashboard",
        )]

    def _sanction(self, db: Session, report: MisconductReportDB, previous, now: datetime) -> List[Notification]:
        ballots = db.query(VoteDB.severity).filter(
            VoteDB.subject_type == self.subject_type,
            VoteDB.subject_id == report.id,
            VoteDB.choice == ReportVoteChoice.SANCTION.value,
        ).all()
        severity = mildest_severity([row.severity for row in ballots])
        points = SANCTION_POINTS[severity]

        report.status = ReportStatus.SANCTIONED
        report.severity = severity.value

        ledger = self.penalty_ledger or SqlPenaltyLedger(db)
        ledger.deduct(
            report.reported_id,
            points,
            severity,
            f"Misconduct sanction ({report.report_type})",
            source_report_id=report.id,
            now=now,
        )

        log_transition(
            db, "misconduct_report", report.id, report.reported_id,
            previous, report.status, "quorum_sanction", ActorType.COMMITTEE,
            metadata={"severity": severity.value, "points_deducted": points}, now=now,
        )

        notifications = [
            Notification(
                report.reported_id,
                "Sanction applied",
                f"The ethics committee sanctioned you ({severity.value.replace('_', ' ')}). "
                f"{points} points have been deducted.",
                "/dashboard",
            ),
            Notification(
                report.reporter_id,
                "Report reviewed",
                "The ethics committee upheld your report and applied a sanction.",
                "/dashboard",
            ),
        ]

        if severity == Severity.VERY_SERIOUS:
            notifications += self._open_misconduct_case(db, report, now)
        return notifications

    def _open_misconduct_case(self, db: Session, report: MisconductReportDB, now: datetime) -> List[Notification]:
        member = db.query(MemberDB).filter(MemberDB.id == report.reported_id).first()
        if member is None or member.status in (MemberStatus.EXPELLED, MemberStatus.BANNED):
            return []

        engine = ReviewCaseEngine(db, committee_provider=self.committee_provider)
        if engine.pending_case_for(member.id):
            logger.info(f"Member {member.id} already under review; very serious sanction recorded on report {report.id}")
            return []

        _, notifications = engine.stage_case(
            member,
            TriggerType.MISCONDUCT,
            {
                "report_id": report.id,
                "report_type": report.report_type,
                "severity": report.severity,
                "description": report.description,
            },
            now,
            actor=ActorType.COMMITTEE,
        )
        return notifications


# =============================================================================
# SERVICE
# =============================================================================

class MisconductService:
    """
    USER-AUTHORIZED: file_report
    COMMITTEE: cast_vote
    SYSTEM: sweep_expired
    """

    def __init__(
        self,
        db_session: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        committee_provider: Optional[CommitteeProvider] = None,
        penalty_ledger: Optional[PenaltyLedger] = None,
    ):
        self.db = db_session
        self.dispatcher = dispatcher or default_dispatcher()
        self.committee_provider = committee_provider or RankingCommitteeProvider(db_session)
        self.policy = MisconductPolicy(penalty_ledger=penalty_ledger, committee_provider=self.committee_provider)
        self.voter = QuorumVoter(db_session, self.dispatcher)

    def file_report(
        self,
        reporter_id: str,
        reported_id: str,
        report_type: str,
        description: str,
        context: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> MisconductReportDB:
        now = now or utcnow()
        if not description or not description.strip():
            raise EmptyReasoning("A report must include a description")
        if reporter_id == reported_id:
            raise InvalidReport("A member cannot report themselves")

        reported = self.db.query(MemberDB).filter(MemberDB.id == reported_id).first()
        if reported is None:
            raise SubjectNotFound(f"Member {reported_id} not found")

        committee = self.committee_provider.current_committee(
            reported.chapter_id, exclude=[reporter_id, reported_id]
        )
        report = MisconductReportDB(
            id=str(uuid4()),
            reporter_id=reporter_id,
            reported_id=reported_id,
            report_type=report_type,
            description=description.strip(),
            context=context,
            status=ReportStatus.PENDING,
            committee_member_ids=committee,
            auto_expire_at=now + timedelta(days=config.PEER_REVIEW_WINDOW_DAYS),
            created_at=now,
        )
        self.db.add(report)
        log_transition(
            self.db, "misconduct_report", report.id, reported_id,
            None, ReportStatus.PENDING, "report_filed", ActorType.MEMBER,
            metadata={"reporter_id": reporter_id, "report_type": report_type}, now=now,
        )
        self.db.commit()

        dispatch_all(self.dispatcher, committee_notifications(
            committee,
            "New misconduct report",
            f"A {report_type} report was filed against {reported.full_name}. Please review it and vote.",
        ))
        logger.info(f"Misconduct report {report.id} filed against {reported_id}")
        return report

    def cast_vote(
        self,
        report_id: str,
        voter_id: str,
        choice: str,
        reasoning: str,
        severity: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VoteOutcome:
        return self.voter.cast_vote(self.policy, report_id, voter_id, choice, reasoning, severity=severity, now=now)

    def sweep_expired(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return self.voter.sweep_expired(self.policy, now or utcnow())

    def get_report(self, report_id: str) -> MisconductReportDB:
        report = self.db.query(MisconductReportDB).filter(MisconductReportDB.id == report_id).first()
        if report is None:
            raise SubjectNotFound(f"Misconduct report {report_id} not found")
        return report

    def list_reports(self, status: Optional[ReportStatus] = None) -> List[MisconductReportDB]:
        query = self.db.query(MisconductReportDB)
        if status is not None:
            query = query.filter(MisconductReportDB.status == status)
        return query.order_by(MisconductReportDB.created_at.desc()).all()
