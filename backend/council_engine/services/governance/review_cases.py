"""
Review Case Engine

AUTHORITY: COMMITTEE decides, SYSTEM enforces the deadline.

Owns the lifecycle of a disciplinary case:

    pending --(expel)----> approved      member expelled
    pending --(absolve)--> rejected      member back to active
    pending --(extend)---> extended ---> pending (+30 days, new voting round)
    pending --(timeout)--> auto_expired  member expelled

At most one pending case per member. The committee voting on a case is
resolved once, at creation, and stored on the case.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ... import config
from ...database import utcnow
from ...models.db_models import (
    ActorType, CaseStatus, CaseVoteChoice, MemberDB, MemberStatus,
    ReviewCaseDB, TriggerType, VoteDB, VoteSubject,
)
from .committee import CommitteeProvider, RankingCommitteeProvider
from .errors import MemberNotActive, SubjectNotFound
from .notifications import (
    Notification, NotificationDispatcher, committee_notifications,
    default_dispatcher, dispatch_all,
)
from .quorum import QuorumVoter, VoteOutcome, VotingPolicy
from .reentry import ReentryEligibility, record_expulsion
from .state_machine import CASE_STATE_CONFIG, CaseStateMachine, log_transition

logger = logging.getLogger(__name__)


TRIGGER_LABELS = {
    TriggerType.INACTIVITY: "prolonged inactivity",
    TriggerType.MISCONDUCT: "a serious misconduct sanction",
    TriggerType.OTHER: "a committee referral",
}


# =============================================================================
# VOTING POLICY
# =============================================================================

class ReviewCasePolicy(VotingPolicy):
    """Expulsion vote: expel / absolve / extend."""

    subject_type = VoteSubject.REVIEW_CASE
    model = ReviewCaseDB
    pending_status = CaseStatus.PENDING
    choices = {
        CaseVoteChoice.EXPEL.value: "votes_for_expulsion",
        CaseVoteChoice.ABSOLVE.value: "votes_against",
        CaseVoteChoice.EXTEND.value: "votes_extend",
    }

    def is_pending(self, subject: ReviewCaseDB) -> bool:
        return subject.status == CaseStatus.PENDING

    def accepts_late_votes(self, subject: ReviewCaseDB) -> bool:
        return CASE_STATE_CONFIG.get(subject.status, {}).get("decided_by_quorum", False)

    def current_round(self, subject: ReviewCaseDB) -> int:
        return (subject.extension_count or 0) + 1

    def on_decision(self, db: Session, subject: ReviewCaseDB, choice: str, now: datetime) -> List[Notification]:
        machine = CaseStateMachine(db)
        member = subject.member

        if choice == CaseVoteChoice.EXPEL.value:
            machine.transition(subject, CaseStatus.APPROVED, "quorum_expel", ActorType.COMMITTEE, now)
            subject.decided_at = now
            eligibility = record_expulsion(db, member, now)
            return _expulsion_notifications(subject, member, eligibility)

        if choice == CaseVoteChoice.ABSOLVE.value:
            machine.transition(subject, CaseStatus.REJECTED, "quorum_absolve", ActorType.COMMITTEE, now)
            subject.decided_at = now
            member.status = MemberStatus.ACTIVE
            notifications = [Notification(
                member.id,
                "Review closed: absolved",
                "The ethics committee reviewed your case and decided not to expel you. "
                "Your warning history is kept on record.",
                "/dashboard",
            )]
            return notifications + committee_notifications(
                subject.committee_member_ids,
                "Case closed: absolved",
                f"The case on {member.full_name} was closed with an absolution.",
            )

        # Extension: loop back to pending with a later deadline and a fresh round.
        # Earlier ballots stay on record under their round.
        machine.transition(subject, CaseStatus.EXTENDED, "quorum_extend", ActorType.COMMITTEE, now)
        previous_deadline = subject.auto_expire_at
        previous_tally = self.tally(subject)
        subject.auto_expire_at = previous_deadline + timedelta(days=config.EXTENSION_DAYS)
        subject.extension_count = (subject.extension_count or 0) + 1
        subject.last_reminder_at = None
        for column in self.choices.values():
            setattr(subject, column, 0)
        machine.transition(
            subject, CaseStatus.PENDING, "extension_reopened", ActorType.SYSTEM, now,
            metadata={
                "previous_deadline": previous_deadline.isoformat(),
                "new_deadline": subject.auto_expire_at.isoformat(),
                "extension_count": subject.extension_count,
                "previous_tally": previous_tally,
                "voting_round": self.current_round(subject),
            },
        )
        notifications = [Notification(
            member.id,
            "Review extended",
            f"The ethics committee extended your review until {subject.auto_expire_at.date().isoformat()}.",
            "/dashboard",
        )]
        return notifications + committee_notifications(
            subject.committee_member_ids,
            "Case extended",
            f"The case on {member.full_name} was extended by {config.EXTENSION_DAYS} days.",
        )

    def on_timeout(self, db: Session, subject: ReviewCaseDB, now: datetime) -> List[Notification]:
        CaseStateMachine(db).transition(
            subject, CaseStatus.AUTO_EXPIRED, "deadline_expired", ActorType.SYSTEM, now,
            metadata={"auto_expire_at": subject.auto_expire_at.isoformat()},
        )
        subject.decided_at = now
        eligibility = record_expulsion(db, subject.member, now)
        logger.info(f"Review case {subject.id} auto-expired; member {subject.member_id} expelled")
        return _expulsion_notifications(subject, subject.member, eligibility)


def _expulsion_notifications(
    case: ReviewCaseDB,
    member: MemberDB,
    eligibility: ReentryEligibility,
) -> List[Notification]:
    if eligibility == ReentryEligibility.PERMANENT:
        body = "You have been expelled for the second time. This expulsion is permanent."
    else:
        body = (
            f"You have been expelled from the network. You may request reentry after "
            f"{config.REENTRY_COOLDOWN_MONTHS} months."
        )
    notifications = [Notification(member.id, "You have been expelled", body, "/reentry")]
    return notifications + committee_notifications(
        case.committee_member_ids,
        "Case closed: expelled",
        f"The case on {member.full_name} ended in expulsion ({case.status.value}).",
    )


# =============================================================================
# ENGINE
# =============================================================================

class ReviewCaseEngine:
    """
    Opens, decides and sweeps review cases.

    SYSTEM: open_case (escalation ladder), sweep_expired, send_vote_reminders
    COMMITTEE: cast_vote
    ADMIN: open_case for misconduct / other triggers
    """

    def __init__(
        self,
        db_session: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        committee_provider: Optional[CommitteeProvider] = None,
    ):
        self.db = db_session
        self.dispatcher = dispatcher or default_dispatcher()
        self.committee_provider = committee_provider or RankingCommitteeProvider(db_session)
        self.policy = ReviewCasePolicy()
        self.voter = QuorumVoter(db_session, self.dispatcher)

    def open_case(
        self,
        member: MemberDB,
        trigger_type: TriggerType,
        trigger_details: Optional[Dict[str, Any]],
        now: datetime,
        cycle_started_at: Optional[datetime] = None,
        actor: ActorType = ActorType.SYSTEM,
    ) -> ReviewCaseDB:
        """
        Open a case against a member.

        An existing pending case is returned unchanged. The case, the
        member status change and the log entry are written together; the
        member and the committee are notified after commit.
        """
        existing = self.pending_case_for(member.id)
        if existing:
            logger.info(f"Member {member.id} already has pending case {existing.id}; not opening another")
            return existing

        try:
            case, notifications = self.stage_case(
                member, trigger_type, trigger_details, now,
                cycle_started_at=cycle_started_at, actor=actor,
            )
        except IntegrityError:
            # Another run opened the case first
            self.db.rollback()
            existing = self.pending_case_for(member.id)
            if existing:
                return existing
            raise

        self.db.commit()
        dispatch_all(self.dispatcher, notifications)
        return case

    def stage_case(
        self,
        member: MemberDB,
        trigger_type: TriggerType,
        trigger_details: Optional[Dict[str, Any]],
        now: datetime,
        cycle_started_at: Optional[datetime] = None,
        actor: ActorType = ActorType.SYSTEM,
    ) -> Tuple[ReviewCaseDB, List[Notification]]:
        """
        Write a new pending case inside the caller's transaction.

        Does not commit. Returns the case and the notifications to send
        once the caller has committed.
        """
        if member.status in (MemberStatus.EXPELLED, MemberStatus.BANNED):
            raise MemberNotActive(f"Member {member.id} is {member.status.value}")

        committee = self.committee_provider.current_committee(member.chapter_id, exclude=[member.id])

        case = ReviewCaseDB(
            id=str(uuid4()),
            member_id=member.id,
            trigger_type=trigger_type,
            trigger_details=dict(trigger_details or {}),
            status=CaseStatus.PENDING,
            committee_member_ids=committee,
            cycle_started_at=cycle_started_at,
            extension_count=0,
            auto_expire_at=now + timedelta(days=config.REVIEW_WINDOW_DAYS),
            created_at=now,
        )
        previous_status = member.status
        member.status = MemberStatus.UNDER_REVIEW

        self.db.add(case)
        self.db.flush()

        log_transition(
            self.db, "review_case", case.id, member.id,
            None, CaseStatus.PENDING, f"opened_{trigger_type.value}", actor,
            metadata={"committee": committee, "auto_expire_at": case.auto_expire_at.isoformat()},
            now=now,
        )
        log_transition(
            self.db, "member", member.id, member.id,
            previous_status, MemberStatus.UNDER_REVIEW, "review_case_opened", actor,
            metadata={"case_id": case.id}, now=now,
        )

        reason = TRIGGER_LABELS.get(trigger_type, trigger_type.value)
        notifications = [Notification(
            member.id,
            "Your membership is under review",
            f"The ethics committee opened a review of your membership for {reason}. "
            f"A decision will be reached by {case.auto_expire_at.date().isoformat()}.",
            "/dashboard",
        )]
        notifications += committee_notifications(
            committee,
            "New case to review",
            f"{member.full_name} is under review for {reason}. Please cast your vote.",
        )

        logger.info(f"Review case {case.id} opened for member {member.id} ({trigger_type.value})")
        return case, notifications

    def cast_vote(
        self,
        case_id: str,
        voter_id: str,
        choice: str,
        reasoning: str,
        now: Optional[datetime] = None,
    ) -> VoteOutcome:
        return self.voter.cast_vote(self.policy, case_id, voter_id, choice, reasoning, now=now)

    def sweep_expired(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Auto-expire every pending case past its deadline.

        AUTHORITY: SYSTEM - Called by the daily batch.
        """
        return self.voter.sweep_expired(self.policy, now or utcnow())

    def send_vote_reminders(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Remind committee members who have not voted on cases older than
        48 hours. A case gets at most one reminder round per 24 hours.
        """
        now = now or utcnow()
        opened_before = now - timedelta(hours=config.VOTE_REMINDER_HOURS)
        repeat_before = now - timedelta(hours=config.REMINDER_REPEAT_HOURS)

        cases = self.db.query(ReviewCaseDB).filter(
            ReviewCaseDB.status == CaseStatus.PENDING,
            ReviewCaseDB.created_at <= opened_before,
            ReviewCaseDB.auto_expire_at > now,
        ).all()

        reminded = []
        notifications: List[Notification] = []
        for case in cases:
            if case.last_reminder_at is not None and case.last_reminder_at > repeat_before:
                continue

            voted = {
                vote.voter_id
                for vote in self.voter.votes_for(self.policy, case.id, self.policy.current_round(case))
            }
            missing = [m for m in case.committee_member_ids or [] if m not in voted]
            if not missing:
                continue

            hours_left = int((case.auto_expire_at - now).total_seconds() // 3600)
            notifications += committee_notifications(
                missing,
                "Vote pending",
                f"Your vote on the case of {case.member.full_name} is still pending. "
                f"{hours_left} hours remain before the deadline.",
            )
            case.last_reminder_at = now
            reminded.append({"case_id": case.id, "reminded": missing})

        self.db.commit()
        delivered = dispatch_all(self.dispatcher, notifications)

        logger.info(f"Vote reminders: {len(reminded)} cases, {delivered} notifications delivered")
        return {
            "run_date": now.isoformat(),
            "cases_reminded": len(reminded),
            "notifications_sent": delivered,
            "details": reminded,
        }

    # -------------------------------------------------------------------------
    # READS
    # -------------------------------------------------------------------------

    def get_case(self, case_id: str) -> ReviewCaseDB:
        case = self.db.query(ReviewCaseDB).filter(ReviewCaseDB.id == case_id).first()
        if case is None:
            raise SubjectNotFound(f"Review case {case_id} not found")
        return case

    def list_cases(self, status: Optional[CaseStatus] = None, member_id: Optional[str] = None) -> List[ReviewCaseDB]:
        query = self.db.query(ReviewCaseDB)
        if status is not None:
            query = query.filter(ReviewCaseDB.status == status)
        if member_id is not None:
            query = query.filter(ReviewCaseDB.member_id == member_id)
        return query.order_by(ReviewCaseDB.created_at.desc()).all()

    def pending_case_for(self, member_id: str) -> Optional[ReviewCaseDB]:
        return self.db.query(ReviewCaseDB).filter(
            ReviewCaseDB.member_id == member_id,
            ReviewCaseDB.status == CaseStatus.PENDING,
        ).first()

    def votes_for(self, case_id: str) -> List[VoteDB]:
        return self.voter.votes_for(self.policy, case_id)
