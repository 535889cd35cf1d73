"""
Specialization Conflicts

A chapter holds one member per specialization. When an applicant wants a
specialization already held, two independent approvals are required:

- the committee, by quorum (approve / reject / new_chapter), and
- the interested member who holds the specialization.

Both approve -> approved. A reject from EITHER side -> escalated to an
administrator; nothing is auto-decided against the incumbent. A
new_chapter majority -> the applicant is directed to a new chapter.

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
    ActorType, ConflictStatus, ConflictVoteChoice, InterestedDecision,
    MemberDB, MemberStatus, SpecializationConflictDB, VoteSubject,
)
from .committee import CommitteeProvider, RankingCommitteeProvider
from .errors import (
    AlreadyVoted, CaseAlreadyDecided, EmptyReasoning, InvalidChoice,
    InvalidReport, NotInterestedParty, SubjectNotFound,
)
from .notifications import (
    Notification, NotificationDispatcher, committee_notifications,
    default_dispatcher, dispatch_all,
)
from .quorum import QuorumVoter, VoteOutcome, VotingPolicy
from .state_machine import log_transition

logger = logging.getLogger(__name__)


def _escalate(db: Session, conflict: SpecializationConflictDB, trigger: str, actor: ActorType, now: datetime) -> List[Notification]:
    previous = conflict.status
    conflict.status = ConflictStatus.ESCALATED
    conflict.escalated_to_admin = True
    conflict.decided_at = now
    log_transition(
        db, "specialization_conflict", conflict.id, conflict.applicant_id,
        previous, conflict.status, trigger, actor,
        metadata={
            "committee_decision": conflict.committee_decision,
            "interested_decision": conflict.interested_decision,
        },
        now=now,
    )
    return [Notification(
        conflict.applicant_id,
        "Specialization request escalated",
        f"Your request for {conflict.specialization} was sent to the administrators for a final decision.",
        "/dashboard",
    )]


def _approve(db: Session, conflict: SpecializationConflictDB, actor: ActorType, now: datetime) -> List[Notification]:
    previous = conflict.status
    conflict.status = ConflictStatus.APPROVED
    conflict.decided_at = now
    log_transition(
        db, "specialization_conflict", conflict.id, conflict.applicant_id,
        previous, conflict.status, "dual_approval", actor, now=now,
    )
    return [Notification(
        conflict.applicant_id,
        "Specialization approved",
        f"The committee and the current holder approved your request for {conflict.specialization}.",
        "/dashboard",
    )]


class SpecializationConflictPolicy(VotingPolicy):
    """approve / reject / new_chapter, combined with the incumbent's decision."""

    subject_type = VoteSubject.SPECIALIZATION_CONFLICT
    model = SpecializationConflictDB
    pending_status = ConflictStatus.PENDING
    choices = {
        ConflictVoteChoice.APPROVE.value: "votes_approve",
        ConflictVoteChoice.REJECT.value: "votes_reject",
        ConflictVoteChoice.NEW_CHAPTER.value: "votes_new_chapter",
    }

    def is_pending(self, subject: SpecializationConflictDB) -> bool:
        return subject.status == ConflictStatus.PENDING

    def accepts_late_votes(self, subject: SpecializationConflictDB) -> bool:
        return subject.committee_decision is not None

    def on_decision(self, db: Session, subject: SpecializationConflictDB, choice: str, now: datetime) -> List[Notification]:
        subject.committee_decision = choice

        if choice == ConflictVoteChoice.REJECT.value:
            return _escalate(db, subject, "committee_reject", ActorType.COMMITTEE, now)

        if choice == ConflictVoteChoice.NEW_CHAPTER.value:
            previous = subject.status
            subject.status = ConflictStatus.NEW_CHAPTER
            subject.decided_at = now
            log_transition(
                db, "specialization_conflict", subject.id, subject.applicant_id,
                previous, subject.status, "quorum_new_chapter", ActorType.COMMITTEE, now=now,
            )
            return [Notification(
                subject.applicant_id,
                "New chapter suggested",
                f"The committee suggests opening a new chapter for {subject.specialization}.",
                "/dashboard",
            )]

        if subject.interested_decision == InterestedDecision.APPROVE.value:
            return _approve(db, subject, ActorType.COMMITTEE, now)

        # Committee approved; the incumbent has not answered yet
        log_transition(
            db, "specialization_conflict", subject.id, subject.applicant_id,
            subject.status, subject.status, "committee_approve", ActorType.COMMITTEE, now=now,
        )
        return [Notification(
            subject.interested_member_id,
            "Your approval is needed",
            f"The committee approved a request to share your specialization {subject.specialization}. "
            f"Please approve or reject it.",
            "/ethics-committee",
        )]

    def on_timeout(self, db: Session, subject: SpecializationConflictDB, now: datetime) -> List[Notification]:
        logger.info(f"Specialization conflict {subject.id} escalated to admin after deadline")
        return _escalate(db, subject, "deadline_expired", ActorType.SYSTEM, now)


# =============================================================================
# SERVICE
# =============================================================================

class SpecializationConflictService:
    """
    USER-AUTHORIZED: open_conflict (applicant), record_interested_decision (incumbent)
    COMMITTEE: cast_vote
    SYSTEM: sweep_expired
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
        self.policy = SpecializationConflictPolicy()
        self.voter = QuorumVoter(db_session, self.dispatcher)

    def find_incumbent(self, chapter_id: Optional[str], specialization: str, exclude: str) -> Optional[MemberDB]:
        """The active member of the chapter already holding the specialization."""
        query = self.db.query(MemberDB).filter(
            MemberDB.status == MemberStatus.ACTIVE,
            MemberDB.specialization == specialization,
            MemberDB.id != exclude,
        )
        if chapter_id is None:
            query = query.filter(MemberDB.chapter_id.is_(None))
        else:
            query = query.filter(MemberDB.chapter_id == chapter_id)
        return query.order_by(MemberDB.joined_at.asc()).first()

    def open_conflict(
        self,
        applicant_id: str,
        specialization: str,
        now: Optional[datetime] = None,
    ) -> SpecializationConflictDB:
        now = now or utcnow()
        if not specialization or not specialization.strip():
            raise InvalidReport("A specialization is required")
        specialization = specialization.strip()

        applicant = self.db.query(MemberDB).filter(MemberDB.id == applicant_id).first()
        if applicant is None:
            raise SubjectNotFound(f"Member {applicant_id} not found")

        incumbent = self.find_incumbent(applicant.chapter_id, specialization, exclude=applicant_id)
        if incumbent is None:
            raise InvalidReport(f"No member of the chapter holds {specialization}; there is no conflict to resolve")

        committee = self.committee_provider.current_committee(
            applicant.chapter_id, exclude=[applicant_id, incumbent.id]
        )
        conflict = SpecializationConflictDB(
            id=str(uuid4()),
            applicant_id=applicant_id,
            interested_member_id=incumbent.id,
            chapter_id=applicant.chapter_id,
            specialization=specialization,
            status=ConflictStatus.PENDING,
            committee_member_ids=committee,
            auto_expire_at=now + timedelta(days=config.PEER_REVIEW_WINDOW_DAYS),
            created_at=now,
        )
        self.db.add(conflict)
        log_transition(
            self.db, "specialization_conflict", conflict.id, applicant_id,
            None, ConflictStatus.PENDING, "conflict_opened", ActorType.MEMBER,
            metadata={"interested_member_id": incumbent.id, "specialization": specialization}, now=now,
        )
        self.db.commit()

        notifications = committee_notifications(
            committee,
            "Specialization conflict to review",
            f"{applicant.full_name} applied for {specialization}, already held by {incumbent.full_name}.",
        )
        notifications.append(Notification(
            incumbent.id,
            "A member applied for your specialization",
            f"{applicant.full_name} wants to join your chapter as {specialization}. Please approve or reject.",
            "/ethics-committee",
        ))
        dispatch_all(self.dispatcher, notifications)

        logger.info(f"Specialization conflict {conflict.id} opened: {applicant_id} vs {incumbent.id} ({specialization})")
        return conflict

    def cast_vote(
        self,
        conflict_id: str,
        voter_id: str,
        choice: str,
        reasoning: str,
        now: Optional[datetime] = None,
    ) -> VoteOutcome:
        return self.voter.cast_vote(self.policy, conflict_id, voter_id, choice, reasoning, now=now)

    def record_interested_decision(
        self,
        conflict_id: str,
        member_id: str,
        decision: str,
        reasoning: str,
        now: Optional[datetime] = None,
    ) -> SpecializationConflictDB:
        """The incumbent's half of the dual precondition."""
        now = now or utcnow()
        decision = getattr(decision, "value", decision)
        if decision not in [d.value for d in InterestedDecision]:
            raise InvalidChoice(f"'{decision}' is not a valid decision; expected approve or reject")
        if not reasoning or not reasoning.strip():
            raise EmptyReasoning()

        conflict = (
            self.db.query(SpecializationConflictDB)
            .filter(SpecializationConflictDB.id == conflict_id)
            .with_for_update()
            .first()
        )
        if conflict is None:
            raise SubjectNotFound(f"Specialization conflict {conflict_id} not found")
        if conflict.interested_member_id != member_id:
            self.db.rollback()
            raise NotInterestedParty()
        if conflict.interested_decision is not None:
            self.db.rollback()
            raise AlreadyVoted("The interested member has already decided on this conflict")

        if self.policy.is_pending(conflict) and conflict.auto_expire_at <= now:
            notifications = self.policy.on_timeout(self.db, conflict, now)
            self.db.commit()
            dispatch_all(self.dispatcher, notifications)
            raise CaseAlreadyDecided(f"Conflict {conflict_id} closed at {conflict.auto_expire_at.isoformat()}")
        if not self.policy.is_pending(conflict):
            self.db.rollback()
            raise CaseAlreadyDecided(f"Conflict {conflict_id} is already {conflict.status.value}")

        conflict.interested_decision = decision
        conflict.interested_reasoning = reasoning.strip()

        notifications: List[Notification] = []
        if decision == InterestedDecision.REJECT.value:
            notifications = _escalate(self.db, conflict, "interested_reject", ActorType.MEMBER, now)
        elif conflict.committee_decision == ConflictVoteChoice.APPROVE.value:
            notifications = _approve(self.db, conflict, ActorType.MEMBER, now)
        else:
            log_transition(
                self.db, "specialization_conflict", conflict.id, conflict.applicant_id,
                conflict.status, conflict.status, "interested_approve", ActorType.MEMBER, now=now,
            )

        self.db.commit()
        dispatch_all(self.dispatcher, notifications)

        logger.info(f"Specialization conflict {conflict_id}: interested member {decision}, status {conflict.status.value}")
        return conflict

    def sweep_expired(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return self.voter.sweep_expired(self.policy, now or utcnow())

    def get_conflict(self, conflict_id: str) -> SpecializationConflictDB:
        conflict = self.db.query(SpecializationConflictDB).filter(SpecializationConflictDB.id == conflict_id).first()
        if conflict is None:
            raise SubjectNotFound(f"Specialization conflict {conflict_id} not found")
        return conflict
