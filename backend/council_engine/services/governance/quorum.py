"""
Quorum Voter

Generic committee decision primitive. Turns independent ballots into
exactly one decision, exactly once, or into a timeout decision.

Decision rule: first-past-the-post. The first choice whose count reaches
the majority (2 of a 3-seat committee) wins, even if not every member has
voted yet.

Each vote is one transaction: the subject row is locked, the ballot is
inserted, the tally is recomputed and, if the majority was just reached,
the decision and all its side effects are applied before commit. Two
near-simultaneous voters therefore serialise on the subject row; only one
of them can observe the majority transition.

The three committee flows (expulsion cases, misconduct reports,
specialization conflicts) differ only in their VotingPolicy.

A voter casts one ballot per subject per voting round. Only review cases
open a new round, when an extension sends them back to pending.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ... import config
from ...database import utcnow
from ...models.db_models import VoteDB, VoteSubject
from .errors import (
    AlreadyVoted, CaseAlreadyDecided, EmptyReasoning, InvalidChoice,
    NotCommitteeMember, SubjectNotFound,
)
from .notifications import Notification, NotificationDispatcher, default_dispatcher, dispatch_all

logger = logging.getLogger(__name__)


# =============================================================================
# POLICY (STRATEGY)
# =============================================================================

class VotingPolicy:
    """
    What varies between committee flows.

    Subclasses set the class attributes and implement the callbacks.
    Callbacks run inside the vote transaction, must not commit, and return
    the notifications to deliver once the transaction has committed.
    """

    subject_type: VoteSubject = None
    model = None
    pending_status = None
    # choice -> tally column on the subject row
    choices: Dict[str, str] = {}
    # choices whose ballot must carry a severity, with the allowed values
    severity_choices: Dict[str, List[str]] = {}
    committee_size: int = config.COMMITTEE_SIZE
    majority: int = config.COMMITTEE_MAJORITY

    def is_pending(self, subject) -> bool:
        raise NotImplementedError

    def accepts_late_votes(self, subject) -> bool:
        """Whether a decided subject still records ballots from unvoted members."""
        return False

    def on_decision(self, db: Session, subject, choice: str, now: datetime) -> List[Notification]:
        raise NotImplementedError

    def on_timeout(self, db: Session, subject, now: datetime) -> List[Notification]:
        raise NotImplementedError

    def current_round(self, subject) -> int:
        """Ballots are unique per voter within a round."""
        return 1

    def status_of(self, subject) -> str:
        return getattr(subject.status, "value", subject.status)

    def tally(self, subject) -> Dict[str, int]:
        return {choice: getattr(subject, column) or 0 for choice, column in self.choices.items()}

    def validate_ballot(self, choice: str, severity: Optional[str]) -> None:
        if choice not in self.choices:
            raise InvalidChoice(
                f"'{choice}' is not a valid choice; expected one of {sorted(self.choices)}"
            )
        allowed = self.severity_choices.get(choice)
        if allowed is not None:
            if severity not in allowed:
                raise InvalidChoice(f"A '{choice}' vote requires a severity: {allowed}")
        elif severity is not None:
            raise InvalidChoice(f"A '{choice}' vote does not take a severity")


@dataclass
class VoteOutcome:
    """Result of cast_vote: either a Decision or still Pending."""
    subject_id: str
    vote_id: str
    choice: str
    status: str
    tally: Dict[str, int]
    decided: bool = False
    decision: Optional[str] = None
    late: bool = False
    notifications: List[Notification] = field(default_factory=list, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "vote_id": self.vote_id,
            "choice": self.choice,
            "status": self.status,
            "tally": self.tally,
            "decided": self.decided,
            "decision": self.decision,
            "late": self.late,
        }


# =============================================================================
# VOTER
# =============================================================================

class QuorumVoter:
    """Casts ballots and applies timeouts for any VotingPolicy."""

    def __init__(self, db_session: Session, dispatcher: Optional[NotificationDispatcher] = None):
        """Initialize with database session."""
        self.db = db_session
        self.dispatcher = dispatcher or default_dispatcher()

    def cast_vote(
        self,
        policy: VotingPolicy,
        subject_id: str,
        voter_id: str,
        choice: str,
        reasoning: str,
        severity: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VoteOutcome:
        """
        Record one ballot and apply the decision if it completes a majority.

        Raises EmptyReasoning, InvalidChoice, SubjectNotFound,
        CaseAlreadyDecided, NotCommitteeMember or AlreadyVoted. A rejected
        ballot never changes the tally.
        """
        now = now or utcnow()
        choice = getattr(choice, "value", choice)
        severity = getattr(severity, "value", severity)

        if not reasoning or not reasoning.strip():
            raise EmptyReasoning()
        policy.validate_ballot(choice, severity)

        subject = self._lock(policy, subject_id)
        voting_round = policy.current_round(subject)

        if self._has_voted(policy, subject_id, voter_id, voting_round):
            self.db.rollback()
            raise AlreadyVoted(f"{voter_id} has already voted on {subject_id}")

        # Lazy deadline check: an expired subject is closed before anyone may vote on it
        if policy.is_pending(subject) and subject.auto_expire_at <= now:
            try:
                notifications = policy.on_timeout(self.db, subject, now)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            dispatch_all(self.dispatcher, notifications)
            logger.info(f"{policy.subject_type.value} {subject_id} timed out on vote attempt by {voter_id}")
            raise CaseAlreadyDecided(f"Voting on {subject_id} closed at {subject.auto_expire_at.isoformat()}")

        pending = policy.is_pending(subject)
        if not pending and not policy.accepts_late_votes(subject):
            self.db.rollback()
            raise CaseAlreadyDecided(f"{subject_id} is already {policy.status_of(subject)}")

        if voter_id not in (subject.committee_member_ids or []):
            self.db.rollback()
            raise NotCommitteeMember(f"{voter_id} is not on the committee for {subject_id}")

        vote = VoteDB(
            id=str(uuid4()),
            subject_type=policy.subject_type,
            subject_id=subject_id,
            voter_id=voter_id,
            voting_round=voting_round,
            choice=choice,
            severity=severity,
            reasoning=reasoning.strip(),
            created_at=now,
        )
        self.db.add(vote)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            raise AlreadyVoted(f"{voter_id} has already voted on {subject_id}")

        try:
            column = policy.choices[choice]
            count = (getattr(subject, column) or 0) + 1
            setattr(subject, column, count)

            outcome = VoteOutcome(
                subject_id=subject_id,
                vote_id=vote.id,
                choice=choice,
                status=policy.status_of(subject),
                tally=policy.tally(subject),
                late=not pending,
            )

            if pending and count == policy.majority:
                outcome.notifications = policy.on_decision(self.db, subject, choice, now)
                outcome.decided = True
                outcome.decision = choice
                outcome.status = policy.status_of(subject)

            self.db.commit()
        except Exception:
            # The flushed ballot must not outlive a failed decision
            self.db.rollback()
            raise

        dispatch_all(self.dispatcher, outcome.notifications)

        if outcome.decided:
            logger.info(f"{policy.subject_type.value} {subject_id} decided: {choice} ({outcome.tally})")
        else:
            logger.info(f"Vote {choice} recorded on {policy.subject_type.value} {subject_id} by {voter_id}")

        return outcome

    def sweep_expired(self, policy: VotingPolicy, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Apply the timeout fallback to every pending subject past its deadline.

        AUTHORITY: SYSTEM - Called by the daily batch. Each subject is its own
        transaction; a failure is recorded and the sweep moves on.
        """
        now = now or utcnow()
        expired_ids = [
            row.id for row in self.db.query(policy.model.id).filter(
                policy.model.status == policy.pending_status,
                policy.model.auto_expire_at <= now,
            ).all()
        ]

        processed = []
        errors = []
        for subject_id in expired_ids:
            try:
                subject = self._lock(policy, subject_id)
                # Re-check under the lock: a concurrent vote may have decided it
                if not policy.is_pending(subject):
                    self.db.rollback()
                    continue
                notifications = policy.on_timeout(self.db, subject, now)
                self.db.commit()
                dispatch_all(self.dispatcher, notifications)
                processed.append({"subject_id": subject_id, "status": policy.status_of(subject)})
            except Exception as e:
                self.db.rollback()
                logger.error(f"Timeout sweep failed for {policy.subject_type.value} {subject_id}: {e}")
                errors.append({"subject_id": subject_id, "error": str(e)})

        return {
            "subject_type": policy.subject_type.value,
            "expired_found": len(expired_ids),
            "expired_processed": len(processed),
            "errors": len(errors),
            "details": {"processed": processed, "errors": errors},
        }

    def votes_for(self, policy: VotingPolicy, subject_id: str, voting_round: Optional[int] = None) -> List[VoteDB]:
        query = self.db.query(VoteDB).filter(
            VoteDB.subject_type == policy.subject_type,
            VoteDB.subject_id == subject_id,
        )
        if voting_round is not None:
            query = query.filter(VoteDB.voting_round == voting_round)
        return query.order_by(VoteDB.created_at.asc()).all()

    # -------------------------------------------------------------------------

    def _lock(self, policy: VotingPolicy, subject_id: str):
        subject = (
            self.db.query(policy.model)
            .filter(policy.model.id == subject_id)
            .with_for_update()
            .first()
        )
        if subject is None:
            raise SubjectNotFound(f"{policy.subject_type.value} {subject_id} not found")
        return subject

    def _has_voted(self, policy: VotingPolicy, subject_id: str, voter_id: str, voting_round: int) -> bool:
        return self.db.query(VoteDB.id).filter(
            VoteDB.subject_type == policy.subject_type,
            VoteDB.subject_id == subject_id,
            VoteDB.voter_id == voter_id,
            VoteDB.voting_round == voting_round,
        ).first() is not None
