"""
Escalation Ladder

AUTHORITY: SYSTEM
Turns accumulated inactivity into warnings and, at the end of the ladder,
into a review case. Runs from the daily batch, never on user action.

    3 months inactive -> level 1  first_warning
    4 months inactive -> level 2  second_warning
    5 months inactive -> level 3  final_warning
    6 months inactive -> level 4  council_review (review case, no warning row)

Only the most advanced newly-applicable stage is issued. A batch that did
not run for a while does not replay the stages it missed.

The ladder is scoped to an inactivity cycle: the cycle starts at the
latest of join date, last referral given and reinstatement. A referral
starts a new cycle, so there is no explicit reset.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import (
    ActorType, InactivityWarningDB, MemberDB, MemberStatus, ReviewCaseDB,
    TriggerType,
)
from .activity_clock import escalation_anchor, months_between, tenure_months
from .errors import MemberNotActive
from .notifications import Notification, NotificationDispatcher, default_dispatcher, dispatch_all
from .review_cases import ReviewCaseEngine
from .state_machine import log_transition

logger = logging.getLogger(__name__)


# =============================================================================
# STAGES
# =============================================================================

COUNCIL_REVIEW_LEVEL = 4

WARNING_STAGES = [
    {
        "months": 3,
        "level": 1,
        "type": "first_warning",
        "title": "First inactivity warning",
        "message": (
            "You have not given a referral in 3 months. The network works on "
            "give to receive: share an opportunity with a fellow member to stay active."
        ),
    },
    {
        "months": 4,
        "level": 2,
        "type": "second_warning",
        "title": "Second inactivity warning",
        "message": (
            "You have not given a referral in 4 months. Two more months without "
            "activity will send your membership to the ethics committee."
        ),
    },
    {
        "months": 5,
        "level": 3,
        "type": "final_warning",
        "title": "Final inactivity warning",
        "message": (
            "You have not given a referral in 5 months. Next month your membership "
            "will be reviewed by the ethics committee and may be revoked."
        ),
    },
    {
        "months": 6,
        "level": COUNCIL_REVIEW_LEVEL,
        "type": "council_review",
        "title": "Membership under review",
        "message": "Six months without giving a referral. Your membership goes to the ethics committee.",
    },
]


class EscalationAction(str, Enum):
    NONE = "none"
    WARNING = "warning"
    OPEN_CASE = "open_case"


@dataclass(frozen=True)
class WarningRecord:
    """One step already taken on the ladder."""
    level: int
    cycle_started_at: Optional[datetime] = None


@dataclass
class EscalationDecision:
    action: EscalationAction
    months_inactive: int = 0
    cycle_started_at: Optional[datetime] = None
    highest_issued: int = 0
    stage: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None

    @property
    def level(self) -> int:
        return self.stage["level"] if self.stage else 0

    @property
    def issues_warning(self) -> bool:
        return self.action == EscalationAction.WARNING

    @property
    def opens_case(self) -> bool:
        return self.action == EscalationAction.OPEN_CASE


def evaluate(member, warning_history: Iterable[WarningRecord], now: datetime) -> EscalationDecision:
    """
    Decide the next step for one member. Pure; writes nothing.

    Only history entries of the current cycle count toward highest_issued.
    Entries without a cycle are taken as belonging to the current one.
    """
    if member.status != MemberStatus.ACTIVE:
        raise MemberNotActive(f"Member {member.id} is {getattr(member.status, 'value', member.status)}")

    if tenure_months(member, now) < config.MIN_TENURE_MONTHS:
        return EscalationDecision(EscalationAction.NONE, reason="tenure_below_minimum")

    anchor = escalation_anchor(member)
    months = months_between(anchor, now)

    highest_issued = max(
        (
            record.level for record in warning_history
            if record.cycle_started_at is None or record.cycle_started_at >= anchor
        ),
        default=0,
    )

    applicable = [
        stage for stage in WARNING_STAGES
        if stage["months"] <= months and stage["level"] > highest_issued
    ]
    if not applicable:
        return EscalationDecision(
            EscalationAction.NONE,
            months_inactive=months,
            cycle_started_at=anchor,
            highest_issued=highest_issued,
            reason="no_new_stage",
        )

    stage = max(applicable, key=lambda s: s["level"])
    action = EscalationAction.OPEN_CASE if stage["level"] == COUNCIL_REVIEW_LEVEL else EscalationAction.WARNING
    return EscalationDecision(
        action,
        months_inactive=months,
        cycle_started_at=anchor,
        highest_issued=highest_issued,
        stage=stage,
    )


# =============================================================================
# LADDER (WRITES)
# =============================================================================

class EscalationLadder:
    """Applies evaluate() to stored members."""

    def __init__(
        self,
        db_session: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        case_engine: Optional[ReviewCaseEngine] = None,
    ):
        """Initialize with database session."""
        self.db = db_session
        self.dispatcher = dispatcher or default_dispatcher()
        self.case_engine = case_engine or ReviewCaseEngine(db_session, dispatcher=self.dispatcher)

    def warning_history(self, member: MemberDB) -> List[WarningRecord]:
        """Warnings issued plus inactivity cases opened, as ladder steps."""
        history = [
            WarningRecord(w.level, w.cycle_started_at)
            for w in self.db.query(InactivityWarningDB).filter(InactivityWarningDB.member_id == member.id).all()
        ]
        cases = self.db.query(ReviewCaseDB).filter(
            ReviewCaseDB.member_id == member.id,
            ReviewCaseDB.trigger_type == TriggerType.INACTIVITY,
            ReviewCaseDB.cycle_started_at.isnot(None),
        ).all()
        history += [WarningRecord(COUNCIL_REVIEW_LEVEL, c.cycle_started_at) for c in cases]
        return history

    def apply(self, member: MemberDB, now: datetime) -> Dict[str, Any]:
        """
        Evaluate one member and write the result.

        Returns a summary dict. A collision with a warning or case written
        by a concurrent run is reported as a no-op.
        """
        pending = self.case_engine.pending_case_for(member.id)
        if pending:
            return {"member_id": member.id, "action": "skipped", "reason": "pending_case", "case_id": pending.id}

        decision = evaluate(member, self.warning_history(member), now)

        if decision.action == EscalationAction.NONE:
            return {"member_id": member.id, "action": decision.action.value, "reason": decision.reason}

        if decision.opens_case:
            details = {
                "months_inactive": decision.months_inactive,
                "cycle_started_at": decision.cycle_started_at.isoformat(),
                "last_referral_given_at": (
                    member.last_given_referral_at.isoformat() if member.last_given_referral_at else None
                ),
                "warning_level": member.warning_level,
            }
            case = self.case_engine.open_case(
                member, TriggerType.INACTIVITY, details, now,
                cycle_started_at=decision.cycle_started_at,
            )
            return {"member_id": member.id, "action": decision.action.value, "case_id": case.id}

        return self._issue_warning(member, decision, now)

    def _issue_warning(self, member: MemberDB, decision: EscalationDecision, now: datetime) -> Dict[str, Any]:
        stage = decision.stage
        warning = InactivityWarningDB(
            id=str(uuid4()),
            member_id=member.id,
            level=stage["level"],
            warning_type=stage["type"],
            message=stage["message"],
            months_inactive=decision.months_inactive,
            cycle_started_at=decision.cycle_started_at,
            last_referral_given_at=member.last_given_referral_at,
            created_at=now,
        )
        previous_level = member.warning_level or 0
        member.warning_level = max(previous_level, stage["level"])

        self.db.add(warning)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"Warning level {stage['level']} for member {member.id} already issued this cycle")
            return {"member_id": member.id, "action": "noop", "reason": "already_issued", "level": stage["level"]}

        log_transition(
            self.db, "inactivity_warning", warning.id, member.id,
            f"level_{decision.highest_issued}", f"level_{stage['level']}", stage["type"], ActorType.SYSTEM,
            metadata={
                "months_inactive": decision.months_inactive,
                "cycle_started_at": decision.cycle_started_at.isoformat(),
            },
            now=now,
        )
        self.db.commit()

        dispatch_all(self.dispatcher, [Notification(member.id, stage["title"], stage["message"], "/dashboard")])

        logger.info(f"Inactivity warning level {stage['level']} issued to member {member.id} ({decision.months_inactive} months)")
        return {
            "member_id": member.id,
            "action": decision.action.value,
            "level": stage["level"],
            "warning_id": warning.id,
        }
