"""
Review Case State Machine

Deterministic state machine for disciplinary review cases.
Terminal states are never left. All transitions are logged immutably.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import ActorType, CaseStatus, GovernanceLogDB, ReviewCaseDB
from .errors import CaseAlreadyDecided


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# EXTENDED is a loop-back: the case is immediately returned to PENDING with
# a later deadline. APPROVED and AUTO_EXPIRED carry identical member side
# effects (expulsion); they differ only in who decided.
#
# =============================================================================

CASE_STATE_CONFIG = {
    CaseStatus.PENDING: {
        "description": "Committee vote in progress",
        "allowed_transitions": [
            CaseStatus.APPROVED,
            CaseStatus.REJECTED,
            CaseStatus.EXTENDED,
            CaseStatus.AUTO_EXPIRED,
        ],
        "accepts_votes": True,
        "decided_by_quorum": False,
    },
    CaseStatus.EXTENDED: {
        "description": "Committee granted more time",
        "allowed_transitions": [CaseStatus.PENDING],
        "accepts_votes": False,
        "decided_by_quorum": True,
    },
    CaseStatus.APPROVED: {
        "description": "Committee voted to expel",
        "allowed_transitions": [],  # Terminal state
        "accepts_votes": False,
        "decided_by_quorum": True,
    },
    CaseStatus.REJECTED: {
        "description": "Committee absolved the member",
        "allowed_transitions": [],  # Terminal state
        "accepts_votes": False,
        "decided_by_quorum": True,
    },
    CaseStatus.AUTO_EXPIRED: {
        "description": "No majority before the deadline; member auto-expelled",
        "allowed_transitions": [],  # Terminal state
        "accepts_votes": False,
        "decided_by_quorum": False,
    },
}


def log_transition(
    db: Session,
    subject_type: str,
    subject_id: str,
    member_id: Optional[str],
    from_state: Optional[str],
    to_state: str,
    trigger: str,
    actor: ActorType,
    metadata: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> GovernanceLogDB:
    """Append one immutable governance log entry."""
    entry = GovernanceLogDB(
        id=str(uuid4()),
        subject_type=subject_type,
        subject_id=subject_id,
        member_id=member_id,
        from_state=_value(from_state),
        to_state=_value(to_state),
        trigger=trigger,
        actor=actor,
        event_metadata=metadata or {},
    )
    if now is not None:
        entry.created_at = now
    db.add(entry)
    return entry


def _value(state) -> Optional[str]:
    if state is None:
        return None
    return getattr(state, "value", state)


# =============================================================================
# STATE MACHINE
# =============================================================================

class CaseStateMachine:
    """
    Guards and records review case transitions.

    Core Principles:
    - Only PENDING accepts a decision
    - Terminal states are final
    - Every transition is logged with its trigger and actor
    """

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session

    def get_state_config(self, state: CaseStatus) -> Dict[str, Any]:
        """Get configuration for a state."""
        return CASE_STATE_CONFIG.get(state, {})

    def can_transition(self, from_state: CaseStatus, to_state: CaseStatus) -> bool:
        return to_state in self.get_state_config(from_state).get("allowed_transitions", [])

    def is_terminal_state(self, state: CaseStatus) -> bool:
        """Check if a state is terminal (no further transitions)."""
        return len(self.get_state_config(state).get("allowed_transitions", [])) == 0

    def get_next_states(self, state: CaseStatus) -> List[CaseStatus]:
        return self.get_state_config(state).get("allowed_transitions", [])

    def transition(
        self,
        case: ReviewCaseDB,
        to_state: CaseStatus,
        trigger: str,
        actor: ActorType,
        now: datetime,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Execute a state transition.

        Raises CaseAlreadyDecided when the move is not allowed from the
        current state.
        """
        from_state = case.status

        if not self.can_transition(from_state, to_state):
            raise CaseAlreadyDecided(
                f"Case {case.id} is {_value(from_state)} and cannot move to {_value(to_state)}"
            )

        log_transition(
            self.db,
            subject_type="review_case",
            subject_id=case.id,
            member_id=case.member_id,
            from_state=from_state,
            to_state=to_state,
            trigger=trigger,
            actor=actor,
            metadata={
                "votes_for_expulsion": case.votes_for_expulsion,
                "votes_against": case.votes_against,
                "votes_extend": case.votes_extend,
                **(metadata or {}),
            },
            now=now,
        )

        case.status = to_state
