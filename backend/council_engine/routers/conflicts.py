"""
Specialization Conflict API Routes

An applicant asks for a specialization already held in the chapter. The
committee votes and the current holder gives an independent decision.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_member
from ..models.db_models import ConflictVoteChoice, InterestedDecision, MemberDB, SpecializationConflictDB
from ..services.governance import SpecializationConflictService


router = APIRouter(prefix="/conflicts", tags=["conflicts"])


class OpenConflictRequest(BaseModel):
    specialization: str = Field(..., description="Specialization the applicant wants to hold")


class ConflictVoteRequest(BaseModel):
    choice: ConflictVoteChoice
    reasoning: str


class InterestedDecisionRequest(BaseModel):
    decision: InterestedDecision
    reasoning: str


def conflict_to_dict(conflict: SpecializationConflictDB) -> Dict[str, Any]:
    return {
        "id": conflict.id,
        "applicant_id": conflict.applicant_id,
        "interested_member_id": conflict.interested_member_id,
        "chapter_id": conflict.chapter_id,
        "specialization": conflict.specialization,
        "status": conflict.status.value,
        "tally": {
            "approve": conflict.votes_approve,
            "reject": conflict.votes_reject,
            "new_chapter": conflict.votes_new_chapter,
        },
        "committee_decision": conflict.committee_decision,
        "interested_decision": conflict.interested_decision,
        "escalated_to_admin": conflict.escalated_to_admin,
        "auto_expire_at": conflict.auto_expire_at.isoformat() if conflict.auto_expire_at else None,
        "decided_at": conflict.decided_at.isoformat() if conflict.decided_at else None,
    }


@router.post("", response_model=dict)
def open_conflict(
    request: OpenConflictRequest,
    db: Session = Depends(get_db),
    current_member: MemberDB = Depends(get_current_member),
):
    """Ask for a specialization already held in the applicant's chapter."""
    conflict = SpecializationConflictService(db).open_conflict(current_member.id, request.specialization)
    return conflict_to_dict(conflict)


@router.get("/{conflict_id}", response_model=dict)
def get_conflict(
    conflict_id: str,
    db: Session = Depends(get_db),
    current_member: MemberDB = Depends(get_current_member),
):
    return conflict_to_dict(SpecializationConflictService(db).get_conflict(conflict_id))


@router.post("/{conflict_id}/votes", response_model=dict)
def cast_conflict_vote(
    conflict_id: str,
    request: ConflictVoteRequest,
    db: Session = Depends(get_db),
    current_member: MemberDB = Depends(get_current_member),
):
    outcome = SpecializationConflictService(db).cast_vote(
        conflict_id, current_member.id, request.choice.value, request.reasoning
    )
    return outcome.to_dict()


@router.post("/{conflict_id}/interested-decision", response_model=dict)
def record_interested_decision(
    conflict_id: str,
    request: InterestedDecisionRequest,
    db: Session = Depends(get_db),
    current_member: MemberDB = Depends(get_current_member),
):
    """The current holder's approval or rejection. A rejection escalates to an admin."""
    conflict = SpecializationConflictService(db).record_interested_decision(
        conflict_id, current_member.id, request.decision.value, request.reasoning
    )
    return conflict_to_dict(conflict)
