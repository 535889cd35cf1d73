"""
Council API Routes

Review cases and committee voting.
Committee members read cases and cast votes; administrators may open a
case for a non-inactivity trigger (misconduct, red-flag alert).
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db, utcnow
from ..auth import get_current_member, require_admin
from ..models.db_models import (
    ActorType, CaseStatus, CaseVoteChoice, MemberDB, ReviewCaseDB, TriggerType, VoteDB,
)
from ..services.governance import ReviewCaseEngine, RankingCommitteeProvider, SubjectNotFound


router = APIRouter(prefix="/council", tags=["council"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CastVoteRequest(BaseModel):
    """A committee ballot on a review case."""
    choice: CaseVoteChoice = Field(..., description="expel, absolve or extend")
    reasoning: str = Field(..., description="Mandatory written rationale")


class OpenCaseRequest(BaseModel):
    """Admin referral of a member to the committee."""
    member_id: str
    trigger_type: TriggerType = Field(default=TriggerType.OTHER)
    trigger_details: Dict[str, Any] = Field(default_factory=dict, description="Evidence snapshot")


def _format_datetime(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def vote_to_dict(vote: VoteDB) -> Dict[str, Any]:
    return {
        "id": vote.id,
        "voter_id": vote.voter_id,
        "voting_round": vote.voting_round,
        "choice": vote.choice,
        "severity": vote.severity,
        "reasoning": vote.reasoning,
        "created_at": _format_datetime(vote.created_at),
    }


def case_to_dict(case: ReviewCaseDB, votes: Optional[List[VoteDB]] = None) -> Dict[str, Any]:
    result = {
        "id": case.id,
        "member_id": case.member_id,
        "member_name": case.member.full_name if case.member else None,
        "trigger_type": case.trigger_type.value,
        "trigger_details": case.trigger_details,
        "status": case.status.value,
        "tally": {
            "expel": case.votes_for_expulsion,
            "absolve": case.votes_against,
            "extend": case.votes_extend,
        },
        "committee_member_ids": case.committee_member_ids,
        "extension_count": case.extension_count,
        "voting_round": (case.extension_count or 0) + 1,
        "auto_expire_at": _format_datetime(case.auto_expire_at),
        "created_at": _format_datetime(case.created_at),
        "decided_at": _format_datetime(case.decided_at),
    }
    if votes is not None:
        result["votes"] = [vote_to_dict(v) for v in votes]
    return result


# =============================================================================
# COMMITTEE ENDPOINTS
# =============================================================================

@router.get("/cases", response_model=dict)
def list_cases(
    status: Optional[CaseStatus] = Query(None),
    db: Session = Depends(get_db),
    current_member: MemberDB = Depends(get_current_member),
):
    """List review cases, most recent first."""
    engine = ReviewCaseEngine(db)
    cases = engine.list_cases(status=status)
    return {"cases": [case_to_dict(c) for c in cases], "count": len(cases)}


@router.get("/cases/{case_id}", response_model=dict)
def get_case(
    case_id: str,
    db: Session = Depends(get_db),
    current_member: MemberDB = Depends(get_current_member),
):
    """A case with its tally and every ballot cast on it."""
    engine = ReviewCaseEngine(db)
    case = engine.get_case(case_id)
    return case_to_dict(case, engine.votes_for(case_id))


@router.post("/cases/{case_id}/votes", response_model=dict)
def cast_vote(
    case_id: str,
    request: CastVoteRequest,
    db: Session = Depends(get_db),
    current_member: MemberDB = Depends(get_current_member),
):
    """
    Cast a ballot.

    The first choice to reach the majority decides the case. Errors:
    already voted (409), already decided (409), not on the committee (403).
    """
    engine = ReviewCaseEngine(db)
    outcome = engine.cast_vote(case_id, current_member.id, request.choice.value, request.reasoning)
    return outcome.to_dict()


@router.get("/committee", response_model=dict)
def get_committee(
    chapter_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_member: MemberDB = Depends(get_current_member),
):
    """Current committee for a chapter (network-wide when omitted)."""
    provider = RankingCommitteeProvider(db)
    member_ids = provider.current_committee(chapter_id)
    members = db.query(MemberDB).filter(MemberDB.id.in_(member_ids)).all() if member_ids else []
    by_id = {m.id: m for m in members}
    return {
        "chapter_id": chapter_id,
        "committee": [
            {"id": m_id, "name": by_id[m_id].full_name, "points": by_id[m_id].total_points}
            for m_id in member_ids if m_id in by_id
        ],
    }


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@router.post("/cases", response_model=dict)
def open_case(
    request: OpenCaseRequest,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    """Refer a member to the committee. An existing pending case is returned as is."""
    member = db.query(MemberDB).filter(MemberDB.id == request.member_id).first()
    if member is None:
        raise SubjectNotFound(f"Member {request.member_id} not found")

    engine = ReviewCaseEngine(db)
    details = dict(request.trigger_details)
    details["referred_by"] = admin.id
    case = engine.open_case(member, request.trigger_type, details, utcnow(), actor=ActorType.ADMIN)
    return case_to_dict(case)
