"""
Reentry API Routes

Expelled members check their eligibility and file reentry requests;
administrators decide. The engine refuses any approval that would break a
permanent ban, whatever the console shows.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db, utcnow
from ..auth import get_current_member, require_admin
from ..models.db_models import MemberDB, ReentryRequestDB, ReentryStatus
from ..services.governance import ReentryService


router = APIRouter(prefix="/reentry", tags=["reentry"])


class FileReentryRequest(BaseModel):
    reason: str = Field(..., description="Why the member should be readmitted")


class ReentryDecisionRequest(BaseModel):
    approve: bool
    notes: str = Field(..., description="Mandatory admin notes")


def request_to_dict(request: ReentryRequestDB) -> Dict[str, Any]:
    return {
        "id": request.id,
        "member_id": request.member_id,
        "status": request.status.value,
        "reason": request.reason,
        "eligibility": request.eligibility,
        "admin_notes": request.admin_notes,
        "reviewed_by": request.reviewed_by,
        "created_at": request.created_at.isoformat() if request.created_at else None,
        "reviewed_at": request.reviewed_at.isoformat() if request.reviewed_at else None,
    }


# =============================================================================
# MEMBER ENDPOINTS
# =============================================================================

@router.get("/eligibility", response_model=dict)
def get_eligibility(
    db: Session = Depends(get_db),
    current_member: MemberDB = Depends(get_current_member),
):
    """permanent / waiting / eligible, with the date a waiting member becomes eligible."""
    return ReentryService(db).get_eligibility(current_member.id, utcnow())


@router.post("/requests", response_model=dict)
def file_request(
    request: FileReentryRequest,
    db: Session = Depends(get_db),
    current_member: MemberDB = Depends(get_current_member),
):
    """File a reentry request. Requests filed during the cooldown or after a permanent ban are rejected on the spot."""
    reentry_request = ReentryService(db).file_request(current_member.id, request.reason, utcnow())
    return request_to_dict(reentry_request)


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@router.get("/requests", response_model=dict)
def list_requests(
    status: Optional[ReentryStatus] = Query(None),
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    requests = ReentryService(db).list_requests(status=status)
    return {"requests": [request_to_dict(r) for r in requests], "count": len(requests)}


@router.post("/requests/{request_id}/decision", response_model=dict)
def decide_request(
    request_id: str,
    decision: ReentryDecisionRequest,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    """Approve or reject a pending request. Approval of a banned member is refused (409)."""
    reentry_request = ReentryService(db).decide(
        request_id, admin.id, decision.approve, decision.notes, utcnow()
    )
    return request_to_dict(reentry_request)
