"""
Scheduler API Routes

Internal endpoints for system-automatic tasks.
Inactivity escalation, deadline sweeps, vote reminders, committee rotation.
Triggered by cron with the shared internal key.
"""
from fastapi import APIRouter, Depends, HTTPException, Header
from sqlalchemy.orm import Session

from .. import config
from ..database import get_db
from ..services.governance import GovernanceScheduler


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != config.INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/daily-run", response_model=dict)
def run_daily(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Run the full daily governance batch.

    System-automatic - no user confirmation required.
    """
    return GovernanceScheduler(db).run_daily()


@router.post("/inactivity-check", response_model=dict)
def run_inactivity_check(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Evaluate every active member against the escalation ladder."""
    return GovernanceScheduler(db).run_inactivity_check()


@router.post("/case-sweep", response_model=dict)
def run_case_sweep(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Auto-expire review cases and escalate peer reviews past their deadline."""
    return GovernanceScheduler(db).run_case_sweep()


@router.post("/vote-reminders", response_model=dict)
def run_vote_reminders(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    return GovernanceScheduler(db).run_vote_reminders()


@router.post("/committee-rotation", response_model=dict)
def run_committee_rotation(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Seat new committees where the six-month term is over."""
    return GovernanceScheduler(db).run_committee_rotation()
