"""
Misconduct Report API Routes

Members file ethics reports against other members; the committee votes
sanction / dismiss / escalate on them.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_member
from ..models.db_models import MemberDB, MisconductReportDB, ReportStatus, ReportVoteChoice, Severity
from ..services.governance import MisconductService


router = APIRouter(prefix="/reports", tags=["reports"])


class FileReportRequest(BaseModel):
    """A member's report against another member."""
    reported_id: str
    report_type: str = Field(..., description="e.g. payment_evasion, harassment, fraud")
    description: str
    context: Optional[str] = Field(None, description="Where it happened (meeting, referral, chat)")


class ReportVoteRequest(BaseModel):
    choice: ReportVoteChoice
    reasoning: str
    severity: Optional[Severity] = Field(None, description="Required for sanction ballots")


def report_to_dict(report: MisconductReportDB) -> Dict[str, Any]:
    return {
        "id": report.id,
        "reporter_id": report.reporter_id,
        "reported_id": report.reported_id,
        "report_type": report.report_type,
        "description": report.description,
        "context": report.context,
        "status": report.status.value,
        "tally": {
            "sanction": report.votes_sanction,
            "dismiss": report.votes_dismiss,
            "escalate": report.votes_escalate,
        },
        "severity": report.severity,
        "escalated_to_admin": report.escalated_to_admin,
        "committee_member_ids": report.committee_member_ids,
        "auto_expire_at": report.auto_expire_at.isoformat() if report.auto_expire_at else None,
        "created_at": report.created_at.isoformat() if report.created_at else None,
        "decided_at": report.decided_at.isoformat() if report.decided_at else None,
    }


@router.post("", response_model=dict)
def file_report(
    request: FileReportRequest,
    db: Session = Depends(get_db),
    current_member: MemberDB = Depends(get_current_member),
):
    """File a misconduct report. The committee is notified."""
    service = MisconductService(db)
    report = service.file_report(
        reporter_id=current_member.id,
        reported_id=request.reported_id,
        report_type=request.report_type,
        description=request.description,
        context=request.context,
    )
    return report_to_dict(report)


@router.get("", response_model=dict)
def list_reports(
    status: Optional[ReportStatus] = Query(None),
    db: Session = Depends(get_db),
    current_member: MemberDB = Depends(get_current_member),
):
    reports = MisconductService(db).list_reports(status=status)
    return {"reports": [report_to_dict(r) for r in reports], "count": len(reports)}


@router.post("/{report_id}/votes", response_model=dict)
def cast_report_vote(
    report_id: str,
    request: ReportVoteRequest,
    db: Session = Depends(get_db),
    current_member: MemberDB = Depends(get_current_member),
):
    """Committee ballot on a report. A sanction ballot must carry a severity."""
    service = MisconductService(db)
    outcome = service.cast_vote(
        report_id,
        current_member.id,
        request.choice.value,
        request.reasoning,
        severity=request.severity.value if request.severity else None,
    )
    return outcome.to_dict()
