"""
Penalty Ledger

Point deductions ordered by a misconduct sanction. The points ledger
itself lives outside this service; governance only records the penalty
and lowers the mirrored total the committee ranking reads.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import MemberDB, PenaltyDB, Severity

logger = logging.getLogger(__name__)


SANCTION_POINTS = {
    Severity.LIGHT: 50,
    Severity.SERIOUS: 150,
    Severity.VERY_SERIOUS: 300,
}


class PenaltyLedger:
    """Capability interface for the points ledger."""

    def deduct(
        self,
        member_id: str,
        points: int,
        severity: Severity,
        reason: str,
        source_report_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        raise NotImplementedError


class SqlPenaltyLedger(PenaltyLedger):
    """Writes member_penalties inside the caller's transaction."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def deduct(self, member_id, points, severity, reason, source_report_id=None, now=None) -> PenaltyDB:
        penalty = PenaltyDB(
            id=str(uuid4()),
            member_id=member_id,
            penalty_type="misconduct_sanction",
            severity=Severity(severity).value,
            points_deducted=points,
            reason=reason,
            source_report_id=source_report_id,
        )
        if now is not None:
            penalty.created_at = now
        self.db.add(penalty)

        member = self.db.query(MemberDB).filter(MemberDB.id == member_id).first()
        if member is not None:
            member.total_points = max(0, (member.total_points or 0) - points)

        logger.info(f"Penalty {penalty.id}: -{points} points for member {member_id} ({penalty.severity})")
        return penalty
