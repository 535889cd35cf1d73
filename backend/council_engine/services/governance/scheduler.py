"""
Governance Scheduler

AUTHORITY: SYSTEM - Runs automatically, no user intervention required.

Daily batch driving the escalation ladder, the deadline sweeps, vote
reminders and committee rotation. Deadlines are passive: a case whose
deadline passes between two runs is closed on the next run (or on the
next vote attempt), so worst-case auto-expiry latency equals the batch
interval.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ...database import utcnow
from ...models.db_models import MemberDB, MemberStatus
from .committee import CommitteeProvider, RankingCommitteeProvider, rotate_committees
from .escalation_ladder import EscalationLadder
from .misconduct import MisconductService
from .notifications import NotificationDispatcher, default_dispatcher
from .penalties import PenaltyLedger
from .review_cases import ReviewCaseEngine
from .specialization_conflicts import SpecializationConflictService

logger = logging.getLogger(__name__)


class GovernanceScheduler:
    """Daily governance batch."""

    def __init__(
        self,
        db_session: Session,
        dispatcher: Optional[NotificationDispatcher] = None,
        committee_provider: Optional[CommitteeProvider] = None,
        penalty_ledger: Optional[PenaltyLedger] = None,
    ):
        """Initialize with database session."""
        self.db = db_session
        self.dispatcher = dispatcher or default_dispatcher()
        self.committee_provider = committee_provider or RankingCommitteeProvider(db_session)
        self.case_engine = ReviewCaseEngine(db_session, self.dispatcher, self.committee_provider)
        self.ladder = EscalationLadder(db_session, self.dispatcher, self.case_engine)
        self.misconduct = MisconductService(
            db_session, self.dispatcher, self.committee_provider, penalty_ledger=penalty_ledger
        )
        self.conflicts = SpecializationConflictService(db_session, self.dispatcher, self.committee_provider)

    def run_inactivity_check(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Evaluate every active member against the escalation ladder.

        Each member is processed on its own; a failure is rolled back,
        recorded, and the run moves on to the next member.
        """
        now = now or utcnow()
        member_ids = [
            row.id for row in self.db.query(MemberDB.id).filter(MemberDB.status == MemberStatus.ACTIVE).all()
        ]

        warnings_issued = []
        cases_opened = []
        errors = []

        for member_id in member_ids:
            try:
                member = self.db.query(MemberDB).filter(MemberDB.id == member_id).first()
                if member is None or member.status != MemberStatus.ACTIVE:
                    continue
                result = self.ladder.apply(member, now)
                if result["action"] == "warning":
                    warnings_issued.append(result)
                elif result["action"] == "open_case":
                    cases_opened.append(result)
            except Exception as e:
                self.db.rollback()
                logger.error(f"Inactivity check failed for member {member_id}: {e}")
                errors.append({"member_id": member_id, "error": str(e)})

        logger.info(
            f"Inactivity check: {len(member_ids)} members, {len(warnings_issued)} warnings, "
            f"{len(cases_opened)} cases, {len(errors)} errors"
        )
        return {
            "run_date": now.isoformat(),
            "members_checked": len(member_ids),
            "warnings_issued": len(warnings_issued),
            "cases_opened": len(cases_opened),
            "errors": len(errors),
            "details": {
                "warnings": warnings_issued,
                "cases": cases_opened,
                "errors": errors,
            },
        }

    def run_case_sweep(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Timeout fallback for review cases, misconduct reports and conflicts."""
        now = now or utcnow()
        review_cases = self.case_engine.sweep_expired(now)
        reports = self.misconduct.sweep_expired(now)
        conflicts = self.conflicts.sweep_expired(now)

        sweeps = [review_cases, reports, conflicts]
        logger.info(
            f"Deadline sweep: {review_cases['expired_processed']} cases auto-expired, "
            f"{reports['expired_processed']} reports and {conflicts['expired_processed']} conflicts escalated"
        )
        return {
            "run_date": now.isoformat(),
            "expired_found": sum(s["expired_found"] for s in sweeps),
            "expired_processed": sum(s["expired_processed"] for s in sweeps),
            "errors": sum(s["errors"] for s in sweeps),
            "details": {
                "review_cases": review_cases,
                "misconduct_reports": reports,
                "specialization_conflicts": conflicts,
            },
        }

    def run_vote_reminders(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return self.case_engine.send_vote_reminders(now or utcnow())

    def run_committee_rotation(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return rotate_committees(self.db, now or utcnow())

    def run_daily(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Full daily run.

        The sweep runs before the inactivity check so members freed by an
        expired case are not evaluated against a stale status.
        """
        now = now or utcnow()
        return {
            "run_date": now.isoformat(),
            "case_sweep": self.run_case_sweep(now),
            "inactivity_check": self.run_inactivity_check(now),
            "vote_reminders": self.run_vote_reminders(now),
            "committee_rotation": self.run_committee_rotation(now),
        }
