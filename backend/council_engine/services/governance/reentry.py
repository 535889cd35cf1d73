"""
Reentry Eligibility Engine

AUTHORITY: SYSTEM classifies, ADMIN decides.

Classification from expulsion history:
- 2+ expulsions          -> PERMANENT (never eligible, identifiers banned)
- 1 expulsion, < 6 months -> WAITING  (requests auto-rejected)
- otherwise              -> ELIGIBLE (an admin may approve)

The engine never approves reentry on its own. It only decides whether the
option is offered, and refuses an admin approval that would break a
permanent ban even when the UI gate was bypassed.

Expulsion counters are never reset, so a later expulsion is always
recognised as the second one.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import (
    ActorType, MemberDB, MemberStatus, ReentryRequestDB, ReentryStatus,
)
from .activity_clock import add_months, months_between
from .ban_registry import BanRegistry
from .errors import (
    EmptyReasoning, NotExpelled, PermanentBanViolation, ReentryNotEligible,
    RequestAlreadyReviewed, SubjectNotFound,
)
from .notifications import Notification, NotificationDispatcher, default_dispatcher, dispatch_all
from .state_machine import log_transition

logger = logging.getLogger(__name__)


class ReentryEligibility(str, Enum):
    PERMANENT = "permanent"
    WAITING = "waiting"
    ELIGIBLE = "eligible"


def classify_reentry(
    expulsion_count: int,
    last_expulsion_at: Optional[datetime],
    now: datetime,
) -> ReentryEligibility:
    """Pure classification over the member's expulsion history."""
    if expulsion_count >= config.PERMANENT_BAN_THRESHOLD:
        return ReentryEligibility.PERMANENT
    if expulsion_count == 1 and last_expulsion_at is not None:
        if months_between(last_expulsion_at, now) < config.REENTRY_COOLDOWN_MONTHS:
            return ReentryEligibility.WAITING
    return ReentryEligibility.ELIGIBLE


def member_eligibility(member: MemberDB, now: datetime) -> ReentryEligibility:
    if member.status == MemberStatus.BANNED:
        return ReentryEligibility.PERMANENT
    return classify_reentry(member.expulsion_count or 0, member.last_expulsion_at, now)


def eligible_from(member: MemberDB) -> Optional[datetime]:
    """When a once-expelled member becomes eligible. None if never/already."""
    if member.expulsion_count != 1 or member.last_expulsion_at is None:
        return None
    return add_months(member.last_expulsion_at, config.REENTRY_COOLDOWN_MONTHS)


def record_expulsion(db: Session, member: MemberDB, now: datetime) -> ReentryEligibility:
    """
    Apply an expulsion to the member and classify the result.

    Called inside the transaction that finalizes the expulsion. When the
    result is PERMANENT the member is banned and their identifiers are
    pushed to the ban registry right here, not at reentry-request time.
    """
    member.expulsion_count = (member.expulsion_count or 0) + 1
    member.last_expulsion_at = now

    eligibility = classify_reentry(member.expulsion_count, member.last_expulsion_at, now)

    if eligibility == ReentryEligibility.PERMANENT:
        member.status = MemberStatus.BANNED
        BanRegistry(db).ban_member(member, now)
        logger.info(f"Member {member.id} permanently banned after expulsion #{member.expulsion_count}")
    else:
        member.status = MemberStatus.EXPELLED
        logger.info(f"Member {member.id} expelled (expulsion #{member.expulsion_count})")

    return eligibility


# =============================================================================
# REENTRY REQUESTS
# =============================================================================

AUTO_REJECT_NOTES = {
    ReentryEligibility.WAITING: "Automatically rejected: the reentry cooldown has not elapsed yet.",
    ReentryEligibility.PERMANENT: "Automatically rejected: the member is permanently banned.",
}


class ReentryService:
    """
    Reentry request lifecycle.

    USER-AUTHORIZED: file_request (the expelled member)
    ADMIN-AUTHORIZED: decide
    SYSTEM: auto-rejection of ineligible requests
    """

    def __init__(self, db_session: Session, dispatcher: Optional[NotificationDispatcher] = None):
        self.db = db_session
        self.dispatcher = dispatcher or default_dispatcher()
        self.ban_registry = BanRegistry(db_session)

    def get_eligibility(self, member_id: str, now: datetime) -> Dict[str, Any]:
        member = self._get_member(member_id)
        eligibility = member_eligibility(member, now)
        available_from = eligible_from(member) if eligibility == ReentryEligibility.WAITING else None
        return {
            "member_id": member.id,
            "status": member.status.value,
            "expulsion_count": member.expulsion_count,
            "last_expulsion_at": member.last_expulsion_at.isoformat() if member.last_expulsion_at else None,
            "eligibility": eligibility.value,
            "can_request": member.status in (MemberStatus.EXPELLED, MemberStatus.BANNED)
            and eligibility == ReentryEligibility.ELIGIBLE,
            "eligible_from": available_from.isoformat() if available_from else None,
        }

    def file_request(self, member_id: str, reason: str, now: datetime) -> ReentryRequestDB:
        """
        File a reentry request.

        Ineligible requests are still recorded (paper trail) but rejected
        on the spot without admin attention. A second pending request for
        the same member returns the existing one.
        """
        if not reason or not reason.strip():
            raise EmptyReasoning("A reentry request must state a reason")

        member = self._get_member(member_id)
        if member.status not in (MemberStatus.EXPELLED, MemberStatus.BANNED):
            raise NotExpelled(f"Member {member_id} is {member.status.value}, not expelled")

        existing = self._pending_request(member_id)
        if existing:
            return existing

        eligibility = member_eligibility(member, now)
        request = ReentryRequestDB(
            id=str(uuid4()),
            member_id=member_id,
            reason=reason.strip(),
            eligibility=eligibility.value,
            status=ReentryStatus.PENDING,
            created_at=now,
        )

        notifications: List[Notification] = []
        if eligibility != ReentryEligibility.ELIGIBLE:
            request.status = ReentryStatus.REJECTED
            request.admin_notes = AUTO_REJECT_NOTES[eligibility]
            request.reviewed_at = now
            notifications.append(Notification(
                member_id,
                "Reentry request rejected",
                request.admin_notes,
                "/reentry",
            ))

        self.db.add(request)
        try:
            self.db.flush()
        except IntegrityError:
            # Concurrent filing won the pending slot
            self.db.rollback()
            existing = self._pending_request(member_id)
            if existing:
                return existing
            raise

        log_transition(
            self.db, "reentry_request", request.id, member_id,
            None, request.status, "reentry_requested", ActorType.MEMBER,
            metadata={"eligibility": eligibility.value}, now=now,
        )
        if request.status == ReentryStatus.REJECTED:
            log_transition(
                self.db, "reentry_request", request.id, member_id,
                ReentryStatus.PENDING, ReentryStatus.REJECTED, "auto_rejected_ineligible",
                ActorType.SYSTEM, metadata={"eligibility": eligibility.value}, now=now,
            )

        self.db.commit()
        dispatch_all(self.dispatcher, notifications)

        logger.info(f"Reentry request {request.id} filed by {member_id}: {request.status.value} ({eligibility.value})")
        return request

    def decide(
        self,
        request_id: str,
        admin_id: str,
        approve: bool,
        notes: str,
        now: datetime,
    ) -> ReentryRequestDB:
        """
        Admin decision on a pending request.

        Approval is re-checked against the engine: a PERMANENT member or a
        banned identifier can never be readmitted, a WAITING member not yet.
        """
        if not notes or not notes.strip():
            raise EmptyReasoning("Admin notes are required for a reentry decision")

        request = (
            self.db.query(ReentryRequestDB)
            .filter(ReentryRequestDB.id == request_id)
            .with_for_update()
            .first()
        )
        if request is None:
            raise SubjectNotFound(f"Reentry request {request_id} not found")
        if request.status != ReentryStatus.PENDING:
            raise RequestAlreadyReviewed(f"Reentry request {request_id} is already {request.status.value}")

        member = self._get_member(request.member_id)

        if approve:
            self._assert_can_readmit(member, now)

        new_status = ReentryStatus.APPROVED if approve else ReentryStatus.REJECTED
        request.status = new_status
        request.admin_notes = notes.strip()
        request.reviewed_by = admin_id
        request.reviewed_at = now

        if approve:
            member.status = MemberStatus.ACTIVE
            member.reinstated_at = now

        log_transition(
            self.db, "reentry_request", request.id, member.id,
            ReentryStatus.PENDING, new_status, "admin_decision", ActorType.ADMIN,
            metadata={"admin_id": admin_id, "expulsion_count": member.expulsion_count}, now=now,
        )
        self.db.commit()

        title, body = (
            ("Reentry approved", "Your reentry request was approved. Welcome back.")
            if approve else
            ("Reentry request rejected", request.admin_notes)
        )
        dispatch_all(self.dispatcher, [Notification(member.id, title, body, "/dashboard")])

        logger.info(f"Reentry request {request.id} {new_status.value} by admin {admin_id}")
        return request

    def list_requests(self, status: Optional[ReentryStatus] = None) -> List[ReentryRequestDB]:
        query = self.db.query(ReentryRequestDB)
        if status is not None:
            query = query.filter(ReentryRequestDB.status == status)
        return query.order_by(ReentryRequestDB.created_at.desc()).all()

    # -------------------------------------------------------------------------

    def _assert_can_readmit(self, member: MemberDB, now: datetime) -> None:
        eligibility = member_eligibility(member, now)
        if eligibility == ReentryEligibility.PERMANENT or self.ban_registry.is_member_banned(member):
            raise PermanentBanViolation(f"Member {member.id} is permanently banned and cannot be readmitted")
        if eligibility == ReentryEligibility.WAITING:
            raise ReentryNotEligible(f"Member {member.id} is still in the reentry cooldown")
        if member.status != MemberStatus.EXPELLED:
            raise NotExpelled(f"Member {member.id} is {member.status.value}, not expelled")

    def _get_member(self, member_id: str) -> MemberDB:
        member = self.db.query(MemberDB).filter(MemberDB.id == member_id).first()
        if member is None:
            raise SubjectNotFound(f"Member {member_id} not found")
        return member

    def _pending_request(self, member_id: str) -> Optional[ReentryRequestDB]:
        return self.db.query(ReentryRequestDB).filter(
            ReentryRequestDB.member_id == member_id,
            ReentryRequestDB.status == ReentryStatus.PENDING,
        ).first()
