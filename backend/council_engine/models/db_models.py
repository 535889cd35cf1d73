"""
Council Engine - SQLAlchemy ORM Models
PostgreSQL database models for the disciplinary governance engine
"""
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, DateTime, Text, JSON, ForeignKey, Boolean,
    Enum as SQLEnum, Index, UniqueConstraint, text,
)
from sqlalchemy.orm import relationship
from ..database import Base, utcnow


def _enum_column(enum_cls):
    """Store the enum *value* as VARCHAR so partial indexes can match on it."""
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


# =============================================================================
# ENUMS
# =============================================================================

class MemberStatus(str, Enum):
    """Membership status. Other subsystems may read it, only governance writes it."""
    ACTIVE = "active"
    UNDER_REVIEW = "under_review"
    EXPELLED = "expelled"
    BANNED = "banned"


class TriggerType(str, Enum):
    """What opened a review case."""
    INACTIVITY = "inactivity"
    MISCONDUCT = "misconduct"
    OTHER = "other"


class CaseStatus(str, Enum):
    """States in the review case state machine."""
    PENDING = "pending"
    APPROVED = "approved"        # expel
    REJECTED = "rejected"        # absolve
    EXTENDED = "extended"        # transient, loops back to PENDING
    AUTO_EXPIRED = "auto_expired"


class CaseVoteChoice(str, Enum):
    EXPEL = "expel"
    ABSOLVE = "absolve"
    EXTEND = "extend"


class VoteSubject(str, Enum):
    """Which kind of committee decision a vote belongs to."""
    REVIEW_CASE = "review_case"
    MISCONDUCT_REPORT = "misconduct_report"
    SPECIALIZATION_CONFLICT = "specialization_conflict"


class ReportStatus(str, Enum):
    PENDING = "pending"
    SANCTIONED = "sanctioned"
    DISMISSED = "dismissed"
    ESCALATED = "escalated"


class ReportVoteChoice(str, Enum):
    SANCTION = "sanction"
    DISMISS = "dismiss"
    ESCALATE = "escalate"


class Severity(str, Enum):
    """Sanction severity, mildest first."""
    LIGHT = "light"
    SERIOUS = "serious"
    VERY_SERIOUS = "very_serious"


class ConflictStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    NEW_CHAPTER = "new_chapter"
    ESCALATED = "escalated"


class ConflictVoteChoice(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    NEW_CHAPTER = "new_chapter"


class InterestedDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class ReentryStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class IdentifierType(str, Enum):
    EMAIL = "email"
    PHONE = "phone"
    TAX_ID = "tax_id"


class ActorType(str, Enum):
    """Actor types for the governance log."""
    SYSTEM = "SYSTEM"
    COMMITTEE = "COMMITTEE"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


# =============================================================================
# MEMBERS
# =============================================================================

class MemberDB(Base):
    """
    A network member as seen by the governance engine.

    total_points is mirrored from the points ledger and only read here
    (committee ranking). Every other governance column is owned and
    mutated exclusively by this service.
    """
    __tablename__ = "members"

    id = Column(String(36), primary_key=True)  # UUID
    full_name = Column(String(255), nullable=False)

    # Identifiers copied to the ban registry on a permanent ban
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(32), nullable=True)
    tax_id = Column(String(32), nullable=True)

    chapter_id = Column(String(36), nullable=True, index=True)
    specialization = Column(String(100), nullable=True)
    total_points = Column(Integer, default=0, nullable=False)

    joined_at = Column(DateTime, default=utcnow, nullable=False)
    last_given_referral_at = Column(DateTime, nullable=True)
    reinstated_at = Column(DateTime, nullable=True)

    # Highest inactivity warning ever issued (0-3); never decreases
    warning_level = Column(Integer, default=0, nullable=False)
    status = Column(_enum_column(MemberStatus), default=MemberStatus.ACTIVE, nullable=False, index=True)

    # Never reset, so a later expulsion is recognised as the second one
    expulsion_count = Column(Integer, default=0, nullable=False)
    last_expulsion_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    warnings = relationship("InactivityWarningDB", back_populates="member", order_by="InactivityWarningDB.created_at")
    review_cases = relationship("ReviewCaseDB", back_populates="member", order_by="ReviewCaseDB.created_at")


class InactivityWarningDB(Base):
    """
    Immutable record of an inactivity warning.
    Append-only; one row per (member, inactivity cycle, level).
    """
    __tablename__ = "inactivity_warnings"
    __table_args__ = (
        UniqueConstraint("member_id", "cycle_started_at", "level", name="uq_inactivity_warning_level"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    member_id = Column(String(36), ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)

    level = Column(Integer, nullable=False)  # 1-3
    warning_type = Column(String(50), nullable=False)  # first_warning, second_warning, final_warning
    message = Column(Text, nullable=False)
    months_inactive = Column(Integer, nullable=False)

    # Start of the inactivity period this warning belongs to
    cycle_started_at = Column(DateTime, nullable=False)
    last_referral_given_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    member = relationship("MemberDB", back_populates="warnings")


# =============================================================================
# REVIEW CASES & VOTES
# =============================================================================

class ReviewCaseDB(Base):
    """
    A disciplinary case under committee vote, with a hard deadline.
    At most one pending case per member (partial unique index).
    """
    __tablename__ = "review_cases"
    __table_args__ = (
        Index(
            "uq_review_cases_one_pending_per_member",
            "member_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(String(36), primary_key=True)  # UUID
    member_id = Column(String(36), ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)

    trigger_type = Column(_enum_column(TriggerType), nullable=False)
    # Evidence snapshot taken at creation; later activity never rewrites it
    trigger_details = Column(JSON, nullable=True)

    status = Column(_enum_column(CaseStatus), default=CaseStatus.PENDING, nullable=False, index=True)

    # Tally
    votes_for_expulsion = Column(Integer, default=0, nullable=False)
    votes_against = Column(Integer, default=0, nullable=False)
    votes_extend = Column(Integer, default=0, nullable=False)

    # Committee resolved once, when the case was opened
    committee_member_ids = Column(JSON, nullable=False, default=list)

    # Inactivity cases only: the cycle this case is the level-4 step of
    cycle_started_at = Column(DateTime, nullable=True)

    extension_count = Column(Integer, default=0, nullable=False)
    auto_expire_at = Column(DateTime, nullable=False, index=True)
    last_reminder_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    decided_at = Column(DateTime, nullable=True)

    member = relationship("MemberDB", back_populates="review_cases")


class VoteDB(Base):
    """
    One committee ballot. Immutable, never overwritten.
    Shared by review cases, misconduct reports and specialization conflicts.
    """
    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("subject_type", "subject_id", "voter_id", "voting_round", name="uq_votes_one_per_voter"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    subject_type = Column(_enum_column(VoteSubject), nullable=False)
    subject_id = Column(String(36), nullable=False, index=True)
    voter_id = Column(String(36), ForeignKey("members.id"), nullable=False, index=True)
    # Extended review cases reopen with a fresh round; other subjects stay on round 1
    voting_round = Column(Integer, default=1, nullable=False)

    choice = Column(String(32), nullable=False)
    severity = Column(String(32), nullable=True)  # sanction ballots only
    reasoning = Column(Text, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)


# =============================================================================
# PEER REVIEWS (same quorum primitive)
# =============================================================================

class MisconductReportDB(Base):
    """Ethics report against a member, adjudicated by the committee."""
    __tablename__ = "misconduct_reports"

    id = Column(String(36), primary_key=True)  # UUID
    reporter_id = Column(String(36), ForeignKey("members.id"), nullable=False, index=True)
    reported_id = Column(String(36), ForeignKey("members.id"), nullable=False, index=True)

    report_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    context = Column(String(255), nullable=True)

    status = Column(_enum_column(ReportStatus), default=ReportStatus.PENDING, nullable=False, index=True)
    votes_sanction = Column(Integer, default=0, nullable=False)
    votes_dismiss = Column(Integer, default=0, nullable=False)
    votes_escalate = Column(Integer, default=0, nullable=False)
    severity = Column(String(32), nullable=True)  # set when sanctioned

    committee_member_ids = Column(JSON, nullable=False, default=list)
    escalated_to_admin = Column(Boolean, default=False, nullable=False)

    auto_expire_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    decided_at = Column(DateTime, nullable=True)


class SpecializationConflictDB(Base):
    """
    Applicant wants a specialization already held in the chapter.
    Needs both the committee and the incumbent to approve.
    """
    __tablename__ = "specialization_conflicts"

    id = Column(String(36), primary_key=True)  # UUID
    applicant_id = Column(String(36), ForeignKey("members.id"), nullable=False, index=True)
    interested_member_id = Column(String(36), ForeignKey("members.id"), nullable=False, index=True)
    chapter_id = Column(String(36), nullable=True)
    specialization = Column(String(100), nullable=False)

    status = Column(_enum_column(ConflictStatus), default=ConflictStatus.PENDING, nullable=False, index=True)
    votes_approve = Column(Integer, default=0, nullable=False)
    votes_reject = Column(Integer, default=0, nullable=False)
    votes_new_chapter = Column(Integer, default=0, nullable=False)

    # Each side of the dual precondition
    committee_decision = Column(String(32), nullable=True)
    interested_decision = Column(String(32), nullable=True)
    interested_reasoning = Column(Text, nullable=True)

    committee_member_ids = Column(JSON, nullable=False, default=list)
    escalated_to_admin = Column(Boolean, default=False, nullable=False)

    auto_expire_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    decided_at = Column(DateTime, nullable=True)


class PenaltyDB(Base):
    """Point deduction issued by a sanction. Append-only."""
    __tablename__ = "member_penalties"

    id = Column(String(36), primary_key=True)  # UUID
    member_id = Column(String(36), ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    penalty_type = Column(String(50), nullable=False)
    severity = Column(String(32), nullable=False)
    points_deducted = Column(Integer, default=0, nullable=False)
    reason = Column(Text, nullable=False)
    source_report_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# =============================================================================
# REENTRY & BAN REGISTRY
# =============================================================================

class ReentryRequestDB(Base):
    """Readmission request from an expelled member, decided by an admin."""
    __tablename__ = "reentry_requests"
    __table_args__ = (
        Index(
            "uq_reentry_requests_one_pending_per_member",
            "member_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id = Column(String(36), primary_key=True)  # UUID
    member_id = Column(String(36), ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)

    status = Column(_enum_column(ReentryStatus), default=ReentryStatus.PENDING, nullable=False)
    reason = Column(Text, nullable=False)
    admin_notes = Column(Text, nullable=True)
    eligibility = Column(String(20), nullable=False)  # classification when filed
    reviewed_by = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    reviewed_at = Column(DateTime, nullable=True)


class BannedIdentifierDB(Base):
    """
    Permanently blacklisted identifier.
    Append-only; consulted by the registration flow, never deleted.
    """
    __tablename__ = "banned_identifiers"
    __table_args__ = (
        UniqueConstraint("identifier_type", "identifier_value", name="uq_banned_identifier"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    identifier_type = Column(_enum_column(IdentifierType), nullable=False)
    identifier_value = Column(String(255), nullable=False, index=True)  # normalised
    member_id = Column(String(36), nullable=True)
    banned_at = Column(DateTime, default=utcnow, nullable=False)


# =============================================================================
# COMMITTEE & AUDIT
# =============================================================================

class CommitteeRotationDB(Base):
    """Committee seated for a chapter (chapter_id NULL = whole network)."""
    __tablename__ = "committee_rotations"

    id = Column(String(36), primary_key=True)  # UUID
    chapter_id = Column(String(36), nullable=True, index=True)
    member_ids = Column(JSON, nullable=False)
    is_founding = Column(Boolean, default=False, nullable=False)
    rotated_at = Column(DateTime, default=utcnow, nullable=False)
    next_rotation_at = Column(DateTime, nullable=False)


class GovernanceLogDB(Base):
    """
    Immutable log of governance state transitions.
    Append-only - records every case, report, conflict and request change.
    """
    __tablename__ = "governance_log"

    id = Column(String(36), primary_key=True)  # UUID
    subject_type = Column(String(50), nullable=False)
    subject_id = Column(String(36), nullable=False, index=True)
    member_id = Column(String(36), nullable=True, index=True)

    from_state = Column(String(32), nullable=True)  # NULL for creation
    to_state = Column(String(32), nullable=False)
    trigger = Column(String(100), nullable=False)
    actor = Column(SQLEnum(ActorType), nullable=False)

    # Renamed from 'metadata' which is reserved in SQLAlchemy
    event_metadata = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)


class AdminUserDB(Base):
    """Administrator account for the council console."""
    __tablename__ = "admin_users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow)
