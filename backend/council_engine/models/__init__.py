"""Council Engine - Data Models"""
from .db_models import (
    # Enums
    MemberStatus, TriggerType, CaseStatus, CaseVoteChoice, VoteSubject,
    ReportStatus, ReportVoteChoice, Severity, ConflictStatus,
    ConflictVoteChoice, InterestedDecision, ReentryStatus, IdentifierType,
    ActorType,
    # Tables
    MemberDB, InactivityWarningDB, ReviewCaseDB, VoteDB,
    MisconductReportDB, SpecializationConflictDB, PenaltyDB,
    ReentryRequestDB, BannedIdentifierDB, CommitteeRotationDB,
    GovernanceLogDB, AdminUserDB,
)

__all__ = [
    "MemberStatus", "TriggerType", "CaseStatus", "CaseVoteChoice", "VoteSubject",
    "ReportStatus", "ReportVoteChoice", "Severity", "ConflictStatus",
    "ConflictVoteChoice", "InterestedDecision", "ReentryStatus", "IdentifierType",
    "ActorType",
    "MemberDB", "InactivityWarningDB", "ReviewCaseDB", "VoteDB",
    "MisconductReportDB", "SpecializationConflictDB", "PenaltyDB",
    "ReentryRequestDB", "BannedIdentifierDB", "CommitteeRotationDB",
    "GovernanceLogDB", "AdminUserDB",
]
