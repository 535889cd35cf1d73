"""
Governance Services

Disciplinary governance for the referral network:
inactivity -> warnings -> committee vote -> expulsion -> reentry / ban.

- EscalationLadder: daily inactivity escalation
- ReviewCaseEngine: expulsion cases, deadlines, reminders
- QuorumVoter: first-to-majority committee voting, shared by all flows
- ReentryService: readmission requests, gated by expulsion history
- BanRegistry: permanent identifier blacklist
- MisconductService / SpecializationConflictService: peer reviews
- GovernanceScheduler: the daily batch
"""

from .errors import (
    GovernanceError, SubjectNotFound, AlreadyVoted, CaseAlreadyDecided,
    EmptyReasoning, InvalidChoice, NotCommitteeMember, MemberNotActive,
    NotExpelled, RequestAlreadyReviewed, NotInterestedParty, InvalidReport,
    PermanentBanViolation, ReentryNotEligible, IdentifierBanned,
)
from .activity_clock import months_between, escalation_anchor, months_inactive
from .notifications import (
    Notification, NotificationDispatcher, LoggingNotificationDispatcher,
    WebhookNotificationDispatcher, default_dispatcher,
)
from .committee import CommitteeProvider, StaticCommitteeProvider, RankingCommitteeProvider, rotate_committees
from .state_machine import CaseStateMachine
from .ban_registry import BanRegistry
from .reentry import ReentryEligibility, ReentryService, classify_reentry
from .quorum import QuorumVoter, VoteOutcome, VotingPolicy
from .review_cases import ReviewCaseEngine, ReviewCasePolicy
from .escalation_ladder import EscalationLadder, EscalationDecision, WarningRecord, evaluate
from .penalties import PenaltyLedger, SqlPenaltyLedger
from .misconduct import MisconductService
from .specialization_conflicts import SpecializationConflictService
from .scheduler import GovernanceScheduler

__all__ = [
    # Errors
    'GovernanceError',
    'SubjectNotFound',
    'AlreadyVoted',
    'CaseAlreadyDecided',
    'EmptyReasoning',
    'InvalidChoice',
    'NotCommitteeMember',
    'MemberNotActive',
    'NotExpelled',
    'RequestAlreadyReviewed',
    'NotInterestedParty',
    'InvalidReport',
    'PermanentBanViolation',
    'ReentryNotEligible',
    'IdentifierBanned',
    # Clock
    'months_between',
    'escalation_anchor',
    'months_inactive',
    # Notifications
    'Notification',
    'NotificationDispatcher',
    'LoggingNotificationDispatcher',
    'WebhookNotificationDispatcher',
    'default_dispatcher',
    # Committee
    'CommitteeProvider',
    'StaticCommitteeProvider',
    'RankingCommitteeProvider',
    'rotate_committees',
    # Engines
    'CaseStateMachine',
    'BanRegistry',
    'ReentryEligibility',
    'ReentryService',
    'classify_reentry',
    'QuorumVoter',
    'VoteOutcome',
    'VotingPolicy',
    'ReviewCaseEngine',
    'ReviewCasePolicy',
    'EscalationLadder',
    'EscalationDecision',
    'WarningRecord',
    'evaluate',
    'PenaltyLedger',
    'SqlPenaltyLedger',
    'MisconductService',
    'SpecializationConflictService',
    'GovernanceScheduler',
]
