"""
Governance Errors

Every rejection the governance engine can produce. Each error carries a
stable machine-readable code and the HTTP status the API maps it to, so
committee members see "already voted" or "already decided" instead of a
generic failure.
"""


class GovernanceError(Exception):
    """Base class for all governance rule violations."""

    code = "governance_error"
    status_code = 400

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


# =============================================================================
# PRECONDITION VIOLATIONS
# =============================================================================

class SubjectNotFound(GovernanceError):
    """The referenced case, report, conflict, request or member does not exist."""
    code = "not_found"
    status_code = 404


class AlreadyVoted(GovernanceError):
    """This voter has already cast a ballot on this case in the current voting round."""
    code = "already_voted"
    status_code = 409


class CaseAlreadyDecided(GovernanceError):
    """This case has already been decided and no longer accepts votes."""
    code = "already_decided"
    status_code = 409


class EmptyReasoning(GovernanceError):
    """A vote must include a written reasoning."""
    code = "empty_reasoning"
    status_code = 422


class InvalidChoice(GovernanceError):
    """The vote choice is not valid for this kind of case."""
    code = "invalid_choice"
    status_code = 422


class NotCommitteeMember(GovernanceError):
    """Only members of the committee seated for this case may vote on it."""
    code = "not_committee_member"
    status_code = 403


class MemberNotActive(GovernanceError):
    """Escalation only applies to active members."""
    code = "member_not_active"
    status_code = 409


class NotExpelled(GovernanceError):
    """Only expelled members can request reentry."""
    code = "not_expelled"
    status_code = 409


class RequestAlreadyReviewed(GovernanceError):
    """This request has already been reviewed."""
    code = "already_reviewed"
    status_code = 409


class NotInterestedParty(GovernanceError):
    """Only the member holding the specialization can give this approval."""
    code = "not_interested_party"
    status_code = 403


class InvalidReport(GovernanceError):
    """The report or conflict request is not valid."""
    code = "invalid_report"
    status_code = 422


# =============================================================================
# TERMINAL-STATE VIOLATIONS
# =============================================================================

class PermanentBanViolation(GovernanceError):
    """The member is permanently banned; reentry can never be approved."""
    code = "permanent_ban"
    status_code = 409


class ReentryNotEligible(GovernanceError):
    """The member is still inside the reentry cooldown period."""
    code = "reentry_not_eligible"
    status_code = 409


class IdentifierBanned(GovernanceError):
    """One of the supplied identifiers belongs to a permanently banned member."""
    code = "identifier_banned"
    status_code = 403
