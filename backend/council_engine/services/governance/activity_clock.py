"""
Activity Clock

Pure time arithmetic for the escalation ladder and the reentry cooldown.
Months are whole elapsed calendar months: Jan 31 -> Apr 30 is 2 months.
"""
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta


def months_between(start: Optional[datetime], end: datetime) -> int:
    """Whole months elapsed from start to end. Never negative."""
    if start is None or end <= start:
        return 0
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if (end.day, end.time()) < (start.day, start.time()):
        months -= 1
    return max(months, 0)


def add_months(start: datetime, months: int) -> datetime:
    """
    First instant at which months_between(start, result) reaches months.

    A start day the target month does not have rolls over to the 1st of
    the following month: Aug 31 + 6 months is Mar 1, not Feb 28.
    """
    result = start + relativedelta(months=months)
    if result.day != start.day:
        result = result.replace(day=1, hour=0, minute=0, second=0, microsecond=0) + relativedelta(months=1)
    return result


def escalation_anchor(member) -> datetime:
    """
    Start of the member's current inactivity cycle.

    The latest of join date, last referral given and reinstatement.
    A new referral or an approved reentry moves the anchor forward,
    which is what starts a fresh escalation cycle.
    """
    candidates = [
        member.joined_at,
        member.last_given_referral_at,
        member.reinstated_at,
    ]
    return max(c for c in candidates if c is not None)


def months_inactive(member, now: datetime) -> int:
    return months_between(escalation_anchor(member), now)


def tenure_months(member, now: datetime) -> int:
    return months_between(member.joined_at, now)
