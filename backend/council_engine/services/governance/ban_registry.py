"""
Ban Registry

Append-only record of permanently blacklisted identifiers (email, phone,
tax id). Written when a second expulsion is finalized; read by the
registration flow, which must treat any hit as a hard rejection.

Nothing in this module deletes an entry.
"""
import logging
import re
from datetime import datetime
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ...models.db_models import BannedIdentifierDB, IdentifierType, MemberDB
from .errors import IdentifierBanned

logger = logging.getLogger(__name__)


def normalize_identifier(identifier_type: IdentifierType, value: Optional[str]) -> Optional[str]:
    """
    Canonical form used for both storage and lookup.

    email: trimmed, lower-case. phone: digits only, keeping a leading '+'.
    tax_id: alphanumerics only, upper-case.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    if identifier_type == IdentifierType.EMAIL:
        return value.lower()
    if identifier_type == IdentifierType.PHONE:
        digits = re.sub(r"\D", "", value)
        if not digits:
            return None
        return f"+{digits}" if value.startswith("+") else digits
    if identifier_type == IdentifierType.TAX_ID:
        cleaned = re.sub(r"[^0-9A-Za-z]", "", value).upper()
        return cleaned or None
    return value


def member_identifiers(member: MemberDB) -> Dict[IdentifierType, str]:
    identifiers = {
        IdentifierType.EMAIL: normalize_identifier(IdentifierType.EMAIL, member.email),
        IdentifierType.PHONE: normalize_identifier(IdentifierType.PHONE, member.phone),
        IdentifierType.TAX_ID: normalize_identifier(IdentifierType.TAX_ID, member.tax_id),
    }
    return {k: v for k, v in identifiers.items() if v}


class BanRegistry:
    """Append-only blacklist of identifiers."""

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session

    def ban_member(self, member: MemberDB, now: datetime) -> List[BannedIdentifierDB]:
        """
        Copy the member's identifiers into the registry.

        Identifiers already present are left as they are. Runs inside the
        caller's transaction; the caller commits.
        """
        added = []
        for identifier_type, value in member_identifiers(member).items():
            if self._exists(identifier_type, value):
                continue
            entry = BannedIdentifierDB(
                id=str(uuid4()),
                identifier_type=identifier_type,
                identifier_value=value,
                member_id=member.id,
                banned_at=now,
            )
            self.db.add(entry)
            added.append(entry)

        self.db.flush()
        logger.info(f"Member {member.id} banned: {len(added)} identifiers added to registry")
        return added

    def find_matches(
        self,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        tax_id: Optional[str] = None,
    ) -> List[BannedIdentifierDB]:
        """All registry entries matching any supplied identifier."""
        wanted = {
            IdentifierType.EMAIL: normalize_identifier(IdentifierType.EMAIL, email),
            IdentifierType.PHONE: normalize_identifier(IdentifierType.PHONE, phone),
            IdentifierType.TAX_ID: normalize_identifier(IdentifierType.TAX_ID, tax_id),
        }
        clauses = [
            and_(
                BannedIdentifierDB.identifier_type == identifier_type,
                BannedIdentifierDB.identifier_value == value,
            )
            for identifier_type, value in wanted.items()
            if value
        ]
        if not clauses:
            return []
        return self.db.query(BannedIdentifierDB).filter(or_(*clauses)).all()

    def is_banned(self, email=None, phone=None, tax_id=None) -> bool:
        return len(self.find_matches(email=email, phone=phone, tax_id=tax_id)) > 0

    def is_member_banned(self, member: MemberDB) -> bool:
        """True when any of the member's own identifiers is blacklisted."""
        return self.is_banned(email=member.email, phone=member.phone, tax_id=member.tax_id)

    def check_registration(self, email=None, phone=None, tax_id=None) -> None:
        """
        Registration gate. Raises IdentifierBanned on any hit.

        The matched identifier types are reported; values are not echoed back.
        """
        matches = self.find_matches(email=email, phone=phone, tax_id=tax_id)
        if matches:
            matched_types = sorted({m.identifier_type.value for m in matches})
            logger.info(f"Registration rejected: banned identifier match on {matched_types}")
            raise IdentifierBanned(
                f"Registration rejected: {', '.join(matched_types)} belongs to a permanently banned member"
            )

    def _exists(self, identifier_type: IdentifierType, value: str) -> bool:
        return self.db.query(BannedIdentifierDB).filter(
            BannedIdentifierDB.identifier_type == identifier_type,
            BannedIdentifierDB.identifier_value == value,
        ).first() is not None
