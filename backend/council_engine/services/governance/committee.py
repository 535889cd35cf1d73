"""
Committee Membership

The committee is the top-ranked (by points) active members of a chapter.
Ranking itself is computed elsewhere; this module only reads it, through
a small provider interface so the voting code can be tested without a
ranking table.

A case resolves its committee ONCE, when it is opened. Votes are checked
against that snapshot, so a ranking change mid-case neither admits new
voters nor invalidates ballots already cast.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from sqlalchemy.orm import Session

from ... import config
from ...models.db_models import CommitteeRotationDB, MemberDB, MemberStatus

logger = logging.getLogger(__name__)


class CommitteeProvider:
    """Read-only capability: who sits on the committee right now."""

    def current_committee(
        self,
        chapter_id: Optional[str] = None,
        exclude: Optional[List[str]] = None,
    ) -> List[str]:
        raise NotImplementedError


class StaticCommitteeProvider(CommitteeProvider):
    """Fixed committee; used by scripts and tests."""

    def __init__(self, member_ids: List[str]):
        self.member_ids = list(member_ids)

    def current_committee(self, chapter_id=None, exclude=None) -> List[str]:
        excluded = set(exclude or [])
        return [m for m in self.member_ids if m not in excluded]


class RankingCommitteeProvider(CommitteeProvider):
    """
    Committee from the latest rotation, topped up from the live ranking.

    A seated member who is the subject of the case, or who is no longer
    active, is replaced by the next-ranked active member.
    """

    def __init__(self, db_session: Session, size: int = config.COMMITTEE_SIZE):
        self.db = db_session
        self.size = size

    def latest_rotation(self, chapter_id: Optional[str]) -> Optional[CommitteeRotationDB]:
        query = self.db.query(CommitteeRotationDB)
        if chapter_id is None:
            query = query.filter(CommitteeRotationDB.chapter_id.is_(None))
        else:
            query = query.filter(CommitteeRotationDB.chapter_id == chapter_id)
        return query.order_by(CommitteeRotationDB.rotated_at.desc()).first()

    def ranked_members(self, chapter_id: Optional[str], limit: int) -> List[MemberDB]:
        query = self.db.query(MemberDB).filter(MemberDB.status == MemberStatus.ACTIVE)
        if chapter_id is not None:
            query = query.filter(MemberDB.chapter_id == chapter_id)
        return query.order_by(MemberDB.total_points.desc(), MemberDB.joined_at.asc()).limit(limit).all()

    def current_committee(self, chapter_id=None, exclude=None) -> List[str]:
        excluded = set(exclude or [])
        committee: List[str] = []

        rotation = self.latest_rotation(chapter_id)
        if rotation:
            seated = self.db.query(MemberDB).filter(MemberDB.id.in_(rotation.member_ids)).all()
            active_ids = {m.id for m in seated if m.status == MemberStatus.ACTIVE}
            committee = [m for m in rotation.member_ids if m in active_ids and m not in excluded]

        if len(committee) < self.size:
            candidates = self.ranked_members(chapter_id, self.size + len(excluded) + len(committee))
            for member in candidates:
                if len(committee) >= self.size:
                    break
                if member.id not in excluded and member.id not in committee:
                    committee.append(member.id)

        if len(committee) < self.size:
            logger.warning(
                f"Committee for chapter {chapter_id or 'network'} has only {len(committee)} of {self.size} seats filled"
            )

        return committee[:self.size]


# =============================================================================
# ROTATION (SYSTEM-AUTHORITATIVE)
# =============================================================================

def rotate_committees(db: Session, now: datetime, size: int = config.COMMITTEE_SIZE) -> Dict[str, Any]:
    """
    Seat a new top-ranked committee in every chapter whose rotation is due
    or that never had one. Chapters with fewer eligible members than seats
    are skipped.
    """
    provider = RankingCommitteeProvider(db, size=size)
    results = []

    chapter_ids = {
        row[0]
        for row in db.query(MemberDB.chapter_id)
        .filter(MemberDB.status == MemberStatus.ACTIVE)
        .group_by(MemberDB.chapter_id)
        .having(func.count(MemberDB.id) >= size)
        .all()
    }

    for chapter_id in sorted(chapter_ids, key=lambda c: c or ""):
        rotation = provider.latest_rotation(chapter_id)
        if rotation and rotation.next_rotation_at > now:
            continue

        top = provider.ranked_members(chapter_id, size)
        if len(top) < size:
            results.append({"chapter_id": chapter_id, "status": "skipped", "reason": f"less than {size} eligible members"})
            continue

        db.add(CommitteeRotationDB(
            id=str(uuid4()),
            chapter_id=chapter_id,
            member_ids=[m.id for m in top],
            is_founding=rotation is None,
            rotated_at=now,
            next_rotation_at=now + relativedelta(months=config.COMMITTEE_ROTATION_MONTHS),
        ))
        results.append({
            "chapter_id": chapter_id,
            "status": "rotated",
            "committee": [{"id": m.id, "name": m.full_name, "points": m.total_points} for m in top],
        })
        logger.info(f"Committee rotated for chapter {chapter_id or 'network'}: {[m.id for m in top]}")

    db.commit()

    return {
        "run_date": now.isoformat(),
        "rotated": sum(1 for r in results if r["status"] == "rotated"),
        "skipped": sum(1 for r in results if r["status"] == "skipped"),
        "details": results,
    }
