"""
Tests for committee resolution and rotation.
"""
from dateutil.relativedelta import relativedelta

from council_engine.models.db_models import CommitteeRotationDB, MemberStatus
from council_engine.services.governance import RankingCommitteeProvider, rotate_committees

from conftest import NOW


class TestRankingCommitteeProvider:

    def test_top_ranked_active_members(self, db, make_member):
        top = [make_member(total_points=p) for p in (900, 800, 700)]
        make_member(total_points=600)
        make_member(total_points=5000, status=MemberStatus.EXPELLED)

        committee = RankingCommitteeProvider(db).current_committee("chapter-1")

        assert committee == [m.id for m in top]

    def test_subject_excluded_and_replaced(self, db, make_member):
        members = [make_member(total_points=p) for p in (900, 800, 700, 600)]

        committee = RankingCommitteeProvider(db).current_committee("chapter-1", exclude=[members[0].id])

        assert committee == [m.id for m in members[1:]]

    def test_seated_rotation_preferred(self, db, make_member):
        seated = [make_member(total_points=p) for p in (100, 90, 80)]
        for p in (900, 800, 700):
            make_member(total_points=p)
        db.add(CommitteeRotationDB(
            id="rotation-1", chapter_id="chapter-1", member_ids=[m.id for m in seated],
            is_founding=True, rotated_at=NOW, next_rotation_at=NOW + relativedelta(months=6),
        ))
        db.commit()

        assert RankingCommitteeProvider(db).current_committee("chapter-1") == [m.id for m in seated]

    def test_inactive_seat_topped_up(self, db, make_member):
        seated = [make_member(total_points=p) for p in (100, 90, 80)]
        best = make_member(total_points=900)
        db.add(CommitteeRotationDB(
            id="rotation-1", chapter_id="chapter-1", member_ids=[m.id for m in seated],
            is_founding=True, rotated_at=NOW, next_rotation_at=NOW + relativedelta(months=6),
        ))
        seated[1].status = MemberStatus.UNDER_REVIEW
        db.commit()

        committee = RankingCommitteeProvider(db).current_committee("chapter-1")

        assert committee == [seated[0].id, seated[2].id, best.id]


class TestRotateCommittees:

    def test_founding_rotation(self, db, make_member):
        for p in (900, 800, 700, 600):
            make_member(total_points=p)

        result = rotate_committees(db, NOW)

        assert result["rotated"] == 1
        rotation = db.query(CommitteeRotationDB).one()
        assert rotation.is_founding is True
        assert rotation.next_rotation_at == NOW + relativedelta(months=6)

    def test_not_repeated_before_due(self, db, make_member):
        for p in (900, 800, 700):
            make_member(total_points=p)
        rotate_committees(db, NOW)

        assert rotate_committees(db, NOW + relativedelta(months=5))["rotated"] == 0
        result = rotate_committees(db, NOW + relativedelta(months=6))
        assert result["rotated"] == 1
        latest = db.query(CommitteeRotationDB).order_by(CommitteeRotationDB.rotated_at.desc()).first()
        assert latest.is_founding is False

    def test_small_chapter_not_seated(self, db, make_member):
        make_member(chapter_id="tiny")
        make_member(chapter_id="tiny")

        result = rotate_committees(db, NOW)

        assert result["rotated"] == 0
        assert db.query(CommitteeRotationDB).count() == 0
