"""
Shared fixtures: an in-memory SQLite database with the full schema, member
factories, a fixed committee and a mock notification dispatcher.
"""
import os

# database.py builds its engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from dateutil.relativedelta import relativedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from council_engine.database import Base
from council_engine.models.db_models import MemberDB, MemberStatus
from council_engine.services.governance import StaticCommitteeProvider


NOW = datetime(2025, 6, 15, 12, 0, 0)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def make_member(db):
    """Factory for stored members. Defaults: active, 12 months tenure, just referred."""
    def _make(**overrides):
        member_id = overrides.pop("id", str(uuid4()))
        fields = {
            "id": member_id,
            "full_name": f"Member {member_id[:8]}",
            "email": f"{member_id[:8]}@example.com",
            "phone": None,
            "tax_id": None,
            "chapter_id": "chapter-1",
            "total_points": 100,
            "joined_at": NOW - relativedelta(months=12),
            "last_given_referral_at": NOW,
            "status": MemberStatus.ACTIVE,
            "warning_level": 0,
            "expulsion_count": 0,
        }
        fields.update(overrides)
        member = MemberDB(**fields)
        db.add(member)
        db.commit()
        return member
    return _make


@pytest.fixture
def committee(make_member):
    return [
        make_member(full_name=f"Committee {i}", total_points=1000 - i * 100)
        for i in range(3)
    ]


@pytest.fixture
def committee_provider(committee):
    return StaticCommitteeProvider([m.id for m in committee])
