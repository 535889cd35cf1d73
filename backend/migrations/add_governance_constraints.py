"""
Migration: Add governance storage guards.

Databases created before the guards existed get them here:
1. uq_review_cases_one_pending_per_member - one pending case per member
2. uq_reentry_requests_one_pending_per_member - one pending request per member
3. uq_inactivity_warning_level - one warning per (member, cycle, level)
4. uq_votes_one_per_voter - one ballot per voter per subject and voting round
5. uq_banned_identifier - one registry entry per identifier

votes.voting_round is added first, with existing ballots on round 1. A
uq_votes_one_per_voter created without it is dropped and rebuilt.

Fails if existing rows already violate a guard; clean those up first.
"""
from sqlalchemy import create_engine, text
import os

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/council_engine"
)


NEW_COLUMNS = [
    ("votes", "voting_round", "INTEGER NOT NULL DEFAULT 1", ["uq_votes_one_per_voter"]),
]

PARTIAL_INDEXES = [
    ("uq_review_cases_one_pending_per_member", "review_cases"),
    ("uq_reentry_requests_one_pending_per_member", "reentry_requests"),
]

UNIQUE_CONSTRAINTS = [
    ("uq_inactivity_warning_level", "inactivity_warnings", "member_id, cycle_started_at, level"),
    ("uq_votes_one_per_voter", "votes", "subject_type, subject_id, voter_id, voting_round"),
    ("uq_banned_identifier", "banned_identifiers", "identifier_type, identifier_value"),
]


def table_exists(conn, table_name: str) -> bool:
    """Check if a table exists in the database."""
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.tables
            WHERE table_name = :table_name
        )
    """), {"table_name": table_name})
    return result.fetchone()[0]


def index_exists(conn, index_name: str) -> bool:
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM pg_indexes WHERE indexname = :index_name
        )
    """), {"index_name": index_name})
    return result.fetchone()[0]


def constraint_exists(conn, constraint_name: str) -> bool:
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.table_constraints
            WHERE constraint_name = :constraint_name
        )
    """), {"constraint_name": constraint_name})
    return result.fetchone()[0]


def column_exists(conn, table_name: str, column_name: str) -> bool:
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.columns
            WHERE table_name = :table_name AND column_name = :column_name
        )
    """), {"table_name": table_name, "column_name": column_name})
    return result.fetchone()[0]


def run_migration():
    """Add the voting round column, the partial unique indexes and the unique constraints."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        for table_name, column_name, ddl, stale_constraints in NEW_COLUMNS:
            if not table_exists(conn, table_name):
                print(f"{table_name} table does not exist; it will be created with {column_name}")
                continue
            if column_exists(conn, table_name, column_name):
                print(f"{table_name}.{column_name} already exists")
                continue
            conn.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {ddl}"))
            for constraint_name in stale_constraints:
                conn.execute(text(f"ALTER TABLE {table_name} DROP CONSTRAINT IF EXISTS {constraint_name}"))
            print(f"Added {table_name}.{column_name}")

        for index_name, table_name in PARTIAL_INDEXES:
            if not table_exists(conn, table_name):
                print(f"{table_name} table does not exist; it will be created with the index")
                continue
            if index_exists(conn, index_name):
                print(f"{index_name} already exists")
                continue
            conn.execute(text(f"""
                CREATE UNIQUE INDEX {index_name} ON {table_name}(member_id)
                WHERE status = 'pending'
            """))
            print(f"Created {index_name}")

        for constraint_name, table_name, columns in UNIQUE_CONSTRAINTS:
            if not table_exists(conn, table_name):
                print(f"{table_name} table does not exist; it will be created with the constraint")
                continue
            if constraint_exists(conn, constraint_name):
                print(f"{constraint_name} already exists")
                continue
            conn.execute(text(f"""
                ALTER TABLE {table_name} ADD CONSTRAINT {constraint_name} UNIQUE ({columns})
            """))
            print(f"Created {constraint_name}")

        conn.commit()
        print("\nGovernance constraints migration completed successfully!")


if __name__ == "__main__":
    run_migration()
