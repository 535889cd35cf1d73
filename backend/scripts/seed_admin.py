#!/usr/bin/env python3
"""
Admin User Seed Script
Creates an administrator for the council console (reentry decisions,
committee referrals).

Usage:
    python -m scripts.seed_admin <email> <username> <password>

Example:
    python -m scripts.seed_admin admin@network.example admin securepassword123
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from council_engine.database import SessionLocal, init_db
from council_engine.models.db_models import AdminUserDB
from council_engine.auth import hash_password


def create_admin_user(email: str, username: str, password: str) -> bool:
    """Create an admin user in the database."""
    # Ensure tables exist
    init_db()

    db: Session = SessionLocal()
    try:
        existing = db.query(AdminUserDB).filter(
            (AdminUserDB.email == email) | (AdminUserDB.username == username)
        ).first()

        if existing:
            if existing.email == email:
                print(f"Error: Admin '{email}' already exists.")
            else:
                print(f"Error: Username '{username}' already exists.")
            return False

        admin_user = AdminUserDB(
            id=str(uuid4()),
            email=email,
            username=username,
            password_hash=hash_password(password),
        )

        db.add(admin_user)
        db.commit()

        print("Admin user created successfully!")
        print(f"  Email: {email}")
        print(f"  Username: {username}")
        return True

    except Exception as e:
        print(f"Error creating admin user: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) != 4:
        print(__doc__)
        sys.exit(1)

    email = sys.argv[1]
    username = sys.argv[2]
    password = sys.argv[3]

    # Basic validation
    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    success = create_admin_user(email, username, password)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
