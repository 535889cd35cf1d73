"""
Council Engine - Authentication Utilities
Password hashing, JWT tokens, and auth dependencies

Members authenticate with the network's identity provider, which signs
tokens with the shared secret (role "member", sub = member id).
Administrators log in here (role "admin").
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from . import config
from .database import get_db, utcnow
from .models.db_models import AdminUserDB, MemberDB

# Bearer token security
security = HTTPBearer()


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password_bytes, salt).decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    password_bytes = plain_password.encode('utf-8')
    hashed_bytes = hashed_password.encode('utf-8')
    return bcrypt.checkpw(password_bytes, hashed_bytes)


def create_access_token(subject_id: str, email: str, role: str = "member") -> str:
    """Create a JWT access token with role claim."""
    expire = utcnow() + timedelta(hours=config.ACCESS_TOKEN_EXPIRE_HOURS)
    to_encode = {
        "sub": subject_id,
        "email": email,
        "role": role,
        "exp": expire
    }
    return jwt.encode(to_encode, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
        return payload
    except JWTError:
        return None


def _token_payload(credentials: HTTPAuthorizationCredentials, role: str) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(credentials.credentials)
    if payload is None or payload.get("sub") is None:
        raise credentials_exception

    # Check token expiration
    exp = payload.get("exp")
    if exp is None or datetime.fromtimestamp(exp, timezone.utc).replace(tzinfo=None) < utcnow():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if payload.get("role", "member") != role:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required" if role == "admin" else "Member access required",
        )
    return payload


def get_current_member(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> MemberDB:
    """
    Dependency to get the current authenticated member.
    Expelled and banned members still authenticate: they need the reentry routes.
    """
    payload = _token_payload(credentials, "member")
    member = db.query(MemberDB).filter(MemberDB.id == payload["sub"]).first()
    if member is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return member


def require_admin(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> AdminUserDB:
    """
    Dependency to require admin role.
    Use this on admin-only routes.
    """
    payload = _token_payload(credentials, "admin")
    admin = db.query(AdminUserDB).filter(AdminUserDB.id == payload["sub"]).first()
    if admin is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return admin
