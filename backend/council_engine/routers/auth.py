"""
Council Engine - Authentication Router
Administrator login and session verification.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.db_models import AdminUserDB
from ..auth import verify_password, create_access_token, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AdminResponse(BaseModel):
    id: str
    email: str
    username: str


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/login", response_model=TokenResponse)
def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Authenticate an administrator and return JWT token.
    """
    admin = db.query(AdminUserDB).filter(AdminUserDB.email == request.email).first()

    if not admin or not verify_password(request.password, admin.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(admin.id, admin.email, "admin")

    logger.info(f"Admin logged in: {request.email}")
    return TokenResponse(access_token=access_token)


@router.get("/me", response_model=AdminResponse)
def get_me(admin: AdminUserDB = Depends(require_admin)):
    """Get the logged-in administrator."""
    return AdminResponse(id=admin.id, email=admin.email, username=admin.username)
