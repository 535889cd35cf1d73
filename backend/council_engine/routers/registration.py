"""
Registration Screening API Routes

Called by the signup flow before an account is created. Any identifier in
the ban registry is a hard rejection (403), never a warning.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.governance import BanRegistry


router = APIRouter(prefix="/registration", tags=["registration"])


class ScreenRequest(BaseModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    tax_id: Optional[str] = None


@router.post("/screen", response_model=dict)
def screen_registration(request: ScreenRequest, db: Session = Depends(get_db)):
    """Raises 403 identifier_banned on any registry hit."""
    BanRegistry(db).check_registration(email=request.email, phone=request.phone, tax_id=request.tax_id)
    return {"allowed": True}
