"""Profile endpoints for the authenticated user."""
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict

from ..models.base import get_db
from ..models.user import User
from ..core.security import get_current_user
from ..services import identity

router = APIRouter(prefix="/users", tags=["users"])


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    profile_image: Optional[str] = None
    # patient
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    phone_number: Optional[str] = None
    medical_history: Optional[Any] = None
    allergies: Optional[Any] = None
    medications: Optional[List[Any]] = None
    consent_to_share_data: Optional[bool] = None
    # provider
    title: Optional[str] = None
    specialty: Optional[str] = None
    practice: Optional[Dict[str, Any]] = None
    practice_license: Optional[str] = None
    years_of_experience: Optional[int] = None


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    role: str
    profile_image: Optional[str]
    created_at: datetime
    patient_id: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    phone_number: Optional[str] = None
    medical_history: Optional[Any] = None
    allergies: Optional[Any] = None
    medications: Optional[Any] = None
    consent_to_share_data: Optional[bool] = None
    provider_id: Optional[str] = None
    title: Optional[str] = None
    specialty: Optional[str] = None
    practice: Optional[Dict[str, Any]] = None
    practice_license: Optional[str] = None
    years_of_experience: Optional[int] = None
    verification_status: Optional[str] = None
    profile_completed: Optional[bool] = None


@router.get("/me/profile", response_model=ProfileResponse)
def get_profile(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/me/profile", response_model=ProfileResponse)
def update_profile(
    req: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Only the fields present in the request are changed."""
    return identity.update_profile(db, current_user, req.model_dump(exclude_unset=True))


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
def deactivate_account(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    identity.deactivate_account(db, current_user)
