"""Authentication endpoints: register, verify email, login, refresh, me, change password, password reset."""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict

from ..models.base import get_db
from ..models.user import User, UserRole
from ..core.security import (
    verify_password,
    get_password_hash,
    create_access_token,
    create_refresh_token,
    create_email_verification_token,
    decode_access_token,
    get_current_user,
)
from ..services import identity
from ..services.notifications import notifications

router = APIRouter(prefix="/auth", tags=["auth"])


# ── Request / Response schemas ──────────────────────────────────────────────

class RegisterRequest(BaseModel):
    email: str
    name: str
    password: Optional[str] = None
    role: str = UserRole.PATIENT
    external_provider: Optional[str] = None
    external_id: Optional[str] = None
    admin_key: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class VerifyEmailRequest(BaseModel):
    token: str


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    token: str
    password: str


class MessageResponse(BaseModel):
    message: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    role: str
    is_verified: bool
    is_active: bool
    profile_image: Optional[str]
    last_login: Optional[datetime]
    created_at: datetime


class RefreshRequest(BaseModel):
    refresh_token: str


# ── Endpoints ────────────────────────────────────────────────────────────────

@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(req: RegisterRequest, db: Session = Depends(get_db)):
    """Create a patient, provider or (with the creation key) admin account."""
    user = identity.register_user(
        db,
        email=req.email,
        name=req.name,
        role=req.role,
        password=req.password,
        external_provider=req.external_provider,
        external_id=req.external_id,
        admin_key=req.admin_key,
    )
    if not user.is_verified:
        notifications.on_email_verification_requested(user, create_email_verification_token(user.id))
    return user


@router.post("/verify-email", response_model=UserResponse)
def verify_email(req: VerifyEmailRequest, db: Session = Depends(get_db)):
    payload = decode_access_token(req.token)
    if payload is None or payload.get("type") != "email_verification":
        raise HTTPException(status_code=400, detail="Invalid or expired verification token")
    return identity.verify_email(db, payload.get("sub"))


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    """Authenticate and receive JWT access + refresh tokens."""
    user = identity.find_user_by_email(db, req.email)
    if not user or not verify_password(req.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")
    if not user.is_verified:
        raise HTTPException(status_code=403, detail="Please verify your email before logging in")

    access_token = create_access_token({"sub": user.id, "role": user.role})
    refresh_token = create_refresh_token({"sub": user.id})
    identity.record_login(db, user, refresh_token)

    return TokenResponse(access_token=access_token, refresh_token=refresh_token)


@router.post("/refresh", response_model=TokenResponse)
def refresh_token(req: RefreshRequest, db: Session = Depends(get_db)):
    """Exchange a valid refresh token for a new access token."""
    payload = decode_access_token(req.refresh_token)
    if payload is None or payload.get("type") != "refresh":
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    user = identity.find_user_by_id(db, payload.get("sub"))
    if not user or user.refresh_token != req.refresh_token or not user.is_active:
        raise HTTPException(status_code=401, detail="Refresh token revoked or invalid")

    new_access = create_access_token({"sub": user.id, "role": user.role})
    new_refresh = create_refresh_token({"sub": user.id})
    user.refresh_token = new_refresh
    db.commit()

    return TokenResponse(access_token=new_access, refresh_token=new_refresh)


@router.get("/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)):
    """Return the currently authenticated user's profile."""
    return current_user


@router.put("/password", status_code=status.HTTP_204_NO_CONTENT)
def change_password(
    req: ChangePasswordRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Change the current user's password."""
    if current_user.has_external_identity:
        raise HTTPException(status_code=400, detail="Accounts signed in with an external provider have no password")
    if not verify_password(req.current_password, current_user.hashed_password):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    current_user.hashed_password = get_password_hash(req.new_password)
    db.commit()


@router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(req: ForgotPasswordRequest, db: Session = Depends(get_db)):
    """Email a reset link. The response is the same whether or not the account exists."""
    identity.request_password_reset(db, req.email)
    return MessageResponse(message="If your email exists in our system, you will receive a password reset link")


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(req: ResetPasswordRequest, db: Session = Depends(get_db)):
    identity.reset_password(db, req.token, req.password)
    return MessageResponse(message="Password reset successful")
