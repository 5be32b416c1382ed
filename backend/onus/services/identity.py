"""
Identity service: registration, lookup, profiles, identifiers and provider verification.
"""
import logging
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import (
    AccessDeniedError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..core.security import create_password_reset_token, decode_access_token, get_password_hash
from ..models.base import generate_uuid
from ..models.sequence import IdSequence
from ..models.user import (
    DEFAULT_PROFILE_IMAGES,
    Admin,
    Gender,
    Patient,
    Provider,
    User,
    UserRole,
    VerificationStatus,
)
from .notifications import notifications

logger = logging.getLogger(__name__)

IDENTIFIER_PREFIXES = {
    UserRole.PATIENT: "P",
    UserRole.PROVIDER: "HP",
}

PATIENT_PROFILE_FIELDS = {
    "date_of_birth", "gender", "phone_number", "medical_history",
    "allergies", "medications", "consent_to_share_data",
}
PROVIDER_PROFILE_FIELDS = {
    "title", "specialty", "practice", "practice_license", "years_of_experience",
}


def next_sequence(db: Session, entity_type: str, year: int, month: int) -> int:
    """
    Atomically increment and return the counter for ``(entity_type, year, month)``.

    A single upsert statement, so two concurrent registrations in the same month
    can never observe the same value.
    """
    dialect = db.get_bind().dialect.name
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    stmt = (
        insert(IdSequence)
        .values(entity_type=entity_type, year=year, month=month, value=1)
        .on_conflict_do_update(
            index_elements=["entity_type", "year", "month"],
            set_={"value": IdSequence.value + 1},
        )
        .returning(IdSequence.value)
    )
    return db.execute(stmt).scalar_one()


def generate_identifier(db: Session, role: str, now: Optional[datetime] = None) -> str:
    """``P<YY><MM><seq>`` for patients, ``HP<YY><MM><seq>`` for providers."""
    now = now or datetime.utcnow()
    seq = next_sequence(db, role, now.year, now.month)
    return f"{IDENTIFIER_PREFIXES[role]}{now.year % 100:02d}{now.month:02d}{seq:04d}"


# ── lookup ──────────────────────────────────────────────────────────────────

def find_user_by_email(db: Session, email: str) -> Optional[User]:
    if not email:
        return None
    return db.query(User).filter(User.email == email.strip().lower()).first()


def find_user_by_id(db: Session, user_id: str) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def get_patient(db: Session, patient_id: str) -> Patient:
    patient = db.query(Patient).filter(Patient.id == patient_id).first()
    if not patient:
        raise NotFoundError("Patient not found")
    return patient


def get_provider(db: Session, provider_id: str) -> Provider:
    provider = db.query(Provider).filter(Provider.id == provider_id).first()
    if not provider:
        raise NotFoundError("Provider not found")
    return provider


# ── registration ────────────────────────────────────────────────────────────

def register_user(
    db: Session,
    email: str,
    name: str,
    role: str,
    password: Optional[str] = None,
    external_provider: Optional[str] = None,
    external_id: Optional[str] = None,
    admin_key: Optional[str] = None,
) -> User:
    """Create a patient, provider or admin account."""
    if role not in UserRole.ALL:
        raise ValidationError.for_field("role", f"must be one of {UserRole.ALL}")
    if not email or "@" not in email:
        raise ValidationError.for_field("email", "a valid email address is required")
    if not name or not name.strip():
        raise ValidationError.for_field("name", "is required")
    has_external = bool(external_provider and external_id)
    if bool(password) == has_external:
        raise ValidationError.for_field(
            "password", "provide either a password or an external identity, not both"
        )
    if find_user_by_email(db, email):
        raise ConflictError("User with this email already exists")

    now = datetime.utcnow()
    common = dict(
        id=generate_uuid(),
        email=email,
        name=name.strip(),
        hashed_password=get_password_hash(password) if password else None,
        external_provider=external_provider if has_external else None,
        external_id=external_id if has_external else None,
        profile_image=DEFAULT_PROFILE_IMAGES[role],
        # OAuth identities arrive with a provider-verified email
        is_verified=has_external,
    )

    if role == UserRole.PATIENT:
        user = Patient(patient_id=generate_identifier(db, UserRole.PATIENT, now), **common)
    elif role == UserRole.PROVIDER:
        user = Provider(
            provider_id=generate_identifier(db, UserRole.PROVIDER, now),
            verification_status=VerificationStatus.PENDING,
            verification_requested_at=now,
            **common,
        )
    else:
        if not settings.ADMIN_CREATION_KEY or admin_key != settings.ADMIN_CREATION_KEY:
            raise AccessDeniedError("Unauthorized to create admin account")
        common["is_verified"] = True
        user = Admin(**common)

    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("User with this email already exists")
    db.refresh(user)
    logger.info("Registered %s account %s", role, user.id)

    if role == UserRole.PROVIDER:
        notifications.on_provider_registered(user)
    return user


def verify_email(db: Session, user_id: str) -> User:
    user = find_user_by_id(db, user_id)
    if not user:
        raise NotFoundError("User not found")
    if user.is_verified:
        raise InvalidStateError("Email is already verified")
    user.is_verified = True
    db.commit()
    db.refresh(user)
    return user


def record_login(db: Session, user: User, refresh_token: str) -> None:
    user.last_login = datetime.utcnow()
    user.refresh_token = refresh_token
    db.commit()


# ── password reset ──────────────────────────────────────────────────────────

INVALID_RESET_TOKEN = "invalid or expired reset token"


def request_password_reset(db: Session, email: str) -> Optional[str]:
    """
    Issue a single-use reset token and email it to the account holder.

    Unknown, deactivated and password-less (external identity) accounts are
    ignored without an error, so callers cannot tell which emails exist.
    """
    user = find_user_by_email(db, email) if email else None
    if user is None or not user.is_active or not user.hashed_password:
        logger.info("Password reset requested for an unknown or password-less account")
        return None

    token = create_password_reset_token(user.id)
    user.reset_password_token = token
    db.commit()
    logger.info("Password reset requested for user %s", user.id)

    notifications.on_password_reset_requested(user, token)
    return token


def reset_password(db: Session, token: str, new_password: str) -> User:
    """Set a new password with an outstanding reset token, which is consumed."""
    if not new_password:
        raise ValidationError.for_field("password", "is required")
    payload = decode_access_token(token) if token else None
    if payload is None or payload.get("type") != "password_reset":
        raise ValidationError.for_field("token", INVALID_RESET_TOKEN)

    # single use: the stored token must still match
    updated = (
        db.query(User)
        .filter(User.id == payload.get("sub"), User.reset_password_token == token)
        .update(
            {
                User.hashed_password: get_password_hash(new_password),
                User.reset_password_token: None,
                User.refresh_token: None,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        raise ValidationError.for_field("token", INVALID_RESET_TOKEN)
    db.commit()

    user = find_user_by_id(db, payload.get("sub"))
    db.refresh(user)
    logger.info("Password reset completed for user %s", user.id)
    return user


# ── profiles ────────────────────────────────────────────────────────────────

def update_profile(db: Session, user: User, changes: Dict) -> User:
    """Update name and role-specific profile attributes."""
    allowed = {"name", "profile_image"}
    if user.role == UserRole.PATIENT:
        allowed |= PATIENT_PROFILE_FIELDS
    elif user.role == UserRole.PROVIDER:
        allowed |= PROVIDER_PROFILE_FIELDS

    rejected = sorted(k for k in changes if k not in allowed)
    if rejected:
        raise ValidationError(
            f"Fields cannot be updated: {', '.join(rejected)}",
            errors=[{"field": k, "message": "field is not updatable"} for k in rejected],
        )

    if "name" in changes and not (changes["name"] or "").strip():
        raise ValidationError.for_field("name", "must not be blank")
    if "gender" in changes and changes["gender"] is not None and changes["gender"] not in Gender.ALL:
        raise ValidationError.for_field("gender", f"must be one of {Gender.ALL}")
    if "date_of_birth" in changes and isinstance(changes["date_of_birth"], str):
        try:
            changes["date_of_birth"] = date.fromisoformat(changes["date_of_birth"])
        except ValueError:
            raise ValidationError.for_field("date_of_birth", "must be an ISO date")

    for key, value in changes.items():
        setattr(user, key, value)
    if user.role in (UserRole.PATIENT, UserRole.PROVIDER) and (set(changes) - {"name", "profile_image"}):
        user.profile_completed = True

    db.commit()
    db.refresh(user)
    return user


def deactivate_account(db: Session, user: User) -> None:
    user.is_active = False
    user.refresh_token = None
    db.commit()
    logger.info("Deactivated account %s", user.id)


# ── provider verification ───────────────────────────────────────────────────

def list_pending_providers(db: Session, skip: int = 0, limit: int = 10) -> List[Provider]:
    return (
        db.query(Provider)
        .filter(Provider.verification_status == VerificationStatus.PENDING, Provider.is_active == True)  # noqa: E712
        .order_by(Provider.created_at.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def verify_provider(
    db: Session,
    admin: User,
    provider_id: str,
    action: str,
    reason: Optional[str] = None,
) -> Provider:
    """Approve or reject a pending provider."""
    if action not in ("approve", "reject"):
        raise ValidationError.for_field("action", 'must be "approve" or "reject"')
    provider = get_provider(db, provider_id)
    new_status = VerificationStatus.APPROVED if action == "approve" else VerificationStatus.REJECTED

    updated = (
        db.query(Provider)
        .filter(Provider.id == provider_id, Provider.verification_status == VerificationStatus.PENDING)
        .update(
            {
                Provider.verification_status: new_status,
                Provider.verification_approved_by: admin.id,
                Provider.verification_decided_at: datetime.utcnow(),
                Provider.rejection_reason: reason if action == "reject" else None,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        raise InvalidStateError("Provider is not pending verification")
    db.commit()
    db.refresh(provider)
    logger.info("Provider %s verification %s by admin %s", provider_id, new_status, admin.id)

    notifications.on_provider_verification_changed(provider, new_status, reason)
    return provider
