from sqlalchemy import Column, String, Boolean, Date, DateTime, Integer, ForeignKey, JSON
from sqlalchemy.orm import validates

from ..core.errors import InvalidStateError
from .base import Base, TimestampMixin, generate_uuid


class UserRole:
    PATIENT = "patient"
    PROVIDER = "provider"
    ADMIN = "admin"

    ALL = [PATIENT, PROVIDER, ADMIN]


class VerificationStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    ALL = [PENDING, APPROVED, REJECTED]


class Gender:
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    PREFER_NOT_TO_SAY = "prefer not to say"

    ALL = [MALE, FEMALE, OTHER, PREFER_NOT_TO_SAY]


DEFAULT_PROFILE_IMAGES = {
    UserRole.ADMIN: "/images/defaults/admin-default.png",
    UserRole.PROVIDER: "/images/defaults/provider-default.png",
    UserRole.PATIENT: "/images/defaults/patient-default.png",
}


class User(Base, TimestampMixin):
    """Identity shared by every role. Role-specific columns live in joined tables."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=True)  # absent for OAuth identities
    external_provider = Column(String(50), nullable=True)  # e.g. "google"
    external_id = Column(String(255), nullable=True)
    name = Column(String(200), nullable=False)
    role = Column(String(20), nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    profile_image = Column(String(500), nullable=True)
    last_login = Column(DateTime, nullable=True)
    refresh_token = Column(String(1000), nullable=True)
    reset_password_token = Column(String(1000), nullable=True)  # outstanding single-use reset token

    __mapper_args__ = {"polymorphic_on": role}

    @validates("email")
    def _normalize_email(self, key, value):
        return value.strip().lower() if value else value

    @validates("role")
    def _freeze_role(self, key, value):
        if self.role is not None and value != self.role:
            raise InvalidStateError("Role cannot be changed once assigned")
        return value

    @property
    def has_external_identity(self) -> bool:
        return bool(self.external_provider and self.external_id)

    def has_single_credential(self) -> bool:
        """Exactly one of password hash / external identity binding is present."""
        return bool(self.hashed_password) != self.has_external_identity


class Admin(User):
    __mapper_args__ = {"polymorphic_identity": UserRole.ADMIN}


class Patient(User):
    __tablename__ = "patients"

    id = Column(String, ForeignKey("users.id"), primary_key=True)
    patient_id = Column(String(20), unique=True, nullable=True, index=True)  # P<YY><MM><seq>
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(30), nullable=True)
    phone_number = Column(String(50), nullable=True)
    medical_history = Column(JSON, nullable=True)  # chronic conditions, surgeries, ...
    allergies = Column(JSON, nullable=True)
    medications = Column(JSON, nullable=True)  # free-form list
    consent_to_share_data = Column(Boolean, default=False, nullable=False)
    profile_completed = Column(Boolean, default=False, nullable=False)

    __mapper_args__ = {"polymorphic_identity": UserRole.PATIENT}


class Provider(User):
    __tablename__ = "providers"

    id = Column(String, ForeignKey("users.id"), primary_key=True)
    provider_id = Column(String(20), unique=True, nullable=True, index=True)  # HP<YY><MM><seq>
    title = Column(String(50), nullable=True)
    specialty = Column(String(100), nullable=True)
    practice = Column(JSON, nullable=True)  # name, location, phone, email
    practice_license = Column(String(100), nullable=True)
    years_of_experience = Column(Integer, nullable=True)
    profile_completed = Column(Boolean, default=False, nullable=False)

    verification_status = Column(String(20), default=VerificationStatus.PENDING, nullable=False)
    verification_requested_at = Column(DateTime, nullable=True)
    verification_approved_by = Column(String, ForeignKey("users.id"), nullable=True)
    verification_decided_at = Column(DateTime, nullable=True)
    rejection_reason = Column(String(500), nullable=True)

    __mapper_args__ = {
        "polymorphic_identity": UserRole.PROVIDER,
        "inherit_condition": id == User.id,
    }

    @property
    def is_approved(self) -> bool:
        return self.verification_status == VerificationStatus.APPROVED

    @property
    def verification_request(self) -> dict:
        return {
            "date_requested": self.verification_requested_at,
            "approved_by": self.verification_approved_by,
            "date_approved": self.verification_decided_at,
            "rejection_reason": self.rejection_reason,
        }
