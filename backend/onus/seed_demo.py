"""
Demo data seeder for Onus.

Creates a demo admin, an approved provider and a patient with known
credentials, connects them and adds one vitals record so the provider and
patient dashboards have data immediately after a fresh start.

Credentials (printed to stdout on first run):
  Admin   : admin@onus.demo    / Admin1234!
  Provider: provider@onus.demo / Provider1234!
  Patient : patient@onus.demo  / Patient1234!

This seeder is idempotent: it is safe to call on every startup.
"""
from datetime import date, datetime

from .models.base import SessionLocal, Base, engine, generate_uuid
from .models.connection import Connection, ConnectionStatus
from .models.medical_record import MedicalRecord, RecordType
from .models.user import Admin, Patient, Provider, UserRole, VerificationStatus, DEFAULT_PROFILE_IMAGES
from .core.security import get_password_hash
from .services.identity import find_user_by_email, generate_identifier
from .services.record_types import validate_payload

DEMO_ADMIN_EMAIL = "admin@onus.demo"
DEMO_ADMIN_PASSWORD = "Admin1234!"

DEMO_PROVIDER_EMAIL = "provider@onus.demo"
DEMO_PROVIDER_PASSWORD = "Provider1234!"

DEMO_PATIENT_EMAIL = "patient@onus.demo"
DEMO_PATIENT_PASSWORD = "Patient1234!"


def seed_demo_data(session_factory=None) -> None:
    """Create demo users, connection and record if they do not already exist."""
    if session_factory is None:
        # Ensure tables exist (no-op when already created by main.py)
        Base.metadata.create_all(bind=engine)
        session_factory = SessionLocal

    db = session_factory()
    try:
        admin = _seed_admin(db)
        provider = _seed_provider(db, admin)
        patient = _seed_patient(db)
        _seed_connection(db, provider, patient)
        _seed_vitals(db, provider, patient)
    finally:
        db.close()


# ── helpers ──────────────────────────────────────────────────────────────────

def _seed_admin(db) -> Admin:
    admin = find_user_by_email(db, DEMO_ADMIN_EMAIL)
    if not admin:
        admin = Admin(
            id=generate_uuid(),
            email=DEMO_ADMIN_EMAIL,
            name="Demo Admin",
            hashed_password=get_password_hash(DEMO_ADMIN_PASSWORD),
            profile_image=DEFAULT_PROFILE_IMAGES[UserRole.ADMIN],
            is_verified=True,
        )
        db.add(admin)
        db.commit()
        print(f"[seed] Created demo admin   : {DEMO_ADMIN_EMAIL} / {DEMO_ADMIN_PASSWORD}")
    return admin


def _seed_provider(db, admin) -> Provider:
    provider = find_user_by_email(db, DEMO_PROVIDER_EMAIL)
    if not provider:
        now = datetime.utcnow()
        provider = Provider(
            id=generate_uuid(),
            email=DEMO_PROVIDER_EMAIL,
            name="Dr. Demo Provider",
            hashed_password=get_password_hash(DEMO_PROVIDER_PASSWORD),
            profile_image=DEFAULT_PROFILE_IMAGES[UserRole.PROVIDER],
            is_verified=True,
            provider_id=generate_identifier(db, UserRole.PROVIDER, now),
            title="Dr.",
            specialty="General Practice",
            practice={"name": "Demo Family Clinic"},
            verification_status=VerificationStatus.APPROVED,
            verification_requested_at=now,
            verification_approved_by=admin.id,
            verification_decided_at=now,
            profile_completed=True,
        )
        db.add(provider)
        db.commit()
        print(f"[seed] Created demo provider: {DEMO_PROVIDER_EMAIL} / {DEMO_PROVIDER_PASSWORD}")
    return provider


def _seed_patient(db) -> Patient:
    patient = find_user_by_email(db, DEMO_PATIENT_EMAIL)
    if not patient:
        patient = Patient(
            id=generate_uuid(),
            email=DEMO_PATIENT_EMAIL,
            name="Jane Demo",
            hashed_password=get_password_hash(DEMO_PATIENT_PASSWORD),
            profile_image=DEFAULT_PROFILE_IMAGES[UserRole.PATIENT],
            is_verified=True,
            patient_id=generate_identifier(db, UserRole.PATIENT),
            date_of_birth=date(1985, 3, 12),
            gender="female",
            allergies=["penicillin"],
            profile_completed=True,
        )
        db.add(patient)
        db.commit()
        print(f"[seed] Created demo patient : {DEMO_PATIENT_EMAIL} / {DEMO_PATIENT_PASSWORD} ({patient.patient_id})")
    return patient


def _seed_connection(db, provider, patient) -> None:
    existing = (
        db.query(Connection)
        .filter(Connection.provider_id == provider.id, Connection.patient_id == patient.id)
        .first()
    )
    if not existing:
        now = datetime.utcnow()
        db.add(Connection(
            id=generate_uuid(),
            patient_id=patient.id,
            provider_id=provider.id,
            status=ConnectionStatus.APPROVED,
            request_date=now,
            response_date=now,
        ))
        db.commit()
        print("[seed] Connected demo provider and patient")


def _seed_vitals(db, provider, patient) -> None:
    existing = db.query(MedicalRecord).filter(MedicalRecord.patient_id == patient.id).first()
    if not existing:
        details, _, notes = validate_payload(RecordType.VITALS, {
            "heartRate": {"value": 72},
            "bloodPressure": {"systolic": 120, "diastolic": 80},
            "weight": {"value": 70, "unit": "kg"},
            "height": {"value": 175, "unit": "cm"},
            "notes": "Routine check-up",
        })
        record = MedicalRecord(
            id=generate_uuid(),
            patient_id=patient.id,
            provider_id=provider.id,
            record_type=RecordType.VITALS,
            date=datetime.utcnow(),
            notes=notes,
            details=details,
        )
        db.add(record)
        db.commit()
        print(f"[seed] Created demo vitals   : BMI {details.get('bmi')} (id: {record.id})")
