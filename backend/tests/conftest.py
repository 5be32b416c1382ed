"""Shared fixtures: an isolated SQLite database per test and user/connection factories."""
import os

# The application engine is created at import time; keep it off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from onus.models.base import Base, generate_uuid  # noqa: E402
from onus.models.connection import Connection, ConnectionStatus  # noqa: E402
import onus.models.sequence  # noqa: F401, E402
import onus.models.document  # noqa: F401, E402
import onus.models.medical_record  # noqa: F401, E402
import onus.models.consultation  # noqa: F401, E402
import onus.models.audit  # noqa: F401, E402
from onus.models.user import (  # noqa: E402
    Admin,
    Patient,
    Provider,
    UserRole,
    VerificationStatus,
    DEFAULT_PROFILE_IMAGES,
)
from onus.core.permissions import capabilities_for  # noqa: E402
from onus.core.security import create_access_token, get_password_hash  # noqa: E402
from onus.services.identity import generate_identifier  # noqa: E402

TEST_PASSWORD = "Secret1234!"
_PASSWORD_HASH = get_password_hash(TEST_PASSWORD)


@pytest.fixture()
def session_factory():
    """Fresh in-memory database shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


# ── factories ────────────────────────────────────────────────────────────────

@pytest.fixture()
def make_patient(db):
    def _make(email=None, name="Pat Patient", **extra):
        patient = Patient(
            id=generate_uuid(),
            email=email or f"patient-{generate_uuid()[:8]}@example.com",
            name=name,
            hashed_password=_PASSWORD_HASH,
            profile_image=DEFAULT_PROFILE_IMAGES[UserRole.PATIENT],
            is_verified=True,
            patient_id=generate_identifier(db, UserRole.PATIENT),
            **extra,
        )
        db.add(patient)
        db.commit()
        db.refresh(patient)
        return patient
    return _make


@pytest.fixture()
def make_provider(db):
    def _make(email=None, name="Dr. Provider", status=VerificationStatus.APPROVED, **extra):
        provider = Provider(
            id=generate_uuid(),
            email=email or f"provider-{generate_uuid()[:8]}@example.com",
            name=name,
            hashed_password=_PASSWORD_HASH,
            profile_image=DEFAULT_PROFILE_IMAGES[UserRole.PROVIDER],
            is_verified=True,
            provider_id=generate_identifier(db, UserRole.PROVIDER),
            verification_status=status,
            verification_requested_at=datetime.utcnow(),
            **extra,
        )
        db.add(provider)
        db.commit()
        db.refresh(provider)
        return provider
    return _make


@pytest.fixture()
def connect(db):
    def _connect(provider, patient, status=ConnectionStatus.APPROVED):
        connection = Connection(
            id=generate_uuid(),
            patient_id=patient.id,
            provider_id=provider.id,
            status=status,
            request_date=datetime.utcnow(),
            response_date=None if status == ConnectionStatus.PENDING else datetime.utcnow(),
        )
        db.add(connection)
        db.commit()
        db.refresh(connection)
        return connection
    return _connect


@pytest.fixture()
def patient(make_patient):
    return make_patient(email="pat@example.com", name="Pat Patient")


@pytest.fixture()
def provider(make_provider):
    return make_provider(email="doc@example.com", name="Dr. Doc")


@pytest.fixture()
def admin(db):
    user = Admin(
        id=generate_uuid(),
        email="admin@example.com",
        name="Ada Admin",
        hashed_password=_PASSWORD_HASH,
        is_verified=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def connection(connect, provider, patient):
    """Approved connection between the default provider and patient."""
    return connect(provider, patient)


@pytest.fixture()
def caps(db):
    """Capability set for a user, bound to the test session."""
    def _caps(user):
        return capabilities_for(user, db)
    return _caps


# ── HTTP ─────────────────────────────────────────────────────────────────────

@pytest.fixture()
def client(session_factory, monkeypatch):
    from fastapi.testclient import TestClient

    import onus.core.audit_middleware as audit_middleware
    from onus.main import app
    from onus.models.base import get_db

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(audit_middleware, "SessionLocal", session_factory)
    app.dependency_overrides[get_db] = _get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers():
    def _headers(user):
        token = create_access_token({"sub": user.id, "role": user.role})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture(autouse=True)
def _document_storage_dir(tmp_path, monkeypatch):
    """Uploaded bytes go to a per-test directory."""
    from onus.core.config import settings
    monkeypatch.setattr(settings, "DOCUMENT_STORAGE_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "CLOUD_STORAGE_BUCKET", None)
