"""
Connection lifecycle between patients and providers.

State machine::

    pending  -> approved | rejected     (patient responds)
    approved -> removed                 (patient revokes)
    rejected -> pending                 (provider re-invites, same row)

Every transition is a conditional UPDATE on the expected current state, so two
concurrent responses to the same pending request cannot both succeed.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import (
    AccessDeniedError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..core.permissions import Capabilities, PERM_REQUEST_CONNECTIONS, has_permission
from ..models.base import generate_uuid
from ..models.connection import (
    CONNECTION_TRANSITIONS,
    Connection,
    ConnectionAction,
    ConnectionStatus,
)
from ..models.medical_record import MedicalRecord
from ..models.user import Patient, Provider, VerificationStatus
from .notifications import notifications

logger = logging.getLogger(__name__)


@dataclass
class ConnectionRequestResult:
    patient_exists: bool
    connection: Optional[Connection] = None

    @property
    def status(self) -> Optional[str]:
        return self.connection.status if self.connection else None


def check_access(db: Session, provider_id: str, patient_id: str) -> bool:
    """True iff an approved connection exists and the provider's verification is approved."""
    row = (
        db.query(Connection.id)
        .join(Provider, Provider.id == Connection.provider_id)
        .filter(
            Connection.provider_id == provider_id,
            Connection.patient_id == patient_id,
            Connection.status == ConnectionStatus.APPROVED,
            Provider.verification_status == VerificationStatus.APPROVED,
        )
        .first()
    )
    return row is not None


def _find_patient(db: Session, identifier: str) -> Optional[Patient]:
    identifier = (identifier or "").strip()
    return (
        db.query(Patient)
        .filter(or_(Patient.email == identifier.lower(), Patient.patient_id == identifier))
        .first()
    )


def request_connection(db: Session, provider: Provider, patient_identifier: str) -> ConnectionRequestResult:
    """
    Ask a patient (by email or patient id) to connect.

    Unknown patients are sent an invitation and nothing is stored.
    """
    if not patient_identifier:
        raise ValidationError.for_field("email", "is required")
    if not isinstance(provider, Provider):
        raise AccessDeniedError()

    patient = _find_patient(db, patient_identifier)
    if patient is None:
        notifications.on_patient_invited(patient_identifier, provider)
        return ConnectionRequestResult(patient_exists=False)

    existing = (
        db.query(Connection)
        .filter(Connection.patient_id == patient.id, Connection.provider_id == provider.id)
        .first()
    )
    if existing is not None:
        if existing.status == ConnectionStatus.APPROVED:
            raise ConflictError("Patient is already connected")
        if existing.status == ConnectionStatus.PENDING:
            raise ConflictError("Connection request is already pending")
        if existing.status == ConnectionStatus.REMOVED:
            raise InvalidStateError("Connection was removed by the patient")
        connection = _reinvite(db, existing)
    else:
        connection = Connection(
            id=generate_uuid(),
            patient_id=patient.id,
            provider_id=provider.id,
            status=ConnectionStatus.PENDING,
            request_date=datetime.utcnow(),
        )
        db.add(connection)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError("Connection request is already pending")
        db.refresh(connection)
        logger.info("Connection %s requested by provider %s", connection.id, provider.id)

    notifications.on_connection_requested(patient, provider)
    return ConnectionRequestResult(patient_exists=True, connection=connection)


def _reinvite(db: Session, connection: Connection) -> Connection:
    """rejected -> pending on the existing row."""
    updated = (
        db.query(Connection)
        .filter(Connection.id == connection.id, Connection.status == ConnectionStatus.REJECTED)
        .update(
            {
                Connection.status: ConnectionStatus.PENDING,
                Connection.request_date: datetime.utcnow(),
                Connection.response_date: None,
                Connection.version: Connection.version + 1,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        raise ConflictError("Connection request is already pending")
    db.commit()
    db.refresh(connection)
    logger.info("Connection %s re-requested after rejection", connection.id)
    return connection


def get_connection(db: Session, connection_id: str) -> Connection:
    connection = db.query(Connection).filter(Connection.id == connection_id).first()
    if not connection:
        raise NotFoundError("Connection not found")
    return connection


def respond_to_connection(db: Session, requester: Capabilities, connection_id: str, action: str) -> Connection:
    """Patient approves, rejects or removes a connection."""
    if action not in ConnectionAction.ALL:
        raise ValidationError.for_field("action", 'must be "approve", "reject", or "remove"')

    connection = get_connection(db, connection_id)
    if not requester.can_approve_connection(connection):
        raise AccessDeniedError()

    required, target = CONNECTION_TRANSITIONS[action]
    if connection.status != required:
        raise InvalidStateError(f"Cannot {action} a connection that is {connection.status}")

    updated = (
        db.query(Connection)
        .filter(Connection.id == connection_id, Connection.status == required)
        .update(
            {
                Connection.status: target,
                Connection.response_date: datetime.utcnow(),
                Connection.version: Connection.version + 1,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        raise InvalidStateError(f"Cannot {action} a connection that is no longer {required}")
    db.commit()
    db.refresh(connection)
    logger.info("Connection %s %s by patient %s", connection.id, target, requester.user_id)

    notifications.on_connection_status_changed(connection, connection.patient, connection.provider)
    return connection


# ── queries ──────────────────────────────────────────────────────────────────

def list_patient_connections(db: Session, patient_id: str) -> Dict[str, List[Connection]]:
    """Approved and pending connections of a patient."""
    rows = (
        db.query(Connection)
        .filter(
            Connection.patient_id == patient_id,
            Connection.status.in_([ConnectionStatus.APPROVED, ConnectionStatus.PENDING]),
        )
        .order_by(Connection.request_date.desc())
        .all()
    )
    return {
        "approved": [c for c in rows if c.status == ConnectionStatus.APPROVED],
        "pending": [c for c in rows if c.status == ConnectionStatus.PENDING],
    }


def list_pending_requests(db: Session, provider: Provider) -> List[Connection]:
    requester_check(provider)
    return (
        db.query(Connection)
        .filter(Connection.provider_id == provider.id, Connection.status == ConnectionStatus.PENDING)
        .order_by(Connection.request_date.desc())
        .all()
    )


def list_provider_patients(
    db: Session,
    provider: Provider,
    search: Optional[str] = None,
    skip: int = 0,
    limit: int = 10,
) -> Tuple[List[Tuple[Patient, Optional[datetime]]], int]:
    """Patients with an approved connection, each with the provider's latest record date."""
    requester_check(provider)
    q = (
        db.query(Patient)
        .join(Connection, Connection.patient_id == Patient.id)
        .filter(
            Connection.provider_id == provider.id,
            Connection.status == ConnectionStatus.APPROVED,
            Patient.is_active == True,  # noqa: E712
        )
    )
    if search:
        term = f"%{search}%"
        q = q.filter(or_(Patient.name.ilike(term), Patient.email.ilike(term), Patient.patient_id.ilike(term)))
    total = q.count()
    patients = q.order_by(Patient.name).offset(skip).limit(limit).all()

    results = []
    for patient in patients:
        last_date = (
            db.query(func.max(MedicalRecord.date))
            .filter(
                MedicalRecord.patient_id == patient.id,
                MedicalRecord.provider_id == provider.id,
                MedicalRecord.is_deleted == False,  # noqa: E712
            )
            .scalar()
        )
        results.append((patient, last_date))
    return results, total


def requester_check(provider) -> None:
    """Only providers own a pending-request inbox and a patient list."""
    if not has_permission(getattr(provider, "role", None), PERM_REQUEST_CONNECTIONS):
        raise AccessDeniedError()
