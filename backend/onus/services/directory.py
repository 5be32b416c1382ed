"""
Admin user directory: searchable provider and patient listings with per-user counts.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..core.errors import ValidationError
from ..models.connection import Connection, ConnectionStatus
from ..models.consultation import Consultation
from ..models.medical_record import MedicalRecord
from ..models.user import Patient, Provider, VerificationStatus
from .identity import get_patient, get_provider

SORT_FIELDS = ["created_at", "name", "email"]


def _order_by(model, sort: Optional[str]):
    """``field`` or ``field:asc``/``field:desc``; newest first when unset."""
    if not sort:
        return model.created_at.desc()
    field, _, order = sort.partition(":")
    if field not in SORT_FIELDS or order not in ("", "asc", "desc"):
        raise ValidationError.for_field("sort", f"must be one of {SORT_FIELDS} with an optional :asc or :desc")
    column = getattr(model, field)
    return column.asc() if order == "asc" else column.desc()


def list_providers(
    db: Session,
    status: Optional[str] = None,
    search: Optional[str] = None,
    sort: Optional[str] = None,
    skip: int = 0,
    limit: int = 10,
) -> Tuple[List[Provider], int]:
    """Active providers, optionally by verification status and a name/email/specialty/id search."""
    if status is not None and status not in VerificationStatus.ALL:
        raise ValidationError.for_field("status", f"must be one of {VerificationStatus.ALL}")

    q = db.query(Provider).filter(Provider.is_active == True)  # noqa: E712
    if status:
        q = q.filter(Provider.verification_status == status)
    if search:
        term = f"%{search}%"
        q = q.filter(or_(
            Provider.name.ilike(term),
            Provider.email.ilike(term),
            Provider.specialty.ilike(term),
            Provider.provider_id.ilike(term),
        ))
    total = q.count()
    rows = q.order_by(_order_by(Provider, sort)).offset(skip).limit(limit).all()
    return rows, total


def list_patients(
    db: Session,
    search: Optional[str] = None,
    sort: Optional[str] = None,
    skip: int = 0,
    limit: int = 10,
) -> Tuple[List[Tuple[Patient, Optional[datetime]]], int]:
    """Active patients, each with the date of their latest live record."""
    q = db.query(Patient).filter(Patient.is_active == True)  # noqa: E712
    if search:
        term = f"%{search}%"
        q = q.filter(or_(Patient.name.ilike(term), Patient.email.ilike(term), Patient.patient_id.ilike(term)))
    total = q.count()
    patients = q.order_by(_order_by(Patient, sort)).offset(skip).limit(limit).all()

    results = []
    for patient in patients:
        last_date = (
            db.query(func.max(MedicalRecord.date))
            .filter(MedicalRecord.patient_id == patient.id, MedicalRecord.is_deleted == False)  # noqa: E712
            .scalar()
        )
        results.append((patient, last_date))
    return results, total


@dataclass
class ProviderDetails:
    provider: Provider
    patient_count: int
    record_count: int


@dataclass
class PatientDetails:
    patient: Patient
    provider_count: int
    record_count: int
    consultation_count: int


def provider_details(db: Session, provider_id: str) -> ProviderDetails:
    provider = get_provider(db, provider_id)
    patient_count = (
        db.query(Connection)
        .filter(Connection.provider_id == provider.id, Connection.status == ConnectionStatus.APPROVED)
        .count()
    )
    record_count = (
        db.query(MedicalRecord)
        .filter(MedicalRecord.provider_id == provider.id, MedicalRecord.is_deleted == False)  # noqa: E712
        .count()
    )
    return ProviderDetails(provider, patient_count, record_count)


def patient_details(db: Session, patient_id: str) -> PatientDetails:
    patient = get_patient(db, patient_id)
    provider_count = (
        db.query(Connection)
        .filter(Connection.patient_id == patient.id, Connection.status == ConnectionStatus.APPROVED)
        .count()
    )
    record_count = (
        db.query(MedicalRecord)
        .filter(MedicalRecord.patient_id == patient.id, MedicalRecord.is_deleted == False)  # noqa: E712
        .count()
    )
    consultation_count = (
        db.query(Consultation)
        .filter(Consultation.patient_id == patient.id, Consultation.is_deleted == False)  # noqa: E712
        .count()
    )
    return PatientDetails(patient, provider_count, record_count, consultation_count)
