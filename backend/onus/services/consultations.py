"""
Consultation aggregate: a visit plus the records and documents created during it.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import Field, ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..core.errors import (
    AccessDeniedError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..core.permissions import AccessTarget, Capabilities
from ..models.base import generate_uuid
from ..models.consultation import Consultation, ConsultationStatus
from ..models.document import Document, RelatedModel
from ..models.medical_record import MedicalRecord
from ..models.user import UserRole
from .identity import get_patient
from .notifications import notifications
from .record_types import CamelModel, normalize_keys
from .records import build_record

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "date", "type", "specialist", "clinic", "reason_for_visit", "symptoms",
    "diagnosis", "recommendations", "follow_up", "notes", "status",
}


class FollowUp(CamelModel):
    recommended: bool = False
    date: Optional[datetime] = None
    instructions: Optional[str] = None


class ConsultationFields(CamelModel):
    type: str = Field(min_length=1)
    reason_for_visit: str = Field(min_length=1)
    date: Optional[datetime] = None
    specialist: Optional[str] = None
    clinic: Optional[str] = None
    symptoms: List[str] = Field(default_factory=list)
    diagnosis: Optional[str] = None
    recommendations: Optional[str] = None
    follow_up: Optional[FollowUp] = None
    notes: Optional[str] = None
    status: Literal["scheduled", "completed", "cancelled", "rescheduled", "no-show"] = ConsultationStatus.COMPLETED


def _validate_fields(fields: Optional[Dict]) -> ConsultationFields:
    try:
        return ConsultationFields.model_validate(normalize_keys(fields))
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc)


def _build_consultation(db: Session, caps: Capabilities, patient_id: str, fields: Optional[Dict]) -> Consultation:
    data = _validate_fields(fields)
    consultation = Consultation(
        id=generate_uuid(),
        patient_id=patient_id,
        provider_id=caps.user_id,
        date=data.date or datetime.utcnow(),
        type=data.type,
        specialist=data.specialist,
        clinic=data.clinic,
        reason_for_visit=data.reason_for_visit,
        symptoms=data.symptoms,
        diagnosis=data.diagnosis,
        recommendations=data.recommendations,
        follow_up=data.follow_up.model_dump(mode="json") if data.follow_up else None,
        notes=data.notes,
        status=data.status,
        is_deleted=False,
    )
    db.add(consultation)
    return consultation


def create_consultation(db: Session, caps: Capabilities, patient_id: str, fields: Optional[Dict]) -> Consultation:
    caps.ensure_write_for_patient(patient_id)
    get_patient(db, patient_id)
    consultation = _build_consultation(db, caps, patient_id, fields)
    db.commit()
    db.refresh(consultation)
    logger.info("Created consultation %s for patient %s", consultation.id, patient_id)
    return consultation


@dataclass
class ConsultationWithRecords:
    consultation: Consultation
    records: List[MedicalRecord]
    requested: int
    skipped: List[Dict] = field(default_factory=list)

    @property
    def created(self) -> int:
        return len(self.records)


def create_consultation_with_records(
    db: Session,
    caps: Capabilities,
    patient_id: str,
    consultation_fields: Optional[Dict],
    records: Optional[List[Dict]],
) -> ConsultationWithRecords:
    """
    Create a consultation and its records in one commit.

    Entries with an unknown record type or an invalid payload are omitted and
    reported in ``skipped``; the consultation only ever links records that
    were actually written.
    """
    caps.ensure_write_for_patient(patient_id)
    patient = get_patient(db, patient_id)
    records = records or []

    consultation = _build_consultation(db, caps, patient_id, consultation_fields)
    created: List[MedicalRecord] = []
    skipped: List[Dict] = []
    for index, entry in enumerate(records):
        entry = normalize_keys(entry)
        record_type = entry.pop("record_type", None)
        try:
            created.append(build_record(db, caps, patient_id, record_type, entry, consultation))
        except ValidationError as exc:
            skipped.append({"index": index, "record_type": record_type, "errors": exc.errors})

    db.commit()
    db.refresh(consultation)
    for record in created:
        db.refresh(record)
    logger.info(
        "Created consultation %s with %d of %d records",
        consultation.id, len(created), len(records),
    )

    provider = consultation.provider
    for record in created:
        notifications.on_record_created(patient, provider, record.record_type)
    return ConsultationWithRecords(consultation, created, len(records), skipped)


def _load(db: Session, consultation_id: str) -> Consultation:
    consultation = db.query(Consultation).filter(Consultation.id == consultation_id).first()
    if consultation is None or consultation.is_deleted:
        raise NotFoundError("Consultation not found")
    return consultation


def get_consultation(db: Session, caps: Capabilities, consultation_id: str) -> Consultation:
    consultation = _load(db, consultation_id)
    caps.ensure_access_record(AccessTarget.for_authored(consultation.patient_id, consultation.provider_id))
    return consultation


def visible_records(caps: Capabilities, consultation: Consultation) -> List[MedicalRecord]:
    """The consultation's live records, minus those hidden from the requester."""
    return [r for r in consultation.medical_records if caps.can_access_record(AccessTarget.for_record(r))]


def list_consultations(
    db: Session,
    caps: Capabilities,
    patient_id: Optional[str] = None,
    status: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    skip: int = 0,
    limit: int = 10,
):
    """
    Consultations, newest first.

    With ``patient_id`` the requester must be able to view that patient;
    without it a provider sees the consultations they authored and a patient
    sees their own.
    """
    if status is not None and status not in ConsultationStatus.ALL:
        raise ValidationError.for_field("status", f"must be one of {ConsultationStatus.ALL}")

    q = db.query(Consultation).filter(Consultation.is_deleted == False)  # noqa: E712
    if patient_id:
        caps.ensure_view_patient(patient_id)
        q = q.filter(Consultation.patient_id == patient_id)
    elif caps.role == UserRole.PROVIDER:
        q = q.filter(Consultation.provider_id == caps.user_id)
    elif caps.role == UserRole.PATIENT:
        q = q.filter(Consultation.patient_id == caps.user_id)
    elif caps.role != UserRole.ADMIN:
        raise AccessDeniedError()

    if status:
        q = q.filter(Consultation.status == status)
    if date_from:
        q = q.filter(Consultation.date >= date_from)
    if date_to:
        q = q.filter(Consultation.date <= date_to)
    total = q.count()
    rows = q.order_by(Consultation.date.desc()).offset(skip).limit(limit).all()
    return rows, total


def update_consultation(db: Session, caps: Capabilities, consultation_id: str, patch: Optional[Dict]) -> Consultation:
    consultation = _load(db, consultation_id)
    caps.ensure_mutate_record(AccessTarget.for_authored(consultation.patient_id, consultation.provider_id))

    patch = normalize_keys(patch)
    rejected = sorted(k for k in patch if k not in UPDATABLE_FIELDS)
    if rejected:
        raise ValidationError(
            f"Fields cannot be updated: {', '.join(rejected)}",
            errors=[{"field": k, "message": "field is not updatable"} for k in rejected],
        )

    current = {
        "type": consultation.type,
        "reason_for_visit": consultation.reason_for_visit,
        "date": consultation.date,
        "status": consultation.status,
    }
    data = _validate_fields({**current, **patch})
    if "date" in patch and data.date is None:
        raise ValidationError.for_field("date", "must be a date")
    for key in patch:
        value = getattr(data, key)
        if key == "follow_up" and value is not None:
            value = value.model_dump(mode="json")
        setattr(consultation, key, value)

    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise InvalidStateError("Consultation was changed by another request")
    db.refresh(consultation)
    logger.info("Updated consultation %s", consultation.id)
    return consultation


def delete_consultation(db: Session, caps: Capabilities, consultation_id: str) -> Consultation:
    """Author-only soft delete, cascading to the consultation's records and documents."""
    consultation = db.query(Consultation).filter(Consultation.id == consultation_id).first()
    if consultation is None:
        raise NotFoundError("Consultation not found")
    caps.ensure_mutate_record(AccessTarget.for_authored(consultation.patient_id, consultation.provider_id))
    if consultation.is_deleted:
        raise InvalidStateError("Consultation is already deleted")

    now = datetime.utcnow()
    updated = (
        db.query(Consultation)
        .filter(Consultation.id == consultation_id, Consultation.is_deleted == False)  # noqa: E712
        .update(
            {
                Consultation.is_deleted: True,
                Consultation.version: Consultation.version + 1,
                Consultation.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        raise InvalidStateError("Consultation is already deleted")

    record_ids = [
        row.id for row in db.query(MedicalRecord.id).filter(MedicalRecord.consultation_id == consultation_id)
    ]
    records_deleted = (
        db.query(MedicalRecord)
        .filter(MedicalRecord.consultation_id == consultation_id, MedicalRecord.is_deleted == False)  # noqa: E712
        .update(
            {
                MedicalRecord.is_deleted: True,
                MedicalRecord.version: MedicalRecord.version + 1,
                MedicalRecord.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    doc_filter = (
        (Document.related_model == RelatedModel.CONSULTATION) & (Document.related_id == consultation_id)
    )
    if record_ids:
        doc_filter = doc_filter | (
            (Document.related_model == RelatedModel.MEDICAL_RECORD) & Document.related_id.in_(record_ids)
        )
    documents_deleted = (
        db.query(Document)
        .filter(doc_filter, Document.is_deleted == False)  # noqa: E712
        .update({Document.is_deleted: True, Document.updated_at: now}, synchronize_session=False)
    )
    db.commit()
    db.expire_all()
    logger.info(
        "Soft-deleted consultation %s with %d records and %d documents",
        consultation_id, records_deleted, documents_deleted,
    )
    return consultation
