"""
Medical record service: create, read, update, visibility and soft delete.

Every operation takes the requester's ``Capabilities`` and asks it for the
decision. State changes are conditional UPDATEs on the row version so that two
concurrent writers cannot both succeed against the same snapshot.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.errors import (
    AccessDeniedError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..core.permissions import AccessTarget, Capabilities
from ..models.base import generate_uuid
from ..models.connection import Connection
from ..models.consultation import Consultation
from ..models.medical_record import MedicalRecord, RecordType
from .identity import get_patient
from .notifications import notifications
from .record_types import (
    IMMUTABLE_FIELDS,
    VISIBILITY_FIELDS,
    is_creatable,
    normalize_keys,
    validate_payload,
)

logger = logging.getLogger(__name__)


def build_record(
    db: Session,
    caps: Capabilities,
    patient_id: str,
    record_type: str,
    payload: Optional[Dict],
    consultation: Optional[Consultation] = None,
) -> MedicalRecord:
    """Validate and stage a new record in the session without committing."""
    if not is_creatable(record_type):
        raise ValidationError.for_field("record_type", f"must be one of {RecordType.CREATABLE}")
    details, date, notes = validate_payload(record_type, payload)
    record = MedicalRecord(
        id=generate_uuid(),
        patient_id=patient_id,
        provider_id=caps.user_id,
        consultation_id=consultation.id if consultation is not None else None,
        date=date or datetime.utcnow(),
        record_type=record_type,
        notes=notes,
        details=details,
        is_hidden=False,
        hidden_from=[],
        is_deleted=False,
    )
    db.add(record)
    return record


def _load_consultation_for_write(db: Session, caps: Capabilities, consultation_id: str, patient_id: str) -> Consultation:
    consultation = (
        db.query(Consultation)
        .filter(Consultation.id == consultation_id, Consultation.is_deleted == False)  # noqa: E712
        .first()
    )
    if consultation is None:
        raise NotFoundError("Consultation not found")
    if consultation.provider_id != caps.user_id:
        raise AccessDeniedError()
    if consultation.patient_id != patient_id:
        raise ValidationError.for_field("consultation_id", "belongs to a different patient")
    return consultation


def create_record(
    db: Session,
    caps: Capabilities,
    patient_id: str,
    record_type: str,
    payload: Optional[Dict],
    consultation_id: Optional[str] = None,
) -> MedicalRecord:
    """Create a typed record for a connected patient."""
    caps.ensure_write_for_patient(patient_id)
    patient = get_patient(db, patient_id)

    consultation = None
    if consultation_id:
        consultation = _load_consultation_for_write(db, caps, consultation_id, patient_id)

    record = build_record(db, caps, patient_id, record_type, payload, consultation)
    db.commit()
    db.refresh(record)
    logger.info("Created %s record %s for patient %s", record_type, record.id, patient_id)

    notifications.on_record_created(patient, record.provider, record_type)
    return record


def _load_record(db: Session, record_id: str) -> MedicalRecord:
    record = db.query(MedicalRecord).filter(MedicalRecord.id == record_id).first()
    if record is None:
        raise NotFoundError("Medical record not found")
    return record


def get_record(db: Session, caps: Capabilities, record_id: str) -> MedicalRecord:
    record = _load_record(db, record_id)
    if record.is_deleted:
        raise NotFoundError("Medical record not found")
    caps.ensure_access_record(AccessTarget.for_record(record))
    return record


def _apply_update(db: Session, record: MedicalRecord, values: Dict) -> MedicalRecord:
    """Conditional UPDATE against the version the caller read."""
    values = dict(values)
    values[MedicalRecord.version] = MedicalRecord.version + 1
    values[MedicalRecord.updated_at] = datetime.utcnow()
    updated = (
        db.query(MedicalRecord)
        .filter(
            MedicalRecord.id == record.id,
            MedicalRecord.version == record.version,
            MedicalRecord.is_deleted == False,  # noqa: E712
        )
        .update(values, synchronize_session=False)
    )
    if not updated:
        db.rollback()
        raise InvalidStateError("Medical record was changed or deleted by another request")
    db.commit()
    db.refresh(record)
    return record


def update_record(db: Session, caps: Capabilities, record_id: str, patch: Optional[Dict]) -> MedicalRecord:
    """Author-only update of the record's date, notes and variant fields."""
    record = _load_record(db, record_id)
    caps.ensure_mutate_record(AccessTarget.for_record(record))
    if record.is_deleted:
        raise InvalidStateError("Medical record is deleted")

    patch = normalize_keys(patch)
    forbidden = sorted(k for k in patch if k in IMMUTABLE_FIELDS or k in VISIBILITY_FIELDS)
    if forbidden:
        raise ValidationError(
            f"Fields cannot be updated: {', '.join(forbidden)}",
            errors=[{"field": k, "message": "field is immutable"} for k in forbidden],
        )
    if not is_creatable(record.record_type):
        raise InvalidStateError(f"{record.record_type} records are read-only")

    merged = dict(record.details or {})
    merged.update({"date": record.date, "notes": record.notes})
    merged.update(patch)
    details, date, notes = validate_payload(record.record_type, merged)

    record = _apply_update(db, record, {
        MedicalRecord.details: details,
        MedicalRecord.date: date or record.date,
        MedicalRecord.notes: notes,
    })
    logger.info("Updated record %s", record.id)
    return record


def set_visibility(
    db: Session,
    caps: Capabilities,
    record_id: str,
    is_hidden: Optional[bool] = None,
    hidden_from: Optional[Iterable[str]] = None,
) -> MedicalRecord:
    """Patient hides a record from all non-author providers or from listed ones."""
    record = _load_record(db, record_id)
    if record.is_deleted:
        raise NotFoundError("Medical record not found")
    if not caps.can_set_visibility(AccessTarget.for_record(record)):
        raise AccessDeniedError()

    values = {}
    if is_hidden is not None:
        values[MedicalRecord.is_hidden] = bool(is_hidden)
    if hidden_from is not None:
        provider_ids = list(dict.fromkeys(hidden_from))
        connected = {
            row.provider_id
            for row in db.query(Connection.provider_id).filter(
                Connection.patient_id == record.patient_id,
                Connection.provider_id.in_(provider_ids),
            )
        } if provider_ids else set()
        unknown = [pid for pid in provider_ids if pid not in connected]
        if unknown:
            raise ValidationError(
                "hidden_from may only list providers connected to this patient",
                errors=[{"field": "hidden_from", "message": f"no connection with provider {pid}"} for pid in unknown],
            )
        values[MedicalRecord.hidden_from] = provider_ids
    if not values:
        return record

    record = _apply_update(db, record, values)
    logger.info("Visibility of record %s changed by patient %s", record.id, caps.user_id)
    return record


def delete_record(db: Session, caps: Capabilities, record_id: str) -> MedicalRecord:
    """Author-only soft delete. A second delete is an error, not a no-op."""
    record = _load_record(db, record_id)
    caps.ensure_mutate_record(AccessTarget.for_record(record))
    if record.is_deleted:
        raise InvalidStateError("Medical record is already deleted")

    updated = (
        db.query(MedicalRecord)
        .filter(MedicalRecord.id == record_id, MedicalRecord.is_deleted == False)  # noqa: E712
        .update(
            {
                MedicalRecord.is_deleted: True,
                MedicalRecord.version: MedicalRecord.version + 1,
                MedicalRecord.updated_at: datetime.utcnow(),
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        raise InvalidStateError("Medical record is already deleted")
    db.commit()
    db.refresh(record)
    logger.info("Soft-deleted record %s", record_id)
    return record


# ── queries ──────────────────────────────────────────────────────────────────

def _visible_records(db: Session, caps: Capabilities, patient_id: str, record_type: Optional[str] = None) -> List[MedicalRecord]:
    caps.ensure_view_patient(patient_id)
    if record_type is not None and record_type not in RecordType.ALL:
        raise ValidationError.for_field("record_type", f"must be one of {RecordType.ALL}")

    q = db.query(MedicalRecord).filter(
        MedicalRecord.patient_id == patient_id,
        MedicalRecord.is_deleted == False,  # noqa: E712
    )
    if record_type:
        q = q.filter(MedicalRecord.record_type == record_type)
    rows = q.order_by(MedicalRecord.date.desc()).all()
    return [r for r in rows if caps.can_access_record(AccessTarget.for_record(r))]


def list_records(
    db: Session,
    caps: Capabilities,
    patient_id: str,
    record_type: Optional[str] = None,
    skip: int = 0,
    limit: int = 10,
) -> Tuple[List[MedicalRecord], int]:
    """Records of one patient the requester may read, newest first."""
    rows = _visible_records(db, caps, patient_id, record_type)
    return rows[skip:skip + limit], len(rows)


def records_summary(db: Session, caps: Capabilities, patient_id: str) -> Dict[str, Dict]:
    """Per record type: how many readable records and the latest record date."""
    summary: Dict[str, Dict] = {}
    for record in _visible_records(db, caps, patient_id):
        entry = summary.setdefault(record.record_type, {"count": 0, "latest_date": None})
        entry["count"] += 1
        if entry["latest_date"] is None or record.date > entry["latest_date"]:
            entry["latest_date"] = record.date
    return summary
