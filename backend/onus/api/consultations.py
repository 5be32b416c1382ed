"""Consultation endpoints."""
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict, Field

from ..models.base import get_db
from ..core.permissions import Capabilities
from ..core.security import get_capabilities
from ..services import consultations as consultation_service
from .records import RecordResponse

router = APIRouter(prefix="/consultations", tags=["consultations"])


class ConsultationCreate(BaseModel):
    """``patient_id`` plus the consultation fields (camelCase or snake_case)."""
    model_config = ConfigDict(extra="allow")

    patient_id: str


class ConsultationWithRecordsCreate(BaseModel):
    patient_id: str
    consultation: Dict[str, Any]
    records: List[Dict[str, Any]] = Field(default_factory=list)


class ConsultationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    provider_id: str
    date: datetime
    type: str
    specialist: Optional[str]
    clinic: Optional[str]
    reason_for_visit: str
    symptoms: List[str]
    diagnosis: Optional[str]
    recommendations: Optional[str]
    follow_up: Optional[Dict[str, Any]]
    notes: Optional[str]
    status: str
    medical_record_ids: List[str]
    document_ids: List[str]
    created_at: datetime


class ConsultationDetail(ConsultationResponse):
    medical_records: List[RecordResponse]


class ConsultationListResponse(BaseModel):
    consultations: List[ConsultationResponse]
    total: int


class SkippedRecord(BaseModel):
    index: int
    record_type: Optional[str]
    errors: List[Dict[str, str]]


def _project(caps: Capabilities, consultation, model=None):
    """Serialize a consultation, listing only the records the requester may see."""
    model = model or ConsultationResponse
    records = consultation_service.visible_records(caps, consultation)
    update = {"medical_record_ids": [r.id for r in records]}
    if model is ConsultationDetail:
        update["medical_records"] = [RecordResponse.model_validate(r) for r in records]
    return model.model_validate(consultation).model_copy(update=update)


class ConsultationWithRecordsResponse(BaseModel):
    consultation: ConsultationResponse
    records: List[RecordResponse]
    requested: int
    created: int
    skipped: List[SkippedRecord]


@router.post("/", response_model=ConsultationResponse, status_code=status.HTTP_201_CREATED)
def create_consultation(
    req: ConsultationCreate,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    fields = req.model_dump(exclude={"patient_id"})
    return _project(caps, consultation_service.create_consultation(db, caps, req.patient_id, fields))


@router.post("/with-records", response_model=ConsultationWithRecordsResponse, status_code=status.HTTP_201_CREATED)
def create_consultation_with_records(
    req: ConsultationWithRecordsCreate,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    """Consultation plus its records in one request. Invalid record entries are skipped and reported."""
    result = consultation_service.create_consultation_with_records(
        db, caps, req.patient_id, req.consultation, req.records,
    )
    return ConsultationWithRecordsResponse(
        consultation=_project(caps, result.consultation),
        records=result.records,
        requested=result.requested,
        created=result.created,
        skipped=result.skipped,
    )


@router.get("/", response_model=ConsultationListResponse)
def list_consultations(
    patient_id: Optional[str] = Query(None, description="Filter by patient"),
    status_filter: Optional[str] = Query(None, alias="status"),
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    skip: int = 0,
    limit: int = Query(10, le=100),
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    rows, total = consultation_service.list_consultations(
        db, caps, patient_id, status_filter, date_from, date_to, skip, limit,
    )
    return ConsultationListResponse(consultations=[_project(caps, c) for c in rows], total=total)


@router.get("/{consultation_id}", response_model=ConsultationDetail)
def get_consultation(
    consultation_id: str,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    consultation = consultation_service.get_consultation(db, caps, consultation_id)
    return _project(caps, consultation, ConsultationDetail)


@router.put("/{consultation_id}", response_model=ConsultationResponse)
def update_consultation(
    consultation_id: str,
    patch: Dict[str, Any],
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    return _project(caps, consultation_service.update_consultation(db, caps, consultation_id, patch))


@router.delete("/{consultation_id}")
def delete_consultation(
    consultation_id: str,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    """Soft-deletes the consultation together with its records and documents."""
    consultation_service.delete_consultation(db, caps, consultation_id)
    return {"message": "Consultation and associated records deleted", "id": consultation_id}
