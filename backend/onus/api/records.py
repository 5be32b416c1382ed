"""Medical record endpoints."""
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict, Field

from ..models.base import get_db
from ..core.permissions import Capabilities
from ..core.security import get_capabilities
from ..services import records as record_service

router = APIRouter(prefix="/records", tags=["records"])


class RecordCreate(BaseModel):
    patient_id: str
    record_type: str
    consultation_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class VisibilityUpdate(BaseModel):
    is_hidden: Optional[bool] = None
    hidden_from: Optional[List[str]] = None


class VisibilityResponse(BaseModel):
    is_hidden: bool
    hidden_from: List[str]


class RecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    provider_id: str
    consultation_id: Optional[str]
    record_type: str
    date: datetime
    notes: Optional[str]
    details: Dict[str, Any]
    visibility: VisibilityResponse
    document_ids: List[str]
    created_at: datetime
    updated_at: datetime


@router.post("/", response_model=RecordResponse, status_code=status.HTTP_201_CREATED)
def create_record(
    req: RecordCreate,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    return record_service.create_record(
        db, caps, req.patient_id, req.record_type, req.data, consultation_id=req.consultation_id,
    )


@router.get("/{record_id}", response_model=RecordResponse)
def get_record(
    record_id: str,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    return record_service.get_record(db, caps, record_id)


@router.put("/{record_id}", response_model=RecordResponse)
def update_record(
    record_id: str,
    patch: Dict[str, Any],
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    """Author only. Accepts the record's date, notes and variant fields."""
    return record_service.update_record(db, caps, record_id, patch)


@router.patch("/{record_id}/visibility", response_model=RecordResponse)
def set_visibility(
    record_id: str,
    req: VisibilityUpdate,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    """Owning patient only."""
    return record_service.set_visibility(db, caps, record_id, req.is_hidden, req.hidden_from)


@router.delete("/{record_id}")
def delete_record(
    record_id: str,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    record_service.delete_record(db, caps, record_id)
    return {"message": "Medical record deleted", "id": record_id}
