"""Patient-facing endpoints: connections, and patient-scoped record and document lists."""
from datetime import datetime
from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict

from ..models.base import get_db
from ..models.user import User, UserRole
from ..core.permissions import Capabilities
from ..core.security import get_capabilities, require_role
from ..services import connections, documents, records as record_service
from .documents import DocumentResponse
from .records import RecordResponse

router = APIRouter(prefix="/patients", tags=["patients"])


class ConnectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str
    provider_id: str
    status: str
    request_date: datetime
    response_date: Optional[datetime]
    access_level: str
    custom_access: Dict[str, bool]


class ConnectedProvider(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider_id: Optional[str]
    name: str
    title: Optional[str]
    specialty: Optional[str]


class PatientConnection(ConnectionResponse):
    provider: ConnectedProvider


class PatientConnectionsResponse(BaseModel):
    approved: List[PatientConnection]
    pending: List[PatientConnection]


class ConnectionAction(BaseModel):
    action: str


class RecordListResponse(BaseModel):
    records: List[RecordResponse]
    total: int


class RecordTypeSummary(BaseModel):
    count: int
    latest_date: Optional[datetime]


class DocumentListResponse(BaseModel):
    documents: List[DocumentResponse]
    total: int


@router.get("/me/connections", response_model=PatientConnectionsResponse)
def my_connections(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_role(UserRole.PATIENT)),
):
    return connections.list_patient_connections(db, current_user.id)


@router.put("/me/connections/{connection_id}", response_model=ConnectionResponse)
def respond_to_connection(
    connection_id: str,
    req: ConnectionAction,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    """Approve, reject or remove a provider connection."""
    return connections.respond_to_connection(db, caps, connection_id, req.action)


@router.get("/{patient_id}/records", response_model=RecordListResponse)
def list_records(
    patient_id: str,
    record_type: Optional[str] = Query(None, description="Filter by record type"),
    skip: int = 0,
    limit: int = Query(10, le=100),
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    rows, total = record_service.list_records(db, caps, patient_id, record_type, skip, limit)
    return RecordListResponse(records=rows, total=total)


@router.get("/{patient_id}/records/summary", response_model=Dict[str, RecordTypeSummary])
def records_summary(
    patient_id: str,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    """Per record type: count and latest date."""
    return record_service.records_summary(db, caps, patient_id)


@router.get("/{patient_id}/documents", response_model=DocumentListResponse)
def list_documents(
    patient_id: str,
    related_model: Optional[str] = None,
    skip: int = 0,
    limit: int = Query(20, le=100),
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    rows, total = documents.list_patient_documents(db, caps, patient_id, related_model, skip, limit)
    return DocumentListResponse(documents=rows, total=total)
