"""Provider-facing endpoints: connection requests and the connected patient list."""
from datetime import date, datetime
from typing import Any, List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict

from ..models.base import get_db
from ..models.user import Provider, UserRole
from ..core.permissions import Capabilities
from ..core.security import get_capabilities, require_role
from ..services import connections, identity
from .patients import ConnectionResponse

router = APIRouter(prefix="/providers", tags=["providers"])


class ConnectionRequest(BaseModel):
    patient_email: str


class ConnectionRequestResponse(BaseModel):
    patient_exists: bool
    message: str
    connection: Optional[ConnectionResponse] = None


class PatientSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: Optional[str]
    name: str
    email: str
    date_of_birth: Optional[date]
    gender: Optional[str]


class ConnectedPatient(PatientSummary):
    last_record_date: Optional[datetime] = None


class PatientListResponse(BaseModel):
    patients: List[ConnectedPatient]
    total: int


class PatientDetail(PatientSummary):
    phone_number: Optional[str]
    medical_history: Optional[Any]
    allergies: Optional[Any]
    medications: Optional[Any]


class PendingRequest(ConnectionResponse):
    patient: PatientSummary


@router.post("/connections", response_model=ConnectionRequestResponse, status_code=status.HTTP_201_CREATED)
def request_connection(
    req: ConnectionRequest,
    db: Session = Depends(get_db),
    current_user: Provider = Depends(require_role(UserRole.PROVIDER)),
):
    """Ask a patient to connect. Unknown emails receive an invitation instead."""
    result = connections.request_connection(db, current_user, req.patient_email)
    if not result.patient_exists:
        return ConnectionRequestResponse(patient_exists=False, message="Invitation sent to patient")
    return ConnectionRequestResponse(
        patient_exists=True,
        message="Connection request sent to patient",
        connection=result.connection,
    )


@router.get("/connections/pending", response_model=List[PendingRequest])
def pending_requests(
    db: Session = Depends(get_db),
    current_user: Provider = Depends(require_role(UserRole.PROVIDER)),
):
    return connections.list_pending_requests(db, current_user)


@router.get("/patients", response_model=PatientListResponse)
def my_patients(
    search: Optional[str] = Query(None, description="Name, email or patient id"),
    skip: int = 0,
    limit: int = Query(10, le=100),
    db: Session = Depends(get_db),
    current_user: Provider = Depends(require_role(UserRole.PROVIDER)),
):
    rows, total = connections.list_provider_patients(db, current_user, search, skip, limit)
    patients = [
        ConnectedPatient.model_validate(patient).model_copy(update={"last_record_date": last_date})
        for patient, last_date in rows
    ]
    return PatientListResponse(patients=patients, total=total)


@router.get("/patients/{patient_id}", response_model=PatientDetail)
def patient_details(
    patient_id: str,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    caps.ensure_view_patient(patient_id)
    return identity.get_patient(db, patient_id)
