"""Admin endpoints: audit log viewer, provider verification, user directory, dashboard stats (admin only)."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict
from datetime import date, datetime

from ..models.base import get_db
from ..models.audit import AuditLog
from ..core.security import require_role
from ..models.user import User, UserRole
from ..services import directory, identity
from ..services.analytics import analytics

router = APIRouter(prefix="/admin", tags=["admin"])


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    action: str
    resource_type: str
    resource_id: str
    ip_address: Optional[str]
    request_method: Optional[str]
    request_path: Optional[str]
    created_at: datetime


class PendingProviderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider_id: Optional[str]
    name: str
    email: str
    title: Optional[str]
    specialty: Optional[str]
    practice_license: Optional[str]
    verification_status: str
    verification_requested_at: Optional[datetime]


class VerificationDecision(BaseModel):
    action: str
    reason: Optional[str] = None


class DirectoryProvider(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider_id: Optional[str]
    name: str
    email: str
    title: Optional[str]
    specialty: Optional[str]
    verification_status: str
    created_at: datetime


class DirectoryProviderList(BaseModel):
    providers: List[DirectoryProvider]
    total: int


class DirectoryProviderDetail(DirectoryProvider):
    practice: Optional[Dict[str, Any]]
    practice_license: Optional[str]
    years_of_experience: Optional[int]
    verification_requested_at: Optional[datetime]
    verification_decided_at: Optional[datetime]
    rejection_reason: Optional[str]
    last_login: Optional[datetime]
    patient_count: int = 0
    record_count: int = 0


class DirectoryPatient(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: Optional[str]
    name: str
    email: str
    date_of_birth: Optional[date]
    gender: Optional[str]
    created_at: datetime
    last_record_date: Optional[datetime] = None


class DirectoryPatientList(BaseModel):
    patients: List[DirectoryPatient]
    total: int


class DirectoryPatientDetail(DirectoryPatient):
    phone_number: Optional[str]
    consent_to_share_data: bool
    profile_completed: bool
    last_login: Optional[datetime]
    provider_count: int = 0
    record_count: int = 0
    consultation_count: int = 0


class DashboardStatsResponse(BaseModel):
    total_patients: int
    total_providers: int
    pending_verifications: int
    total_records: int
    total_consultations: int
    active_users_30d: int
    new_users_30d: int
    records_by_type: Dict[str, int]


@router.get("/audit-logs", response_model=List[AuditLogResponse])
def get_audit_logs(
    user_id: Optional[str] = Query(None, description="Filter by user ID"),
    action: Optional[str] = Query(None, description="Filter by action type"),
    resource_type: Optional[str] = Query(None, description="Filter by resource type"),
    since: Optional[datetime] = Query(None, description="Filter records after this datetime"),
    until: Optional[datetime] = Query(None, description="Filter records before this datetime"),
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    _admin=Depends(require_role(UserRole.ADMIN)),
):
    """Searchable audit log. Filterable by user, date range, action type."""
    q = db.query(AuditLog)
    if user_id:
        q = q.filter(AuditLog.user_id == user_id)
    if action:
        q = q.filter(AuditLog.action == action)
    if resource_type:
        q = q.filter(AuditLog.resource_type == resource_type)
    if since:
        q = q.filter(AuditLog.created_at >= since)
    if until:
        q = q.filter(AuditLog.created_at <= until)
    return q.order_by(AuditLog.created_at.desc()).offset(skip).limit(limit).all()


@router.get("/providers/pending", response_model=List[PendingProviderResponse])
def pending_providers(
    skip: int = 0,
    limit: int = Query(10, le=100),
    db: Session = Depends(get_db),
    _admin=Depends(require_role(UserRole.ADMIN)),
):
    return identity.list_pending_providers(db, skip, limit)


@router.put("/providers/{provider_id}/verify", response_model=PendingProviderResponse)
def verify_provider(
    provider_id: str,
    req: VerificationDecision,
    db: Session = Depends(get_db),
    admin: User = Depends(require_role(UserRole.ADMIN)),
):
    """Approve or reject a provider awaiting verification."""
    return identity.verify_provider(db, admin, provider_id, req.action, req.reason)


@router.get("/providers", response_model=DirectoryProviderList)
def list_providers(
    status: Optional[str] = Query(None, description="Filter by verification status"),
    search: Optional[str] = Query(None, description="Name, email, specialty or provider id"),
    sort: Optional[str] = Query(None, description="created_at, name or email; append :asc or :desc"),
    skip: int = 0,
    limit: int = Query(10, le=100),
    db: Session = Depends(get_db),
    _admin=Depends(require_role(UserRole.ADMIN)),
):
    rows, total = directory.list_providers(db, status, search, sort, skip, limit)
    return DirectoryProviderList(providers=rows, total=total)


@router.get("/providers/{provider_id}", response_model=DirectoryProviderDetail)
def provider_details(
    provider_id: str,
    db: Session = Depends(get_db),
    _admin=Depends(require_role(UserRole.ADMIN)),
):
    details = directory.provider_details(db, provider_id)
    return DirectoryProviderDetail.model_validate(details.provider).model_copy(update={
        "patient_count": details.patient_count,
        "record_count": details.record_count,
    })


@router.get("/patients", response_model=DirectoryPatientList)
def list_patients(
    search: Optional[str] = Query(None, description="Name, email or patient id"),
    sort: Optional[str] = Query(None, description="created_at, name or email; append :asc or :desc"),
    skip: int = 0,
    limit: int = Query(10, le=100),
    db: Session = Depends(get_db),
    _admin=Depends(require_role(UserRole.ADMIN)),
):
    rows, total = directory.list_patients(db, search, sort, skip, limit)
    patients = [
        DirectoryPatient.model_validate(patient).model_copy(update={"last_record_date": last_date})
        for patient, last_date in rows
    ]
    return DirectoryPatientList(patients=patients, total=total)


@router.get("/patients/{patient_id}", response_model=DirectoryPatientDetail)
def patient_details(
    patient_id: str,
    db: Session = Depends(get_db),
    _admin=Depends(require_role(UserRole.ADMIN)),
):
    details = directory.patient_details(db, patient_id)
    return DirectoryPatientDetail.model_validate(details.patient).model_copy(update={
        "provider_count": details.provider_count,
        "record_count": details.record_count,
        "consultation_count": details.consultation_count,
    })


@router.get("/stats", response_model=DashboardStatsResponse)
def dashboard_stats(
    db: Session = Depends(get_db),
    _admin=Depends(require_role(UserRole.ADMIN)),
):
    return analytics.dashboard_stats(db).to_dict()
