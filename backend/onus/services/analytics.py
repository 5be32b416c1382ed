"""
System analytics for the admin dashboard.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.consultation import Consultation
from ..models.medical_record import MedicalRecord
from ..models.user import Patient, Provider, User, VerificationStatus


@dataclass
class DashboardStats:
    total_patients: int
    total_providers: int
    pending_verifications: int
    total_records: int
    total_consultations: int
    active_users_30d: int
    new_users_30d: int
    records_by_type: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return asdict(self)


class AnalyticsService:
    """Counts over live (active, non-deleted) data."""

    ACTIVITY_WINDOW_DAYS = 30

    def dashboard_stats(self, db: Session, now: Optional[datetime] = None) -> DashboardStats:
        now = now or datetime.utcnow()
        window_start = now - timedelta(days=self.ACTIVITY_WINDOW_DAYS)

        total_patients = db.query(Patient).filter(Patient.is_active == True).count()  # noqa: E712
        total_providers = db.query(Provider).filter(Provider.is_active == True).count()  # noqa: E712
        pending = (
            db.query(Provider)
            .filter(Provider.verification_status == VerificationStatus.PENDING, Provider.is_active == True)  # noqa: E712
            .count()
        )
        total_records = db.query(MedicalRecord).filter(MedicalRecord.is_deleted == False).count()  # noqa: E712
        total_consultations = db.query(Consultation).filter(Consultation.is_deleted == False).count()  # noqa: E712
        active_users = db.query(User).filter(User.last_login >= window_start).count()
        new_users = db.query(User).filter(User.created_at >= window_start).count()

        by_type = (
            db.query(MedicalRecord.record_type, func.count(MedicalRecord.id))
            .filter(MedicalRecord.is_deleted == False)  # noqa: E712
            .group_by(MedicalRecord.record_type)
            .all()
        )

        return DashboardStats(
            total_patients=total_patients,
            total_providers=total_providers,
            pending_verifications=pending,
            total_records=total_records,
            total_consultations=total_consultations,
            active_users_30d=active_users,
            new_users_30d=new_users,
            records_by_type={record_type: count for record_type, count in by_type},
        )


analytics = AnalyticsService()
