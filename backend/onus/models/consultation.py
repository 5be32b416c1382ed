from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Integer, JSON, Text, and_
from sqlalchemy.orm import relationship, foreign

from .base import Base, TimestampMixin, generate_uuid, utcnow
from .document import Document, RelatedModel
from .medical_record import MedicalRecord


class ConsultationStatus:
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    NO_SHOW = "no-show"

    ALL = [SCHEDULED, COMPLETED, CANCELLED, RESCHEDULED, NO_SHOW]


class Consultation(Base, TimestampMixin):
    """A visit. Bundles the medical records and documents created during it."""
    __tablename__ = "consultations"

    id = Column(String, primary_key=True, default=generate_uuid)
    patient_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(DateTime, nullable=False, default=utcnow)
    type = Column(String(100), nullable=False)
    specialist = Column(String(200), nullable=True)
    clinic = Column(String(200), nullable=True)
    reason_for_visit = Column(Text, nullable=False)
    symptoms = Column(JSON, nullable=False, default=list)
    diagnosis = Column(Text, nullable=True)
    recommendations = Column(Text, nullable=True)
    follow_up = Column(JSON, nullable=True)  # {recommended, date, instructions}
    notes = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=ConsultationStatus.COMPLETED)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    version = Column(Integer, nullable=False, default=1)

    provider = relationship("Provider", foreign_keys=[provider_id])
    # Live (non-deleted) records only; a soft-deleted record drops out of the list
    medical_records = relationship(
        MedicalRecord,
        primaryjoin=and_(
            foreign(MedicalRecord.consultation_id) == id,
            MedicalRecord.is_deleted == False,  # noqa: E712
        ),
        viewonly=True,
        order_by=MedicalRecord.created_at,
    )
    documents = relationship(
        Document,
        primaryjoin=and_(
            foreign(Document.related_id) == id,
            Document.related_model == RelatedModel.CONSULTATION,
            Document.is_deleted == False,  # noqa: E712
        ),
        viewonly=True,
        order_by=Document.upload_date,
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def medical_record_ids(self):
        return [r.id for r in self.medical_records]

    @property
    def document_ids(self):
        return [d.id for d in self.documents]
