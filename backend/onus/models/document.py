from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, BigInteger, JSON, Text

from .base import Base, TimestampMixin, generate_uuid, utcnow


class RelatedModel:
    MEDICAL_RECORD = "MedicalRecord"
    CONSULTATION = "Consultation"

    ALL = [MEDICAL_RECORD, CONSULTATION]


class Document(Base, TimestampMixin):
    """Metadata for an uploaded file. The bytes live with the storage collaborator."""
    __tablename__ = "documents"

    id = Column(String, primary_key=True, default=generate_uuid)
    filename = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    mimetype = Column(String(100), nullable=False)
    size = Column(BigInteger, nullable=False)
    path = Column(String(1000), nullable=False)  # storage reference
    uploaded_by = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    patient_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    related_model = Column(String(30), nullable=False)
    related_id = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    upload_date = Column(DateTime, nullable=False, default=utcnow)

    @property
    def related_to(self) -> dict:
        return {"model": self.related_model, "id": self.related_id}
