from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Integer, JSON, Text, and_
from sqlalchemy.orm import relationship, foreign

from .base import Base, TimestampMixin, generate_uuid, utcnow
from .document import Document, RelatedModel


class RecordType:
    VITALS = "vitals"
    MEDICATION = "medication"
    IMMUNIZATION = "immunization"
    LAB_RESULT = "labResult"
    RADIOLOGY_REPORT = "radiologyReport"
    HOSPITAL = "hospital"
    SURGERY = "surgery"
    DENTAL = "dental"  # legacy tag: readable, not creatable

    CREATABLE = [VITALS, MEDICATION, IMMUNIZATION, LAB_RESULT, RADIOLOGY_REPORT, HOSPITAL, SURGERY]
    ALL = CREATABLE + [DENTAL]


class MedicalRecord(Base, TimestampMixin):
    """
    Envelope for every clinical record.

    ``record_type`` is the tag and ``details`` holds the variant payload
    (see ``onus.services.record_types``). Records are never physically removed.
    """
    __tablename__ = "medical_records"

    id = Column(String, primary_key=True, default=generate_uuid)
    patient_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)  # author
    consultation_id = Column(String, ForeignKey("consultations.id"), nullable=True, index=True)
    date = Column(DateTime, nullable=False, default=utcnow)
    record_type = Column(String(30), nullable=False, index=True)
    notes = Column(Text, nullable=True)
    details = Column(JSON, nullable=False, default=dict)

    # Patient-controlled visibility override
    is_hidden = Column(Boolean, nullable=False, default=False)
    hidden_from = Column(JSON, nullable=False, default=list)

    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    version = Column(Integer, nullable=False, default=1)

    provider = relationship("Provider", foreign_keys=[provider_id])
    consultation = relationship("Consultation", foreign_keys=[consultation_id])
    documents = relationship(
        Document,
        primaryjoin=lambda: and_(
            foreign(Document.related_id) == MedicalRecord.id,
            Document.related_model == RelatedModel.MEDICAL_RECORD,
            Document.is_deleted == False,  # noqa: E712
        ),
        viewonly=True,
        order_by=Document.upload_date,
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def visibility(self) -> dict:
        return {"is_hidden": bool(self.is_hidden), "hidden_from": list(self.hidden_from or [])}

    @property
    def document_ids(self):
        return [d.id for d in self.documents]
