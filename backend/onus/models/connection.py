from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, JSON, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import Base, TimestampMixin, generate_uuid, utcnow


class ConnectionStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REMOVED = "removed"


class ConnectionAction:
    APPROVE = "approve"
    REJECT = "reject"
    REMOVE = "remove"

    ALL = [APPROVE, REJECT, REMOVE]


# action -> (required current status, resulting status)
CONNECTION_TRANSITIONS = {
    ConnectionAction.APPROVE: (ConnectionStatus.PENDING, ConnectionStatus.APPROVED),
    ConnectionAction.REJECT: (ConnectionStatus.PENDING, ConnectionStatus.REJECTED),
    ConnectionAction.REMOVE: (ConnectionStatus.APPROVED, ConnectionStatus.REMOVED),
}


class AccessLevel:
    FULL = "full"
    LIMITED = "limited"
    CUSTOM = "custom"


# Stored and returned, never consulted by any read path
DEFAULT_CUSTOM_ACCESS = {
    "vitals": True,
    "medications": True,
    "immunizations": True,
    "labResults": True,
    "radiologyReports": True,
    "hospital": True,
    "surgery": True,
}


class Connection(Base, TimestampMixin):
    """Consent relationship between one patient and one provider."""
    __tablename__ = "connections"

    id = Column(String, primary_key=True, default=generate_uuid)
    patient_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=ConnectionStatus.PENDING)
    request_date = Column(DateTime, nullable=False, default=utcnow)
    response_date = Column(DateTime, nullable=True)
    access_level = Column(String(20), nullable=False, default=AccessLevel.FULL)
    custom_access = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_CUSTOM_ACCESS))
    notes = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    patient = relationship("Patient", foreign_keys=[patient_id])
    provider = relationship("Provider", foreign_keys=[provider_id])

    __table_args__ = (UniqueConstraint("patient_id", "provider_id", name="uq_connection_pair"),)
    __mapper_args__ = {"version_id_col": version}
