from sqlalchemy import Column, String, Integer, PrimaryKeyConstraint

from .base import Base


class IdSequence(Base):
    """Monthly counter backing the human-readable patient/provider identifiers."""
    __tablename__ = "id_sequences"

    entity_type = Column(String(20), nullable=False)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    value = Column(Integer, nullable=False, default=0)

    __table_args__ = (PrimaryKeyConstraint("entity_type", "year", "month"),)
