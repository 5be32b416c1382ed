"""
Documents attached to a medical record or a consultation.

Access follows the related entity: a document on a record that is hidden from a
provider is hidden from that provider too. Bytes are released only after the
same check that guards the metadata.
"""
import logging
from typing import Iterator, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import InvalidStateError, NotFoundError, ValidationError
from ..core.permissions import AccessTarget, Capabilities
from ..models.base import generate_uuid
from ..models.consultation import Consultation
from ..models.document import Document, RelatedModel
from ..models.medical_record import MedicalRecord
from .document_storage import document_storage

logger = logging.getLogger(__name__)


def _related_entity(db: Session, related_model: str, related_id: str):
    model = MedicalRecord if related_model == RelatedModel.MEDICAL_RECORD else Consultation
    return db.query(model).filter(model.id == related_id).first()


def parse_tags(tags) -> List[str]:
    if not tags:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    return [t.strip() for t in tags if t and t.strip()]


def upload_document(
    db: Session,
    caps: Capabilities,
    patient_id: str,
    related_model: str,
    related_id: str,
    original_name: str,
    mimetype: str,
    data: bytes,
    description: Optional[str] = None,
    tags=None,
) -> Document:
    """Store the bytes and attach the document to a live record or consultation of the patient."""
    caps.ensure_write_for_patient(patient_id)

    if related_model not in RelatedModel.ALL:
        raise ValidationError.for_field("related_model", f"must be one of {RelatedModel.ALL}")
    if not data:
        raise ValidationError.for_field("file", "no file uploaded")
    if mimetype not in settings.ALLOWED_UPLOAD_MIMETYPES:
        raise ValidationError.for_field("file", f"file type {mimetype} is not allowed")
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise ValidationError.for_field("file", f"file exceeds {settings.MAX_UPLOAD_BYTES} bytes")

    related = _related_entity(db, related_model, related_id)
    if related is None or related.is_deleted or related.patient_id != patient_id:
        raise NotFoundError(f"Related {related_model} not found")

    stored = document_storage.store(data, patient_id, original_name)
    document = Document(
        id=generate_uuid(),
        filename=stored["filename"],
        original_name=original_name or stored["filename"],
        mimetype=mimetype,
        size=len(data),
        path=stored["path"],
        uploaded_by=caps.user_id,
        patient_id=patient_id,
        related_model=related_model,
        related_id=related_id,
        description=description or "",
        tags=parse_tags(tags),
        is_deleted=False,
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    logger.info("Uploaded document %s (%d bytes) to %s %s", document.id, document.size, related_model, related_id)
    return document


def access_target(db: Session, document: Document) -> AccessTarget:
    """The uploader is the author; a record's visibility carries over to its documents."""
    if document.related_model == RelatedModel.MEDICAL_RECORD:
        record = _related_entity(db, RelatedModel.MEDICAL_RECORD, document.related_id)
        if record is not None:
            return AccessTarget(
                patient_id=document.patient_id,
                author_id=document.uploaded_by,
                is_hidden=bool(record.is_hidden),
                hidden_from=frozenset(record.hidden_from or ()),
            )
    return AccessTarget.for_authored(document.patient_id, document.uploaded_by)


def _load(db: Session, document_id: str) -> Document:
    document = db.query(Document).filter(Document.id == document_id).first()
    if document is None or document.is_deleted:
        raise NotFoundError("Document not found")
    return document


def get_document(db: Session, caps: Capabilities, document_id: str) -> Document:
    document = _load(db, document_id)
    caps.ensure_access_record(access_target(db, document))
    return document


def open_document(db: Session, caps: Capabilities, document_id: str) -> Tuple[Document, Iterator[bytes]]:
    """Access check, then a chunk iterator over the stored bytes."""
    document = get_document(db, caps, document_id)
    if not document_storage.exists(document.path):
        raise NotFoundError("Document file not found")
    return document, document_storage.open(document.path)


def delete_document(db: Session, caps: Capabilities, document_id: str) -> Document:
    """Uploader-only soft delete; patients cannot delete documents."""
    document = db.query(Document).filter(Document.id == document_id).first()
    if document is None:
        raise NotFoundError("Document not found")
    caps.ensure_mutate_record(AccessTarget.for_authored(document.patient_id, document.uploaded_by))
    if document.is_deleted:
        raise InvalidStateError("Document is already deleted")

    updated = (
        db.query(Document)
        .filter(Document.id == document_id, Document.is_deleted == False)  # noqa: E712
        .update({Document.is_deleted: True}, synchronize_session=False)
    )
    if not updated:
        db.rollback()
        raise InvalidStateError("Document is already deleted")
    db.commit()
    db.refresh(document)
    logger.info("Soft-deleted document %s", document_id)
    return document


def list_patient_documents(
    db: Session,
    caps: Capabilities,
    patient_id: str,
    related_model: Optional[str] = None,
    skip: int = 0,
    limit: int = 20,
) -> Tuple[List[Document], int]:
    caps.ensure_view_patient(patient_id)
    if related_model is not None and related_model not in RelatedModel.ALL:
        raise ValidationError.for_field("related_model", f"must be one of {RelatedModel.ALL}")

    q = db.query(Document).filter(Document.patient_id == patient_id, Document.is_deleted == False)  # noqa: E712
    if related_model:
        q = q.filter(Document.related_model == related_model)
    rows = [d for d in q.order_by(Document.upload_date.desc()).all() if caps.can_access_record(access_target(db, d))]
    return rows[skip:skip + limit], len(rows)
