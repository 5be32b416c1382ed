"""Document upload, metadata, download and delete."""
from datetime import datetime
from typing import List, Optional
from urllib.parse import quote
from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict

from ..models.base import get_db
from ..core.permissions import Capabilities
from ..core.security import get_capabilities
from ..services import documents as document_service

router = APIRouter(prefix="/documents", tags=["documents"])


def content_disposition(filename: str) -> str:
    """Attachment header; names that need escaping go in the RFC 5987 ``filename*`` form."""
    quoted = quote(filename, safe="")
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


class RelatedTo(BaseModel):
    model: str
    id: str


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    original_name: str
    mimetype: str
    size: int
    uploaded_by: str
    patient_id: str
    related_to: RelatedTo
    description: Optional[str]
    tags: List[str]
    upload_date: datetime


@router.post("/", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def upload_document(
    patient_id: str = Form(...),
    related_model: str = Form(...),
    related_id: str = Form(...),
    description: Optional[str] = Form(None),
    tags: Optional[str] = Form(None, description="Comma-separated"),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    data = await file.read()
    return document_service.upload_document(
        db,
        caps,
        patient_id=patient_id,
        related_model=related_model,
        related_id=related_id,
        original_name=file.filename,
        mimetype=file.content_type,
        data=data,
        description=description,
        tags=tags,
    )


@router.get("/{document_id}", response_model=DocumentResponse)
def get_document_metadata(
    document_id: str,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    return document_service.get_document(db, caps, document_id)


@router.get("/{document_id}/download")
def download_document(
    document_id: str,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    """Streams the file only after the same access check as the metadata."""
    document, chunks = document_service.open_document(db, caps, document_id)
    return StreamingResponse(
        chunks,
        media_type=document.mimetype,
        headers={"Content-Disposition": content_disposition(document.original_name)},
    )


@router.delete("/{document_id}")
def delete_document(
    document_id: str,
    db: Session = Depends(get_db),
    caps: Capabilities = Depends(get_capabilities),
):
    document_service.delete_document(db, caps, document_id)
    return {"message": "Document deleted", "id": document_id}
