"""Tests for document upload, access and storage."""
import os

import pytest

from onus.core.config import settings
from onus.core.errors import (
    AccessDeniedError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from onus.models.document import Document, RelatedModel
from onus.models.medical_record import RecordType
from onus.services import consultations, documents, records
from onus.services.document_storage import DocumentStorageService, StorageNotConfiguredError

PDF = b"%PDF-1.4 lab report"


@pytest.fixture()
def record(db, provider, patient, connection, caps):
    return records.create_record(db, caps(provider), patient.id, RecordType.LAB_RESULT, {
        "testName": "Lipid panel", "results": "LDL 96 mg/dL",
    })


@pytest.fixture()
def document(db, record, provider, patient, caps):
    return documents.upload_document(
        db, caps(provider), patient.id, RelatedModel.MEDICAL_RECORD, record.id,
        "lipids.pdf", "application/pdf", PDF, description="Lab printout", tags="lab, lipids",
    )


class TestDocumentStorage:
    def test_store_writes_under_patient_directory(self, tmp_path):
        storage = DocumentStorageService(base_dir=str(tmp_path))
        stored = storage.store(b"hello", "pat-1", "Scan.PNG")
        assert stored["filename"].endswith(".png")
        assert os.path.dirname(stored["path"]) == str(tmp_path / "pat-1")
        assert b"".join(storage.open(stored["path"])) == b"hello"

    def test_cloud_bucket_without_backend_refuses_to_store(self, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "CLOUD_STORAGE_BUCKET", "onus-docs")
        with pytest.raises(StorageNotConfiguredError):
            DocumentStorageService(base_dir=str(tmp_path)).store(b"hello", "pat-1", "a.txt")
        assert list(tmp_path.iterdir()) == []


class TestUploadDocument:
    def test_upload_metadata(self, document, provider, record):
        assert document.uploaded_by == provider.id
        assert document.related_to == {"model": RelatedModel.MEDICAL_RECORD, "id": record.id}
        assert document.size == len(PDF)
        assert document.tags == ["lab", "lipids"]
        assert os.path.isfile(document.path)

    def test_attached_to_consultation(self, db, provider, patient, connection, caps):
        visit = consultations.create_consultation(db, caps(provider), patient.id, {"type": "Visit", "reasonForVisit": "Pain"})
        doc = documents.upload_document(
            db, caps(provider), patient.id, RelatedModel.CONSULTATION, visit.id, "note.txt", "text/plain", b"note",
        )
        db.refresh(visit)
        assert visit.document_ids == [doc.id]

    def test_patient_cannot_upload(self, db, record, patient, caps):
        with pytest.raises(AccessDeniedError):
            documents.upload_document(
                db, caps(patient), patient.id, RelatedModel.MEDICAL_RECORD, record.id, "a.pdf", "application/pdf", PDF,
            )

    @pytest.mark.parametrize("mimetype,data", [
        ("application/x-msdownload", b"MZ"),
        ("application/pdf", b""),
    ])
    def test_rejects_bad_files(self, db, record, provider, patient, caps, mimetype, data):
        with pytest.raises(ValidationError):
            documents.upload_document(
                db, caps(provider), patient.id, RelatedModel.MEDICAL_RECORD, record.id, "a.bin", mimetype, data,
            )

    def test_rejects_oversized_file(self, db, record, provider, patient, caps, monkeypatch):
        monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 4)
        with pytest.raises(ValidationError):
            documents.upload_document(
                db, caps(provider), patient.id, RelatedModel.MEDICAL_RECORD, record.id, "a.pdf", "application/pdf", PDF,
            )

    def test_upload_fails_without_writing_metadata_in_cloud_mode(self, db, record, provider, patient, caps, monkeypatch):
        monkeypatch.setattr(settings, "CLOUD_STORAGE_BUCKET", "onus-docs")
        with pytest.raises(StorageNotConfiguredError):
            documents.upload_document(
                db, caps(provider), patient.id, RelatedModel.MEDICAL_RECORD, record.id, "a.pdf", "application/pdf", PDF,
            )
        assert db.query(Document).count() == 0

    def test_related_entity_must_belong_to_patient(self, db, record, provider, make_patient, connect, caps):
        other = make_patient()
        connect(provider, other)
        with pytest.raises(NotFoundError):
            documents.upload_document(
                db, caps(provider), other.id, RelatedModel.MEDICAL_RECORD, record.id, "a.pdf", "application/pdf", PDF,
            )

    def test_unknown_related_model(self, db, record, provider, patient, caps):
        with pytest.raises(ValidationError):
            documents.upload_document(db, caps(provider), patient.id, "Invoice", record.id, "a.pdf", "application/pdf", PDF)


class TestDocumentAccess:
    def test_patient_downloads(self, db, document, patient, caps):
        doc, chunks = documents.open_document(db, caps(patient), document.id)
        assert doc.id == document.id
        assert b"".join(chunks) == PDF

    def test_hidden_record_hides_its_documents(self, db, document, record, patient, make_provider, connect, caps):
        colleague = make_provider()
        connect(colleague, patient)
        assert documents.get_document(db, caps(colleague), document.id).id == document.id

        records.set_visibility(db, caps(patient), record.id, hidden_from=[colleague.id])
        with pytest.raises(AccessDeniedError):
            documents.open_document(db, caps(colleague), document.id)
        rows, total = documents.list_patient_documents(db, caps(colleague), patient.id)
        assert (rows, total) == ([], 0)

    def test_unconnected_provider_denied(self, db, document, make_provider, caps):
        with pytest.raises(AccessDeniedError):
            documents.get_document(db, caps(make_provider()), document.id)

    def test_missing_file_is_not_found(self, db, document, patient, caps):
        os.remove(document.path)
        with pytest.raises(NotFoundError):
            documents.open_document(db, caps(patient), document.id)


class TestDeleteDocument:
    def test_patient_cannot_delete(self, db, document, patient, caps):
        with pytest.raises(AccessDeniedError):
            documents.delete_document(db, caps(patient), document.id)

    def test_uploader_soft_deletes(self, db, document, provider, patient, caps):
        documents.delete_document(db, caps(provider), document.id)
        with pytest.raises(NotFoundError):
            documents.get_document(db, caps(patient), document.id)
        with pytest.raises(InvalidStateError):
            documents.delete_document(db, caps(provider), document.id)
        # bytes are kept; only the metadata is marked deleted
        assert os.path.isfile(document.path)
