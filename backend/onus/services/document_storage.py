"""
Document byte storage.
Only the storage reference, size and mimetype are kept in the database; the bytes
live here, under a local directory. No cloud backend is installed: configuring
``CLOUD_STORAGE_BUCKET`` makes uploads fail instead of recording a reference to
bytes that were never stored.
"""
import hashlib
import logging
import os
from datetime import datetime, timezone
from typing import Iterator, Optional

from ..core.config import settings
from ..models.base import generate_uuid

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class StorageNotConfiguredError(RuntimeError):
    """The configured storage backend is not available in this deployment."""


class DocumentStorageService:
    """Store uploaded documents in a local directory (``DOCUMENT_STORAGE_DIR``)."""

    def __init__(self, base_dir: Optional[str] = None):
        self._base_dir = base_dir

    @property
    def base_dir(self) -> str:
        return self._base_dir or settings.DOCUMENT_STORAGE_DIR or os.path.join(
            os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))),
            "uploads",
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def store(self, data: bytes, patient_id: str, original_name: str) -> dict:
        """Persist a file and return ``{"filename", "path", "sha256"}``."""
        if settings.CLOUD_STORAGE_BUCKET:
            logger.error("CLOUD_STORAGE_BUCKET=%s is set but no cloud backend is installed", settings.CLOUD_STORAGE_BUCKET)
            raise StorageNotConfiguredError(
                "Cloud document storage is not available; unset CLOUD_STORAGE_BUCKET to store documents locally"
            )

        digest = hashlib.sha256(data).hexdigest()
        ext = os.path.splitext(original_name or "")[1].lower()
        ts = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        filename = f"{ts}_{generate_uuid()}{ext}"
        path = self._save_local(data, patient_id, filename)
        return {"filename": filename, "path": path, "sha256": digest}

    def open(self, path: str) -> Iterator[bytes]:
        """Yield the stored bytes in chunks. Callers must check access first."""
        with open(path, "rb") as fh:
            while True:
                chunk = fh.read(CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _save_local(self, data: bytes, patient_id: str, filename: str) -> str:
        """Save under ``<base_dir>/<patient_id>/``."""
        patient_dir = os.path.join(self.base_dir, patient_id)
        os.makedirs(patient_dir, exist_ok=True)
        filepath = os.path.join(patient_dir, filename)
        with open(filepath, "wb") as fh:
            fh.write(data)
        return filepath


document_storage = DocumentStorageService()
