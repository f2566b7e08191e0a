"""Document store, blob store and the file library built on them.

Two collaborators hold an uploaded audit log:

1. **Document store**: one metadata record per file (``FileRecord``),
   listed newest first. The local implementation keeps a collection as a
   single JSON object ``{id: record}`` written atomically (temp file, fsync,
   rename).

2. **Blob store**: the file bytes. The local implementation writes uploads
   to ``<path>.part`` in chunks, reporting fractional progress, and renames
   the part file into place when complete. An interrupted upload can be
   resumed from the bytes already on disk. Download URLs point at the API's
   ``/blobs/`` route.

``FileLibrary`` applies the upload/delete rules on top: validation happens
before any store call, a failed upload deletes its partial blob (a failed
cleanup is logged, never raised), and deletion removes the blob before the
metadata record, treating an absent blob as already deleted.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Callable, Dict, List, Optional, Protocol, Union
from urllib.parse import quote

from audit_core.config import AppConfig

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

CHUNK_SIZE = 256 * 1024
FILE_STATUSES = ("uploaded", "processing", "ready", "error")
DEFAULT_CONTENT_TYPE = "text/csv"


# ── Errors ────────────────────────────────────────────────────────────────


class LibraryError(Exception):
    """Base class for file library failures shown to the user."""


class FileNotFound(LibraryError):
    pass


class UploadValidationError(LibraryError):
    pass


class StorageError(LibraryError):
    pass


class UploadError(StorageError):
    pass


class DeletionError(StorageError):
    pass


class ListingError(StorageError):
    pass


# ── Records ───────────────────────────────────────────────────────────────


@dataclass
class FileRecord:
    name: str
    ticket_name: str
    storage_path: str
    download_url: str = ""
    size: int = 0
    status: str = "uploaded"
    uploaded_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    content_type: str = DEFAULT_CONTENT_TYPE
    id: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.ticket_name or self.name

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], record_id: Optional[str] = None) -> "FileRecord":
        return cls(
            id=record_id or data.get("id"),
            name=str(data.get("name") or ""),
            ticket_name=str(data.get("ticket_name") or data.get("ticketName") or ""),
            storage_path=str(data.get("storage_path") or data.get("storagePath") or ""),
            download_url=str(data.get("download_url") or data.get("downloadURL") or ""),
            size=int(data.get("size") or 0),
            status=str(data.get("status") or "uploaded"),
            uploaded_at=str(data.get("uploaded_at") or data.get("uploadedAt") or datetime.now(timezone.utc).isoformat()),
            content_type=str(data.get("content_type") or data.get("type") or DEFAULT_CONTENT_TYPE),
        )


# ── Collaborator protocols ────────────────────────────────────────────────


class DocumentStore(Protocol):
    def list(self) -> List[FileRecord]:
        """All records, newest upload first."""
        ...

    def create(self, record: FileRecord) -> FileRecord:
        ...

    def get(self, record_id: str) -> Optional[FileRecord]:
        ...

    def delete(self, record_id: str) -> None:
        ...


class BlobStore(Protocol):
    def upload(self, path: str, data: Union[bytes, IO[bytes]], on_progress: Optional[ProgressCallback] = None) -> str:
        """Store bytes at ``path`` and return the download URL."""
        ...

    def delete(self, path: str) -> bool:
        """Delete ``path``; returns False when nothing was there."""
        ...

    def open(self, path: str) -> IO[bytes]:
        ...


# ── Local implementations ─────────────────────────────────────────────────


def _atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON data atomically using temp file + rename."""
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(path)
    except OSError as exc:
        logger.error("Failed to write %s: %s", path, exc)
        if tmp_path.exists():
            tmp_path.unlink()
        raise


class LocalDocumentStore:
    def __init__(self, directory: Path | str, collection: str = "saved_files"):
        self.directory = Path(directory)
        self.collection = collection
        self.path = self.directory / f"{collection}.json"

    def _read(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def _write(self, data: Dict[str, Dict[str, Any]]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        _atomic_write_json(self.path, data)

    def list(self) -> List[FileRecord]:
        records = [FileRecord.from_dict(doc, record_id=doc_id) for doc_id, doc in self._read().items()]
        return sorted(records, key=lambda r: r.uploaded_at, reverse=True)

    def create(self, record: FileRecord) -> FileRecord:
        data = self._read()
        record_id = record.id or uuid.uuid4().hex[:20]
        record.id = record_id
        doc = record.to_dict()
        doc.pop("id", None)
        data[record_id] = doc
        self._write(data)
        logger.info("Created %s record %s (%s)", self.collection, record_id, record.name)
        return record

    def get(self, record_id: str) -> Optional[FileRecord]:
        doc = self._read().get(record_id)
        if doc is None:
            return None
        return FileRecord.from_dict(doc, record_id=record_id)

    def delete(self, record_id: str) -> None:
        data = self._read()
        if data.pop(record_id, None) is not None:
            self._write(data)
            logger.info("Deleted %s record %s", self.collection, record_id)


class LocalBlobStore:
    def __init__(self, root: Path | str, public_base_url: str = "", chunk_size: int = CHUNK_SIZE):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.chunk_size = max(1, int(chunk_size))

    def resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        root = self.root.resolve()
        if target == root or root not in target.parents:
            raise ValueError(f"Blob path escapes the store: {path!r}")
        return target

    def download_url(self, path: str) -> str:
        return f"{self.public_base_url}/blobs/{quote(path)}"

    def upload(
        self,
        path: str,
        data: Union[bytes, IO[bytes]],
        on_progress: Optional[ProgressCallback] = None,
        resume: bool = False,
    ) -> str:
        payload = data if isinstance(data, bytes) else data.read()
        target = self.resolve(path)
        part = target.with_name(target.name + ".part")
        target.parent.mkdir(parents=True, exist_ok=True)

        total = len(payload)
        offset = part.stat().st_size if resume and part.exists() else 0
        if offset > total:
            offset = 0
        mode = "ab" if offset else "wb"

        with open(part, mode) as f:
            written = offset
            if on_progress:
                on_progress(written / total if total else 0.0)
            while written < total:
                chunk = payload[written : written + self.chunk_size]
                f.write(chunk)
                written += len(chunk)
                if on_progress:
                    on_progress(written / total)
            f.flush()
            os.fsync(f.fileno())

        part.replace(target)
        if on_progress and total == 0:
            on_progress(1.0)
        logger.debug("Stored blob %s (%d bytes, resumed at %d)", path, total, offset)
        return self.download_url(path)

    def delete(self, path: str) -> bool:
        target = self.resolve(path)
        part = target.with_name(target.name + ".part")
        if part.exists():
            part.unlink()
        if not target.exists():
            return False
        target.unlink()
        return True

    def open(self, path: str) -> IO[bytes]:
        return open(self.resolve(path), "rb")


# ── File library ──────────────────────────────────────────────────────────


def _is_csv(filename: str, content_type: Optional[str]) -> bool:
    if content_type and content_type.split(";")[0].strip().lower() in ("text/csv", "application/vnd.ms-excel"):
        return True
    return filename.lower().endswith(".csv")


class FileLibrary:
    """Upload, list, fetch and delete audit log files."""

    def __init__(self, store: DocumentStore, blobs: BlobStore, uploads_prefix: str = "uploads"):
        self.store = store
        self.blobs = blobs
        self.uploads_prefix = uploads_prefix.strip("/")

    def storage_path_for(self, filename: str) -> str:
        return f"{self.uploads_prefix}/{int(time.time() * 1000)}_{Path(filename).name}"

    def upload(
        self,
        ticket_name: str,
        filename: Optional[str],
        data: Optional[bytes],
        content_type: Optional[str] = DEFAULT_CONTENT_TYPE,
        on_progress: Optional[ProgressCallback] = None,
    ) -> FileRecord:
        if not (ticket_name or "").strip():
            raise UploadValidationError("Ticket name cannot be empty.")
        if not filename or data is None:
            raise UploadValidationError("Please provide a ticket name and select a file.")
        if not _is_csv(filename, content_type):
            raise UploadValidationError("Please upload a .csv file.")

        storage_path = self.storage_path_for(filename)
        try:
            download_url = self.blobs.upload(storage_path, data, on_progress)
        except Exception as exc:
            logger.exception("Error uploading file %s", filename)
            try:
                self.blobs.delete(storage_path)
            except Exception:
                logger.warning("Could not delete orphaned storage file %s", storage_path, exc_info=True)
            raise UploadError("File upload failed. Please try again.") from exc

        record = FileRecord(
            name=Path(filename).name,
            ticket_name=ticket_name.strip(),
            storage_path=storage_path,
            download_url=download_url,
            size=len(data),
            status="uploaded",
            content_type=(content_type or DEFAULT_CONTENT_TYPE).split(";")[0].strip() or DEFAULT_CONTENT_TYPE,
        )
        try:
            return self.store.create(record)
        except Exception as exc:
            logger.exception("Error saving file metadata for %s", storage_path)
            raise UploadError("File uploaded, but failed to save metadata.") from exc

    def list_files(self) -> List[FileRecord]:
        try:
            return self.store.list()
        except Exception as exc:
            logger.exception("Error listing files")
            raise ListingError("Could not retrieve files from the document store.") from exc

    def get_file(self, file_id: str) -> FileRecord:
        record = self.store.get(file_id)
        if record is None:
            raise FileNotFound("File not found in database.")
        return record

    def read_content(self, record: FileRecord) -> bytes:
        try:
            with self.blobs.open(record.storage_path) as f:
                return f.read()
        except FileNotFoundError as exc:
            raise FileNotFound("File content is missing from storage.") from exc

    def delete_file(self, file_id: str, storage_path: Optional[str] = None) -> None:
        try:
            if storage_path is None:
                record = self.store.get(file_id)
                storage_path = record.storage_path if record else ""
            if storage_path and not self.blobs.delete(storage_path):
                logger.info("Storage file not found, proceeding to delete metadata record %s", file_id)
            self.store.delete(file_id)
        except Exception as exc:
            logger.exception("Error during deletion of %s", file_id)
            raise DeletionError("Could not complete the deletion.") from exc


def build_library(cfg: AppConfig) -> FileLibrary:
    store = LocalDocumentStore(cfg.documents_dir, cfg.collection_name)
    blobs = LocalBlobStore(cfg.blobs_dir, cfg.public_base_url)
    return FileLibrary(store, blobs, cfg.uploads_prefix)
