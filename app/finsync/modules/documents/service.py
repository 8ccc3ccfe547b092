"""
Document Registry and Version Store.

A document is the logical file (one live document per document type); its
versions are the immutable uploads. Functions here flush but never commit:
route handlers own the transaction so a multi-step change lands or fails as a
whole.
"""
from __future__ import annotations

import hashlib
import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func
from werkzeug.utils import secure_filename

from app.finsync.audit import record_event
from app.finsync.constants import (
    ALLOWED_UPLOAD_EXTENSIONS,
    STATUS_TRANSITIONS,
    DocumentStatus,
    DocumentType,
    NotificationType,
    Role,
)
from app.finsync.db import translate_db_errors
from app.finsync.errors import ConflictError, FinSyncError, NotFoundError, ValidationError
from app.finsync.modules.documents.models import Document, DocumentVersion

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.finsync.models import User
    from app.finsync.modules.documents.parsers.spreadsheet import SheetPreview
    from app.finsync.storage import Storage

logger = logging.getLogger(__name__)


# ---------- Validation helpers ----------
def parse_document_type(raw: str | DocumentType | None) -> DocumentType:
    try:
        return DocumentType(raw)
    except ValueError:
        valid = ", ".join(t.value for t in DocumentType)
        raise ValidationError(f"Invalid document type. Must be one of: {valid}", field="document_type") from None


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower()


def validate_upload_filename(filename: str) -> str:
    """Returns the lower-cased extension; rejects anything but spreadsheets."""
    ext = file_extension(filename)
    if ext not in ALLOWED_UPLOAD_EXTENSIONS:
        raise ValidationError(
            "File type not allowed. Only Excel (.xlsx, .xls) and CSV (.csv) files are accepted.",
            field="file",
        )
    return ext


def sanitize_upload_filename(filename: str) -> str:
    fn = secure_filename(filename or "")
    return fn or "document.bin"


def version_storage_key(document_id: int, version_number: int, file_name: str, attempt: str) -> str:
    """
    Blob key for one upload attempt. The attempt id keeps two writers racing
    for the same version number off each other's blobs.
    """
    return f"{document_id}_v{version_number}_{attempt}_{sanitize_upload_filename(file_name)}"


def file_digest_and_bytes(file_bytes: bytes) -> tuple[str, int]:
    h = hashlib.sha256()
    h.update(file_bytes)
    return (h.hexdigest(), len(file_bytes))


def check_row_version(d: Document, expected_row_version: int | None) -> None:
    if expected_row_version is not None and d.row_version != expected_row_version:
        raise ConflictError(
            f"Document {d.title!r} was changed by someone else (expected revision {expected_row_version}, "
            f"found {d.row_version}). Reload and try again."
        )


# ---------- Document Registry ----------
def create_document(
    s: "Session",
    title: str,
    description: str | None,
    document_type: str | DocumentType,
    uploader: "User",
) -> Document:
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required.", field="title")
    doc_type = parse_document_type(document_type)

    now = datetime.utcnow()
    d = Document(
        title=title,
        description=(description or "").strip() or None,
        document_type=doc_type.value,
        current_version=0,
        status=DocumentStatus.DRAFT.value,
        uploaded_by=uploader.id,
        created_at=now,
        updated_at=now,
    )
    s.add(d)
    with translate_db_errors("Create document"):
        s.flush()

    record_event(
        s,
        actor=uploader,
        action="doc.create",
        entity_type="Document",
        entity_id=str(d.id),
        metadata={"title": d.title, "document_type": d.document_type},
    )
    return d


def get_document(s: "Session", document_id: int) -> Document:
    d = s.get(Document, document_id)
    if not d:
        raise NotFoundError(f"Document {document_id} not found.")
    return d


def get_document_by_type(s: "Session", document_type: str | DocumentType) -> Document | None:
    """The live document for a type: the most recently created one."""
    doc_type = parse_document_type(document_type)
    return (
        s.query(Document)
        .filter(Document.document_type == doc_type.value)
        .order_by(Document.created_at.desc(), Document.id.desc())
        .first()
    )


def list_documents(s: "Session", status: DocumentStatus | None = None) -> list[Document]:
    q = s.query(Document)
    if status is not None:
        q = q.filter(Document.status == status.value)
    return q.order_by(Document.created_at.desc(), Document.id.desc()).all()


def document_stats(documents: list[Document]) -> dict[str, int]:
    return {
        "total": len(documents),
        "pending": sum(1 for d in documents if d.status == DocumentStatus.PENDING_REVIEW.value),
        "approved": sum(1 for d in documents if d.status == DocumentStatus.APPROVED.value),
        "changes_requested": sum(1 for d in documents if d.status == DocumentStatus.CHANGES_REQUESTED.value),
    }


def update_status(
    s: "Session",
    d: Document,
    status: DocumentStatus,
    *,
    expected_row_version: int | None = None,
) -> Document:
    """Set the document status; only lifecycle-legal moves are accepted."""
    check_row_version(d, expected_row_version)
    current = DocumentStatus(d.status)
    if status == current:
        return d
    if status not in STATUS_TRANSITIONS[current.value]:
        raise ValidationError(f"Cannot move document from {current.value} to {status.value}.", field="status")
    d.status = status.value
    d.updated_at = datetime.utcnow()
    with translate_db_errors("Update document status"):
        s.flush()
    return d


def increment_version(
    s: "Session",
    d: Document,
    new_version: int,
    *,
    expected_row_version: int | None = None,
) -> Document:
    check_row_version(d, expected_row_version)
    if new_version != d.current_version + 1:
        raise ConflictError(
            f"Version {new_version} does not follow current version {d.current_version} of {d.title!r}."
        )
    d.current_version = new_version
    d.updated_at = datetime.utcnow()
    with translate_db_errors("Update document version"):
        s.flush()
    return d


# ---------- Version Store ----------
def max_version_number(s: "Session", document_id: int) -> int:
    v = (
        s.query(func.max(DocumentVersion.version_number))
        .filter(DocumentVersion.document_id == document_id)
        .scalar()
    )
    return int(v or 0)


def add_version(
    s: "Session",
    document_id: int,
    version_number: int,
    file_path: str,
    file_name: str,
    file_size: int,
    uploaded_by: "User",
    notes: str | None = None,
    *,
    content_type: str = "application/octet-stream",
    sha256: str | None = None,
    idempotency_key: str | None = None,
) -> DocumentVersion:
    """
    Append a version row. The number must follow the highest stored one; the
    (document_id, version_number) unique constraint catches concurrent writers
    that passed this check at the same time.
    """
    d = get_document(s, document_id)
    expected = max_version_number(s, document_id) + 1
    if version_number != expected:
        raise ConflictError(
            f"Version {version_number} of {d.title!r} conflicts with stored versions (next is {expected})."
        )
    v = DocumentVersion(
        document_id=document_id,
        version_number=version_number,
        file_path=file_path,
        file_name=file_name,
        file_size=file_size,
        content_type=content_type,
        sha256=sha256,
        uploaded_by=uploaded_by.id,
        notes=(notes or "").strip() or None,
        idempotency_key=idempotency_key,
        created_at=datetime.utcnow(),
    )
    d.versions.append(v)
    with translate_db_errors("Save document version"):
        s.flush()
    return v


def latest_version(s: "Session", document_id: int) -> DocumentVersion:
    v = (
        s.query(DocumentVersion)
        .filter(DocumentVersion.document_id == document_id)
        .order_by(DocumentVersion.version_number.desc())
        .first()
    )
    if not v:
        raise NotFoundError("This document has no uploaded versions yet.")
    return v


def list_versions(s: "Session", document_id: int) -> list[DocumentVersion]:
    return (
        s.query(DocumentVersion)
        .filter(DocumentVersion.document_id == document_id)
        .order_by(DocumentVersion.version_number.asc())
        .all()
    )


def read_version_bytes(storage: "Storage", v: DocumentVersion) -> bytes:
    return storage.get_bytes(v.file_path)


# ---------- Upload (registry + version store as one unit) ----------
@dataclass(frozen=True)
class UploadResult:
    document: Document
    version: DocumentVersion
    created_document: bool
    replayed: bool = False


def validate_upload(
    *,
    title: str,
    document_type: str | DocumentType,
    file_name: str,
    data: bytes | None = None,
    max_bytes: int | None = None,
) -> DocumentType:
    """All checks that must pass before any database or storage call. `data=None` skips the content checks."""
    if not (title or "").strip():
        raise ValidationError("Title is required.", field="title")
    doc_type = parse_document_type(document_type)
    if not (file_name or "").strip():
        raise ValidationError("Choose a file to upload.", field="file")
    validate_upload_filename(file_name)
    if data is None:
        return doc_type
    if not data:
        raise ValidationError("The selected file is empty.", field="file")
    if max_bytes is not None and len(data) > max_bytes:
        raise ValidationError(f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB.", field="file")
    return doc_type


def upload_document(
    s: "Session",
    storage: "Storage",
    uploader: "User",
    *,
    title: str,
    description: str | None,
    document_type: str | DocumentType,
    file_name: str,
    data: bytes,
    content_type: str | None = None,
    notes: str | None = None,
    idempotency_key: str | None = None,
    max_bytes: int | None = None,
) -> UploadResult:
    """
    New document for an unused type, otherwise the next version of the live one.

    The blob is written before the rows; if anything after that fails the blob
    is removed again and the error propagates (caller rolls back).
    """
    from app.finsync.modules.approvals.service import refresh_status
    from app.finsync.modules.notifications.service import notify_role

    doc_type = validate_upload(
        title=title, document_type=document_type, file_name=file_name, data=data, max_bytes=max_bytes
    )

    if idempotency_key:
        prior = s.query(DocumentVersion).filter(DocumentVersion.idempotency_key == idempotency_key).one_or_none()
        if prior:
            logger.info("Upload replay for idempotency_key=%s -> version id=%s", idempotency_key, prior.id)
            return UploadResult(document=prior.document, version=prior, created_document=False, replayed=True)

    d = get_document_by_type(s, doc_type)
    created = d is None
    if d is None:
        d = create_document(s, title, description, doc_type, uploader)

    version_number = d.current_version + 1
    original_name = (file_name or "").strip()
    key = version_storage_key(d.id, version_number, original_name, uuid.uuid4().hex[:12])
    sha256, size_bytes = file_digest_and_bytes(data)
    ctype = (content_type or "application/octet-stream").strip()

    storage.put_bytes(key, data, content_type=ctype)
    try:
        v = add_version(
            s,
            d.id,
            version_number,
            key,
            original_name,
            size_bytes,
            uploader,
            notes,
            content_type=ctype,
            sha256=sha256,
            idempotency_key=idempotency_key,
        )
        increment_version(s, d, version_number)
        refresh_status(s, d)

        if created:
            ntype, ntitle = NotificationType.DOCUMENT_UPLOADED, "Nuevo Documento"
            message = f'Se cargó el documento "{d.title}" para revisión'
        else:
            ntype, ntitle = NotificationType.NEW_VERSION, "Nueva Versión"
            message = f'Se cargó la versión {version_number} del documento "{d.title}"'
        notify_role(s, Role.EXECUTIVE, ntype, ntitle, message, document_id=d.id, exclude_user_id=uploader.id)

        record_event(
            s,
            actor=uploader,
            action="doc.upload",
            entity_type="DocumentVersion",
            entity_id=str(v.id),
            metadata={
                "doc_id": d.id,
                "document_type": d.document_type,
                "version_number": version_number,
                "file_name": original_name,
                "sha256": sha256,
                "size_bytes": size_bytes,
            },
        )
    except Exception:
        discard_blob(storage, key)
        raise

    logger.info("Stored %s v%s (doc_id=%s, %s bytes)", d.document_type, version_number, d.id, size_bytes)
    return UploadResult(document=d, version=v, created_document=created)


def discard_blob(storage: "Storage", key: str) -> None:
    try:
        storage.delete(key)
    except FinSyncError:
        logger.exception("Could not remove orphaned blob %s after failed upload", key)


# ---------- Preview ----------
def preview_latest_version(
    s: "Session",
    storage: "Storage",
    d: Document,
    *,
    max_rows: int | None = None,
) -> tuple[DocumentVersion, "SheetPreview"]:
    """Fetch the newest version's blob and decode it for the preview pane."""
    from app.finsync.modules.documents.parsers.spreadsheet import parse_spreadsheet_preview

    v = latest_version(s, d.id)
    data = read_version_bytes(storage, v)
    return v, parse_spreadsheet_preview(data, v.file_name, max_rows=max_rows)
