"""
Central constants for the FinSync application.
"""
from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    INTERNAL_TEAM = "internal_team"
    EXECUTIVE = "executive"
    CLIENT = "client"
    BANK = "bank"


class DocumentType(str, Enum):
    SOLICITUD_PRESTAMO = "solicitud_prestamo"
    LIQUIDACION_PRESTAMO = "liquidacion_prestamo"
    DATOS_GENERALES = "datos_generales"


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    CHANGES_REQUESTED = "changes_requested"
    APPROVED = "approved"
    REJECTED = "rejected"


class NotificationType(str, Enum):
    DOCUMENT_UPLOADED = "document_uploaded"
    CHANGE_REQUESTED = "change_requested"
    DOCUMENT_APPROVED = "document_approved"
    DOCUMENT_REJECTED = "document_rejected"
    NEW_VERSION = "new_version"


# Display labels keyed by stored value (UI copy is Spanish, like the rest of the client-facing screens)
ROLE_LABELS = {
    Role.ADMIN.value: "Administrador",
    Role.INTERNAL_TEAM.value: "Equipo Interno",
    Role.EXECUTIVE.value: "Ejecutivo",
    Role.CLIENT.value: "Cliente",
    Role.BANK.value: "Banco",
}

DOCUMENT_TYPE_LABELS = {
    DocumentType.SOLICITUD_PRESTAMO.value: "Solicitud de Préstamo",
    DocumentType.LIQUIDACION_PRESTAMO.value: "Liquidación de Préstamo",
    DocumentType.DATOS_GENERALES.value: "Datos Generales",
}

STATUS_LABELS = {
    DocumentStatus.DRAFT.value: "Borrador",
    DocumentStatus.PENDING_REVIEW.value: "Pendiente Revisión",
    DocumentStatus.CHANGES_REQUESTED.value: "Cambios Solicitados",
    DocumentStatus.APPROVED.value: "Aprobado",
    DocumentStatus.REJECTED.value: "Rechazado",
}

# Lifecycle: allowed status moves. Writing the same status again is a no-op.
STATUS_TRANSITIONS: dict[str, frozenset[DocumentStatus]] = {
    DocumentStatus.DRAFT.value: frozenset({DocumentStatus.PENDING_REVIEW}),
    DocumentStatus.PENDING_REVIEW.value: frozenset(
        {
            DocumentStatus.APPROVED,
            DocumentStatus.CHANGES_REQUESTED,
            DocumentStatus.REJECTED,
        }
    ),
    DocumentStatus.CHANGES_REQUESTED.value: frozenset({DocumentStatus.PENDING_REVIEW}),
    DocumentStatus.APPROVED.value: frozenset({DocumentStatus.PENDING_REVIEW}),
    DocumentStatus.REJECTED.value: frozenset({DocumentStatus.PENDING_REVIEW}),
}

ALLOWED_UPLOAD_EXTENSIONS = frozenset({".xlsx", ".xls", ".csv"})

# Header label for blank header cells in spreadsheet previews (1-based index appended)
BLANK_HEADER_PREFIX = "Columna"
NULL_CELL_PLACEHOLDER = "-"
