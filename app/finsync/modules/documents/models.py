from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.finsync.models import Base, User


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint("current_version >= 0", name="ck_documents_current_version"),
        Index("idx_documents_type_created", "document_type", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    document_type: Mapped[str] = mapped_column(String(64), nullable=False)

    # Highest version_number among this document's versions; 0 until the first lands.
    current_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # draft -> pending_review -> approved | changes_requested | rejected
    # Written only as a projection of the approval ledger (see approvals.service.project_status).
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft", index=True)

    uploaded_by: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False)

    # Bumped by SQLAlchemy on every UPDATE; stale writers get StaleDataError.
    row_version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    __mapper_args__ = {"version_id_col": row_version}

    uploader: Mapped[User] = relationship("User", foreign_keys=[uploaded_by], lazy="selectin")

    versions: Mapped[list["DocumentVersion"]] = relationship(
        "DocumentVersion",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DocumentVersion.version_number",
    )

    approvals: Mapped[list["Approval"]] = relationship(
        "Approval",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Approval.id",
    )


class DocumentVersion(Base):
    """One immutable uploaded rendition of a document. Never updated or deleted."""

    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "version_number", name="uq_document_versions_number"),
        UniqueConstraint("idempotency_key", name="uq_document_versions_idempotency_key"),
        CheckConstraint("version_number >= 1", name="ck_document_versions_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)

    file_path: Mapped[str] = mapped_column(String(512), nullable=False)  # blob storage key
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")
    sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)

    uploaded_by: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    document: Mapped[Document] = relationship("Document", back_populates="versions", lazy="selectin")
    uploader: Mapped[User] = relationship("User", foreign_keys=[uploaded_by], lazy="selectin")


class Approval(Base):
    """One review decision against a specific document version."""

    __tablename__ = "approvals"
    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_approvals_idempotency_key"),
        Index("idx_approvals_document_version", "document_id", "version_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)

    requested_by: Mapped[int] = mapped_column(ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False)
    reviewed_by: Mapped[int | None] = mapped_column(ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False)  # decision snapshot
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    document: Mapped[Document] = relationship("Document", back_populates="approvals", lazy="selectin")
    requester: Mapped[User] = relationship("User", foreign_keys=[requested_by], lazy="selectin")
    reviewer: Mapped[User | None] = relationship("User", foreign_keys=[reviewed_by], lazy="selectin")
