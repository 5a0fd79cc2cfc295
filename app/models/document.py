"""
Compliance Cloud - Document Models

Document types, client documents and their versions.

Document status values:
- valid: accepted and in force
- pending_review: uploaded, awaiting review (counts as present)
- expired: past its expiry date
- rejected: failed review
"""

import uuid
from datetime import date
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, Date, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class DocumentStatus(str, Enum):
    """Lifecycle status of a client document."""
    VALID = "valid"
    PENDING_REVIEW = "pending_review"
    EXPIRED = "expired"
    REJECTED = "rejected"


class DocumentType(BaseModel):
    """
    Category of document (e.g. tax clearance certificate).

    tenant_id is NULL for platform-wide types visible to every tenant.
    """

    __tablename__ = "document_types"

    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    authority: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    has_expiry: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class Document(BaseModel):
    """A document held on file for a client."""

    __tablename__ = "documents"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    document_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("document_types.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30),
        default=DocumentStatus.PENDING_REVIEW.value,
        nullable=False,
        index=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class DocumentVersion(BaseModel):
    """One uploaded version of a document; exactly one is current."""

    __tablename__ = "document_versions"
    __table_args__ = (
        UniqueConstraint("document_id", "version_number", name="uq_document_versions_number"),
    )

    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    issue_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    file_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
