"""
Compliance Cloud - Filing Models

Filing types (returns owed to an authority) and client filings.
"""

import uuid
from datetime import date
from enum import Enum
from typing import Optional

from sqlalchemy import Date, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class FilingStatus(str, Enum):
    """Filing lifecycle."""
    DRAFT = "draft"
    PREPARED = "prepared"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    OVERDUE = "overdue"
    ARCHIVED = "archived"


class FilingType(BaseModel):
    """A kind of return (e.g. monthly VAT). tenant_id NULL means platform-wide."""

    __tablename__ = "filing_types"

    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    authority: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    frequency: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)


class Filing(BaseModel):
    """A return for one client and period."""

    __tablename__ = "filings"

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
    filing_type_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("filing_types.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(30),
        default=FilingStatus.DRAFT.value,
        nullable=False,
        index=True,
    )
    period_start: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    period_end: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    reference_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
