"""
Compliance Cloud - Compliance Models

Rule catalog, authority requirement bundles and the persisted
per-client compliance score.

Rule kinds:
- document_required: a document of the target type must be on file
- filing_required: a filing of the target type must be submitted/approved
- document_expiry_check: the target document must not be expired
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.models.base import BaseModel, JSONType


class RuleKind(str, Enum):
    """Closed set of rule conditions."""
    DOCUMENT_REQUIRED = "document_required"
    FILING_REQUIRED = "filing_required"
    DOCUMENT_EXPIRY_CHECK = "document_expiry_check"


class ComplianceLevel(str, Enum):
    """Discrete health signal derived from the score."""
    GREEN = "green"
    AMBER = "amber"
    RED = "red"


# ===========================================
# RULE CATALOG
# ===========================================

class ComplianceRuleSet(BaseModel):
    """
    Named group of rules, filtered by client type and sector.

    Empty client_types / sectors lists mean "applies to all".
    """

    __tablename__ = "compliance_rule_sets"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    client_types: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    sectors: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    rules: Mapped[List["ComplianceRule"]] = relationship(
        "ComplianceRule",
        back_populates="rule_set",
        cascade="all, delete-orphan",
        order_by="ComplianceRule.created_at",
    )

    def applies_to(self, client_type: Optional[str], sector: Optional[str]) -> bool:
        """True when both filters are empty or contain the client's value."""
        if self.client_types and client_type not in self.client_types:
            return False
        if self.sectors and sector not in self.sectors:
            return False
        return True


class ComplianceRule(BaseModel):
    """One weighted condition inside a rule set."""

    __tablename__ = "compliance_rules"
    __table_args__ = (
        CheckConstraint("weight >= 0 AND weight <= 1", name="weight_range"),
    )

    rule_set_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("compliance_rule_sets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind: Mapped[RuleKind] = mapped_column(
        SQLEnum(
            RuleKind,
            name="compliance_rule_kind",
            values_callable=lambda kinds: [k.value for k in kinds],
        ),
        nullable=False,
    )
    # Document-type id for document kinds, filing-type id for filing_required.
    # Not a foreign key: it points at one of two tables depending on kind.
    target_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    weight: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    rule_set: Mapped["ComplianceRuleSet"] = relationship(
        "ComplianceRuleSet",
        back_populates="rules",
    )

    @validates("weight")
    def validate_weight(self, key, value):
        if value is None or not (0.0 <= float(value) <= 1.0):
            raise ValueError(f"Rule weight must be between 0.0 and 1.0, got {value}")
        return float(value)


# ===========================================
# REQUIREMENT BUNDLES
# ===========================================

class RequirementBundle(BaseModel):
    """Authority-specific checklist (e.g. annual tax obligations)."""

    __tablename__ = "requirement_bundles"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    authority: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    items: Mapped[List["RequirementBundleItem"]] = relationship(
        "RequirementBundleItem",
        back_populates="bundle",
        cascade="all, delete-orphan",
        order_by="RequirementBundleItem.order",
    )


class RequirementBundleItem(BaseModel):
    """
    Checklist entry pointing at one document type or one filing type.

    Neither reference is a foreign key so that a deleted category shows up
    as a configuration issue instead of silently vanishing.
    """

    __tablename__ = "requirement_bundle_items"

    bundle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("requirement_bundles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    document_type_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    filing_type_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    bundle: Mapped["RequirementBundle"] = relationship(
        "RequirementBundle",
        back_populates="items",
    )


# ===========================================
# PERSISTED SCORE
# ===========================================

class ComplianceScore(BaseModel):
    """
    Latest compliance score per client.

    Exactly one row per (tenant_id, client_id); every evaluation replaces it.
    """

    __tablename__ = "compliance_scores"
    __table_args__ = (
        UniqueConstraint("tenant_id", "client_id", name="uq_compliance_scores_tenant_client"),
    )

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
    level: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    score_value: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    missing_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expiring_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    overdue_filings_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    breakdown: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    last_calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<ComplianceScore(client={self.client_id}, level={self.level}, score={self.score_value})>"
