"""
Compliance Cloud - Evaluation Facts

Plain snapshots of the records an evaluation reads. Built once per client
from ORM rows so the evaluator and aggregator stay free of I/O.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, FrozenSet, List, Optional, Tuple

from app.models.compliance import ComplianceRule, RequirementBundle, RequirementBundleItem, RuleKind


@dataclass(frozen=True)
class ClientProfile:
    """The client attributes that select rule sets and bundles."""
    id: uuid.UUID
    tenant_id: uuid.UUID
    name: str
    client_type: str
    sector: Optional[str] = None
    authorities: Tuple[str, ...] = ()

    @classmethod
    def from_model(cls, client) -> "ClientProfile":
        return cls(
            id=client.id,
            tenant_id=client.tenant_id,
            name=client.name,
            client_type=client.client_type,
            sector=client.sector,
            authorities=tuple(client.authorities or ()),
        )


@dataclass(frozen=True)
class DocumentFact:
    """A client document joined with its current version's dates."""
    id: uuid.UUID
    document_type_id: uuid.UUID
    title: str
    status: str
    created_at: datetime
    expiry_date: Optional[date] = None
    issue_date: Optional[date] = None


@dataclass(frozen=True)
class FilingFact:
    id: uuid.UUID
    filing_type_id: uuid.UUID
    status: str
    created_at: datetime
    period_end: Optional[date] = None


@dataclass
class ClientFacts:
    """
    Everything known about one client at evaluation time.

    document_type_ids / filing_type_ids hold every category the tenant can
    resolve (tenant-owned plus platform-wide); category_names maps those ids
    to display names.
    """
    documents: List[DocumentFact] = field(default_factory=list)
    filings: List[FilingFact] = field(default_factory=list)
    document_type_ids: FrozenSet[uuid.UUID] = frozenset()
    filing_type_ids: FrozenSet[uuid.UUID] = frozenset()
    category_names: Dict[uuid.UUID, str] = field(default_factory=dict)

    def documents_of_type(self, document_type_id: uuid.UUID) -> List[DocumentFact]:
        """Documents of one type, most recently created first."""
        matches = [d for d in self.documents if d.document_type_id == document_type_id]
        return sorted(matches, key=lambda d: d.created_at, reverse=True)

    def filings_of_type(self, filing_type_id: uuid.UUID) -> List[FilingFact]:
        matches = [f for f in self.filings if f.filing_type_id == filing_type_id]
        return sorted(matches, key=lambda f: f.created_at, reverse=True)

    def category_name(self, category_id: Optional[uuid.UUID], fallback: str) -> str:
        if category_id is None:
            return fallback
        return self.category_names.get(category_id, fallback)

    @property
    def overdue_filings_count(self) -> int:
        return sum(1 for f in self.filings if f.status == "overdue")


@dataclass(frozen=True)
class RuleEntry:
    """A weighted rule from an applicable rule set."""
    id: uuid.UUID
    kind: RuleKind
    target_id: Optional[uuid.UUID]
    weight: float
    description: Optional[str] = None
    rule_set_id: Optional[uuid.UUID] = None
    rule_set_name: Optional[str] = None

    @classmethod
    def from_model(cls, rule: ComplianceRule, rule_set_name: Optional[str] = None) -> "RuleEntry":
        return cls(
            id=rule.id,
            kind=RuleKind(rule.kind),
            target_id=rule.target_id,
            weight=rule.weight,
            description=rule.description,
            rule_set_id=rule.rule_set_id,
            rule_set_name=rule_set_name,
        )


@dataclass(frozen=True)
class BundleItemEntry:
    """A checklist item from an authority bundle."""
    id: uuid.UUID
    bundle_id: uuid.UUID
    bundle_name: str
    authority: str
    category: str
    document_type_id: Optional[uuid.UUID] = None
    filing_type_id: Optional[uuid.UUID] = None
    required: bool = True
    order: int = 0
    description: Optional[str] = None

    @classmethod
    def from_model(cls, item: RequirementBundleItem, bundle: RequirementBundle) -> "BundleItemEntry":
        return cls(
            id=item.id,
            bundle_id=bundle.id,
            bundle_name=bundle.name,
            authority=bundle.authority,
            category=bundle.category,
            document_type_id=item.document_type_id,
            filing_type_id=item.filing_type_id,
            required=item.required,
            order=item.order,
            description=item.description,
        )

    @property
    def weight(self) -> float:
        # Optional items are reported but never scored
        return 1.0 if self.required else 0.0
