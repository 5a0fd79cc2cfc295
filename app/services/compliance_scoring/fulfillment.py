"""
Compliance Cloud - Fulfillment Evaluator

Decides whether one rule or bundle item is satisfied for a client.

Matching:
- document kinds match documents of the target type with status
  valid or pending_review (most recent first)
- filing kinds match filings of the target type with status
  submitted or approved
- expiry checks additionally require the latest matching document's
  current version to expire strictly after today
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Tuple, Union

from app.models.compliance import RuleKind
from app.services.compliance_scoring.facts import (
    BundleItemEntry,
    ClientFacts,
    ClientProfile,
    DocumentFact,
    FilingFact,
    RuleEntry,
)
from app.utils.error_handling import InvalidRuleException

logger = logging.getLogger(__name__)


PRESENT_DOCUMENT_STATUSES = frozenset({"valid", "pending_review"})
COMPLETED_FILING_STATUSES = frozenset({"submitted", "approved"})

Entry = Union[RuleEntry, BundleItemEntry]


@dataclass
class FulfillmentResult:
    """
    Outcome of evaluating one entry.

    issue carries a human-readable configuration problem (for example a
    target that no longer resolves); it never makes the entry satisfied.
    """
    entry: Entry
    satisfied: bool
    expiring_within_days: Optional[int] = None
    matched_records: List[dict] = field(default_factory=list)
    issue: Optional[str] = None
    expired: bool = False
    label: str = ""

    @property
    def weight(self) -> float:
        return self.entry.weight

    @property
    def is_required(self) -> bool:
        if isinstance(self.entry, BundleItemEntry):
            return self.entry.required
        return True

    @property
    def kind(self) -> RuleKind:
        """Rule kind, or the equivalent kind for a bundle item."""
        if isinstance(self.entry, RuleEntry):
            return self.entry.kind
        if self.entry.document_type_id is not None:
            return RuleKind.DOCUMENT_REQUIRED
        return RuleKind.FILING_REQUIRED


def _document_record(doc: DocumentFact) -> dict:
    return {
        "type": "document",
        "id": str(doc.id),
        "title": doc.title,
        "status": doc.status,
        "expiry_date": doc.expiry_date.isoformat() if doc.expiry_date else None,
    }


def _filing_record(filing: FilingFact) -> dict:
    return {
        "type": "filing",
        "id": str(filing.id),
        "status": filing.status,
        "period_end": filing.period_end.isoformat() if filing.period_end else None,
    }


def _resolve_target(entry: Entry) -> Tuple[RuleKind, object]:
    """Return (kind, target id), raising for entries that cannot be evaluated."""
    if isinstance(entry, BundleItemEntry):
        has_document = entry.document_type_id is not None
        has_filing = entry.filing_type_id is not None
        if has_document == has_filing:
            raise InvalidRuleException(
                "Bundle item must reference exactly one document type or filing type",
                entry_id=entry.id,
                details={"bundle_id": str(entry.bundle_id)},
            )
        if has_document:
            return RuleKind.DOCUMENT_REQUIRED, entry.document_type_id
        return RuleKind.FILING_REQUIRED, entry.filing_type_id

    if entry.target_id is None:
        if entry.kind == RuleKind.DOCUMENT_EXPIRY_CHECK:
            message = "Document expiry check must reference a document type"
        else:
            message = f"Rule of kind {entry.kind.value} has no target"
        raise InvalidRuleException(message, entry_id=entry.id)
    return entry.kind, entry.target_id


def evaluate(
    client: ClientProfile,
    entry: Entry,
    facts: ClientFacts,
    *,
    today: date,
    lookahead_days: int = 30,
) -> FulfillmentResult:
    """
    Evaluate one rule or bundle item against a client's facts.

    Raises InvalidRuleException for malformed entries. A target id that
    does not resolve is reported through result.issue and evaluates as
    unsatisfied.
    """
    kind, target_id = _resolve_target(entry)

    if kind == RuleKind.FILING_REQUIRED:
        known = facts.filing_type_ids
        fallback = "Unknown filing type"
    else:
        known = facts.document_type_ids
        fallback = "Unknown document type"
    label = entry.description or facts.category_name(target_id, fallback)

    if target_id not in known:
        category = "filing type" if kind == RuleKind.FILING_REQUIRED else "document type"
        issue = f"Entry {entry.id} references unknown {category} {target_id}"
        logger.warning(f"Client {client.id}: {issue}")
        return FulfillmentResult(entry=entry, satisfied=False, issue=issue, label=label)

    if kind == RuleKind.FILING_REQUIRED:
        filings = [f for f in facts.filings_of_type(target_id) if f.status in COMPLETED_FILING_STATUSES]
        return FulfillmentResult(
            entry=entry,
            satisfied=bool(filings),
            matched_records=[_filing_record(f) for f in filings],
            label=label,
        )

    documents = [d for d in facts.documents_of_type(target_id) if d.status in PRESENT_DOCUMENT_STATUSES]
    matched = [_document_record(d) for d in documents]

    if kind == RuleKind.DOCUMENT_REQUIRED:
        return FulfillmentResult(entry=entry, satisfied=bool(documents), matched_records=matched, label=label)

    # DOCUMENT_EXPIRY_CHECK
    if not documents:
        return FulfillmentResult(entry=entry, satisfied=False, label=label)

    latest = documents[0]
    if latest.expiry_date is None:
        return FulfillmentResult(entry=entry, satisfied=True, matched_records=matched, label=label)

    days_left = (latest.expiry_date - today).days
    if days_left <= 0:
        return FulfillmentResult(
            entry=entry,
            satisfied=False,
            matched_records=matched,
            expired=True,
            label=label,
        )

    return FulfillmentResult(
        entry=entry,
        satisfied=True,
        expiring_within_days=days_left if days_left <= lookahead_days else None,
        matched_records=matched,
        label=label,
    )


def evaluate_all(
    client: ClientProfile,
    entries: List[Entry],
    facts: ClientFacts,
    *,
    today: date,
    lookahead_days: int = 30,
) -> Tuple[List[FulfillmentResult], List[dict]]:
    """
    Evaluate every entry, skipping malformed ones.

    Returns (results, problems) where problems lists the skipped entries
    as {"entry_id", "error"} dicts.
    """
    results: List[FulfillmentResult] = []
    problems: List[dict] = []
    for entry in entries:
        try:
            results.append(evaluate(client, entry, facts, today=today, lookahead_days=lookahead_days))
        except InvalidRuleException as e:
            logger.warning(f"Skipping entry {entry.id} for client {client.id}: {e.message}")
            problems.append({"entry_id": str(entry.id), "error": e.message})
    return results, problems
