"""
Compliance Cloud - Score Aggregator

Folds fulfillment results into a 0-100 score, a discrete level and a
breakdown. Deterministic: identical inputs produce an identical ScoreCard.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from app.models.compliance import ComplianceLevel, RuleKind
from app.services.compliance_scoring.facts import BundleItemEntry, ClientProfile, RuleEntry
from app.services.compliance_scoring.fulfillment import FulfillmentResult


HUNDRED = Decimal("100")
TWO_PLACES = Decimal("0.01")

URGENT_RECOMMENDATION = "URGENT: Immediate action required to improve compliance"
ATTENTION_RECOMMENDATION = "Several items need attention"


@dataclass(frozen=True)
class ScoreThresholds:
    """Inclusive lower bounds for the green and amber levels."""
    green: float = 80.0
    amber: float = 50.0

    @classmethod
    def from_settings(cls, settings) -> "ScoreThresholds":
        return cls(
            green=settings.compliance_green_threshold,
            amber=settings.compliance_amber_threshold,
        )


@dataclass
class ScoreCard:
    """Aggregated compliance state of one client."""
    tenant_id: uuid.UUID
    client_id: uuid.UUID
    score_value: Decimal
    level: str
    missing_count: int
    expiring_count: int
    overdue_filings_count: int
    breakdown: Dict[str, Any] = field(default_factory=dict)
    calculated_at: Optional[datetime] = None

    @property
    def issues(self) -> List[str]:
        return self.breakdown.get("issues", [])

    @property
    def recommendations(self) -> List[str]:
        return self.breakdown.get("recommendations", [])

    def to_row(self) -> Dict[str, Any]:
        """Column values for the compliance_scores upsert."""
        return {
            "tenant_id": self.tenant_id,
            "client_id": self.client_id,
            "score_value": self.score_value,
            "level": self.level,
            "missing_count": self.missing_count,
            "expiring_count": self.expiring_count,
            "overdue_filings_count": self.overdue_filings_count,
            "breakdown": self.breakdown,
            "last_calculated_at": self.calculated_at,
        }


def _clamp_weight(weight: Any) -> Decimal:
    """Coerce a weight into [0, 1]; unparseable or NaN weights count as 0."""
    try:
        value = float(weight)
    except (TypeError, ValueError):
        return Decimal("0")
    if math.isnan(value):
        return Decimal("0")
    value = min(max(value, 0.0), 1.0)
    return Decimal(str(value))


def _percentage(achieved: Decimal, total: Decimal) -> Decimal:
    if total <= 0:
        return Decimal("100.00")
    value = (achieved / total * HUNDRED).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    return min(max(value, Decimal("0.00")), Decimal("100.00"))


def level_for_score(score: Decimal, thresholds: ScoreThresholds = ScoreThresholds()) -> str:
    """green at or above thresholds.green, amber at or above thresholds.amber, else red."""
    if score >= Decimal(str(thresholds.green)):
        return ComplianceLevel.GREEN.value
    if score >= Decimal(str(thresholds.amber)):
        return ComplianceLevel.AMBER.value
    return ComplianceLevel.RED.value


def _issue_for(result: FulfillmentResult) -> Optional[tuple]:
    """(issue, recommendation) for an unmet or expiring entry, None otherwise."""
    label = result.label
    if result.issue is not None:
        return None
    if result.kind == RuleKind.DOCUMENT_EXPIRY_CHECK:
        if result.expired:
            return f"{label} has expired", f"Renew {label} immediately"
        if result.satisfied and result.expiring_within_days is not None:
            return f"{label} expiring soon", f"Plan renewal for {label}"
        if not result.satisfied:
            return f"Missing required document: {label}", f"Upload {label}"
        return None
    if result.satisfied or not result.is_required:
        return None
    if result.kind == RuleKind.FILING_REQUIRED:
        return f"No {label} filings found", f"File {label} immediately"
    return f"Missing required document: {label}", f"Upload {label}"


def _authority_breakdown(results: Iterable[FulfillmentResult]) -> Dict[str, Any]:
    buckets: Dict[str, Dict[str, Any]] = {}
    for result in results:
        entry = result.entry
        if not isinstance(entry, BundleItemEntry):
            continue
        bucket = buckets.setdefault(entry.authority, {
            "required": 0,
            "completed": 0,
            "optional": 0,
            "optional_completed": 0,
            "bundles": [],
        })
        if entry.bundle_name not in bucket["bundles"]:
            bucket["bundles"].append(entry.bundle_name)
        if entry.required:
            bucket["required"] += 1
            bucket["completed"] += int(result.satisfied)
        else:
            bucket["optional"] += 1
            bucket["optional_completed"] += int(result.satisfied)

    for bucket in buckets.values():
        bucket["score"] = float(_percentage(Decimal(bucket["completed"]), Decimal(bucket["required"])))
    return {authority: buckets[authority] for authority in sorted(buckets)}


def aggregate(
    client: ClientProfile,
    results: List[FulfillmentResult],
    *,
    overdue_filings_count: int,
    thresholds: ScoreThresholds = ScoreThresholds(),
    calculated_at: Optional[datetime] = None,
    configuration_issues: Optional[List[dict]] = None,
) -> ScoreCard:
    """
    Fold fulfillment results into a ScoreCard.

    score = sum(weight * satisfied) / sum(weight) * 100, rounded half-up to
    two decimals. No applicable weight scores 100 (vacuously compliant).
    """
    total_weight = Decimal("0")
    achieved_weight = Decimal("0")
    missing_count = 0
    expiring_count = 0
    rules_total = 0
    rules_satisfied = 0
    issues: List[str] = []
    recommendations: List[str] = []
    config_issues: List[dict] = list(configuration_issues or [])

    for result in results:
        weight = _clamp_weight(result.weight)
        total_weight += weight
        if result.satisfied:
            achieved_weight += weight
        elif result.is_required:
            missing_count += 1

        if isinstance(result.entry, RuleEntry):
            rules_total += 1
            rules_satisfied += int(result.satisfied)
            if (
                result.entry.kind == RuleKind.DOCUMENT_EXPIRY_CHECK
                and result.satisfied
                and result.expiring_within_days is not None
            ):
                expiring_count += 1

        if result.issue is not None:
            config_issues.append({"entry_id": str(result.entry.id), "error": result.issue})

        pair = _issue_for(result)
        if pair is not None:
            issues.append(pair[0])
            recommendations.append(pair[1])

    if overdue_filings_count > 0:
        issues.append(f"{overdue_filings_count} filing(s) overdue")
        recommendations.append("Submit overdue filings immediately")

    score = _percentage(achieved_weight, total_weight)
    level = level_for_score(score, thresholds)

    # Same category may appear in a rule and a bundle item
    issues = list(dict.fromkeys(issues))
    recommendations = list(dict.fromkeys(recommendations))
    if level == ComplianceLevel.RED.value:
        recommendations.insert(0, URGENT_RECOMMENDATION)
    elif level == ComplianceLevel.AMBER.value:
        recommendations.insert(0, ATTENTION_RECOMMENDATION)

    breakdown = {
        "rules": {
            "total": rules_total,
            "satisfied": rules_satisfied,
        },
        "weight_total": float(total_weight),
        "weight_achieved": float(achieved_weight),
        "authorities": _authority_breakdown(results),
        "issues": issues,
        "recommendations": recommendations,
        "configuration_issues": config_issues,
    }

    return ScoreCard(
        tenant_id=client.tenant_id,
        client_id=client.id,
        score_value=score,
        level=level,
        missing_count=missing_count,
        expiring_count=expiring_count,
        overdue_filings_count=overdue_filings_count,
        breakdown=breakdown,
        calculated_at=calculated_at,
    )
