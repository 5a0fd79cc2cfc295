"""
Compliance Cloud - Compliance Scoring

Pure evaluation core: per-entry fulfillment and score aggregation.
Nothing in this package touches the database; callers load facts and
persist the resulting ScoreCard.
"""

from app.services.compliance_scoring.facts import (
    BundleItemEntry,
    ClientFacts,
    ClientProfile,
    DocumentFact,
    FilingFact,
    RuleEntry,
)
from app.services.compliance_scoring.fulfillment import (
    FulfillmentResult,
    evaluate,
    evaluate_all,
)
from app.services.compliance_scoring.aggregator import (
    ScoreCard,
    ScoreThresholds,
    aggregate,
    level_for_score,
)

__all__ = [
    "BundleItemEntry",
    "ClientFacts",
    "ClientProfile",
    "DocumentFact",
    "FilingFact",
    "RuleEntry",
    "FulfillmentResult",
    "evaluate",
    "evaluate_all",
    "ScoreCard",
    "ScoreThresholds",
    "aggregate",
    "level_for_score",
]
