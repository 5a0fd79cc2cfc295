"""
Compliance Cloud - Schemas Package

Pydantic schemas for request/response validation.
"""

from app.schemas.compliance import (
    # Refresh
    RefreshRequest,
    RefreshQueuedResponse,
    RefreshProgress,
    RefreshStatusResponse,
    # Scores
    ComplianceScoreResponse,
    ComplianceSummaryResponse,
    ClientWithIssues,
    ClientsWithIssuesResponse,
    # Bundle progress
    BundleSummary,
    BundleItemProgress,
    BundleStats,
    BundleProgressResponse,
)
