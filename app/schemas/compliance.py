"""
Compliance Cloud - Compliance Schemas

Pydantic schemas for the compliance scoring API.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ===========================================
# REFRESH
# ===========================================

class RefreshRequest(BaseModel):
    """Request body for an on-demand compliance refresh."""
    tenant_id: Optional[UUID] = Field(
        None, description="Limit the run to one tenant; defaults to the caller's tenant"
    )
    trigger_source: str = Field("manual", max_length=50)


class RefreshQueuedResponse(BaseModel):
    task_id: str
    status: str = "queued"


class RefreshProgress(BaseModel):
    current: int
    total: int
    tenant_id: Optional[str] = None


class RefreshStatusResponse(BaseModel):
    """State of a queued refresh task."""
    task_id: str
    state: str
    progress: Optional[RefreshProgress] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


# ===========================================
# SCORES
# ===========================================

class ComplianceScoreResponse(BaseModel):
    """Current persisted score for a client."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    client_id: UUID
    level: str
    score_value: Decimal
    missing_count: int
    expiring_count: int
    overdue_filings_count: int
    breakdown: Dict[str, Any] = Field(default_factory=dict)
    last_calculated_at: datetime


class ComplianceSummaryResponse(BaseModel):
    total_clients: int
    green: int
    amber: int
    red: int
    average_score: float
    total_missing_documents: int
    total_expiring_documents: int
    total_overdue_filings: int


class ClientWithIssues(BaseModel):
    client_id: UUID
    name: str
    client_type: Optional[str] = None
    risk_level: Optional[str] = None
    score_value: float
    level: str
    missing_count: int
    expiring_count: int
    overdue_filings_count: int


class ClientsWithIssuesResponse(BaseModel):
    clients: List[ClientWithIssues]
    total: int


# ===========================================
# BUNDLE PROGRESS
# ===========================================

class BundleSummary(BaseModel):
    id: UUID
    name: str
    authority: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None


class BundleItemProgress(BaseModel):
    item_id: UUID
    required: bool
    order: int
    description: Optional[str] = None
    document_type_id: Optional[UUID] = None
    filing_type_id: Optional[UUID] = None
    label: Optional[str] = None
    fulfilled: bool
    matched_records: List[Dict[str, Any]] = Field(default_factory=list)
    issue: Optional[str] = None


class BundleStats(BaseModel):
    total_required: int
    completed_required: int
    total_optional: int
    completed_optional: int
    percent_complete: float
    is_complete: bool


class BundleProgressResponse(BaseModel):
    """Per-item fulfillment of a requirement bundle for one client."""
    bundle: BundleSummary
    progress: List[BundleItemProgress]
    stats: BundleStats
