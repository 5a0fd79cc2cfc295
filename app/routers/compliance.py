"""
Compliance Cloud - Compliance Router

API endpoints for compliance scores, bundle progress and on-demand refresh.

Features:
- Queue a compliance refresh and poll its progress
- Current score per client
- Requirement bundle progress per client
- Tenant summary and clients needing attention
"""

import uuid

from celery.result import AsyncResult
from fastapi import APIRouter, Depends, HTTPException, status

from app.celery_app import celery_app
from app.dependencies import get_compliance_service, get_current_tenant_id
from app.schemas.compliance import (
    BundleProgressResponse,
    ClientsWithIssuesResponse,
    ComplianceScoreResponse,
    ComplianceSummaryResponse,
    RefreshProgress,
    RefreshQueuedResponse,
    RefreshRequest,
    RefreshStatusResponse,
)
from app.services.compliance_service import ComplianceService
from app.tasks.celery_tasks import enqueue_compliance_refresh


router = APIRouter(prefix="/compliance", tags=["Compliance"])


# ===========================================
# REFRESH
# ===========================================

@router.post(
    "/refresh",
    response_model=RefreshQueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a compliance refresh",
    description="Recompute compliance scores for every active client of the tenant in the background.",
)
async def queue_refresh(
    request: RefreshRequest,
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    """Queue a refresh for the caller's tenant."""
    if request.tenant_id and request.tenant_id != tenant_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot refresh another tenant",
        )

    task_id = enqueue_compliance_refresh(tenant_id=tenant_id, triggered_by=request.trigger_source)
    return RefreshQueuedResponse(task_id=task_id, status="queued")


@router.get(
    "/refresh/{task_id}",
    response_model=RefreshStatusResponse,
    summary="Get refresh status",
)
async def get_refresh_status(
    task_id: str,
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
):
    """Celery state of a refresh task, with progress or the run result."""
    task = AsyncResult(task_id, app=celery_app)

    # Unknown and queued tasks report PENDING with no payload
    if task.state != "PENDING":
        kwargs = task.kwargs if isinstance(task.kwargs, dict) else {}
        if kwargs.get("tenant_id") != str(tenant_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Refresh task not found",
            )

    response = RefreshStatusResponse(task_id=task_id, state=task.state)

    if task.state == "PROGRESS" and isinstance(task.info, dict):
        response.progress = RefreshProgress(**task.info)
    elif task.state == "SUCCESS":
        response.result = task.result
    elif task.state == "FAILURE":
        response.error = str(task.info)

    return response


# ===========================================
# SCORES
# ===========================================

@router.get(
    "/clients/{client_id}/score",
    response_model=ComplianceScoreResponse,
    summary="Get client compliance score",
)
async def get_client_score(
    client_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: ComplianceService = Depends(get_compliance_service),
):
    return await service.get_client_score(tenant_id, client_id)


@router.get(
    "/clients/{client_id}/bundles/{bundle_id}/progress",
    response_model=BundleProgressResponse,
    summary="Get requirement bundle progress",
    description="Per-item fulfillment of a requirement bundle for one client.",
)
async def get_bundle_progress(
    client_id: uuid.UUID,
    bundle_id: uuid.UUID,
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: ComplianceService = Depends(get_compliance_service),
):
    return await service.get_bundle_progress(tenant_id, client_id, bundle_id)


@router.get(
    "/summary",
    response_model=ComplianceSummaryResponse,
    summary="Get tenant compliance summary",
)
async def get_summary(
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: ComplianceService = Depends(get_compliance_service),
):
    return await service.get_compliance_summary(tenant_id)


@router.get(
    "/clients-with-issues",
    response_model=ClientsWithIssuesResponse,
    summary="List clients needing attention",
    description="Red and amber clients, lowest score first.",
)
async def get_clients_with_issues(
    tenant_id: uuid.UUID = Depends(get_current_tenant_id),
    service: ComplianceService = Depends(get_compliance_service),
):
    clients = await service.get_clients_with_issues(tenant_id)
    return ClientsWithIssuesResponse(clients=clients, total=len(clients))
