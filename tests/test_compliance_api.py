"""
Tests for the compliance API endpoints.
"""

import uuid
from unittest.mock import MagicMock, patch

import pytest

from app.models.compliance import RuleKind
from app.services.compliance_service import ComplianceService

from conftest import NOW


API = "/api/v1/compliance"


def tenant_headers(tenant_id) -> dict:
    return {"X-Tenant-ID": str(tenant_id)}


async def scored_client(db_session, build):
    tenant = await build.tenant()
    client = await build.client(tenant, authorities=["FIRS"])
    tcc = await build.document_type(tenant)
    vat = await build.filing_type(tenant)
    await build.rule_set(tenant, [
        (RuleKind.DOCUMENT_REQUIRED, tcc.id, 1.0),
        (RuleKind.FILING_REQUIRED, vat.id, 1.0),
    ])
    await build.document(client, tcc)
    bundle = await build.bundle(tenant, "FIRS", [{"document_type_id": tcc.id}, {"filing_type_id": vat.id}])
    await db_session.commit()
    await ComplianceService(db_session).calculate_client_score(tenant.id, client.id, now=NOW)
    return tenant, client, bundle


class TestTenantHeader:
    """Tenant resolution from the gateway header"""

    @pytest.mark.asyncio
    async def test_missing_header(self, api_client):
        response = await api_client.get(f"{API}/summary")
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "UNAUTHORIZED"
        assert response.json()["detail"]["timestamp"].endswith("Z")
        assert "+00:00" not in response.json()["detail"]["timestamp"]

    @pytest.mark.asyncio
    async def test_malformed_header(self, api_client):
        response = await api_client.get(f"{API}/summary", headers={"X-Tenant-ID": "not-a-uuid"})
        assert response.status_code == 400


class TestScoreEndpoints:

    @pytest.mark.asyncio
    async def test_client_score(self, api_client, db_session, build):
        tenant, client, _ = await scored_client(db_session, build)

        response = await api_client.get(f"{API}/clients/{client.id}/score", headers=tenant_headers(tenant.id))

        assert response.status_code == 200
        data = response.json()
        assert data["client_id"] == str(client.id)
        assert data["level"] == "amber"
        assert float(data["score_value"]) == 50.0

    @pytest.mark.asyncio
    async def test_score_not_calculated_yet(self, api_client, db_session, build):
        tenant = await build.tenant()
        client = await build.client(tenant)
        await db_session.commit()

        response = await api_client.get(f"{API}/clients/{client.id}/score", headers=tenant_headers(tenant.id))

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "SCORE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_score_is_tenant_scoped(self, api_client, db_session, build):
        _, client, _ = await scored_client(db_session, build)
        other = await build.tenant(name="Other Firm")
        await db_session.commit()

        response = await api_client.get(f"{API}/clients/{client.id}/score", headers=tenant_headers(other.id))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_bundle_progress(self, api_client, db_session, build):
        tenant, client, bundle = await scored_client(db_session, build)

        response = await api_client.get(
            f"{API}/clients/{client.id}/bundles/{bundle.id}/progress",
            headers=tenant_headers(tenant.id),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["bundle"]["authority"] == "FIRS"
        assert [item["fulfilled"] for item in data["progress"]] == [True, False]
        assert data["stats"]["percent_complete"] == 50.0

    @pytest.mark.asyncio
    async def test_summary(self, api_client, db_session, build):
        tenant, _, _ = await scored_client(db_session, build)

        response = await api_client.get(f"{API}/summary", headers=tenant_headers(tenant.id))

        assert response.status_code == 200
        data = response.json()
        assert data["total_clients"] == 1
        assert data["amber"] == 1

    @pytest.mark.asyncio
    async def test_clients_with_issues(self, api_client, db_session, build):
        tenant, client, _ = await scored_client(db_session, build)

        response = await api_client.get(f"{API}/clients-with-issues", headers=tenant_headers(tenant.id))

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["clients"][0]["client_id"] == str(client.id)


class TestRefreshEndpoints:
    """Queueing and polling background refreshes"""

    @pytest.mark.asyncio
    async def test_queue_refresh_for_own_tenant(self, api_client):
        tenant_id = uuid.uuid4()
        with patch("app.routers.compliance.enqueue_compliance_refresh", return_value="task-1") as enqueue:
            response = await api_client.post(f"{API}/refresh", json={}, headers=tenant_headers(tenant_id))

        assert response.status_code == 202
        assert response.json() == {"task_id": "task-1", "status": "queued"}
        enqueue.assert_called_once_with(tenant_id=tenant_id, triggered_by="manual")

    @pytest.mark.asyncio
    async def test_refresh_of_another_tenant_is_forbidden(self, api_client):
        with patch("app.routers.compliance.enqueue_compliance_refresh") as enqueue:
            response = await api_client.post(
                f"{API}/refresh",
                json={"tenant_id": str(uuid.uuid4())},
                headers=tenant_headers(uuid.uuid4()),
            )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "FORBIDDEN"
        enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_progress(self, api_client):
        tenant_id = uuid.uuid4()
        task = MagicMock(
            state="PROGRESS",
            info={"current": 2, "total": 5, "tenant_id": str(tenant_id)},
            kwargs={"tenant_id": str(tenant_id), "triggered_by": "manual"},
        )
        with patch("app.routers.compliance.AsyncResult", return_value=task):
            response = await api_client.get(f"{API}/refresh/task-1", headers=tenant_headers(tenant_id))

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "PROGRESS"
        assert data["progress"] == {"current": 2, "total": 5, "tenant_id": str(tenant_id)}

    @pytest.mark.asyncio
    async def test_refresh_success(self, api_client):
        tenant_id = uuid.uuid4()
        task = MagicMock(
            state="SUCCESS",
            result={"status": "completed", "clients_updated": 4},
            kwargs={"tenant_id": str(tenant_id), "triggered_by": "manual"},
        )
        with patch("app.routers.compliance.AsyncResult", return_value=task):
            response = await api_client.get(f"{API}/refresh/task-1", headers=tenant_headers(tenant_id))

        assert response.json()["result"] == {"status": "completed", "clients_updated": 4}

    @pytest.mark.asyncio
    async def test_refresh_failure(self, api_client):
        tenant_id = uuid.uuid4()
        task = MagicMock(
            state="FAILURE",
            info=RuntimeError("database unavailable"),
            kwargs={"tenant_id": str(tenant_id), "triggered_by": "manual"},
        )
        with patch("app.routers.compliance.AsyncResult", return_value=task):
            response = await api_client.get(f"{API}/refresh/task-1", headers=tenant_headers(tenant_id))

        assert response.json()["error"] == "database unavailable"

    @pytest.mark.asyncio
    async def test_refresh_of_another_tenant_is_not_found(self, api_client):
        owner = uuid.uuid4()
        task = MagicMock(
            state="SUCCESS",
            result={"status": "completed_with_errors", "errors": [{"tenant_id": str(owner), "error": "boom"}]},
            kwargs={"tenant_id": str(owner), "triggered_by": "manual"},
        )
        with patch("app.routers.compliance.AsyncResult", return_value=task):
            response = await api_client.get(f"{API}/refresh/task-1", headers=tenant_headers(uuid.uuid4()))

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOT_FOUND"
        assert "result" not in response.json()

    @pytest.mark.asyncio
    async def test_all_tenant_sweep_is_not_visible(self, api_client):
        task = MagicMock(state="SUCCESS", result={"status": "completed"}, kwargs={"tenant_id": None})
        with patch("app.routers.compliance.AsyncResult", return_value=task):
            response = await api_client.get(f"{API}/refresh/task-1", headers=tenant_headers(uuid.uuid4()))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_pending_task(self, api_client):
        task = MagicMock(state="PENDING", kwargs=None)
        with patch("app.routers.compliance.AsyncResult", return_value=task):
            response = await api_client.get(f"{API}/refresh/task-1", headers=tenant_headers(uuid.uuid4()))

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "PENDING"
        assert data["result"] is None


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, api_client):
        response = await api_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "ok"}
