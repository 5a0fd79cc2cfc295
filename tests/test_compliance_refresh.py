"""
Tests for the scheduled compliance refresh runner.
"""

import asyncio
import uuid

import pytest
from sqlalchemy import select

from app.models.audit import AuditAction
from app.models.compliance import ComplianceScore, RuleKind
from app.services.audit_service import AuditService
from app.services.compliance_refresh_service import (
    ClientLockRegistry,
    ComplianceRefreshRunner,
    RefreshStatus,
    worker_client_locks,
)
from app.utils.error_handling import TenantNotFoundException

from conftest import NOW


async def seed_tenant(build, name, dangling=False):
    """Tenant with one client and one document rule; dangling points the rule at a missing type."""
    tenant = await build.tenant(name=name)
    client = await build.client(tenant, name=f"{name} Client")
    tcc = await build.document_type(tenant)
    await build.document(client, tcc)
    target = uuid.uuid4() if dangling else tcc.id
    await build.rule_set(tenant, [(RuleKind.DOCUMENT_REQUIRED, target, 1.0)])
    return tenant, client


async def stored_levels(session_factory):
    async with session_factory() as session:
        rows = await session.execute(select(ComplianceScore.client_id, ComplianceScore.level))
        return dict(rows.all())


class TestRefreshAllTenants:
    """Run across every active tenant"""

    @pytest.mark.asyncio
    async def test_dangling_target_is_isolated_to_its_tenant(self, db_session, build, session_factory):
        tenant_a, client_a = await seed_tenant(build, "Alpha")
        tenant_b, client_b = await seed_tenant(build, "Bravo", dangling=True)
        tenant_c, client_c = await seed_tenant(build, "Charlie")
        await db_session.commit()

        result = await ComplianceRefreshRunner(session_factory).run(now=NOW)

        assert result.status == RefreshStatus.COMPLETED_WITH_ERRORS
        assert result.tenants_total == 3
        assert result.tenants_processed == 3
        assert result.clients_updated == 3
        assert [e.tenant_id for e in result.errors] == [str(tenant_b.id)]
        assert result.errors[0].clients[0]["client_id"] == str(client_b.id)
        assert "unknown document type" in result.errors[0].clients[0]["error"]

        levels = await stored_levels(session_factory)
        assert levels == {client_a.id: "green", client_b.id: "red", client_c.id: "green"}

    @pytest.mark.asyncio
    async def test_clean_run_is_completed(self, db_session, build, session_factory):
        await seed_tenant(build, "Alpha")
        await seed_tenant(build, "Bravo")
        await db_session.commit()

        result = await ComplianceRefreshRunner(session_factory).run(triggered_by="manual", now=NOW)

        assert result.status == RefreshStatus.COMPLETED
        assert result.errors == []
        data = result.to_dict()
        assert data["status"] == "completed"
        assert data["triggered_by"] == "manual"

    @pytest.mark.asyncio
    async def test_rerun_keeps_one_score_per_client(self, db_session, build, session_factory):
        await seed_tenant(build, "Alpha")
        await db_session.commit()

        runner = ComplianceRefreshRunner(session_factory)
        await runner.run(now=NOW)
        await runner.run(now=NOW)

        async with session_factory() as session:
            rows = (await session.execute(select(ComplianceScore))).scalars().all()
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_inactive_tenants_and_clients_are_skipped(self, db_session, build, session_factory):
        active, client = await seed_tenant(build, "Alpha")
        await build.client(active, name="Dormant", is_active=False)
        await build.tenant(name="Closed", is_active=False)
        await db_session.commit()

        result = await ComplianceRefreshRunner(session_factory).run(now=NOW)

        assert result.tenants_total == 1
        assert result.clients_updated == 1
        assert set(await stored_levels(session_factory)) == {client.id}

    @pytest.mark.asyncio
    async def test_tenant_without_clients(self, db_session, build, session_factory):
        await build.tenant(name="Empty")
        await db_session.commit()

        result = await ComplianceRefreshRunner(session_factory).run(now=NOW)

        assert result.status == RefreshStatus.COMPLETED
        assert result.tenants_processed == 1
        assert result.clients_updated == 0


class TestRefreshSingleTenant:

    @pytest.mark.asyncio
    async def test_only_the_given_tenant(self, db_session, build, session_factory):
        tenant_a, client_a = await seed_tenant(build, "Alpha")
        await seed_tenant(build, "Bravo")
        await db_session.commit()

        result = await ComplianceRefreshRunner(session_factory).run(tenant_id=tenant_a.id, now=NOW)

        assert result.tenants_total == 1
        assert set(await stored_levels(session_factory)) == {client_a.id}

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, session_factory):
        with pytest.raises(TenantNotFoundException):
            await ComplianceRefreshRunner(session_factory).run(tenant_id=uuid.uuid4(), now=NOW)


class TestProgressAndAudit:

    @pytest.mark.asyncio
    async def test_progress_callback(self, db_session, build, session_factory):
        tenants = [(await seed_tenant(build, name))[0] for name in ("Alpha", "Bravo", "Charlie")]
        await db_session.commit()
        calls = []

        runner = ComplianceRefreshRunner(
            session_factory,
            progress_callback=lambda current, total, tid: calls.append((current, total, tid)),
        )
        await runner.run(now=NOW)

        assert [c[0] for c in calls] == [1, 2, 3]
        assert all(c[1] == 3 for c in calls)
        assert {c[2] for c in calls} == {t.id for t in tenants}

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_fail_the_run(self, db_session, build, session_factory):
        await seed_tenant(build, "Alpha")
        await db_session.commit()

        def explode(current, total, tid):
            raise RuntimeError("progress backend down")

        result = await ComplianceRefreshRunner(session_factory, progress_callback=explode).run(now=NOW)

        assert result.status == RefreshStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_audit_entry_per_tenant(self, db_session, build, session_factory):
        tenant, _ = await seed_tenant(build, "Alpha")
        await db_session.commit()

        await ComplianceRefreshRunner(session_factory).run(now=NOW)

        logs = await AuditService(session_factory).get_audit_logs(tenant.id, action=AuditAction.COMPLIANCE_REFRESH)
        assert len(logs) == 1
        assert logs[0].new_values == {"clients_updated": 1, "issues": 0}
        assert logs[0].actor == "system"


class TestClientLocks:
    """Per-client locks shared across runners"""

    @pytest.mark.asyncio
    async def test_runners_share_the_process_registry(self, session_factory):
        first = ComplianceRefreshRunner(session_factory)
        second = ComplianceRefreshRunner(session_factory)
        client_id = uuid.uuid4()

        assert first.client_locks is worker_client_locks
        assert first.client_locks.lock_for(client_id) is second.client_locks.lock_for(client_id)

    @pytest.mark.asyncio
    async def test_same_client_is_serialized(self):
        registry = ClientLockRegistry()
        client_id = uuid.uuid4()
        events = []

        async def evaluate(name):
            async with registry.lock_for(client_id):
                events.append(f"{name}-start")
                await asyncio.sleep(0)
                events.append(f"{name}-end")

        await asyncio.gather(evaluate("a"), evaluate("b"))

        assert events == ["a-start", "a-end", "b-start", "b-end"]

    def test_each_event_loop_gets_its_own_locks(self):
        registry = ClientLockRegistry()
        client_id = uuid.uuid4()

        async def grab():
            lock = registry.lock_for(client_id)
            async with lock:
                return lock

        first_loop = asyncio.new_event_loop()
        second_loop = asyncio.new_event_loop()
        try:
            first = first_loop.run_until_complete(grab())
            second = second_loop.run_until_complete(grab())
        finally:
            first_loop.close()
            second_loop.close()

        assert first is not second
