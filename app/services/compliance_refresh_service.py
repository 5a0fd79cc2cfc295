"""
Compliance Cloud - Compliance Refresh Runner

Recomputes every client's compliance score across all tenants (or one).

Run lifecycle: pending -> running -> completed | completed_with_errors.
A failing client is recorded under its tenant; a failing tenant is
recorded in the run's error list. Only failing to list tenants aborts
the run.
"""

import asyncio
import time
import uuid
import logging
import weakref
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models.audit import AuditAction
from app.models.tenant import Tenant
from app.services.audit_service import AuditService
from app.services.compliance_scoring import ClientFacts, ClientProfile, ScoreThresholds
from app.services.compliance_service import ComplianceService
from app.utils.error_handling import TenantNotFoundException, translate_db_error

logger = logging.getLogger(__name__)


ProgressCallback = Callable[[int, int, uuid.UUID], None]


class RefreshStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"


@dataclass
class TenantRefreshError:
    """Error entry for one tenant; clients lists per-client failures and configuration issues."""
    tenant_id: str
    error: str
    clients: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class RefreshRunResult:
    status: RefreshStatus = RefreshStatus.PENDING
    triggered_by: str = "cron"
    tenants_total: int = 0
    tenants_processed: int = 0
    clients_updated: int = 0
    duration_ms: int = 0
    errors: List[TenantRefreshError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


class ClientLockRegistry:
    """
    Per-client locks shared by the runners of one process.

    Keeps two evaluations of the same client in one event loop from
    interleaving. asyncio locks are bound to a loop, so each loop gets its
    own set (Celery's run_async opens a fresh loop per task). Across loops
    and processes the upsert is last-write-wins.
    """

    def __init__(self):
        self._locks: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()

    def lock_for(self, client_id: uuid.UUID) -> asyncio.Lock:
        locks = self._locks.setdefault(asyncio.get_running_loop(), {})
        if client_id not in locks:
            locks[client_id] = asyncio.Lock()
        return locks[client_id]


# Default registry for every runner in this process
worker_client_locks = ClientLockRegistry()


class ComplianceRefreshRunner:
    """Runs compliance evaluation for every active client of every tenant."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        concurrency: Optional[int] = None,
        thresholds: Optional[ScoreThresholds] = None,
        lookahead_days: Optional[int] = None,
        progress_callback: Optional[ProgressCallback] = None,
        client_locks: Optional[ClientLockRegistry] = None,
        audit_service: Optional[AuditService] = None,
    ):
        self.session_factory = session_factory
        self.concurrency = max(1, concurrency or settings.compliance_refresh_tenant_concurrency)
        self.thresholds = thresholds or ScoreThresholds.from_settings(settings)
        self.lookahead_days = lookahead_days if lookahead_days is not None else settings.expiry_lookahead_days
        self.progress_callback = progress_callback
        self.client_locks = client_locks or worker_client_locks
        self.audit_service = audit_service or AuditService(session_factory)

    async def run(
        self,
        tenant_id: Optional[uuid.UUID] = None,
        triggered_by: str = "cron",
        now: Optional[datetime] = None,
    ) -> RefreshRunResult:
        """
        Refresh all tenants, or only tenant_id.

        Raises TenantNotFoundException when tenant_id does not exist and
        TransientStoreException when tenants cannot be listed.
        """
        result = RefreshRunResult(triggered_by=triggered_by)
        started = time.monotonic()
        now = now or datetime.now(timezone.utc)

        tenant_ids = await self._list_tenants(tenant_id)
        result.status = RefreshStatus.RUNNING
        result.tenants_total = len(tenant_ids)
        logger.info(f"Compliance refresh started ({triggered_by}): {len(tenant_ids)} tenant(s)")

        semaphore = asyncio.Semaphore(self.concurrency)
        finished = 0

        async def process(tid: uuid.UUID) -> None:
            nonlocal finished
            async with semaphore:
                updated, error = await self.refresh_tenant(tid, now)
            finished += 1
            result.clients_updated += updated
            if error is None or error.clients:
                result.tenants_processed += 1
            if error is not None:
                result.errors.append(error)
            self._report_progress(finished, len(tenant_ids), tid)

        await asyncio.gather(*(process(tid) for tid in tenant_ids))

        result.duration_ms = int((time.monotonic() - started) * 1000)
        result.status = (
            RefreshStatus.COMPLETED_WITH_ERRORS if result.errors else RefreshStatus.COMPLETED
        )
        logger.info(
            f"Compliance refresh finished: {result.tenants_processed}/{result.tenants_total} tenants, "
            f"{result.clients_updated} clients, {len(result.errors)} tenant error(s), "
            f"{result.duration_ms}ms"
        )
        return result

    def _report_progress(self, current: int, total: int, tenant_id: uuid.UUID) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(current, total, tenant_id)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    async def _list_tenants(self, tenant_id: Optional[uuid.UUID]) -> List[uuid.UUID]:
        try:
            async with self.session_factory() as session:
                if tenant_id is not None:
                    tenant = await session.get(Tenant, tenant_id)
                    if tenant is None:
                        raise TenantNotFoundException(tenant_id)
                    return [tenant.id]
                rows = await session.execute(
                    select(Tenant.id)
                    .where(Tenant.is_active == True)  # noqa: E712
                    .order_by(Tenant.created_at)
                )
                return list(rows.scalars().all())
        except SQLAlchemyError as e:
            raise translate_db_error(e) from e

    async def refresh_tenant(
        self,
        tenant_id: uuid.UUID,
        now: datetime,
    ) -> Tuple[int, Optional[TenantRefreshError]]:
        """
        Evaluate and persist every active client of one tenant.

        Returns (clients_updated, error_entry_or_None).
        """
        async with self.session_factory() as session:
            service = ComplianceService(session, self.thresholds, self.lookahead_days)
            try:
                clients = await service.get_active_clients(tenant_id)
                profiles = [ClientProfile.from_model(c) for c in clients]
                rule_sets = await service.catalog.get_all_active_rule_sets(tenant_id)
                authorities = sorted({a for p in profiles for a in p.authorities})
                bundles = await service.catalog.get_bundles(tenant_id, authorities)
                facts = await service.load_client_facts(tenant_id, [p.id for p in profiles])
                # Snapshot entries before any write; a rollback expires ORM state
                entries = {p.id: service.build_entries(p, rule_sets, bundles) for p in profiles}
            except Exception as e:
                logger.exception(f"Compliance refresh failed to load tenant {tenant_id}")
                return 0, TenantRefreshError(tenant_id=str(tenant_id), error=str(e))

            updated = 0
            client_errors: List[Dict[str, str]] = []
            for profile in profiles:
                async with self.client_locks.lock_for(profile.id):
                    try:
                        card = service.score_entries(
                            profile,
                            entries[profile.id],
                            facts.get(profile.id) or ClientFacts(),
                            now,
                        )
                        await service.save_score(card)
                        await session.commit()
                    except Exception as e:
                        await session.rollback()
                        logger.exception(f"Compliance refresh failed for client {profile.id} (tenant {tenant_id})")
                        client_errors.append({"client_id": str(profile.id), "error": str(e)})
                        continue
                updated += 1
                for issue in card.breakdown.get("configuration_issues", []):
                    client_errors.append({"client_id": str(profile.id), "error": issue["error"]})

        error = None
        if client_errors:
            error = TenantRefreshError(
                tenant_id=str(tenant_id),
                error=f"{len(client_errors)} client issue(s) during refresh",
                clients=client_errors,
            )
            logger.warning(f"Tenant {tenant_id}: {error.error}")
        else:
            logger.info(f"Tenant {tenant_id}: {updated} client score(s) updated")

        await self.audit_service.log_system_action(
            action=AuditAction.COMPLIANCE_REFRESH,
            target_entity_type="tenant",
            target_entity_id=str(tenant_id),
            tenant_id=tenant_id,
            new_values={"clients_updated": updated, "issues": len(client_errors)},
            description=f"Compliance refresh updated {updated} client(s)",
        )
        return updated, error
