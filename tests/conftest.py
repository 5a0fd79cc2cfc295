"""
Compliance Cloud - Test Configuration

Pytest fixtures and configuration.

Every test gets a fresh SQLite database file (aiosqlite) with the full
schema; services receive the same session factory production code uses.
"""

from datetime import date, datetime
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

import app.models  # noqa: F401  (registers every table on Base.metadata)
from app.database import Base, create_engine_for, create_session_factory, get_async_session
from app.models.client import Client
from app.models.compliance import (
    ComplianceRule,
    ComplianceRuleSet,
    RequirementBundle,
    RequirementBundleItem,
    RuleKind,
)
from app.models.document import Document, DocumentType, DocumentVersion
from app.models.filing import Filing, FilingType
from app.models.tenant import Tenant, TenantUser, User
from app.tasks.queues import DeliveryJob


# Reference clock shared by the tests: 19 Oct 2026, 08:00 UTC
NOW = datetime(2026, 10, 19, 8, 0, 0)
TODAY = NOW.date()


# ===========================================
# DATABASE
# ===========================================

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'compliance.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def api_client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with its sessions bound to the test database."""
    from main import app

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# DATA BUILDER
# ===========================================

class DataBuilder:
    """Creates catalog and client records; every helper flushes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _add(self, obj):
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def tenant(self, name: str = "Okafor & Partners", is_active: bool = True) -> Tenant:
        return await self._add(Tenant(
            id=uuid4(),
            name=name,
            slug=f"{name.lower().replace(' ', '-')}-{uuid4().hex[:6]}",
            is_active=is_active,
        ))

    async def user(
        self,
        tenant: Tenant,
        role: str,
        email: Optional[str] = None,
        full_name: Optional[str] = "Ada Obi",
        is_active: bool = True,
    ) -> User:
        user = await self._add(User(
            id=uuid4(),
            email=email or f"{role}-{uuid4().hex[:8]}@example.com",
            full_name=full_name,
            is_active=is_active,
        ))
        await self._add(TenantUser(id=uuid4(), tenant_id=tenant.id, user_id=user.id, role=role))
        return user

    async def client(
        self,
        tenant: Tenant,
        name: str = "Acme Ltd",
        client_type: str = "company",
        sector: Optional[str] = None,
        authorities: Sequence[str] = (),
        is_active: bool = True,
    ) -> Client:
        return await self._add(Client(
            id=uuid4(),
            tenant_id=tenant.id,
            name=name,
            client_type=client_type,
            sector=sector,
            authorities=list(authorities),
            is_active=is_active,
        ))

    async def document_type(
        self,
        tenant: Optional[Tenant],
        name: str = "Tax Clearance Certificate",
        authority: Optional[str] = None,
    ) -> DocumentType:
        return await self._add(DocumentType(
            id=uuid4(),
            tenant_id=tenant.id if tenant else None,
            name=name,
            authority=authority,
            has_expiry=True,
        ))

    async def filing_type(
        self,
        tenant: Optional[Tenant],
        name: str = "VAT Return",
        authority: Optional[str] = None,
    ) -> FilingType:
        return await self._add(FilingType(
            id=uuid4(),
            tenant_id=tenant.id if tenant else None,
            name=name,
            authority=authority,
            frequency="monthly",
        ))

    async def document(
        self,
        client: Client,
        document_type: DocumentType,
        title: str = "TCC 2026",
        status: str = "valid",
        expiry_date: Optional[date] = None,
        created_at: Optional[datetime] = None,
        versions: Optional[List[Dict[str, Any]]] = None,
    ) -> Document:
        """Document with one current version, or with the given version dicts."""
        document = Document(
            id=uuid4(),
            tenant_id=client.tenant_id,
            client_id=client.id,
            document_type_id=document_type.id,
            title=title,
            status=status,
        )
        if created_at is not None:
            document.created_at = created_at
            document.updated_at = created_at
        await self._add(document)

        for number, version in enumerate(versions or [{"expiry_date": expiry_date}], start=1):
            await self._add(DocumentVersion(
                id=uuid4(),
                document_id=document.id,
                version_number=number,
                is_current=version.get("is_current", True),
                expiry_date=version.get("expiry_date"),
                issue_date=version.get("issue_date"),
            ))
        return document

    async def filing(
        self,
        client: Client,
        filing_type: FilingType,
        status: str = "submitted",
        period_start: Optional[date] = None,
        period_end: Optional[date] = None,
    ) -> Filing:
        return await self._add(Filing(
            id=uuid4(),
            tenant_id=client.tenant_id,
            client_id=client.id,
            filing_type_id=filing_type.id,
            status=status,
            period_start=period_start,
            period_end=period_end,
        ))

    async def rule_set(
        self,
        tenant: Tenant,
        rules: Sequence[tuple],
        name: str = "Core obligations",
        client_types: Sequence[str] = (),
        sectors: Sequence[str] = (),
        active: bool = True,
    ) -> ComplianceRuleSet:
        """rules: (RuleKind, target_id, weight) tuples."""
        return await self._add(ComplianceRuleSet(
            id=uuid4(),
            tenant_id=tenant.id,
            name=name,
            client_types=list(client_types),
            sectors=list(sectors),
            active=active,
            rules=[
                ComplianceRule(id=uuid4(), kind=RuleKind(kind), target_id=target_id, weight=weight)
                for kind, target_id, weight in rules
            ],
        ))

    async def bundle(
        self,
        tenant: Tenant,
        authority: str,
        items: Sequence[Dict[str, Any]],
        name: str = "Annual obligations",
        category: str = "tax",
    ) -> RequirementBundle:
        """items: dicts with document_type_id / filing_type_id / required."""
        return await self._add(RequirementBundle(
            id=uuid4(),
            tenant_id=tenant.id,
            name=name,
            authority=authority,
            category=category,
            items=[
                RequirementBundleItem(
                    id=uuid4(),
                    document_type_id=item.get("document_type_id"),
                    filing_type_id=item.get("filing_type_id"),
                    required=item.get("required", True),
                    order=index,
                    description=item.get("description"),
                )
                for index, item in enumerate(items)
            ],
        ))


@pytest_asyncio.fixture
async def build(db_session) -> DataBuilder:
    return DataBuilder(db_session)


# ===========================================
# QUEUE
# ===========================================

class FakeQueue:
    """In-memory delivery queue."""

    def __init__(self, fail: bool = False):
        self.jobs: List[DeliveryJob] = []
        self.fail = fail

    def enqueue(self, job: DeliveryJob) -> Optional[str]:
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.jobs.append(job)
        return f"job-{len(self.jobs)}"


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()
