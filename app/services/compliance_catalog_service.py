"""
Compliance Cloud - Rule & Bundle Catalog Service

Read path over the tenant's rule sets, requirement bundles and the
document/filing categories they reference.
"""

import uuid
import logging
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.compliance import ComplianceRuleSet, RequirementBundle
from app.models.document import DocumentType
from app.models.filing import FilingType
from app.models.tenant import Tenant
from app.utils.error_handling import TenantNotFoundException

logger = logging.getLogger(__name__)


class CatalogService:
    """Service for reading compliance rules and requirement bundles."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def ensure_tenant(self, tenant_id: uuid.UUID) -> Tenant:
        """Return the tenant or raise TenantNotFoundException."""
        tenant = await self.db.get(Tenant, tenant_id)
        if tenant is None:
            raise TenantNotFoundException(tenant_id)
        return tenant

    async def get_applicable_rule_sets(
        self,
        tenant_id: uuid.UUID,
        client_type: Optional[str],
        sector: Optional[str],
    ) -> List[ComplianceRuleSet]:
        """
        Active rule sets matching a client type and sector, rules loaded.

        An empty client_types or sectors list matches every client.
        """
        await self.ensure_tenant(tenant_id)
        result = await self.db.execute(
            select(ComplianceRuleSet)
            .options(selectinload(ComplianceRuleSet.rules))
            .where(ComplianceRuleSet.tenant_id == tenant_id)
            .where(ComplianceRuleSet.active == True)  # noqa: E712
            .order_by(ComplianceRuleSet.created_at, ComplianceRuleSet.name)
        )
        rule_sets = list(result.scalars().all())
        return [rs for rs in rule_sets if rs.applies_to(client_type, sector)]

    async def get_all_active_rule_sets(self, tenant_id: uuid.UUID) -> List[ComplianceRuleSet]:
        """All active rule sets for a tenant; used to filter per client in memory during a refresh."""
        await self.ensure_tenant(tenant_id)
        result = await self.db.execute(
            select(ComplianceRuleSet)
            .options(selectinload(ComplianceRuleSet.rules))
            .where(ComplianceRuleSet.tenant_id == tenant_id)
            .where(ComplianceRuleSet.active == True)  # noqa: E712
            .order_by(ComplianceRuleSet.created_at, ComplianceRuleSet.name)
        )
        return list(result.scalars().all())

    async def get_bundles(
        self,
        tenant_id: uuid.UUID,
        authorities: Sequence[str],
    ) -> List[RequirementBundle]:
        """Bundles for the given authorities, items ordered."""
        await self.ensure_tenant(tenant_id)
        if not authorities:
            return []
        result = await self.db.execute(
            select(RequirementBundle)
            .options(selectinload(RequirementBundle.items))
            .where(RequirementBundle.tenant_id == tenant_id)
            .where(RequirementBundle.authority.in_(list(authorities)))
            .order_by(RequirementBundle.authority, RequirementBundle.name)
        )
        return list(result.scalars().all())

    async def get_bundle(self, tenant_id: uuid.UUID, bundle_id: uuid.UUID) -> Optional[RequirementBundle]:
        result = await self.db.execute(
            select(RequirementBundle)
            .options(selectinload(RequirementBundle.items))
            .where(RequirementBundle.id == bundle_id)
            .where(RequirementBundle.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()

    async def known_category_ids(
        self,
        tenant_id: uuid.UUID,
    ) -> Tuple[FrozenSet[uuid.UUID], FrozenSet[uuid.UUID], Dict[uuid.UUID, str]]:
        """
        Resolvable categories for a tenant (tenant-owned plus platform-wide).

        Returns (document_type_ids, filing_type_ids, names_by_id).
        """
        doc_result = await self.db.execute(
            select(DocumentType.id, DocumentType.name)
            .where(or_(DocumentType.tenant_id == tenant_id, DocumentType.tenant_id.is_(None)))
        )
        filing_result = await self.db.execute(
            select(FilingType.id, FilingType.name)
            .where(or_(FilingType.tenant_id == tenant_id, FilingType.tenant_id.is_(None)))
        )
        names: Dict[uuid.UUID, str] = {}
        document_type_ids = set()
        filing_type_ids = set()
        for type_id, name in doc_result.all():
            document_type_ids.add(type_id)
            names[type_id] = name
        for type_id, name in filing_result.all():
            filing_type_ids.add(type_id)
            names[type_id] = name

        return frozenset(document_type_ids), frozenset(filing_type_ids), names
