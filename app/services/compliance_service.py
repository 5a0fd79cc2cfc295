"""
Compliance Cloud - Compliance Service

Loads client facts, runs the scoring core and persists the result.
Also serves the read-side queries (score, bundle progress, summary,
clients with issues).
"""

import uuid
import logging
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import dialect_insert
from app.models.client import Client
from app.models.compliance import ComplianceLevel, ComplianceRuleSet, ComplianceScore, RequirementBundle
from app.models.document import Document, DocumentVersion
from app.models.filing import Filing
from app.services.compliance_catalog_service import CatalogService
from app.services.compliance_scoring import (
    BundleItemEntry,
    ClientFacts,
    ClientProfile,
    DocumentFact,
    FilingFact,
    RuleEntry,
    ScoreCard,
    ScoreThresholds,
    aggregate,
    evaluate,
    evaluate_all,
)
from app.utils.error_handling import (
    ClientNotFoundException,
    ErrorCode,
    InvalidRuleException,
    NotFoundException,
)

logger = logging.getLogger(__name__)


class ComplianceService:
    """Service for evaluating and persisting client compliance scores."""

    def __init__(
        self,
        db: AsyncSession,
        thresholds: Optional[ScoreThresholds] = None,
        lookahead_days: Optional[int] = None,
    ):
        self.db = db
        self.catalog = CatalogService(db)
        self.thresholds = thresholds or ScoreThresholds.from_settings(settings)
        self.lookahead_days = lookahead_days if lookahead_days is not None else settings.expiry_lookahead_days

    # ===========================================
    # FACT LOADING
    # ===========================================

    async def get_active_clients(self, tenant_id: uuid.UUID) -> List[Client]:
        result = await self.db.execute(
            select(Client)
            .where(Client.tenant_id == tenant_id)
            .where(Client.is_active == True)  # noqa: E712
            .order_by(Client.name)
        )
        return list(result.scalars().all())

    async def get_client(self, tenant_id: uuid.UUID, client_id: uuid.UUID) -> Client:
        result = await self.db.execute(
            select(Client)
            .where(Client.id == client_id)
            .where(Client.tenant_id == tenant_id)
        )
        client = result.scalar_one_or_none()
        if client is None:
            raise ClientNotFoundException(client_id)
        return client

    async def load_client_facts(
        self,
        tenant_id: uuid.UUID,
        client_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> Dict[uuid.UUID, ClientFacts]:
        """
        Load documents (with current version dates) and filings for a
        tenant's clients in two queries, grouped per client.
        """
        document_type_ids, filing_type_ids, names = await self.catalog.known_category_ids(tenant_id)

        doc_query = (
            select(Document, DocumentVersion.expiry_date, DocumentVersion.issue_date)
            .outerjoin(
                DocumentVersion,
                and_(
                    DocumentVersion.document_id == Document.id,
                    DocumentVersion.is_current == True,  # noqa: E712
                ),
            )
            .where(Document.tenant_id == tenant_id)
        )
        filing_query = select(Filing).where(Filing.tenant_id == tenant_id)
        if client_ids is not None:
            doc_query = doc_query.where(Document.client_id.in_(list(client_ids)))
            filing_query = filing_query.where(Filing.client_id.in_(list(client_ids)))

        facts: Dict[uuid.UUID, ClientFacts] = {}

        def facts_for(client_id: uuid.UUID) -> ClientFacts:
            if client_id not in facts:
                facts[client_id] = ClientFacts(
                    document_type_ids=document_type_ids,
                    filing_type_ids=filing_type_ids,
                    category_names=names,
                )
            return facts[client_id]

        for client_id in client_ids or []:
            facts_for(client_id)

        doc_result = await self.db.execute(doc_query)
        for document, expiry_date, issue_date in doc_result.all():
            facts_for(document.client_id).documents.append(DocumentFact(
                id=document.id,
                document_type_id=document.document_type_id,
                title=document.title,
                status=document.status,
                created_at=document.created_at,
                expiry_date=expiry_date,
                issue_date=issue_date,
            ))

        filing_result = await self.db.execute(filing_query)
        for filing in filing_result.scalars().all():
            facts_for(filing.client_id).filings.append(FilingFact(
                id=filing.id,
                filing_type_id=filing.filing_type_id,
                status=filing.status,
                created_at=filing.created_at,
                period_end=filing.period_end,
            ))

        return facts

    # ===========================================
    # EVALUATION
    # ===========================================

    @staticmethod
    def build_entries(
        profile: ClientProfile,
        rule_sets: Iterable[ComplianceRuleSet],
        bundles: Iterable[RequirementBundle],
    ) -> List[Any]:
        """Rules from applicable rule sets followed by items from the client's authority bundles."""
        entries: List[Any] = []
        for rule_set in rule_sets:
            if not rule_set.active or not rule_set.applies_to(profile.client_type, profile.sector):
                continue
            entries.extend(RuleEntry.from_model(rule, rule_set.name) for rule in rule_set.rules)
        for bundle in bundles:
            if bundle.authority not in profile.authorities:
                continue
            entries.extend(BundleItemEntry.from_model(item, bundle) for item in bundle.items)
        return entries

    def evaluate_client(
        self,
        profile: ClientProfile,
        rule_sets: Iterable[ComplianceRuleSet],
        bundles: Iterable[RequirementBundle],
        facts: ClientFacts,
        now: datetime,
    ) -> ScoreCard:
        """Evaluate every applicable entry for one client and aggregate."""
        entries = self.build_entries(profile, rule_sets, bundles)
        return self.score_entries(profile, entries, facts, now)

    def score_entries(
        self,
        profile: ClientProfile,
        entries: List[Any],
        facts: ClientFacts,
        now: datetime,
    ) -> ScoreCard:
        results, problems = evaluate_all(
            profile,
            entries,
            facts,
            today=now.date(),
            lookahead_days=self.lookahead_days,
        )
        return aggregate(
            profile,
            results,
            overdue_filings_count=facts.overdue_filings_count,
            thresholds=self.thresholds,
            calculated_at=now,
            configuration_issues=problems,
        )

    async def save_score(self, card: ScoreCard) -> None:
        """Insert or fully replace the client's score row."""
        row = card.to_row()
        stmt = dialect_insert(self.db, ComplianceScore).values(**row)
        replace = {
            key: stmt.excluded[key]
            for key in row
            if key not in ("tenant_id", "client_id")
        }
        replace["updated_at"] = func.now()
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "client_id"],
            set_=replace,
        )
        await self.db.execute(stmt)

    async def calculate_client_score(
        self,
        tenant_id: uuid.UUID,
        client_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> ScoreCard:
        """Recalculate and persist one client's score."""
        now = now or datetime.now(timezone.utc)
        client = await self.get_client(tenant_id, client_id)
        profile = ClientProfile.from_model(client)

        rule_sets = await self.catalog.get_applicable_rule_sets(tenant_id, client.client_type, client.sector)
        bundles = await self.catalog.get_bundles(tenant_id, profile.authorities)
        facts = (await self.load_client_facts(tenant_id, [client_id]))[client_id]

        card = self.evaluate_client(profile, rule_sets, bundles, facts, now)
        await self.save_score(card)
        await self.db.commit()

        logger.info(
            f"Compliance recalculated for client {client_id}: "
            f"{card.score_value} ({card.level})"
        )
        return card

    # ===========================================
    # READ SIDE
    # ===========================================

    async def get_client_score(self, tenant_id: uuid.UUID, client_id: uuid.UUID) -> ComplianceScore:
        result = await self.db.execute(
            select(ComplianceScore)
            .where(ComplianceScore.tenant_id == tenant_id)
            .where(ComplianceScore.client_id == client_id)
        )
        score = result.scalar_one_or_none()
        if score is None:
            raise NotFoundException(
                resource_type="ComplianceScore",
                resource_id=client_id,
                message=f"No compliance score calculated for client '{client_id}'",
                code=ErrorCode.SCORE_NOT_FOUND,
            )
        return score

    async def get_bundle_progress(
        self,
        tenant_id: uuid.UUID,
        client_id: uuid.UUID,
        bundle_id: uuid.UUID,
        today: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Per-item fulfillment of one bundle for one client, with completion stats."""
        today = today or datetime.now(timezone.utc).date()
        client = await self.get_client(tenant_id, client_id)
        bundle = await self.catalog.get_bundle(tenant_id, bundle_id)
        if bundle is None:
            raise NotFoundException(resource_type="RequirementBundle", resource_id=bundle_id)

        profile = ClientProfile.from_model(client)
        facts = (await self.load_client_facts(tenant_id, [client_id]))[client_id]

        progress = []
        for item in bundle.items:
            entry = BundleItemEntry.from_model(item, bundle)
            record = {
                "item_id": str(item.id),
                "required": item.required,
                "order": item.order,
                "description": item.description,
                "document_type_id": str(item.document_type_id) if item.document_type_id else None,
                "filing_type_id": str(item.filing_type_id) if item.filing_type_id else None,
                "fulfilled": False,
                "matched_records": [],
                "issue": None,
            }
            try:
                result = evaluate(profile, entry, facts, today=today, lookahead_days=self.lookahead_days)
            except InvalidRuleException as e:
                record["issue"] = e.message
            else:
                record["fulfilled"] = result.satisfied
                record["matched_records"] = result.matched_records
                record["issue"] = result.issue
                record["label"] = result.label
            progress.append(record)

        total_required = sum(1 for p in progress if p["required"])
        completed_required = sum(1 for p in progress if p["required"] and p["fulfilled"])
        total_optional = sum(1 for p in progress if not p["required"])
        completed_optional = sum(1 for p in progress if not p["required"] and p["fulfilled"])
        if total_required:
            percent = (Decimal(completed_required) / Decimal(total_required) * 100).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_UP
            )
        else:
            percent = Decimal("100.00")

        return {
            "bundle": {
                "id": str(bundle.id),
                "name": bundle.name,
                "authority": bundle.authority,
                "category": bundle.category,
                "description": bundle.description,
            },
            "progress": progress,
            "stats": {
                "total_required": total_required,
                "completed_required": completed_required,
                "total_optional": total_optional,
                "completed_optional": completed_optional,
                "percent_complete": float(percent),
                "is_complete": completed_required == total_required,
            },
        }

    async def get_compliance_summary(self, tenant_id: uuid.UUID) -> Dict[str, Any]:
        """Level counts, average score and totals across a tenant's scored clients."""
        result = await self.db.execute(
            select(
                ComplianceScore.level,
                func.count(ComplianceScore.id),
                func.sum(ComplianceScore.score_value),
                func.sum(ComplianceScore.missing_count),
                func.sum(ComplianceScore.expiring_count),
                func.sum(ComplianceScore.overdue_filings_count),
            )
            .where(ComplianceScore.tenant_id == tenant_id)
            .group_by(ComplianceScore.level)
        )

        summary = {
            "total_clients": 0,
            ComplianceLevel.GREEN.value: 0,
            ComplianceLevel.AMBER.value: 0,
            ComplianceLevel.RED.value: 0,
            "average_score": 0.0,
            "total_missing_documents": 0,
            "total_expiring_documents": 0,
            "total_overdue_filings": 0,
        }
        score_sum = Decimal("0")
        for level, count, level_score_sum, missing, expiring, overdue in result.all():
            summary[level] = count
            summary["total_clients"] += count
            score_sum += Decimal(str(level_score_sum or 0))
            summary["total_missing_documents"] += int(missing or 0)
            summary["total_expiring_documents"] += int(expiring or 0)
            summary["total_overdue_filings"] += int(overdue or 0)

        if summary["total_clients"]:
            average = (score_sum / summary["total_clients"]).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
            summary["average_score"] = float(average)
        return summary

    async def get_clients_with_issues(self, tenant_id: uuid.UUID) -> List[Dict[str, Any]]:
        """Red and amber clients, lowest score first."""
        result = await self.db.execute(
            select(ComplianceScore, Client)
            .join(Client, Client.id == ComplianceScore.client_id)
            .where(ComplianceScore.tenant_id == tenant_id)
            .where(ComplianceScore.level.in_([ComplianceLevel.RED.value, ComplianceLevel.AMBER.value]))
            .order_by(ComplianceScore.score_value.asc(), Client.name)
        )
        return [
            {
                "client_id": str(client.id),
                "name": client.name,
                "client_type": client.client_type,
                "risk_level": client.risk_level,
                "score_value": float(score.score_value),
                "level": score.level,
                "missing_count": score.missing_count,
                "expiring_count": score.expiring_count,
                "overdue_filings_count": score.overdue_filings_count,
            }
            for score, client in result.all()
        ]
