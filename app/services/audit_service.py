"""
Compliance Cloud - Audit Trail Service

Best-effort system audit entries for engine runs. Each entry is written
in its own session so an audit failure never rolls back the caller's work.
"""

import uuid
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.audit import AuditAction, AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    """Service for writing engine audit entries."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def log_system_action(
        self,
        action: AuditAction,
        target_entity_type: str,
        target_entity_id: str,
        tenant_id: Optional[uuid.UUID] = None,
        new_values: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> bool:
        """
        Write one audit entry. Returns False (and logs) when the write fails.
        """
        try:
            async with self.session_factory() as session:
                session.add(AuditLog(
                    tenant_id=tenant_id,
                    actor="system",
                    action=action,
                    target_entity_type=target_entity_type,
                    target_entity_id=target_entity_id,
                    new_values=new_values,
                    description=description,
                ))
                await session.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(
                f"Audit write failed for {action.value} on {target_entity_type} {target_entity_id}: {e}"
            )
            return False

    async def get_audit_logs(
        self,
        tenant_id: uuid.UUID,
        action: Optional[AuditAction] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        """Most recent audit entries for a tenant."""
        async with self.session_factory() as session:
            query = select(AuditLog).where(AuditLog.tenant_id == tenant_id)
            if action:
                query = query.where(AuditLog.action == action)
            result = await session.execute(query.order_by(AuditLog.created_at.desc()).limit(limit))
            return list(result.scalars().all())
