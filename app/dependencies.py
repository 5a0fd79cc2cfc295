"""
Compliance Cloud - FastAPI Dependencies

Shared dependencies for database sessions and tenant resolution.

Authentication happens at the upstream gateway, which forwards the caller's
tenant in the X-Tenant-ID header.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.services.compliance_service import ComplianceService


async def get_current_tenant_id(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
) -> uuid.UUID:
    """
    Resolve the caller's tenant from the gateway header.

    Raises:
        HTTPException: 401 if the header is missing, 400 if it is not a UUID
    """
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Tenant-ID header",
        )
    try:
        return uuid.UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Tenant-ID header",
        )


async def get_compliance_service(
    db: AsyncSession = Depends(get_async_session),
) -> ComplianceService:
    return ComplianceService(db)
