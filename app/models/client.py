"""
Compliance Cloud - Client Model
"""

import uuid
from typing import List, Optional

from sqlalchemy import Boolean, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel, JSONType


class Client(BaseModel):
    """
    A client of a tenant firm whose compliance is tracked.

    client_type and sector select the applicable rule sets; authorities
    lists the government authorities the client is registered with and
    selects the requirement bundles.
    """

    __tablename__ = "clients"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_type: Mapped[str] = mapped_column(String(50), nullable=False)
    sector: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    risk_level: Mapped[str] = mapped_column(String(20), default="low", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    authorities: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, name={self.name})>"
