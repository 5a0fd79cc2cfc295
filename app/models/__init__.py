"""
Compliance Cloud - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin, JSONType
from app.models.tenant import Tenant, User, TenantUser
from app.models.client import Client
from app.models.document import DocumentType, Document, DocumentVersion, DocumentStatus
from app.models.filing import FilingType, Filing, FilingStatus
from app.models.compliance import (
    RuleKind,
    ComplianceLevel,
    ComplianceRuleSet,
    ComplianceRule,
    RequirementBundle,
    RequirementBundleItem,
    ComplianceScore,
)
from app.models.notification import (
    Notification,
    NotificationKind,
    NotificationPriority,
    NotificationChannel,
    NotificationStatus,
)
from app.models.audit import AuditLog, AuditAction

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "JSONType",
    # Tenancy
    "Tenant",
    "User",
    "TenantUser",
    "Client",
    # Documents & filings
    "DocumentType",
    "Document",
    "DocumentVersion",
    "DocumentStatus",
    "FilingType",
    "Filing",
    "FilingStatus",
    # Compliance
    "RuleKind",
    "ComplianceLevel",
    "ComplianceRuleSet",
    "ComplianceRule",
    "RequirementBundle",
    "RequirementBundleItem",
    "ComplianceScore",
    # Notifications
    "Notification",
    "NotificationKind",
    "NotificationPriority",
    "NotificationChannel",
    "NotificationStatus",
    # Audit
    "AuditLog",
    "AuditAction",
]
