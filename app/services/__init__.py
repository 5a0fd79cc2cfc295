"""
Compliance Cloud - Services Package

Business logic services.
"""

from app.services.audit_service import AuditService
from app.services.compliance_catalog_service import CatalogService
from app.services.compliance_service import ComplianceService
from app.services.compliance_refresh_service import ComplianceRefreshRunner, RefreshRunResult, RefreshStatus
from app.services.notification_service import NotificationService
from app.services.email_service import EmailService
from app.services.expiry_notification_service import ExpiryNotificationService
from app.services.filing_reminder_service import FilingReminderService
from app.services.delivery_dispatcher import DeliveryDispatcher, DispatchOutcome

__all__ = [
    # Compliance
    "CatalogService",
    "ComplianceService",
    "ComplianceRefreshRunner",
    "RefreshRunResult",
    "RefreshStatus",
    # Notifications
    "NotificationService",
    "EmailService",
    "ExpiryNotificationService",
    "FilingReminderService",
    "DeliveryDispatcher",
    "DispatchOutcome",
    # Audit
    "AuditService",
]
