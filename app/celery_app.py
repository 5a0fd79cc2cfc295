"""
Compliance Cloud - Celery Configuration

Celery configuration for background task processing.
Uses Redis as the message broker and result backend.

Queues:
- compliance: score refresh runs (run one worker, concurrency 1)
- notifications: expiry and filing reminder scans, retention cleanup
- email: notification delivery
"""

from celery import Celery
from celery.schedules import crontab

from app.config import settings


# Create Celery app
celery_app = Celery(
    'compliance_cloud',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['app.tasks.celery_tasks'],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone
    timezone='UTC',
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    task_time_limit=1800,  # 30 minutes; a full refresh walks every tenant
    task_soft_time_limit=1740,

    # Worker settings
    worker_prefetch_multiplier=1,

    # Result backend settings
    result_expires=86400,  # 24 hours
    result_extended=True,

    # Retry settings
    task_default_retry_delay=settings.email_retry_backoff_seconds,

    # Beat schedule for periodic tasks
    beat_schedule={
        # Recompute every client's compliance score daily at 2 AM
        'compliance-refresh-daily': {
            'task': 'app.tasks.celery_tasks.compliance_refresh_task',
            'schedule': crontab(hour=2, minute=0),
            'kwargs': {'triggered_by': 'cron'},
        },

        # Document expiry reminders daily at 8 AM
        'expiry-notifications-daily': {
            'task': 'app.tasks.celery_tasks.expiry_notifications_task',
            'schedule': crontab(hour=8, minute=0),
            'kwargs': {'triggered_by': 'cron'},
        },

        # Filing deadline reminders daily at 8 AM
        'filing-reminders-daily': {
            'task': 'app.tasks.celery_tasks.filing_reminders_task',
            'schedule': crontab(hour=8, minute=0),
            'kwargs': {'triggered_by': 'cron'},
        },

        # Clean up old notifications weekly
        'cleanup-old-notifications': {
            'task': 'app.tasks.celery_tasks.cleanup_notifications_task',
            'schedule': crontab(day_of_week=0, hour=2, minute=0),  # Sunday 2 AM
        },
    },
)


# Task routing
celery_app.conf.task_routes = {
    'app.tasks.celery_tasks.compliance_refresh_task': {'queue': 'compliance'},
    'app.tasks.celery_tasks.send_notification_email_task': {'queue': 'email'},
    'app.tasks.celery_tasks.*': {'queue': 'notifications'},
}
