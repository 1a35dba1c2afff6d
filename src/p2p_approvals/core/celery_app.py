"""Celery application configuration.

Runs the scheduled approval maintenance jobs with a Redis broker:
- Reminders and escalation (high priority)
- Token refresh (normal priority)
- Delegation cleanup (low priority)
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init
from kombu import Exchange, Queue

from p2p_approvals.core.config import get_settings
from p2p_approvals.core.logging import configure_logging

settings = get_settings()

# Create Celery application
celery_app = Celery(
    "p2p_approvals",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["p2p_approvals.tasks.approval_tasks"],
)

default_exchange = Exchange("default", type="direct")
priority_exchange = Exchange("priority", type="direct")

# Priority: high (5) > normal (0) > low (-5)
celery_app.conf.task_queues = (
    Queue(
        "high",
        exchange=priority_exchange,
        routing_key="high",
        queue_arguments={"x-max-priority": 5},
    ),
    Queue(
        "normal",
        exchange=default_exchange,
        routing_key="normal",
        queue_arguments={"x-max-priority": 0},
    ),
    Queue(
        "low",
        exchange=default_exchange,
        routing_key="low",
        queue_arguments={"x-max-priority": -5},
    ),
)

celery_app.conf.task_default_queue = "normal"
celery_app.conf.task_default_exchange = "default"
celery_app.conf.task_default_routing_key = "normal"

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,

    result_expires=86400,

    # Worker configuration
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Logging
    worker_hijack_root_logger=False,

    # Broker settings
    broker_connection_retry_on_startup=True,
    broker_connection_max_retries=10,

    beat_scheduler="celery.beat:PersistentScheduler",
    beat_schedule_filename=".celery-beat-schedule",
)

# Celery Beat schedule (periodic tasks)
celery_app.conf.beat_schedule = {
    "send-approval-reminders": {
        "task": "p2p_approvals.tasks.approval_tasks.send_approval_reminders",
        "schedule": crontab(minute=0),  # Hourly
        "options": {"queue": "high"},
    },
    "escalate-overdue-tasks": {
        "task": "p2p_approvals.tasks.approval_tasks.escalate_overdue_tasks",
        "schedule": crontab(minute=30),  # Hourly, offset from reminders
        "options": {"queue": "high"},
    },
    "refresh-expiring-tokens": {
        "task": "p2p_approvals.tasks.approval_tasks.refresh_expiring_tokens",
        "schedule": crontab(minute=15, hour="*/6"),
        "options": {"queue": "normal"},
    },
    "cleanup-expired-delegations": {
        "task": "p2p_approvals.tasks.approval_tasks.cleanup_expired_delegations",
        "schedule": crontab(minute=0, hour=1),  # Daily at 1 AM
        "options": {"queue": "low"},
    },
}


@worker_process_init.connect
def init_worker_logging(**kwargs):
    """Install the application log handler in each worker process."""
    configure_logging(get_settings())
