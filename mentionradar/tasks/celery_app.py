import os

from celery import Celery
from celery.signals import worker_process_init

from mentionradar.core.config import get_settings
from mentionradar.core.logging import setup_worker_logging
from mentionradar.core.monitoring import init_error_tracking
from mentionradar.services.plan_service import ALL_PLATFORMS

settings = get_settings()

SCAN_INTERVAL_SECONDS = 60.0 * 15
WEBHOOK_RETRY_INTERVAL_SECONDS = 60.0
STUCK_SCAN_RESET_INTERVAL_SECONDS = 60.0 * 15
WEBHOOK_CLEANUP_INTERVAL_SECONDS = 60.0 * 60.0 * 24 * 7

QUEUES = ("default", "scans", "analysis", "webhooks", "maintenance")

celery_app = Celery(
    "mentionradar",
    broker=settings.get_celery_broker_url(),
    backend=settings.get_celery_result_backend(),
    include=[
        "mentionradar.tasks.monitor_tasks",
        "mentionradar.tasks.analysis_tasks",
        "mentionradar.tasks.webhook_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=1800,  # 30 minutes
    task_track_started=True,
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,

    worker_concurrency=int(os.getenv('CELERY_WORKER_CONCURRENCY', '4')),
    worker_prefetch_multiplier=int(os.getenv('CELERY_WORKER_PREFETCH', '1')),
    worker_max_tasks_per_child=int(os.getenv('CELERY_MAX_TASKS_PER_CHILD', '100')),

    # A scan that dies mid-cycle is redelivered and resumes from its stage records
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_transport_options={
        'visibility_timeout': 3600,
    },

    task_routes={
        'mentionradar.tasks.monitor_tasks.reset_stuck_scans': {'queue': 'maintenance'},
        'mentionradar.tasks.monitor_tasks.*': {'queue': 'scans'},
        'mentionradar.tasks.analysis_tasks.*': {'queue': 'analysis'},
        'mentionradar.tasks.webhook_tasks.cleanup_old_deliveries': {'queue': 'maintenance'},
        'mentionradar.tasks.webhook_tasks.*': {'queue': 'webhooks'},
    },

    task_default_queue='default',
    task_default_exchange='default',
    task_default_routing_key='default',
    task_create_missing_queues=True,
)

celery_app.conf.task_queues = {
    name: {
        'exchange': name,
        'routing_key': name,
        'durable': True,
        'auto_delete': False,
    }
    for name in QUEUES
}


def build_beat_schedule():
    schedule = {
        f'scan-{platform}': {
            'task': 'mentionradar.tasks.monitor_tasks.scan_platform',
            'schedule': SCAN_INTERVAL_SECONDS,
            'args': (platform,),
            'options': {'queue': 'scans', 'expires': SCAN_INTERVAL_SECONDS},
        }
        for platform in ALL_PLATFORMS
    }

    # Webhook retry sweep - every minute
    schedule['retry-failed-webhooks'] = {
        'task': 'mentionradar.tasks.webhook_tasks.retry_failed_webhooks',
        'schedule': WEBHOOK_RETRY_INTERVAL_SECONDS,
        'options': {'queue': 'webhooks', 'expires': 55},
    }

    # Delivery history purge - weekly
    schedule['cleanup-webhook-deliveries'] = {
        'task': 'mentionradar.tasks.webhook_tasks.cleanup_old_deliveries',
        'schedule': WEBHOOK_CLEANUP_INTERVAL_SECONDS,
        'options': {'queue': 'maintenance', 'expires': 3600},
    }

    # Clear in-progress flags left by dead workers - every 15 minutes
    schedule['reset-stuck-scans'] = {
        'task': 'mentionradar.tasks.monitor_tasks.reset_stuck_scans',
        'schedule': STUCK_SCAN_RESET_INTERVAL_SECONDS,
        'options': {'queue': 'maintenance', 'expires': 600},
    }
    return schedule


celery_app.conf.beat_schedule = build_beat_schedule()


@worker_process_init.connect
def _configure_worker_logging(**kwargs):
    setup_worker_logging()
    init_error_tracking("worker")
