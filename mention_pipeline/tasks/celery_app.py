import os

from celery import Celery
from celery.schedules import crontab
from kombu import Queue

from mention_pipeline.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "mention_pipeline",
    broker=settings.get_celery_broker_url(),
    backend=settings.get_celery_result_backend(),
    include=[
        "mention_pipeline.tasks.worker_signals",
        "mention_pipeline.tasks.scraping_tasks",
        "mention_pipeline.tasks.analysis_tasks",
        "mention_pipeline.tasks.notification_tasks",
        "mention_pipeline.tasks.maintenance_tasks",
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    result_expires=1800,  # 30 minutes
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=8 * 60,  # 8 minutes

    # One prefetched job per worker slot
    worker_prefetch_multiplier=int(os.getenv('CELERY_WORKER_PREFETCH', '1')),
    worker_max_tasks_per_child=int(os.getenv('CELERY_MAX_TASKS_PER_CHILD', '200')),
    worker_pool=os.getenv('CELERY_WORKER_POOL', 'prefork'),

    # Task acknowledgment configuration for reliability
    task_acks_late=True,  # Acknowledge tasks only after completion
    task_reject_on_worker_lost=True,  # Redeliver if the worker dies mid-job

    broker_transport_options={
        'visibility_timeout': 7200,  # ETA jobs held longer than this are redelivered
        'queue_order_strategy': 'priority',  # drain queues in declared order
        'priority_steps': list(range(10)),
    },

    task_routes={
        'mention_pipeline.tasks.scraping_tasks.*': {'queue': 'scraping'},
        'mention_pipeline.tasks.analysis_tasks.*': {'queue': 'analysis'},
        'mention_pipeline.tasks.notification_tasks.send_mention_alert': {'queue': 'notifications'},
        'mention_pipeline.tasks.notification_tasks.send_daily_summaries': {'queue': 'notifications'},
        'mention_pipeline.tasks.maintenance_tasks.*': {'queue': 'maintenance'},
    },

    task_default_queue='maintenance',
    task_create_missing_queues=False,
)

# notifications.high is declared before notifications so a worker consuming
# both drains the high-risk lane first
celery_app.conf.task_queues = (
    Queue('scraping', routing_key='scraping', durable=True),
    Queue('analysis', routing_key='analysis', durable=True),
    Queue('notifications.high', routing_key='notifications.high', durable=True),
    Queue('notifications', routing_key='notifications', durable=True),
    Queue('maintenance', routing_key='maintenance', durable=True),
)

celery_app.conf.beat_schedule = {
    # Recovery path for scrape jobs lost between completion and requeue
    'dispatch-overdue-scrapes': {
        'task': 'mention_pipeline.tasks.scraping_tasks.dispatch_overdue_scrapes',
        'schedule': 60.0,  # Every minute
        'options': {'queue': 'scraping'},
    },

    # Mentions whose analysis job was lost
    'requeue-stale-mentions': {
        'task': 'mention_pipeline.tasks.analysis_tasks.requeue_stale_mentions',
        'schedule': 60.0 * 15,  # Every 15 minutes
        'options': {'queue': 'analysis'},
    },

    # Daily digest at 8 AM UTC
    'send-daily-summaries': {
        'task': 'mention_pipeline.tasks.notification_tasks.send_daily_summaries',
        'schedule': crontab(hour=8, minute=0),
        'options': {'queue': 'notifications'},
    },

    # Weekly DLQ cleanup on Sundays at 3 AM UTC
    'cleanup-dead-letter-tasks': {
        'task': 'mention_pipeline.tasks.maintenance_tasks.cleanup_old_dlq_entries',
        'schedule': crontab(hour=3, minute=0, day_of_week=0),
        'options': {'queue': 'maintenance'},
    },
}
