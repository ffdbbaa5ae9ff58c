"""
Celery tasks for stakeholder notifications
"""
import logging
from typing import Any, Dict

from mention_pipeline.core.config import get_settings
from mention_pipeline.services.notification_service import NotificationJob
from mention_pipeline.tasks.celery_app import celery_app
from mention_pipeline.tasks.worker_resources import get_pipeline_resources

logger = logging.getLogger(__name__)

settings = get_settings()


@celery_app.task(
    bind=True,
    name='mention_pipeline.tasks.notification_tasks.send_mention_alert',
    max_retries=settings.notification_max_retries,
    acks_late=True,
    reject_on_worker_lost=True
)
def send_mention_alert(self, tenant_id: str, mention_id: str, type: str = "high-risk",
                       risk_tier: str = "high") -> Dict[str, Any]:
    """
    Fan a mention alert out to the tenant's OWNER/MANAGER recipients

    Per-recipient delivery failures are recorded in the result and never
    fail the job.
    """
    job = NotificationJob(tenant_id=tenant_id, mention_id=mention_id, type=type, risk_tier=risk_tier)
    report = get_pipeline_resources().notification_service.deliver(job)

    return {
        "mention_id": mention_id,
        "status": "completed",
        "delivered": report.delivered,
        "failed": report.failed,
    }


@celery_app.task(
    bind=True,
    name='mention_pipeline.tasks.notification_tasks.send_daily_summaries',
    acks_late=True
)
def send_daily_summaries(self) -> Dict[str, Any]:
    """Send the daily mention digest to every active tenant"""
    reports = get_pipeline_resources().summary_service.send_daily_summaries()
    return {
        "status": "completed",
        "tenants": len(reports),
        "delivered": sum(len(report.delivered) for report in reports),
        "failed": sum(len(report.failed) for report in reports),
    }
