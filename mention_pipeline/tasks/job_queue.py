"""
Job enqueue helpers

Services enqueue follow-up jobs through these functions; tasks are addressed
by name so services never import task modules.
"""
import logging
from datetime import datetime
from typing import Optional

from mention_pipeline.services.notification_service import queue_for_tier
from mention_pipeline.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

SCRAPE_TASK = "mention_pipeline.tasks.scraping_tasks.scrape_source"
ANALYZE_TASK = "mention_pipeline.tasks.analysis_tasks.analyze_mention"
NOTIFY_TASK = "mention_pipeline.tasks.notification_tasks.send_mention_alert"


def enqueue_scrape(source_account_id: str, countdown: Optional[int] = None,
                   eta: Optional[datetime] = None):
    return celery_app.send_task(
        SCRAPE_TASK,
        kwargs={"source_account_id": source_account_id},
        queue="scraping",
        countdown=countdown,
        eta=eta,
    )


def enqueue_analysis(mention_id: str, reanalyze: bool = False):
    return celery_app.send_task(
        ANALYZE_TASK,
        kwargs={"mention_id": mention_id, "reanalyze": reanalyze},
        queue="analysis",
    )


def enqueue_notification(tenant_id: str, mention_id: str, type: str = "high-risk",
                         risk_tier: str = "high"):
    queue = queue_for_tier(risk_tier)
    logger.debug(f"Routing {type} alert for mention {mention_id} to {queue}")
    return celery_app.send_task(
        NOTIFY_TASK,
        kwargs={
            "tenant_id": tenant_id,
            "mention_id": mention_id,
            "type": type,
            "risk_tier": risk_tier,
        },
        queue=queue,
    )
