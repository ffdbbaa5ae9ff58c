"""
Celery tasks for source scraping
"""
import logging
from typing import Any, Dict

from mention_pipeline.core.config import get_settings
from mention_pipeline.tasks.celery_app import celery_app
from mention_pipeline.tasks.job_queue import enqueue_scrape
from mention_pipeline.tasks.worker_resources import get_pipeline_resources

logger = logging.getLogger(__name__)

settings = get_settings()


def scrape_retry_delay(retries: int) -> int:
    """Exponential backoff for transient fetch failures"""
    delay = settings.scrape_retry_backoff_seconds * (2 ** retries)
    return min(delay, settings.scrape_retry_backoff_max_seconds)


@celery_app.task(
    bind=True,
    name='mention_pipeline.tasks.scraping_tasks.scrape_source',
    max_retries=settings.scrape_max_retries,
    acks_late=True,
    reject_on_worker_lost=True
)
def scrape_source(self, source_account_id: str) -> Dict[str, Any]:
    """
    Scrape one source account and schedule its next cycle

    Args:
        source_account_id: Source to scrape

    Returns:
        Scrape outcome summary
    """
    worker = get_pipeline_resources().scrape_worker
    outcome = worker.run(
        source_account_id,
        retries_done=self.request.retries,
        max_retries=self.max_retries,
        task_id=self.request.id,
    )

    if outcome.status == "rate_limited":
        # Rate-limit deferrals do not spend the retry budget
        enqueue_scrape(source_account_id, countdown=outcome.retry_after)
        logger.info(f"Scrape of {source_account_id} deferred {outcome.retry_after}s by rate limit")

    elif outcome.status == "retry":
        raise self.retry(countdown=scrape_retry_delay(self.request.retries))

    return {
        "source_account_id": source_account_id,
        "status": outcome.status,
        "items_found": outcome.items_found,
        "items_created": outcome.items_created,
        "next_scrape_at": outcome.next_scrape_at.isoformat() if outcome.next_scrape_at else None,
        "error": outcome.error,
    }


@celery_app.task(
    bind=True,
    name='mention_pipeline.tasks.scraping_tasks.initialize_scraping',
    acks_late=True
)
def initialize_scraping(self) -> Dict[str, Any]:
    """Stagger the first scrape of every active source"""
    scheduled = get_pipeline_resources().scheduler.initialize()
    return {"status": "completed", "sources_scheduled": scheduled}


@celery_app.task(
    bind=True,
    name='mention_pipeline.tasks.scraping_tasks.dispatch_overdue_scrapes',
    acks_late=True
)
def dispatch_overdue_scrapes(self) -> Dict[str, Any]:
    """Re-enqueue sources whose scheduled scrape never ran"""
    dispatched = get_pipeline_resources().scheduler.dispatch_overdue()
    return {"status": "completed", "sources_dispatched": dispatched}
