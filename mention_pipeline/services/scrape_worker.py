"""
Scrape Worker

Executes one scrape job for one source account: rate-limit gate, adapter
fetch, ingest of every item and bookkeeping of the source row. The Celery
task wrapper only translates the returned ScrapeOutcome into retries and
re-enqueues.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from mention_pipeline.core.config import get_settings
from mention_pipeline.core.dlq import TaskFailureReason, handle_task_failure
from mention_pipeline.core.exceptions import PermanentParseError, RateLimitExceeded, TransientFetchError
from mention_pipeline.core.monitoring import SCRAPE_FETCH_DURATION, SCRAPE_JOBS_TOTAL, SCRAPE_RATE_LIMITED_TOTAL
from mention_pipeline.db.models import SourceAccount
from mention_pipeline.services.ingest_service import IngestService
from mention_pipeline.services.rate_limiter import SlidingWindowRateLimiter
from mention_pipeline.services.scrape_scheduler import ScrapeScheduler
from mention_pipeline.services.source_adapters import AdapterRegistry, RawItem, SourceAdapter, SourceTarget
from mention_pipeline.tasks.db_session_manager import get_celery_db_session
from mention_pipeline.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

FETCH_RATE_KEY = "scrape:fetch"


@dataclass
class ScrapeOutcome:
    """Result of one scrape job attempt"""
    source_account_id: str
    status: str  # skipped, rate_limited, retry, completed, failed
    items_found: int = 0
    items_created: int = 0
    retry_after: Optional[int] = None
    error: Optional[str] = None
    next_scrape_at: Optional[datetime] = None


class ScrapeWorker:
    """Runs scrape jobs against the adapter registry"""

    def __init__(
        self,
        registry: AdapterRegistry,
        rate_limiter: SlidingWindowRateLimiter,
        ingest_service: IngestService,
        scheduler: ScrapeScheduler,
        session_factory=None,
        settings=None,
    ):
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.ingest_service = ingest_service
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    def run(self, source_account_id: str, retries_done: int = 0,
            max_retries: Optional[int] = None, task_id: Optional[str] = None) -> ScrapeOutcome:
        """
        Run one scrape attempt

        Args:
            source_account_id: Source to scrape
            retries_done: Retries already spent on this job
            max_retries: Retry budget (defaults to settings.scrape_max_retries)
            task_id: Job id used for the dead-letter record

        Returns:
            ScrapeOutcome; status "retry" asks the caller to retry the job
            and "rate_limited" asks it to re-enqueue after retry_after seconds
        """
        if max_retries is None:
            max_retries = self.settings.scrape_max_retries

        with get_celery_db_session(self.session_factory) as db:
            source = db.get(SourceAccount, source_account_id)
            if source is None or not source.is_active:
                logger.info(f"Source {source_account_id} missing or inactive, skipping scrape")
                return ScrapeOutcome(source_account_id, "skipped")
            if self.scheduler.is_stale_duplicate(source):
                logger.info(f"Source {source_account_id} already rescheduled, dropping duplicate job")
                return ScrapeOutcome(source_account_id, "skipped")
            target = SourceTarget.from_model(source)

        adapter = self.registry.get(target.platform)
        if adapter is None:
            logger.error(f"No adapter registered for platform {target.platform}")
            return self._complete(target, [])

        try:
            self.rate_limiter.acquire(
                FETCH_RATE_KEY,
                self.settings.scrape_rate_limit,
                self.settings.scrape_rate_window_seconds,
            )
        except RateLimitExceeded as e:
            SCRAPE_RATE_LIMITED_TOTAL.inc()
            SCRAPE_JOBS_TOTAL.labels(platform=target.platform, outcome="rate_limited").inc()
            return ScrapeOutcome(source_account_id, "rate_limited", retry_after=e.retry_after)

        try:
            items = self._fetch(adapter, target)
        except PermanentParseError as e:
            logger.warning(f"Unparseable page for source {target.id}: {e}")
            items = []
        except TransientFetchError as e:
            return self._fetch_failed(target, e, retries_done, max_retries, task_id)

        return self._complete(target, items)

    def _fetch(self, adapter: SourceAdapter, target: SourceTarget) -> List[RawItem]:
        started = time.perf_counter()
        try:
            return asyncio.run(asyncio.wait_for(
                adapter.fetch(target),
                timeout=self.settings.scrape_fetch_timeout_seconds,
            ))
        except asyncio.TimeoutError as e:
            raise TransientFetchError(f"Fetch timed out for source {target.id}") from e
        finally:
            SCRAPE_FETCH_DURATION.labels(platform=target.platform).observe(time.perf_counter() - started)

    def _complete(self, target: SourceTarget, items: List[RawItem]) -> ScrapeOutcome:
        created = 0
        for item in items:
            if self.ingest_service.ingest(target, item):
                created += 1

        with get_celery_db_session(self.session_factory) as db:
            source = db.get(SourceAccount, target.id)
            if source is not None:
                source.last_scraped_at = utcnow()
                source.consecutive_failures = 0

        next_run = self.scheduler.schedule_next(target.id)

        SCRAPE_JOBS_TOTAL.labels(platform=target.platform, outcome="completed").inc()
        logger.info(
            f"Scraped source {target.id}: {len(items)} items, {created} new",
            extra={"source_account_id": target.id, "platform": target.platform},
        )
        return ScrapeOutcome(
            target.id, "completed",
            items_found=len(items), items_created=created, next_scrape_at=next_run,
        )

    def _fetch_failed(self, target: SourceTarget, error: TransientFetchError, retries_done: int,
                      max_retries: int, task_id: Optional[str]) -> ScrapeOutcome:
        exhausted = retries_done >= max_retries

        with get_celery_db_session(self.session_factory) as db:
            source = db.get(SourceAccount, target.id)
            if source is not None:
                source.last_scraped_at = utcnow()
                if exhausted:
                    source.consecutive_failures = (source.consecutive_failures or 0) + 1
                    threshold = self.settings.scrape_failure_deactivation_threshold
                    if threshold and source.consecutive_failures >= threshold:
                        source.is_active = False
                        logger.warning(
                            f"Deactivated source {target.id} after {source.consecutive_failures} failed cycles"
                        )

        if not exhausted:
            logger.warning(f"Transient fetch error for source {target.id} (retry {retries_done + 1}/{max_retries}): {error}")
            SCRAPE_JOBS_TOTAL.labels(platform=target.platform, outcome="retry").inc()
            return ScrapeOutcome(target.id, "retry", error=str(error))

        logger.error(f"Scrape retries exhausted for source {target.id}: {error}")
        handle_task_failure(
            task_id=task_id or f"scrape-{target.id}-{int(time.time())}",
            task_name="mention_pipeline.tasks.scraping_tasks.scrape_source",
            queue_name="scraping",
            error=error,
            retry_count=retries_done,
            tenant_id=target.tenant_id,
            task_kwargs={"source_account_id": target.id},
            failure_reason=TaskFailureReason.MAX_RETRIES_EXCEEDED,
        )

        next_run = self.scheduler.schedule_next(target.id)
        SCRAPE_JOBS_TOTAL.labels(platform=target.platform, outcome="failed").inc()
        return ScrapeOutcome(target.id, "failed", error=str(error), next_scrape_at=next_run)
