"""
Scrape Scheduler

Drives recurring polling of every active source account. The persisted
`next_scrape_at` marker is the durable record of when a source should run
next; delayed Celery jobs are the fast path and the overdue sweep is the
recovery path when a delayed job was lost.
"""
import logging
import random
from datetime import datetime, timedelta
from typing import Callable, Optional

from mention_pipeline.core.config import get_settings
from mention_pipeline.core.monitoring import ACTIVE_SOURCES
from mention_pipeline.db.models import SourceAccount
from mention_pipeline.tasks.db_session_manager import get_celery_db_session
from mention_pipeline.utils.time_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

# enqueue_scrape(source_account_id, countdown=None, eta=None)
EnqueueScrape = Callable[..., None]


class ScrapeScheduler:
    """Owns the next-run marker of every source account"""

    def __init__(self, enqueue_scrape: EnqueueScrape, session_factory=None, settings=None,
                 jitter: Callable[[float, float], float] = random.uniform):
        self.enqueue_scrape = enqueue_scrape
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.jitter = jitter

    def initialize(self) -> int:
        """
        Stagger a first scrape job for every active source

        Returns:
            Number of sources scheduled
        """
        now = utcnow()
        planned = []

        with get_celery_db_session(self.session_factory) as db:
            sources = db.query(SourceAccount).filter(SourceAccount.is_active == True).all()  # noqa: E712
            for source in sources:
                delay = self.jitter(0, self.settings.scrape_initial_jitter_seconds)
                source.next_scrape_at = now + timedelta(seconds=delay)
                planned.append((source.id, delay))

        for source_id, delay in planned:
            self.enqueue_scrape(source_id, countdown=int(delay))

        logger.info(f"Initialized scraping for {len(planned)} sources")
        return len(planned)

    def schedule_next(self, source_account_id: str) -> Optional[datetime]:
        """
        Persist and enqueue the next scrape cycle of a source

        Returns:
            The next run time, or None when the source is gone or inactive
        """
        with get_celery_db_session(self.session_factory) as db:
            source = db.get(SourceAccount, source_account_id)
            if source is None or not source.is_active:
                logger.info(f"Source {source_account_id} is inactive, not rescheduling")
                return None

            next_run = utcnow() + timedelta(minutes=source.polling_frequency_minutes)
            source.next_scrape_at = next_run

        self.enqueue_scrape(source_account_id, eta=next_run)
        logger.debug(f"Next scrape for source {source_account_id} at {next_run.isoformat()}")
        return next_run

    def is_stale_duplicate(self, source: SourceAccount, now: Optional[datetime] = None) -> bool:
        """True when another run already completed and pushed the marker forward"""
        next_scrape_at = as_utc(source.next_scrape_at)
        if next_scrape_at is None:
            return False
        now = now or utcnow()
        tolerance = timedelta(seconds=self.settings.scrape_duplicate_tolerance_seconds)
        return next_scrape_at > now + tolerance

    def dispatch_overdue(self) -> int:
        """
        Claim and enqueue active sources whose next run is overdue

        Returns:
            Number of sources dispatched
        """
        now = utcnow()
        cutoff = now - timedelta(minutes=self.settings.scrape_overdue_grace_minutes)
        claimed = []

        with get_celery_db_session(self.session_factory) as db:
            active = db.query(SourceAccount).filter(SourceAccount.is_active == True)  # noqa: E712
            ACTIVE_SOURCES.set(active.count())

            overdue = active.filter(
                (SourceAccount.next_scrape_at == None) | (SourceAccount.next_scrape_at < cutoff)  # noqa: E711
            ).all()

            for source in overdue:
                source.next_scrape_at = now
                claimed.append(source.id)

        for source_id in claimed:
            self.enqueue_scrape(source_id)

        if claimed:
            logger.warning(f"Dispatched {len(claimed)} overdue scrape jobs")
        return len(claimed)
