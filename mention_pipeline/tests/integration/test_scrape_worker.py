"""
Integration tests for the scrape worker
"""
from datetime import timedelta

import pytest

from mention_pipeline.core.dlq import DeadLetterTask
from mention_pipeline.core.exceptions import PermanentParseError, TransientFetchError
from mention_pipeline.db.database import SessionLocal
from mention_pipeline.db.models import Mention, SourceAccount
from mention_pipeline.services.ingest_service import IngestService
from mention_pipeline.services.scrape_scheduler import ScrapeScheduler
from mention_pipeline.services.scrape_worker import ScrapeWorker
from mention_pipeline.services.source_adapters import AdapterRegistry, FacebookReviewsAdapter
from mention_pipeline.tests.fixtures.pipeline_fakes import (
    AllowAllLimiter,
    ExhaustedLimiter,
    StaticAdapter,
    raw_item,
    seed_tenant,
)
from mention_pipeline.utils.time_utils import as_utc, utcnow


def _source(source_id: str) -> SourceAccount:
    db = SessionLocal()
    try:
        return db.get(SourceAccount, source_id)
    finally:
        db.close()


def _update_source(source_id: str, **fields):
    db = SessionLocal()
    try:
        source = db.get(SourceAccount, source_id)
        for key, value in fields.items():
            setattr(source, key, value)
        db.commit()
    finally:
        db.close()


def _count(model) -> int:
    db = SessionLocal()
    try:
        return db.query(model).count()
    finally:
        db.close()


@pytest.fixture
def build_worker(jobs, settings):
    def build(*adapters, limiter=None, worker_settings=None):
        worker_settings = worker_settings or settings
        return ScrapeWorker(
            registry=AdapterRegistry(list(adapters)),
            rate_limiter=limiter or AllowAllLimiter(),
            ingest_service=IngestService(jobs.enqueue_analysis),
            scheduler=ScrapeScheduler(jobs.enqueue_scrape, settings=worker_settings),
            settings=worker_settings,
        )
    return build


class TestScrapeWorker:

    def test_successful_cycle(self, tenant, jobs, build_worker):
        adapter = StaticAdapter(items=[raw_item("r-1"), raw_item("r-2", stars=1, text="Cold food")])
        worker = build_worker(adapter)

        before = utcnow()
        outcome = worker.run(tenant.source_id)

        assert outcome.status == "completed"
        assert (outcome.items_found, outcome.items_created) == (2, 2)
        assert adapter.calls == [tenant.source_id]
        assert len(jobs.analyses) == 2

        source = _source(tenant.source_id)
        assert as_utc(source.last_scraped_at) >= before
        assert source.consecutive_failures == 0
        next_at = as_utc(source.next_scrape_at)
        assert before + timedelta(minutes=60) <= next_at <= utcnow() + timedelta(minutes=60)
        assert jobs.scrapes == [{"source_account_id": tenant.source_id, "countdown": None, "eta": outcome.next_scrape_at}]

    def test_rescrape_creates_no_duplicates(self, tenant, jobs, build_worker):
        worker = build_worker(StaticAdapter(items=[raw_item("r-1"), raw_item("r-2")]))

        worker.run(tenant.source_id)
        _update_source(tenant.source_id, next_scrape_at=None)
        outcome = worker.run(tenant.source_id)

        assert outcome.items_created == 0
        assert _count(Mention) == 2
        assert len(jobs.analyses) == 2
        assert len(jobs.scrapes) == 2

    def test_empty_page_still_reschedules(self, tenant, jobs, build_worker):
        outcome = build_worker(StaticAdapter(items=[])).run(tenant.source_id)

        assert outcome.status == "completed"
        assert outcome.next_scrape_at is not None
        assert len(jobs.scrapes) == 1

    def test_parse_error_counts_as_zero_items(self, tenant, jobs, build_worker):
        adapter = StaticAdapter(error=PermanentParseError("selector not found"))

        outcome = build_worker(adapter).run(tenant.source_id)

        assert outcome.status == "completed"
        assert outcome.items_found == 0
        assert len(jobs.scrapes) == 1

    def test_transient_error_requests_retry(self, tenant, jobs, build_worker):
        adapter = StaticAdapter(error=TransientFetchError("connection reset"))

        outcome = build_worker(adapter).run(tenant.source_id, retries_done=1, max_retries=3)

        assert outcome.status == "retry"
        assert jobs.scrapes == []
        source = _source(tenant.source_id)
        assert source.last_scraped_at is not None
        assert source.consecutive_failures == 0
        assert _count(DeadLetterTask) == 0

    def test_exhausted_retries_dead_letter_and_reschedule(self, tenant, jobs, build_worker):
        adapter = StaticAdapter(error=TransientFetchError("connection reset"))

        outcome = build_worker(adapter).run(tenant.source_id, retries_done=3, max_retries=3, task_id="job-1")

        assert outcome.status == "failed"
        assert outcome.next_scrape_at is not None
        assert len(jobs.scrapes) == 1
        assert _source(tenant.source_id).consecutive_failures == 1

        db = SessionLocal()
        try:
            entry = db.query(DeadLetterTask).one()
            assert entry.task_id == "job-1"
            assert entry.queue_name == "scraping"
            assert entry.failure_reason == "max_retries_exceeded"
            assert entry.tenant_id == tenant.tenant_id
            assert entry.original_kwargs == {"source_account_id": tenant.source_id}
        finally:
            db.close()

    def test_failure_threshold_deactivates_source(self, tenant, jobs, build_worker, settings):
        _update_source(tenant.source_id, consecutive_failures=1)
        strict = settings.model_copy(update={"scrape_failure_deactivation_threshold": 2})
        adapter = StaticAdapter(error=TransientFetchError("gone"))

        outcome = build_worker(adapter, worker_settings=strict).run(tenant.source_id, retries_done=3, max_retries=3)

        assert outcome.status == "failed"
        assert outcome.next_scrape_at is None
        assert jobs.scrapes == []
        source = _source(tenant.source_id)
        assert source.is_active is False
        assert source.consecutive_failures == 2

    def test_success_resets_failure_count(self, tenant, build_worker):
        _update_source(tenant.source_id, consecutive_failures=4)

        build_worker(StaticAdapter()).run(tenant.source_id)

        assert _source(tenant.source_id).consecutive_failures == 0

    def test_fetch_timeout_is_transient(self, tenant, jobs, build_worker, settings):
        fast = settings.model_copy(update={"scrape_fetch_timeout_seconds": 0.05})
        adapter = StaticAdapter(items=[raw_item("r-1")], delay=2.0)

        outcome = build_worker(adapter, worker_settings=fast).run(tenant.source_id, retries_done=0, max_retries=3)

        assert outcome.status == "retry"
        assert "timed out" in outcome.error
        assert _count(Mention) == 0

    def test_rate_limited_does_not_fetch(self, tenant, jobs, build_worker):
        adapter = StaticAdapter(items=[raw_item("r-1")])

        outcome = build_worker(adapter, limiter=ExhaustedLimiter(retry_after=17)).run(tenant.source_id)

        assert outcome.status == "rate_limited"
        assert outcome.retry_after == 17
        assert adapter.calls == []
        assert jobs.scrapes == []
        assert _source(tenant.source_id).last_scraped_at is None

    def test_inactive_source_skipped(self, tenant, jobs, build_worker):
        _update_source(tenant.source_id, is_active=False)
        adapter = StaticAdapter(items=[raw_item("r-1")])

        outcome = build_worker(adapter).run(tenant.source_id)

        assert outcome.status == "skipped"
        assert adapter.calls == []
        assert jobs.scrapes == []

    def test_missing_source_skipped(self, jobs, build_worker):
        assert build_worker(StaticAdapter()).run("missing").status == "skipped"

    def test_duplicate_job_after_reschedule_is_dropped(self, tenant, jobs, build_worker):
        _update_source(tenant.source_id, next_scrape_at=utcnow() + timedelta(minutes=45))
        adapter = StaticAdapter(items=[raw_item("r-1")])

        outcome = build_worker(adapter).run(tenant.source_id)

        assert outcome.status == "skipped"
        assert adapter.calls == []
        assert jobs.scrapes == []

    def test_missing_adapter_still_reschedules(self, tenant, jobs, build_worker):
        outcome = build_worker().run(tenant.source_id)

        assert outcome.status == "completed"
        assert len(jobs.scrapes) == 1

    def test_facebook_source_yields_nothing(self, jobs, build_worker):
        facebook = seed_tenant(platform="FACEBOOK")

        outcome = build_worker(FacebookReviewsAdapter()).run(facebook.source_id)

        assert outcome.status == "completed"
        assert outcome.items_found == 0
        assert len(jobs.scrapes) == 1
