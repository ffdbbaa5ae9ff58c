"""
Integration tests for the scrape scheduler
"""
from datetime import timedelta

from mention_pipeline.db.database import SessionLocal
from mention_pipeline.db.models import SourceAccount
from mention_pipeline.services.scrape_scheduler import ScrapeScheduler
from mention_pipeline.tests.fixtures.pipeline_fakes import seed_tenant
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


class TestScrapeScheduler:

    def test_initialize_staggers_active_sources(self, tenant, jobs, settings):
        inactive = seed_tenant()
        _update_source(inactive.source_id, is_active=False)
        delays = iter([12.7, 45.2])
        scheduler = ScrapeScheduler(jobs.enqueue_scrape, settings=settings, jitter=lambda low, high: next(delays))

        before = utcnow()
        count = scheduler.initialize()

        assert count == 1
        assert jobs.scrapes == [{"source_account_id": tenant.source_id, "countdown": 12, "eta": None}]
        next_at = as_utc(_source(tenant.source_id).next_scrape_at)
        assert before + timedelta(seconds=12) <= next_at <= utcnow() + timedelta(seconds=13)
        assert _source(inactive.source_id).next_scrape_at is None

    def test_jitter_bounded_by_setting(self, tenant, jobs, settings):
        bounds = []
        scheduler = ScrapeScheduler(
            jobs.enqueue_scrape,
            settings=settings,
            jitter=lambda low, high: bounds.append((low, high)) or 0.0,
        )

        scheduler.initialize()

        assert bounds == [(0, 60)]

    def test_schedule_next_uses_polling_frequency(self, tenant, jobs, settings):
        scheduler = ScrapeScheduler(jobs.enqueue_scrape, settings=settings)

        before = utcnow()
        next_run = scheduler.schedule_next(tenant.source_id)

        assert before + timedelta(minutes=60) <= next_run <= utcnow() + timedelta(minutes=60)
        assert as_utc(_source(tenant.source_id).next_scrape_at) == next_run
        assert jobs.scrapes == [{"source_account_id": tenant.source_id, "countdown": None, "eta": next_run}]

    def test_schedule_next_skips_inactive(self, tenant, jobs, settings):
        _update_source(tenant.source_id, is_active=False)
        scheduler = ScrapeScheduler(jobs.enqueue_scrape, settings=settings)

        assert scheduler.schedule_next(tenant.source_id) is None
        assert scheduler.schedule_next("missing") is None
        assert jobs.scrapes == []

    def test_stale_duplicate_detection(self, tenant, jobs, settings):
        scheduler = ScrapeScheduler(jobs.enqueue_scrape, settings=settings)
        now = utcnow()
        source = SourceAccount(next_scrape_at=None)

        assert not scheduler.is_stale_duplicate(source, now)

        source.next_scrape_at = now + timedelta(seconds=30)
        assert not scheduler.is_stale_duplicate(source, now)

        source.next_scrape_at = now + timedelta(minutes=59)
        assert scheduler.is_stale_duplicate(source, now)

        source.next_scrape_at = now - timedelta(minutes=5)
        assert not scheduler.is_stale_duplicate(source, now)

    def test_dispatch_overdue_claims_lost_sources(self, tenant, jobs, settings):
        on_time = seed_tenant()
        never_scheduled = seed_tenant()
        _update_source(tenant.source_id, next_scrape_at=utcnow() - timedelta(minutes=30))
        _update_source(on_time.source_id, next_scrape_at=utcnow() + timedelta(minutes=20))
        scheduler = ScrapeScheduler(jobs.enqueue_scrape, settings=settings)

        dispatched = scheduler.dispatch_overdue()

        assert dispatched == 2
        assert {job["source_account_id"] for job in jobs.scrapes} == {tenant.source_id, never_scheduled.source_id}
        claimed_at = as_utc(_source(tenant.source_id).next_scrape_at)
        assert claimed_at > utcnow() - timedelta(minutes=1)

    def test_dispatch_overdue_respects_grace_period(self, tenant, jobs, settings):
        _update_source(tenant.source_id, next_scrape_at=utcnow() - timedelta(minutes=5))
        scheduler = ScrapeScheduler(jobs.enqueue_scrape, settings=settings)

        assert scheduler.dispatch_overdue() == 0

    def test_claimed_source_not_dispatched_twice(self, tenant, jobs, settings):
        _update_source(tenant.source_id, next_scrape_at=utcnow() - timedelta(hours=2))
        scheduler = ScrapeScheduler(jobs.enqueue_scrape, settings=settings)

        scheduler.dispatch_overdue()
        scheduler.dispatch_overdue()

        assert len(jobs.scrapes) == 1

    def test_dispatch_overdue_ignores_inactive(self, tenant, jobs, settings):
        _update_source(tenant.source_id, is_active=False, next_scrape_at=None)
        scheduler = ScrapeScheduler(jobs.enqueue_scrape, settings=settings)

        assert scheduler.dispatch_overdue() == 0
