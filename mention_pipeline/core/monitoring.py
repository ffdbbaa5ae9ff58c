"""
Pipeline Metrics and Error Tracking

Prometheus metrics for the scrape, ingest, analysis and notification stages,
plus Sentry initialization for worker processes.
"""
import logging
from typing import Any, Dict, Optional

import sentry_sdk
from prometheus_client import Counter, Histogram, Gauge, REGISTRY, generate_latest
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from mention_pipeline.core.config import get_settings

logger = logging.getLogger(__name__)

# ============================================================================
# Scrape Metrics
# ============================================================================

SCRAPE_JOBS_TOTAL = Counter(
    'mention_scrape_jobs_total',
    'Scrape jobs by platform and outcome',
    ['platform', 'outcome']
)

SCRAPE_FETCH_DURATION = Histogram(
    'mention_scrape_fetch_duration_seconds',
    'Time spent fetching a source page',
    ['platform'],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, float('inf')]
)

SCRAPE_RATE_LIMITED_TOTAL = Counter(
    'mention_scrape_rate_limited_total',
    'Scrape jobs deferred because the fetch rate window was full'
)

# ============================================================================
# Ingest Metrics
# ============================================================================

MENTIONS_INGESTED_TOTAL = Counter(
    'mentions_ingested_total',
    'Mention ingest attempts by platform and result',
    ['platform', 'result']  # result: created, duplicate
)

# ============================================================================
# Analysis Metrics
# ============================================================================

ANALYSIS_TOTAL = Counter(
    'mention_analysis_total',
    'Mention analyses by source of the result',
    ['source']  # source: analyzer, fallback
)

ANALYSIS_FAILED_TOTAL = Counter(
    'mention_analysis_failed_total',
    'Mentions flagged for manual follow-up after analysis retries were exhausted'
)

MENTION_RISK_SCORE = Histogram(
    'mention_risk_score',
    'Distribution of persisted risk scores',
    buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 100]
)

# ============================================================================
# Notification Metrics
# ============================================================================

NOTIFICATIONS_TOTAL = Counter(
    'mention_notifications_total',
    'Per-recipient alert deliveries by tier and outcome',
    ['risk_tier', 'outcome']  # outcome: delivered, failed
)

ACTIVE_SOURCES = Gauge(
    'mention_active_sources',
    'Active source accounts seen by the last overdue sweep'
)


def get_metrics() -> str:
    """Get metrics in Prometheus exposition format"""
    return generate_latest(REGISTRY).decode('utf-8')


class SentryIntegration:
    """Sentry error tracking for worker processes"""

    def __init__(self, dsn: Optional[str] = None):
        settings = get_settings()
        self.dsn = dsn or settings.sentry_dsn
        self.environment = settings.environment
        self.release = settings.version
        self.traces_sample_rate = settings.sentry_traces_sample_rate
        self.initialized = False

    def initialize(self) -> bool:
        if self.initialized:
            return True

        if not self.dsn:
            logger.info("Sentry DSN not configured, error tracking disabled")
            return False

        sentry_sdk.init(
            dsn=self.dsn,
            integrations=[
                CeleryIntegration(),
                SqlalchemyIntegration(),
            ],
            traces_sample_rate=self.traces_sample_rate,
            send_default_pii=False,  # phone numbers and author names stay out of Sentry
            environment=self.environment,
            release=self.release,
        )
        self.initialized = True
        logger.info("Sentry error tracking initialized")
        return True

    def capture_exception(self, exception: Exception, context: Optional[Dict[str, Any]] = None):
        """Capture exception with context"""
        if not self.initialized:
            return

        with sentry_sdk.new_scope() as scope:
            for key, value in (context or {}).items():
                scope.set_context(key, value)
            sentry_sdk.capture_exception(exception)


_sentry: Optional[SentryIntegration] = None


def get_sentry() -> SentryIntegration:
    global _sentry
    if _sentry is None:
        _sentry = SentryIntegration()
    return _sentry
