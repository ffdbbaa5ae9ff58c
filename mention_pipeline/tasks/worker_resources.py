"""
Process-wide pipeline resources

Created once per worker process on worker_process_init and released on
worker_process_shutdown. Tasks reach them through get_pipeline_resources();
tests install their own with set_pipeline_resources().
"""
import logging
from typing import Optional

from mention_pipeline.core.config import get_settings
from mention_pipeline.db.database import engine
from mention_pipeline.integrations.whatsapp_client import WhatsAppNotifier
from mention_pipeline.services.analysis_service import Analyzer, MentionAnalysisService, OpenAIAnalyzer
from mention_pipeline.services.ingest_service import IngestService
from mention_pipeline.services.notification_service import NotificationService, Notifier
from mention_pipeline.services.rate_limiter import SlidingWindowRateLimiter
from mention_pipeline.services.reply_service import OpenAIResponder, Responder
from mention_pipeline.services.scrape_scheduler import ScrapeScheduler
from mention_pipeline.services.scrape_worker import ScrapeWorker
from mention_pipeline.services.source_adapters import AdapterRegistry, build_default_registry
from mention_pipeline.services.summary_service import SummaryService
from mention_pipeline.tasks import job_queue

logger = logging.getLogger(__name__)


class PipelineResources:
    """Long-lived clients and the services built on them"""

    def __init__(
        self,
        rate_limiter: SlidingWindowRateLimiter,
        registry: AdapterRegistry,
        analyzer: Optional[Analyzer],
        responder: Optional[Responder],
        notifier: Notifier,
        session_factory=None,
        settings=None,
        dispose_engine: bool = False,
    ):
        self.settings = settings or get_settings()
        self.rate_limiter = rate_limiter
        self.registry = registry
        self.analyzer = analyzer
        self.responder = responder
        self.notifier = notifier
        self.session_factory = session_factory
        self._dispose_engine = dispose_engine

        self.scheduler = ScrapeScheduler(
            job_queue.enqueue_scrape, session_factory=session_factory, settings=self.settings
        )
        self.ingest_service = IngestService(job_queue.enqueue_analysis, session_factory=session_factory)
        self.scrape_worker = ScrapeWorker(
            registry, rate_limiter, self.ingest_service, self.scheduler,
            session_factory=session_factory, settings=self.settings,
        )
        self.analysis_service = MentionAnalysisService(
            analyzer, responder, job_queue.enqueue_notification,
            session_factory=session_factory, settings=self.settings,
        )
        self.notification_service = NotificationService(
            notifier, session_factory=session_factory, settings=self.settings
        )
        self.summary_service = SummaryService(notifier, session_factory=session_factory, settings=self.settings)

    @classmethod
    def create(cls, settings=None) -> "PipelineResources":
        settings = settings or get_settings()

        if not settings.openai_api_key:
            logger.warning("OpenAI API key not configured, analysis will use the fallback classifier")
        if not settings.twilio_configured:
            logger.warning("Twilio credentials not configured, WhatsApp alerts will fail")

        return cls(
            rate_limiter=SlidingWindowRateLimiter(redis_url=settings.redis_url, key_prefix="mention_pipeline"),
            registry=build_default_registry(
                timeout_seconds=settings.scrape_fetch_timeout_seconds,
                max_items=settings.scrape_max_items_per_page,
            ),
            analyzer=OpenAIAnalyzer() if settings.openai_api_key else None,
            responder=OpenAIResponder() if settings.openai_api_key else None,
            notifier=WhatsAppNotifier(),
            settings=settings,
            dispose_engine=True,
        )

    def close(self):
        self.rate_limiter.close()
        if self._dispose_engine:
            engine.dispose()
        logger.info("Pipeline resources released")


_resources: Optional[PipelineResources] = None


def get_pipeline_resources() -> PipelineResources:
    """Resources of this process, created on first use outside a worker"""
    global _resources
    if _resources is None:
        _resources = PipelineResources.create()
    return _resources


def set_pipeline_resources(resources: Optional[PipelineResources]):
    global _resources
    _resources = resources


def reset_pipeline_resources():
    """Close and drop the resources of this process"""
    global _resources
    if _resources is not None:
        _resources.close()
        _resources = None
