"""
Celery worker lifecycle hooks

Logging and error tracking setup, per-process resource lifecycle, scrape
initialization on startup and dead-letter recording of failed jobs.
"""
import logging

from celery.signals import (
    setup_logging,
    task_failure,
    worker_process_init,
    worker_process_shutdown,
    worker_ready,
)

from mention_pipeline.core.config import get_settings
from mention_pipeline.core.dlq import handle_task_failure
from mention_pipeline.core.logging import setup_worker_logging
from mention_pipeline.core.monitoring import get_sentry
from mention_pipeline.tasks.worker_resources import (
    PipelineResources,
    reset_pipeline_resources,
    set_pipeline_resources,
)

logger = logging.getLogger(__name__)

INITIALIZE_TASK = "mention_pipeline.tasks.scraping_tasks.initialize_scraping"


@setup_logging.connect
def configure_worker_logging(**kwargs):
    setup_worker_logging()


@worker_process_init.connect
def init_worker_process(**kwargs):
    get_sentry().initialize()
    set_pipeline_resources(PipelineResources.create())
    logger.info("Worker process resources initialized")


@worker_process_shutdown.connect
def shutdown_worker_process(**kwargs):
    reset_pipeline_resources()


def _consumed_queues(consumer):
    return set(consumer.app.amqp.queues.consume_from.keys())


@worker_ready.connect
def start_scraping(sender=None, **kwargs):
    if not get_settings().initialize_scraping_on_start or sender is None:
        return
    if "scraping" not in _consumed_queues(sender):
        return

    sender.app.send_task(INITIALIZE_TASK, queue="scraping")
    logger.info("Queued scrape initialization")


@task_failure.connect
def record_failed_task(sender=None, task_id=None, exception=None, args=None, kwargs=None,
                       einfo=None, **kwds):
    request = getattr(sender, "request", None)
    delivery_info = getattr(request, "delivery_info", None) or {}
    task_kwargs = kwargs or {}

    handle_task_failure(
        task_id=task_id,
        task_name=getattr(sender, "name", "unknown"),
        queue_name=delivery_info.get("routing_key") or "unknown",
        error=exception,
        traceback_str=str(einfo) if einfo else None,
        retry_count=getattr(request, "retries", 0) or 0,
        tenant_id=task_kwargs.get("tenant_id"),
        task_args=args,
        task_kwargs=task_kwargs,
    )
    get_sentry().capture_exception(exception, {"task": {"name": getattr(sender, "name", None), "task_id": task_id}})
