"""
Celery tasks for mention analysis
"""
import logging
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError

from mention_pipeline.core.config import get_settings
from mention_pipeline.core.dlq import TaskFailureReason, handle_task_failure
from mention_pipeline.tasks.celery_app import celery_app
from mention_pipeline.tasks.job_queue import enqueue_analysis
from mention_pipeline.tasks.worker_resources import get_pipeline_resources

logger = logging.getLogger(__name__)

settings = get_settings()


def analysis_retry_delay(retries: int) -> int:
    delay = settings.analysis_retry_backoff_seconds * (2 ** retries)
    return min(delay, settings.analysis_retry_backoff_max_seconds)


@celery_app.task(
    bind=True,
    name='mention_pipeline.tasks.analysis_tasks.analyze_mention',
    max_retries=settings.analysis_max_retries,
    acks_late=True,
    reject_on_worker_lost=True
)
def analyze_mention(self, mention_id: str, reanalyze: bool = False) -> Dict[str, Any]:
    """
    Analyze one mention, draft replies and escalate when high risk

    Persistence errors are retried with backoff; once the retry budget is
    spent the mention is flagged for manual follow-up and dead-lettered.
    """
    service = get_pipeline_resources().analysis_service

    try:
        service.record_attempt(mention_id)
        outcome = service.process(mention_id, reanalyze=reanalyze)

    except SQLAlchemyError as e:
        if self.request.retries < self.max_retries:
            retry_delay = analysis_retry_delay(self.request.retries)
            logger.warning(
                f"Retrying analysis of mention {mention_id}: retry_count={self.request.retries}, "
                f"delay={retry_delay}s, error={e}"
            )
            raise self.retry(countdown=retry_delay, exc=e)

        service.mark_analysis_failed(mention_id)
        handle_task_failure(
            task_id=self.request.id,
            task_name=self.name,
            queue_name="analysis",
            error=e,
            retry_count=self.request.retries,
            task_kwargs={"mention_id": mention_id, "reanalyze": reanalyze},
            failure_reason=TaskFailureReason.PERSISTENCE_ERROR,
        )
        return {"mention_id": mention_id, "status": "failed", "error": str(e), "sent_to_dlq": True}

    return {
        "mention_id": mention_id,
        "status": outcome.status,
        "risk_score": outcome.risk_score,
        "sentiment": outcome.sentiment,
        "source": outcome.source,
        "replies_created": outcome.replies_created,
        "escalated": outcome.escalated,
    }


@celery_app.task(
    bind=True,
    name='mention_pipeline.tasks.analysis_tasks.requeue_stale_mentions',
    acks_late=True
)
def requeue_stale_mentions(self) -> Dict[str, Any]:
    """Re-enqueue analysis for mentions whose analysis job was lost"""
    mention_ids = get_pipeline_resources().analysis_service.stale_mention_ids()
    for mention_id in mention_ids:
        enqueue_analysis(mention_id)

    if mention_ids:
        logger.warning(f"Re-enqueued analysis for {len(mention_ids)} stale mentions")
    return {"status": "completed", "mentions_requeued": len(mention_ids)}
