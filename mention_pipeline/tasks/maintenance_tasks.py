"""
Celery maintenance tasks
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from mention_pipeline.core.config import get_settings
from mention_pipeline.core.dlq import TaskFailureReason, get_dlq_manager
from mention_pipeline.tasks.celery_app import celery_app
from mention_pipeline.tasks.db_session_manager import with_db_session

logger = logging.getLogger(__name__)


@celery_app.task(
    name='mention_pipeline.tasks.maintenance_tasks.cleanup_old_dlq_entries',
    acks_late=True
)
@with_db_session
def cleanup_old_dlq_entries(db: Session) -> Dict[str, Any]:
    """Delete requeued dead-letter records past the retention window"""
    dlq = get_dlq_manager(db)
    deleted = dlq.cleanup_old_tasks(days_old=get_settings().dlq_retention_days)
    health = dlq.get_queue_health_stats()

    if health["manual_review_required"]:
        logger.warning(f"{health['manual_review_required']} dead-letter jobs await manual review")

    return {"status": "completed", "deleted": deleted, "health_stats": health}


@celery_app.task(
    name='mention_pipeline.tasks.maintenance_tasks.requeue_dead_letter_tasks',
    acks_late=True
)
@with_db_session
def requeue_dead_letter_tasks(db: Session, queue_name: Optional[str] = None,
                              failure_reason: Optional[str] = None, limit: int = 100) -> Dict[str, Any]:
    """
    Re-dispatch dead-lettered jobs and mark them requeued

    Operator-triggered, e.g. after an analyzer outage:
        celery -A mention_pipeline.tasks.celery_app call \\
            mention_pipeline.tasks.maintenance_tasks.requeue_dead_letter_tasks \\
            --kwargs '{"queue_name": "analysis"}'
    """
    dlq = get_dlq_manager(db)
    reason = TaskFailureReason(failure_reason) if failure_reason else None
    declared_queues = {queue.name for queue in celery_app.conf.task_queues}

    requeued = []
    for task in dlq.get_failed_tasks(queue_name=queue_name, failure_reason=reason,
                                     is_requeued=False, limit=limit):
        options = {"queue": task.queue_name} if task.queue_name in declared_queues else {}
        celery_app.send_task(
            task.task_name,
            args=list(task.original_args or []),
            kwargs=dict(task.original_kwargs or {}),
            **options,
        )
        if dlq.requeue_task(task.task_id):
            requeued.append(task.task_id)

    logger.info(f"Requeued {len(requeued)} dead-letter jobs")
    return {"status": "completed", "requeued": requeued}
