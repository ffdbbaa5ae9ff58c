"""
Dead Letter Queue (DLQ) for pipeline jobs
Records jobs that exhausted their retries so an operator can review them.
Requeueing runs through the maintenance task requeue_dead_letter_tasks.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, List
from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Boolean
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from mention_pipeline.core.exceptions import (
    AnalyzerError,
    NotifierError,
    PermanentParseError,
    RateLimitExceeded,
    ResponderError,
    TransientFetchError,
)
from mention_pipeline.db.database import Base, SessionLocal

logger = logging.getLogger(__name__)


class TaskFailureReason(str, Enum):
    """Task failure categorization"""
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    NETWORK_ERROR = "network_error"
    FETCH_ERROR = "fetch_error"
    PARSE_ERROR = "parse_error"
    ANALYSIS_ERROR = "analysis_error"
    DELIVERY_ERROR = "delivery_error"
    PERSISTENCE_ERROR = "persistence_error"
    INVALID_DATA = "invalid_data"
    INTERNAL_ERROR = "internal_error"
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"


class DeadLetterTask(Base):
    """
    Dead Letter Queue table for permanently failed pipeline jobs
    """
    __tablename__ = "dead_letter_tasks"

    id = Column(Integer, primary_key=True, index=True)

    # Task identification
    task_id = Column(String, unique=True, nullable=False, index=True)
    task_name = Column(String, nullable=False, index=True)
    queue_name = Column(String, nullable=False, index=True)

    tenant_id = Column(String, nullable=True, index=True)

    # Task data
    original_args = Column(JSON, nullable=True)
    original_kwargs = Column(JSON, nullable=True)

    # Failure information
    failure_reason = Column(String, nullable=False, index=True)  # TaskFailureReason value
    error_message = Column(Text, nullable=True)
    error_traceback = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0)

    # Timestamps
    first_failure_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    last_retry_at = Column(DateTime(timezone=True), nullable=True)
    moved_to_dlq_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    # Processing status
    is_requeued = Column(Boolean, default=False)
    requeued_at = Column(DateTime(timezone=True), nullable=True)
    requires_manual_review = Column(Boolean, default=False)

    task_metadata = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<DeadLetterTask(task_id={self.task_id}, task_name={self.task_name}, reason={self.failure_reason})>"


class DLQManager:
    """
    Dead Letter Queue Manager

    Handles failed task storage, requeue marking and health reporting
    """

    def __init__(self, db: Optional[Session] = None):
        """
        Initialize DLQ Manager

        Args:
            db: Optional database session (opens its own session if None)
        """
        self.db = db
        self._should_close_db = db is None

        if self.db is None:
            self.db = SessionLocal()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._should_close_db and self.db:
            self.db.close()

    def record_task_failure(
        self,
        task_id: str,
        task_name: str,
        queue_name: str,
        failure_reason: TaskFailureReason,
        error_message: str,
        args: Optional[tuple] = None,
        kwargs: Optional[dict] = None,
        error_traceback: Optional[str] = None,
        tenant_id: Optional[str] = None,
        retry_count: int = 0,
        metadata: Optional[Dict[str, Any]] = None
    ) -> DeadLetterTask:
        """
        Record a failed task in the DLQ

        Args:
            task_id: Unique task identifier
            task_name: Name of the failed task
            queue_name: Queue the task was running in
            failure_reason: Categorized failure reason
            error_message: Human-readable error message
            args: Original task arguments
            kwargs: Original task keyword arguments
            error_traceback: Full error traceback
            tenant_id: Tenant the job belonged to (if known)
            retry_count: Number of retries attempted
            metadata: Additional context data

        Returns:
            DeadLetterTask record
        """
        try:
            existing = self.db.query(DeadLetterTask).filter(
                DeadLetterTask.task_id == task_id
            ).first()

            if existing:
                existing.last_retry_at = datetime.now(timezone.utc)
                existing.retry_count = retry_count
                existing.error_message = error_message
                existing.error_traceback = error_traceback
                existing.failure_reason = failure_reason.value

                if metadata:
                    existing.task_metadata = {**(existing.task_metadata or {}), **metadata}

                dlq_task = existing
                logger.info(f"Updated existing DLQ record for task {task_id}")
            else:
                dlq_task = DeadLetterTask(
                    task_id=task_id,
                    task_name=task_name,
                    queue_name=queue_name,
                    tenant_id=tenant_id,
                    original_args=list(args) if args else None,
                    original_kwargs=dict(kwargs) if kwargs else None,
                    failure_reason=failure_reason.value,
                    error_message=error_message,
                    error_traceback=error_traceback,
                    retry_count=retry_count,
                    requires_manual_review=self._requires_manual_review(failure_reason),
                    task_metadata=metadata
                )

                self.db.add(dlq_task)
                logger.info(f"Created new DLQ record for task {task_id}")

            self.db.commit()
            return dlq_task

        except SQLAlchemyError as e:
            logger.error(f"Failed to record DLQ task {task_id}: {e}")
            self.db.rollback()
            raise

    def _requires_manual_review(self, failure_reason: TaskFailureReason) -> bool:
        """Failures an operator has to look at before requeueing"""
        manual_review_reasons = {
            TaskFailureReason.PERSISTENCE_ERROR,
            TaskFailureReason.INVALID_DATA,
            TaskFailureReason.INTERNAL_ERROR,
            TaskFailureReason.MAX_RETRIES_EXCEEDED,
        }

        return failure_reason in manual_review_reasons

    def get_failed_tasks(
        self,
        queue_name: Optional[str] = None,
        failure_reason: Optional[TaskFailureReason] = None,
        tenant_id: Optional[str] = None,
        requires_manual_review: Optional[bool] = None,
        is_requeued: Optional[bool] = None,
        limit: int = 100
    ) -> List[DeadLetterTask]:
        """Retrieve failed tasks from the DLQ, most recent first"""
        query = self.db.query(DeadLetterTask)

        if queue_name:
            query = query.filter(DeadLetterTask.queue_name == queue_name)

        if failure_reason:
            query = query.filter(DeadLetterTask.failure_reason == failure_reason.value)

        if tenant_id is not None:
            query = query.filter(DeadLetterTask.tenant_id == tenant_id)

        if requires_manual_review is not None:
            query = query.filter(DeadLetterTask.requires_manual_review == requires_manual_review)

        if is_requeued is not None:
            query = query.filter(DeadLetterTask.is_requeued == is_requeued)

        query = query.order_by(DeadLetterTask.moved_to_dlq_at.desc())

        return query.limit(limit).all()

    def requeue_task(self, task_id: str) -> bool:
        """
        Mark a task as requeued for manual retry

        Args:
            task_id: Task ID to requeue

        Returns:
            True if successfully requeued
        """
        try:
            dlq_task = self.db.query(DeadLetterTask).filter(
                DeadLetterTask.task_id == task_id
            ).first()

            if not dlq_task:
                logger.warning(f"DLQ task {task_id} not found for requeue")
                return False

            dlq_task.is_requeued = True
            dlq_task.requeued_at = datetime.now(timezone.utc)

            self.db.commit()

            logger.info(f"Marked DLQ task {task_id} as requeued")
            return True

        except SQLAlchemyError as e:
            logger.error(f"Failed to requeue DLQ task {task_id}: {e}")
            self.db.rollback()
            return False

    def cleanup_old_tasks(self, days_old: int = 30) -> int:
        """
        Delete requeued DLQ records older than `days_old` days

        Returns:
            Number of records deleted
        """
        try:
            cutoff_date = datetime.now(timezone.utc) - timedelta(days=days_old)

            deleted_count = self.db.query(DeadLetterTask).filter(
                DeadLetterTask.moved_to_dlq_at < cutoff_date,
                DeadLetterTask.is_requeued == True  # noqa: E712
            ).delete(synchronize_session=False)

            self.db.commit()

            logger.info(f"Cleaned up {deleted_count} old DLQ records")
            return deleted_count

        except SQLAlchemyError as e:
            logger.error(f"Failed to cleanup old DLQ tasks: {e}")
            self.db.rollback()
            return 0

    def get_queue_health_stats(self) -> Dict[str, Any]:
        """
        Get DLQ health statistics

        Returns:
            Dictionary with DLQ health metrics
        """
        total_failed = self.db.query(DeadLetterTask).count()

        queue_stats = self.db.query(
            DeadLetterTask.queue_name,
            func.count(DeadLetterTask.id).label('count')
        ).group_by(DeadLetterTask.queue_name).all()

        reason_stats = self.db.query(
            DeadLetterTask.failure_reason,
            func.count(DeadLetterTask.id).label('count')
        ).group_by(DeadLetterTask.failure_reason).all()

        manual_review_count = self.db.query(DeadLetterTask).filter(
            DeadLetterTask.requires_manual_review == True,  # noqa: E712
            DeadLetterTask.is_requeued == False  # noqa: E712
        ).count()

        return {
            "total_failed_tasks": total_failed,
            "manual_review_required": manual_review_count,
            "failures_by_queue": {queue: count for queue, count in queue_stats},
            "failures_by_reason": {reason: count for reason, count in reason_stats},
            "timestamp": datetime.now(timezone.utc).isoformat()
        }


def get_dlq_manager(db: Optional[Session] = None) -> DLQManager:
    """Get DLQ manager instance"""
    return DLQManager(db=db)


def handle_task_failure(
    task_id: str,
    task_name: str,
    queue_name: str,
    error: Exception,
    traceback_str: Optional[str] = None,
    retry_count: int = 0,
    tenant_id: Optional[str] = None,
    task_args: Optional[tuple] = None,
    task_kwargs: Optional[dict] = None,
    failure_reason: Optional[TaskFailureReason] = None
) -> None:
    """
    Record a permanently failed job in the DLQ

    Recording errors are logged and not raised so a broken DLQ never masks
    the original failure.
    """
    try:
        reason = failure_reason or _categorize_failure(error)

        with get_dlq_manager() as dlq:
            dlq.record_task_failure(
                task_id=task_id,
                task_name=task_name,
                queue_name=queue_name,
                failure_reason=reason,
                error_message=str(error),
                error_traceback=traceback_str,
                retry_count=retry_count,
                tenant_id=tenant_id,
                args=task_args,
                kwargs=task_kwargs,
                metadata={
                    "error_type": type(error).__name__,
                    "timestamp": datetime.now(timezone.utc).isoformat()
                }
            )

    except Exception as dlq_error:
        logger.error(f"Failed to record task failure in DLQ: {dlq_error}")


def _categorize_failure(error: Exception) -> TaskFailureReason:
    """
    Categorize failure based on exception type and message

    Args:
        error: The exception that caused the failure

    Returns:
        TaskFailureReason enum value
    """
    if isinstance(error, RateLimitExceeded):
        return TaskFailureReason.RATE_LIMIT
    if isinstance(error, TransientFetchError):
        return TaskFailureReason.FETCH_ERROR
    if isinstance(error, PermanentParseError):
        return TaskFailureReason.PARSE_ERROR
    if isinstance(error, (AnalyzerError, ResponderError)):
        return TaskFailureReason.ANALYSIS_ERROR
    if isinstance(error, NotifierError):
        return TaskFailureReason.DELIVERY_ERROR
    if isinstance(error, SQLAlchemyError):
        return TaskFailureReason.PERSISTENCE_ERROR

    error_type = type(error).__name__
    error_message = str(error).lower()

    if 'timeout' in error_message or error_type in ['TimeoutError', 'ConnectTimeout']:
        return TaskFailureReason.TIMEOUT

    if 'connection' in error_message or 'network' in error_message or error_type in ['ConnectionError', 'ConnectError']:
        return TaskFailureReason.NETWORK_ERROR

    if 'validation' in error_message or 'invalid' in error_message or error_type in ['ValidationError', 'ValueError']:
        return TaskFailureReason.INVALID_DATA

    return TaskFailureReason.INTERNAL_ERROR
