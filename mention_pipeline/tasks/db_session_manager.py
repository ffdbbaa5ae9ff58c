"""
Database Session Manager for pipeline jobs

Every job step opens a short-lived session, commits on success and always
closes it, so no connection is held across an external call.
"""
import functools
import logging
from contextlib import contextmanager
from typing import Callable, Generator, Optional

from sqlalchemy.orm import Session

from mention_pipeline.db.database import SessionLocal

logger = logging.getLogger(__name__)


@contextmanager
def get_celery_db_session(session_factory: Optional[Callable[[], Session]] = None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions in Celery tasks and services.

    Usage:
        with get_celery_db_session() as db:
            source = db.get(SourceAccount, source_account_id)
            # committed and closed on exit

    Args:
        session_factory: Session factory to use (defaults to SessionLocal)
    """
    db = (session_factory or SessionLocal)()

    try:
        yield db
        db.commit()

    except Exception as e:
        logger.error(f"Database error in pipeline job, rolling back: {e}")
        db.rollback()
        raise

    finally:
        db.close()


def with_db_session(task_func):
    """
    Decorator for Celery tasks that need database access.

    Injects a managed session as the first positional argument.

    Usage:
        @celery_app.task
        @with_db_session
        def my_task(db: Session):
            ...
    """
    @functools.wraps(task_func)
    def wrapper(*args, **kwargs):
        with get_celery_db_session() as db:
            return task_func(db, *args, **kwargs)

    return wrapper
