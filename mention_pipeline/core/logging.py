"""
Centralized Logging Configuration

Worker processes configure logging once through the Celery setup_logging
signal, so every pool writes the same shape: JSON in production or when
USE_JSON_LOGGING is set, a single human-readable line otherwise.
"""
import logging
import json
from datetime import datetime, timezone

from mention_pipeline.core.config import get_settings


# Pipeline identifiers copied onto JSON log entries when passed via `extra=`
CONTEXT_FIELDS = (
    'task_id',
    'source_account_id',
    'mention_id',
    'tenant_id',
    'platform',
    'duration_ms',
)

STANDARD_FORMAT = '[%(asctime)s] %(levelname)s %(processName)s %(name)s: %(message)s'

QUIET_LOGGERS = ('httpx', 'httpcore', 'openai', 'sqlalchemy.engine', 'alembic', 'celery.redirected')


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with pipeline context fields when present"""

    def __init__(self, service_name: str = 'mention-pipeline'):
        super().__init__()
        self.service_name = service_name

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'service': self.service_name,
            'level': record.levelname,
            'logger': record.name,
            'process': record.processName,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        return json.dumps(log_entry, default=str)


def use_json_logging(settings=None) -> bool:
    settings = settings or get_settings()
    return settings.use_json_logging or settings.environment.lower() == 'production'


def setup_logging(settings=None, service_name='mention-pipeline'):
    """
    Install one console handler on the root logger.

    Args:
        settings: Settings to read log level and format from
        service_name: Service name stamped on JSON entries
    """
    settings = settings or get_settings()
    numeric_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if use_json_logging(settings):
        formatter = JsonFormatter(service_name)
    else:
        formatter = logging.Formatter(STANDARD_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger(service_name)


def setup_worker_logging(settings=None):
    """Setup logging for Celery worker processes."""
    return setup_logging(settings, service_name='mention-pipeline-worker')
