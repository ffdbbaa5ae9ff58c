"""
Unit tests for worker logging configuration
"""
import json
import logging
import sys

import pytest

from mention_pipeline.core.logging import JsonFormatter, setup_worker_logging, use_json_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(**extra):
    record = logging.LogRecord("mention_pipeline.services.ingest_service", logging.INFO,
                               __file__, 10, "Ingested mention %s", ("m-1",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:

    def test_context_fields_are_included(self):
        entry = json.loads(JsonFormatter("svc").format(_record(mention_id="m-1", tenant_id="t-1")))

        assert entry["message"] == "Ingested mention m-1"
        assert entry["service"] == "svc"
        assert entry["level"] == "INFO"
        assert entry["mention_id"] == "m-1"
        assert entry["tenant_id"] == "t-1"
        assert "platform" not in entry

    def test_exception_is_formatted(self):
        try:
            raise ValueError("bad page")
        except ValueError:
            record = _record()
            record.exc_info = sys.exc_info()

        entry = json.loads(JsonFormatter().format(record))

        assert "ValueError: bad page" in entry["exception"]


class TestSetupWorkerLogging:

    def test_json_in_production(self, settings, root_logger):
        prod = settings.model_copy(update={"environment": "production", "log_level": "warning"})

        setup_worker_logging(prod)

        assert len(root_logger.handlers) == 1
        assert isinstance(root_logger.handlers[0].formatter, JsonFormatter)
        assert root_logger.level == logging.WARNING

    def test_standard_format_by_default(self, settings, root_logger):
        dev = settings.model_copy(update={"environment": "development", "use_json_logging": False})

        setup_worker_logging(dev)

        assert not use_json_logging(dev)
        assert not isinstance(root_logger.handlers[0].formatter, JsonFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING
