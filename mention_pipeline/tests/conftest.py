"""
Shared pytest configuration

Settings are cached on first use, so the environment is pinned before any
mention_pipeline module is imported.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["CLIENT_URL"] = "https://app.example.com"
os.environ["INITIALIZE_SCRAPING_ON_START"] = "false"
for _key in ("OPENAI_API_KEY", "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "SENTRY_DSN"):
    os.environ.pop(_key, None)

from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from mention_pipeline.core.config import get_settings
from mention_pipeline.core.dlq import DeadLetterTask  # noqa: F401
from mention_pipeline.db import models  # noqa: F401
from mention_pipeline.db.database import Base, SessionLocal
from mention_pipeline.services.source_adapters import AdapterRegistry
from mention_pipeline.tasks.celery_app import celery_app
from mention_pipeline.tasks.worker_resources import PipelineResources, set_pipeline_resources
from mention_pipeline.tests.fixtures.pipeline_fakes import (
    AllowAllLimiter,
    JobRecorder,
    RecordingNotifier,
    ScriptedResponder,
    SentTaskRecorder,
    StaticAdapter,
    seed_tenant,
)


@pytest.fixture(autouse=True)
def test_engine():
    """Fresh in-memory database bound to SessionLocal for every test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal.configure(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def settings():
    return get_settings().model_copy(update={
        "scrape_max_retries": 3,
        "scrape_initial_jitter_seconds": 60,
        "scrape_overdue_grace_minutes": 10,
        "scrape_duplicate_tolerance_seconds": 60,
        "scrape_fetch_timeout_seconds": 2.0,
        "escalation_threshold": 70,
        "reply_owner_policy": "unassigned",
        "scrape_failure_deactivation_threshold": None,
    })


@pytest.fixture
def jobs():
    return JobRecorder()


@pytest.fixture
def tenant():
    """Tenant with an owner, a manager, an agent and one active Google source"""
    return seed_tenant()


@pytest.fixture
def sent_tasks():
    """Jobs dispatched through celery_app.send_task, captured instead of published"""
    recorder = SentTaskRecorder()
    with patch.object(celery_app, "send_task", side_effect=recorder):
        yield recorder


@pytest.fixture
def install_resources(settings, sent_tasks):
    """Install process resources built on in-process fakes for the task wrappers"""
    def install(adapter=None, limiter=None, analyzer=None, notifier=None):
        resources = PipelineResources(
            rate_limiter=limiter or AllowAllLimiter(),
            registry=AdapterRegistry([adapter or StaticAdapter()]),
            analyzer=analyzer,
            responder=ScriptedResponder(replies=["Thanks!"]),
            notifier=notifier or RecordingNotifier(),
            settings=settings,
        )
        set_pipeline_resources(resources)
        return resources

    yield install
    set_pipeline_resources(None)
