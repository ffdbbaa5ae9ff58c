"""
Unit tests for per-pool worker entry points
"""
import pytest
from unittest.mock import patch

from mention_pipeline.tasks.celery_app import celery_app
from mention_pipeline.tasks.worker_pools import WORKER_POOLS, main, worker_argv


class TestWorkerPools:
    """Each pool consumes only its queues with its own concurrency cap"""

    @pytest.mark.parametrize("pool,cap", [
        ("scraping", 5),
        ("analysis", 10),
        ("notifications", 20),
        ("maintenance", 1),
    ])
    def test_default_caps(self, settings, pool, cap):
        assert WORKER_POOLS[pool].concurrency(settings) == cap
        assert f"--concurrency={cap}" in worker_argv(pool, settings)

    def test_caps_follow_settings(self, settings):
        tuned = settings.model_copy(update={"scrape_concurrency": 2, "analysis_concurrency": 7})

        assert "--concurrency=2" in worker_argv("scraping", tuned)
        assert "--concurrency=7" in worker_argv("analysis", tuned)

    def test_pools_consume_only_their_queues(self, settings):
        assert "--queues=scraping" in worker_argv("scraping", settings)
        assert "--queues=analysis" in worker_argv("analysis", settings)
        assert "--queues=notifications.high,notifications" in worker_argv("notifications", settings)

    def test_every_declared_queue_has_a_pool(self):
        consumed = {queue for pool in WORKER_POOLS.values() for queue in pool.queues}
        declared = {queue.name for queue in celery_app.conf.task_queues}

        assert consumed == declared

    def test_main_starts_worker_for_pool(self):
        with patch.object(celery_app, "worker_main") as worker_main:
            main(["analysis", "--beat"])

        argv = worker_main.call_args.kwargs["argv"]
        assert argv[0] == "worker"
        assert "--queues=analysis" in argv
        assert "--hostname=analysis@%h" in argv
        assert argv[-1] == "--beat"

    def test_unknown_pool_rejected(self):
        with pytest.raises(SystemExit):
            main(["reporting"])
