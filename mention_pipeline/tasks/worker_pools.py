"""
Worker pool entry points

Each pool runs as its own Celery worker that consumes only its queues, with
its concurrency cap read from settings:

    mention-worker scraping        # scraping, SCRAPE_CONCURRENCY (5)
    mention-worker analysis        # analysis, ANALYSIS_CONCURRENCY (10)
    mention-worker notifications   # notifications.high + notifications, NOTIFICATION_CONCURRENCY (20)
    mention-worker maintenance --beat
"""
import argparse
from dataclasses import dataclass
from typing import List, Optional, Tuple

from mention_pipeline.core.config import get_settings
from mention_pipeline.tasks.celery_app import celery_app


@dataclass(frozen=True)
class WorkerPool:
    name: str
    queues: Tuple[str, ...]
    concurrency_setting: str

    def concurrency(self, settings=None) -> int:
        return getattr(settings or get_settings(), self.concurrency_setting)


WORKER_POOLS = {
    "scraping": WorkerPool("scraping", ("scraping",), "scrape_concurrency"),
    "analysis": WorkerPool("analysis", ("analysis",), "analysis_concurrency"),
    # High-risk lane listed first so it drains before routine alerts
    "notifications": WorkerPool("notifications", ("notifications.high", "notifications"), "notification_concurrency"),
    "maintenance": WorkerPool("maintenance", ("maintenance",), "maintenance_concurrency"),
}


def worker_argv(pool_name: str, settings=None, beat: bool = False) -> List[str]:
    """Celery worker arguments for one pool"""
    settings = settings or get_settings()
    pool = WORKER_POOLS[pool_name]

    argv = [
        "worker",
        f"--queues={','.join(pool.queues)}",
        f"--concurrency={pool.concurrency(settings)}",
        f"--hostname={pool.name}@%h",
        f"--loglevel={settings.log_level}",
    ]
    if beat:
        argv.append("--beat")
    return argv


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description="Start one mention pipeline worker pool")
    parser.add_argument("pool", choices=sorted(WORKER_POOLS), help="Worker pool to run")
    parser.add_argument("--beat", action="store_true", help="Also run the periodic task scheduler")
    args = parser.parse_args(argv)

    celery_app.worker_main(argv=worker_argv(args.pool, beat=args.beat))


if __name__ == "__main__":
    main()
