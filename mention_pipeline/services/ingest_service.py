"""
Dedup/Ingest Gate

Turns RawItems into Mentions at most once per (platform, external_id). The
unique constraint is the source of truth; the pre-check only saves a
round-trip for the common duplicate case.
"""
import logging
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from mention_pipeline.core.monitoring import MENTIONS_INGESTED_TOTAL
from mention_pipeline.db.models import Mention, MentionStatus
from mention_pipeline.services.source_adapters import RawItem, SourceTarget
from mention_pipeline.tasks.db_session_manager import get_celery_db_session
from mention_pipeline.utils.time_utils import parse_published_hint, utcnow

logger = logging.getLogger(__name__)


class IngestService:
    """At-most-once Mention creation with exactly one analysis job per new Mention"""

    def __init__(self, enqueue_analysis: Callable[[str], None], session_factory=None):
        self.enqueue_analysis = enqueue_analysis
        self.session_factory = session_factory

    def ingest(self, source: SourceTarget, item: RawItem) -> Optional[str]:
        """
        Create a Mention for `item` unless one already exists

        Returns:
            The new mention id, or None when the item was a duplicate
        """
        with get_celery_db_session(self.session_factory) as db:
            if self._find_existing(db, source.platform, item.external_id):
                MENTIONS_INGESTED_TOTAL.labels(platform=source.platform, result="duplicate").inc()
                return None

            mention = Mention(
                tenant_id=source.tenant_id,
                location_id=source.location_id,
                source_account_id=source.id,
                platform=source.platform,
                external_id=item.external_id,
                url=item.url or f"{source.account_url}#{item.external_id}",
                author_name=item.author,
                text=item.text,
                stars=item.stars,
                published_at=parse_published_hint(item.published_at_hint, utcnow()),
                status=MentionStatus.NEW.value,
            )

            try:
                with db.begin_nested():
                    db.add(mention)
            except IntegrityError:
                # Lost the insert race to a concurrent worker
                logger.info(f"Mention {source.platform}/{item.external_id} inserted concurrently, skipping")
                MENTIONS_INGESTED_TOTAL.labels(platform=source.platform, result="duplicate").inc()
                return None

            mention_id = mention.id

        MENTIONS_INGESTED_TOTAL.labels(platform=source.platform, result="created").inc()
        logger.info(f"Ingested mention {mention_id} from source {source.id}")

        # Enqueued only after the insert is committed
        self.enqueue_analysis(mention_id)
        return mention_id

    def _find_existing(self, db: Session, platform: str, external_id: str) -> Optional[str]:
        row = db.query(Mention.id).filter(
            Mention.platform == platform,
            Mention.external_id == external_id,
        ).first()
        return row[0] if row else None
