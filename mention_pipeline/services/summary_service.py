"""
Daily mention summary per tenant
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func

from mention_pipeline.core.config import get_settings
from mention_pipeline.db.models import Mention, Sentiment, Tenant
from mention_pipeline.services.notification_service import DeliveryReport, Notifier, fan_out, resolve_recipients
from mention_pipeline.tasks.db_session_manager import get_celery_db_session
from mention_pipeline.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class TenantSummary:
    tenant_id: str
    business_name: str
    total_mentions: int = 0
    positive: int = 0
    neutral: int = 0
    negative: int = 0
    avg_rating: Optional[float] = None
    high_risk_count: int = 0


def render_summary_message(summary: TenantSummary) -> str:
    lines = [
        f"📊 *Daily Summary: {summary.business_name}*",
        "",
        f"Total Mentions: {summary.total_mentions}",
        f"😊 Positive: {summary.positive}",
        f"😐 Neutral: {summary.neutral}",
        f"😟 Negative: {summary.negative}",
    ]
    if summary.avg_rating is not None:
        lines.append(f"⭐ Avg Rating: {summary.avg_rating:.1f}/5")
    if summary.high_risk_count > 0:
        lines += ["", f"🚨 {summary.high_risk_count} high-risk reviews need attention!"]
    return "\n".join(lines)


class SummaryService:
    """Builds and sends the daily digest"""

    def __init__(self, notifier: Notifier, session_factory=None, settings=None):
        self.notifier = notifier
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    def build_summary(self, tenant_id: str, since: datetime, until: Optional[datetime] = None) -> Optional[TenantSummary]:
        until = until or utcnow()
        with get_celery_db_session(self.session_factory) as db:
            tenant = db.get(Tenant, tenant_id)
            if tenant is None:
                return None

            window = db.query(Mention).filter(
                Mention.tenant_id == tenant_id,
                Mention.created_at >= since,
                Mention.created_at < until,
            )

            summary = TenantSummary(tenant_id=tenant_id, business_name=tenant.business_name)
            summary.total_mentions = window.count()

            counts = dict(
                window.with_entities(Mention.sentiment, func.count(Mention.id))
                .group_by(Mention.sentiment)
                .all()
            )
            summary.positive = counts.get(Sentiment.POSITIVE.value, 0)
            summary.neutral = counts.get(Sentiment.NEUTRAL.value, 0)
            summary.negative = counts.get(Sentiment.NEGATIVE.value, 0)

            avg_rating = window.with_entities(func.avg(Mention.stars)).filter(Mention.stars != None).scalar()  # noqa: E711
            summary.avg_rating = float(avg_rating) if avg_rating is not None else None

            summary.high_risk_count = window.filter(
                Mention.risk_score >= self.settings.escalation_threshold
            ).count()

        return summary

    def send_daily_summaries(self, now: Optional[datetime] = None) -> List[DeliveryReport]:
        """Send the last 24 hours' digest to every tenant with activity"""
        now = now or utcnow()
        since = now - timedelta(days=1)

        with get_celery_db_session(self.session_factory) as db:
            tenant_ids = [row[0] for row in db.query(Tenant.id).all()]

        reports = []
        for tenant_id in tenant_ids:
            summary = self.build_summary(tenant_id, since, now)
            if summary is None or summary.total_mentions == 0:
                continue

            with get_celery_db_session(self.session_factory) as db:
                recipients = resolve_recipients(db, tenant_id)

            report = fan_out(self.notifier, recipients, render_summary_message(summary), "summary")
            reports.append(report)
            logger.info(f"Daily summary for tenant {tenant_id}: {len(report.delivered)} delivered")

        return reports
