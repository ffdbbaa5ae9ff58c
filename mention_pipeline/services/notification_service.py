"""
Notification Router

Resolves alert recipients for a tenant and fans a message out to each one
independently; a failed delivery to one recipient never blocks the others.
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from mention_pipeline.core.config import get_settings
from mention_pipeline.core.exceptions import NotifierError
from mention_pipeline.core.monitoring import NOTIFICATIONS_TOTAL
from mention_pipeline.db.models import Mention, Tenant, User, UserRole
from mention_pipeline.tasks.db_session_manager import get_celery_db_session

logger = logging.getLogger(__name__)

ALERT_ROLES = (UserRole.OWNER.value, UserRole.MANAGER.value)

HIGH_PRIORITY_QUEUE = "notifications.high"
DEFAULT_QUEUE = "notifications"


class Notifier(ABC):
    """Message delivery capability"""

    @abstractmethod
    def send(self, address: str, message: str) -> bool:
        """
        Deliver one message

        Returns True once the channel accepted the message. A falsy return
        or any raised exception counts as a failed delivery.
        """


@dataclass
class NotificationJob:
    tenant_id: str
    mention_id: str
    type: str = "high-risk"
    risk_tier: str = "high"

    @property
    def queue(self) -> str:
        return queue_for_tier(self.risk_tier)


@dataclass
class Recipient:
    user_id: str
    email: str
    address: str


@dataclass
class DeliveryReport:
    mention_id: Optional[str]
    delivered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)


def queue_for_tier(risk_tier: str) -> str:
    return HIGH_PRIORITY_QUEUE if risk_tier == "high" else DEFAULT_QUEUE


def _digits(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def is_valid_phone(phone: Optional[str]) -> bool:
    """WhatsApp-deliverable numbers carry 10 to 15 digits"""
    return 10 <= len(_digits(phone)) <= 15


def format_phone(phone: str) -> str:
    return f"+{_digits(phone)}"


def truncate(text: str, limit: int) -> str:
    text = text or ""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def risk_symbol(risk_tier: str, risk_score: int) -> str:
    if risk_tier == "high" or risk_score > 70:
        return "🚨"
    if risk_score > 40:
        return "⚠️"
    return "ℹ️"


def sentiment_symbol(sentiment: Optional[str]) -> str:
    return {"POSITIVE": "😊", "NEGATIVE": "😟"}.get(sentiment or "", "😐")


def render_alert_message(mention: Mention, business_name: str, risk_tier: str, client_url: str,
                         text_limit: int = 200, reply_limit: int = 150) -> str:
    """WhatsApp body for a mention alert"""
    risk_score = mention.risk_score or 0
    lines = [
        f"{risk_symbol(risk_tier, risk_score)} *New {mention.platform} Review* {sentiment_symbol(mention.sentiment)}",
        "",
        f"*{business_name}*",
        f"From: {mention.author_name or 'Anonymous'}",
    ]
    if mention.stars:
        stars = max(0, min(5, int(mention.stars)))
        lines.append(f"Rating: {'⭐' * stars}{'☆' * (5 - stars)} ({mention.stars}/5)")
    lines += [
        f"Risk Score: {risk_score}/100",
        "",
        "*Review:*",
        f'"{truncate(mention.text, text_limit)}"',
        "",
    ]

    top_reply = next(iter(mention.replies), None)
    if top_reply is not None:
        lines += [
            "*Suggested Reply:*",
            f'"{truncate(top_reply.suggested_text, reply_limit)}"',
            "",
        ]

    lines.append(f"View & Reply: {client_url.rstrip('/')}/mentions/{mention.id}")
    return "\n".join(lines)


def resolve_recipients(db, tenant_id: str) -> List[Recipient]:
    """Active OWNER/MANAGER users of the tenant with a deliverable phone number"""
    users = db.query(User).filter(
        User.tenant_id == tenant_id,
        User.role.in_(ALERT_ROLES),
        User.is_active == True,  # noqa: E712
    ).order_by(User.created_at.asc(), User.id.asc()).all()

    recipients = []
    for user in users:
        if not is_valid_phone(user.phone):
            if user.phone:
                logger.warning(f"Skipping user {user.id}: invalid phone number")
            continue
        recipients.append(Recipient(user_id=user.id, email=user.email, address=format_phone(user.phone)))
    return recipients


def fan_out(notifier: Notifier, recipients: List[Recipient], message: str,
            risk_tier: str, mention_id: Optional[str] = None) -> DeliveryReport:
    """Send `message` to every recipient; failures are recorded, never raised"""
    report = DeliveryReport(mention_id=mention_id)
    for recipient in recipients:
        try:
            accepted = notifier.send(recipient.address, message)
        except NotifierError as e:
            logger.error(f"Failed to notify user {recipient.user_id}: {e}")
            accepted = False
        except Exception as e:
            logger.error(f"Unexpected error notifying user {recipient.user_id}: {e}", exc_info=True)
            accepted = False
        else:
            if not accepted:
                logger.error(f"Notifier rejected message for user {recipient.user_id}")

        if not accepted:
            report.failed.append(recipient.user_id)
            NOTIFICATIONS_TOTAL.labels(risk_tier=risk_tier, outcome="failed").inc()
            continue
        report.delivered.append(recipient.user_id)
        NOTIFICATIONS_TOTAL.labels(risk_tier=risk_tier, outcome="delivered").inc()
    return report


class NotificationService:
    """Delivers mention alerts for NotificationJobs"""

    def __init__(self, notifier: Notifier, session_factory=None, settings=None):
        self.notifier = notifier
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    def deliver(self, job: NotificationJob) -> DeliveryReport:
        with get_celery_db_session(self.session_factory) as db:
            tenant = db.get(Tenant, job.tenant_id)
            if tenant is None:
                logger.warning(f"Tenant {job.tenant_id} not found")
                return DeliveryReport(mention_id=job.mention_id)

            mention = db.get(Mention, job.mention_id)
            if mention is None:
                logger.warning(f"Mention {job.mention_id} not found")
                return DeliveryReport(mention_id=job.mention_id)

            message = render_alert_message(
                mention,
                tenant.business_name,
                job.risk_tier,
                self.settings.client_url,
                text_limit=self.settings.notification_text_limit,
                reply_limit=self.settings.notification_reply_limit,
            )
            recipients = resolve_recipients(db, job.tenant_id)

        report = fan_out(self.notifier, recipients, message, job.risk_tier, mention_id=job.mention_id)
        logger.info(
            f"Sent {job.type} alert for mention {job.mention_id}: "
            f"{len(report.delivered)} delivered, {len(report.failed)} failed",
            extra={"mention_id": job.mention_id, "tenant_id": job.tenant_id},
        )
        return report
