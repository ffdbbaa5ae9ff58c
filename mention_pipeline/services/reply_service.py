"""
Suggested reply generation

Drafts candidate responses for an analyzed mention. Any responder failure
degrades to one deterministic template reply.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from openai import AsyncOpenAI, OpenAIError
from sqlalchemy.orm import Session

from mention_pipeline.core.config import get_settings
from mention_pipeline.core.exceptions import ResponderError
from mention_pipeline.db.models import Sentiment, User, UserRole

logger = logging.getLogger(__name__)

TONE_INSTRUCTIONS = {
    "friendly": "warm, personable, and appreciative",
    "formal": "professional and respectful",
    "apologetic": "sincere, empathetic, and solution-focused",
    "concise": "brief and direct",
}


@dataclass
class ReplyOptions:
    tone: str
    max_words: int
    business_name: str
    country: str


def reply_tone(sentiment: str) -> str:
    return "apologetic" if sentiment == Sentiment.NEGATIVE.value else "friendly"


class Responder(ABC):
    """Reply drafting capability"""

    @abstractmethod
    def generate_replies(self, text: str, stars: Optional[int], sentiment: str,
                         topics: List[str], options: ReplyOptions) -> List[str]:
        """Return up to three candidate replies; raise ResponderError on failure"""


class OpenAIResponder(Responder):
    """Responder backed by an OpenAI chat model"""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 timeout_seconds: Optional[float] = None):
        settings = get_settings()
        self.api_key = api_key or settings.openai_api_key
        self.model = model or settings.reply_model
        self.timeout_seconds = timeout_seconds or settings.responder_timeout_seconds

    def generate_replies(self, text: str, stars: Optional[int], sentiment: str,
                         topics: List[str], options: ReplyOptions) -> List[str]:
        if not self.api_key:
            raise ResponderError("OpenAI API key not configured")

        try:
            content = asyncio.run(asyncio.wait_for(
                self._complete(self._build_prompt(text, stars, sentiment, topics, options)),
                timeout=self.timeout_seconds,
            ))
        except asyncio.TimeoutError as e:
            raise ResponderError(f"Reply generation timed out after {self.timeout_seconds}s") from e
        except OpenAIError as e:
            raise ResponderError(f"Reply generation failed: {e}") from e

        return parse_replies(content)

    async def _complete(self, prompt: str) -> str:
        async with AsyncOpenAI(api_key=self.api_key) as client:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                response_format={"type": "json_object"},
                temperature=0.7,
                max_tokens=1500,
            )
        return response.choices[0].message.content or ""

    def _build_prompt(self, text: str, stars: Optional[int], sentiment: str,
                      topics: List[str], options: ReplyOptions) -> str:
        guidance = []
        if sentiment == Sentiment.NEGATIVE.value:
            guidance = ["- Acknowledge the issue without admitting fault", "- Offer a path forward"]
        elif sentiment == Sentiment.POSITIVE.value:
            guidance = ["- Show genuine appreciation", "- Encourage return visits or referrals"]

        lines = [
            f"You are a reputation management expert writing a "
            f"{TONE_INSTRUCTIONS.get(options.tone, options.tone)} response to a customer review.",
            "",
            f"Business: {options.business_name}",
            f"Country: {options.country}",
            f"Review sentiment: {sentiment}",
            f"Key topics: {', '.join(topics)}",
        ]
        if stars is not None:
            lines.append(f"Star rating: {stars}/5")
        lines += [
            "",
            "Original review:",
            f'"{text}"',
            "",
            f"Generate 3 different response options, each under {options.max_words} words. Each must:",
            f"- Be legally safe and compliant with {options.country} defamation laws",
            "- Address the customer's concerns specifically",
            "- Maintain brand alignment",
            "- Be authentic and non-generic",
            f"- Use appropriate tone: {options.tone}",
            *guidance,
            "",
            'Respond ONLY with a JSON object of the form {"replies": ["response1", "response2", "response3"]}.',
        ]
        return "\n".join(lines)


def parse_replies(content: str) -> List[str]:
    """Extract reply strings from a responder JSON payload"""
    try:
        payload = json.loads(content)
    except (TypeError, ValueError) as e:
        raise ResponderError(f"Responder returned malformed JSON: {e}") from e

    if isinstance(payload, dict):
        payload = payload.get("replies")
    if isinstance(payload, str):
        payload = [payload]
    if not isinstance(payload, list):
        raise ResponderError("Responder payload has no replies list")

    replies = [reply.strip() for reply in payload if isinstance(reply, str) and reply.strip()]
    if not replies:
        raise ResponderError("Responder returned no usable replies")
    return replies[:3]


def fallback_reply(sentiment: str, options: ReplyOptions) -> str:
    """Template reply used when the responder is unavailable"""
    if sentiment == Sentiment.POSITIVE.value:
        return (
            f"Thank you so much for your kind words! We're thrilled you had a great experience "
            f"at {options.business_name}. We look forward to serving you again soon!"
        )
    if sentiment == Sentiment.NEGATIVE.value:
        return (
            f"We sincerely apologize for your experience. This isn't the standard we strive for "
            f"at {options.business_name}. We'd like to make this right. Please contact us directly "
            f"so we can address your concerns."
        )
    return (
        f"Thank you for your feedback! We appreciate you taking the time to share your thoughts "
        f"about {options.business_name}. We're always working to improve our service."
    )


def draft_replies(responder: Optional[Responder], text: str, stars: Optional[int], sentiment: str,
                  topics: List[str], options: ReplyOptions, limit: int = 3) -> List[str]:
    """Responder replies capped at `limit`, or the single fallback reply"""
    if responder is not None:
        try:
            replies = responder.generate_replies(text, stars, sentiment, topics, options)
            if replies:
                return replies[:limit]
        except ResponderError as e:
            logger.error(f"Reply generation failed, using fallback reply: {e}")
    return [fallback_reply(sentiment, options)]


def resolve_reply_owner(db: Session, tenant_id: str, policy: str) -> Optional[str]:
    """
    User id assigned to drafted replies

    "unassigned" leaves replies unowned; "earliest_owner" assigns them to the
    tenant's longest-standing active OWNER.
    """
    if policy != "earliest_owner":
        return None

    owner = db.query(User.id).filter(
        User.tenant_id == tenant_id,
        User.role == UserRole.OWNER.value,
        User.is_active == True,  # noqa: E712
    ).order_by(User.created_at.asc(), User.id.asc()).first()
    return owner[0] if owner else None
