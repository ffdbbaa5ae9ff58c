"""
Mention Analysis Service

Enriches a mention with sentiment, intent, topics and risk signals, drafts
suggested replies and escalates high-risk mentions. External calls happen
before any database session is opened; the analysis, the drafted replies and
the status change are then written in a single transaction so a redelivered
job either sees a fully analyzed mention or none of it.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from openai import AsyncOpenAI, OpenAIError

from mention_pipeline.core.config import get_settings
from mention_pipeline.core.exceptions import AnalyzerError
from mention_pipeline.core.monitoring import ANALYSIS_FAILED_TOTAL, ANALYSIS_TOTAL, MENTION_RISK_SCORE
from mention_pipeline.db.models import Mention, MentionStatus, Reply, ReplyStatus, Sentiment, Tenant
from mention_pipeline.services.reply_service import (
    ReplyOptions,
    Responder,
    draft_replies,
    reply_tone,
    resolve_reply_owner,
)
from mention_pipeline.tasks.db_session_manager import get_celery_db_session
from mention_pipeline.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

NEGATIVE_WORDS = ["bad", "poor", "terrible", "awful", "disappointing", "worst", "horrible"]
POSITIVE_WORDS = ["great", "excellent", "amazing", "wonderful", "fantastic", "best", "love"]

ESCALATABLE_STATUSES = {MentionStatus.NEW.value, MentionStatus.REVIEWED.value}


@dataclass
class AnalysisResult:
    sentiment: str
    intent: str
    topics: List[str] = field(default_factory=list)
    risk_score: int = 0
    virality_probability: float = 0.0
    confidence: float = 0.5
    language: str = "en"


class Analyzer(ABC):
    """Sentiment and risk analysis capability"""

    @abstractmethod
    def analyze(self, text: str, stars: Optional[int]) -> AnalysisResult:
        """Analyze a mention; raise AnalyzerError on failure or unusable output"""


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return min(high, max(low, number))


def normalize_analysis(payload: Dict[str, Any]) -> AnalysisResult:
    """
    Validate and clamp raw analyzer output

    Raises:
        AnalyzerError: sentiment missing or not one of POSITIVE/NEUTRAL/NEGATIVE
    """
    if not isinstance(payload, dict):
        raise AnalyzerError("Analyzer payload is not an object")

    sentiment = str(payload.get("sentiment") or "").upper()
    if sentiment not in Sentiment.__members__:
        raise AnalyzerError(f"Unrecognized sentiment: {payload.get('sentiment')!r}")

    topics = payload.get("topics") or []
    if not isinstance(topics, list):
        topics = [topics]

    return AnalysisResult(
        sentiment=sentiment,
        intent=str(payload.get("intent") or "feedback"),
        topics=[str(topic) for topic in topics],
        risk_score=int(round(_clamp(payload.get("riskScore", payload.get("risk_score")), 0, 100, 0))),
        virality_probability=_clamp(
            payload.get("viralityProbability", payload.get("virality_probability")), 0.0, 1.0, 0.0
        ),
        confidence=_clamp(payload.get("confidence"), 0.0, 1.0, 0.5),
        language=str(payload.get("language") or "en"),
    )


def fallback_analysis(text: str, stars: Optional[int]) -> AnalysisResult:
    """Deterministic heuristic classifier used when the analyzer is unavailable"""
    lower_text = (text or "").lower()
    negative_count = sum(1 for word in NEGATIVE_WORDS if word in lower_text)
    positive_count = sum(1 for word in POSITIVE_WORDS if word in lower_text)

    if stars is not None and stars <= 2:
        sentiment, risk_score = Sentiment.NEGATIVE.value, 70
    elif stars is not None and stars >= 4:
        sentiment, risk_score = Sentiment.POSITIVE.value, 10
    elif negative_count > positive_count:
        sentiment, risk_score = Sentiment.NEGATIVE.value, 60
    elif positive_count > negative_count:
        sentiment, risk_score = Sentiment.POSITIVE.value, 15
    else:
        sentiment, risk_score = Sentiment.NEUTRAL.value, 30

    intent = {
        Sentiment.NEGATIVE.value: "complaint",
        Sentiment.POSITIVE.value: "praise",
    }.get(sentiment, "feedback")

    return AnalysisResult(
        sentiment=sentiment,
        intent=intent,
        topics=[],
        risk_score=risk_score,
        virality_probability=0.4 if risk_score > 70 else 0.1,
        confidence=0.6,
        language="en",
    )


class OpenAIAnalyzer(Analyzer):
    """Analyzer backed by an OpenAI chat model in JSON mode"""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 timeout_seconds: Optional[float] = None):
        settings = get_settings()
        self.api_key = api_key or settings.openai_api_key
        self.model = model or settings.analysis_model
        self.timeout_seconds = timeout_seconds or settings.analyzer_timeout_seconds

    def analyze(self, text: str, stars: Optional[int]) -> AnalysisResult:
        if not self.api_key:
            raise AnalyzerError("OpenAI API key not configured")

        try:
            content = asyncio.run(asyncio.wait_for(
                self._complete(self._build_prompt(text, stars)),
                timeout=self.timeout_seconds,
            ))
        except asyncio.TimeoutError as e:
            raise AnalyzerError(f"Analysis timed out after {self.timeout_seconds}s") from e
        except OpenAIError as e:
            raise AnalyzerError(f"Analysis call failed: {e}") from e

        try:
            payload = json.loads(content)
        except (TypeError, ValueError) as e:
            raise AnalyzerError(f"Analyzer returned malformed JSON: {e}") from e

        return normalize_analysis(payload)

    async def _complete(self, prompt: str) -> str:
        async with AsyncOpenAI(api_key=self.api_key) as client:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                response_format={"type": "json_object"},
                temperature=0.3,
            )
        return response.choices[0].message.content or ""

    def _build_prompt(self, text: str, stars: Optional[int]) -> str:
        rating = f"Star rating: {stars}/5\n" if stars is not None else ""
        return (
            "Analyze the following customer review/mention and provide a JSON response with:\n"
            '- sentiment: "POSITIVE", "NEUTRAL", or "NEGATIVE"\n'
            '- intent: primary intent (e.g., "complaint", "praise", "inquiry", "feedback")\n'
            '- topics: array of key topics mentioned (e.g., ["food quality", "service", "wait time", "pricing"])\n'
            "- riskScore: integer 0-100 (how urgently this needs addressing; viral potential, "
            "legal risk, severe complaint = high score)\n"
            "- viralityProbability: float 0-1 (likelihood this could go viral or spread)\n"
            "- confidence: float 0-1 (confidence in this analysis)\n"
            '- language: detected language code (e.g., "en", "ms", "zh")\n\n'
            f'Review text: "{text}"\n'
            f"{rating}\n"
            "Respond ONLY with valid JSON. No markdown, no explanation."
        )


@dataclass
class AnalysisOutcome:
    mention_id: str
    status: str  # missing, already_analyzed, analyzed, reanalyzed
    risk_score: Optional[int] = None
    sentiment: Optional[str] = None
    source: Optional[str] = None  # analyzer, fallback
    replies_created: int = 0
    escalated: bool = False


class MentionAnalysisService:
    """Analysis worker logic, independent of the job system"""

    def __init__(
        self,
        analyzer: Optional[Analyzer],
        responder: Optional[Responder],
        enqueue_notification: Callable[..., None],
        session_factory=None,
        settings=None,
    ):
        self.analyzer = analyzer
        self.responder = responder
        self.enqueue_notification = enqueue_notification
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    def analyze_text(self, text: str, stars: Optional[int]) -> Tuple[AnalysisResult, str]:
        """Analyzer result, or the fallback classification when it fails"""
        if self.analyzer is not None:
            try:
                result = self.analyzer.analyze(text, stars)
                ANALYSIS_TOTAL.labels(source="analyzer").inc()
                return result, "analyzer"
            except AnalyzerError as e:
                logger.warning(f"Analyzer unavailable, using fallback classifier: {e}")
            except Exception as e:
                logger.error(f"Analyzer raised unexpectedly, using fallback classifier: {e}", exc_info=True)

        ANALYSIS_TOTAL.labels(source="fallback").inc()
        return fallback_analysis(text, stars), "fallback"

    def process(self, mention_id: str, reanalyze: bool = False) -> AnalysisOutcome:
        """
        Analyze one mention

        Args:
            mention_id: Mention to analyze
            reanalyze: Refresh analysis fields of an already analyzed mention

        Returns:
            AnalysisOutcome describing what was persisted
        """
        with get_celery_db_session(self.session_factory) as db:
            mention = db.get(Mention, mention_id)
            if mention is None:
                logger.warning(f"Mention {mention_id} not found")
                return AnalysisOutcome(mention_id, "missing")
            if mention.processed_at is not None and not reanalyze:
                logger.info(f"Mention {mention_id} already analyzed, skipping")
                return AnalysisOutcome(mention_id, "already_analyzed")

            text, stars = mention.text, mention.stars
            tenant_id = mention.tenant_id
            already_processed = mention.processed_at is not None
            tenant = db.get(Tenant, tenant_id)
            options_base = (tenant.business_name, tenant.country) if tenant else ("our business", "US")

        analysis, source = self.analyze_text(text, stars)

        refresh_only = reanalyze and already_processed
        replies: List[str] = []
        tone = reply_tone(analysis.sentiment)
        if not refresh_only:
            options = ReplyOptions(
                tone=tone,
                max_words=self.settings.reply_max_words,
                business_name=options_base[0],
                country=options_base[1],
            )
            replies = draft_replies(
                self.responder, text, stars, analysis.sentiment, analysis.topics, options,
                limit=self.settings.max_suggested_replies,
            )

        should_notify = False
        escalated = False
        with get_celery_db_session(self.session_factory) as db:
            # Row lock serializes overlapping deliveries of the same job
            mention = db.query(Mention).filter(Mention.id == mention_id).with_for_update().first()
            if mention is None:
                logger.warning(f"Mention {mention_id} deleted during analysis")
                return AnalysisOutcome(mention_id, "missing")
            if mention.processed_at is not None and not refresh_only:
                logger.info(f"Mention {mention_id} analyzed by a concurrent delivery, discarding result")
                return AnalysisOutcome(mention_id, "already_analyzed")

            mention.sentiment = analysis.sentiment
            mention.intent = analysis.intent
            mention.topics = list(analysis.topics)
            mention.risk_score = analysis.risk_score
            mention.virality_probability = analysis.virality_probability
            mention.confidence = analysis.confidence
            mention.language = analysis.language
            mention.processed_at = utcnow()
            mention.analysis_failed = False

            if not refresh_only:
                owner_id = resolve_reply_owner(db, tenant_id, self.settings.reply_owner_policy)
                for position, reply_text in enumerate(replies):
                    db.add(Reply(
                        mention_id=mention_id,
                        suggested_text=reply_text,
                        tone=tone,
                        status=ReplyStatus.DRAFT.value,
                        assigned_user_id=owner_id,
                        position=position,
                    ))

                if analysis.risk_score >= self.settings.escalation_threshold:
                    should_notify = True
                    if mention.status in ESCALATABLE_STATUSES:
                        mention.status = MentionStatus.ESCALATED.value
                        escalated = True

        MENTION_RISK_SCORE.observe(analysis.risk_score)

        if should_notify:
            self.enqueue_notification(
                tenant_id=tenant_id,
                mention_id=mention_id,
                type="high-risk",
                risk_tier="high",
            )

        logger.info(
            f"Analyzed mention {mention_id}: risk {analysis.risk_score} ({source})",
            extra={"mention_id": mention_id, "tenant_id": tenant_id},
        )
        return AnalysisOutcome(
            mention_id,
            "reanalyzed" if refresh_only else "analyzed",
            risk_score=analysis.risk_score,
            sentiment=analysis.sentiment,
            source=source,
            replies_created=len(replies),
            escalated=escalated,
        )

    def record_attempt(self, mention_id: str):
        with get_celery_db_session(self.session_factory) as db:
            mention = db.get(Mention, mention_id)
            if mention is not None:
                mention.analysis_attempts = (mention.analysis_attempts or 0) + 1

    def mark_analysis_failed(self, mention_id: str) -> bool:
        """Flag a mention for manual follow-up after retries are exhausted"""
        with get_celery_db_session(self.session_factory) as db:
            mention = db.get(Mention, mention_id)
            if mention is None:
                return False
            mention.analysis_failed = True

        ANALYSIS_FAILED_TOTAL.inc()
        logger.error(f"Analysis of mention {mention_id} failed permanently, flagged for manual review")
        return True

    def stale_mention_ids(self, now: Optional[datetime] = None, limit: int = 500) -> List[str]:
        """Unanalyzed, unflagged mentions older than the staleness window"""
        now = now or utcnow()
        cutoff = now - timedelta(minutes=self.settings.analysis_stale_after_minutes)
        with get_celery_db_session(self.session_factory) as db:
            rows = db.query(Mention.id).filter(
                Mention.processed_at == None,  # noqa: E711
                Mention.analysis_failed == False,  # noqa: E712
                Mention.created_at < cutoff,
            ).order_by(Mention.created_at.asc()).limit(limit).all()
        return [row[0] for row in rows]
