"""
Integration tests for the mention analysis worker logic
"""
from datetime import timedelta

import pytest

from mention_pipeline.core.exceptions import AnalyzerError, ResponderError
from mention_pipeline.db.database import SessionLocal
from mention_pipeline.db.models import Mention, Reply
from mention_pipeline.services.analysis_service import AnalysisResult, MentionAnalysisService
from mention_pipeline.tests.fixtures.pipeline_fakes import ScriptedAnalyzer, ScriptedResponder, seed_mention
from mention_pipeline.utils.time_utils import utcnow


def _analysis(risk_score: int, sentiment: str = "NEGATIVE") -> AnalysisResult:
    return AnalysisResult(
        sentiment=sentiment,
        intent="complaint",
        topics=["service"],
        risk_score=risk_score,
        virality_probability=0.2,
        confidence=0.9,
        language="en",
    )


def _mention(mention_id: str) -> Mention:
    db = SessionLocal()
    try:
        return db.get(Mention, mention_id)
    finally:
        db.close()


def _replies(mention_id: str):
    db = SessionLocal()
    try:
        return db.query(Reply).filter(Reply.mention_id == mention_id).order_by(Reply.position).all()
    finally:
        db.close()


@pytest.fixture
def build_service(jobs, settings):
    def build(analyzer=None, responder=None, service_settings=None):
        return MentionAnalysisService(
            analyzer=analyzer,
            responder=responder if responder is not None else ScriptedResponder(replies=["A", "B", "C"]),
            enqueue_notification=jobs.enqueue_notification,
            settings=service_settings or settings,
        )
    return build


class TestMentionAnalysis:

    def test_high_risk_mention_is_escalated_and_notified(self, tenant, jobs, build_service):
        mention_id = seed_mention(tenant, text="Food poisoning, never again", stars=1)

        outcome = build_service(ScriptedAnalyzer(_analysis(82))).process(mention_id)

        assert outcome.status == "analyzed"
        assert outcome.escalated is True
        assert outcome.source == "analyzer"
        mention = _mention(mention_id)
        assert mention.status == "ESCALATED"
        assert mention.risk_score == 82
        assert mention.topics == ["service"]
        assert mention.processed_at is not None
        assert jobs.notifications == [{
            "tenant_id": tenant.tenant_id,
            "mention_id": mention_id,
            "type": "high-risk",
            "risk_tier": "high",
        }]

    def test_replies_stored_as_drafts_in_order(self, tenant, build_service):
        mention_id = seed_mention(tenant)

        outcome = build_service(ScriptedAnalyzer(_analysis(10, "POSITIVE"))).process(mention_id)

        replies = _replies(mention_id)
        assert outcome.replies_created == 3
        assert [reply.suggested_text for reply in replies] == ["A", "B", "C"]
        assert [reply.position for reply in replies] == [0, 1, 2]
        assert {reply.status for reply in replies} == {"DRAFT"}
        assert {reply.tone for reply in replies} == {"friendly"}
        assert {reply.assigned_user_id for reply in replies} == {None}

    @pytest.mark.parametrize("risk_score,escalated", [(69, False), (70, True)])
    def test_escalation_threshold_boundary(self, tenant, jobs, build_service, risk_score, escalated):
        mention_id = seed_mention(tenant)

        build_service(ScriptedAnalyzer(_analysis(risk_score))).process(mention_id)

        assert (_mention(mention_id).status == "ESCALATED") is escalated
        assert len(jobs.notifications) == (1 if escalated else 0)

    def test_analyzer_failure_uses_fallback(self, tenant, jobs, build_service):
        mention_id = seed_mention(tenant, text="It was okay", stars=1)
        analyzer = ScriptedAnalyzer(error=AnalyzerError("provider down"))

        outcome = build_service(analyzer).process(mention_id)

        assert outcome.source == "fallback"
        mention = _mention(mention_id)
        assert mention.sentiment == "NEGATIVE"
        assert mention.risk_score == 70
        assert mention.status == "ESCALATED"
        assert len(jobs.notifications) == 1

    def test_no_analyzer_configured(self, tenant, build_service):
        mention_id = seed_mention(tenant, text="Amazing cake", stars=None)

        outcome = build_service(None).process(mention_id)

        assert outcome.source == "fallback"
        assert _mention(mention_id).sentiment == "POSITIVE"

    def test_redelivered_job_is_noop(self, tenant, jobs, build_service):
        mention_id = seed_mention(tenant)
        analyzer = ScriptedAnalyzer(_analysis(90))
        service = build_service(analyzer)

        service.process(mention_id)
        second = service.process(mention_id)

        assert second.status == "already_analyzed"
        assert analyzer.calls == 1
        assert len(_replies(mention_id)) == 3
        assert len(jobs.notifications) == 1

    def test_unexpected_analyzer_error_uses_fallback(self, tenant, jobs, build_service):
        mention_id = seed_mention(tenant, text="Great staff", stars=5)
        analyzer = ScriptedAnalyzer(error=IndexError("list index out of range"))

        outcome = build_service(analyzer).process(mention_id)

        assert outcome.status == "analyzed"
        assert outcome.source == "fallback"
        mention = _mention(mention_id)
        assert mention.sentiment == "POSITIVE"
        assert mention.processed_at is not None
        assert jobs.notifications == []

    def test_overlapping_delivery_writes_once(self, tenant, jobs, build_service):
        mention_id = seed_mention(tenant, text="Cockroach in my soup", stars=1)
        holder = {}

        class SlowAnalyzer(ScriptedAnalyzer):
            # A second delivery finishes while the first waits on the model
            def analyze(self, text, stars):
                result = super().analyze(text, stars)
                if self.calls == 1:
                    holder["inner"] = holder["service"].process(mention_id)
                return result

        service = build_service(SlowAnalyzer(_analysis(90)))
        holder["service"] = service

        outer = service.process(mention_id)

        assert holder["inner"].status == "analyzed"
        assert outer.status == "already_analyzed"
        assert len(_replies(mention_id)) == 3
        assert len(jobs.notifications) == 1

    def test_reanalyze_refreshes_fields_only(self, tenant, jobs, build_service):
        mention_id = seed_mention(tenant)
        build_service(ScriptedAnalyzer(_analysis(20, "NEUTRAL"))).process(mention_id)

        outcome = build_service(ScriptedAnalyzer(_analysis(95))).process(mention_id, reanalyze=True)

        assert outcome.status == "reanalyzed"
        assert outcome.replies_created == 0
        mention = _mention(mention_id)
        assert mention.risk_score == 95
        assert mention.status == "NEW"
        assert len(_replies(mention_id)) == 3
        assert jobs.notifications == []

    def test_responder_failure_stores_one_fallback_reply(self, tenant, build_service):
        mention_id = seed_mention(tenant, stars=2, text="Slow")
        responder = ScriptedResponder(error=ResponderError("timeout"))

        build_service(ScriptedAnalyzer(_analysis(40)), responder=responder).process(mention_id)

        replies = _replies(mention_id)
        assert len(replies) == 1
        assert "Harbor Cafe" in replies[0].suggested_text
        assert replies[0].tone == "apologetic"

    def test_reply_count_capped(self, tenant, build_service):
        mention_id = seed_mention(tenant)
        responder = ScriptedResponder(replies=["1", "2", "3", "4", "5"])

        build_service(ScriptedAnalyzer(_analysis(10, "POSITIVE")), responder=responder).process(mention_id)

        assert len(_replies(mention_id)) == 3

    def test_responder_receives_tenant_context(self, tenant, build_service, settings):
        mention_id = seed_mention(tenant)
        responder = ScriptedResponder(replies=["x"])

        build_service(ScriptedAnalyzer(_analysis(80)), responder=responder).process(mention_id)

        options = responder.options[0]
        assert (options.business_name, options.country) == ("Harbor Cafe", "SG")
        assert options.tone == "apologetic"
        assert options.max_words == settings.reply_max_words

    def test_earliest_owner_policy_assigns_replies(self, tenant, build_service, settings):
        mention_id = seed_mention(tenant)
        owner_settings = settings.model_copy(update={"reply_owner_policy": "earliest_owner"})

        build_service(ScriptedAnalyzer(_analysis(10, "POSITIVE")), service_settings=owner_settings).process(mention_id)

        assert {reply.assigned_user_id for reply in _replies(mention_id)} == {tenant.owner_id}

    def test_terminal_status_not_escalated_but_notified(self, tenant, jobs, build_service):
        mention_id = seed_mention(tenant, status="REPLIED")

        outcome = build_service(ScriptedAnalyzer(_analysis(88))).process(mention_id)

        assert outcome.escalated is False
        assert _mention(mention_id).status == "REPLIED"
        assert len(jobs.notifications) == 1

    def test_missing_mention(self, jobs, build_service):
        outcome = build_service(ScriptedAnalyzer(_analysis(90))).process("missing")

        assert outcome.status == "missing"
        assert jobs.notifications == []


class TestAnalysisBookkeeping:

    def test_record_attempt(self, tenant, build_service):
        mention_id = seed_mention(tenant)
        service = build_service()

        service.record_attempt(mention_id)
        service.record_attempt(mention_id)

        assert _mention(mention_id).analysis_attempts == 2

    def test_mark_analysis_failed(self, tenant, build_service):
        mention_id = seed_mention(tenant)

        assert build_service().mark_analysis_failed(mention_id) is True
        assert _mention(mention_id).analysis_failed is True
        assert build_service().mark_analysis_failed("missing") is False

    def test_stale_mentions(self, tenant, build_service):
        stale = seed_mention(tenant, external_id="stale")
        fresh = seed_mention(tenant, external_id="fresh")
        flagged = seed_mention(tenant, external_id="flagged")
        done = seed_mention(tenant, external_id="done")

        db = SessionLocal()
        try:
            old = utcnow() - timedelta(hours=2)
            for mention_id in (stale, flagged, done):
                db.get(Mention, mention_id).created_at = old
            db.get(Mention, flagged).analysis_failed = True
            db.get(Mention, done).processed_at = utcnow()
            db.commit()
        finally:
            db.close()

        assert build_service().stale_mention_ids() == [stale]
        assert fresh not in build_service().stale_mention_ids()
