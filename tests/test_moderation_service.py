"""
Tests for chat_moderation/services/moderation_service.py

Covers the decision thresholds, the scoring scenarios, failure policies,
external validation modes and the side effects of a verdict.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from chat_moderation.lib.config import Settings
from chat_moderation.lib.errors import ExternalValidationError, StoreError
from chat_moderation.models.content import (
    ContentMetadata, ExternalValidationResult, Identity, TriggeredFilter, Violation
)
from chat_moderation.models.enums import (
    DecisionSource, EventType, ExternalAction, ExternalMode, QueueStatus
)
from chat_moderation.services.moderation_service import (
    ModerationService,
    combine_verdicts,
    rate_limited_verdict,
    verdict_from_external,
    verdict_from_score,
)

USER = Identity(user_id="u1")
ANON = Identity(anonymous_token="tok")


def external_client(result=None, error=None):
    client = MagicMock()
    client.validate = AsyncMock(return_value=result, side_effect=error)
    client.close = AsyncMock()
    return client


# =============================================================================
# Thresholds
# =============================================================================

class TestThresholds:
    """Score to verdict mapping."""

    @pytest.mark.parametrize("score,allowed,flagged,blocked,soft", [
        (0, True, False, False, False),
        (29, True, False, False, False),
        (30, True, False, False, True),
        (59, True, False, False, True),
        (60, True, True, False, False),
        (99, True, True, False, False),
        (100, False, True, True, False),
        (250, False, True, True, False),
    ])
    def test_bands(self, score, allowed, flagged, blocked, soft):
        verdict = verdict_from_score([], score)
        assert verdict.allowed is allowed
        assert verdict.flagged is flagged
        assert verdict.auto_blocked is blocked
        assert verdict.soft_warning is soft

    def test_confidence_is_capped_total(self):
        verdict = verdict_from_score([], 175)
        assert verdict.confidence_score == 100
        assert verdict.total_score == 175

    def test_rate_limit_verdict(self):
        verdict = rate_limited_verdict()
        assert not verdict.allowed
        assert verdict.flagged and verdict.auto_blocked and verdict.rate_limited
        assert verdict.confidence_score == 100
        assert verdict.violation_labels == ["Rate limit exceeded"]


# =============================================================================
# Scenarios
# =============================================================================

class TestScenarios:
    """End-to-end scoring through evaluate_message."""

    @pytest.mark.asyncio
    async def test_single_profanity_match(self, service, profanity_filters):
        verdict = await service.evaluate_message("well darn it", USER)

        assert verdict.total_score == 40
        assert verdict.allowed and not verdict.flagged and not verdict.auto_blocked
        assert verdict.soft_warning

    @pytest.mark.asyncio
    async def test_spam_heuristics_flag(self, service):
        verdict = await service.evaluate_message("AAAAAA HTTP://X.COM HTTP://Y.COM HTTP://Z.COM", USER)

        assert verdict.allowed and verdict.flagged and not verdict.auto_blocked
        assert verdict.confidence_score == 75

    @pytest.mark.asyncio
    async def test_combined_block(self, service, profanity_filters):
        verdict = await service.evaluate_message("heck no refund zzzzzz", USER)

        assert verdict.total_score == 105
        assert not verdict.allowed and verdict.auto_blocked and verdict.flagged
        assert verdict.confidence_score == 100

    @pytest.mark.asyncio
    async def test_anonymous_eleventh_message_rate_limited(self, service, profanity_filters):
        for _ in range(10):
            verdict = await service.evaluate_message("hello", ANON)
            assert not verdict.rate_limited

        verdict = await service.evaluate_message("heck no refund zzzzzz", ANON)
        assert verdict == rate_limited_verdict()

    @pytest.mark.asyncio
    async def test_public_view_hides_patterns(self, service, profanity_filters):
        verdict = await service.evaluate_message("heck no refund zzzzzz", USER)

        assert verdict.public_view()["violations"] == [
            "Profanity",
            "Spam: Excessive repeated characters",
            "Keyword",
        ]


# =============================================================================
# Failure policies
# =============================================================================

class TestFailurePolicies:
    """Rate limiter fails closed, scoring fails open."""

    @pytest.mark.asyncio
    async def test_scoring_failure_allows(self, service, store):
        store.list_filters = AsyncMock(side_effect=StoreError("down"))

        verdict = await service.evaluate_message("anything at all", USER)

        assert verdict.allowed and not verdict.flagged and not verdict.auto_blocked
        assert verdict.confidence_score == 0
        assert verdict.decision_source == DecisionSource.FAIL_OPEN

    @pytest.mark.asyncio
    async def test_rate_limiter_failure_denies(self, service, store):
        store.increment_rate_window = AsyncMock(side_effect=StoreError("down"))

        verdict = await service.evaluate_message("hello", USER)

        assert verdict.rate_limited
        assert not verdict.allowed

    @pytest.mark.asyncio
    async def test_queue_failure_keeps_verdict(self, service, store):
        store.insert_queue_item = AsyncMock(side_effect=StoreError("down"))

        verdict = await service.evaluate_message("AAAAAA HTTP://X.COM HTTP://Y.COM HTTP://Z.COM", USER)

        assert verdict.flagged
        assert service.get_metrics()["side_effect_failures"] == 1

    @pytest.mark.asyncio
    async def test_persist_failure_keeps_verdict(self, service, store):
        store.insert_message = AsyncMock(side_effect=StoreError("down"))

        verdict = await service.evaluate_message("hello", USER)

        assert verdict.allowed
        assert await service.ledger.get_score("u1") == 2


# =============================================================================
# Side effects
# =============================================================================

class TestSideEffects:
    """What evaluate_message writes."""

    @pytest.mark.asyncio
    async def test_allowed_message_persisted_and_rewarded(self, service, store, clock):
        await service.evaluate_message("hello", USER, ContentMetadata(content_id="m1", channel_id="general"))

        assert store.messages["m1"]["text_content"] == "hello"
        assert store.messages["m1"]["channel_id"] == "general"
        assert store.messages["m1"]["created_at"] == clock()
        assert store.reputation["u1"] == 2
        assert store.queue == {}

    @pytest.mark.asyncio
    async def test_anonymous_not_rewarded(self, service, store):
        await service.evaluate_message("hello", ANON)
        assert store.reputation == {}
        assert len(store.messages) == 1

    @pytest.mark.asyncio
    async def test_blocked_message_not_persisted_but_queued(self, service, store, profanity_filters):
        await service.evaluate_message("heck no refund zzzzzz", USER, ContentMetadata(content_id="m2"))

        assert "m2" not in store.messages
        assert store.reputation == {}
        queued = await service.queue.dequeue_next()
        assert queued.content_id == "m2"
        assert queued.author_id == "u1"
        assert queued.priority_level == 3
        assert queued.flag_reason == "Profanity: heck; Spam: Excessive repeated characters; Keyword: refund"

    @pytest.mark.asyncio
    async def test_flagged_allowed_message_both_persisted_and_queued(self, service, store):
        await service.evaluate_message(
            "AAAAAA HTTP://X.COM HTTP://Y.COM HTTP://Z.COM", USER, ContentMetadata(content_id="m3")
        )

        assert "m3" in store.messages
        queued = await service.queue.dequeue_next()
        assert queued.priority_level == 2
        assert queued.confidence_score == 75

    @pytest.mark.asyncio
    async def test_rate_limited_not_queued(self, service, store):
        for _ in range(11):
            await service.evaluate_message("hi", ANON)

        assert store.queue == {}
        assert service.get_metrics()["rate_limited"] == 1

    @pytest.mark.asyncio
    async def test_verdict_event(self, service, emitter):
        await service.evaluate_message("hello", USER, ContentMetadata(content_id="m4"))

        event = [e for e in emitter.recent if e.event_type == EventType.VERDICT][-1]
        assert event.channel == "u1"
        assert event.payload["content_id"] == "m4"
        assert event.payload["outcome"] == "allowed"

    @pytest.mark.asyncio
    async def test_queue_disposition_facade(self, service, store, profanity_filters):
        await service.evaluate_message("heck no refund zzzzzz", USER)
        queued = await service.queue.dequeue_next()

        assert await service.queue_disposition(queued.id, QueueStatus.REJECTED, duration_minutes=15)
        assert await service.sanctions.is_muted("u1")


# =============================================================================
# Trust modifier
# =============================================================================

class TestTrustModifier:
    """Reputation-adjusted scoring."""

    @pytest.mark.asyncio
    async def test_default_ignores_reputation(self, service, store, profanity_filters):
        store.reputation["u1"] = 5000
        verdict = await service.evaluate_message("well darn it", USER)
        assert verdict.total_score == 40

    @pytest.mark.asyncio
    async def test_custom_modifier(self, store, emitter, clock, profanity_filters):
        store.reputation["u1"] = 200
        service = ModerationService(
            store, emitter=emitter, clock=clock, trust_modifier=lambda score, rep: score - rep // 10,
        )

        verdict = await service.evaluate_message("well darn it", USER)

        assert verdict.total_score == 20
        assert not verdict.soft_warning

    @pytest.mark.asyncio
    async def test_modifier_skips_anonymous(self, store, emitter, clock, profanity_filters):
        service = ModerationService(
            store, emitter=emitter, clock=clock, trust_modifier=lambda score, rep: 0,
        )
        verdict = await service.evaluate_message("well darn it", ANON)
        assert verdict.total_score == 40


# =============================================================================
# External validation
# =============================================================================

class TestExternalValidation:
    """canonical and layered precedence."""

    REMOVE = ExternalValidationResult(
        action_required=ExternalAction.AUTO_REMOVE,
        violation_score=90,
        confidence_score=0.9,
        triggered_filters=[TriggeredFilter(filter_id="f1", filter_name="Hate speech", severity_level=3)],
    )
    ALLOW = ExternalValidationResult(action_required=ExternalAction.ALLOW)

    def build(self, store, emitter, clock, mode, client):
        settings = Settings(external_validation_mode=mode)
        return ModerationService(store, settings, emitter=emitter, external=client, clock=clock)

    def test_external_action_mapping(self):
        warn = verdict_from_external(ExternalValidationResult(action_required=ExternalAction.WARN, violation_score=40))
        assert warn.allowed and warn.soft_warning and not warn.flagged

        flag = verdict_from_external(ExternalValidationResult(action_required=ExternalAction.FLAG, violation_score=55))
        assert flag.allowed and flag.flagged

        removed = verdict_from_external(self.REMOVE)
        assert not removed.allowed and removed.auto_blocked
        assert removed.decision_source == DecisionSource.EXTERNAL

    def test_layered_keeps_stricter(self):
        local = verdict_from_score([Violation(label="Keyword: refund", weight=10)], 10)
        external = verdict_from_external(self.REMOVE)

        combined = combine_verdicts(local, external, ExternalMode.LAYERED)

        assert combined.auto_blocked
        assert combined.violation_labels == ["Keyword: refund", "Hate speech"]

    @pytest.mark.asyncio
    async def test_canonical_external_wins(self, store, emitter, clock):
        client = external_client(result=self.REMOVE)
        service = self.build(store, emitter, clock, ExternalMode.CANONICAL, client)

        verdict = await service.evaluate_message("perfectly polite", USER)

        assert verdict.auto_blocked
        assert verdict.decision_source == DecisionSource.EXTERNAL
        client.validate.assert_awaited_once_with("perfectly polite", "u1", "message")

    @pytest.mark.asyncio
    async def test_canonical_can_relax_local(self, store, emitter, clock, profanity_filters):
        service = self.build(store, emitter, clock, ExternalMode.CANONICAL, external_client(result=self.ALLOW))

        verdict = await service.evaluate_message("heck no refund zzzzzz", USER)

        assert verdict.allowed and not verdict.flagged
        assert verdict.violation_labels[0] == "Profanity: heck"

    @pytest.mark.asyncio
    async def test_canonical_falls_back_to_local(self, store, emitter, clock, profanity_filters):
        client = external_client(error=ExternalValidationError("timeout"))
        service = self.build(store, emitter, clock, ExternalMode.CANONICAL, client)

        verdict = await service.evaluate_message("well darn it", USER)

        assert verdict.decision_source == DecisionSource.LOCAL
        assert verdict.total_score == 40

    @pytest.mark.asyncio
    async def test_layered_local_stricter(self, store, emitter, clock, profanity_filters):
        service = self.build(store, emitter, clock, ExternalMode.LAYERED, external_client(result=self.ALLOW))

        verdict = await service.evaluate_message("heck no refund zzzzzz", USER)

        assert verdict.auto_blocked
        assert verdict.decision_source == DecisionSource.LOCAL

    @pytest.mark.asyncio
    async def test_disabled_mode_never_calls(self, store, emitter, clock):
        client = external_client(result=self.REMOVE)
        service = self.build(store, emitter, clock, ExternalMode.DISABLED, client)

        verdict = await service.evaluate_message("perfectly polite", USER)

        assert verdict.allowed
        client.validate.assert_not_awaited()
