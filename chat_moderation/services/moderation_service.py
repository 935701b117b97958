"""
Core Moderation Orchestration Service.
Rate limit -> signal scoring -> optional external validation -> verdict,
then the side effects of the verdict (persist, queue, reputation, events).
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID, uuid4

from chat_moderation.lib.config import Settings
from chat_moderation.lib.database import ModerationStore, create_store
from chat_moderation.lib.errors import ExternalValidationError
from chat_moderation.lib.kafka_client import MessageBroker
from chat_moderation.lib.metrics import metrics
from chat_moderation.lib.resilience import fail_open
from chat_moderation.models.content import (
    ContentMetadata, ExternalValidationResult, Identity, ModerationVerdict, Violation
)
from chat_moderation.models.enums import (
    ActionType, DecisionSource, EventType, ExternalAction, ExternalMode, QueueStatus, ReputationAction
)
from chat_moderation.models.user import UserModerationStatus
from chat_moderation.services.external_validation import ExternalValidationClient
from chat_moderation.services.filter_registry import FilterRegistry
from chat_moderation.services.rate_limiter import RateLimiter
from chat_moderation.services.realtime_service import EventEmitter
from chat_moderation.services.reputation_service import ReputationLedger
from chat_moderation.services.review_queue import ReviewQueue
from chat_moderation.services.sanction_service import SanctionStateMachine
from chat_moderation.services.triage_service import SignalScorer

logger = logging.getLogger(__name__)


# Score thresholds (inclusive lower bounds)
BLOCK_THRESHOLD = 100
FLAG_THRESHOLD = 60
SOFT_WARNING_THRESHOLD = 30

RATE_LIMIT_LABEL = "Rate limit exceeded"

# (score, reputation) -> adjusted score
TrustModifier = Callable[[int, int], int]


def identity_trust(score: int, reputation: int) -> int:
    return score


def verdict_from_score(
    violations: List[Violation],
    total_score: int,
    source: DecisionSource = DecisionSource.LOCAL,
) -> ModerationVerdict:
    """Apply the block / flag / soft-warning thresholds to a total score."""
    blocked = total_score >= BLOCK_THRESHOLD
    flagged = total_score >= FLAG_THRESHOLD
    return ModerationVerdict(
        allowed=not blocked,
        flagged=flagged,
        auto_blocked=blocked,
        violations=list(violations),
        confidence_score=min(total_score, 100),
        total_score=total_score,
        decision_source=source,
        soft_warning=not flagged and total_score >= SOFT_WARNING_THRESHOLD,
    )


def rate_limited_verdict() -> ModerationVerdict:
    return ModerationVerdict(
        allowed=False,
        flagged=True,
        auto_blocked=True,
        violations=[Violation(label=RATE_LIMIT_LABEL)],
        confidence_score=100,
        total_score=100,
        decision_source=DecisionSource.RATE_LIMIT,
        rate_limited=True,
    )


def fail_open_verdict() -> ModerationVerdict:
    return ModerationVerdict(decision_source=DecisionSource.FAIL_OPEN)


def verdict_from_external(result: ExternalValidationResult) -> ModerationVerdict:
    """Translate the validation service's action into a verdict."""
    action = result.action_required
    violations = [
        Violation(label=f.filter_name, weight=f.severity_level)
        for f in result.triggered_filters
    ]
    total_score = max(result.violation_score, 0)
    return ModerationVerdict(
        allowed=action != ExternalAction.AUTO_REMOVE,
        flagged=action in (ExternalAction.FLAG, ExternalAction.AUTO_REMOVE),
        auto_blocked=action == ExternalAction.AUTO_REMOVE,
        violations=violations,
        confidence_score=min(total_score, 100),
        total_score=total_score,
        decision_source=DecisionSource.EXTERNAL,
        soft_warning=action == ExternalAction.WARN,
    )


def strictness(verdict: ModerationVerdict) -> int:
    if verdict.auto_blocked:
        return 3
    if verdict.flagged:
        return 2
    if verdict.soft_warning:
        return 1
    return 0


def combine_verdicts(local: ModerationVerdict, external: ModerationVerdict, mode: ExternalMode) -> ModerationVerdict:
    """
    canonical: the external verdict decides.
    layered: the stricter verdict decides, higher score breaking ties.
    Violations are always local first, then external.
    """
    if mode == ExternalMode.CANONICAL:
        winner = external
    else:
        winner = max(
            (local, external),
            key=lambda v: (strictness(v), v.total_score),
        )
    return winner.model_copy(update={"violations": local.violations + external.violations})


def outcome_of(verdict: ModerationVerdict) -> str:
    if verdict.auto_blocked:
        return "blocked"
    if verdict.flagged:
        return "flagged"
    if verdict.soft_warning:
        return "warned"
    return "allowed"


class DecisionEngine:
    """
    Turns (text, identity) into a verdict.

    The rate limiter fails closed; everything after it fails open.
    """

    def __init__(
        self,
        registry: FilterRegistry,
        rate_limiter: RateLimiter,
        ledger: Optional[ReputationLedger] = None,
        external: Optional[ExternalValidationClient] = None,
        external_mode: ExternalMode = ExternalMode.DISABLED,
        trust_modifier: TrustModifier = identity_trust,
    ):
        self.registry = registry
        self.scorer = SignalScorer(registry)
        self.rate_limiter = rate_limiter
        self.ledger = ledger
        self.external = external
        self.external_mode = external_mode
        self.trust_modifier = trust_modifier

    @metrics.track_latency("decide")
    async def decide(self, text: str, identity: Identity, context_type: str = "message") -> ModerationVerdict:
        if not await self.rate_limiter.allow_identity(identity, len(text)):
            verdict = rate_limited_verdict()
        else:
            verdict = await self.score(text, identity, context_type)

        metrics.record_verdict(outcome_of(verdict), verdict.decision_source.value)
        return verdict

    @fail_open("scoring", fallback=fail_open_verdict)
    async def score(self, text: str, identity: Identity, context_type: str = "message") -> ModerationVerdict:
        """Local detectors plus optional external validation; no rate limiting."""
        await self.registry.ensure_loaded()
        result = self.scorer.evaluate(text)

        total_score = result.score
        if self.trust_modifier is not identity_trust and identity.is_authenticated and self.ledger:
            reputation = await self.ledger.get_score(identity.user_id)
            total_score = max(0, self.trust_modifier(total_score, reputation))

        for violation in result.violations:
            metrics.record_violation(violation.category.value if violation.category else "other")

        local = verdict_from_score(result.violations, total_score)
        return await self._apply_external(text, identity, context_type, local)

    async def _apply_external(
        self,
        text: str,
        identity: Identity,
        context_type: str,
        local: ModerationVerdict,
    ) -> ModerationVerdict:
        if self.external is None or self.external_mode == ExternalMode.DISABLED:
            return local

        try:
            result = await self.external.validate(text, identity.user_id, context_type)
        except ExternalValidationError as e:
            logger.warning(f"External validation unavailable, using local verdict: {e}")
            metrics.record_failure_policy("external_validation", "local_fallback")
            return local

        return combine_verdicts(local, verdict_from_external(result), self.external_mode)


class ModerationService:
    """
    Central orchestration service.
    Wires the engine components over one store and exposes the
    message, sanction and review entry points.
    """

    def __init__(
        self,
        store: ModerationStore,
        settings: Optional[Settings] = None,
        emitter: Optional[EventEmitter] = None,
        external: Optional[ExternalValidationClient] = None,
        trust_modifier: TrustModifier = identity_trust,
        sanctions: Optional[SanctionStateMachine] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.settings = settings or Settings()
        self.store = store
        self.clock = clock
        self.emitter = emitter or EventEmitter()

        self.registry = FilterRegistry(store, self.emitter)
        self.rate_limiter = RateLimiter(store, self.settings.rate_limit, clock=clock)
        self.ledger = ReputationLedger(store, self.emitter)
        self.sanctions = sanctions or SanctionStateMachine(store, self.emitter, clock=clock)
        self.queue = ReviewQueue(store, self.sanctions, self.emitter, clock=clock)
        self.engine = DecisionEngine(
            self.registry,
            self.rate_limiter,
            ledger=self.ledger,
            external=external,
            external_mode=self.settings.external_validation_mode if external else ExternalMode.DISABLED,
            trust_modifier=trust_modifier,
        )

        self.metrics = {
            'total_processed': 0,
            'blocked': 0,
            'flagged': 0,
            'rate_limited': 0,
            'side_effect_failures': 0,
        }

    @classmethod
    def from_settings(cls, settings: Settings, broker: Optional[MessageBroker] = None) -> "ModerationService":
        external = None
        if settings.external_validation_url and settings.external_validation_mode != ExternalMode.DISABLED:
            external = ExternalValidationClient(
                settings.external_validation_url,
                settings.external_validation_timeout_seconds,
            )
        if settings.events_enabled and broker is None:
            broker = MessageBroker.from_settings(settings)
        emitter = EventEmitter(broker if settings.events_enabled else None)
        return cls(create_store(settings), settings, emitter=emitter, external=external)

    async def evaluate_message(
        self,
        text: str,
        identity: Identity,
        metadata: Optional[ContentMetadata] = None,
    ) -> ModerationVerdict:
        """
        Decide on one message and carry out the decision.
        Write failures after the decision are logged; the verdict stands.
        """
        metadata = metadata or ContentMetadata()
        verdict = await self.engine.decide(text, identity, metadata.content_type.value)
        content_id = metadata.content_id or str(uuid4())

        self._update_metrics(verdict)

        if verdict.allowed:
            await self._persist_message(content_id, text, identity, metadata, verdict)
            if identity.is_authenticated:
                await self._award_activity(identity.user_id)

        if verdict.flagged and not verdict.rate_limited:
            await self._enqueue(content_id, text, verdict, identity, metadata)

        await self.emitter.emit(
            EventType.VERDICT,
            channel=identity.identifier,
            payload={
                "content_id": content_id,
                "channel_id": metadata.channel_id,
                "outcome": outcome_of(verdict),
                "decision_source": verdict.decision_source.value,
                **verdict.public_view(),
            },
        )
        return verdict

    async def apply_sanction(
        self,
        target_user_id: str,
        action_type: ActionType,
        reason: str,
        duration_minutes: Optional[int] = None,
        moderator_id: Optional[str] = None,
    ) -> UserModerationStatus:
        return await self.sanctions.apply(target_user_id, action_type, reason, duration_minutes, moderator_id)

    async def queue_disposition(
        self,
        item_id: UUID,
        outcome: QueueStatus,
        notes: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        moderator_id: Optional[str] = None,
    ) -> bool:
        return await self.queue.disposition(item_id, outcome, notes, duration_minutes, moderator_id)

    async def close(self) -> None:
        if self.engine.external is not None:
            await self.engine.external.close()
        await self.store.close()

    async def _persist_message(
        self,
        content_id: str,
        text: str,
        identity: Identity,
        metadata: ContentMetadata,
        verdict: ModerationVerdict,
    ) -> None:
        try:
            await self.store.insert_message({
                "id": content_id,
                "user_id": identity.user_id,
                "channel_id": metadata.channel_id,
                "content_type": metadata.content_type.value,
                "text_content": text,
                "parent_content_id": metadata.parent_content_id,
                "confidence_score": verdict.confidence_score,
                "created_at": self.clock(),
            })
        except Exception as e:
            self.metrics['side_effect_failures'] += 1
            logger.error(f"Failed to persist message {content_id}: {e}")

    async def _award_activity(self, user_id: str) -> None:
        try:
            await self.ledger.award(user_id, ReputationAction.MESSAGE_POST)
        except Exception as e:
            self.metrics['side_effect_failures'] += 1
            logger.error(f"Failed to award reputation to {user_id}: {e}")

    async def _enqueue(
        self,
        content_id: str,
        text: str,
        verdict: ModerationVerdict,
        identity: Identity,
        metadata: ContentMetadata,
    ) -> None:
        try:
            await self.queue.enqueue_verdict(content_id, text, verdict, identity.user_id, metadata)
        except Exception as e:
            self.metrics['side_effect_failures'] += 1
            logger.error(f"Failed to queue {content_id} for review: {e}")

    def _update_metrics(self, verdict: ModerationVerdict) -> None:
        self.metrics['total_processed'] += 1
        if verdict.rate_limited:
            self.metrics['rate_limited'] += 1
        elif verdict.auto_blocked:
            self.metrics['blocked'] += 1
        elif verdict.flagged:
            self.metrics['flagged'] += 1

    def get_metrics(self) -> dict:
        """Get current service metrics."""
        return self.metrics.copy()
