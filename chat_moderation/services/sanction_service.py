"""
Sanction state machine.

Per-user restriction state (active, warned, muted, banned, suspended) with
optional expiries. Expiry is evaluated when the state is read: a mute whose
``muted_until`` has passed stops counting as a mute, while the stored status
keeps reading ``muted`` until a moderator issues ``unmute``. There is no
background sweep.

Every transition hands the store a pure status transition plus its audit
record. The store applies the transition to the current row under a lock
and writes both in one step, so concurrent sanctions on one user serialize.
If that call fails the caller gets a ``SanctionError`` and nothing was
written.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from chat_moderation.lib.database import ModerationStore
from chat_moderation.lib.errors import SanctionError
from chat_moderation.lib.metrics import metrics
from chat_moderation.models.enums import ActionType, UserStatus, EventType
from chat_moderation.models.user import UserModerationStatus, ModerationAction
from chat_moderation.services.realtime_service import EventEmitter

logger = logging.getLogger(__name__)


# action -> (restricted status, expiry field)
RESTRICTIONS: Dict[ActionType, Tuple[UserStatus, str]] = {
    ActionType.MUTE: (UserStatus.MUTED, "muted_until"),
    ActionType.BAN: (UserStatus.BANNED, "banned_until"),
    ActionType.SUSPEND: (UserStatus.SUSPENDED, "suspended_until"),
}

# lifting action -> the restriction it lifts
LIFTS: Dict[ActionType, ActionType] = {
    ActionType.UNMUTE: ActionType.MUTE,
    ActionType.UNBAN: ActionType.BAN,
    ActionType.UNSUSPEND: ActionType.SUSPEND,
}


def restriction_active(status: UserStatus, expected: UserStatus, expiry: Optional[datetime], now: datetime) -> bool:
    """True when status is the expected restriction and it has not expired."""
    return status == expected and (expiry is None or now < expiry)


def is_muted(record: UserModerationStatus, now: datetime) -> bool:
    return restriction_active(record.status, UserStatus.MUTED, record.muted_until, now)


def is_banned(record: UserModerationStatus, now: datetime) -> bool:
    return restriction_active(record.status, UserStatus.BANNED, record.banned_until, now)


def is_suspended(record: UserModerationStatus, now: datetime) -> bool:
    return restriction_active(record.status, UserStatus.SUSPENDED, record.suspended_until, now)


def apply_transition(
    current: UserModerationStatus,
    action_type: ActionType,
    duration_minutes: Optional[int],
    now: datetime,
) -> UserModerationStatus:
    """Pure transition: the status record after applying action_type at now."""
    update: Dict[str, object] = {"updated_at": now}

    if action_type == ActionType.WARN:
        update["total_warnings"] = current.total_warnings + 1
        update["last_infraction_at"] = now

    elif action_type in RESTRICTIONS:
        restricted, expiry_field = RESTRICTIONS[action_type]
        update["status"] = restricted
        update[expiry_field] = now + timedelta(minutes=duration_minutes) if duration_minutes else None
        update["last_infraction_at"] = now

    elif action_type in LIFTS:
        restricted, expiry_field = RESTRICTIONS[LIFTS[action_type]]
        update[expiry_field] = None
        if current.status == restricted:
            update["status"] = UserStatus.ACTIVE

    else:
        raise SanctionError(f"Unsupported action {action_type}")

    return current.model_copy(update=update)


@dataclass(frozen=True)
class Escalation:
    """Follow-up sanction requested by an escalation policy."""
    action_type: ActionType
    duration_minutes: Optional[int] = None
    reason: str = "Automatic escalation"


# Called after a warning commits; returns a follow-up sanction or None
EscalationPolicy = Callable[[UserModerationStatus], Optional[Escalation]]


def no_escalation(status: UserModerationStatus) -> Optional[Escalation]:
    return None


class WarningThresholdPolicy:
    """
    Escalates when total_warnings reaches a configured count.
    No thresholds are built in; deployments supply their own.
    """

    def __init__(self, steps: Dict[int, Escalation]):
        self.steps = dict(steps)

    def __call__(self, status: UserModerationStatus) -> Optional[Escalation]:
        return self.steps.get(status.total_warnings)


class SanctionStateMachine:
    """
    Applies warn / mute / ban / suspend and their reversals.
    """

    def __init__(
        self,
        store: ModerationStore,
        emitter: Optional[EventEmitter] = None,
        escalation_policy: EscalationPolicy = no_escalation,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.emitter = emitter
        self.escalation_policy = escalation_policy
        self.clock = clock

    async def get_status(self, user_id: str) -> UserModerationStatus:
        status = await self.store.get_user_status(user_id)
        return status or UserModerationStatus(user_id=user_id)

    async def apply(
        self,
        target_user_id: str,
        action_type: ActionType,
        reason: str,
        duration_minutes: Optional[int] = None,
        moderator_id: Optional[str] = None,
    ) -> UserModerationStatus:
        """Apply one sanction; raises SanctionError without changing state on failure."""
        if duration_minutes is not None and duration_minutes <= 0:
            raise SanctionError(f"duration_minutes must be positive, got {duration_minutes}")
        if duration_minutes is not None and action_type not in RESTRICTIONS:
            # Only restrictions carry an expiry
            duration_minutes = None

        now = self.clock()
        try:
            action = ModerationAction(
                target_user_id=target_user_id,
                moderator_id=moderator_id,
                action_type=action_type,
                reason=reason,
                duration_minutes=duration_minutes,
                created_at=now,
            )
            updated = await self.store.commit_sanction(
                action, lambda current: apply_transition(current, action_type, duration_minutes, now)
            )
        except SanctionError:
            raise
        except Exception as e:
            logger.error(f"Failed to apply {action_type.value} to {target_user_id}: {e}")
            raise SanctionError(f"Failed to apply {action_type.value} to {target_user_id}") from e

        metrics.record_sanction(action_type.value)
        logger.info(
            f"Applied {action_type.value} to {target_user_id}"
            f"{f' for {duration_minutes} minutes' if duration_minutes else ''}"
            f" by {moderator_id or 'system'}: {reason}"
        )
        await self._emit(updated, action)

        if action_type == ActionType.WARN:
            escalation = self.escalation_policy(updated)
            if escalation is not None:
                return await self.apply(
                    target_user_id,
                    escalation.action_type,
                    escalation.reason,
                    escalation.duration_minutes,
                )
        return updated

    async def warn(self, user_id: str, reason: str, moderator_id: Optional[str] = None) -> UserModerationStatus:
        return await self.apply(user_id, ActionType.WARN, reason, moderator_id=moderator_id)

    async def mute(
        self, user_id: str, reason: str, duration_minutes: Optional[int] = None, moderator_id: Optional[str] = None
    ) -> UserModerationStatus:
        return await self.apply(user_id, ActionType.MUTE, reason, duration_minutes, moderator_id)

    async def ban(
        self, user_id: str, reason: str, duration_minutes: Optional[int] = None, moderator_id: Optional[str] = None
    ) -> UserModerationStatus:
        return await self.apply(user_id, ActionType.BAN, reason, duration_minutes, moderator_id)

    async def is_muted(self, user_id: str) -> bool:
        return is_muted(await self.get_status(user_id), self.clock())

    async def is_banned(self, user_id: str) -> bool:
        return is_banned(await self.get_status(user_id), self.clock())

    async def is_suspended(self, user_id: str) -> bool:
        return is_suspended(await self.get_status(user_id), self.clock())

    async def can_post(self, user_id: str) -> bool:
        """False while any mute, ban or suspension is in force."""
        status = await self.get_status(user_id)
        now = self.clock()
        return not (is_muted(status, now) or is_banned(status, now) or is_suspended(status, now))

    async def shadow_ban(self, user_id: str, enabled: bool = True) -> UserModerationStatus:
        try:
            status = await self.store.set_shadow_ban(user_id, enabled)
        except Exception as e:
            raise SanctionError(f"Failed to update shadow ban for {user_id}") from e
        logger.info(f"Shadow ban {'enabled' if enabled else 'disabled'} for {user_id}")
        return status

    async def history(self, user_id: str) -> List[ModerationAction]:
        return await self.store.list_actions(user_id)

    async def warnings(self, user_id: str) -> List[ModerationAction]:
        return await self.store.list_actions(user_id, ActionType.WARN)

    async def _emit(self, status: UserModerationStatus, action: ModerationAction) -> None:
        if self.emitter is None:
            return
        await self.emitter.emit(
            EventType.SANCTION_APPLIED,
            channel=status.user_id,
            payload={
                "user_id": status.user_id,
                "action_id": str(action.id),
                "action_type": action.action_type.value,
                "status": status.status.value,
                "duration_minutes": action.duration_minutes,
                "total_warnings": status.total_warnings,
            },
        )
