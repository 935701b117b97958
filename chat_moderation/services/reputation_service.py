"""
User Reputation Ledger.
Accumulates activity points and derives named levels.
"""

import logging
from typing import Dict, List, Optional

from chat_moderation.lib.database import ModerationStore
from chat_moderation.lib.metrics import metrics
from chat_moderation.models.enums import ReputationAction, EventType
from chat_moderation.models.user import ReputationActivity, ReputationLevel, ReputationProfile
from chat_moderation.services.realtime_service import EventEmitter

logger = logging.getLogger(__name__)


# Fixed point grants per activity
POINTS: Dict[ReputationAction, int] = {
    ReputationAction.MESSAGE_POST: 2,
    ReputationAction.REACTION_ADD: 1,
    ReputationAction.HELPFUL_ACTION: 5,
    ReputationAction.ACHIEVEMENT_UNLOCKED: 10,
}

# Non-overlapping, inclusive bands
LEVELS: List[ReputationLevel] = [
    ReputationLevel(min_score=0, max_score=99, name="Newcomer"),
    ReputationLevel(min_score=100, max_score=299, name="Regular"),
    ReputationLevel(min_score=300, max_score=699, name="Contributor"),
    ReputationLevel(min_score=700, max_score=1499, name="Veteran"),
    ReputationLevel(min_score=1500, max_score=2999, name="Expert"),
    ReputationLevel(min_score=3000, max_score=9999, name="Master"),
    ReputationLevel(min_score=10000, max_score=None, name="Legend"),
]


def level_for(score: int) -> ReputationLevel:
    """Level band containing score; negative scores fall back to the first band."""
    for level in LEVELS:
        if level.contains(score):
            return level
    return LEVELS[0]


def build_profile(user_id: str, score: int, rank: Optional[int] = None) -> ReputationProfile:
    level = level_for(score)
    index = LEVELS.index(level)
    next_level = LEVELS[index + 1] if index + 1 < len(LEVELS) else None

    return ReputationProfile(
        user_id=user_id,
        reputation_score=score,
        level=index + 1,
        level_name=level.name,
        points_to_next_level=next_level.min_score - score if next_level else 0,
        rank=rank,
    )


class ReputationLedger:
    """
    Per-user reputation points.
    Written by accepted activity, read by the decision engine as a trust signal.
    """

    def __init__(self, store: ModerationStore, emitter: Optional[EventEmitter] = None):
        self.store = store
        self.emitter = emitter

    async def award(
        self,
        user_id: str,
        action_type: ReputationAction,
        points: Optional[int] = None,
    ) -> ReputationProfile:
        """Grant points for an activity; points defaults to the fixed grant."""
        points_earned = POINTS[action_type] if points is None else points
        activity = ReputationActivity(
            user_id=user_id,
            action_type=action_type,
            points_earned=points_earned,
        )
        previous_level = level_for(await self.store.get_reputation(user_id))
        score = await self.store.add_reputation(activity)
        metrics.record_reputation(action_type.value, points_earned)

        profile = build_profile(user_id, score)
        if profile.level_name != previous_level.name:
            logger.info(f"User {user_id} reached level {profile.level_name} ({score} points)")

        if self.emitter is not None:
            await self.emitter.emit(
                EventType.REPUTATION_CHANGED,
                channel=user_id,
                payload={
                    "user_id": user_id,
                    "action_type": action_type.value,
                    "points_earned": points_earned,
                    "reputation_score": score,
                    "level_name": profile.level_name,
                },
            )
        return profile

    async def get_score(self, user_id: str) -> int:
        return await self.store.get_reputation(user_id)

    async def get_profile(self, user_id: str, with_rank: bool = False) -> ReputationProfile:
        score = await self.store.get_reputation(user_id)
        rank = await self.rank_for_score(score) if with_rank else None
        return build_profile(user_id, score, rank)

    async def rank(self, user_id: str) -> int:
        """1 + number of users with a strictly higher score."""
        return await self.rank_for_score(await self.store.get_reputation(user_id))

    async def rank_for_score(self, score: int) -> int:
        return await self.store.count_users_above(score) + 1

    async def recent_activity(self, user_id: str, limit: int = 20) -> List[ReputationActivity]:
        return await self.store.list_activity(user_id, limit)
