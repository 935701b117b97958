"""
User moderation status, sanction audit and reputation data models.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field
from uuid import UUID, uuid4

from chat_moderation.models.enums import UserStatus, ActionType, ReputationAction


class UserModerationStatus(BaseModel):
    """
    Current restriction state of a user.
    Single mutable source of truth; a None expiry means permanent.
    """
    user_id: str
    status: UserStatus = UserStatus.ACTIVE
    muted_until: Optional[datetime] = None
    banned_until: Optional[datetime] = None
    suspended_until: Optional[datetime] = None
    total_warnings: int = Field(ge=0, default=0)
    reputation_score: int = 0
    is_shadow_banned: bool = False
    last_infraction_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ModerationAction(BaseModel):
    """Append-only audit record of a sanction."""
    id: UUID = Field(default_factory=uuid4)
    target_user_id: str
    moderator_id: Optional[str] = None
    action_type: ActionType
    reason: str = ""
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ReputationActivity(BaseModel):
    """A single reputation grant."""
    id: UUID = Field(default_factory=uuid4)
    user_id: str
    action_type: ReputationAction
    points_earned: int
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ReputationLevel(BaseModel):
    """Named band of cumulative reputation, inclusive on both ends."""
    min_score: int
    max_score: Optional[int] = None  # None = unbounded
    name: str

    def contains(self, score: int) -> bool:
        if score < self.min_score:
            return False
        return self.max_score is None or score <= self.max_score


class ReputationProfile(BaseModel):
    """Derived reputation view for a user."""
    user_id: str
    reputation_score: int = 0
    level: int = 1
    level_name: str = "Newcomer"
    points_to_next_level: int = 0
    rank: Optional[int] = None
