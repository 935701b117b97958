"""
Realtime data models.
Rate-limit windows, chat submissions and moderation events.
"""

from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field
from uuid import UUID, uuid4

from chat_moderation.models.enums import EventType
from chat_moderation.models.content import Identity, ContentMetadata


class RateLimitWindow(BaseModel):
    """Fixed window counter for one identity and action."""
    identifier: str
    action_type: str = "message_post"
    window_start: datetime = Field(default_factory=datetime.utcnow)
    count: int = 0

    def is_expired(self, now: datetime, window_size_seconds: int) -> bool:
        return (now - self.window_start).total_seconds() > window_size_seconds


class ChatMessage(BaseModel):
    """
    Candidate chat message as consumed from the chat stream.
    """
    id: UUID = Field(default_factory=uuid4)
    user_id: Optional[str] = None
    anonymous_token: Optional[str] = None
    channel_id: Optional[str] = None
    text: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    def identity(self) -> Identity:
        return Identity(user_id=self.user_id, anonymous_token=self.anonymous_token)

    def metadata(self) -> ContentMetadata:
        return ContentMetadata(content_id=str(self.id), channel_id=self.channel_id)


class ModerationEvent(BaseModel):
    """
    State-transition notification for observers and dashboards.
    Ordered per channel via sequence; unordered across channels.
    """
    event_id: UUID = Field(default_factory=uuid4)
    event_type: EventType
    channel: str
    sequence: int = 0
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)
