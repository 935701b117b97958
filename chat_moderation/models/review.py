"""
Human review data models.
Manages the moderation queue of flagged content.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field
from uuid import UUID, uuid4

from chat_moderation.models.enums import QueueStatus, ContentType


# Initial priority by confidence score (highest band first)
PRIORITY_BANDS = (
    (90, 3),
    (75, 2),
    (0, 1),
)


def priority_for_confidence(confidence_score: int) -> int:
    """Map a verdict confidence score to an initial queue priority."""
    for floor, priority in PRIORITY_BANDS:
        if confidence_score >= floor:
            return priority
    return 1


class ModerationQueueItem(BaseModel):
    """
    Flagged content awaiting a human disposition.
    Owns its lifecycle independently of the originating message.
    """
    id: UUID = Field(default_factory=uuid4)
    content_id: str
    content_type: ContentType = ContentType.MESSAGE
    content_text: str
    author_id: Optional[str] = None
    author_name: Optional[str] = None

    auto_flagged: bool = True
    flag_reason: Optional[str] = None
    confidence_score: int = Field(ge=0, le=100, default=0)
    priority_level: int = Field(ge=1, default=1)

    status: QueueStatus = QueueStatus.PENDING
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
