"""
Enumeration definitions for the chat trust-policy engine.
Filter types, restriction states, audit actions, queue lifecycle.
"""

from enum import Enum


class FilterType(str, Enum):
    """Kinds of moderator-managed content filters."""
    PROFANITY = "profanity"
    SPAM = "spam"
    KEYWORD = "keyword"


class ContentType(str, Enum):
    """Types of content that can land in the review queue."""
    MESSAGE = "message"
    THREAD_REPLY = "thread_reply"
    PRIVATE_MESSAGE = "private_message"
    PROFILE = "profile"


class DecisionSource(str, Enum):
    """Where a verdict came from."""
    LOCAL = "local"                # In-process signal scorers
    EXTERNAL = "external"          # Authoritative validation service
    RATE_LIMIT = "rate_limit"      # Denied before scoring
    FAIL_OPEN = "fail_open"        # Scoring pipeline failed, content allowed


class ExternalAction(str, Enum):
    """Action requested by the external validation service."""
    ALLOW = "allow"
    FLAG = "flag"
    WARN = "warn"
    AUTO_REMOVE = "auto_remove"


class ExternalMode(str, Enum):
    """How the external validation result combines with the local verdict."""
    DISABLED = "disabled"
    CANONICAL = "canonical"   # External decision wins when available
    LAYERED = "layered"       # Stricter of local and external wins


class QueueStatus(str, Enum):
    """Lifecycle of a review queue item."""
    PENDING = "pending"
    APPROVED = "approved"     # Terminal
    REJECTED = "rejected"     # Terminal
    ESCALATED = "escalated"   # Re-enters pending at higher priority

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.APPROVED, QueueStatus.REJECTED)


class UserStatus(str, Enum):
    """Current restriction state of a user."""
    ACTIVE = "active"
    WARNED = "warned"
    MUTED = "muted"
    BANNED = "banned"
    SUSPENDED = "suspended"


class ActionType(str, Enum):
    """Audit-log action types for sanctions."""
    WARN = "warn"
    MUTE = "mute"
    UNMUTE = "unmute"
    BAN = "ban"
    UNBAN = "unban"
    SUSPEND = "suspend"
    UNSUSPEND = "unsuspend"


class ReputationAction(str, Enum):
    """Activities that earn reputation points."""
    MESSAGE_POST = "message_post"
    REACTION_ADD = "reaction_add"
    HELPFUL_ACTION = "helpful_action"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"


class EventType(str, Enum):
    """Realtime moderation events emitted for dashboards/observers."""
    VERDICT = "verdict"
    QUEUE_ITEM_CREATED = "queue_item_created"
    QUEUE_ITEM_UPDATED = "queue_item_updated"
    SANCTION_APPLIED = "sanction_applied"
    REPUTATION_CHANGED = "reputation_changed"
    FILTER_CHANGED = "filter_changed"
