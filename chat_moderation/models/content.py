"""
Content filter, violation and verdict data models.
Pydantic models for type safety and validation.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, model_validator
from uuid import UUID, uuid4

from chat_moderation.models.enums import (
    FilterType, DecisionSource, ExternalAction, ContentType
)


class ContentFilter(BaseModel):
    """
    Moderator-managed pattern rule.
    Read-only to the scoring path; edited through the filter registry.
    """
    id: UUID = Field(default_factory=uuid4)
    filter_type: FilterType
    pattern: str = Field(min_length=1)
    is_regex: bool = False
    severity: int = Field(ge=1, le=3, default=1)
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Violation(BaseModel):
    """A single detector match and its score contribution."""
    label: str
    weight: int = 0
    category: Optional[FilterType] = None
    # Never exposed to the author, see ModerationVerdict.public_violations()
    pattern: Optional[str] = None


class Identity(BaseModel):
    """Who is posting: an authenticated user or an anonymous token."""
    user_id: Optional[str] = None
    anonymous_token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def identifier(self) -> str:
        """Rate-limit key for this identity."""
        if self.user_id:
            return self.user_id
        return f"anon:{self.anonymous_token or 'anonymous'}"


class ContentMetadata(BaseModel):
    """Metadata about the submitted content."""
    content_id: Optional[str] = None
    content_type: ContentType = ContentType.MESSAGE
    channel_id: Optional[str] = None
    parent_content_id: Optional[str] = None  # For thread replies
    author_name: Optional[str] = None


class ModerationVerdict(BaseModel):
    """
    Result of evaluating one candidate message.
    confidence_score is the total score capped at 100.
    """
    allowed: bool = True
    flagged: bool = False
    auto_blocked: bool = False
    violations: List[Violation] = Field(default_factory=list)
    confidence_score: int = Field(ge=0, le=100, default=0)

    total_score: int = 0
    decision_source: DecisionSource = DecisionSource.LOCAL
    rate_limited: bool = False
    soft_warning: bool = False

    @model_validator(mode="after")
    def _blocked_is_not_allowed(self) -> "ModerationVerdict":
        if self.auto_blocked and self.allowed:
            raise ValueError("auto_blocked verdict cannot be allowed")
        return self

    @property
    def violation_labels(self) -> List[str]:
        return [v.label for v in self.violations]

    def public_violations(self) -> List[str]:
        """Category-level labels safe to show the author (no patterns)."""
        labels: List[str] = []
        for violation in self.violations:
            label = violation.label.split(":", 1)[0] if violation.pattern else violation.label
            if label not in labels:
                labels.append(label)
        return labels

    def public_view(self) -> Dict[str, Any]:
        """Verdict as returned to the posting client."""
        return {
            "allowed": self.allowed,
            "flagged": self.flagged,
            "auto_blocked": self.auto_blocked,
            "rate_limited": self.rate_limited,
            "soft_warning": self.soft_warning,
            "violations": self.public_violations(),
            "confidence_score": self.confidence_score,
        }


class TriggeredFilter(BaseModel):
    """Filter reported by the external validation service."""
    filter_id: str
    filter_name: str
    severity_level: int = 1
    action_type: str = "warn"


class ExternalValidationResult(BaseModel):
    """
    Authoritative decision from the external content-validation service.
    confidence_score is a 0..1 fraction as returned by the service.
    """
    action_required: ExternalAction
    violation_score: int = 0
    confidence_score: float = Field(ge=0.0, le=1.0, default=0.0)
    triggered_filters: List[TriggeredFilter] = Field(default_factory=list)
    user_reputation: Optional[int] = None
