"""
Per-identity message rate limiter.
Fixed 60s windows kept in the store; check-and-increment is a single
atomic store call. Any store failure denies the message.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from chat_moderation.lib.config import RateLimitSettings
from chat_moderation.lib.database import ModerationStore
from chat_moderation.lib.metrics import metrics
from chat_moderation.lib.resilience import fail_closed
from chat_moderation.models.content import Identity

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Quota: 20/min authenticated, 10/min anonymous, halved (floored) for
    messages longer than 200 characters.
    """

    def __init__(
        self,
        store: ModerationStore,
        settings: Optional[RateLimitSettings] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.settings = settings or RateLimitSettings()
        self.clock = clock

    def quota_for(self, is_authenticated: bool, message_length: int) -> int:
        base = self.settings.authenticated_limit if is_authenticated else self.settings.anonymous_limit
        if message_length > self.settings.long_message_threshold:
            return base // 2
        return base

    def is_strict_mode(self, is_authenticated: bool) -> bool:
        # Anonymous traffic runs strict; only the lower base quota applies today
        return not is_authenticated

    @fail_closed("rate_limiter")
    async def allow(self, identifier: str, is_authenticated: bool, message_length: int) -> bool:
        """Count this attempt and report whether it fits in the current window."""
        limit = self.quota_for(is_authenticated, message_length)
        count = await self.store.increment_rate_window(
            identifier,
            self.settings.action_type,
            self.settings.window_seconds,
            self.clock(),
        )

        allowed = count <= limit
        if not allowed:
            metrics.record_rate_limit_denial(is_authenticated)
            logger.warning(
                f"Rate limit exceeded for {identifier}: {count}/{limit} "
                f"(strict={self.is_strict_mode(is_authenticated)})"
            )
        return allowed

    async def allow_identity(self, identity: Identity, message_length: int) -> bool:
        return await self.allow(identity.identifier, identity.is_authenticated, message_length)
