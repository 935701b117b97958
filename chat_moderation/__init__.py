"""
Trust-policy engine for community chat

Scores candidate messages, enforces per-identity rate limits, keeps the
human review queue, applies user sanctions and tracks reputation.

Usage:
    from chat_moderation.lib.database import InMemoryStore
    from chat_moderation.models.content import Identity
    from chat_moderation.services.moderation_service import ModerationService

    service = ModerationService(InMemoryStore())
    verdict = asyncio.run(service.evaluate_message("hello", Identity(user_id="u1")))
"""

__version__ = "0.1.0"
