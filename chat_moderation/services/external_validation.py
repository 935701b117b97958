"""
External content-validation client.
Calls the authoritative validation service over HTTP. Every failure mode
(timeout, transport error, non-2xx, malformed body) surfaces as
ExternalValidationError so the caller can fall back to local scoring.
"""

import asyncio
import logging
from typing import Optional

import aiohttp
from pydantic import ValidationError

from chat_moderation.lib.errors import ExternalValidationError
from chat_moderation.models.content import ExternalValidationResult

logger = logging.getLogger(__name__)


class ExternalValidationClient:
    """aiohttp client for the validation service"""

    def __init__(self, url: str, timeout_seconds: float = 3.0):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create persistent HTTP session."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=20, ttl_dns_cache=300)
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            )
        return self._session

    async def validate(
        self,
        content: str,
        user_id: Optional[str] = None,
        context_type: str = "message",
    ) -> ExternalValidationResult:
        payload = {
            "content": content,
            "user_id": user_id,
            "context_type": context_type,
        }
        try:
            session = await self._get_session()
            async with session.post(self.url, json=payload) as response:
                if response.status >= 400:
                    raise ExternalValidationError(f"Validation service returned HTTP {response.status}")
                body = await response.json()
        except ExternalValidationError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ExternalValidationError(f"Validation service unavailable: {e}") from e

        try:
            result = ExternalValidationResult.model_validate(body)
        except ValidationError as e:
            raise ExternalValidationError(f"Malformed validation response: {e}") from e

        logger.debug(f"Validation for {user_id or 'anonymous'}: {result.action_required.value} ({result.violation_score})")
        return result

    async def close(self) -> None:
        """Close HTTP session on shutdown."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
