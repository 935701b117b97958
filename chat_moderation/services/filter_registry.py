"""
Content filter registry.
Loads moderator-managed filters from the store and compiles them once per
load. Stale reads between refreshes are acceptable.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Pattern, Union
from uuid import UUID

from chat_moderation.lib.database import ModerationStore
from chat_moderation.models.content import ContentFilter
from chat_moderation.models.enums import FilterType, EventType
from chat_moderation.services.realtime_service import EventEmitter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiteralMatcher:
    """Case-insensitive substring match."""
    pattern: str

    def matches(self, text: str) -> bool:
        return self.pattern.lower() in text.lower()


@dataclass(frozen=True)
class RegexMatcher:
    """Pre-compiled case-insensitive regex."""
    regex: Pattern

    def matches(self, text: str) -> bool:
        return self.regex.search(text) is not None


@dataclass(frozen=True)
class InvalidMatcher:
    """Filter whose pattern failed to compile; never matches."""
    reason: str

    def matches(self, text: str) -> bool:
        return False


Matcher = Union[LiteralMatcher, RegexMatcher, InvalidMatcher]


@dataclass(frozen=True)
class CompiledFilter:
    content_filter: ContentFilter
    matcher: Matcher

    @property
    def is_valid(self) -> bool:
        return not isinstance(self.matcher, InvalidMatcher)


def compile_filter(content_filter: ContentFilter) -> CompiledFilter:
    """Build the matcher for one filter; bad regexes become InvalidMatcher."""
    if not content_filter.is_regex:
        return CompiledFilter(content_filter, LiteralMatcher(content_filter.pattern))

    try:
        regex = re.compile(content_filter.pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"Invalid regex pattern in filter {content_filter.id}: {content_filter.pattern!r} ({e})")
        return CompiledFilter(content_filter, InvalidMatcher(str(e)))

    return CompiledFilter(content_filter, RegexMatcher(regex))


class FilterRegistry:
    """
    Holds the active content filters.
    Compiled matchers are cached until the next refresh.
    """

    def __init__(
        self,
        store: ModerationStore,
        emitter: Optional[EventEmitter] = None,
        max_age_seconds: Optional[int] = None,
    ):
        self.store = store
        self.emitter = emitter
        self.max_age_seconds = max_age_seconds
        self._compiled: List[CompiledFilter] = []
        self.loaded_at: Optional[datetime] = None

    @property
    def is_loaded(self) -> bool:
        return self.loaded_at is not None

    async def refresh(self) -> int:
        """Reload active filters from the store; returns how many loaded."""
        filters = await self.store.list_filters(active_only=True)
        self._compiled = [compile_filter(f) for f in filters]
        self.loaded_at = datetime.utcnow()

        invalid = sum(1 for c in self._compiled if not c.is_valid)
        logger.info(f"Loaded {len(self._compiled)} content filters ({invalid} invalid)")
        return len(self._compiled)

    async def ensure_loaded(self) -> None:
        """Load on first use and refresh when older than max_age_seconds."""
        if not self.is_loaded:
            await self.refresh()
            return

        if self.max_age_seconds is None:
            return

        age = (datetime.utcnow() - self.loaded_at).total_seconds()
        if age <= self.max_age_seconds:
            return

        try:
            await self.refresh()
        except Exception as e:
            # Keep serving the previous filter set
            logger.error(f"Filter refresh failed, using cached filters: {e}")

    def compiled_filters(self, filter_type: Optional[FilterType] = None) -> List[CompiledFilter]:
        if filter_type is None:
            return list(self._compiled)
        return [c for c in self._compiled if c.content_filter.filter_type == filter_type]

    def active_filters(self, filter_type: Optional[FilterType] = None) -> List[ContentFilter]:
        return [c.content_filter for c in self.compiled_filters(filter_type)]

    async def add_filter(
        self,
        filter_type: FilterType,
        pattern: str,
        is_regex: bool = False,
        severity: int = 1,
    ) -> ContentFilter:
        """Persist a new active filter and reload the cache."""
        content_filter = ContentFilter(
            filter_type=filter_type,
            pattern=pattern,
            is_regex=is_regex,
            severity=severity,
        )
        compiled = compile_filter(content_filter)
        if not compiled.is_valid:
            logger.warning(f"Adding filter {content_filter.id} with a pattern that will be skipped")

        await self.store.insert_filter(content_filter)
        await self.refresh()
        await self._emit_change("added", content_filter.id, filter_type)
        return content_filter

    async def deactivate_filter(self, filter_id: UUID) -> bool:
        updated = await self.store.set_filter_active(filter_id, False)
        if not updated:
            return False
        await self.refresh()
        await self._emit_change("deactivated", filter_id, None)
        return True

    async def _emit_change(self, change: str, filter_id: UUID, filter_type: Optional[FilterType]) -> None:
        if self.emitter is None:
            return
        await self.emitter.emit(
            EventType.FILTER_CHANGED,
            channel="filters",
            payload={
                "change": change,
                "filter_id": str(filter_id),
                "filter_type": filter_type.value if filter_type else None,
            },
        )
