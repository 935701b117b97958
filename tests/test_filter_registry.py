"""
Tests for chat_moderation/services/filter_registry.py
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from chat_moderation.lib.errors import StoreError
from chat_moderation.models.content import ContentFilter
from chat_moderation.models.enums import FilterType, EventType
from chat_moderation.services.filter_registry import (
    FilterRegistry,
    InvalidMatcher,
    LiteralMatcher,
    RegexMatcher,
    compile_filter,
)


class TestCompileFilter:
    """Tagged matchers."""

    def test_literal(self):
        compiled = compile_filter(ContentFilter(filter_type=FilterType.KEYWORD, pattern="Refund"))
        assert isinstance(compiled.matcher, LiteralMatcher)
        assert compiled.matcher.matches("I want a REFUND")

    def test_regex(self):
        compiled = compile_filter(ContentFilter(filter_type=FilterType.SPAM, pattern=r"buy\s+now", is_regex=True))
        assert isinstance(compiled.matcher, RegexMatcher)
        assert compiled.matcher.matches("BUY   NOW")

    def test_literal_does_not_interpret_regex(self):
        compiled = compile_filter(ContentFilter(filter_type=FilterType.KEYWORD, pattern="a.b"))
        assert not compiled.matcher.matches("axb")
        assert compiled.matcher.matches("a.b")

    def test_invalid_regex(self):
        compiled = compile_filter(ContentFilter(filter_type=FilterType.SPAM, pattern="[unclosed", is_regex=True))
        assert isinstance(compiled.matcher, InvalidMatcher)
        assert not compiled.is_valid
        assert not compiled.matcher.matches("[unclosed")


class TestFilterRegistry:
    """Loading, caching and edits."""

    @pytest.mark.asyncio
    async def test_loads_only_active(self, registry, make_filter, store):
        keep = make_filter(FilterType.PROFANITY, "darn")
        dropped = make_filter(FilterType.PROFANITY, "blast")
        store.filters[dropped.id] = dropped.model_copy(update={"is_active": False})

        assert await registry.refresh() == 1
        assert [f.id for f in registry.active_filters()] == [keep.id]

    @pytest.mark.asyncio
    async def test_filter_by_type(self, registry, make_filter):
        make_filter(FilterType.PROFANITY, "darn")
        make_filter(FilterType.KEYWORD, "refund")
        await registry.refresh()

        assert [f.pattern for f in registry.active_filters(FilterType.KEYWORD)] == ["refund"]

    @pytest.mark.asyncio
    async def test_ensure_loaded_loads_once(self, registry, make_filter):
        make_filter(FilterType.PROFANITY, "darn")
        await registry.ensure_loaded()

        make_filter(FilterType.PROFANITY, "blast")
        await registry.ensure_loaded()

        # Stale read until refresh
        assert len(registry.active_filters()) == 1

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_cache(self, store, make_filter):
        make_filter(FilterType.PROFANITY, "darn")
        registry = FilterRegistry(store, max_age_seconds=1)
        await registry.ensure_loaded()

        registry.loaded_at = datetime.utcnow() - timedelta(seconds=10)
        store.list_filters = AsyncMock(side_effect=StoreError("down"))
        await registry.ensure_loaded()

        assert [f.pattern for f in registry.active_filters()] == ["darn"]

    @pytest.mark.asyncio
    async def test_add_filter(self, registry, store, emitter):
        added = await registry.add_filter(FilterType.SPAM, r"free\s+coins", is_regex=True, severity=2)

        assert added.id in store.filters
        assert [f.id for f in registry.active_filters()] == [added.id]
        event = emitter.recent[-1]
        assert event.event_type == EventType.FILTER_CHANGED
        assert event.payload["change"] == "added"

    @pytest.mark.asyncio
    async def test_deactivate_filter(self, registry, store):
        added = await registry.add_filter(FilterType.KEYWORD, "refund")

        assert await registry.deactivate_filter(added.id) is True
        assert registry.active_filters() == []
        assert store.filters[added.id].is_active is False

    @pytest.mark.asyncio
    async def test_deactivate_unknown(self, registry):
        added = ContentFilter(filter_type=FilterType.KEYWORD, pattern="x")
        assert await registry.deactivate_filter(added.id) is False
