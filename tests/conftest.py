"""
Chat Moderation - Test Fixtures
===============================

Shared fixtures for all tests.
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from chat_moderation.lib.database import InMemoryStore
from chat_moderation.models.content import ContentFilter
from chat_moderation.models.enums import FilterType
from chat_moderation.services.filter_registry import FilterRegistry
from chat_moderation.services.moderation_service import ModerationService
from chat_moderation.services.realtime_service import EventEmitter


T0 = datetime(2024, 3, 1, 12, 0, 0)


class FakeClock:
    """Settable clock passed wherever a component accepts clock=."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class YieldingStore(InMemoryStore):
    """
    InMemoryStore that gives up the event loop around reads and writes,
    the way a networked store does, so interleavings can happen.
    """

    async def get_user_status(self, user_id):
        status = await super().get_user_status(user_id)
        await asyncio.sleep(0)
        return status

    async def commit_sanction(self, action, transition):
        await asyncio.sleep(0)
        return await super().commit_sanction(action, transition)

    async def get_queue_item(self, item_id):
        item = await super().get_queue_item(item_id)
        await asyncio.sleep(0)
        return item

    async def update_queue_item(self, item, expected):
        await asyncio.sleep(0)
        return await super().update_queue_item(item, expected)


def add_filter(store, filter_type, pattern, severity=1, is_regex=False, created_at=None):
    """Insert a filter straight into an InMemoryStore."""
    content_filter = ContentFilter(
        filter_type=filter_type,
        pattern=pattern,
        severity=severity,
        is_regex=is_regex,
    )
    if created_at is not None:
        content_filter = content_filter.model_copy(update={"created_at": created_at})
    store.filters[content_filter.id] = content_filter
    return content_filter


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def yielding_store():
    return YieldingStore()


@pytest.fixture
def emitter():
    return EventEmitter()


@pytest.fixture
def registry(store, emitter):
    return FilterRegistry(store, emitter)


@pytest.fixture
def service(store, emitter, clock):
    return ModerationService(store, emitter=emitter, clock=clock)


@pytest.fixture
def profanity_filters(store):
    """The filters used across the scoring scenarios."""
    return {
        "darn": add_filter(store, FilterType.PROFANITY, "darn", severity=2),
        "heck": add_filter(store, FilterType.PROFANITY, "heck", severity=3),
        "refund": add_filter(store, FilterType.KEYWORD, "refund", severity=2),
    }


@pytest.fixture
def make_filter(store):
    """add_filter bound to the test store."""
    def _make(filter_type, pattern, severity=1, is_regex=False, created_at=None):
        return add_filter(store, filter_type, pattern, severity, is_regex, created_at)
    return _make
