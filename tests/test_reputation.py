"""
Tests for chat_moderation/services/reputation_service.py
"""

import pytest

from chat_moderation.models.enums import ReputationAction, EventType
from chat_moderation.services.reputation_service import (
    LEVELS,
    ReputationLedger,
    build_profile,
    level_for,
)


@pytest.fixture
def ledger(store, emitter):
    return ReputationLedger(store, emitter)


class TestLevels:
    """Level bands are inclusive and non-overlapping."""

    @pytest.mark.parametrize("score,name", [
        (0, "Newcomer"),
        (99, "Newcomer"),
        (100, "Regular"),
        (299, "Regular"),
        (300, "Contributor"),
        (699, "Contributor"),
        (700, "Veteran"),
        (1499, "Veteran"),
        (1500, "Expert"),
        (2999, "Expert"),
        (3000, "Master"),
        (9999, "Master"),
        (10000, "Legend"),
        (250000, "Legend"),
    ])
    def test_boundaries(self, score, name):
        assert level_for(score).name == name

    def test_bands_are_contiguous(self):
        for lower, upper in zip(LEVELS, LEVELS[1:]):
            assert upper.min_score == lower.max_score + 1

    def test_profile_progress(self):
        profile = build_profile("u1", 250)
        assert profile.level == 2
        assert profile.level_name == "Regular"
        assert profile.points_to_next_level == 50

    def test_top_level_has_no_next(self):
        assert build_profile("u1", 12000).points_to_next_level == 0


class TestLedger:
    """Awards, ranks and activity."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action,points", [
        (ReputationAction.MESSAGE_POST, 2),
        (ReputationAction.REACTION_ADD, 1),
        (ReputationAction.HELPFUL_ACTION, 5),
        (ReputationAction.ACHIEVEMENT_UNLOCKED, 10),
    ])
    async def test_fixed_grants(self, ledger, action, points):
        profile = await ledger.award("u1", action)
        assert profile.reputation_score == points

    @pytest.mark.asyncio
    async def test_explicit_points(self, ledger):
        profile = await ledger.award("u1", ReputationAction.ACHIEVEMENT_UNLOCKED, points=150)
        assert profile.reputation_score == 150
        assert profile.level_name == "Regular"

    @pytest.mark.asyncio
    async def test_scores_accumulate(self, ledger):
        await ledger.award("u1", ReputationAction.MESSAGE_POST)
        await ledger.award("u1", ReputationAction.HELPFUL_ACTION)
        assert await ledger.get_score("u1") == 7

    @pytest.mark.asyncio
    async def test_rank_counts_strictly_higher(self, ledger, store):
        store.reputation.update({"a": 500, "b": 300, "c": 300, "d": 10})

        assert await ledger.rank("a") == 1
        assert await ledger.rank("b") == 2
        assert await ledger.rank("c") == 2
        assert await ledger.rank("d") == 4

    @pytest.mark.asyncio
    async def test_profile_with_rank(self, ledger, store):
        store.reputation.update({"a": 500, "b": 120})
        profile = await ledger.get_profile("b", with_rank=True)
        assert profile.rank == 2
        assert profile.level_name == "Regular"

    @pytest.mark.asyncio
    async def test_unknown_user(self, ledger):
        profile = await ledger.get_profile("nobody")
        assert profile.reputation_score == 0
        assert profile.level_name == "Newcomer"
        assert profile.points_to_next_level == 100

    @pytest.mark.asyncio
    async def test_recent_activity_newest_first(self, ledger):
        await ledger.award("u1", ReputationAction.MESSAGE_POST)
        await ledger.award("u1", ReputationAction.REACTION_ADD)
        await ledger.award("u2", ReputationAction.HELPFUL_ACTION)

        activity = await ledger.recent_activity("u1")
        assert [a.action_type for a in activity] == [ReputationAction.REACTION_ADD, ReputationAction.MESSAGE_POST]

    @pytest.mark.asyncio
    async def test_award_emits_event(self, ledger, emitter):
        await ledger.award("u1", ReputationAction.HELPFUL_ACTION)
        event = emitter.recent[-1]
        assert event.event_type == EventType.REPUTATION_CHANGED
        assert event.payload["reputation_score"] == 5
