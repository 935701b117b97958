"""
Tests for chat_moderation/api/main.py
"""

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from chat_moderation.api.main import create_app


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


def add_filter(client, filter_type, pattern, severity=1, is_regex=False):
    response = client.post("/filters", json={
        "filter_type": filter_type,
        "pattern": pattern,
        "severity": severity,
        "is_regex": is_regex,
    })
    assert response.status_code == 201
    return response.json()


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestEvaluate:
    """POST /moderation/evaluate"""

    def test_clean_message(self, client):
        response = client.post("/moderation/evaluate", json={"text": "hello", "user_id": "u1"})
        assert response.status_code == 200
        body = response.json()
        assert body["allowed"] is True
        assert body["violations"] == []

    def test_blocked_message_hides_pattern(self, client):
        add_filter(client, "profanity", "heck", severity=3)
        add_filter(client, "keyword", "refund", severity=2)

        body = client.post("/moderation/evaluate", json={
            "text": "heck no refund zzzzzz", "user_id": "u1",
        }).json()

        assert body["auto_blocked"] is True
        assert body["confidence_score"] == 100
        assert "heck" not in str(body["violations"])
        assert "Profanity" in body["violations"]

    def test_missing_text_rejected(self, client):
        assert client.post("/moderation/evaluate", json={"user_id": "u1"}).status_code == 422


class TestSanctions:
    """POST /sanctions and user reads"""

    def test_mute_and_status(self, client):
        response = client.post("/sanctions", json={
            "target_user_id": "u1", "action_type": "mute", "reason": "flooding", "duration_minutes": 30,
        })
        assert response.status_code == 200
        assert response.json()["status"] == "muted"

        status = client.get("/users/u1/status").json()
        assert status["is_muted"] is True
        assert status["is_banned"] is False

        history = client.get("/users/u1/history").json()
        assert [h["action_type"] for h in history] == ["mute"]

    def test_invalid_duration(self, client):
        response = client.post("/sanctions", json={
            "target_user_id": "u1", "action_type": "mute", "duration_minutes": 0,
        })
        assert response.status_code == 422

    def test_unknown_action(self, client):
        response = client.post("/sanctions", json={"target_user_id": "u1", "action_type": "exile"})
        assert response.status_code == 422


class TestReputation:
    """Reputation endpoints"""

    def test_award_and_profile(self, client):
        response = client.post("/users/u1/reputation", json={"action_type": "achievement_unlocked", "points": 120})
        assert response.json()["level_name"] == "Regular"

        profile = client.get("/users/u1/reputation").json()
        assert profile["reputation_score"] == 120
        assert profile["rank"] == 1
        assert profile["points_to_next_level"] == 180


class TestQueue:
    """Review queue endpoints"""

    def flag_message(self, client):
        client.post("/moderation/evaluate", json={
            "text": "AAAAAA HTTP://X.COM HTTP://Y.COM HTTP://Z.COM", "user_id": "u9",
        })
        items = client.get("/queue").json()
        assert len(items) == 1
        return items[0]

    def test_reject_flow(self, client):
        item = self.flag_message(client)

        response = client.post(f"/queue/{item['id']}/disposition", json={"outcome": "rejected", "moderator_id": "m1"})
        assert response.status_code == 200
        assert response.json()["item"]["status"] == "rejected"

        assert client.get("/users/u9/status").json()["total_warnings"] == 1
        assert client.get("/queue").json() == []
        assert len(client.get("/queue", params={"status": "rejected"}).json()) == 1

    def test_terminal_item_conflict(self, client):
        item = self.flag_message(client)
        client.post(f"/queue/{item['id']}/disposition", json={"outcome": "approved"})

        response = client.post(f"/queue/{item['id']}/disposition", json={"outcome": "rejected"})
        assert response.status_code == 409

    def test_unknown_item(self, client):
        response = client.post(f"/queue/{uuid4()}/disposition", json={"outcome": "approved"})
        assert response.status_code == 404


class TestFilters:
    """Filter management"""

    def test_add_list_delete(self, client):
        added = add_filter(client, "spam", r"free\s+coins", is_regex=True)

        listed = client.get("/filters").json()
        assert [f["id"] for f in listed] == [added["id"]]
        assert client.get("/filters", params={"filter_type": "keyword"}).json() == []

        assert client.delete(f"/filters/{added['id']}").status_code == 200
        assert client.get("/filters").json() == []

    def test_invalid_regex_rejected(self, client):
        response = client.post("/filters", json={"filter_type": "spam", "pattern": "(oops", "is_regex": True})
        assert response.status_code == 422

    def test_delete_unknown(self, client):
        assert client.delete(f"/filters/{uuid4()}").status_code == 404
