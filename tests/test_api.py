"""HTTP-level tests for the public API, backed by an in-memory store."""
import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

from app.api.deps import get_store
from app.main import app
from app.store.memory import InMemoryDocumentStore
from app.utils.errors import PersistenceFailure
from app.utils.keys import user_matches_path

from conftest import make_profile


@pytest.fixture
def api_store():
    return InMemoryDocumentStore()


@pytest.fixture
def client(api_store):
    app.dependency_overrides[get_store] = lambda: api_store
    yield TestClient(app)
    app.dependency_overrides.clear()


def save_profile(client, user_id, **kwargs):
    response = client.put(f"/api/v1/profiles/{user_id}", json=make_profile(**kwargs))
    assert response.status_code == 200
    return response.json()


def swipe(client, swiper, swiped, liked=True):
    return client.post("/api/v1/swipes", json={"swiper_id": swiper, "swiped_id": swiped, "liked": liked})


def match(client, a="alice", b="bob"):
    swipe(client, a, b)
    return swipe(client, b, a)


class TestHealth:
    def test_liveness(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestProfiles:
    def test_save_and_fetch(self, client):
        saved = save_profile(client, "alice")
        assert saved == {"user_id": "alice", "is_profile_complete": True, "scores_updated": 0}

        fetched = client.get("/api/v1/profiles/alice").json()
        assert fetched["id"] == "alice"
        assert "createdAt" in fetched and "updatedAt" in fetched

    def test_complete_profile_refreshes_scores(self, client):
        save_profile(client, "alice")
        saved = save_profile(client, "bob", budget=(800, 1200))
        assert saved["scores_updated"] == 1
        score = client.get("/api/v1/compatibility/alice/bob").json()
        assert score["overallScore"] == 100.0

    def test_incomplete_profile_skips_scoring(self, client):
        save_profile(client, "alice")
        assert save_profile(client, "bob", complete=False)["scores_updated"] == 0

    def test_unknown_profile(self, client):
        assert client.get("/api/v1/profiles/ghost").status_code == 404


class TestSwipesAndMatches:
    def test_mutual_like_matches(self, client):
        save_profile(client, "alice")
        first = swipe(client, "alice", "bob")
        assert first.status_code == 201
        assert first.json()["status"] == "no_match"
        assert first.json()["isMutualMatch"] is False

        second = swipe(client, "bob", "alice")
        body = second.json()
        assert body["status"] == "matched"
        assert body["isMutualMatch"] is True
        assert body["outcome"]["otherUserId"] == "alice"
        assert body["outcome"]["otherProfile"]["id"] == "alice"

        listing = client.get("/api/v1/matches/bob").json()
        assert listing["matchIds"] == ["alice"]

    def test_pass_is_recorded_without_match_check(self, client):
        response = swipe(client, "alice", "bob", liked=False)
        assert response.json() == {"status": "recorded", "isMutualMatch": False, "outcome": None}

    def test_self_swipe_rejected(self, client):
        assert swipe(client, "alice", "alice").status_code == 422

    def test_match_listing_with_profiles_and_repair(self, client, api_store):
        save_profile(client, "bob")
        match(client, "alice", "bob")
        match(client, "alice", "carol")

        asyncio.run(api_store.delete(user_matches_path("carol"), "alice"))

        listing = client.get("/api/v1/matches/alice", params={"repair": True, "include_profiles": True}).json()
        assert listing["repairedCount"] == 1
        assert listing["matchIds"] == ["bob"]
        assert listing["profiles"][0]["id"] == "bob"

    def test_repair_endpoint(self, client):
        match(client)
        assert client.post("/api/v1/matches/alice/repair").json() == {"userId": "alice", "repairedCount": 0}

    def test_unmatch(self, client):
        match(client)
        response = client.delete("/api/v1/matches/alice/bob")
        assert response.status_code == 200
        assert response.json()["status"] == "unmatched"
        assert client.get("/api/v1/matches/bob").json()["matchIds"] == []

    def test_store_outage_maps_to_503(self, client, api_store):
        with patch.object(api_store, "set", AsyncMock(side_effect=PersistenceFailure("set", "down"))):
            assert swipe(client, "alice", "bob").status_code == 503


class TestCompatibilityAndDiscovery:
    def test_missing_profile_is_404(self, client):
        save_profile(client, "alice")
        assert client.get("/api/v1/compatibility/alice/ghost").status_code == 404

    def test_discovery_ranking_and_filters(self, client):
        save_profile(client, "alice")
        save_profile(client, "bob", budget=(800, 1200), gender="Male")
        save_profile(client, "carol", budget=(2000, 3000), room_type="shared", location="Denver")

        ranked = client.post("/api/v1/discovery/alice").json()
        assert [c["userId"] for c in ranked] == ["bob", "carol"]

        filtered = client.post("/api/v1/discovery/alice", json={"gender": "Male"}).json()
        assert [c["userId"] for c in filtered] == ["bob"]

        match(client, "alice", "bob")
        after_match = client.post("/api/v1/discovery/alice").json()
        assert [c["userId"] for c in after_match] == ["carol"]

    def test_discovery_without_profile(self, client):
        save_profile(client, "bob", gender="Male")
        response = client.post("/api/v1/discovery/ghost")
        assert response.status_code == 200
        assert [c["userId"] for c in response.json()] == ["bob"]
        assert response.json()[0]["scoreIsDefault"] is True


class TestConversations:
    def test_requires_match(self, client):
        response = client.post("/api/v1/conversations", json={"user_a_id": "alice", "user_b_id": "bob"})
        assert response.status_code == 403

    def test_message_flow(self, client):
        match(client)
        opened = client.post("/api/v1/conversations", json={"user_a_id": "bob", "user_b_id": "alice"})
        conversation_id = opened.json()["conversationId"]
        assert conversation_id == "alice_bob"

        sent = client.post(
            f"/api/v1/conversations/{conversation_id}/messages",
            json={"sender_id": "alice", "text": "Is the room still free?"},
        )
        assert sent.status_code == 201
        assert sent.json()["conversationId"] == conversation_id

        history = client.get(f"/api/v1/conversations/{conversation_id}/messages", params={"viewer_id": "bob"}).json()
        assert [m["text"] for m in history] == ["Is the room still free?"]
        assert history[0]["senderId"] == "alice"

        listing = client.get("/api/v1/conversations", params={"user_id": "bob"}).json()
        assert listing[0]["conversation"]["lastMessageText"] == "Is the room still free?"
        assert listing[0]["otherUserId"] == "alice"

    def test_empty_message_is_422(self, client):
        match(client)
        client.post("/api/v1/conversations", json={"user_a_id": "alice", "user_b_id": "bob"})
        response = client.post("/api/v1/conversations/alice_bob/messages", json={"sender_id": "alice", "text": "  "})
        assert response.status_code == 422

    def test_send_after_one_sided_unmatch_is_403(self, client, api_store):
        match(client)
        client.post("/api/v1/conversations", json={"user_a_id": "alice", "user_b_id": "bob"})

        asyncio.run(api_store.delete(user_matches_path("bob"), "alice"))

        response = client.post("/api/v1/conversations/alice_bob/messages", json={"sender_id": "alice", "text": "hi"})
        assert response.status_code == 403

    def test_unmatch_removes_conversation(self, client):
        match(client)
        client.post("/api/v1/conversations", json={"user_a_id": "alice", "user_b_id": "bob"})
        client.delete("/api/v1/matches/alice/bob")
        response = client.post("/api/v1/conversations/alice_bob/messages", json={"sender_id": "alice", "text": "hi"})
        assert response.status_code == 403

    def test_websocket_initial_snapshot(self, client):
        match(client)
        client.post("/api/v1/conversations", json={"user_a_id": "alice", "user_b_id": "bob"})
        client.post("/api/v1/conversations/alice_bob/messages", json={"sender_id": "bob", "text": "hello"})

        with client.websocket_connect("/api/v1/conversations/alice_bob/ws?user_id=alice") as ws:
            snapshot = ws.receive_json()
        assert [m["text"] for m in snapshot["messages"]] == ["hello"]

    def test_websocket_hides_messages_when_unmatched(self, client):
        with client.websocket_connect("/api/v1/conversations/alice_bob/ws?user_id=alice") as ws:
            assert ws.receive_json() == {"messages": []}

    def test_conversation_list_websocket_snapshot(self, client):
        match(client)
        client.post("/api/v1/conversations", json={"user_a_id": "alice", "user_b_id": "bob"})

        with client.websocket_connect("/api/v1/conversations/ws?user_id=bob") as ws:
            snapshot = ws.receive_json()
        assert [c["otherUserId"] for c in snapshot["conversations"]] == ["alice"]
        assert snapshot["conversations"][0]["conversation"]["id"] == "alice_bob"
