"""HTTP API tests through FastAPI's TestClient, model stubbed."""

import json

import pytest
from fastapi.testclient import TestClient

from backend.app import create_app
from conftest import FINGERPRINT_JSON, SHIPPED_POSTS, tool_call
from voiceforge.llm import UpstreamTimeoutError
from voiceforge.models import Pattern

GOOD_DRAFT = (
    "The launch failed at 9am. I shipped it anyway. "
    "200 signups still came in. That's the part I can't explain."
)


@pytest.fixture
def client(tmp_path, stub_llm):
    with TestClient(create_app(tmp_path, llm=stub_llm)) as c:
        yield c


def _services(client):
    return client.app.state.services


def _seed_corpus(client, user_id="u1"):
    resp = client.post(f"/api/users/{user_id}/exemplars", json={"texts": [
        {"id": f"p{i}", "text": text, "engagement": engagement}
        for i, (text, engagement) in enumerate(SHIPPED_POSTS)
    ]})
    assert resp.status_code == 200
    return resp.json()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_put_profile(client):
    resp = client.put("/api/users/u1/profile", json={"full_name": "Sam Rivera", "goals": ["ship"]})
    assert resp.status_code == 200
    assert resp.json()["user_id"] == "u1"
    assert _services(client).storage.get_profile("u1").full_name == "Sam Rivera"


def test_add_exemplars_and_status(client):
    assert _seed_corpus(client) == {"added": 5, "corpus_size": 5}
    assert _seed_corpus(client) == {"added": 5, "corpus_size": 5}

    status = client.get("/api/users/u1/status").json()
    assert status["has_corpus"] is True
    assert status["corpus_size"] == 5
    assert status["has_engagement_data"] is True
    assert status["has_fingerprint"] is False


def test_add_exemplars_rejects_empty_text(client):
    resp = client.post("/api/users/u1/exemplars", json={"texts": [{"text": ""}]})
    assert resp.status_code == 422


def test_fingerprint_get_and_delete(client, stub_llm):
    _seed_corpus(client)
    stub_llm.queue("fingerprint_extraction", json.dumps(FINGERPRINT_JSON))

    body = client.get("/api/users/u1/fingerprint").json()
    assert body["fingerprint"]["signature_phrases"] == ["I shipped it anyway"]
    assert body["last_updated"] is not None

    # second read is served from the cache
    client.get("/api/users/u1/fingerprint")
    assert stub_llm.count("fingerprint_extraction") == 1

    assert client.delete("/api/users/u1/fingerprint").json() == {"ok": True}
    assert _services(client).fingerprints.peek("u1") is None


def test_fingerprint_without_corpus_is_404(client):
    resp = client.get("/api/users/u1/fingerprint")
    assert resp.status_code == 404
    assert resp.json()["reason"] == "no_corpus"


def test_generate(client, stub_llm):
    _seed_corpus(client)
    stub_llm.queue("fingerprint_extraction", json.dumps(FINGERPRINT_JSON))
    stub_llm.queue("generation", GOOD_DRAFT)
    stub_llm.queue("similarity_judge", json.dumps({"similarity": 8}))

    resp = client.post("/api/users/u1/generate", json={"topic": "a launch that failed"})

    assert resp.status_code == 200
    assert resp.json()["text"] == GOOD_DRAFT
    assert resp.json()["score"] == 8


def test_generate_without_corpus_is_404(client, stub_llm):
    resp = client.post("/api/users/u1/generate", json={"topic": "anything"})
    assert resp.status_code == 404
    assert stub_llm.calls == []


def test_generate_rejected_is_422(client, stub_llm):
    _seed_corpus(client)
    draft = "We built a robust solution. I shipped it anyway 2 times."
    stub_llm.queue("fingerprint_extraction", json.dumps(FINGERPRINT_JSON))
    stub_llm.queue("generation", draft, draft)

    resp = client.post("/api/users/u1/generate", json={"topic": "launch"})

    assert resp.status_code == 422
    body = resp.json()
    assert body["reason"] == "authenticity_rejected"
    assert body["score"] == 0


def test_agent_stats(client, stub_llm):
    stub_llm.queue("orchestrator", tool_call("check_user_status"), "You have no posts yet.")
    client.post("/api/chat", json={"user_id": "u1", "message": "hi"})

    stats = client.get("/api/users/u1/agent-stats").json()
    assert stats["total_requests"] == 1
    assert stats["success_rate"] == 100
    assert stats["top_tools"] == [{"tool": "check_user_status", "count": 1}]

    assert client.get("/api/users/u1/agent-stats", params={"days": 0}).status_code == 422


# ---------------------------------------------------------------------------
# Patterns and conversations
# ---------------------------------------------------------------------------

def test_pattern_feedback(client):
    _services(client).storage.upsert_pattern(
        Pattern(id="p1", user_id="u1", type="hook", description="Lead with the failure", success_rate=50),
    )

    resp = client.post("/api/patterns/p1/feedback", json={"engagement": 8, "feedback": "loved"})
    assert resp.json()["updated"] is True
    assert resp.json()["pattern"]["success_rate"] > 50

    resp = client.post("/api/patterns/p1/feedback", json={"engagement": 8, "feedback": "liked"})
    assert resp.json()["updated"] is False


def test_pattern_feedback_errors(client):
    assert client.post(
        "/api/patterns/missing/feedback", json={"engagement": 8, "feedback": "loved"},
    ).status_code == 404
    assert client.post(
        "/api/patterns/p1/feedback", json={"engagement": 8, "feedback": "meh"},
    ).status_code == 422


def test_conversation_context(client, stub_llm):
    stub_llm.queue("orchestrator", "Sure.")
    client.post("/api/chat", json={"user_id": "u1", "message": "hi", "conversation_id": "c1"})

    metrics = client.get("/api/conversations/c1/context").json()
    assert metrics["turn_count"] == 2
    assert metrics["health"] == "healthy"
    assert metrics["needs_deep_summary"] is False

    assert client.get("/api/conversations/nope/context").status_code == 404


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

def test_chat(client, stub_llm):
    stub_llm.queue("orchestrator", "Want a post about the launch?")

    body = client.post("/api/chat", json={"user_id": "u1", "message": "hi", "conversation_id": "c1"}).json()

    assert body["conversation_id"] == "c1"
    assert body["state"] == "finalizing"
    assert body["answer"] == "Want a post about the launch?"


def test_chat_assigns_conversation_id(client, stub_llm):
    stub_llm.queue("orchestrator", "ok")
    body = client.post("/api/chat", json={"user_id": "u1", "message": "hi"}).json()
    assert _services(client).storage.get_conversation(body["conversation_id"]).user_id == "u1"


def test_chat_other_users_conversation_is_404(client, stub_llm):
    _services(client).storage.create_conversation("u2", conversation_id="c1")
    resp = client.post("/api/chat", json={"user_id": "u1", "message": "hi", "conversation_id": "c1"})
    assert resp.status_code == 404
    assert stub_llm.calls == []


def test_chat_stream_other_users_conversation_is_404(client, stub_llm):
    _services(client).storage.create_conversation("u2", conversation_id="c1")
    resp = client.post("/api/chat", json={
        "user_id": "u1", "message": "hi", "conversation_id": "c1", "stream": True,
    })
    assert resp.status_code == 404
    assert resp.text != ""
    assert stub_llm.calls == []
    assert _services(client).storage.list_turns("c1") == []


def test_chat_upstream_failure_is_5xx(client, stub_llm):
    stub_llm.queue("orchestrator", UpstreamTimeoutError("slow"))
    resp = client.post("/api/chat", json={"user_id": "u1", "message": "hi"})
    assert resp.status_code == 504
    assert resp.json()["reason"] == "upstream_error"


def test_chat_stream(client, stub_llm):
    stub_llm.queue("orchestrator", "draft")
    stub_llm.queue("orchestrator_stream", "Here it comes")

    resp = client.post("/api/chat", json={
        "user_id": "u1", "message": "hi", "conversation_id": "c1", "stream": True,
    })

    assert resp.status_code == 200
    assert resp.headers["x-conversation-id"] == "c1"
    assert resp.text == "Here it comes"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def test_settings_patch_masks_key_and_rebuilds(client, stub_llm, monkeypatch):
    monkeypatch.delenv("LLM_API_KEY", raising=False)
    monkeypatch.delenv("LLM_MODEL", raising=False)
    old = _services(client)
    resp = client.patch("/api/settings", json={
        "llm": {"api_key": "sk-secret", "model": "gpt-4o-mini"},
        "validation": {"expect_numbers": False},
    })

    assert resp.status_code == 200
    body = resp.json()
    assert body["llm"]["api_key"] == "***"
    assert body["llm"]["model"] == "gpt-4o-mini"
    assert body["validation"]["expect_numbers"] is False

    services = _services(client)
    assert services is not old
    assert services.llm is stub_llm
    assert services.settings.llm.api_key == "sk-secret"
    assert client.get("/api/settings").json()["llm"]["api_key"] == "***"


def test_settings_patch_invalid_is_422(client):
    resp = client.patch("/api/settings", json={"llm": {"timeout": "forever"}})
    assert resp.status_code == 422
    assert client.get("/api/settings").json()["llm"]["timeout"] == 60.0
