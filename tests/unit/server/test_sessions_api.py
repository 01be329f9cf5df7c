import json

import httpx
import pytest
from fastapi.testclient import TestClient

from src.catalog import ModelCatalog
from src.server.session.dependencies import (
    set_agent_client,
    set_model_catalog,
    set_session_registry,
    set_session_store,
)
from src.server.session.state import SessionRegistry
from src.server.session.store import SQLiteSessionStore

WIRE_EVENTS = [
    {"type": "meta", "sessionId": "runtime"},
    {"type": "thinking.delta", "text": "plan"},
    {"type": "message.delta", "text": "你好"},
    {"type": "tool.start", "toolName": "search", "input": {"q": "x"}},
    {"type": "tool.end", "toolName": "search", "output": "ok"},
    {"type": "message.done"},
]

CATALOG = [
    {"modelId": "anthropic.claude-v2", "modelName": "Claude", "modelLifecycle": {"status": "ACTIVE"}},
    {"modelId": "old-model", "modelLifecycle": {"status": "LEGACY"}},
]


class FakeAgentClient:
    def __init__(self):
        self.tokens = []

    async def stream(self, request, auth_token=None):
        self.tokens.append(auth_token)
        for event in WIRE_EVENTS:
            yield event


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def agent():
    return FakeAgentClient()


@pytest.fixture
def client(tmp_path, registry, agent):
    set_session_store(SQLiteSessionStore(str(tmp_path / "sessions_api.db")))
    set_session_registry(registry)
    set_agent_client(agent)
    set_model_catalog(
        ModelCatalog(
            "http://catalog.test/models",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=CATALOG)),
        )
    )

    from src.server.app import app

    with TestClient(app) as test_client:
        yield test_client


def _sse_events(body):
    events = []
    for frame in body.strip().split("\n\n"):
        event_line, data_line = frame.split("\n")
        events.append((event_line[len("event: "):], json.loads(data_line[len("data: "):])))
    return events


def _chat(client, **payload):
    response = client.post(
        "/api/chat/stream", json=payload, headers={"Authorization": "Bearer secret"}
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    return _sse_events(response.text)


def test_ping(client: TestClient):
    response = client.get("/ping")
    assert response.status_code == 200
    assert response.json()["status"] == "Healthy"
    assert isinstance(response.json()["time_of_last_update"], int)


def test_list_models_drops_legacy(client: TestClient):
    response = client.get("/api/models")
    assert response.status_code == 200
    assert response.json() == {
        "models": [
            {
                "modelId": "anthropic.claude-v2",
                "modelName": "Claude",
                "modelLifecycle": {"status": "ACTIVE"},
            }
        ]
    }


def test_chat_stream_runs_a_turn(client: TestClient, agent):
    events = _chat(client, prompt="你好", modelId="anthropic.claude-v2")

    names = [name for name, _ in events]
    assert names[0] == "meta"
    assert names[-1] == "done"
    assert "thinking-delta" in names
    assert events[-1][1]["outcome"] == "completed"
    assert agent.tokens == ["secret"]


@pytest.mark.parametrize(
    "payload",
    [
        {"prompt": "   "},
        {},
        {"prompt": "hi", "modelId": "old-model"},
    ],
)
def test_chat_stream_rejects_invalid_input(client: TestClient, payload):
    response = client.post("/api/chat/stream", json=payload)
    assert response.status_code == 400


def test_chat_stream_conflicts_with_streaming_session(client: TestClient, registry):
    registry.get_or_create("busy").begin_assistant_message()

    response = client.post("/api/chat/stream", json={"prompt": "hi", "sessionId": "busy"})

    assert response.status_code == 409


def test_session_flow(client: TestClient):
    events = _chat(client, prompt="hello", userId="u1")
    session_id = events[0][1]["sessionId"]

    response = client.get("/api/sessions", params={"userId": "u1"})
    assert response.status_code == 200
    sessions = response.json()["sessions"]
    assert [s["id"] for s in sessions] == [session_id]
    assert sessions[0]["title"] == "你好"
    assert sessions[0]["messageCount"] == 2

    response = client.get(f"/api/sessions/{session_id}")
    assert response.status_code == 200
    snapshot = response.json()
    assert snapshot["sessionId"] == session_id
    assert snapshot["isStreaming"] is False
    assert [m["role"] for m in snapshot["messages"]] == ["user", "assistant"]
    assert snapshot["messages"][1]["reasoningContent"] == "plan"

    response = client.get(f"/api/sessions/{session_id}/timeline")
    assert response.status_code == 200
    entries = response.json()["entries"]
    assert [entry["kind"] for entry in entries] == ["message", "message", "tool"]
    assert entries[2]["status"] == "completed"

    response = client.get(f"/api/sessions/{session_id}/events")
    assert response.status_code == 200
    assert [(e["role"], e["text"]) for e in response.json()["events"]] == [
        ("user", "hello"),
        ("assistant", "你好"),
    ]

    response = client.patch(f"/api/sessions/{session_id}", json={"title": "测试会话"})
    assert response.status_code == 200
    assert response.json()["title"] == "测试会话"

    response = client.delete(f"/api/sessions/{session_id}")
    assert response.status_code == 200
    assert response.json()["success"] is True

    assert client.get(f"/api/sessions/{session_id}").status_code == 404
    assert client.get("/api/sessions").json()["sessions"] == []


def test_follow_up_turn_continues_session(client: TestClient):
    first = _chat(client, prompt="one")
    session_id = first[0][1]["sessionId"]

    second = _chat(client, prompt="two", sessionId=session_id)

    assert second[0][1]["sessionId"] == session_id
    snapshot = client.get(f"/api/sessions/{session_id}").json()
    assert [m["content"] for m in snapshot["messages"]] == ["one", "你好", "two", "你好"]


def test_unknown_session_returns_404(client: TestClient):
    assert client.get("/api/sessions/missing").status_code == 404
    assert client.get("/api/sessions/missing/timeline").status_code == 404
    assert client.patch("/api/sessions/missing", json={"title": "x"}).status_code == 404
    assert client.delete("/api/sessions/missing").status_code == 404


def test_delete_streaming_session_conflicts(client: TestClient, registry):
    registry.get_or_create("busy").begin_assistant_message()
    assert client.delete("/api/sessions/busy").status_code == 409


def test_rename_rejects_long_title(client: TestClient):
    session_id = _chat(client, prompt="hello")[0][1]["sessionId"]
    response = client.patch(f"/api/sessions/{session_id}", json={"title": "x" * 61})
    assert response.status_code == 400
