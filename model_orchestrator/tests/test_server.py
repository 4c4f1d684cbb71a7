import json

import pytest
from fastapi.testclient import TestClient

from model_orchestrator import server
from model_orchestrator.config import DEFAULT_BACKENDS, OrchestratorConfig
from model_orchestrator.orchestrator import Orchestrator
from model_orchestrator.registry import BackendRegistry
from model_orchestrator.types import BackendReply, TokenUsage


async def no_sleep(delay):
    return None


class ScriptedGateway:
    def __init__(self, plan):
        self.plan = plan

    async def complete(self, prompt, context=None):
        if "Break down this request" in prompt:
            return BackendReply(text=self.plan)
        if prompt.startswith("Original request:"):
            return BackendReply(text="The names are Ada and Grace.")
        return BackendReply(text=f"result of {prompt}", usage=TokenUsage(input=10, output=10))


PLAN = json.dumps([{"id": "t1", "description": "Extract names", "prompt": "extract the names"}])


@pytest.fixture
def client(monkeypatch):
    def install(plan=PLAN):
        registry = BackendRegistry(DEFAULT_BACKENDS)
        gateway = ScriptedGateway(plan)
        orch = Orchestrator(registry, {b.name: gateway for b in registry.enabled}, OrchestratorConfig(), sleep=no_sleep)
        monkeypatch.setattr(server, "orchestrator", orch)
        return TestClient(server.app)

    return install


def sse_events(text):
    events = []
    for line in text.splitlines():
        if line.startswith("data: ") and line != "data: [DONE]":
            events.append(json.loads(line[len("data: "):]))
    return events


def test_models_lists_orchestrator_and_backends(client) -> None:
    resp = client().get("/v1/models")

    assert resp.status_code == 200
    ids = [m["id"] for m in resp.json()["data"]]
    assert ids == [server.MODEL_ID, "opus", "sonnet", "haiku"]


def test_health(client) -> None:
    resp = client().get("/health")

    assert resp.json() == {"status": "ok", "enabled_backends": 3}


def test_streaming_chat_completion(client) -> None:
    resp = client().post(
        "/v1/chat/completions",
        json={"model": server.MODEL_ID, "messages": [{"role": "user", "content": "Who is in this list?"}]},
    )

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.text.rstrip().endswith("data: [DONE]")
    events = sse_events(resp.text)
    body = "".join(e["choices"][0]["delta"].get("content", "") for e in events)
    assert "**t1**" in body
    assert "[OK] Task t1" in body
    assert "The names are Ada and Grace." in body
    assert events[-1]["choices"][0]["finish_reason"] == "stop"


def test_streaming_planning_failure_is_reported_in_stream(client) -> None:
    resp = client(plan="nothing useful").post(
        "/v1/chat/completions", json={"messages": [{"role": "user", "content": "x"}]}
    )

    assert resp.status_code == 200
    assert "Orchestration Error" in resp.text


def test_non_streaming_chat_completion(client) -> None:
    resp = client().post(
        "/v1/chat/completions",
        json={
            "stream": False,
            "messages": [
                {"role": "system", "content": "be brief"},
                {"role": "user", "content": [{"type": "text", "text": "Who is in this list?"}]},
            ],
        },
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["object"] == "chat.completion"
    assert data["choices"][0]["message"]["content"] == "The names are Ada and Grace."
    assert data["usage"] == {"prompt_tokens": 10, "completion_tokens": 10, "total_tokens": 20}
    assert data["orchestration"]["success"] is True


def test_non_streaming_planning_failure_is_422(client) -> None:
    resp = client(plan="nothing useful").post(
        "/v1/chat/completions", json={"stream": False, "messages": [{"role": "user", "content": "x"}]}
    )

    assert resp.status_code == 422


def test_requests_before_startup_are_503(monkeypatch) -> None:
    monkeypatch.setattr(server, "orchestrator", None)
    bare = TestClient(server.app)

    assert bare.get("/health").status_code == 503
    resp = bare.post("/v1/chat/completions", json={"messages": [{"role": "user", "content": "x"}]})
    assert resp.status_code == 503


def test_lifespan_builds_and_closes_orchestrator(monkeypatch) -> None:
    class ClosingOrchestrator(Orchestrator):
        closed = False

        async def aclose(self):
            ClosingOrchestrator.closed = True

    registry = BackendRegistry(DEFAULT_BACKENDS)
    gateway = ScriptedGateway(PLAN)
    built = ClosingOrchestrator(registry, {b.name: gateway for b in registry.enabled}, OrchestratorConfig())
    monkeypatch.setattr(server, "orchestrator", None)
    monkeypatch.setattr(server.Orchestrator, "from_config", classmethod(lambda cls, *a, **kw: built))

    with TestClient(server.app) as started:
        assert started.get("/health").status_code == 200
        assert server.orchestrator is built

    assert ClosingOrchestrator.closed
    assert server.orchestrator is None


def test_missing_user_message_is_400(client) -> None:
    resp = client().post("/v1/chat/completions", json={"messages": [{"role": "system", "content": "hi"}]})

    assert resp.status_code == 400
