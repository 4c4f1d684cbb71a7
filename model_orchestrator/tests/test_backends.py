import asyncio
import json

import pytest

from model_orchestrator.backends import CONTEXT_ACK, GatewayBackend, build_backends, build_messages, parse_completion
from model_orchestrator.config import DEFAULT_BACKENDS, GatewayConfig
from model_orchestrator.errors import TaskExecutionError
from model_orchestrator.registry import BackendRegistry
from model_orchestrator.types import BackendConfig, TokenUsage


def run(coro):
    return asyncio.run(coro)


class FakeResponse:
    def __init__(self, body, status_code=200):
        self._body = body
        self.status_code = status_code
        self.text = body if isinstance(body, str) else json.dumps(body)

    def json(self):
        if isinstance(self._body, str):
            return json.loads(self._body)
        return self._body


class FakeHTTPClient:
    def __init__(self, response):
        self.response = response
        self.posts = []

    async def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "headers": headers})
        return self.response


def completion(content, prompt_tokens=12, completion_tokens=7):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


SONNET = DEFAULT_BACKENDS[1]


def test_posts_chat_completion_to_gateway() -> None:
    client = FakeHTTPClient(FakeResponse(completion("hi there")))
    gateway = GatewayConfig(base_url="http://lb:8000/v1/", api_key="secret", max_tokens=256)
    backend = GatewayBackend(SONNET, client, gateway)

    reply = run(backend.complete("say hi"))

    assert reply.text == "hi there"
    assert reply.usage == TokenUsage(input=12, output=7)
    post = client.posts[0]
    assert post["url"] == "http://lb:8000/v1/chat/completions"
    assert post["json"]["model"] == SONNET.model
    assert post["json"]["max_tokens"] == 256
    assert post["json"]["stream"] is False
    assert post["json"]["messages"] == [{"role": "user", "content": "say hi"}]
    assert post["headers"]["Authorization"] == "Bearer secret"


def test_per_backend_api_base_overrides_gateway() -> None:
    local = BackendConfig(name="local", provider="ollama", model="llama3", api_base="http://gpu-box:11434/v1")
    backend = GatewayBackend(local, FakeHTTPClient(FakeResponse(completion("x"))), GatewayConfig(api_key=None))

    assert backend.url == "http://gpu-box:11434/v1/chat/completions"


def test_context_is_sent_ahead_of_prompt() -> None:
    messages = build_messages("next step", {"dependency_outputs": {"a": "42"}})

    assert messages[0]["role"] == "user"
    assert messages[0]["content"].startswith("Context: ")
    assert '"a": "42"' in messages[0]["content"]
    assert messages[1] == {"role": "assistant", "content": CONTEXT_ACK}
    assert messages[2] == {"role": "user", "content": "next step"}


def test_gateway_error_status_raises() -> None:
    client = FakeHTTPClient(FakeResponse({"error": "no upstream"}, status_code=503))
    backend = GatewayBackend(SONNET, client, GatewayConfig(api_key=None))

    with pytest.raises(TaskExecutionError) as excinfo:
        run(backend.complete("x"))
    assert "503" in str(excinfo.value)


def test_non_json_body_raises() -> None:
    backend = GatewayBackend(SONNET, FakeHTTPClient(FakeResponse("<html>oops</html>")), GatewayConfig(api_key=None))

    with pytest.raises(TaskExecutionError):
        run(backend.complete("x"))


def test_parse_completion_without_choices_keeps_usage() -> None:
    with pytest.raises(TaskExecutionError) as excinfo:
        parse_completion({"choices": [], "usage": {"prompt_tokens": 9, "completion_tokens": 0}})
    assert excinfo.value.usage == TokenUsage(input=9, output=0)


def test_parse_completion_joins_content_parts() -> None:
    reply = parse_completion(completion([{"type": "text", "text": "a"}, {"type": "image"}, {"type": "text", "text": "b"}]))

    assert reply.text == "ab"


def test_parse_completion_tolerates_missing_usage() -> None:
    reply = parse_completion({"choices": [{"message": {"content": None}}]})

    assert reply.text == ""
    assert reply.usage == TokenUsage()


def test_build_backends_skips_disabled_entries() -> None:
    entries = list(DEFAULT_BACKENDS) + [BackendConfig(name="off", provider="openai", model="m", enabled=False)]
    backends = build_backends(BackendRegistry(entries), FakeHTTPClient(FakeResponse(completion("x"))))

    assert sorted(backends) == ["haiku", "opus", "sonnet"]
