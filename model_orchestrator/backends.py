"""Backend contract and the OpenAI-compatible gateway transport.

Provider specifics live behind a gateway (ai-lb, LiteLLM, Ollama's ``/v1``
endpoint, ...). The orchestration core only sees the :class:`Backend` protocol.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol

import httpx

from .config import GatewayConfig
from .errors import TaskExecutionError
from .registry import BackendRegistry
from .types import BackendConfig, BackendReply, TokenUsage

logger = logging.getLogger(__name__)

CONTEXT_ACK = "I understand the context. How can I help?"


class Backend(Protocol):
    async def complete(self, prompt: str, context: Optional[Mapping[str, Any]] = None) -> BackendReply:
        ...


class GatewayBackend:
    def __init__(self, backend: BackendConfig, client: httpx.AsyncClient, gateway: Optional[GatewayConfig] = None) -> None:
        self._backend = backend
        self._client = client
        self._gateway = gateway or GatewayConfig()

    @property
    def url(self) -> str:
        base = (self._backend.api_base or self._gateway.base_url).rstrip("/")
        if base.endswith("/v1"):
            base = base[: -len("/v1")]
        return f"{base}/v1/chat/completions"

    async def complete(self, prompt: str, context: Optional[Mapping[str, Any]] = None) -> BackendReply:
        payload: Dict[str, Any] = {
            "model": self._backend.model,
            "messages": build_messages(prompt, context),
            "max_tokens": self._gateway.max_tokens,
            "stream": False,
        }
        headers = {"Content-Type": "application/json"}
        if self._gateway.api_key:
            headers["Authorization"] = f"Bearer {self._gateway.api_key}"

        resp = await self._client.post(
            self.url,
            json=payload,
            headers=headers,
            timeout=httpx.Timeout(self._gateway.timeout_secs),
        )
        if resp.status_code >= 400:
            raise TaskExecutionError(f"Gateway error {resp.status_code} for {self._backend.name}: {resp.text[:500]}")
        try:
            data = resp.json()
        except json.JSONDecodeError as exc:
            raise TaskExecutionError(f"Gateway returned non-JSON body for {self._backend.name}") from exc
        return parse_completion(data)


def build_messages(prompt: str, context: Optional[Mapping[str, Any]] = None) -> List[Dict[str, str]]:
    messages: List[Dict[str, str]] = []
    if context:
        messages.append({"role": "user", "content": f"Context: {json.dumps(dict(context), indent=2, default=str)}"})
        messages.append({"role": "assistant", "content": CONTEXT_ACK})
    messages.append({"role": "user", "content": prompt})
    return messages


def parse_completion(data: Dict[str, Any]) -> BackendReply:
    """Turn an OpenAI-format chat completion body into a :class:`BackendReply`."""
    if not isinstance(data, dict):
        raise TaskExecutionError("Gateway response is not a JSON object")
    usage_block = data.get("usage") or {}
    usage = TokenUsage(
        input=int(usage_block.get("prompt_tokens") or 0),
        output=int(usage_block.get("completion_tokens") or 0),
    )
    choices = data.get("choices") or []
    if not choices:
        raise TaskExecutionError("Gateway response has no choices", usage=usage)
    message = choices[0].get("message") or {}
    content = message.get("content")
    if isinstance(content, list):
        content = "".join(
            str(part.get("text", "")) for part in content if isinstance(part, dict) and part.get("type") == "text"
        )
    return BackendReply(text=content or "", usage=usage)


def build_backends(
    registry: BackendRegistry,
    client: httpx.AsyncClient,
    gateway: Optional[GatewayConfig] = None,
) -> Dict[str, Backend]:
    backends: Dict[str, Backend] = {}
    for backend in registry.enabled:
        backends[backend.name] = GatewayBackend(backend, client, gateway)
        logger.debug("Registered backend %s (%s/%s)", backend.name, backend.provider, backend.model)
    return backends
