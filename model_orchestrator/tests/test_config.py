import json

import pytest

from model_orchestrator.config import DEFAULT_BACKENDS, load_registry, parse_registry
from model_orchestrator.errors import ConfigurationError


def entry(name, **overrides):
    raw = {
        "name": name,
        "provider": "openai",
        "model": f"{name}-model",
        "capabilities": ["coding"],
        "costPer1MInputTokens": 1.0,
        "costPer1MOutputTokens": 2.0,
        "maxContext": 8000,
    }
    raw.update(overrides)
    return raw


def test_parse_registry_reads_camel_case_document() -> None:
    backends = parse_registry({"models": [entry("gpt", apiBase="http://gw/v1", enabled=False)]})

    assert len(backends) == 1
    gpt = backends[0]
    assert gpt.name == "gpt"
    assert gpt.capabilities == ("coding",)
    assert gpt.price == (1.0, 2.0)
    assert gpt.max_context == 8000
    assert gpt.api_base == "http://gw/v1"
    assert gpt.enabled is False


def test_parse_registry_accepts_bare_list() -> None:
    assert [b.name for b in parse_registry([entry("a"), entry("b")])] == ["a", "b"]


def test_empty_registry_falls_back_to_defaults() -> None:
    assert parse_registry({"models": []}) == DEFAULT_BACKENDS


@pytest.mark.parametrize(
    "raw",
    [
        {"models": [entry("a", provider="gemini")]},
        {"models": [entry("a", costPer1MInputTokens=-1)]},
        {"models": [entry("a", maxContext=0)]},
        {"models": [{"name": "a"}]},
        {"models": [entry("a"), entry("a")]},
        {"models": "opus"},
    ],
)
def test_invalid_registry_raises_configuration_error(raw) -> None:
    with pytest.raises(ConfigurationError):
        parse_registry(raw)


def test_load_registry_without_path_uses_defaults() -> None:
    assert load_registry(None) == DEFAULT_BACKENDS


def test_load_registry_missing_file_uses_defaults(tmp_path) -> None:
    assert load_registry(str(tmp_path / "nope.json")) == DEFAULT_BACKENDS


def test_load_registry_from_file(tmp_path) -> None:
    path = tmp_path / "models.json"
    path.write_text(json.dumps({"models": [entry("local", provider="ollama")]}), encoding="utf-8")

    backends = load_registry(str(path))

    assert [b.provider for b in backends] == ["ollama"]


def test_load_registry_bad_json(tmp_path) -> None:
    path = tmp_path / "models.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        load_registry(str(path))
