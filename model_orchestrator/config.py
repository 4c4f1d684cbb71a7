from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError
from .types import BackendConfig, Complexity

logger = logging.getLogger(__name__)


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    return value if value is not None else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return float(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class OrchestratorConfig:
    registry_path: Optional[str] = _env_str("ORCH_CONFIG_PATH")
    planner_model: str = _env_str("ORCH_PLANNER_MODEL", "opus")
    max_tasks: int = _env_int("ORCH_MAX_TASKS", 16)
    max_retries: int = _env_int("ORCH_MAX_RETRIES", 3)
    enable_escalation: bool = _env_bool("ORCH_ENABLE_ESCALATION", True)
    parallel_execution: bool = _env_bool("ORCH_PARALLEL_EXECUTION", True)
    # 0 = no cap on concurrent tasks inside a wave
    max_parallel_tasks: int = _env_int("ORCH_MAX_PARALLEL_TASKS", 0)
    backoff_base_secs: float = _env_float("ORCH_BACKOFF_BASE_SECS", 1.0)
    task_timeout_secs: Optional[float] = _env_optional_float("ORCH_TASK_TIMEOUT_SECS")
    synthesis_retries: int = _env_int("ORCH_SYNTHESIS_RETRIES", 1)


@dataclass(frozen=True)
class GatewayConfig:
    base_url: str = _env_str("ORCH_GATEWAY_URL", "http://localhost:8000")
    api_key: Optional[str] = _env_str("ORCH_GATEWAY_API_KEY")
    timeout_secs: float = _env_float("ORCH_GATEWAY_TIMEOUT_SECS", 60.0)
    max_tokens: int = _env_int("ORCH_MAX_OUTPUT_TOKENS", 4096)


# Capability tags grouped by the complexity tier they serve.
CAPABILITY_TIERS: Dict[Complexity, Tuple[str, ...]] = {
    Complexity.HIGH: ("strategy", "complex-analysis", "synthesis"),
    Complexity.MEDIUM: ("coding", "documentation", "analysis"),
    Complexity.LOW: ("formatting", "simple-queries", "data-extraction"),
}

COMPLEXITY_INDICATORS: Dict[Complexity, Tuple[str, ...]] = {
    Complexity.HIGH: (
        "analyze", "recommend", "strategy", "decide", "architect",
        "explain complex", "synthesize", "evaluate", "assess",
        "client-facing", "executive summary", "strategic planning",
        "complex reasoning", "multi-step analysis",
    ),
    Complexity.MEDIUM: (
        "generate code", "write documentation", "create diagram",
        "transform data", "compare", "summarize", "review",
        "technical writing", "implement", "design", "optimize",
    ),
    Complexity.LOW: (
        "format", "extract", "list", "count", "convert",
        "simple query", "validate", "basic formatting",
        "fetch data", "search", "filter", "sort",
    ),
}

DEFAULT_BACKENDS: List[BackendConfig] = [
    BackendConfig(
        name="opus",
        provider="anthropic",
        model="claude-opus-4-5-20251101",
        capabilities=("strategy", "complex-analysis", "synthesis", "coding", "documentation"),
        cost_per_1m_input_tokens=15.0,
        cost_per_1m_output_tokens=75.0,
        max_context=200000,
    ),
    BackendConfig(
        name="sonnet",
        provider="anthropic",
        model="claude-sonnet-4-5-20250929",
        capabilities=("coding", "documentation", "analysis", "data-extraction"),
        cost_per_1m_input_tokens=3.0,
        cost_per_1m_output_tokens=15.0,
        max_context=200000,
    ),
    BackendConfig(
        name="haiku",
        provider="anthropic",
        model="claude-haiku-4-5-20251001",
        capabilities=("formatting", "simple-queries", "data-extraction", "repetitive-tasks"),
        cost_per_1m_input_tokens=0.25,
        cost_per_1m_output_tokens=1.25,
        max_context=200000,
    ),
]


class BackendEntry(BaseModel):
    """One entry of the registry document (camelCase keys, as written on disk)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    provider: str = Field(pattern="^(anthropic|openai|ollama)$")
    model: str
    enabled: bool = True
    capabilities: List[str] = Field(default_factory=list)
    cost_per_1m_input_tokens: float = Field(alias="costPer1MInputTokens", ge=0)
    cost_per_1m_output_tokens: float = Field(alias="costPer1MOutputTokens", ge=0)
    max_context: int = Field(alias="maxContext", gt=0)
    api_base: Optional[str] = Field(default=None, alias="apiBase")

    def to_backend(self) -> BackendConfig:
        return BackendConfig(
            name=self.name,
            provider=self.provider,
            model=self.model,
            capabilities=tuple(self.capabilities),
            cost_per_1m_input_tokens=self.cost_per_1m_input_tokens,
            cost_per_1m_output_tokens=self.cost_per_1m_output_tokens,
            max_context=self.max_context,
            enabled=self.enabled,
            api_base=self.api_base,
        )


class RegistryDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    models: List[BackendEntry] = Field(default_factory=list)


def parse_registry(raw: Any) -> List[BackendConfig]:
    """Validate a decoded registry document.

    Accepts ``{"models": [...]}`` or a bare list of entries. An empty model list
    yields the built-in defaults.
    """
    if isinstance(raw, list):
        raw = {"models": raw}
    try:
        document = RegistryDocument.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid backend registry: {exc}") from exc
    if not document.models:
        return list(DEFAULT_BACKENDS)
    names = [entry.name for entry in document.models]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate backend names in registry: {', '.join(duplicates)}")
    return [entry.to_backend() for entry in document.models]


def load_registry(path: Optional[str] = None) -> List[BackendConfig]:
    """Load the backend registry document, falling back to defaults when absent."""
    if not path:
        return list(DEFAULT_BACKENDS)
    config_path = Path(path)
    if not config_path.is_file():
        logger.warning("Registry %s not found, using built-in defaults", config_path)
        return list(DEFAULT_BACKENDS)
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Registry {config_path} is not valid JSON: {exc}") from exc
    return parse_registry(raw)
