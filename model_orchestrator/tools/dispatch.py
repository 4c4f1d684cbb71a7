from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import OrchestrationError
from ..orchestrator import Orchestrator
from ..planner import PlanOptions
from ..types import ExecutionStrategy, task_result_as_dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: Dict[str, Any]


@dataclass(frozen=True)
class ToolResponse:
    text: str
    is_error: bool = False

    def as_content(self) -> Dict[str, Any]:
        return {"content": [{"type": "text", "text": self.text}], "isError": self.is_error}


class ToolArgumentError(OrchestrationError):
    pass


TOOL_SPECS: List[ToolSpec] = [
    ToolSpec(
        name="orchestrate_task",
        description=(
            "Execute a request with multi-model orchestration: decompose it into subtasks "
            "and route each to the most appropriate backend by complexity and cost."
        ),
        input_schema={
            "type": "object",
            "required": ["request"],
            "properties": {
                "request": {"type": "string", "description": "The user request to orchestrate"},
                "maxCost": {"type": "number", "description": "Maximum estimated cost in USD"},
                "maxDuration": {"type": "number", "description": "Maximum estimated duration in seconds"},
                "strategy": {"type": "string", "enum": [s.value for s in ExecutionStrategy]},
            },
        },
    ),
    ToolSpec(
        name="classify_task",
        description="Classify a task's complexity and get the recommended backend without executing it",
        input_schema={
            "type": "object",
            "required": ["description", "prompt"],
            "properties": {"description": {"type": "string"}, "prompt": {"type": "string"}},
        },
    ),
    ToolSpec(
        name="estimate_cost",
        description="Plan a request and report its estimated cost without executing it",
        input_schema={
            "type": "object",
            "required": ["request"],
            "properties": {"request": {"type": "string"}},
        },
    ),
    ToolSpec(
        name="list_models",
        description="List all configured backends and their capabilities",
        input_schema={"type": "object", "properties": {}},
    ),
]


class ToolDispatcher:
    """Maps ``(tool_name, arguments)`` calls from a host onto the orchestrator."""

    def __init__(self, orchestrator: Orchestrator) -> None:
        self._orchestrator = orchestrator

    def tool_catalog(self) -> List[ToolSpec]:
        return list(TOOL_SPECS)

    async def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResponse:
        args = arguments or {}
        try:
            if name == "orchestrate_task":
                payload = await self._orchestrate(args)
            elif name == "classify_task":
                payload = self._classify(args)
            elif name == "estimate_cost":
                payload = await self._estimate(args)
            elif name == "list_models":
                payload = self._list_models()
            else:
                raise ToolArgumentError(f"Unknown tool: {name}")
        except Exception as exc:
            logger.error("Tool %s failed: %s", name, exc)
            return ToolResponse(text=json.dumps({"error": str(exc)}), is_error=True)
        return ToolResponse(text=json.dumps(payload, indent=2))

    async def _orchestrate(self, args: Dict[str, Any]) -> Dict[str, Any]:
        options = PlanOptions(
            strategy=_strategy(args.get("strategy")),
            max_cost=_number(args, "maxCost"),
            max_duration_ms=_seconds_to_ms(_number(args, "maxDuration")),
        )
        result = await self._orchestrator.orchestrate(_required_str(args, "request"), options)
        return {
            "success": result.success,
            "synthesis": result.synthesis,
            "totalCost": result.total_cost,
            "totalDuration": result.total_duration_ms,
            "tasks": [
                {"id": r.task_id, "model": r.model, "success": r.success, "cost": r.cost, "duration": r.duration_ms}
                for r in result.results
            ],
            "details": [task_result_as_dict(r) for r in result.results],
        }

    def _classify(self, args: Dict[str, Any]) -> Dict[str, Any]:
        classification = self._orchestrator.classify(
            _required_str(args, "description"), _required_str(args, "prompt")
        )
        backend = classification.backend
        return {
            "complexity": classification.complexity.value,
            "recommendedModel": backend.name,
            "estimatedCost": classification.estimated_cost,
            "modelDetails": {"provider": backend.provider, "capabilities": list(backend.capabilities)},
        }

    async def _estimate(self, args: Dict[str, Any]) -> Dict[str, Any]:
        plan = await self._orchestrator.estimate(_required_str(args, "request"))
        return {
            "estimatedCost": plan.estimated_cost,
            "estimatedDuration": plan.estimated_duration_ms,
            "taskCount": len(plan.tasks),
            "strategy": plan.strategy.value,
            "breakdown": [
                {
                    "id": t.id,
                    "description": t.description,
                    "complexity": t.complexity.value if t.complexity else None,
                    "preferredModel": t.preferred_model,
                }
                for t in plan.tasks
            ],
        }

    def _list_models(self) -> Dict[str, Any]:
        return {
            "models": [
                {
                    "name": b.name,
                    "provider": b.provider,
                    "model": b.model,
                    "enabled": b.enabled,
                    "capabilities": list(b.capabilities),
                    "costPer1MInputTokens": b.cost_per_1m_input_tokens,
                    "costPer1MOutputTokens": b.cost_per_1m_output_tokens,
                    "maxContext": b.max_context,
                }
                for b in self._orchestrator.list_models()
            ]
        }


def _required_str(args: Dict[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolArgumentError(f"'{key}' is required and must be a non-empty string")
    return value


def _number(args: Dict[str, Any], key: str) -> Optional[float]:
    value = args.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ToolArgumentError(f"'{key}' must be a number")
    return float(value)


def _seconds_to_ms(value: Optional[float]) -> Optional[float]:
    return value * 1000.0 if value is not None else None


def _strategy(value: Any) -> Optional[ExecutionStrategy]:
    if value is None:
        return None
    try:
        return ExecutionStrategy(value)
    except ValueError:
        raise ToolArgumentError(f"Unknown strategy: {value!r}") from None
