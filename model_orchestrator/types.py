from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _COMPLEXITY_RANK[self]


_COMPLEXITY_RANK = {Complexity.LOW: 0, Complexity.MEDIUM: 1, Complexity.HIGH: 2}


class ExecutionStrategy(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class BackendConfig:
    name: str
    provider: str
    model: str
    capabilities: Tuple[str, ...] = ()
    cost_per_1m_input_tokens: float = 0.0
    cost_per_1m_output_tokens: float = 0.0
    max_context: int = 0
    enabled: bool = True
    api_base: Optional[str] = None

    @property
    def price(self) -> Tuple[float, float]:
        return (self.cost_per_1m_input_tokens, self.cost_per_1m_output_tokens)


@dataclass
class Task:
    id: str
    description: str
    prompt: str
    complexity: Optional[Complexity] = None
    preferred_model: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)
    priority: int = 1
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(input=self.input + other.input, output=self.output + other.output)


@dataclass(frozen=True)
class BackendReply:
    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass(frozen=True)
class TaskResult:
    task_id: str
    model: str
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    tokens_used: TokenUsage = field(default_factory=TokenUsage)
    cost: float = 0.0
    duration_ms: float = 0.0
    attempts: int = 0
    escalated_from: Optional[str] = None


@dataclass
class ExecutionPlan:
    tasks: List[Task]
    estimated_cost: float
    estimated_duration_ms: float
    strategy: ExecutionStrategy


@dataclass
class OrchestrationResult:
    success: bool
    results: List[TaskResult]
    total_cost: float
    total_duration_ms: float
    synthesis: Optional[str] = None
    plan: Optional[ExecutionPlan] = None


def task_as_dict(task: Task) -> Dict[str, Any]:
    return {
        "id": task.id,
        "description": task.description,
        "complexity": task.complexity.value if task.complexity else None,
        "preferred_model": task.preferred_model,
        "depends_on": list(task.depends_on),
        "priority": task.priority,
    }


def task_result_as_dict(result: TaskResult) -> Dict[str, Any]:
    return {
        "task_id": result.task_id,
        "model": result.model,
        "success": result.success,
        "output": result.output,
        "error": result.error,
        "tokens_used": asdict(result.tokens_used),
        "cost": result.cost,
        "duration_ms": result.duration_ms,
        "attempts": result.attempts,
        "escalated_from": result.escalated_from,
    }


def orchestration_result_as_dict(result: OrchestrationResult) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "success": result.success,
        "synthesis": result.synthesis,
        "total_cost": result.total_cost,
        "total_duration_ms": result.total_duration_ms,
        "results": [task_result_as_dict(r) for r in result.results],
    }
    if result.plan is not None:
        out["strategy"] = result.plan.strategy.value
        out["estimated_cost"] = result.plan.estimated_cost
        out["plan"] = [task_as_dict(t) for t in result.plan.tasks]
    return out
