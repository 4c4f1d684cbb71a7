from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Set

from .aggregator import estimate_duration_ms
from .backends import Backend
from .classifier import TaskClassifier, analyze_execution_strategy
from .errors import BudgetExceededError, PlanningError
from .registry import BackendRegistry
from .types import BackendConfig, Complexity, ExecutionPlan, ExecutionStrategy, Task

logger = logging.getLogger(__name__)

_DECODER = json.JSONDecoder()
_FENCED_ARRAY = re.compile(r"```(?:json)?\s*(?=\[)", re.IGNORECASE)


@dataclass(frozen=True)
class PlanOptions:
    strategy: Optional[ExecutionStrategy] = None
    max_cost: Optional[float] = None
    max_duration_ms: Optional[float] = None


class Planner:
    """Decomposes a request into an :class:`ExecutionPlan` with one backend call."""

    def __init__(
        self,
        registry: BackendRegistry,
        classifier: TaskClassifier,
        planning_backend: BackendConfig,
        transport: Backend,
        max_tasks: int = 16,
        timeout_secs: Optional[float] = None,
    ) -> None:
        self._registry = registry
        self._classifier = classifier
        self._planning_backend = planning_backend
        self._transport = transport
        self._max_tasks = max_tasks
        self._timeout_secs = timeout_secs

    async def plan_execution(self, request: str, options: Optional[PlanOptions] = None) -> ExecutionPlan:
        """Ask the planning backend for a task array and estimate it.

        Raises :class:`PlanningError` when the backend fails or its reply holds no
        usable task array, and :class:`BudgetExceededError` when the estimate
        exceeds a limit in ``options``.
        """
        options = options or PlanOptions()
        reply_text = await self._request_plan(request)
        tasks = parse_tasks(reply_text, max_tasks=self._max_tasks)

        estimated_cost = 0.0
        for task in tasks:
            backend = self._classifier.select_model(task)
            estimated_cost += self._classifier.estimate_cost(task, backend)

        strategy = options.strategy or analyze_execution_strategy(tasks)
        plan = ExecutionPlan(
            tasks=tasks,
            estimated_cost=estimated_cost,
            estimated_duration_ms=estimate_duration_ms(tasks, strategy),
            strategy=strategy,
        )
        _check_budget(plan, options)
        return plan

    def build_prompt(self, request: str) -> str:
        models = "\n".join(
            f"- {b.name}: {', '.join(b.capabilities)}" for b in self._registry.enabled
        )
        names = "|".join(b.name for b in self._registry.enabled)
        return "\n".join(
            [
                "You are an AI orchestrator. Break down this request into subtasks:",
                "",
                f"Request: {request}",
                "",
                "Available models:",
                models,
                "",
                "Respond with a JSON array of tasks:",
                "[",
                "  {",
                '    "id": "task-1",',
                '    "description": "Brief description",',
                '    "prompt": "Detailed prompt for model",',
                '    "complexity": "high|medium|low",',
                f'    "preferredModel": "{names}",',
                '    "dependsOn": ["task-id"],',
                '    "priority": 1',
                "  }",
                "]",
                "",
                "Rules:",
                "- Break complex tasks into simpler subtasks",
                "- Use cheaper models when possible",
                "- Only use the most expensive models for complex analysis",
                "- Set dependencies correctly",
                "- Higher priority = execute first",
            ]
        )

    async def _request_plan(self, request: str) -> str:
        prompt = self.build_prompt(request)
        try:
            call = self._transport.complete(prompt)
            if self._timeout_secs:
                reply = await asyncio.wait_for(call, timeout=self._timeout_secs)
            else:
                reply = await call
        except Exception as exc:
            logger.error("Planning call to %s failed: %s", self._planning_backend.name, exc)
            raise PlanningError(f"Failed to create execution plan: {exc}") from exc
        return reply.text


def extract_task_array(text: str) -> List[Any]:
    """Return the task array embedded in ``text``.

    An array opening a ```` ```json ```` fence is tried before bare arrays in
    the surrounding prose. The first array whose items are all objects wins;
    failing that, the first decodable array is returned so the caller can
    report what is wrong with it. Raises :class:`PlanningError` when no ``[``
    starts a decodable JSON array.
    """
    starts = [m.end() for m in _FENCED_ARRAY.finditer(text)]
    starts += [i for i, ch in enumerate(text) if ch == "["]
    first_array = None
    for index in starts:
        try:
            value, _ = _DECODER.raw_decode(text, index)
        except json.JSONDecodeError:
            continue
        if not isinstance(value, list):
            continue
        if value and all(isinstance(item, dict) for item in value):
            return value
        if first_array is None:
            first_array = value
    if first_array is not None:
        return first_array
    raise PlanningError("No JSON task array found in planner response")


def parse_tasks(text: str, max_tasks: int = 16) -> List[Task]:
    raw_tasks = extract_task_array(text)
    if not raw_tasks:
        raise PlanningError("Planner returned an empty task array")
    if len(raw_tasks) > max_tasks:
        raise PlanningError(f"Planner returned {len(raw_tasks)} tasks; the limit is {max_tasks}")

    tasks = [_task_from_raw(raw, i) for i, raw in enumerate(raw_tasks)]
    validate_task_graph(tasks)
    return tasks


def validate_task_graph(tasks: List[Task]) -> None:
    seen: Set[str] = set()
    for task in tasks:
        if task.id in seen:
            raise PlanningError(f"Duplicate task id: {task.id}")
        seen.add(task.id)
    for task in tasks:
        unknown = [dep for dep in task.depends_on if dep not in seen]
        if unknown:
            raise PlanningError(f"Task {task.id} depends on unknown task(s): {', '.join(unknown)}")
        if task.id in task.depends_on:
            raise PlanningError(f"Task {task.id} depends on itself")


def _task_from_raw(raw: Any, index: int) -> Task:
    if not isinstance(raw, dict):
        raise PlanningError(f"Task #{index + 1} is not an object")

    task_id = raw.get("id")
    if task_id is None or str(task_id).strip() == "":
        raise PlanningError(f"Task #{index + 1} has no id")
    task_id = str(task_id).strip()

    description = str(raw.get("description") or "").strip()
    prompt = str(raw.get("prompt") or "").strip() or description
    if not prompt:
        raise PlanningError(f"Task {task_id} has neither prompt nor description")

    complexity = None
    raw_complexity = raw.get("complexity")
    if raw_complexity:
        try:
            complexity = Complexity(str(raw_complexity).strip().lower())
        except ValueError:
            raise PlanningError(f"Task {task_id} has unknown complexity {raw_complexity!r}") from None

    depends = raw.get("dependsOn", raw.get("depends_on")) or []
    if not isinstance(depends, list):
        raise PlanningError(f"Task {task_id} dependsOn must be a list")

    try:
        priority = int(raw.get("priority", 1))
    except (TypeError, ValueError):
        raise PlanningError(f"Task {task_id} has a non-integer priority") from None

    preferred = raw.get("preferredModel", raw.get("preferred_model"))
    return Task(
        id=task_id,
        description=description or prompt,
        prompt=prompt,
        complexity=complexity,
        preferred_model=str(preferred) if preferred else None,
        depends_on=list(dict.fromkeys(str(dep) for dep in depends)),
        priority=priority,
    )


def _check_budget(plan: ExecutionPlan, options: PlanOptions) -> None:
    if options.max_cost is not None and plan.estimated_cost > options.max_cost:
        raise BudgetExceededError(
            f"Estimated cost ${plan.estimated_cost:.4f} exceeds limit ${options.max_cost:.4f}"
        )
    if options.max_duration_ms is not None and plan.estimated_duration_ms > options.max_duration_ms:
        raise BudgetExceededError(
            f"Estimated duration {plan.estimated_duration_ms:.0f}ms exceeds limit {options.max_duration_ms:.0f}ms"
        )
