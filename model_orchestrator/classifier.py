"""Task complexity rating, backend selection and dependency ordering."""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import CAPABILITY_TIERS, COMPLEXITY_INDICATORS
from .errors import CycleError
from .registry import BackendRegistry
from .types import BackendConfig, Complexity, ExecutionStrategy, Task

CHARS_PER_TOKEN = 4
OUTPUT_TOKEN_RATIO = 0.5

_TIERS_ASCENDING = sorted(Complexity, key=lambda c: c.rank)


@dataclass(frozen=True)
class Classification:
    complexity: Complexity
    backend: BackendConfig
    estimated_cost: float


class TaskClassifier:
    def __init__(self, registry: BackendRegistry) -> None:
        self._registry = registry

    def classify(self, task: Task) -> Classification:
        backend = self.select_model(task)
        return Classification(
            complexity=self.classify_complexity(task),
            backend=backend,
            estimated_cost=self.estimate_cost(task, backend),
        )

    def classify_complexity(self, task: Task) -> Complexity:
        if task.complexity is not None:
            return task.complexity

        text = f"{task.description} {task.prompt}".lower()
        high = _count_matches(text, COMPLEXITY_INDICATORS[Complexity.HIGH])
        medium = _count_matches(text, COMPLEXITY_INDICATORS[Complexity.MEDIUM])
        low = _count_matches(text, COMPLEXITY_INDICATORS[Complexity.LOW])

        if high > medium and high > low:
            return Complexity.HIGH
        if medium > low:
            return Complexity.MEDIUM
        return Complexity.LOW

    def select_model(self, task: Task) -> BackendConfig:
        preferred = self._registry.get(task.preferred_model)
        if preferred is not None:
            return preferred

        complexity = self.classify_complexity(task)
        for tier in _TIERS_ASCENDING:
            if tier.rank < complexity.rank:
                continue
            candidates = [b for b in self._registry.by_cost if _covers(b, tier)]
            if candidates:
                return candidates[0]
        return self._registry.cheapest()

    def estimate_cost(self, task: Task, backend: BackendConfig) -> float:
        input_tokens = len(task.prompt) / CHARS_PER_TOKEN
        output_tokens = input_tokens * OUTPUT_TOKEN_RATIO
        return (
            (input_tokens / 1_000_000) * backend.cost_per_1m_input_tokens
            + (output_tokens / 1_000_000) * backend.cost_per_1m_output_tokens
        )

    def get_fallback_model(self, backend: BackendConfig) -> Optional[BackendConfig]:
        """Cheapest enabled backend priced strictly above ``backend``."""
        for candidate in self._registry.by_cost:
            if candidate.price > backend.price:
                return candidate
        return None

    def sort_tasks(self, tasks: Sequence[Task]) -> List[Task]:
        return sort_tasks(tasks)

    def analyze_execution_strategy(self, tasks: Sequence[Task]) -> ExecutionStrategy:
        return analyze_execution_strategy(tasks)


def sort_tasks(tasks: Sequence[Task]) -> List[Task]:
    """Topological order; among ready tasks the higher priority goes first,
    then the earlier position in ``tasks``."""
    position = {task.id: i for i, task in enumerate(tasks)}
    pending: Dict[str, set] = {task.id: set(task.depends_on) for task in tasks}
    dependents: Dict[str, List[str]] = {task.id: [] for task in tasks}
    for task in tasks:
        for dep in set(task.depends_on):
            if dep in dependents:
                dependents[dep].append(task.id)

    heap: List[Tuple[int, int, str]] = [
        (-task.priority, position[task.id], task.id) for task in tasks if not pending[task.id]
    ]
    heapq.heapify(heap)
    by_id = {task.id: task for task in tasks}
    ordered: List[Task] = []

    while heap:
        _, _, task_id = heapq.heappop(heap)
        ordered.append(by_id[task_id])
        for child in dependents[task_id]:
            pending[child].discard(task_id)
            if not pending[child]:
                heapq.heappush(heap, (-by_id[child].priority, position[child], child))

    if len(ordered) != len(tasks):
        done = {task.id for task in ordered}
        stuck = sorted(tid for tid in pending if tid not in done)
        raise CycleError(f"Circular or missing dependencies detected: {', '.join(stuck)}")
    return ordered


def analyze_execution_strategy(tasks: Sequence[Task]) -> ExecutionStrategy:
    if not tasks:
        return ExecutionStrategy.SEQUENTIAL
    if not any(task.depends_on for task in tasks):
        return ExecutionStrategy.PARALLEL
    if _is_single_chain(tasks):
        return ExecutionStrategy.SEQUENTIAL
    return ExecutionStrategy.HYBRID


def _is_single_chain(tasks: Sequence[Task]) -> bool:
    roots = [task for task in tasks if not task.depends_on]
    if len(roots) != 1:
        return False
    dependent_count: Dict[str, int] = {}
    for task in tasks:
        if len(task.depends_on) > 1:
            return False
        for dep in task.depends_on:
            dependent_count[dep] = dependent_count.get(dep, 0) + 1
    return all(count == 1 for count in dependent_count.values())


def _covers(backend: BackendConfig, tier: Complexity) -> bool:
    return any(cap in backend.capabilities for cap in CAPABILITY_TIERS[tier])


def _count_matches(text: str, indicators: Iterable[str]) -> int:
    return sum(1 for indicator in indicators if indicator in text)
