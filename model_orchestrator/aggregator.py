"""Cost and duration bookkeeping."""

from __future__ import annotations

import math
import time
from typing import Iterable, Sequence

from .types import BackendConfig, ExecutionStrategy, Task, TaskResult, TokenUsage

# Rough per-task latency used before anything has run.
TYPICAL_TASK_LATENCY_MS = 30_000.0
OVERLAPPED_TASK_LATENCY_MS = 15_000.0


def calculate_cost(usage: TokenUsage, backend: BackendConfig) -> float:
    return (
        (usage.input / 1_000_000) * backend.cost_per_1m_input_tokens
        + (usage.output / 1_000_000) * backend.cost_per_1m_output_tokens
    )


def total_cost(results: Iterable[TaskResult]) -> float:
    return math.fsum(result.cost for result in results)


def total_tokens(results: Iterable[TaskResult]) -> TokenUsage:
    usage = TokenUsage()
    for result in results:
        usage = usage + result.tokens_used
    return usage


def estimate_duration_ms(tasks: Sequence[Task], strategy: ExecutionStrategy) -> float:
    if strategy is ExecutionStrategy.PARALLEL:
        return TYPICAL_TASK_LATENCY_MS
    if strategy is ExecutionStrategy.SEQUENTIAL:
        return len(tasks) * TYPICAL_TASK_LATENCY_MS
    return len(tasks) * OVERLAPPED_TASK_LATENCY_MS


class Stopwatch:
    """Monotonic wall-clock span in milliseconds."""

    def __init__(self) -> None:
        self._start = time.perf_counter()

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0
