"""Single-task execution: retries with exponential backoff, then one escalation.

Each task is driven through one loop over :class:`TaskState`::

    PLANNED -> EXECUTING -> SUCCEEDED -> COMPLETED
                         -> RETRYING -> EXECUTING          (up to max_retries attempts)
                         -> ESCALATING -> EXECUTING        (fallback backend, one attempt)
                         -> COMPLETED                      (failure)

A failure never raises out of :meth:`TaskExecutor.execute_task_with_retry`; it
becomes a ``TaskResult`` with ``success=False``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Mapping, Optional

from .aggregator import Stopwatch, calculate_cost
from .backends import Backend
from .classifier import TaskClassifier
from .errors import TaskExecutionError
from .types import BackendConfig, BackendReply, Task, TaskResult, TokenUsage

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class TaskState(str, Enum):
    PLANNED = "planned"
    EXECUTING = "executing"
    RETRYING = "retrying"
    ESCALATING = "escalating"
    SUCCEEDED = "succeeded"
    COMPLETED = "completed"


def backoff_delay(attempt: int, base_secs: float = 1.0) -> float:
    """Wait before the attempt following ``attempt`` (1-based): ``base * 2**attempt``."""
    return base_secs * (2 ** attempt)


def inject_dependency_context(task: Task, previous_results: Mapping[str, TaskResult]) -> None:
    """Expose outputs of succeeded dependencies to ``task``.

    Failed or missing dependencies are left out and the task still runs with
    whatever context is available.
    """
    if not task.depends_on:
        return
    outputs = {}
    for dep in task.depends_on:
        result = previous_results.get(dep)
        if result is not None and result.success:
            outputs[dep] = result.output
    task.context = {**task.context, "dependency_outputs": outputs}


@dataclass
class _TaskRun:
    """Mutable bookkeeping for one task while it moves through the states."""

    task: Task
    backend: BackendConfig
    state: TaskState = TaskState.PLANNED
    attempt: int = 0
    total_attempts: int = 0
    usage: TokenUsage = field(default_factory=TokenUsage)
    cost: float = 0.0
    output: Optional[str] = None
    error: Optional[str] = None
    escalated_from: Optional[str] = None

    def transition(self, state: TaskState) -> None:
        logger.debug("task %s: %s -> %s", self.task.id, self.state.value, state.value)
        self.state = state


class TaskExecutor:
    def __init__(
        self,
        classifier: TaskClassifier,
        backends: Mapping[str, Backend],
        max_retries: int = 3,
        enable_escalation: bool = True,
        backoff_base_secs: float = 1.0,
        timeout_secs: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._classifier = classifier
        self._backends = backends
        self._max_retries = max(1, max_retries)
        self._enable_escalation = enable_escalation
        self._backoff_base_secs = backoff_base_secs
        self._timeout_secs = timeout_secs
        self._sleep = sleep

    async def execute_task_with_retry(self, task: Task, previous_results: Mapping[str, TaskResult]) -> TaskResult:
        inject_dependency_context(task, previous_results)
        backend = self._classifier.select_model(task)
        return await self.run(task, backend)

    async def run(self, task: Task, backend: BackendConfig) -> TaskResult:
        stopwatch = Stopwatch()
        run = _TaskRun(task=task, backend=backend)
        run.transition(TaskState.EXECUTING)

        while run.state is not TaskState.COMPLETED:
            if run.state is TaskState.EXECUTING:
                await self._execute_attempt(run)
            elif run.state is TaskState.RETRYING:
                await self._sleep(backoff_delay(run.attempt, self._backoff_base_secs))
                run.transition(TaskState.EXECUTING)
            elif run.state is TaskState.ESCALATING:
                self._escalate(run)
            elif run.state is TaskState.SUCCEEDED:
                run.transition(TaskState.COMPLETED)

        success = run.error is None
        return TaskResult(
            task_id=task.id,
            model=run.backend.name,
            success=success,
            output=run.output if success else None,
            error=run.error,
            tokens_used=run.usage,
            cost=run.cost,
            duration_ms=stopwatch.elapsed_ms(),
            attempts=run.total_attempts,
            escalated_from=run.escalated_from,
        )

    async def _execute_attempt(self, run: _TaskRun) -> None:
        run.attempt += 1
        run.total_attempts += 1
        logger.info("Executing task %s on %s (attempt %d)", run.task.id, run.backend.name, run.attempt)
        try:
            reply = await self._call_backend(run.task, run.backend)
        except TaskExecutionError as exc:
            self._charge(run, exc.usage)
            self._record_failure(run, str(exc))
            return
        except asyncio.TimeoutError:
            self._record_failure(run, f"Timed out after {self._timeout_secs}s")
            return
        except Exception as exc:
            self._record_failure(run, f"{exc.__class__.__name__}: {exc}")
            return

        self._charge(run, reply.usage)
        run.output = reply.text
        run.error = None
        run.transition(TaskState.SUCCEEDED)

    async def _call_backend(self, task: Task, backend: BackendConfig) -> BackendReply:
        transport = self._backends.get(backend.name)
        if transport is None:
            raise TaskExecutionError(f"No transport registered for backend {backend.name}")
        call = transport.complete(task.prompt, task.context or None)
        if self._timeout_secs:
            reply = await asyncio.wait_for(call, timeout=self._timeout_secs)
        else:
            reply = await call
        if not reply.text.strip():
            raise TaskExecutionError(f"Empty output from {backend.name}", usage=reply.usage)
        return reply

    def _record_failure(self, run: _TaskRun, error: str) -> None:
        run.error = error
        logger.warning(
            "Task %s failed on %s (attempt %d/%d): %s",
            run.task.id, run.backend.name, run.attempt, self._attempt_budget(run), error,
        )
        if run.attempt < self._attempt_budget(run):
            run.transition(TaskState.RETRYING)
        elif self._can_escalate(run):
            run.transition(TaskState.ESCALATING)
        else:
            run.transition(TaskState.COMPLETED)

    def _attempt_budget(self, run: _TaskRun) -> int:
        # The fallback backend gets exactly one call.
        return 1 if run.escalated_from else self._max_retries

    def _can_escalate(self, run: _TaskRun) -> bool:
        if not self._enable_escalation or run.escalated_from is not None:
            return False
        return self._classifier.get_fallback_model(run.backend) is not None

    def _escalate(self, run: _TaskRun) -> None:
        fallback = self._classifier.get_fallback_model(run.backend)
        if fallback is None:
            run.transition(TaskState.COMPLETED)
            return
        logger.info("Escalating task %s from %s to %s", run.task.id, run.backend.name, fallback.name)
        run.escalated_from = run.backend.name
        run.backend = fallback
        run.attempt = 0
        run.transition(TaskState.EXECUTING)

    @staticmethod
    def _charge(run: _TaskRun, usage: TokenUsage) -> None:
        run.usage = run.usage + usage
        run.cost += calculate_cost(usage, run.backend)
