from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Dict, List, Mapping, Optional

import httpx

from .aggregator import Stopwatch, total_cost
from .backends import Backend, build_backends
from .classifier import Classification, TaskClassifier, sort_tasks
from .config import GatewayConfig, OrchestratorConfig, load_registry
from .errors import ConfigurationError, CycleError, PlanningError
from .executor import Sleep, TaskExecutor
from .planner import PlanOptions, Planner
from .registry import BackendRegistry
from .scheduler import group_tasks_into_waves
from .synthesizer import Synthesizer
from .types import BackendConfig, ExecutionPlan, ExecutionStrategy, OrchestrationResult, Task, TaskResult

logger = logging.getLogger(__name__)


class Orchestrator:
    """Plans a request, runs the task graph across backends and synthesizes an answer."""

    def __init__(
        self,
        registry: BackendRegistry,
        backends: Mapping[str, Backend],
        config: Optional[OrchestratorConfig] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config or OrchestratorConfig()
        self._registry = registry
        self._backends = backends
        self._client: Optional[httpx.AsyncClient] = None

        planning_backend = registry.get(self._config.planner_model)
        if planning_backend is None:
            raise ConfigurationError(f"Planner backend '{self._config.planner_model}' is not an enabled registry entry")
        planning_transport = backends.get(planning_backend.name)
        if planning_transport is None:
            raise ConfigurationError(f"No transport registered for planner backend '{planning_backend.name}'")

        self._classifier = TaskClassifier(registry)
        self._planner = Planner(
            registry,
            self._classifier,
            planning_backend,
            planning_transport,
            max_tasks=self._config.max_tasks,
            timeout_secs=self._config.task_timeout_secs,
        )
        self._executor = TaskExecutor(
            self._classifier,
            backends,
            max_retries=self._config.max_retries,
            enable_escalation=self._config.enable_escalation,
            backoff_base_secs=self._config.backoff_base_secs,
            timeout_secs=self._config.task_timeout_secs,
            sleep=sleep,
        )
        self._synthesizer = Synthesizer(
            planning_backend,
            planning_transport,
            attempts=self._config.synthesis_retries,
            timeout_secs=self._config.task_timeout_secs,
        )

    @classmethod
    def from_config(
        cls,
        config: Optional[OrchestratorConfig] = None,
        gateway: Optional[GatewayConfig] = None,
    ) -> "Orchestrator":
        config = config or OrchestratorConfig()
        gateway = gateway or GatewayConfig()
        registry = BackendRegistry(load_registry(config.registry_path))
        client = httpx.AsyncClient(timeout=httpx.Timeout(gateway.timeout_secs))
        orchestrator = cls(registry, build_backends(registry, client, gateway), config)
        orchestrator._client = client
        return orchestrator

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def registry(self) -> BackendRegistry:
        return self._registry

    @property
    def classifier(self) -> TaskClassifier:
        return self._classifier

    @property
    def planner(self) -> Planner:
        return self._planner

    def list_models(self) -> List[BackendConfig]:
        return list(self._registry)

    def classify(self, description: str, prompt: str) -> Classification:
        return self._classifier.classify(Task(id="classify", description=description, prompt=prompt))

    async def estimate(self, request: str, options: Optional[PlanOptions] = None) -> ExecutionPlan:
        return await self._planner.plan_execution(request, options)

    async def orchestrate(self, request: str, options: Optional[PlanOptions] = None) -> OrchestrationResult:
        run_id = uuid.uuid4().hex[:8]
        stopwatch = Stopwatch()
        logger.info("[orch=%s] Starting orchestration", run_id)

        try:
            plan = await self._planner.plan_execution(request, options)
        except PlanningError as exc:
            logger.error("[orch=%s] Orchestration failed during planning: %s", run_id, exc)
            raise
        logger.info(
            "[orch=%s] Execution plan created: %d tasks, estimated $%.6f, strategy=%s",
            run_id, len(plan.tasks), plan.estimated_cost, plan.strategy.value,
        )

        try:
            results = await self.execute_plan(plan)
        except CycleError as exc:
            logger.error("[orch=%s] Orchestration failed: %s", run_id, exc)
            raise

        synthesis = await self._synthesizer.synthesize_results(request, results)
        result = OrchestrationResult(
            success=all(r.success for r in results),
            results=results,
            total_cost=total_cost(results),
            total_duration_ms=stopwatch.elapsed_ms(),
            synthesis=synthesis,
            plan=plan,
        )
        logger.info(
            "[orch=%s] Orchestration complete: %d/%d tasks succeeded, cost $%.6f, %.0fms",
            run_id, sum(1 for r in results if r.success), len(results), result.total_cost, result.total_duration_ms,
        )
        return result

    async def execute_plan(self, plan: ExecutionPlan) -> List[TaskResult]:
        ordered = sort_tasks(plan.tasks)
        completed: Dict[str, TaskResult] = {}

        if plan.strategy is ExecutionStrategy.SEQUENTIAL or not self._config.parallel_execution:
            results = []
            for task in ordered:
                results.append(await self._run_task(task, completed))
            return results

        limit = self._config.max_parallel_tasks
        semaphore = asyncio.Semaphore(limit) if limit > 0 else None
        results = []
        for index, wave in enumerate(group_tasks_into_waves(ordered)):
            logger.info("Running wave %d with %d task(s): %s", index + 1, len(wave), ", ".join(t.id for t in wave))
            results.extend(await asyncio.gather(*(self._run_task(task, completed, semaphore) for task in wave)))
        return results

    async def _run_task(
        self,
        task: Task,
        completed: Dict[str, TaskResult],
        semaphore: Optional[asyncio.Semaphore] = None,
    ) -> TaskResult:
        if semaphore is None:
            result = await self._executor.execute_task_with_retry(task, completed)
        else:
            async with semaphore:
                result = await self._executor.execute_task_with_retry(task, completed)
        # Single writer per key: only this coroutine owns task.id.
        completed[task.id] = result
        return result
