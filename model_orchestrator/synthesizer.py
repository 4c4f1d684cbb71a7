from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from .backends import Backend
from .errors import SynthesisError
from .types import BackendConfig, TaskResult

logger = logging.getLogger(__name__)

SYNTHESIS_FAILED = "Synthesis failed"


class Synthesizer:
    """Combines task outputs into one answer using the planning backend.

    A failed synthesis degrades to a placeholder string; it never fails the
    orchestration.
    """

    def __init__(
        self,
        planning_backend: BackendConfig,
        transport: Backend,
        attempts: int = 1,
        timeout_secs: Optional[float] = None,
    ) -> None:
        self._planning_backend = planning_backend
        self._transport = transport
        self._attempts = max(1, attempts)
        self._timeout_secs = timeout_secs

    async def synthesize_results(self, request: str, results: Sequence[TaskResult]) -> str:
        prompt = build_synthesis_prompt(request, results)
        last_error = None
        for attempt in range(1, self._attempts + 1):
            try:
                return await self._synthesize(prompt)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Synthesis on %s failed (attempt %d/%d): %s",
                    self._planning_backend.name, attempt, self._attempts, exc,
                )
        return f"{SYNTHESIS_FAILED}: {last_error}"

    async def _synthesize(self, prompt: str) -> str:
        call = self._transport.complete(prompt)
        if self._timeout_secs:
            try:
                reply = await asyncio.wait_for(call, timeout=self._timeout_secs)
            except asyncio.TimeoutError:
                raise SynthesisError(f"Timed out after {self._timeout_secs}s") from None
        else:
            reply = await call
        text = reply.text.strip()
        if not text:
            raise SynthesisError(f"Empty synthesis from {self._planning_backend.name}")
        return text


def build_synthesis_prompt(request: str, results: Sequence[TaskResult]) -> str:
    sections = []
    for result in results:
        outcome = f"Output: {result.output}" if result.success else f"Error: {result.error}"
        sections.append(
            "\n".join(
                [
                    f"Task: {result.task_id}",
                    f"Model: {result.model}",
                    f"Success: {str(result.success).lower()}",
                    outcome,
                ]
            )
        )
    return "\n".join(
        [
            f"Original request: {request}",
            "",
            "Task results:",
            "\n---\n".join(sections),
            "",
            "Synthesize these results into a cohesive response to the original request.",
            "Be concise and focus on the final answer.",
        ]
    )
