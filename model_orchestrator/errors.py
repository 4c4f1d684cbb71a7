"""Exception taxonomy for orchestration runs.

Only planning, cycle and configuration errors escape ``Orchestrator.orchestrate``.
Task and synthesis failures are recorded as data.
"""

from __future__ import annotations

from typing import Optional

from .types import TokenUsage


class OrchestrationError(Exception):
    """Base class for all orchestration failures."""


class ConfigurationError(OrchestrationError):
    """The backend registry or orchestrator settings are unusable."""


class PlanningError(OrchestrationError):
    """The request could not be turned into an executable plan."""


class BudgetExceededError(PlanningError):
    """The estimated plan exceeds a caller supplied cost or duration limit."""


class CycleError(OrchestrationError, ValueError):
    """The task dependency graph has a cycle or an unresolvable dependency."""


class TaskExecutionError(OrchestrationError):
    """A single backend attempt failed.

    ``usage`` carries tokens the backend reported before the failure was
    detected, so the attempt can still be charged.
    """

    def __init__(self, message: str, usage: Optional[TokenUsage] = None) -> None:
        super().__init__(message)
        self.usage = usage or TokenUsage()


class SynthesisError(OrchestrationError):
    """The final combining call failed."""
