"""Host-facing tool dispatch for the orchestrator."""

from .dispatch import TOOL_SPECS, ToolDispatcher, ToolResponse, ToolSpec

__all__ = [
    "TOOL_SPECS",
    "ToolDispatcher",
    "ToolResponse",
    "ToolSpec",
]
