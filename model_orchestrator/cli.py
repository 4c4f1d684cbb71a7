from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional, Sequence

from rich.console import Console
from rich.table import Table

from .errors import OrchestrationError
from .orchestrator import Orchestrator
from .planner import PlanOptions
from .types import ExecutionStrategy, orchestration_result_as_dict, task_as_dict


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="model-orchestrator")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    orch_parser = subparsers.add_parser("orchestrate", help="Plan, execute and synthesize a request")
    orch_parser.add_argument("--request", required=True, help="User request")
    orch_parser.add_argument("--strategy", choices=[s.value for s in ExecutionStrategy], default=None)
    orch_parser.add_argument("--max-cost", type=float, default=None, help="Reject plans estimated above this (USD)")
    orch_parser.add_argument("--max-duration", type=float, default=None, help="Reject plans estimated above this (seconds)")

    classify_parser = subparsers.add_parser("classify", help="Rate a task and pick a backend without running it")
    classify_parser.add_argument("--description", required=True)
    classify_parser.add_argument("--prompt", required=True)

    estimate_parser = subparsers.add_parser("estimate", help="Plan a request and print the estimate")
    estimate_parser.add_argument("--request", required=True, help="User request")

    subparsers.add_parser("models", help="List configured backends")
    return parser


async def _run(args: argparse.Namespace, orchestrator: Orchestrator) -> int:
    if args.command == "orchestrate":
        options = PlanOptions(
            strategy=ExecutionStrategy(args.strategy) if args.strategy else None,
            max_cost=args.max_cost,
            max_duration_ms=args.max_duration * 1000.0 if args.max_duration is not None else None,
        )
        result = await orchestrator.orchestrate(args.request, options)
        print(json.dumps(orchestration_result_as_dict(result), indent=2))
        return 0

    if args.command == "classify":
        classification = orchestrator.classify(args.description, args.prompt)
        out = {
            "complexity": classification.complexity.value,
            "model": classification.backend.name,
            "estimated_cost": classification.estimated_cost,
        }
        print(json.dumps(out, indent=2))
        return 0

    if args.command == "estimate":
        plan = await orchestrator.estimate(args.request)
        out = {
            "estimated_cost": plan.estimated_cost,
            "estimated_duration_ms": plan.estimated_duration_ms,
            "strategy": plan.strategy.value,
            "tasks": [task_as_dict(t) for t in plan.tasks],
        }
        print(json.dumps(out, indent=2))
        return 0

    if args.command == "models":
        _print_models(orchestrator)
        return 0

    return 1


def _print_models(orchestrator: Orchestrator, console: Optional[Console] = None) -> None:
    table = Table(title="Backends")
    table.add_column("Name", style="bold")
    table.add_column("Provider")
    table.add_column("Model")
    table.add_column("$/1M in", justify="right")
    table.add_column("$/1M out", justify="right")
    table.add_column("Capabilities")
    table.add_column("Enabled")
    for b in orchestrator.list_models():
        table.add_row(
            b.name,
            b.provider,
            b.model,
            f"{b.cost_per_1m_input_tokens:g}",
            f"{b.cost_per_1m_output_tokens:g}",
            ", ".join(b.capabilities),
            "yes" if b.enabled else "[red]no[/red]",
        )
    (console or Console()).print(table)


async def _main_async(args: argparse.Namespace) -> int:
    orchestrator = Orchestrator.from_config()
    try:
        return await _run(args, orchestrator)
    finally:
        await orchestrator.aclose()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    try:
        return asyncio.run(_main_async(args))
    except OrchestrationError as exc:
        print(json.dumps({"error": str(exc), "type": exc.__class__.__name__}, indent=2))
        return 1


if __name__ == "__main__":
    sys.exit(main())
