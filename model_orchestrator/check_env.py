from __future__ import annotations

import importlib
import socket
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from .config import GatewayConfig, OrchestratorConfig, load_registry
from .errors import ConfigurationError
from .registry import BackendRegistry

GATEWAY_TIMEOUT_SECS = 2.0


@dataclass
class CheckResult:
    label: str
    ok: bool
    detail: str


def _check_import(module: str) -> CheckResult:
    try:
        importlib.import_module(module)
        return CheckResult(label=f"import {module}", ok=True, detail="available")
    except Exception as exc:
        return CheckResult(label=f"import {module}", ok=False, detail=f"{exc.__class__.__name__}: {exc}")


def _check_registry(config: OrchestratorConfig) -> Tuple[CheckResult, Optional[BackendRegistry]]:
    source = config.registry_path or "built-in defaults"
    try:
        registry = BackendRegistry(load_registry(config.registry_path))
    except ConfigurationError as exc:
        return CheckResult(label="registry", ok=False, detail=f"{exc} ({source})"), None
    names = ", ".join(b.name for b in registry.enabled)
    return CheckResult(label="registry", ok=True, detail=f"{len(registry.enabled)} enabled: {names} ({source})"), registry


def _check_planner(config: OrchestratorConfig, registry: Optional[BackendRegistry]) -> CheckResult:
    label = f"planner {config.planner_model}"
    if registry is None:
        return CheckResult(label=label, ok=False, detail="registry unavailable")
    if registry.get(config.planner_model) is None:
        return CheckResult(label=label, ok=False, detail="not an enabled backend")
    return CheckResult(label=label, ok=True, detail="enabled")


def _resolve_gateway_target(url: str) -> Tuple[str, int]:
    if "://" not in url:
        url = f"http://{url}"
    parsed = urlparse(url)
    if not parsed.hostname:
        raise ValueError(f"Invalid ORCH_GATEWAY_URL: {url}")
    if parsed.port is not None:
        return parsed.hostname, parsed.port
    if parsed.scheme == "https":
        return parsed.hostname, 443
    return parsed.hostname, 80


def _check_gateway(url: str) -> CheckResult:
    try:
        host, port = _resolve_gateway_target(url)
    except ValueError as exc:
        return CheckResult(label="gateway", ok=False, detail=str(exc))
    try:
        with socket.create_connection((host, port), timeout=GATEWAY_TIMEOUT_SECS):
            return CheckResult(label=f"gateway {host}:{port}", ok=True, detail=f"reachable ({url})")
    except OSError as exc:
        return CheckResult(label=f"gateway {host}:{port}", ok=False, detail=f"{exc} ({url})")


def _print_report(results: List[CheckResult]) -> bool:
    all_ok = all(result.ok for result in results)
    for result in results:
        status = "OK" if result.ok else "MISSING"
        print(f"{status}: {result.label} - {result.detail}")
    print("Ready" if all_ok else "Missing Dependencies")
    return all_ok


def run_checks(config: Optional[OrchestratorConfig] = None, gateway: Optional[GatewayConfig] = None) -> List[CheckResult]:
    config = config or OrchestratorConfig()
    gateway = gateway or GatewayConfig()
    registry_result, registry = _check_registry(config)
    return [
        _check_import("httpx"),
        _check_import("pydantic"),
        registry_result,
        _check_planner(config, registry),
        _check_gateway(gateway.base_url),
    ]


def main() -> int:
    ok = _print_report(run_checks())
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
