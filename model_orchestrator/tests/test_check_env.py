import json

import pytest

from model_orchestrator import check_env
from model_orchestrator.config import OrchestratorConfig


def test_resolve_gateway_target() -> None:
    assert check_env._resolve_gateway_target("http://lb:8000") == ("lb", 8000)
    assert check_env._resolve_gateway_target("https://gw.example.com/v1") == ("gw.example.com", 443)
    assert check_env._resolve_gateway_target("localhost") == ("localhost", 80)
    with pytest.raises(ValueError):
        check_env._resolve_gateway_target("http://")


def test_registry_and_planner_checks_with_defaults() -> None:
    result, registry = check_env._check_registry(OrchestratorConfig(registry_path=None))

    assert result.ok
    assert "3 enabled" in result.detail
    assert check_env._check_planner(OrchestratorConfig(planner_model="opus"), registry).ok
    assert not check_env._check_planner(OrchestratorConfig(planner_model="gpt-9"), registry).ok


def test_broken_registry_is_reported(tmp_path) -> None:
    path = tmp_path / "models.json"
    path.write_text(json.dumps({"models": [{"name": "x"}]}), encoding="utf-8")

    result, registry = check_env._check_registry(OrchestratorConfig(registry_path=str(path)))

    assert not result.ok
    assert registry is None
    assert not check_env._check_planner(OrchestratorConfig(), registry).ok


def test_report_summarizes(capsys) -> None:
    ok = check_env._print_report([
        check_env.CheckResult(label="import httpx", ok=True, detail="available"),
        check_env.CheckResult(label="gateway", ok=False, detail="refused"),
    ])

    out = capsys.readouterr().out
    assert not ok
    assert "MISSING: gateway - refused" in out
    assert out.strip().endswith("Missing Dependencies")
