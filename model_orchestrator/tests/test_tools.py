import asyncio
import json

from model_orchestrator.config import DEFAULT_BACKENDS, OrchestratorConfig
from model_orchestrator.orchestrator import Orchestrator
from model_orchestrator.registry import BackendRegistry
from model_orchestrator.tools import TOOL_SPECS, ToolDispatcher
from model_orchestrator.types import BackendReply, TokenUsage


def run(coro):
    return asyncio.run(coro)


async def no_sleep(delay):
    return None


class ScriptedGateway:
    def __init__(self, plan):
        self.plan = plan
        self.task_prompts = []

    async def complete(self, prompt, context=None):
        if "Break down this request" in prompt:
            return BackendReply(text=self.plan)
        if prompt.startswith("Original request:"):
            return BackendReply(text="all done")
        self.task_prompts.append(prompt)
        return BackendReply(text="ok", usage=TokenUsage(input=1000, output=1000))


PLAN = json.dumps([
    {"id": "t1", "description": "Extract names", "prompt": "extract the names"},
    {"id": "t2", "description": "Format names", "prompt": "format them", "dependsOn": ["t1"]},
])


def make_dispatcher(plan=PLAN):
    gateway = ScriptedGateway(plan)
    registry = BackendRegistry(DEFAULT_BACKENDS)
    orchestrator = Orchestrator(registry, {b.name: gateway for b in registry.enabled}, OrchestratorConfig(), sleep=no_sleep)
    return ToolDispatcher(orchestrator), gateway


def test_catalog_lists_four_tools() -> None:
    dispatcher, _ = make_dispatcher()

    assert [t.name for t in dispatcher.tool_catalog()] == [
        "orchestrate_task", "classify_task", "estimate_cost", "list_models",
    ]
    assert all(spec.input_schema["type"] == "object" for spec in TOOL_SPECS)


def test_orchestrate_task() -> None:
    dispatcher, _ = make_dispatcher()

    response = run(dispatcher.call("orchestrate_task", {"request": "Clean up this name list"}))
    payload = json.loads(response.text)

    assert not response.is_error
    assert payload["success"] is True
    assert payload["synthesis"] == "all done"
    assert [t["id"] for t in payload["tasks"]] == ["t1", "t2"]
    assert payload["totalCost"] == sum(t["cost"] for t in payload["tasks"])
    assert payload["details"][0]["tokens_used"] == {"input": 1000, "output": 1000}


def test_orchestrate_task_planning_failure_is_an_error_response() -> None:
    dispatcher, gateway = make_dispatcher(plan="no plan today")

    response = run(dispatcher.call("orchestrate_task", {"request": "x"}))

    assert response.is_error
    assert "No JSON task array" in json.loads(response.text)["error"]
    assert gateway.task_prompts == []
    assert response.as_content()["isError"] is True


def test_orchestrate_task_budget_in_seconds() -> None:
    dispatcher, gateway = make_dispatcher()

    # chain of two tasks is estimated at 60s
    response = run(dispatcher.call("orchestrate_task", {"request": "x", "maxDuration": 30}))

    assert response.is_error
    assert gateway.task_prompts == []


def test_classify_task() -> None:
    dispatcher, _ = make_dispatcher()

    response = run(dispatcher.call("classify_task", {"description": "Format this data as CSV", "prompt": "a;b"}))
    payload = json.loads(response.text)

    assert payload["complexity"] == "low"
    assert payload["recommendedModel"] == "haiku"
    assert payload["modelDetails"]["provider"] == "anthropic"


def test_estimate_cost_does_not_execute() -> None:
    dispatcher, gateway = make_dispatcher()

    payload = json.loads(run(dispatcher.call("estimate_cost", {"request": "x"})).text)

    assert payload["taskCount"] == 2
    assert payload["strategy"] == "sequential"
    assert payload["estimatedDuration"] == 60000
    assert [b["id"] for b in payload["breakdown"]] == ["t1", "t2"]
    assert gateway.task_prompts == []


def test_list_models() -> None:
    dispatcher, _ = make_dispatcher()

    payload = json.loads(run(dispatcher.call("list_models")).text)

    assert [m["name"] for m in payload["models"]] == ["opus", "sonnet", "haiku"]
    assert payload["models"][2]["costPer1MInputTokens"] == 0.25


def test_bad_arguments_and_unknown_tool() -> None:
    dispatcher, _ = make_dispatcher()

    assert run(dispatcher.call("orchestrate_task", {})).is_error
    assert run(dispatcher.call("orchestrate_task", {"request": "x", "strategy": "random"})).is_error
    assert run(dispatcher.call("orchestrate_task", {"request": "x", "maxCost": "cheap"})).is_error
    assert run(dispatcher.call("delete_everything", {})).is_error
