import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse

from .aggregator import total_tokens
from .errors import OrchestrationError
from .orchestrator import Orchestrator
from .types import OrchestrationResult

logger = logging.getLogger("model_orchestrator.server")

MODEL_ID = "model-orchestrator"
OUTPUT_PREVIEW_CHARS = 2000

orchestrator: Optional[Orchestrator] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global orchestrator
    owned = orchestrator is None
    if owned:
        orchestrator = Orchestrator.from_config()
        logger.info("Orchestrator ready with %d enabled backends", len(orchestrator.registry.enabled))
    try:
        yield
    finally:
        if owned and orchestrator is not None:
            await orchestrator.aclose()
            orchestrator = None


app = FastAPI(title="Model Orchestrator", lifespan=lifespan)


def _get_orchestrator() -> Orchestrator:
    # Set by the lifespan, which also closes it.
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator is not initialized")
    return orchestrator


@app.get("/health")
def health():
    orch = _get_orchestrator()
    return {"status": "ok", "enabled_backends": len(orch.registry.enabled)}


@app.get("/v1/models")
def list_models():
    orch = _get_orchestrator()
    created = int(time.time())
    data = [{"id": MODEL_ID, "object": "model", "created": created, "owned_by": "model-orchestrator", "permission": []}]
    for backend in orch.registry.enabled:
        data.append({"id": backend.name, "object": "model", "created": created, "owned_by": backend.provider, "permission": []})
    return {"object": "list", "data": data}


def _last_user_message(messages: List[Dict[str, Any]]) -> str:
    for m in reversed(messages):
        if m.get("role") != "user":
            continue
        content = m.get("content", "")
        if isinstance(content, list):
            return "".join(str(p.get("text", "")) for p in content if isinstance(p, dict) and p.get("type") == "text")
        return str(content or "")
    return ""


def format_result(result: OrchestrationResult) -> List[str]:
    """Render an orchestration as markdown fragments, in streaming order."""
    parts = ["### Execution Plan\n"]
    if result.plan is not None:
        parts.append(f"_Strategy: {result.plan.strategy.value}_\n")
        for task in result.plan.tasks:
            parts.append(f"- **{task.id}**: {task.description}\n")
    parts.append("\n---\n### Execution Results\n")
    for res in result.results:
        status = "OK" if res.success else "FAILED"
        parts.append(f"**[{status}] Task {res.task_id}** ({res.model})\n")
        if res.output:
            parts.append(f"```\n{res.output[:OUTPUT_PREVIEW_CHARS]}\n```\n")
        if res.error:
            parts.append(f"> *Error: {res.error}*\n")
        parts.append("\n")
    parts.append(f"---\n_Total cost: ${result.total_cost:.6f} in {result.total_duration_ms / 1000:.1f}s_\n\n")
    parts.append(f"### Answer\n{result.synthesis or ''}\n")
    return parts


async def stream_orchestrator_output(
    orch: Orchestrator, request_text: str, request_id: str
) -> AsyncGenerator[str, None]:
    created = int(time.time())

    def chunk(content: str, finish_reason: Optional[str] = None) -> str:
        delta = {"content": content} if content else {}
        return "data: " + json.dumps({
            "id": f"chatcmpl-{request_id}",
            "object": "chat.completion.chunk",
            "created": created,
            "model": MODEL_ID,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }) + "\n\n"

    try:
        result = await orch.orchestrate(request_text)
        for part in format_result(result):
            yield chunk(part)
    except OrchestrationError as e:
        logger.error("[req=%s] Orchestration failed: %s", request_id, e)
        yield chunk(f"\n**Orchestration Error**: {e}\n")

    yield chunk("", finish_reason="stop")
    yield "data: [DONE]\n\n"


@app.post("/v1/chat/completions")
async def chat_completions(request: Request):
    try:
        body = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")

    request_text = _last_user_message(body.get("messages") or [])
    if not request_text.strip():
        raise HTTPException(status_code=400, detail="No user message in request")

    orch = _get_orchestrator()
    request_id = str(uuid.uuid4())
    logger.info("[req=%s] Orchestration request received", request_id)

    if body.get("stream", True):
        return StreamingResponse(
            stream_orchestrator_output(orch, request_text, request_id),
            media_type="text/event-stream",
        )

    try:
        result = await orch.orchestrate(request_text)
    except OrchestrationError as e:
        logger.error("[req=%s] Orchestration failed: %s", request_id, e)
        raise HTTPException(status_code=422, detail=str(e))

    usage = total_tokens(result.results)
    return {
        "id": f"chatcmpl-{request_id}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": MODEL_ID,
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": result.synthesis or ""}, "finish_reason": "stop"}
        ],
        "usage": {"prompt_tokens": usage.input, "completion_tokens": usage.output, "total_tokens": usage.input + usage.output},
        "orchestration": {"success": result.success, "total_cost": result.total_cost, "total_duration_ms": result.total_duration_ms},
    }


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=9995)


if __name__ == "__main__":
    main()
