"""
POST /webhook/push
==================
Trigger endpoint for GitHub-style push webhooks.

Behaviour:
    - X-GitHub-Event "ping"  → 200 {"pong": true}
    - any event but "push"   → 400
    - WEBHOOK_SECRET set     → X-Hub-Signature-256 must match (401 otherwise)
    - push not to the target branch (or a branch deletion)
                             → 200 {"activated": false, "reason": ...}, no run
    - push to the target branch
                             → 202 {"activated": true, "run_id": ...}; the run
                               executes as a background task and can be
                               polled at GET /runs/{run_id}
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from shipyard.core.config import TARGET_BRANCH, WEBHOOK_SECRET
from shipyard.models.push_event import PushEvent
from shipyard.models.run_result import RunResult
from shipyard.pipeline.orchestrator import PipelineOrchestrator, new_run_id
from shipyard.pipeline.trigger import activation_reason, verify_signature
from shipyard.services.run_store import run_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Trigger"])


class TriggerResponse(BaseModel):
    activated: bool
    run_id: Optional[str] = None
    reason: Optional[str] = None


def _execute_run(event: PushEvent, run_id: str) -> None:
    """Background task: run the pipeline, publishing progress to the run store."""
    orchestrator = PipelineOrchestrator(on_update=run_store.put)
    orchestrator.run(event.to_revision(), run_id=run_id)


@router.post("/push", response_model=TriggerResponse)
async def push_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_github_event: Optional[str] = Header(default=None),
    x_hub_signature_256: Optional[str] = Header(default=None),
):
    body = await request.body()

    if WEBHOOK_SECRET and not verify_signature(body, x_hub_signature_256, WEBHOOK_SECRET):
        logger.warning("[WEBHOOK] Rejected delivery with invalid signature")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    if x_github_event == "ping":
        return JSONResponse({"pong": True})
    if x_github_event != "push":
        raise HTTPException(status_code=400, detail=f"Unsupported event: {x_github_event}")

    try:
        event = PushEvent.model_validate(json.loads(body or b"{}"))
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid push payload: {e}")

    reason = activation_reason(event, TARGET_BRANCH)
    if reason:
        logger.info("[WEBHOOK] Ignored push: %s", reason)
        return TriggerResponse(activated=False, reason=reason)

    run_id = new_run_id()
    run_store.put(RunResult(run_id=run_id, revision=event.to_revision(), status="pending"))
    background_tasks.add_task(_execute_run, event, run_id)

    logger.info("[WEBHOOK] Run %s queued for %s at %s", run_id, event.ref, event.after[:12])
    return JSONResponse(
        status_code=202,
        content=TriggerResponse(activated=True, run_id=run_id).model_dump(),
    )
