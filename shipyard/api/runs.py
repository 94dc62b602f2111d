"""
GET /runs, GET /runs/{run_id}
Run view for the triggering system: status, ordered stage outcomes,
the failed stage and its raw output.
"""
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from shipyard.models.run_result import RunResult
from shipyard.services.run_store import run_store

router = APIRouter(prefix="/runs", tags=["Runs"])


class RunSummary(BaseModel):
    run_id: str
    status: str
    ref: str
    commit_sha: str
    failed_stage: Optional[str] = None
    published: bool = False


@router.get("", response_model=List[RunSummary])
async def list_runs():
    return [
        RunSummary(
            run_id=r.run_id,
            status=r.status,
            ref=r.revision.ref,
            commit_sha=r.revision.commit_sha,
            failed_stage=r.failed_stage,
            published=r.published,
        )
        for r in run_store.list()
    ]


@router.get("/{run_id}", response_model=RunResult)
async def get_run(run_id: str):
    result = run_store.get(run_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return result
