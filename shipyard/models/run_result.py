"""
Run Result Model
================
Pass/fail status plus the ordered outcomes of every stage that executed.

Stages that never ran (because an earlier one failed) are absent from
``stages`` rather than recorded as skipped: the list is the run's history.

Used by:
    - CLI to print a summary and pick the process exit code
    - HTTP API to answer GET /runs/{run_id}
    - Results writer to persist <run_id>.json
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel

from shipyard.core.errors import ERRORS_BY_STAGE
from .artifact import BuildArtifact
from .revision import Revision


class StageOutcome(BaseModel):
    stage: str
    status: str                      # succeeded / failed
    started_at: datetime
    duration_seconds: float = 0.0
    output: str = ""                 # masked, excerpted raw output
    error: Optional[str] = None


class RunResult(BaseModel):
    run_id: str
    revision: Revision
    status: str = "pending"          # pending / running / succeeded / failed
    stages: List[StageOutcome] = []
    failed_stage: Optional[str] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    artifact: Optional[BuildArtifact] = None
    published: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @property
    def exit_code(self) -> int:
        if self.succeeded:
            return 0
        error_cls = ERRORS_BY_STAGE.get(self.failed_stage or "")
        return error_cls.exit_code if error_cls else 1

    def stage_names(self) -> List[str]:
        return [s.stage for s in self.stages]
