"""
Run State Machine
=================
    Idle → Checkout → Install → Test → Build → Authenticate → Publish → Succeeded
             └──────────┴────────┴───────┴─────────┴─────────────┴──→ Failed

Each run owns one RunStateMachine. Moving out of order is a programming
error (InvalidTransition), not a run failure.
"""
from enum import Enum
from typing import List, Optional

from shipyard.core.errors import InvalidTransition


class RunState(str, Enum):
    IDLE = "idle"
    CHECKOUT = "checkout"
    INSTALL = "install"
    TEST = "test"
    BUILD = "build"
    AUTHENTICATE = "authenticate"
    PUBLISH = "publish"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_STAGES = [
    RunState.CHECKOUT,
    RunState.INSTALL,
    RunState.TEST,
    RunState.BUILD,
    RunState.AUTHENTICATE,
    RunState.PUBLISH,
]

_TRANSITIONS: dict[RunState, set[RunState]] = {RunState.IDLE: {RunState.CHECKOUT}}
for _current, _next in zip(_STAGES, _STAGES[1:] + [RunState.SUCCEEDED]):
    _TRANSITIONS[_current] = {_next, RunState.FAILED}
_TRANSITIONS[RunState.SUCCEEDED] = set()
_TRANSITIONS[RunState.FAILED] = set()

TERMINAL_STATES = {RunState.SUCCEEDED, RunState.FAILED}


class RunStateMachine:

    def __init__(self) -> None:
        self.state = RunState.IDLE
        self.history: List[RunState] = [RunState.IDLE]
        self.failed_stage: Optional[RunState] = None
        self.cause: Optional[BaseException] = None

    def advance(self, target: RunState) -> RunState:
        if target == RunState.FAILED:
            raise InvalidTransition("use fail() to enter the failed state")
        self._move(target)
        return self.state

    def fail(self, cause: BaseException) -> RunState:
        """Record Failed(stage, cause) for the stage currently running."""
        stage = self.state
        self._move(RunState.FAILED)
        self.failed_stage = stage
        self.cause = cause
        return self.state

    def _move(self, target: RunState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} → {target.value} is not allowed")
        self.state = target
        self.history.append(target)

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES


def stage_sequence() -> List[RunState]:
    """The six stages in execution order."""
    return list(_STAGES)
