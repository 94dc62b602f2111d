"""
Pipeline Errors
===============
One exception per stage. Every one of them is fatal to the run: the
orchestrator stops at the first failure and later stages never execute.

Each error carries the stage it belongs to, a process exit code for the
CLI surface, and the (already masked) raw output of the failing stage.
"""
from typing import Optional


class PipelineError(Exception):
    """Base class for stage failures."""

    stage: str = "pipeline"
    exit_code: int = 1

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.output = output


class CheckoutError(PipelineError):
    stage = "checkout"
    exit_code = 10


class DependencyError(PipelineError):
    stage = "install"
    exit_code = 11


class TestFailure(PipelineError):
    stage = "test"
    exit_code = 12
    # Keep pytest from collecting this class
    __test__ = False


class BuildError(PipelineError):
    stage = "build"
    exit_code = 13


class AuthError(PipelineError):
    stage = "authenticate"
    exit_code = 14


class PublishError(PipelineError):
    stage = "publish"
    exit_code = 15


class InvalidTransition(RuntimeError):
    """Raised when the run state machine is driven out of order."""


ERRORS_BY_STAGE: dict[str, type[PipelineError]] = {
    cls.stage: cls
    for cls in (CheckoutError, DependencyError, TestFailure, BuildError, AuthError, PublishError)
}


def error_for_stage(stage: str) -> Optional[type[PipelineError]]:
    """Return the error class raised by ``stage`` (None if unknown)."""
    return ERRORS_BY_STAGE.get(stage)
