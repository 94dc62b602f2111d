"""
Stage Executor
==============
Runs one stage command (install or test) inside an ephemeral Docker
container and returns a structured execution result.

BOUNDARY RULES:
    - Executor ONLY runs the command it is given.
    - Executor NEVER decides whether a stage passed; the orchestrator does,
      from exit_code and error.
    - Executor NEVER sees registry credentials.

DOCKER STRATEGY:
    - One container per stage (ephemeral).
    - Workspace mounted as volume at /workspace; install byproducts
      (node_modules, .venv) land in the workspace and are visible to the
      test stage that follows.
    - Container destroyed after execution, success or not.
    - Runs as the host uid:gid with HOME=/tmp, so install byproducts on the
      bind mount stay owned by (and removable for) the runner.

OUTPUT:
    Captured output passes through the secret masker before it is stored,
    so nothing registered as a secret can reach a RunResult or a log.
"""
import os
import time
import uuid
import logging
from dataclasses import dataclass, field
from typing import Optional

import docker
from docker.errors import (
    ContainerError,
    ImageNotFound,
    APIError,
)

from shipyard.core.config import STAGE_TIMEOUT_SECONDS
from shipyard.utils.redaction import masker

logger = logging.getLogger(__name__)

WORKSPACE_MOUNT = "/workspace"


# ---------------------------------------------------------------------------
# Execution Result (returned to the Orchestrator)
# ---------------------------------------------------------------------------
@dataclass
class ExecutionResult:
    """
    Structured output from a single stage execution.

    Fields
    ------
    exit_code : int
        Process exit code (0 = success, non-zero = failure, -1 = never ran).
    full_log : str
        Full combined stdout + stderr from the container, masked.
    log_excerpt : str
        Abbreviated log (first + last N lines) for the run view.
    execution_time_seconds : float
        Wall clock duration of the execution.
    command : str
        The shell command that was executed.
    environment_metadata : dict
        Runtime info: image used, container ID, timeout applied.
    error : str | None
        Error message if execution infrastructure failed (not command failures).
    """
    exit_code: int = -1
    full_log: str = ""
    log_excerpt: str = ""
    execution_time_seconds: float = 0.0
    command: str = ""
    environment_metadata: dict = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and self.error is None


# ---------------------------------------------------------------------------
# Log Excerpt Helper
# ---------------------------------------------------------------------------
_EXCERPT_HEAD_LINES = 30
_EXCERPT_TAIL_LINES = 30


def create_log_excerpt(full_log: str,
                       head: int = _EXCERPT_HEAD_LINES,
                       tail: int = _EXCERPT_TAIL_LINES) -> str:
    """
    Create an abbreviated log showing the first and last N lines.

    If the log is short enough, returns it as-is.
    """
    lines = full_log.splitlines()
    total = len(lines)

    if total <= head + tail:
        return full_log

    omitted = total - head - tail
    return "\n".join(
        lines[:head]
        + [f"\n... ({omitted} lines omitted) ...\n"]
        + lines[-tail:]
    )


# ---------------------------------------------------------------------------
# Container Execution
# ---------------------------------------------------------------------------
_MEMORY_LIMIT = "2g"
_CPU_COUNT = 2


def host_user() -> Optional[str]:
    """uid:gid of this process, None where the platform has no POSIX ids."""
    if not hasattr(os, "getuid"):
        return None
    return f"{os.getuid()}:{os.getgid()}"


def container_workdir(context: str) -> str:
    """Container path of the build context inside the mounted workspace."""
    context = (context or ".").strip("/")
    if context in ("", "."):
        return WORKSPACE_MOUNT
    return f"{WORKSPACE_MOUNT}/{context}"


def run_stage(
    stage: str,
    command: str,
    workspace_path: str,
    image: str,
    context: str = ".",
    env: Optional[dict] = None,
    timeout_seconds: int = STAGE_TIMEOUT_SECONDS,
) -> ExecutionResult:
    """
    Execute one stage command inside an ephemeral Docker container.

    Lifecycle:
        1. Create container with the workspace mounted at /workspace,
           running as the host user
        2. Run ``bash -c <command>`` in the build context directory
        3. Wait (bounded by timeout), capture logs and exit code
        4. Destroy container
        5. Return ExecutionResult

    Parameters
    ----------
    stage : str
        Stage name, used for logging and container naming.
    command : str
        Shell command to run.
    workspace_path : str
        Absolute path to the per-run checkout on the host.
    image : str
        Sandbox image (e.g. node:18, python:3.11).
    context : str
        Build context relative to the workspace root.
    env : dict | None
        Extra environment for the container.
    timeout_seconds : int
        Max execution time before the stage is failed.

    Returns
    -------
    ExecutionResult
        Always returned - never raises.
        On infrastructure failure, exit_code is -1 and error is set.
    """
    result = ExecutionResult(command=command)
    start_time = time.monotonic()
    container = None
    workdir = container_workdir(context)

    environment = {"CI": "true", "HOME": "/tmp"}
    environment.update(env or {})

    try:
        client = docker.from_env()

        logger.info(
            "[%s] Starting container | image=%s | timeout=%ds | workdir=%s",
            stage, image, timeout_seconds, workdir,
        )

        container = client.containers.run(
            image=image,
            command=["bash", "-c", command],
            volumes={
                workspace_path: {"bind": WORKSPACE_MOUNT, "mode": "rw"},
            },
            environment=environment,
            working_dir=workdir,
            user=host_user(),
            mem_limit=_MEMORY_LIMIT,
            nano_cpus=_CPU_COUNT * 1_000_000_000,
            name=f"shipyard-{stage}-{uuid.uuid4().hex[:8]}",
            labels={"project": "shipyard", "role": stage},
            detach=True,
        )

        wait_result = container.wait(timeout=timeout_seconds)
        result.exit_code = wait_result.get("StatusCode", -1)

        log_bytes = container.logs(stdout=True, stderr=True)
        result.full_log = masker.mask(log_bytes.decode("utf-8", errors="replace"))

        result.environment_metadata = {
            "image": image,
            "container_id": container.short_id,
            "timeout_applied": timeout_seconds,
            "memory_limit": _MEMORY_LIMIT,
            "cpu_count": _CPU_COUNT,
        }

    except ImageNotFound:
        result.error = f"Stage image '{image}' not found"
        result.exit_code = -1
        logger.error(result.error)

    except ContainerError as e:
        result.error = f"Container execution error: {e}"
        result.exit_code = getattr(e, "exit_status", -1)
        result.full_log = masker.mask(str(e))
        logger.error(result.error)

    except APIError as e:
        result.error = f"Docker API error: {e}"
        result.exit_code = -1
        logger.error(result.error)

    except Exception as e:
        # Timeouts surface here (requests ReadTimeout / ConnectionError)
        result.error = masker.mask(f"Stage executor error: {type(e).__name__}: {e}")
        result.exit_code = -1
        logger.exception(result.error)

    finally:
        if container is not None:
            try:
                container.remove(force=True)
                logger.info("[%s] Container %s destroyed", stage, container.short_id)
            except Exception:
                logger.warning("Failed to remove container", exc_info=True)

    result.execution_time_seconds = round(time.monotonic() - start_time, 3)
    result.log_excerpt = create_log_excerpt(result.full_log)

    logger.info(
        "[%s] Execution complete | exit=%d | time=%.2fs",
        stage, result.exit_code, result.execution_time_seconds,
    )

    return result
