"""
Pipeline Orchestrator
=====================
Drives one run of the build-test-containerize-publish pipeline:

    Checkout → Install → Test → Build → Authenticate → Publish

Core rules:
    - Stages run strictly in order; each consumes the previous stage's
      materialised output (workspace, installed deps, image).
    - Fail-fast: the first failing stage ends the run, later stages never
      execute. An artifact is built only after Install and Test passed, and
      published only after it was built and the session authenticated.
    - run() never raises for stage failures; they become a Failed RunResult
      naming the stage, the error type and that stage's raw output.
    - Secrets are read by the secret channel inside Authenticate only and
      dropped when the registry session closes, in every outcome.
    - No retries. No cancellation inside a stage.

Fault tolerance:
    An unexpected exception inside a stage is logged with traceback and
    reported as that stage's typed error, so the caller always receives a
    RunResult.
"""
import time
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from shipyard.core.config import (
    KEEP_WORKSPACE,
    REGISTRY,
    RESULTS_DIR,
    STAGE_IMAGE_MAP,
    STAGE_TIMEOUT_SECONDS,
    WORKSPACE_ROOT,
)
from shipyard.core.errors import (
    BuildError,
    CheckoutError,
    DependencyError,
    PipelineError,
    TestFailure,
    error_for_stage,
)
from shipyard.builder.image_builder import build_image, qualified_repository
from shipyard.builder.recipe import build_recipe
from shipyard.executor.command_resolver import (
    resolve_install_command,
    resolve_test_command,
    stage_env,
)
from shipyard.executor.project_detector import detect_project_type
from shipyard.executor.stage_executor import ExecutionResult, container_workdir, run_stage
from shipyard.models.artifact import BuildArtifact
from shipyard.models.revision import Revision
from shipyard.models.run_result import RunResult, StageOutcome
from shipyard.parser.pipeline_config import (
    PipelineConfig,
    PipelineConfigError,
    load_pipeline_config,
)
from shipyard.pipeline.state import RunState, RunStateMachine
from shipyard.publisher.registry import RegistrySession, SecretChannel
from shipyard.services.repo_service import checkout_revision, remove_workspace
from shipyard.services.results_writer import ResultsWriter
from shipyard.utils.redaction import masker

logger = logging.getLogger(__name__)


@dataclass
class _RunContext:
    """Materialised output handed from one stage to the next."""
    run_id: str
    revision: Revision
    workspace_path: str = ""
    config: Optional[PipelineConfig] = None
    context_path: str = ""
    project_type: Optional[str] = None
    artifact: Optional[BuildArtifact] = None
    session: Optional[RegistrySession] = None


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


def _stage_failure_message(stage: str, command: str, execution: ExecutionResult) -> str:
    if execution.error:
        return f"{stage} stage could not run `{command}`: {execution.error}"
    return f"`{command}` exited with status {execution.exit_code}"


class PipelineOrchestrator:
    """
    Runs the pipeline for one revision at a time; one instance may serve
    many runs (sequentially or from several threads) since all per-run
    state lives in a _RunContext.
    """

    def __init__(
        self,
        registry: str = REGISTRY,
        secret_channel: Optional[SecretChannel] = None,
        workspace_root: str = WORKSPACE_ROOT,
        results_dir: Optional[str] = RESULTS_DIR,
        stage_images: Optional[Dict[str, str]] = None,
        stage_timeout: int = STAGE_TIMEOUT_SECONDS,
        keep_workspace: bool = KEEP_WORKSPACE,
        on_update: Optional[Callable[[RunResult], None]] = None,
    ) -> None:
        self.registry = registry
        self.secret_channel = secret_channel or SecretChannel()
        self.workspace_root = workspace_root
        self.results_dir = results_dir
        self.stage_images = dict(stage_images or STAGE_IMAGE_MAP)
        self.stage_timeout = stage_timeout
        self.keep_workspace = keep_workspace
        self.on_update = on_update

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run(self, revision: Revision, run_id: Optional[str] = None) -> RunResult:
        """Execute the full stage sequence for ``revision``."""
        run_id = run_id or new_run_id()
        ctx = _RunContext(run_id=run_id, revision=revision)
        machine = RunStateMachine()
        result = RunResult(
            run_id=run_id,
            revision=revision,
            status="running",
            started_at=datetime.now(timezone.utc),
        )
        self._notify(result)

        stages: List[tuple[RunState, Callable[[_RunContext, RunResult], str]]] = [
            (RunState.CHECKOUT, self._checkout),
            (RunState.INSTALL, self._install),
            (RunState.TEST, self._test),
            (RunState.BUILD, self._build),
            (RunState.AUTHENTICATE, self._authenticate),
            (RunState.PUBLISH, self._publish),
        ]

        logger.info("Run %s started for %s@%s", run_id, revision.repo_url, revision.commit_sha[:12] or revision.branch)

        try:
            for step, (state, handler) in enumerate(stages, 1):
                machine.advance(state)
                logger.info("[%s] Step %d/%d: %s", run_id, step, len(stages), state.value)
                started_at = datetime.now(timezone.utc)
                t0 = time.monotonic()

                try:
                    output = handler(ctx, result)
                except PipelineError as e:
                    self._record_failure(result, machine, state, e, started_at, t0)
                    break
                except Exception as e:
                    logger.exception("[%s] Unexpected error in %s stage", run_id, state.value)
                    error_cls = error_for_stage(state.value) or PipelineError
                    wrapped = error_cls(masker.mask(f"Unexpected {type(e).__name__}: {e}"))
                    self._record_failure(result, machine, state, wrapped, started_at, t0)
                    break

                result.stages.append(StageOutcome(
                    stage=state.value,
                    status="succeeded",
                    started_at=started_at,
                    duration_seconds=round(time.monotonic() - t0, 3),
                    output=output or "",
                ))
                self._notify(result)
            else:
                machine.advance(RunState.SUCCEEDED)
                result.status = "succeeded"
        finally:
            if ctx.session is not None:
                ctx.session.close()
            if ctx.workspace_path and not self.keep_workspace:
                remove_workspace(ctx.workspace_path)

        result.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Run %s %s | stages=%s%s",
            run_id, result.status.upper(), ",".join(result.stage_names()),
            f" | failed_stage={result.failed_stage}" if result.failed_stage else "",
        )

        if self.results_dir:
            ResultsWriter.write_results(result, self.results_dir)
        self._notify(result)
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    def _checkout(self, ctx: _RunContext, result: RunResult) -> str:
        ctx.workspace_path, ctx.revision = checkout_revision(ctx.revision, ctx.run_id, self.workspace_root)
        result.revision = ctx.revision

        try:
            ctx.config = load_pipeline_config(ctx.workspace_path)
            ctx.context_path = ctx.config.context_path(ctx.workspace_path)
        except PipelineConfigError as e:
            raise CheckoutError(str(e)) from e

        return f"Checked out {ctx.revision.commit_sha} into {ctx.workspace_path}"

    def _install(self, ctx: _RunContext, result: RunResult) -> str:
        ctx.project_type = detect_project_type(ctx.context_path)
        command, lockfile = resolve_install_command(ctx.context_path, ctx.project_type)
        logger.info("[%s] %s project, installing from %s", ctx.run_id, ctx.project_type, lockfile)

        execution = self._run_in_sandbox(ctx, "install", command)
        if not execution.succeeded:
            raise DependencyError(_stage_failure_message("install", command, execution), execution.log_excerpt)
        return execution.log_excerpt

    def _test(self, ctx: _RunContext, result: RunResult) -> str:
        command = resolve_test_command(ctx.context_path, ctx.project_type, ctx.config.test_command)

        execution = self._run_in_sandbox(ctx, "test", command)
        if not execution.succeeded:
            raise TestFailure(_stage_failure_message("test", command, execution), execution.log_excerpt)
        return execution.log_excerpt

    def _build(self, ctx: _RunContext, result: RunResult) -> str:
        config = ctx.config
        recipe = None
        if not config.dockerfile:
            try:
                recipe = build_recipe(ctx.project_type, config.recipe)
            except ValueError as e:
                raise BuildError(str(e)) from e

        artifact, output = build_image(
            context_path=ctx.context_path,
            repository=qualified_repository(self.registry, config.image),
            revision_sha=ctx.revision.commit_sha,
            stable_tag=config.stable_tag,
            recipe=recipe,
            dockerfile=config.dockerfile,
            smoke_check=config.smoke_check,
        )
        ctx.artifact = artifact
        result.artifact = artifact
        return output

    def _authenticate(self, ctx: _RunContext, result: RunResult) -> str:
        ctx.session = RegistrySession(self.registry)
        ctx.session.login(self.secret_channel.read())
        return f"Authenticated to {self.registry}"

    def _publish(self, ctx: _RunContext, result: RunResult) -> str:
        output = ctx.session.push(ctx.artifact)
        ctx.session.close()
        ctx.session = None
        result.artifact = ctx.artifact
        result.published = True
        return output

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _run_in_sandbox(self, ctx: _RunContext, stage: str, command: str) -> ExecutionResult:
        image = self.stage_images.get(ctx.project_type or "")
        if not image:
            error_cls = DependencyError if stage == "install" else TestFailure
            raise error_cls(f"No {stage} sandbox image configured for {ctx.project_type} projects")

        return run_stage(
            stage=stage,
            command=command,
            workspace_path=ctx.workspace_path,
            image=image,
            context=ctx.config.context,
            env=stage_env(ctx.project_type, container_workdir(ctx.config.context)),
            timeout_seconds=self.stage_timeout,
        )

    def _record_failure(
        self,
        result: RunResult,
        machine: RunStateMachine,
        state: RunState,
        error: PipelineError,
        started_at: datetime,
        t0: float,
    ) -> None:
        message = masker.mask(error.message)
        output = masker.mask(error.output or error.message)
        logger.error("[%s] %s stage FAILED: %s", result.run_id, state.value, message)

        result.stages.append(StageOutcome(
            stage=state.value,
            status="failed",
            started_at=started_at,
            duration_seconds=round(time.monotonic() - t0, 3),
            output=output,
            error=message,
        ))
        machine.fail(error)
        result.status = "failed"
        result.failed_stage = state.value
        result.error_type = type(error).__name__
        result.error_message = message

    def _notify(self, result: RunResult) -> None:
        if self.on_update is None:
            return
        try:
            self.on_update(result.model_copy(deep=True))
        except Exception:
            logger.warning("Run update callback failed", exc_info=True)
