"""
Shipyard CLI
============
Command-line surface of the pipeline. The process exit code is the run
result: 0 on success, the failing stage's error code otherwise.

Commands:
    run               run the pipeline for a repository revision
    trigger           apply the activation rule to a push payload, run if it activates
    render-dockerfile print the container recipe of a project as a Dockerfile
    render-workflow   print the GitHub Actions workflow of a project
    serve             start the webhook / run-status API
"""
import argparse
import json
import logging
import sys
from typing import List, Optional

from shipyard.core.config import API_HOST, API_PORT, TARGET_BRANCH
from shipyard.core.constants import ARROW
from shipyard.core.errors import PipelineError
from shipyard.builder.recipe import RECIPE_MODES, build_recipe, render_dockerfile
from shipyard.executor.project_detector import detect_project_type
from shipyard.models.push_event import PushEvent
from shipyard.models.revision import Revision
from shipyard.models.run_result import RunResult
from shipyard.parser.pipeline_config import PipelineConfigError, load_pipeline_config
from shipyard.pipeline.orchestrator import PipelineOrchestrator
from shipyard.pipeline.trigger import should_activate
from shipyard.render.workflow import render_workflow
from shipyard.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _print_result(result: RunResult) -> None:
    print(f"Run {result.run_id}: {result.status.upper()}")
    for outcome in result.stages:
        marker = "ok" if outcome.status == "succeeded" else "FAILED"
        print(f"  {outcome.stage:<13} {marker:<7} {outcome.duration_seconds:.2f}s")
    if result.failed_stage:
        print(f"\n{result.error_type} in {result.failed_stage} stage: {result.error_message}")
        failed = result.stages[-1]
        if failed.output and failed.output != result.error_message:
            print("\n--- stage output ---")
            print(failed.output)
    elif result.artifact:
        refs = ", ".join(result.artifact.references)
        print(f"\nPublished {ARROW} {refs}")


def cmd_run(args: argparse.Namespace) -> int:
    revision = Revision(repo_url=args.repo, ref=args.ref, commit_sha=args.sha or "")
    result = PipelineOrchestrator().run(revision)
    _print_result(result)
    return result.exit_code


def cmd_trigger(args: argparse.Namespace) -> int:
    with open(args.event, "r", encoding="utf-8") as f:
        event = PushEvent.model_validate(json.load(f))

    if not should_activate(event, args.target_branch):
        print(f"Push to {event.ref} does not activate the pipeline (target: {args.target_branch})")
        return 0

    result = PipelineOrchestrator().run(event.to_revision())
    _print_result(result)
    return result.exit_code


def cmd_render_dockerfile(args: argparse.Namespace) -> int:
    config = load_pipeline_config(args.path)
    context_path = config.context_path(args.path)
    project_type = detect_project_type(context_path)
    overrides = config.recipe.model_copy(update={"mode": args.mode}) if args.mode else config.recipe
    sys.stdout.write(render_dockerfile(build_recipe(project_type or "", overrides)))
    return 0


def cmd_render_workflow(args: argparse.Namespace) -> int:
    config = load_pipeline_config(args.path)
    sys.stdout.write(render_workflow(args.path, config, target_branch=args.target_branch))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("main:app", host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="shipyard", description="Build, test, containerize and publish a service")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("run", help="Run the pipeline for a revision")
    p.add_argument("--repo", required=True, help="Clone URL or local path of the repository")
    p.add_argument("--ref", default=f"refs/heads/{TARGET_BRANCH}", help="Ref to build (default: target branch)")
    p.add_argument("--sha", default="", help="Commit to build (default: head of --ref)")
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("trigger", help="Run the pipeline if a push event activates it")
    p.add_argument("--event", required=True, help="Path to the push payload JSON (e.g. $GITHUB_EVENT_PATH)")
    p.add_argument("--target-branch", default=TARGET_BRANCH)
    p.set_defaults(func=cmd_trigger)

    p = sub.add_parser("render-dockerfile", help="Print the container recipe as a Dockerfile")
    p.add_argument("path", nargs="?", default=".")
    p.add_argument("--mode", choices=RECIPE_MODES, default=None)
    p.set_defaults(func=cmd_render_dockerfile)

    p = sub.add_parser("render-workflow", help="Print the GitHub Actions workflow")
    p.add_argument("path", nargs="?", default=".")
    p.add_argument("--target-branch", default=TARGET_BRANCH)
    p.set_defaults(func=cmd_render_workflow)

    p = sub.add_parser("serve", help="Start the webhook / run-status API")
    p.add_argument("--host", default=API_HOST)
    p.add_argument("--port", type=int, default=API_PORT)
    p.set_defaults(func=cmd_serve)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        return args.func(args)
    except (PipelineError, PipelineConfigError, ValueError, OSError) as e:
        logger.error("%s: %s", type(e).__name__, e)
        return getattr(e, "exit_code", 2)


if __name__ == "__main__":
    sys.exit(main())
