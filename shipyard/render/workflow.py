"""
Workflow Renderer
=================
Renders the pipeline as a GitHub Actions workflow, for teams that run it
on hosted CI instead of through the shipyard runner.

The rendered workflow keeps the same guarantees:
    - triggered by a push to the target branch only
    - lockfile-driven install, self-declared test, fail-fast step order
    - registry secrets referenced by name (${{ secrets.NAME }}), never inlined,
      and only handed to the login step
    - image built from the same Dockerfile the runner builds: the rendered
      recipe written to .shipyard.Dockerfile, or the configured Dockerfile
    - pushed under the short revision sha and the stable tag, like the runner
"""
import os
from typing import Optional

import yaml

from shipyard.core.config import REGISTRY, REGISTRY_TOKEN_ENV, REGISTRY_USERNAME_ENV, TARGET_BRANCH
from shipyard.core.constants import GENERATED_DOCKERFILE, SHORT_SHA_LENGTH
from shipyard.core.errors import BuildError
from shipyard.builder.image_builder import DOCKERIGNORE_ENTRIES, qualified_repository
from shipyard.builder.recipe import build_recipe, render_dockerfile
from shipyard.executor.command_resolver import VENV_DIR, resolve_install_command, resolve_test_command
from shipyard.executor.project_detector import detect_project_type
from shipyard.parser.pipeline_config import PipelineConfig

_SETUP_STEPS = {
    "node": {
        "name": "Set up Node.js",
        "uses": "actions/setup-node@v4",
        "with": {"node-version": "18"},
    },
    "python": {
        "name": "Set up Python",
        "uses": "actions/setup-python@v5",
        "with": {"python-version": "3.11"},
    },
}

_DOCKER_HUB = {"", "docker.io", "index.docker.io"}


def _secret(name: str) -> str:
    return "${{ secrets.%s }}" % name


def _prepare_script(dockerfile_text: Optional[str]) -> str:
    """
    Shell run in the build context before the image build.

    Writes the rendered Dockerfile when one is given and extends
    .dockerignore the way the image builder does. The short sha becomes the
    step output ``short_sha``.
    """
    lines = []
    if dockerfile_text is not None:
        lines.append(f"cat > {GENERATED_DOCKERFILE} <<'EOF'\n{dockerfile_text}EOF")
    lines.append("printf '%s\\n' " + " ".join(DOCKERIGNORE_ENTRIES) + " >> .dockerignore")
    lines.append(f'echo "short_sha=${{GITHUB_SHA::{SHORT_SHA_LENGTH}}}" >> "$GITHUB_OUTPUT"')
    return "\n".join(lines) + "\n"


def render_workflow(
    workspace_path: str,
    config: Optional[PipelineConfig] = None,
    target_branch: str = TARGET_BRANCH,
    registry: str = REGISTRY,
    username_secret: str = REGISTRY_USERNAME_ENV,
    token_secret: str = REGISTRY_TOKEN_ENV,
) -> str:
    """
    Render the workflow YAML for the repository at ``workspace_path``.

    Raises
    ------
    DependencyError / TestFailure
        The project has no lockfile or declares no test command; the
        rendered workflow would fail the same way the runner does.
    BuildError
        The configured Dockerfile does not exist in the build context.
    """
    config = config or PipelineConfig()
    context_path = config.context_path(workspace_path)
    project_type = detect_project_type(context_path)
    install_command, _ = resolve_install_command(context_path, project_type)
    test_command = resolve_test_command(context_path, project_type, config.test_command)
    if project_type == "python":
        test_command = f". {VENV_DIR}/bin/activate && {test_command}"

    context = config.context.strip("/") or "."
    if config.dockerfile:
        if not os.path.isfile(os.path.join(context_path, config.dockerfile)):
            raise BuildError(f"Configured Dockerfile not found: {config.dockerfile}")
        dockerfile_name, dockerfile_text = config.dockerfile, None
    else:
        recipe = build_recipe(project_type, config.recipe)
        dockerfile_name, dockerfile_text = GENERATED_DOCKERFILE, render_dockerfile(recipe)
    dockerfile = os.path.join(context, dockerfile_name).replace(os.sep, "/")
    repository = qualified_repository(registry, config.image)

    login_with = {
        "username": _secret(username_secret),
        "password": _secret(token_secret),
    }
    if registry not in _DOCKER_HUB:
        login_with = {"registry": registry, **login_with}

    steps = [
        {"name": "Checkout", "uses": "actions/checkout@v4"},
        _SETUP_STEPS[project_type],
        {"name": "Install dependencies", "working-directory": context, "run": install_command},
        {"name": "Test", "working-directory": context, "run": test_command},
        {
            "name": "Prepare build context",
            "id": "prepare",
            "working-directory": context,
            "run": _prepare_script(dockerfile_text),
        },
        {"name": "Log in to registry", "uses": "docker/login-action@v3", "with": login_with},
        {
            "name": "Build and push image",
            "uses": "docker/build-push-action@v6",
            "with": {
                "context": context,
                "file": dockerfile,
                "push": True,
                "tags": "\n".join([
                    f"{repository}:${{{{ steps.prepare.outputs.short_sha }}}}",
                    f"{repository}:{config.stable_tag}",
                ]),
            },
        },
    ]

    workflow = {
        "name": "Build, test and publish",
        "on": {"push": {"branches": [target_branch]}},
        "jobs": {
            "pipeline": {
                "runs-on": "ubuntu-latest",
                "steps": steps,
            },
        },
    }
    return yaml.safe_dump(workflow, sort_keys=False, default_flow_style=False, width=1000)
