"""
Command Resolver
================
Maps a build context to its install and test commands.

Resolver never executes commands - it only returns strings.
Commands are passed to the Stage Executor for container execution.

Install: always lockfile-driven (npm ci, --frozen-lockfile, pinned pip with
         --no-deps + pip check, so the lock must list every dependency).
Test:    always self-declared. Declaration order:
             1. test_command in shipyard.yml (an explicit no-op like "true" counts)
             2. scripts.test in package.json
             3. tests/ directory or pytest config for python
         A project declaring nothing is a TestFailure, not a skipped stage.

Install and test are resolved separately, each inside its own stage, so a
missing test declaration surfaces as a Test failure after Install ran.

Deterministic: same context + same config → same commands, always.
"""
import os
from typing import Optional

from shipyard.core.errors import DependencyError, TestFailure
from shipyard.executor.project_detector import (
    detect_lockfile,
    find_unpinned_requirements,
    has_python_tests,
    read_package_scripts,
    LOCKFILE_MAP,
)

_DEFAULT_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"
VENV_DIR = ".venv"


# ---------------------------------------------------------------------------
# Install command mapping: lock flavour → command
# ---------------------------------------------------------------------------
_INSTALL_MAP: dict[str, str] = {
    "npm":  "npm ci",
    "yarn": "corepack yarn install --frozen-lockfile",
    "pnpm": "corepack pnpm install --frozen-lockfile",
    "pip":  (
        f"python -m venv {VENV_DIR} && {VENV_DIR}/bin/pip install --no-cache-dir --no-deps -r requirements.txt"
        f" && {VENV_DIR}/bin/pip check"
    ),
}


def resolve_install_command(context_path: str, project_type: Optional[str]) -> tuple[str, str]:
    """
    Return (install_command, lockfile) for the build context.

    Raises
    ------
    DependencyError
        Unknown project type, missing lockfile, or unpinned python requirements.
    """
    if project_type not in LOCKFILE_MAP:
        raise DependencyError(
            "Could not detect a supported project type "
            f"(supported: {', '.join(get_supported_project_types())}; "
            "expected package.json or requirements.txt)"
        )

    lock = detect_lockfile(context_path, project_type)
    if lock is None:
        expected = ", ".join(name for name, _ in LOCKFILE_MAP[project_type])
        raise DependencyError(
            f"No dependency lockfile found for {project_type} project (expected one of: {expected})"
        )

    if lock.flavour == "pip":
        unpinned = find_unpinned_requirements(os.path.join(context_path, lock.lockfile))
        if unpinned:
            raise DependencyError(
                "Unpinned requirements would allow version drift: " + ", ".join(unpinned)
            )

    return _INSTALL_MAP[lock.flavour], lock.lockfile


def resolve_test_command(
    context_path: str,
    project_type: Optional[str],
    declared: Optional[str] = None,
) -> str:
    """
    Return the project's self-declared test command.

    Raises
    ------
    TestFailure
        The project declares no test command at all.
    """
    if declared is not None and declared.strip():
        return declared.strip()

    if project_type == "node" and read_package_scripts(context_path).get("test"):
        return "npm test"

    if project_type == "python" and has_python_tests(context_path):
        return "python -m pytest"

    raise TestFailure(
        "Project declares no test command. Declare one (test_command in "
        "shipyard.yml or scripts.test in package.json); use an explicit "
        "no-op such as \"true\" if the project has no tests."
    )


def stage_env(project_type: Optional[str], container_workdir: str = "/workspace") -> dict:
    """Extra container environment shared by the install and test stages."""
    if project_type == "python":
        venv = f"{container_workdir.rstrip('/')}/{VENV_DIR}"
        return {"VIRTUAL_ENV": venv, "PATH": f"{venv}/bin:{_DEFAULT_PATH}"}
    return {}


def get_supported_project_types() -> list[str]:
    """Return all project types that have install mappings."""
    return sorted(LOCKFILE_MAP.keys())
