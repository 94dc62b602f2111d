"""
Unit Tests - Project Detection & Command Resolution
====================================================
Marker-file detection, lockfile policy, pinned requirements and the
self-declared test command. Pure filesystem, no Docker.
"""
import json
from pathlib import Path

import pytest

from shipyard.core.errors import DependencyError, TestFailure
from shipyard.executor.project_detector import (
    detect_project_type,
    detect_lockfile,
    find_unpinned_requirements,
    LockInfo,
)
from shipyard.executor.command_resolver import (
    resolve_install_command,
    resolve_test_command,
    stage_env,
)


def _package_json(path, scripts=None):
    (path / "package.json").write_text(json.dumps({"name": "web", "scripts": scripts or {}}))


# ---------------------------------------------------------------------------
# 1. Project Detection
# ---------------------------------------------------------------------------
class TestProjectDetector:

    def test_detect_node_from_package_json(self, tmp_path):
        _package_json(tmp_path)
        assert detect_project_type(str(tmp_path)) == "node"

    def test_detect_python_from_requirements(self, tmp_path):
        (tmp_path / "requirements.txt").write_text("fastapi==0.115.6\n")
        assert detect_project_type(str(tmp_path)) == "python"

    def test_detect_python_from_pyproject(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text("[project]\n")
        assert detect_project_type(str(tmp_path)) == "python"

    def test_node_has_priority_over_python(self, tmp_path):
        _package_json(tmp_path)
        (tmp_path / "requirements.txt").write_text("\n")
        assert detect_project_type(str(tmp_path)) == "node"

    def test_returns_none_for_empty_dir(self, tmp_path):
        assert detect_project_type(str(tmp_path)) is None

    def test_returns_none_for_nonexistent_dir(self):
        assert detect_project_type("/nonexistent/path/xyz") is None


# ---------------------------------------------------------------------------
# 2. Lockfiles
# ---------------------------------------------------------------------------
class TestLockfileDetection:

    def test_npm_lockfile(self, tmp_path):
        (tmp_path / "package-lock.json").write_text("{}")
        assert detect_lockfile(str(tmp_path), "node") == LockInfo("package-lock.json", "npm")

    def test_yarn_lockfile(self, tmp_path):
        (tmp_path / "yarn.lock").write_text("")
        assert detect_lockfile(str(tmp_path), "node").flavour == "yarn"

    def test_npm_wins_over_yarn(self, tmp_path):
        (tmp_path / "yarn.lock").write_text("")
        (tmp_path / "package-lock.json").write_text("{}")
        assert detect_lockfile(str(tmp_path), "node").flavour == "npm"

    def test_no_lockfile(self, tmp_path):
        _package_json(tmp_path)
        assert detect_lockfile(str(tmp_path), "node") is None

    def test_unknown_project_type(self, tmp_path):
        assert detect_lockfile(str(tmp_path), None) is None


class TestUnpinnedRequirements:

    def _check(self, tmp_path, text):
        path = tmp_path / "requirements.txt"
        path.write_text(text)
        return find_unpinned_requirements(str(path))

    def test_fully_pinned(self, tmp_path):
        (tmp_path / "base.txt").write_text("anyio==4.7.0\n")
        text = "# runtime\nfastapi==0.115.6\n\nuvicorn===0.34.0  # exact\n-r base.txt\n--index-url https://pypi.org/simple\n"
        assert self._check(tmp_path, text) == []

    def test_loose_requirements_reported(self, tmp_path):
        text = "flask>=2.0\nrequests\nuvicorn==0.34.0\nhttpx~=0.27\n"
        assert self._check(tmp_path, text) == ["flask>=2.0", "requests", "httpx~=0.27"]

    def test_hash_checked_requirement_is_pinned(self, tmp_path):
        text = "flask==3.1.0 \\\n    --hash=sha256:0123abcd \\\n    --hash=sha256:4567ef01\n"
        assert self._check(tmp_path, text) == []

    def test_hash_without_exact_version_is_not_pinned(self, tmp_path):
        text = "flask --hash=sha256:0123abcd\n"
        assert self._check(tmp_path, text) == ["flask --hash=sha256:0123abcd"]

    def test_wildcard_pin_is_not_pinned(self, tmp_path):
        text = "fastapi==0.115.*\nuvicorn==0.34.0\n"
        assert self._check(tmp_path, text) == ["fastapi==0.115.*"]

    def test_editable_and_url_requirements_are_not_pinned(self, tmp_path):
        text = "-e .\ngit+https://github.com/acme/lib.git\nlib @ https://example.com/lib-1.0.tar.gz\n"
        assert self._check(tmp_path, text) == [
            "-e .",
            "git+https://github.com/acme/lib.git",
            "lib @ https://example.com/lib-1.0.tar.gz",
        ]

    def test_included_file_is_checked(self, tmp_path):
        (tmp_path / "base.txt").write_text("starlette>=0.40\n")
        text = "fastapi==0.115.6\n--requirement=base.txt\n"
        assert self._check(tmp_path, text) == ["starlette>=0.40"]

    def test_missing_include_is_reported(self, tmp_path):
        assert self._check(tmp_path, "-r missing.txt\n") == ["-r missing.txt"]

    def test_include_cycle_terminates(self, tmp_path):
        (tmp_path / "base.txt").write_text("-r requirements.txt\nh11==0.14.0\n")
        assert self._check(tmp_path, "-r base.txt\nclick==8.1.8\n") == []

    def test_committed_service_lock_is_complete_and_pinned(self):
        lock = Path(__file__).resolve().parent.parent / "hello_service" / "requirements.txt"
        assert find_unpinned_requirements(str(lock)) == []
        names = {line.split("==")[0] for line in lock.read_text().splitlines() if "==" in line}
        assert {"starlette", "pydantic", "pydantic-core", "anyio", "h11", "click"} <= names

    def test_environment_marker(self, tmp_path):
        text = 'pytest==8.3.4; python_version >= "3.8"\n'
        assert self._check(tmp_path, text) == []


# ---------------------------------------------------------------------------
# 3. Install Command
# ---------------------------------------------------------------------------
class TestInstallCommand:

    def test_npm_ci(self, tmp_path):
        _package_json(tmp_path)
        (tmp_path / "package-lock.json").write_text("{}")
        assert resolve_install_command(str(tmp_path), "node") == ("npm ci", "package-lock.json")

    def test_pnpm_frozen_lockfile(self, tmp_path):
        (tmp_path / "pnpm-lock.yaml").write_text("")
        command, lockfile = resolve_install_command(str(tmp_path), "node")
        assert "pnpm install --frozen-lockfile" in command
        assert lockfile == "pnpm-lock.yaml"

    def test_pip_installs_into_workspace_venv(self, tmp_path):
        (tmp_path / "requirements.txt").write_text("fastapi==0.115.6\n")
        command, lockfile = resolve_install_command(str(tmp_path), "python")
        assert command.startswith("python -m venv .venv && ")
        assert ".venv/bin/pip install --no-cache-dir --no-deps -r requirements.txt" in command
        assert lockfile == "requirements.txt"

    def test_top_level_only_lock_cannot_pull_in_unlisted_dependencies(self, tmp_path):
        # fastapi alone leaves starlette/pydantic unpinned: --no-deps keeps them
        # out and pip check fails the install on the missing requirements
        (tmp_path / "requirements.txt").write_text("fastapi==0.115.6\n")
        command, _ = resolve_install_command(str(tmp_path), "python")
        install, check = command.split(" && ")[1:]
        assert "--no-deps" in install.split()
        assert check == ".venv/bin/pip check"

    def test_missing_lockfile_is_dependency_error(self, tmp_path):
        _package_json(tmp_path)
        with pytest.raises(DependencyError, match="No dependency lockfile"):
            resolve_install_command(str(tmp_path), "node")

    def test_unpinned_requirements_are_dependency_error(self, tmp_path):
        (tmp_path / "requirements.txt").write_text("fastapi\n")
        with pytest.raises(DependencyError, match="fastapi"):
            resolve_install_command(str(tmp_path), "python")

    def test_unknown_project_is_dependency_error(self, tmp_path):
        with pytest.raises(DependencyError, match="supported: node, python"):
            resolve_install_command(str(tmp_path), None)

    def test_deterministic_resolution(self, tmp_path):
        (tmp_path / "yarn.lock").write_text("")
        assert resolve_install_command(str(tmp_path), "node") == resolve_install_command(str(tmp_path), "node")


# ---------------------------------------------------------------------------
# 4. Test Command
# ---------------------------------------------------------------------------
class TestTestCommand:

    def test_declared_command_wins(self, tmp_path):
        _package_json(tmp_path, {"test": "jest"})
        assert resolve_test_command(str(tmp_path), "node", "  npm run ci-test ") == "npm run ci-test"

    def test_explicit_noop_counts_as_declared(self, tmp_path):
        assert resolve_test_command(str(tmp_path), "python", "true") == "true"

    def test_package_json_test_script(self, tmp_path):
        _package_json(tmp_path, {"test": "node --test"})
        assert resolve_test_command(str(tmp_path), "node") == "npm test"

    def test_python_tests_directory(self, tmp_path):
        (tmp_path / "tests").mkdir()
        assert resolve_test_command(str(tmp_path), "python") == "python -m pytest"

    def test_python_pytest_config(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text("[tool.pytest.ini_options]\naddopts = '-q'\n")
        assert resolve_test_command(str(tmp_path), "python") == "python -m pytest"

    def test_node_without_test_script_fails(self, tmp_path):
        _package_json(tmp_path, {"start": "node index.js"})
        with pytest.raises(TestFailure, match="declares no test command"):
            resolve_test_command(str(tmp_path), "node")

    def test_blank_declaration_is_not_a_declaration(self, tmp_path):
        with pytest.raises(TestFailure):
            resolve_test_command(str(tmp_path), "python", "   ")

    def test_unreadable_package_json(self, tmp_path):
        (tmp_path / "package.json").write_text("{not json")
        with pytest.raises(TestFailure):
            resolve_test_command(str(tmp_path), "node")


class TestStageEnv:

    def test_python_uses_workspace_venv(self):
        env = stage_env("python", "/workspace/svc")
        assert env["VIRTUAL_ENV"] == "/workspace/svc/.venv"
        assert env["PATH"].startswith("/workspace/svc/.venv/bin:")

    def test_node_needs_nothing(self):
        assert stage_env("node") == {}
