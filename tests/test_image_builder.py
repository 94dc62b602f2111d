"""
Unit Tests - Image Builder & Smoke Check
========================================
Tagging, build-context hygiene, error mapping and the artifact smoke
check, with mocked Docker and httpx.
"""
from unittest.mock import patch, MagicMock

import pytest
from docker.errors import BuildError as DockerBuildError

from shipyard.builder.image_builder import build_image, ensure_dockerignore, qualified_repository
from shipyard.builder.recipe import build_recipe
from shipyard.core.errors import BuildError
from shipyard.executor.smoke_check import SmokeResult, evaluate_response, run_smoke_check
from shipyard.parser.pipeline_config import SmokeCheck

SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"
GREETING = "Hello from CI/CD pipeline!"


def _mock_build(mock_docker, chunks=None):
    image = MagicMock(id="sha256:feedbeef")
    client = MagicMock()
    client.images.build.return_value = (image, iter(chunks or [{"stream": "Step 1/6 : FROM python:3.11-slim\n"}]))
    mock_docker.from_env.return_value = client
    return client, image


class TestRepositoryNaming:

    def test_docker_hub_names_stay_short(self):
        assert qualified_repository("docker.io", "acme/hello") == "acme/hello"

    def test_other_registries_are_prefixed(self):
        assert qualified_repository("ghcr.io/", "acme/hello") == "ghcr.io/acme/hello"

    def test_already_qualified(self):
        assert qualified_repository("ghcr.io", "ghcr.io/acme/hello") == "ghcr.io/acme/hello"


class TestDockerignore:

    def test_created_when_missing(self, tmp_path):
        added = ensure_dockerignore(str(tmp_path))
        assert ".venv" in added and "node_modules" in added
        assert (tmp_path / ".dockerignore").read_text().splitlines() == added

    def test_existing_entries_kept(self, tmp_path):
        (tmp_path / ".dockerignore").write_text("*.log\n.git\n")
        added = ensure_dockerignore(str(tmp_path))
        assert ".git" not in added
        lines = (tmp_path / ".dockerignore").read_text().split()
        assert lines[:2] == ["*.log", ".git"]
        assert "node_modules" in lines


class TestBuildImage:

    @patch("shipyard.builder.image_builder.docker")
    def test_build_from_recipe(self, mock_docker, tmp_path):
        client, image = _mock_build(mock_docker)

        artifact, log = build_image(str(tmp_path), "acme/hello", SHA, "latest", recipe=build_recipe("python"))

        assert artifact.tags == [SHA[:12], "latest"]
        assert artifact.references == [f"acme/hello:{SHA[:12]}", "acme/hello:latest"]
        assert artifact.image_id == "sha256:feedbeef"
        assert artifact.revision_sha == SHA
        assert artifact.recipe_mode == "production"
        assert "Step 1/6" in log

        kwargs = client.images.build.call_args.kwargs
        assert kwargs["path"] == str(tmp_path)
        assert kwargs["dockerfile"] == ".shipyard.Dockerfile"
        assert kwargs["tag"] == f"acme/hello:{SHA[:12]}"
        assert kwargs["labels"]["org.shipyard.revision"] == SHA
        image.tag.assert_called_once_with("acme/hello", tag="latest")
        assert (tmp_path / ".shipyard.Dockerfile").read_text().startswith("FROM python:3.11-slim\n")
        assert (tmp_path / ".dockerignore").exists()

    @patch("shipyard.builder.image_builder.docker")
    def test_build_from_committed_dockerfile(self, mock_docker, tmp_path):
        client, _ = _mock_build(mock_docker)
        (tmp_path / "Dockerfile").write_text("FROM scratch\n")

        artifact, _ = build_image(str(tmp_path), "acme/hello", SHA, "stable", dockerfile="Dockerfile")

        assert artifact.recipe_mode == "dockerfile"
        assert artifact.tags == [SHA[:12], "stable"]
        assert client.images.build.call_args.kwargs["dockerfile"] == "Dockerfile"
        assert not (tmp_path / ".shipyard.Dockerfile").exists()

    def test_requires_exactly_one_source(self, tmp_path):
        with pytest.raises(BuildError):
            build_image(str(tmp_path), "acme/hello", SHA, "latest")
        with pytest.raises(BuildError):
            build_image(str(tmp_path), "acme/hello", SHA, "latest", recipe=build_recipe("python"), dockerfile="Dockerfile")

    def test_missing_committed_dockerfile(self, tmp_path):
        with pytest.raises(BuildError, match="not found"):
            build_image(str(tmp_path), "acme/hello", SHA, "latest", dockerfile="Dockerfile")

    @patch("shipyard.builder.image_builder.docker")
    def test_failed_build_step(self, mock_docker, tmp_path):
        client = MagicMock()
        client.images.build.side_effect = DockerBuildError(
            "The command '/bin/sh -c pip install' returned a non-zero code: 1",
            [{"stream": "Step 4/6 : RUN pip install\n"}, {"error": "No matching distribution found for nope"}],
        )
        mock_docker.from_env.return_value = client

        with pytest.raises(BuildError) as exc_info:
            build_image(str(tmp_path), "acme/hello", SHA, "latest", recipe=build_recipe("python"))

        assert "non-zero code" in exc_info.value.message
        assert "No matching distribution" in exc_info.value.output

    @patch("shipyard.builder.image_builder.docker")
    def test_engine_unreachable(self, mock_docker, tmp_path):
        mock_docker.from_env.side_effect = Exception("Error while fetching server API version")

        with pytest.raises(BuildError, match="Build infrastructure error"):
            build_image(str(tmp_path), "acme/hello", SHA, "latest", recipe=build_recipe("python"))

    @patch("shipyard.builder.image_builder.run_smoke_check")
    @patch("shipyard.builder.image_builder.docker")
    def test_smoke_check_passes(self, mock_docker, mock_smoke, tmp_path):
        client, _ = _mock_build(mock_docker)
        mock_smoke.return_value = SmokeResult(True, "GET / → 200", 200, GREETING)
        check = SmokeCheck(expected_body=GREETING)

        _, log = build_image(str(tmp_path), "acme/hello", SHA, "latest", recipe=build_recipe("python"), smoke_check=check)

        mock_smoke.assert_called_once_with(client, f"acme/hello:{SHA[:12]}", 8080, check)
        assert "SMOKE CHECK: GET / → 200" in log

    @patch("shipyard.builder.image_builder.run_smoke_check")
    @patch("shipyard.builder.image_builder.docker")
    def test_smoke_check_failure_fails_the_build(self, mock_docker, mock_smoke, tmp_path):
        _mock_build(mock_docker)
        mock_smoke.return_value = SmokeResult(False, "GET / returned 500, expected 200", 500)

        with pytest.raises(BuildError, match="Smoke check failed"):
            build_image(str(tmp_path), "acme/hello", SHA, "latest", recipe=build_recipe("python"), smoke_check=SmokeCheck())


class TestSmokeCheck:

    def test_exact_match(self):
        assert evaluate_response(SmokeCheck(expected_body=GREETING), 200, GREETING).passed

    def test_body_must_match_exactly(self):
        result = evaluate_response(SmokeCheck(expected_body=GREETING), 200, GREETING + "\n")
        assert not result.passed
        assert "body" in result.message

    def test_status_mismatch(self):
        result = evaluate_response(SmokeCheck(), 404, "")
        assert not result.passed
        assert "expected 200" in result.message

    def test_body_ignored_when_not_configured(self):
        assert evaluate_response(SmokeCheck(), 200, "anything").passed

    def _container(self, status="running"):
        container = MagicMock()
        container.status = status
        container.attrs = {"NetworkSettings": {"Ports": {"8080/tcp": [{"HostIp": "0.0.0.0", "HostPort": "49153"}]}}}
        return container

    @patch("shipyard.executor.smoke_check.httpx.Client")
    def test_run_against_container(self, mock_http_cls):
        container = self._container()
        client = MagicMock()
        client.containers.run.return_value = container
        http = mock_http_cls.return_value.__enter__.return_value
        http.get.return_value = MagicMock(status_code=200, text=GREETING)

        result = run_smoke_check(client, "acme/hello:abc", 8080, SmokeCheck(expected_body=GREETING))

        assert result.passed
        http.get.assert_called_once_with("http://127.0.0.1:49153/")
        kwargs = client.containers.run.call_args.kwargs
        assert kwargs["ports"] == {"8080/tcp": None}
        assert kwargs["environment"] == {"PORT": "8080"}
        container.remove.assert_called_once_with(force=True)

    def test_container_exits_early(self):
        container = self._container(status="exited")
        container.logs.return_value = b"ModuleNotFoundError: No module named 'fastapi'\n"
        client = MagicMock()
        client.containers.run.return_value = container

        result = run_smoke_check(client, "acme/hello:abc", 8080, SmokeCheck())

        assert not result.passed
        assert "ModuleNotFoundError" in result.message
        container.remove.assert_called_once_with(force=True)

    def test_timeout(self):
        container = self._container()
        client = MagicMock()
        client.containers.run.return_value = container

        result = run_smoke_check(client, "acme/hello:abc", 8080, SmokeCheck(), timeout_seconds=0)

        assert not result.passed
        assert "timed out" in result.message
        container.remove.assert_called_once_with(force=True)
