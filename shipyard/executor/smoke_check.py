"""
Artifact Smoke Check
====================
Starts a container from a freshly built image, publishes its exposed port
on a random host port, and requests one path with httpx until the service
answers or the timeout expires.

The answer must match exactly: expected status code and, when configured,
the exact response body. Anything else fails the Build stage.
"""
import time
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from shipyard.core.config import SMOKE_CHECK_HOST, SMOKE_CHECK_TIMEOUT_SECONDS
from shipyard.parser.pipeline_config import SmokeCheck

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.5
_REQUEST_TIMEOUT = 2.0


@dataclass
class SmokeResult:
    passed: bool
    message: str
    status_code: Optional[int] = None
    body: str = ""


def _published_port(container, port: int) -> Optional[str]:
    ports = (container.attrs.get("NetworkSettings") or {}).get("Ports") or {}
    bindings = ports.get(f"{port}/tcp") or []
    for binding in bindings:
        host_port = binding.get("HostPort")
        if host_port:
            return host_port
    return None


def evaluate_response(check: SmokeCheck, status_code: int, body: str) -> SmokeResult:
    """Compare one HTTP answer against the configured expectation."""
    if status_code != check.expected_status:
        return SmokeResult(
            False,
            f"GET {check.path} returned {status_code}, expected {check.expected_status}",
            status_code, body,
        )
    if check.expected_body is not None and body != check.expected_body:
        return SmokeResult(
            False,
            f"GET {check.path} body {body[:200]!r} != expected {check.expected_body!r}",
            status_code, body,
        )
    return SmokeResult(True, f"GET {check.path} → {status_code}", status_code, body)


def run_smoke_check(
    client,
    image_ref: str,
    port: int,
    check: SmokeCheck,
    timeout_seconds: int = SMOKE_CHECK_TIMEOUT_SECONDS,
    host: str = SMOKE_CHECK_HOST,
) -> SmokeResult:
    """
    Run the image and probe it over HTTP.

    The container is always removed, whatever the outcome.
    """
    container = client.containers.run(
        image_ref,
        detach=True,
        ports={f"{port}/tcp": None},
        environment={"PORT": str(port)},
        labels={"project": "shipyard", "role": "smoke-check"},
    )
    logger.info("Smoke check | image=%s | port=%d | path=%s", image_ref, port, check.path)

    try:
        deadline = time.monotonic() + timeout_seconds
        last_error = "service never became reachable"

        with httpx.Client(timeout=_REQUEST_TIMEOUT) as http:
            while time.monotonic() < deadline:
                container.reload()
                if container.status in ("exited", "dead"):
                    logs = container.logs().decode("utf-8", errors="replace")
                    return SmokeResult(False, f"container exited before answering:\n{logs[-2000:]}")

                host_port = _published_port(container, port)
                if host_port:
                    try:
                        response = http.get(f"http://{host}:{host_port}{check.path}")
                        result = evaluate_response(check, response.status_code, response.text)
                        logger.info("Smoke check %s: %s", "passed" if result.passed else "failed", result.message)
                        return result
                    except httpx.TransportError as e:
                        last_error = f"{type(e).__name__}: {e}"

                time.sleep(_POLL_INTERVAL)

        return SmokeResult(False, f"timed out after {timeout_seconds}s: {last_error}")

    finally:
        try:
            container.remove(force=True)
        except Exception:
            logger.warning("Failed to remove smoke-check container", exc_info=True)
