"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    TARGET_BRANCH            - Only pushes to this branch activate the pipeline (default: main)
    REGISTRY                 - Artifact registry host (default: docker.io)
    IMAGE_NAME               - Default repository name when shipyard.yml sets none
    STABLE_TAG               - Tag overwritten by every successful run (default: latest)
    REGISTRY_USERNAME_ENV    - NAME of the variable holding the registry principal
    REGISTRY_TOKEN_ENV       - NAME of the variable holding the registry token
    WEBHOOK_SECRET           - HMAC secret for X-Hub-Signature-256 (optional)
    WORKSPACE_ROOT           - Parent directory of per-run checkouts
    RESULTS_DIR              - Where finished runs are written as JSON
    KEEP_WORKSPACE           - Keep per-run checkouts after the run (default: false)

Secrets Philosophy:
    Registry credentials are NOT read here. This module only knows the names
    of the variables that hold them. The values are read by the secret
    channel inside the Authenticate stage and nowhere else.

Stage Timeout:
    STAGE_TIMEOUT_SECONDS bounds a single install/test container. A stage
    that exceeds it fails; there is no mid-stage cancellation otherwise.
"""
import os
from dotenv import load_dotenv

load_dotenv()

_BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Trigger
TARGET_BRANCH = os.getenv("TARGET_BRANCH", "main")
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "")

# Artifact naming
REGISTRY = os.getenv("REGISTRY", "docker.io")
IMAGE_NAME = os.getenv("IMAGE_NAME", "shipyard/app")
STABLE_TAG = os.getenv("STABLE_TAG", "latest")

# Secret channel: variable names only, never values
REGISTRY_USERNAME_ENV = os.getenv("REGISTRY_USERNAME_ENV", "REGISTRY_USERNAME")
REGISTRY_TOKEN_ENV = os.getenv("REGISTRY_TOKEN_ENV", "REGISTRY_TOKEN")

# Filesystem
WORKSPACE_ROOT = os.getenv("WORKSPACE_ROOT", os.path.join(_BASE_DIR, "workspace"))
RESULTS_DIR = os.getenv("RESULTS_DIR", os.path.join(_BASE_DIR, "results"))
LOG_DIR = os.getenv("LOG_DIR", "logs")
KEEP_WORKSPACE = os.getenv("KEEP_WORKSPACE", "false").lower() == "true"

# Sandbox images for the install and test stages: project_type → image
# Each entry is overridable via env var (e.g. STAGE_IMAGE_NODE=node:20)
STAGE_IMAGE_MAP: dict[str, str] = {
    "node":   os.getenv("STAGE_IMAGE_NODE",   "node:18"),
    "python": os.getenv("STAGE_IMAGE_PYTHON", "python:3.11"),
}

# Timeouts in seconds
STAGE_TIMEOUT_SECONDS = int(os.getenv("STAGE_TIMEOUT_SECONDS", 600))
SMOKE_CHECK_TIMEOUT_SECONDS = int(os.getenv("SMOKE_CHECK_TIMEOUT_SECONDS", 30))

# Host where ports published by smoke-check containers are reachable
SMOKE_CHECK_HOST = os.getenv("SMOKE_CHECK_HOST", "127.0.0.1")

# HTTP API
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", 8000))
