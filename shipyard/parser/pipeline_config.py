"""
Pipeline Config Reader
======================
Parses the optional ``shipyard.yml`` at the repository root.

Strategy:
    The repository describes itself: build context, image name, test
    command, recipe overrides and the artifact smoke check. Everything is
    optional; a missing file yields the defaults.

Failure policy:
    A file that exists but is not valid YAML, is not a mapping, or carries
    unknown keys raises PipelineConfigError. The orchestrator reports that
    as a Checkout failure: the source tree did not materialise into
    something the pipeline can run.

Deterministic:
    Same file → same PipelineConfig, always.
"""
import os
import logging
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shipyard.core.config import IMAGE_NAME, STABLE_TAG
from shipyard.core.constants import PIPELINE_FILE

logger = logging.getLogger(__name__)


class PipelineConfigError(ValueError):
    """shipyard.yml exists but cannot be used."""


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------
class RecipeOverrides(BaseModel):
    """Per-field overrides applied on top of a recipe preset."""
    model_config = ConfigDict(extra="forbid")

    mode: str = "production"
    base_image: Optional[str] = None
    workdir: Optional[str] = None
    install_command: Optional[str] = None
    exposed_port: Optional[int] = None
    start_command: Optional[List[str]] = None
    env: Dict[str, str] = Field(default_factory=dict)


class SmokeCheck(BaseModel):
    """Request made against a container started from the built image."""
    model_config = ConfigDict(extra="forbid")

    path: str = "/"
    expected_status: int = 200
    expected_body: Optional[str] = None


class PipelineConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    context: str = "."
    image: str = IMAGE_NAME
    stable_tag: str = STABLE_TAG
    test_command: Optional[str] = None
    dockerfile: Optional[str] = None
    recipe: RecipeOverrides = Field(default_factory=RecipeOverrides)
    smoke_check: Optional[SmokeCheck] = None

    def context_path(self, workspace_path: str) -> str:
        """Absolute build context, refusing paths that escape the workspace."""
        root = os.path.abspath(workspace_path)
        path = os.path.normpath(os.path.join(root, self.context))
        if path != root and not path.startswith(root + os.sep):
            raise PipelineConfigError(f"context escapes the repository: {self.context}")
        return path


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def parse_pipeline_config(content: str, source: str = PIPELINE_FILE) -> PipelineConfig:
    """Parse shipyard.yml text. Empty content yields the defaults."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise PipelineConfigError(f"{source}: invalid YAML: {e}") from e

    if data is None:
        return PipelineConfig()
    if not isinstance(data, dict):
        raise PipelineConfigError(f"{source}: top level must be a mapping")

    try:
        return PipelineConfig.model_validate(data)
    except ValidationError as e:
        raise PipelineConfigError(f"{source}: {e}") from e


def load_pipeline_config(workspace_path: str) -> PipelineConfig:
    """
    Read shipyard.yml from the repository root.

    Returns
    -------
    PipelineConfig
        Defaults when the file does not exist.
    """
    full_path = os.path.join(workspace_path, PIPELINE_FILE)
    if not os.path.isfile(full_path):
        logger.info("No %s found, using defaults", PIPELINE_FILE)
        return PipelineConfig()

    with open(full_path, "r", encoding="utf-8") as f:
        content = f.read()

    config = parse_pipeline_config(content, PIPELINE_FILE)
    # Validate the context eagerly so a bad path fails at checkout
    config.context_path(workspace_path)
    logger.info(
        "Loaded %s | context=%s | image=%s | mode=%s",
        PIPELINE_FILE, config.context, config.image, config.recipe.mode,
    )
    return config
