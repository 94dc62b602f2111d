"""
Image Builder
=============
Build Artifact stage: turns a tested source tree into a tagged image.

Steps:
    1. Write the rendered recipe to .shipyard.Dockerfile in the build
       context (or use the repository's own Dockerfile when configured)
    2. Make sure install-stage byproducts stay out of the build context
    3. Build with the Docker Engine, labelled with the revision
    4. Tag <repository>:<short_sha> and <repository>:<stable_tag>
    5. Optionally smoke-check a container started from the image

Every failure is raised as BuildError with the (masked) build log attached.
"""
import os
import logging
from typing import Iterable, List, Optional

import docker
from docker.errors import APIError, BuildError as DockerBuildError

from shipyard.core.constants import GENERATED_DOCKERFILE, IMAGE_LABEL_PREFIX, SHORT_SHA_LENGTH
from shipyard.core.errors import BuildError
from shipyard.builder.recipe import ContainerRecipe, render_dockerfile
from shipyard.executor.smoke_check import run_smoke_check
from shipyard.executor.stage_executor import create_log_excerpt
from shipyard.models.artifact import BuildArtifact
from shipyard.parser.pipeline_config import SmokeCheck
from shipyard.utils.redaction import masker

logger = logging.getLogger(__name__)

# Never shipped in the image: created by the install/test stages or VCS
DOCKERIGNORE_ENTRIES = [".git", "node_modules", ".venv", "__pycache__", GENERATED_DOCKERFILE]

_DOCKER_HUB_ALIASES = {"", "docker.io", "index.docker.io", "registry-1.docker.io"}


def qualified_repository(registry: str, image: str) -> str:
    """Registry-qualified repository name (Docker Hub names stay short)."""
    registry = (registry or "").rstrip("/")
    if registry in _DOCKER_HUB_ALIASES or image.startswith(f"{registry}/"):
        return image
    return f"{registry}/{image}"


def ensure_dockerignore(context_path: str, entries: Iterable[str] = DOCKERIGNORE_ENTRIES) -> List[str]:
    """
    Append missing entries to <context>/.dockerignore.

    Returns the entries that were added.
    """
    path = os.path.join(context_path, ".dockerignore")
    existing: set[str] = set()
    if os.path.isfile(path):
        with open(path, "r", encoding="utf-8") as f:
            existing = {line.strip() for line in f if line.strip()}

    missing = [e for e in entries if e not in existing]
    if missing:
        with open(path, "a", encoding="utf-8") as f:
            if existing:
                f.write("\n")
            f.write("\n".join(missing) + "\n")
    return missing


def _collect_build_log(chunks: Iterable[dict]) -> str:
    parts: list[str] = []
    for chunk in chunks:
        if not isinstance(chunk, dict):
            continue
        if "stream" in chunk:
            parts.append(chunk["stream"])
        elif "error" in chunk:
            parts.append(f"ERROR: {chunk['error']}\n")
    return masker.mask("".join(parts))


def build_image(
    context_path: str,
    repository: str,
    revision_sha: str,
    stable_tag: str,
    recipe: Optional[ContainerRecipe] = None,
    dockerfile: Optional[str] = None,
    smoke_check: Optional[SmokeCheck] = None,
) -> tuple[BuildArtifact, str]:
    """
    Build and tag the artifact image.

    Exactly one of ``recipe`` or ``dockerfile`` must be given.

    Returns
    -------
    (BuildArtifact, str)
        The artifact and the masked build log excerpt.

    Raises
    ------
    BuildError
        Engine unreachable, build step failed, or smoke check failed.
    """
    if (recipe is None) == (dockerfile is None):
        raise BuildError("Either a container recipe or a Dockerfile is required")

    if recipe is not None:
        with open(os.path.join(context_path, GENERATED_DOCKERFILE), "w", encoding="utf-8") as f:
            f.write(render_dockerfile(recipe))
        dockerfile = GENERATED_DOCKERFILE
        recipe_mode = recipe.mode
    else:
        if not os.path.isfile(os.path.join(context_path, dockerfile)):
            raise BuildError(f"Configured Dockerfile not found: {dockerfile}")
        recipe_mode = "dockerfile"

    ensure_dockerignore(context_path)

    revision_tag = revision_sha[:SHORT_SHA_LENGTH] or "local"
    tags = [revision_tag] if stable_tag == revision_tag else [revision_tag, stable_tag]
    labels = {
        f"{IMAGE_LABEL_PREFIX}.revision": revision_sha,
        f"{IMAGE_LABEL_PREFIX}.recipe": recipe_mode,
    }

    logger.info(
        "Building image | repository=%s | tags=%s | dockerfile=%s",
        repository, ",".join(tags), dockerfile,
    )

    try:
        client = docker.from_env()
        image, chunks = client.images.build(
            path=context_path,
            dockerfile=dockerfile,
            tag=f"{repository}:{tags[0]}",
            labels=labels,
            rm=True,
            forcerm=True,
        )
        build_log = _collect_build_log(chunks)

        for tag in tags[1:]:
            image.tag(repository, tag=tag)

    except DockerBuildError as e:
        build_log = _collect_build_log(e.build_log)
        raise BuildError(masker.mask(f"Image build failed: {e.msg}"), create_log_excerpt(build_log)) from e
    except APIError as e:
        raise BuildError(masker.mask(f"Docker API error during build: {e}")) from e
    except Exception as e:
        # docker.from_env() raises DockerException when the engine is unreachable
        raise BuildError(masker.mask(f"Build infrastructure error: {type(e).__name__}: {e}")) from e

    artifact = BuildArtifact(
        repository=repository,
        tags=tags,
        image_id=image.id,
        revision_sha=revision_sha,
        recipe_mode=recipe_mode,
    )
    logger.info("Built %s (%s)", artifact.primary_reference, artifact.image_id)

    if smoke_check is not None:
        if recipe is None:
            raise BuildError("smoke_check needs a recipe to know the exposed port")
        try:
            result = run_smoke_check(client, artifact.primary_reference, recipe.exposed_port, smoke_check)
        except Exception as e:
            raise BuildError(masker.mask(f"Smoke check could not run: {type(e).__name__}: {e}")) from e
        build_log += f"\n>>> SMOKE CHECK: {result.message}\n"
        if not result.passed:
            raise BuildError(f"Smoke check failed: {result.message}", create_log_excerpt(build_log))

    return artifact, create_log_excerpt(build_log)
