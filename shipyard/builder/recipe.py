"""
Container Recipe
================
One parameterised recipe for every artifact image. Development and
production images differ only in field values, never in structure.

Rendered layer order is fixed:

    FROM <base_image>
    WORKDIR <workdir>
    COPY <manifest_files> ./        ← manifests before source: the install
    RUN <install_command>             layer is reused until a manifest changes
    COPY . .
    ENV ...
    EXPOSE <exposed_port>
    CMD [<start_command>]

Canonical recipe:
    "production" is the default mode for every project type: slim base,
    production-only install, direct entry-point invocation on port 8080.
    "development" keeps the full base image and toolchain start command.
"""
import json
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from shipyard.parser.pipeline_config import RecipeOverrides

RECIPE_MODES = ("production", "development")


class ContainerRecipe(BaseModel):
    base_image: str
    workdir: str = "/usr/src/app"
    manifest_files: List[str]
    install_command: str
    env: Dict[str, str] = Field(default_factory=dict)
    exposed_port: int
    start_command: List[str]
    mode: str = "production"


# ---------------------------------------------------------------------------
# Presets: (project_type, mode) → recipe
# ---------------------------------------------------------------------------
_PRESETS: dict[tuple[str, str], ContainerRecipe] = {
    ("node", "production"): ContainerRecipe(
        base_image="node:18-slim",
        manifest_files=["package*.json"],
        install_command="npm ci --omit=dev",
        env={"NODE_ENV": "production"},
        exposed_port=8080,
        start_command=["node", "index.js"],
        mode="production",
    ),
    ("node", "development"): ContainerRecipe(
        base_image="node:18",
        manifest_files=["package*.json"],
        install_command="npm install",
        exposed_port=3000,
        start_command=["npm", "start"],
        mode="development",
    ),
    ("python", "production"): ContainerRecipe(
        base_image="python:3.11-slim",
        manifest_files=["requirements.txt"],
        install_command="pip install --no-cache-dir --no-deps -r requirements.txt && pip check",
        env={"PYTHONUNBUFFERED": "1"},
        exposed_port=8080,
        start_command=["python", "app.py"],
        mode="production",
    ),
    ("python", "development"): ContainerRecipe(
        base_image="python:3.11",
        manifest_files=["requirements.txt"],
        install_command="pip install --no-deps -r requirements.txt && pip check",
        exposed_port=8000,
        start_command=["python", "app.py"],
        mode="development",
    ),
}


def get_preset(project_type: str, mode: str = "production") -> Optional[ContainerRecipe]:
    """Return a copy of the preset for (project_type, mode), or None."""
    preset = _PRESETS.get((project_type, mode))
    return preset.model_copy(deep=True) if preset else None


def build_recipe(project_type: str, overrides: Optional[RecipeOverrides] = None) -> ContainerRecipe:
    """
    Resolve the recipe for a project: preset for the requested mode, with
    every field set in ``overrides`` applied on top.

    Raises
    ------
    ValueError
        Unknown mode or no preset for the project type.
    """
    overrides = overrides or RecipeOverrides()
    if overrides.mode not in RECIPE_MODES:
        raise ValueError(f"Unknown recipe mode '{overrides.mode}' (expected one of {RECIPE_MODES})")

    recipe = get_preset(project_type, overrides.mode)
    if recipe is None:
        raise ValueError(f"No container recipe for project type '{project_type}'")

    updates = overrides.model_dump(exclude={"mode", "env"}, exclude_none=True)
    recipe = recipe.model_copy(update=updates)
    if overrides.env:
        recipe = recipe.model_copy(update={"env": {**recipe.env, **overrides.env}})
    return recipe


def render_dockerfile(recipe: ContainerRecipe) -> str:
    """Render a recipe to Dockerfile text. Output is byte-stable per recipe."""
    lines = [
        f"FROM {recipe.base_image}",
        "",
        f"WORKDIR {recipe.workdir}",
        "",
        f"COPY {' '.join(recipe.manifest_files)} ./",
        f"RUN {recipe.install_command}",
        "",
        "COPY . .",
        "",
    ]
    for key in sorted(recipe.env):
        lines.append(f"ENV {key}={json.dumps(recipe.env[key])}")
    if recipe.env:
        lines.append("")
    lines.append(f"EXPOSE {recipe.exposed_port}")
    lines.append(f"CMD {json.dumps(recipe.start_command)}")
    return "\n".join(lines) + "\n"
