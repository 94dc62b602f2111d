"""
Unit Tests - Container Recipe
=============================
Presets, overrides, and the fixed layer order of the rendered Dockerfile.
"""
from pathlib import Path

import pytest

from shipyard.builder.recipe import build_recipe, get_preset, render_dockerfile
from shipyard.parser.pipeline_config import RecipeOverrides, load_pipeline_config

REPO_ROOT = Path(__file__).resolve().parent.parent


class TestPresets:

    def test_python_production_is_the_default(self):
        recipe = build_recipe("python")
        assert recipe.mode == "production"
        assert recipe.base_image == "python:3.11-slim"
        assert recipe.exposed_port == 8080
        assert recipe.start_command == ["python", "app.py"]

    def test_node_production(self):
        recipe = build_recipe("node")
        assert recipe.install_command == "npm ci --omit=dev"
        assert recipe.env == {"NODE_ENV": "production"}
        assert recipe.start_command == ["node", "index.js"]

    def test_development_differs_only_in_values(self):
        prod = build_recipe("node", RecipeOverrides(mode="production"))
        dev = build_recipe("node", RecipeOverrides(mode="development"))
        assert type(prod) is type(dev)
        assert prod.model_dump().keys() == dev.model_dump().keys()
        assert dev.base_image == "node:18"
        assert dev.exposed_port == 3000
        assert dev.start_command == ["npm", "start"]

    def test_get_preset_returns_a_copy(self):
        preset = get_preset("python")
        preset.env["LEAK"] = "1"
        assert "LEAK" not in get_preset("python").env

    def test_unknown_preset(self):
        assert get_preset("rust") is None


class TestOverrides:

    def test_fields_override_preset(self):
        recipe = build_recipe("python", RecipeOverrides(exposed_port=9000, start_command=["python", "-m", "svc"]))
        assert recipe.exposed_port == 9000
        assert recipe.start_command == ["python", "-m", "svc"]
        assert recipe.base_image == "python:3.11-slim"

    def test_env_is_merged(self):
        recipe = build_recipe("python", RecipeOverrides(env={"LOG_LEVEL": "info"}))
        assert recipe.env == {"PYTHONUNBUFFERED": "1", "LOG_LEVEL": "info"}

    def test_unknown_mode(self):
        with pytest.raises(ValueError, match="Unknown recipe mode"):
            build_recipe("python", RecipeOverrides(mode="staging"))

    def test_unknown_project_type(self):
        with pytest.raises(ValueError, match="No container recipe"):
            build_recipe("rust")


class TestRenderDockerfile:

    def test_node_production_render(self):
        assert render_dockerfile(build_recipe("node")) == (
            "FROM node:18-slim\n"
            "\n"
            "WORKDIR /usr/src/app\n"
            "\n"
            "COPY package*.json ./\n"
            "RUN npm ci --omit=dev\n"
            "\n"
            "COPY . .\n"
            "\n"
            'ENV NODE_ENV="production"\n'
            "\n"
            "EXPOSE 8080\n"
            'CMD ["node", "index.js"]\n'
        )

    def test_manifests_are_copied_before_source(self):
        lines = render_dockerfile(build_recipe("python")).splitlines()
        manifest = lines.index("COPY requirements.txt ./")
        install = lines.index("RUN pip install --no-cache-dir --no-deps -r requirements.txt && pip check")
        source = lines.index("COPY . .")
        assert manifest < install < source

    def test_recipe_without_env_has_no_env_layer(self):
        text = render_dockerfile(build_recipe("python", RecipeOverrides(mode="development")))
        assert "ENV " not in text
        assert text.endswith('EXPOSE 8000\nCMD ["python", "app.py"]\n')

    def test_render_is_stable(self):
        recipe = build_recipe("python", RecipeOverrides(env={"B": "2", "A": "1"}))
        text = render_dockerfile(recipe)
        assert text == render_dockerfile(recipe)
        assert text.index('ENV A="1"') < text.index('ENV B="2"')

    def test_committed_dockerfile_matches_recipe(self):
        config = load_pipeline_config(str(REPO_ROOT))
        expected = render_dockerfile(build_recipe("python", config.recipe))
        assert (REPO_ROOT / "hello_service" / "Dockerfile").read_text() == expected
