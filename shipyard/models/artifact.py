"""
Build Artifact Model
====================
A named, versioned container image produced from a Revision.

Fields:
    repository   - registry-qualified name the image is pushed under
    tags         - revision tag first, then the stable tag
    image_id     - content address reported by the engine (sha256:...)
    revision_sha - commit the image was built from
    recipe_mode  - "production" / "development" / "dockerfile"
    digest       - registry digest, set once Publish succeeds
"""
from typing import List, Optional
from pydantic import BaseModel


class BuildArtifact(BaseModel):
    repository: str
    tags: List[str]
    image_id: str = ""
    revision_sha: str = ""
    recipe_mode: str = "production"
    digest: Optional[str] = None

    @property
    def references(self) -> List[str]:
        return [f"{self.repository}:{tag}" for tag in self.tags]

    @property
    def primary_reference(self) -> str:
        return f"{self.repository}:{self.tags[0]}"
