"""
Push Event Model
================
The slice of a GitHub-style push webhook payload the trigger needs.

    {"ref": "refs/heads/main", "after": "<sha>", "deleted": false,
     "repository": {"clone_url": "https://github.com/o/r.git", "full_name": "o/r"}}
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict

from shipyard.core.constants import BRANCH_REF_PREFIX
from .revision import Revision


class PushRepository(BaseModel):
    model_config = ConfigDict(extra="ignore")

    clone_url: str
    full_name: Optional[str] = None


class PushEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ref: str
    after: str = ""
    deleted: bool = False
    repository: PushRepository

    @property
    def branch(self) -> Optional[str]:
        """Branch name, or None when the ref is not a branch (e.g. a tag)."""
        if self.ref.startswith(BRANCH_REF_PREFIX):
            return self.ref[len(BRANCH_REF_PREFIX):]
        return None

    def to_revision(self) -> Revision:
        return Revision(
            repo_url=self.repository.clone_url,
            ref=self.ref,
            commit_sha=self.after,
        )
