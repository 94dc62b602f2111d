"""
Revision Model
==============
An immutable snapshot of source code identified by a commit reference.

Fields:
    repo_url    - clone URL of the repository
    ref         - full ref that was pushed (e.g. "refs/heads/main") or a bare branch
    commit_sha  - commit to materialise; empty means "head of ref", resolved by Checkout
"""
from pydantic import BaseModel, ConfigDict

from shipyard.core.constants import BRANCH_REF_PREFIX, SHORT_SHA_LENGTH


class Revision(BaseModel):
    model_config = ConfigDict(frozen=True)

    repo_url: str
    ref: str = "refs/heads/main"
    commit_sha: str = ""

    @property
    def branch(self) -> str:
        if self.ref.startswith(BRANCH_REF_PREFIX):
            return self.ref[len(BRANCH_REF_PREFIX):]
        return self.ref

    @property
    def short_sha(self) -> str:
        return self.commit_sha[:SHORT_SHA_LENGTH]

    @property
    def repo_name(self) -> str:
        name = self.repo_url.rstrip("/").split("/")[-1]
        if name.endswith(".git"):
            name = name[:-4]
        return name or "repo"

    def resolved(self, commit_sha: str) -> "Revision":
        """Return a copy pinned to ``commit_sha`` (revisions are never mutated)."""
        return self.model_copy(update={"commit_sha": commit_sha})
