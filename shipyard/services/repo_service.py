"""
Repo Service
============
Checkout stage: materialises the source tree of a Revision on the host.

Philosophy:
    - One fresh workspace per run: <WORKSPACE_ROOT>/<repo>-<sha>-<run_id>/
      Concurrent runs never share a checkout.
    - Detached HEAD at the exact commit; when the revision carries no sha,
      the head of its branch is checked out and the sha recorded.
    - No credentials: checkout only reads what the clone URL allows.
"""
import os
import shutil
import subprocess
import logging

from shipyard.core.config import WORKSPACE_ROOT
from shipyard.core.errors import CheckoutError
from shipyard.models.revision import Revision
from shipyard.utils.redaction import masker

logger = logging.getLogger(__name__)


def _git(args: list[str], cwd: str = None) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def workspace_path_for(revision: Revision, run_id: str, workspace_root: str = WORKSPACE_ROOT) -> str:
    """Absolute per-run checkout directory."""
    label = revision.short_sha or "head"
    return os.path.abspath(os.path.join(workspace_root, f"{revision.repo_name}-{label}-{run_id}"))


def checkout_revision(
    revision: Revision,
    run_id: str,
    workspace_root: str = WORKSPACE_ROOT,
) -> tuple[str, Revision]:
    """
    Clone the repository and check out the revision.

    Returns
    -------
    (str, Revision)
        Absolute workspace path and the revision pinned to the commit that
        was actually checked out.

    Raises
    ------
    CheckoutError
        Clone failed, the commit/branch does not exist, or git is missing.
    """
    os.makedirs(workspace_root, exist_ok=True)
    dest_path = workspace_path_for(revision, run_id, workspace_root)

    if os.path.exists(dest_path):
        raise CheckoutError(f"Workspace already exists: {dest_path}")

    target = revision.commit_sha or f"origin/{revision.branch}"
    logger.info("Cloning %s into %s (target %s)", revision.repo_url, dest_path, target)

    try:
        _git(["clone", "--quiet", revision.repo_url, dest_path])
        _git(["checkout", "--quiet", "--detach", target], cwd=dest_path)
        commit_sha = _git(["rev-parse", "HEAD"], cwd=dest_path)
    except subprocess.CalledProcessError as e:
        stderr = masker.mask(e.stderr or "")
        logger.error("Checkout failed: %s", stderr.strip())
        remove_workspace(dest_path)
        raise CheckoutError(f"git {e.cmd[1]} failed for {revision.repo_url} at {target}", stderr) from e
    except FileNotFoundError as e:
        raise CheckoutError("git executable not found") from e

    if revision.commit_sha and not commit_sha.startswith(revision.commit_sha):
        remove_workspace(dest_path)
        raise CheckoutError(f"Checked out {commit_sha} but {revision.commit_sha} was requested")

    logger.info("Checked out %s at %s", revision.repo_name, commit_sha[:12])
    return dest_path, revision.resolved(commit_sha)


def remove_workspace(path: str) -> bool:
    """
    Delete a per-run workspace (missing paths are ignored).

    Returns False, after logging the error, when the tree could not be
    removed, e.g. files left behind by a container running as another user.
    """
    if not path or not os.path.exists(path):
        return True
    logger.info("Removing workspace %s", path)
    try:
        shutil.rmtree(path)
    except OSError as e:
        logger.error("Could not remove workspace %s: %s", path, e)
        return False
    return True
