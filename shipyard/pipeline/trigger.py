"""
Trigger
=======
Decides whether a push event activates the pipeline, and verifies the
webhook signature GitHub attaches to it.

Activation rule: the push must update (not delete) the configured target
branch. Anything else is silently ignored, zero stages run.
"""
import hmac
import hashlib
import logging
from typing import Optional

from shipyard.core.config import TARGET_BRANCH
from shipyard.core.constants import BRANCH_REF_PREFIX, ZERO_SHA
from shipyard.models.push_event import PushEvent

logger = logging.getLogger(__name__)


def activation_reason(event: PushEvent, target_branch: str = TARGET_BRANCH) -> Optional[str]:
    """
    Return why the event does NOT activate the pipeline, or None if it does.
    """
    if event.ref != f"{BRANCH_REF_PREFIX}{target_branch}":
        return f"push to {event.ref} is not the target branch {target_branch}"
    if event.deleted or not event.after or event.after == ZERO_SHA:
        return f"push deleted {event.ref}"
    return None


def should_activate(event: PushEvent, target_branch: str = TARGET_BRANCH) -> bool:
    reason = activation_reason(event, target_branch)
    if reason:
        logger.info("Pipeline not activated: %s", reason)
        return False
    logger.info("Pipeline activated by push to %s at %s", event.ref, event.after[:12])
    return True


def verify_signature(body: bytes, signature_header: Optional[str], secret: str) -> bool:
    """Check a ``sha256=<hex>`` X-Hub-Signature-256 header against the body."""
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header[len("sha256="):])
