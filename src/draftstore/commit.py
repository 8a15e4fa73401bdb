"""CommitManager owns the committed snapshot and the single live draft.

commit() finalizes the live draft. The finalize step always revokes it, so a
fresh draft is opened over the result every time. Observers are notified only
when the result is a new object, i.e. when content actually changed.
"""

from __future__ import annotations

import logging
from typing import Any

from draftstore import draft as drafts
from draftstore.config import is_strict
from draftstore.errors import Uninitialized
from draftstore.subscription import SubscriptionRegistry

logger = logging.getLogger("draftstore.commit")


def require_setup(ready: bool, operation: str) -> None:
    if not ready and is_strict():
        raise Uninitialized(operation)


class CommitManager:
    """Committed snapshot, live draft, and the commit step between them."""

    def __init__(self, registry: SubscriptionRegistry) -> None:
        self._registry = registry
        self._ready = False
        self._snapshot: Any = None
        self._draft: Any = None
        self._commits = 0

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def snapshot(self) -> Any:
        return self._snapshot

    @property
    def draft(self) -> Any:
        require_setup(self._ready, "reading the draft")
        return self._draft

    @property
    def commit_count(self) -> int:
        """Number of commits that changed the snapshot."""
        return self._commits

    def reset(self, snapshot: Any) -> bool:
        """Replace the committed snapshot outright. Returns whether it changed.

        The previous draft is revoked along with any writes pending on it.
        Observers are not notified here; the container decides when.
        """
        fresh = drafts.begin(snapshot)
        if self._draft is not None:
            drafts.revoke(self._draft)
        changed = not self._ready or snapshot is not self._snapshot
        self._snapshot = snapshot
        self._draft = fresh
        self._ready = True
        return changed

    def commit(self) -> bool:
        """Finalize the live draft and publish it if its content changed."""
        require_setup(self._ready, "commit")
        try:
            candidate = drafts.finish(self._draft)
        except Exception:
            # Never leave an unfinishable draft live; later commits start clean.
            drafts.revoke(self._draft)
            self._draft = drafts.begin(self._snapshot)
            logger.debug("commit: failed to finalize, draft discarded")
            raise
        self._draft = drafts.begin(candidate)
        if candidate is self._snapshot:
            logger.debug("commit: unchanged")
            return False
        self._snapshot = candidate
        self._commits += 1
        logger.debug("commit #%d: changed, notifying %d observers", self._commits, len(self._registry))
        self._registry.notify_all(candidate)
        return True

    def discard(self) -> None:
        """Drop uncommitted writes by reopening the draft over the snapshot."""
        require_setup(self._ready, "discard")
        drafts.revoke(self._draft)
        self._draft = drafts.begin(self._snapshot)
        logger.debug("draft discarded")
