"""draftstore: a reactive state container with transactional, staged updates."""

from importlib.metadata import version as _version

__version__ = _version("draftstore")

from draftstore.config import set_strict, is_strict
from draftstore.errors import DraftStoreError, Uninitialized, RevokedDraftAccess, InvalidSuspensionValue
from draftstore.draft import begin, peek, finish, revoke, original, is_draft
from draftstore.subscription import Observer, SubscriptionRegistry, shallow_equal
from draftstore.commit import CommitManager
from draftstore.status import AsyncStatus, settle
from draftstore.sequencer import UpdateHandle, UpdateSequencer
from draftstore.container import State, UpdateContext, define
# textual NOT auto-imported, opt-in only

__all__ = [
    "define",
    "State",
    "UpdateContext",
    "UpdateHandle",
    "UpdateSequencer",
    "CommitManager",
    "Observer",
    "SubscriptionRegistry",
    "shallow_equal",
    "AsyncStatus",
    "settle",
    "begin",
    "peek",
    "finish",
    "revoke",
    "original",
    "is_draft",
    "set_strict",
    "is_strict",
    "DraftStoreError",
    "Uninitialized",
    "RevokedDraftAccess",
    "InvalidSuspensionValue",
]
