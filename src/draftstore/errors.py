"""Error kinds raised by draftstore.

Precondition errors (Uninitialized) and draft misuse (RevokedDraftAccess)
always surface synchronously at the call site. Failures of pending
operations are not wrapped: the original exception is thrown back into the
staged updater at its suspension point.
"""

from __future__ import annotations


class DraftStoreError(Exception):
    """Base class for errors raised by draftstore itself."""


class Uninitialized(DraftStoreError, RuntimeError):
    """An operation other than setup() ran before the container was set up."""

    def __init__(self, operation: str = "this operation") -> None:
        super().__init__(f"Required to call `setup` before {operation}.")
        self.operation = operation


class RevokedDraftAccess(DraftStoreError):
    """A draft was used after it was finalized by a commit."""

    def __init__(self, operation: str = "access") -> None:
        super().__init__(
            f"Cannot {operation} a draft that has been finalized. "
            "Read the live draft from the update context after each commit."
        )
        self.operation = operation


class InvalidSuspensionValue(DraftStoreError, TypeError):
    """A staged updater yielded something that is not a pending operation."""

    def __init__(self, value: object) -> None:
        super().__init__(
            f"Staged updaters must yield awaitables, got {type(value).__name__}: {value!r}"
        )
        self.value = value
