"""Async status values for staged updaters.

Yielding settle(op) instead of op resumes the updater with an AsyncStatus
rather than a bare result or a raised exception, so the state can record
loading/success/failure directly:

    def load_user(ctx):
        ctx["user"] = AsyncStatus.LOADING
        ctx["user"] = yield settle(fetch_user())
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, ClassVar, Generic, Literal, TypeVar

R = TypeVar("R")

Phase = Literal["default", "loading", "success", "failure"]


@dataclass(frozen=True)
class AsyncStatus(Generic[R]):
    """Outcome of a pending operation, storable in state."""

    state: Phase = "default"
    response: R | None = None
    error: BaseException | None = None

    DEFAULT: ClassVar[AsyncStatus]
    LOADING: ClassVar[AsyncStatus]

    @classmethod
    def success(cls, response: R) -> AsyncStatus[R]:
        return cls("success", response=response)

    @classmethod
    def failure(cls, error: BaseException) -> AsyncStatus[Any]:
        return cls("failure", error=error)

    @property
    def is_loading(self) -> bool:
        return self.state == "loading"

    @property
    def is_success(self) -> bool:
        return self.state == "success"

    @property
    def is_failure(self) -> bool:
        return self.state == "failure"


AsyncStatus.DEFAULT = AsyncStatus("default")
AsyncStatus.LOADING = AsyncStatus("loading")


class Settle(Generic[R]):
    """Marker yielded by a staged updater: resume with an AsyncStatus."""

    __slots__ = ("awaitable",)

    def __init__(self, awaitable: Awaitable[R]) -> None:
        self.awaitable = awaitable

    async def outcome(self) -> AsyncStatus[R]:
        try:
            response = await self.awaitable
        except Exception as exc:
            return AsyncStatus.failure(exc)
        return AsyncStatus.success(response)

    def __repr__(self) -> str:
        return f"Settle({self.awaitable!r})"


def settle(awaitable: Awaitable[R]) -> Settle[R]:
    """Wrap a pending operation so its outcome arrives as an AsyncStatus."""
    return Settle(awaitable)
