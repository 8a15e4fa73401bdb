"""State containers: the public face of draftstore.

    counter = define()
    counter.setup({"count": 0})

    def increment(ctx):
        ctx["count"] += 1

    counter.update(increment)
    counter.get(lambda s: s["count"])  # 1

Observers read through a selection and hear about commits that change it:

    with counter.use(lambda s: s["count"], effect=print) as observer:
        counter.update(increment)  # prints 2
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Any, Callable, Generic, Iterator, Sequence, TypeVar

from draftstore import draft as drafts
from draftstore.commit import CommitManager, require_setup
from draftstore.sequencer import UpdateHandle, UpdateSequencer, Updater
from draftstore.subscription import Observer, Selection, SubscriptionRegistry, identity

logger = logging.getLogger("draftstore.container")

S = TypeVar("S")


class UpdateContext:
    """Handed to every updater. Always points at the container's live draft.

    Item access is forwarded to the live draft, so `ctx["n"] += 1` works across
    suspension points. A draft taken from `ctx.draft` (or any child draft read
    from it) is only valid until the next commit.
    """

    __slots__ = ("_state",)

    def __init__(self, state: State) -> None:
        self._state = state

    @property
    def draft(self) -> Any:
        return self._state._commits.draft

    def __getitem__(self, key):
        return self.draft[key]

    def __setitem__(self, key, value) -> None:
        self.draft[key] = value

    def __delitem__(self, key) -> None:
        del self.draft[key]

    def __contains__(self, key) -> bool:
        return key in self.draft

    def current(self) -> Any:
        """Uncommitted content of the live draft, as a snapshot."""
        return drafts.peek(self.draft)

    def get(self, selection: Selection | None = None) -> Any:
        """Read the last committed snapshot."""
        return self._state.get(selection)

    def update(self, updater: Updater) -> UpdateHandle:
        """Issue a nested update on the same container."""
        return self._state.update(updater)


class State(Generic[S]):
    """A reactive value container for one state shape."""

    def __init__(self) -> None:
        self._registry = SubscriptionRegistry()
        self._commits = CommitManager(self._registry)
        self._sequencer = UpdateSequencer(self._commits)
        self._context = UpdateContext(self)

    @property
    def ready(self) -> bool:
        return self._commits.ready

    @property
    def active(self) -> bool:
        """Is a transaction currently running?"""
        return self._sequencer.active

    def _snapshot(self) -> S:
        return self._commits.snapshot

    def setup(self, snapshot: S) -> None:
        """Set (or replace) the state.

        Existing observers are notified like after a commit, unless the very
        same snapshot object is passed again. When an event loop is running
        the broadcast waits for the next tick, so observers that call setup()
        while initializing are not re-entered.
        """
        replacing = self._commits.ready
        changed = self._commits.reset(snapshot)
        if not changed:
            logger.debug("setup: same snapshot, nothing to broadcast")
            return
        if replacing:
            logger.debug("setup: state replaced")
        if not len(self._registry):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._broadcast()
            return
        loop.call_soon(self._broadcast)

    def _broadcast(self) -> None:
        self._registry.notify_all(self._commits.snapshot)

    def update(self, updater: Updater) -> UpdateHandle:
        """Run `updater(ctx)` as a transaction (or inside the active one).

        A plain function is a flat update and commits once. A generator
        function is a staged update: each value it yields must be awaitable
        and marks a commit-then-await suspension point.
        """
        require_setup(self.ready, "update")
        return self._sequencer.run(updater, self._context)

    def get(self, selection: Callable[[S], Any] | None = None) -> Any:
        """Select from the committed state without observing it."""
        require_setup(self.ready, "get")
        return (selection or identity)(self._commits.snapshot)

    def attach(self, observer: Observer) -> Observer:
        require_setup(self.ready, "attach")
        return self._registry.register(observer, self._snapshot)

    def detach(self, observer: Observer) -> None:
        self._registry.unregister(observer)

    def observe(
        self,
        selection: Callable[[S], Any] | None = None,
        effect: Callable[[Any], None] | None = None,
        deps: Sequence[Any] = (),
    ) -> Observer:
        """Register an observer. Call .dispose() on it to stop observing."""
        return self.attach(Observer(selection, effect, deps))

    @contextmanager
    def use(
        self,
        selection: Callable[[S], Any] | None = None,
        deps: Sequence[Any] = (),
        effect: Callable[[Any], None] | None = None,
    ) -> Iterator[Observer]:
        """Observe for the duration of a with-block."""
        observer = self.observe(selection, effect, deps)
        try:
            yield observer
        finally:
            observer.dispose()

    def __repr__(self) -> str:
        if not self.ready:
            return "State(<not set up>)"
        return f"State({self._commits.snapshot!r}, observers={len(self._registry)})"


def define() -> State[Any]:
    """Create a fresh, unconfigured state container.

    Usage:
        todos: State[dict] = define()
        todos.setup({"items": [], "filter": "all"})
    """
    return State()
