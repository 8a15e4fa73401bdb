"""UpdateSequencer: runs updaters and decides when to commit.

An updater is either flat (a plain function) or staged (a generator
function). A staged updater yields pending operations; every yield is a
suspension point:

    def load(ctx):
        ctx["status"] = "loading"
        ctx["items"] = yield fetch_items()   # commit, then await
        ctx["status"] = "done"               # final commit on return

Commits happen right before each await and once more when the generator
finishes, so progress made before a suspension point becomes visible while
the operation is pending. A failed operation is thrown back into the
generator at its yield. Cancelling the handle closes the generator and
commits whatever it wrote up to that point, even when the task is cancelled
before it ever resumed the updater.

One `active` flag per container serializes transactions. An update issued
while a transaction is active does not start a new one: it runs against the
same live draft immediately. A nested flat update never commits on its own;
its writes ride along with the next commit, whoever makes it. A nested staged
update commits at its own suspension points exactly like a top-level one.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from typing import Any, Callable, Generator

from draftstore.commit import CommitManager
from draftstore.errors import InvalidSuspensionValue
from draftstore.status import Settle

logger = logging.getLogger("draftstore.sequencer")

Updater = Callable[[Any], Any]


class UpdateHandle:
    """Awaitable result of update().

    Flat updates (and staged ones that finish without suspending) return an
    already-resolved handle. Otherwise the handle wraps the asyncio task
    driving the remaining steps. A handle can be yielded from an enclosing
    staged updater to wait for the nested transaction.
    """

    __slots__ = ("_task", "_result")

    def __init__(self, task: asyncio.Future | None = None, result: Any = None) -> None:
        self._task = task
        self._result = result

    def done(self) -> bool:
        return self._task is None or self._task.done()

    def result(self) -> Any:
        """Value returned by the updater. Raises if it failed or is still running."""
        if self._task is None:
            return self._result
        return self._task.result()

    def exception(self) -> BaseException | None:
        if self._task is None:
            return None
        return self._task.exception()

    def cancel(self) -> bool:
        """Cancel the remaining steps. False if there is nothing left to cancel."""
        return self._task is not None and self._task.cancel()

    def __await__(self):
        if self._task is not None:
            return (yield from self._task.__await__())
        return self._result

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"UpdateHandle({state})"


def _is_staged(result: object) -> bool:
    if inspect.iscoroutine(result):
        result.close()
        raise TypeError(
            "async def updaters are not supported; "
            "write a generator function that yields awaitables instead"
        )
    return inspect.isgenerator(result)


def _pending(sequence: Generator, yielded: object):
    """Validate a yielded value and return what to await for it."""
    if isinstance(yielded, Settle):
        return yielded.outcome()
    if inspect.isawaitable(yielded):
        return yielded
    sequence.close()
    raise InvalidSuspensionValue(yielded)


def _discard_pending(pending: object) -> None:
    # A coroutine that will never be awaited is closed to keep it quiet.
    if inspect.iscoroutine(pending):
        pending.close()


def _resume(sequence: Generator, value: Any = None, error: BaseException | None = None):
    """Advance one step. Returns (finished, yielded value or return value)."""
    try:
        if error is not None:
            yielded = sequence.throw(error)
        else:
            yielded = sequence.send(value)
    except StopIteration as stop:
        return True, stop.value
    return False, yielded


class UpdateSequencer:
    """Per-container transaction scheduler."""

    def __init__(self, commits: CommitManager) -> None:
        self._commits = commits
        self._transaction: object | None = None

    @property
    def active(self) -> bool:
        return self._transaction is not None

    def run(self, updater: Updater, context: Any) -> UpdateHandle:
        if self._transaction is not None:
            result = updater(context)
            if _is_staged(result):
                return self._drive(result, None)
            return UpdateHandle(result=result)

        token = self._transaction = object()
        try:
            result = updater(context)
            staged = _is_staged(result)
        except BaseException:
            self._release(token)
            self._commits.discard()
            raise
        if staged:
            return self._drive(result, token)
        self._release(token)
        self._commits.commit()
        return UpdateHandle(result=result)

    def _release(self, token: object | None) -> None:
        # Nested drives carry no token and never end the enclosing transaction.
        if token is not None and self._transaction is token:
            self._transaction = None

    def _abort(self, token: object | None) -> None:
        """End a transaction that failed mid-step, dropping that step's writes."""
        if token is not None and self._transaction is token:
            self._release(token)
            self._commits.discard()

    def _abandoned(self, sequence: Generator, pending: Any, token: object | None, task: asyncio.Task) -> None:
        # A task cancelled before its first step never runs _continue's cleanup.
        if not task.cancelled() or inspect.getgeneratorstate(sequence) != inspect.GEN_SUSPENDED:
            return
        logger.debug("staged update cancelled before resuming")
        _discard_pending(pending)
        sequence.close()
        owned = token is not None and self._transaction is token
        self._release(token)
        if owned:
            self._commits.commit()

    def _drive(self, sequence: Generator, token: object | None) -> UpdateHandle:
        """Run the first step now; hand later steps to an asyncio task."""
        try:
            finished, yielded = _resume(sequence)
        except BaseException:
            self._release(token)
            self._commits.commit()
            raise
        if finished:
            self._release(token)
            self._commits.commit()
            return UpdateHandle(result=yielded)

        try:
            pending = _pending(sequence, yielded)
        except InvalidSuspensionValue:
            self._abort(token)
            raise
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _discard_pending(pending)
            sequence.close()
            self._release(token)
            self._commits.commit()
            raise
        logger.debug("staged update suspended at step 1")
        try:
            self._commits.commit()
        except BaseException:
            _discard_pending(pending)
            sequence.close()
            self._release(token)
            raise
        task = loop.create_task(self._continue(sequence, pending, token))
        task.add_done_callback(functools.partial(self._abandoned, sequence, pending, token))
        return UpdateHandle(task)

    async def _continue(self, sequence: Generator, pending: Any, token: object | None) -> Any:
        step = 1
        try:
            while True:
                value: Any = None
                error: BaseException | None = None
                try:
                    value = await pending
                except asyncio.CancelledError:
                    sequence.close()
                    self._release(token)
                    self._commits.commit()
                    raise
                except Exception as exc:
                    logger.debug("pending operation at step %d failed: %r", step, exc)
                    error = exc

                try:
                    finished, yielded = _resume(sequence, value, error)
                except Exception:
                    self._release(token)
                    self._commits.commit()
                    raise
                if finished:
                    self._release(token)
                    self._commits.commit()
                    return yielded

                try:
                    pending = _pending(sequence, yielded)
                except InvalidSuspensionValue:
                    self._abort(token)
                    raise
                step += 1
                logger.debug("staged update suspended at step %d", step)
                self._commits.commit()
        finally:
            self._release(token)
