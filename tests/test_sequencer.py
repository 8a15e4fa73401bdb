"""Tests for staged updates, nesting and the commit schedule."""

import asyncio
import logging

import pytest

from draftstore import InvalidSuspensionValue, RevokedDraftAccess, define


async def resolve(value):
    await asyncio.sleep(0)
    return value


async def reject(exc):
    await asyncio.sleep(0)
    raise exc


def _observed(state, selection):
    """Observe `selection`; the returned log starts with the initial value."""
    log = []
    observer = state.observe(selection, log.append)
    log.insert(0, observer.value)
    return log


def _commit_attempts(caplog):
    return [
        r for r in caplog.records
        if r.name == "draftstore.commit" and r.getMessage().startswith("commit")
    ]


class TestStaged:
    @pytest.mark.asyncio
    async def test_results_written_at_each_step(self):
        s = define()
        s.setup({"x": None})
        log = _observed(s, lambda st: st["x"])

        def load(ctx):
            ctx["x"] = yield resolve(10)
            ctx["x"] = yield resolve(20)

        handle = s.update(load)
        assert not handle.done()
        assert s.active
        await handle
        assert log == [None, 10, 20]
        assert not s.active

    @pytest.mark.asyncio
    async def test_commit_before_each_suspension_and_at_end(self, caplog):
        s = define()
        s.setup({"x": None})

        def load(ctx):
            ctx["x"] = yield resolve(10)
            ctx["x"] = yield resolve(20)

        with caplog.at_level(logging.DEBUG, logger="draftstore.commit"):
            await s.update(load)
        # Two suspension points: one commit before each, one at the end.
        attempts = _commit_attempts(caplog)
        assert len(attempts) == 3
        assert attempts[0].getMessage() == "commit: unchanged"

    @pytest.mark.asyncio
    async def test_progress_visible_while_pending(self):
        s = define()
        s.setup({"status": "idle"})
        gate = asyncio.Event()

        def load(ctx):
            ctx["status"] = "loading"
            yield gate.wait()
            ctx["status"] = "done"

        handle = s.update(load)
        assert s.get(lambda st: st["status"]) == "loading"
        gate.set()
        await handle
        assert s.get(lambda st: st["status"]) == "done"

    @pytest.mark.asyncio
    async def test_caught_failure_resolves(self):
        s = define()
        s.setup({"status": "idle", "data": None})
        log = _observed(s, lambda st: st["status"])

        def load(ctx):
            ctx["status"] = "loading"
            ctx["data"] = yield resolve(1)
            try:
                yield reject(RuntimeError("err"))
            except RuntimeError:
                ctx["status"] = "failed"
                return
            ctx["status"] = "done"

        await s.update(load)
        assert s.get() == {"status": "failed", "data": 1}
        assert log == ["idle", "loading", "failed"]

    @pytest.mark.asyncio
    async def test_unhandled_failure_commits_then_propagates(self):
        s = define()
        s.setup({"n": 0})

        def load(ctx):
            ctx["n"] = 1
            yield resolve(None)
            ctx["n"] = 2
            yield reject(ValueError("nope"))
            ctx["n"] = 3

        with pytest.raises(ValueError, match="nope"):
            await s.update(load)
        assert s.get() == {"n": 2}
        assert not s.active

    @pytest.mark.asyncio
    async def test_return_value(self):
        s = define()
        s.setup({"n": 0})

        def compute(ctx):
            ctx["n"] = yield resolve(5)
            return ctx["n"] * 2

        handle = s.update(compute)
        assert await handle == 10
        assert handle.done()
        assert handle.result() == 10

    @pytest.mark.asyncio
    async def test_logs_suspensions(self, caplog):
        s = define()
        s.setup({"n": 0})

        def load(ctx):
            yield resolve(None)
            yield resolve(None)

        with caplog.at_level(logging.DEBUG, logger="draftstore.sequencer"):
            await s.update(load)
        assert "suspended at step 1" in caplog.text
        assert "suspended at step 2" in caplog.text

    def test_finishes_without_suspending(self):
        s = define()
        s.setup({"skip": True, "n": 0})

        def maybe(ctx):
            ctx["n"] = 1
            if ctx["skip"]:
                return "skipped"
            yield resolve(None)

        handle = s.update(maybe)
        assert handle.done()
        assert handle.result() == "skipped"
        assert s.get()["n"] == 1
        assert not s.active

    def test_suspending_without_event_loop(self):
        s = define()
        s.setup({"a": 0})

        def staged(ctx):
            ctx["a"] = 1
            yield resolve(None)

        with pytest.raises(RuntimeError):
            s.update(staged)
        assert s.get() == {"a": 1}
        assert not s.active

    def test_error_before_first_suspension_raises_synchronously(self):
        s = define()
        s.setup({"a": 0})

        def bad(ctx):
            ctx["a"] = 1
            raise KeyError("early")
            yield  # pragma: no cover

        with pytest.raises(KeyError):
            s.update(bad)
        assert s.get() == {"a": 1}  # final commit still ran
        assert not s.active


class TestInvalidSuspension:
    def test_first_step(self):
        s = define()
        s.setup({"a": 0, "b": 0})

        def bad(ctx):
            ctx["a"] = 1
            yield 42

        with pytest.raises(InvalidSuspensionValue):
            s.update(bad)
        assert s.get() == {"a": 0, "b": 0}  # no commit for that step
        assert not s.active

        # The failed step's write does not ride along with the next update.
        s.update(lambda ctx: ctx.draft.update(b=1))
        assert s.get() == {"a": 0, "b": 1}

    @pytest.mark.asyncio
    async def test_later_step(self):
        s = define()
        s.setup({"a": 0})

        def bad(ctx):
            ctx["a"] = 1
            yield resolve(None)
            ctx["a"] = 2
            yield "not awaitable"

        with pytest.raises(InvalidSuspensionValue):
            await s.update(bad)
        assert s.get() == {"a": 1}
        assert not s.active

        s.update(lambda ctx: ctx.draft.update(b=1))
        assert s.get() == {"a": 1, "b": 1}


class TestCancellation:
    def _loader(self, gate):
        def load(ctx):
            ctx["status"] = "loading"
            try:
                yield gate.wait()
                ctx["status"] = "done"
            finally:
                ctx["closed"] = True

        return load

    @pytest.mark.asyncio
    async def test_cancel_before_first_resume(self):
        s = define()
        s.setup({"status": "idle", "closed": False})
        gate = asyncio.Event()

        async def caller():
            await s.update(self._loader(gate))

        task = asyncio.ensure_future(caller())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)

        assert s.get() == {"status": "loading", "closed": True}
        assert not s.active
        s.update(lambda ctx: ctx.draft.update(status="idle"))
        assert s.get()["status"] == "idle"

    @pytest.mark.asyncio
    async def test_cancel_handle_right_away(self):
        s = define()
        s.setup({"status": "idle", "closed": False})
        handle = s.update(self._loader(asyncio.Event()))
        assert handle.cancel()
        with pytest.raises(asyncio.CancelledError):
            await handle
        await asyncio.sleep(0)

        assert s.get() == {"status": "loading", "closed": True}
        assert not s.active

    @pytest.mark.asyncio
    async def test_cancel_while_awaiting(self):
        s = define()
        s.setup({"status": "idle", "closed": False})
        log = _observed(s, lambda st: st["status"])
        handle = s.update(self._loader(asyncio.Event()))
        for _ in range(3):
            await asyncio.sleep(0)

        handle.cancel()
        with pytest.raises(asyncio.CancelledError):
            await handle

        assert s.get() == {"status": "loading", "closed": True}
        assert log == ["idle", "loading"]
        assert not s.active
        s.update(lambda ctx: ctx.draft.update(status="idle"))
        assert log == ["idle", "loading", "idle"]

    def test_cancel_resolved_handle(self):
        s = define()
        s.setup({"n": 0})
        handle = s.update(lambda ctx: ctx.draft.update(n=1))
        assert handle.cancel() is False


class TestNesting:
    @pytest.mark.asyncio
    async def test_nested_flat_waits_for_enclosing_commit(self):
        s = define()
        s.setup({"a": 0, "b": 0})
        log = []
        s.observe(effect=lambda st: log.append(dict(st)))
        gate = asyncio.Event()

        def outer(ctx):
            ctx["a"] = 1
            yield gate.wait()
            ctx["a"] = 2

        def flat(ctx):
            ctx["b"] = 1

        handle = s.update(outer)
        assert log == [{"a": 1, "b": 0}]

        s.update(flat)  # outer is active: runs nested, no commit of its own
        assert log == [{"a": 1, "b": 0}]
        assert s.get()["b"] == 0

        gate.set()
        await handle
        assert log == [{"a": 1, "b": 0}, {"a": 2, "b": 1}]

    @pytest.mark.asyncio
    async def test_second_call_while_active_is_not_queued(self):
        s = define()
        s.setup({"log": []})
        gate = asyncio.Event()

        def first(ctx):
            ctx["log"].append("first")
            yield gate.wait()
            ctx["log"].append("first done")

        def second(ctx):
            ctx["log"].append("second")

        handle = s.update(first)
        s.update(second)
        assert s.get()["log"] == ["first"]
        gate.set()
        await handle
        assert s.get()["log"] == ["first", "second", "first done"]

        s.update(second)  # no transaction active: commits on its own
        assert s.get()["log"][-1] == "second"

    @pytest.mark.asyncio
    async def test_nested_staged_interleaving(self):
        s = define()
        s.setup({"count": 0})
        log = _observed(s, lambda st: st["count"])
        events = []

        def inner(ctx):
            ctx["count"] += 1
            yield resolve(None)
            ctx["count"] += 1
            events.append("inner done")

        def outer(ctx):
            ctx["count"] += 1
            yield resolve(None)
            nested = ctx.update(inner)
            yield nested
            events.append("outer resumed")
            ctx["count"] += 1

        await s.update(outer)
        # outer checkpoint, nested checkpoint, nested completion, outer completion
        assert log == [0, 1, 2, 3, 4]
        assert events == ["inner done", "outer resumed"]
        assert not s.active

    @pytest.mark.asyncio
    async def test_nested_staged_failure_reaches_enclosing_updater(self):
        s = define()
        s.setup({"status": None})

        def inner(ctx):
            yield reject(LookupError("missing"))

        def outer(ctx):
            try:
                yield ctx.update(inner)
            except LookupError:
                ctx["status"] = "recovered"

        await s.update(outer)
        assert s.get() == {"status": "recovered"}


class TestRevocation:
    def test_draft_retained_after_flat_update(self):
        s = define()
        s.setup({"a": 0})
        saved = []
        s.update(lambda ctx: saved.append(ctx.draft))
        with pytest.raises(RevokedDraftAccess):
            saved[0]["a"] = 1

    @pytest.mark.asyncio
    async def test_draft_retained_across_suspension(self):
        s = define()
        s.setup({"user": {"name": ""}})

        def keep(ctx):
            user = ctx["user"]
            user["name"] = "a"
            yield resolve(None)
            user["name"] = "b"

        with pytest.raises(RevokedDraftAccess):
            await s.update(keep)
        assert s.get() == {"user": {"name": "a"}}

    @pytest.mark.asyncio
    async def test_stale_draft_stored_into_live_draft(self):
        s = define()
        s.setup({"user": {"name": "a"}, "n": 0})

        def keep(ctx):
            user = ctx["user"]
            yield resolve(None)
            ctx["copy"] = user

        with pytest.raises(RevokedDraftAccess):
            await s.update(keep)
        assert not s.active

        s.update(lambda ctx: ctx.draft.update(n=1))
        s.update(lambda ctx: ctx.draft.update(n=2))
        assert s.get() == {"user": {"name": "a"}, "n": 2}

    @pytest.mark.asyncio
    async def test_context_survives_suspension(self):
        s = define()
        s.setup({"user": {"name": ""}})

        def rename(ctx):
            ctx["user"]["name"] = "a"
            yield resolve(None)
            ctx["user"]["name"] = "b"

        await s.update(rename)
        assert s.get() == {"user": {"name": "b"}}
