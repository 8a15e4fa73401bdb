"""Textual integration for draftstore. Opt-in, requires textual.

Observers created here drive widgets safely: effects are skipped while the
app is not running or is paused for widget replacement, NoMatches from
widget queries is ignored, and effects fired off the app's thread are
marshaled through app.call_from_thread.
"""

import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

# Keyed by id(app) so multiple apps work in tests. An id is present only
# while inside its pause() block.
_paused_apps: set[int] = set()


@contextmanager
def pause(app):
    """Suspend guarded observers during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def _guard(app, effect_fn):
    _main = threading.get_ident()

    def _safe(value):
        try:
            effect_fn(value)
        except NoMatches:
            pass

    def _guarded(value):
        if not is_safe(app):
            return
        if threading.get_ident() != _main:
            app.call_from_thread(_safe, value)
        else:
            _safe(value)

    return _guarded


def observe(app, state, selection, effect_fn, deps=(), *, fire_immediately=False):
    """state.observe() whose effect safely bridges to Textual widgets.

    With fire_immediately the effect also runs once (guarded) with the
    initial selection, e.g. to populate a widget on mount.
    """
    guarded = _guard(app, effect_fn)
    observer = state.observe(selection, guarded, deps)
    if fire_immediately:
        guarded(observer.value)
    return observer


@contextmanager
def use(app, state, selection, effect_fn, deps=()):
    """observe() for the duration of a with-block (e.g. a screen's lifetime)."""
    observer = observe(app, state, selection, effect_fn, deps)
    try:
        yield observer
    finally:
        observer.dispose()
