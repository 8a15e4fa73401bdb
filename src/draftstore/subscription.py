"""Observers and the registry that notifies them after each commit.

An Observer holds a selection function and the value it last selected.
notify_all() re-runs every selection against the committed snapshot and
fires an observer's effect only when the fresh value is not shallow-equal
to the stored one.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Callable, Generic, Sequence, TypeVar

S = TypeVar("S")
A = TypeVar("A")

Selection = Callable[[Any], Any]

_SCALARS = (str, bytes, int, float, complex, bool, type(None))


def identity(value: S) -> S:
    return value


def _same_value(a: object, b: object) -> bool:
    if a is b:
        return True
    return type(a) is type(b) and isinstance(a, _SCALARS) and a == b


def shallow_equal(a: object, b: object) -> bool:
    """One-level equality: same keys (or positions, or fields), identical values.

    Mappings compare key sets and per-key values, lists and tuples of the same
    type compare element-wise, dataclass instances of the same type compare
    field-wise. Nested containers are compared by identity, scalars by value.
    """
    if a is b:
        return True
    if isinstance(a, dict) and isinstance(b, dict):
        if len(a) != len(b):
            return False
        for key, value in a.items():
            if key not in b or not _same_value(value, b[key]):
                return False
        return True
    if type(a) is type(b) and isinstance(a, (list, tuple)):
        return len(a) == len(b) and all(_same_value(x, y) for x, y in zip(a, b))
    if (
        type(a) is type(b)
        and dataclasses.is_dataclass(a)
        and not isinstance(a, type)
    ):
        return all(
            _same_value(getattr(a, f.name), getattr(b, f.name))
            for f in dataclasses.fields(a)
        )
    if isinstance(a, (dict, list, tuple)) or isinstance(b, (dict, list, tuple)):
        return False
    try:
        return bool(a == b)
    except (TypeError, ValueError):
        # Array-likes refuse to collapse elementwise == into one bool.
        return False


class Observer(Generic[A]):
    """A registered (selection, last value, effect) triple.

    `value` is the most recently selected value. `effect(value)` runs after a
    commit changed the selection. Use `refresh(deps)` when the inputs the
    selection closes over change outside of a commit.
    """

    __slots__ = ("_selection", "_effect", "_deps", "_value", "_registry", "_source", "_disposed")

    def __init__(
        self,
        selection: Selection | None = None,
        effect: Callable[[A], None] | None = None,
        deps: Sequence[Any] = (),
    ) -> None:
        self._selection = selection or identity
        self._effect = effect
        self._deps = tuple(deps)
        self._value: A | None = None
        self._registry: SubscriptionRegistry | None = None
        self._source: Callable[[], Any] | None = None
        self._disposed = False

    @property
    def value(self) -> A | None:
        return self._value

    @property
    def deps(self) -> tuple:
        return self._deps

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _bind(self, registry: SubscriptionRegistry, source: Callable[[], Any]) -> None:
        self._registry = registry
        self._source = source
        self._disposed = False
        self._value = self._selection(source())

    def _update(self, snapshot: Any) -> bool:
        """Re-select against `snapshot`; store and report a shallow change."""
        selected = self._selection(snapshot)
        if shallow_equal(selected, self._value):
            return False
        self._value = selected
        return True

    def refresh(self, deps: Sequence[Any], selection: Selection | None = None) -> A | None:
        """Recompute the selection when its dependency list changed.

        Runs against the current snapshot, updates the stored value on a
        shallow change and returns it. The effect does not fire.
        """
        deps = tuple(deps)
        changed = deps != self._deps
        if selection is not None and selection is not self._selection:
            self._selection = selection
            changed = True
        self._deps = deps
        if changed and self._source is not None and not self._disposed:
            self._update(self._source())
        return self._value

    def dispose(self) -> None:
        """Stop receiving notifications. Safe to call more than once."""
        self._disposed = True
        if self._registry is not None:
            self._registry.unregister(self)

    def __repr__(self) -> str:
        state = "disposed" if self._disposed else "active"
        name = getattr(self._selection, "__name__", "selection")
        return f"Observer({name}, {state}, value={self._value!r})"


class SubscriptionRegistry:
    """Ordered set of observers for one container."""

    def __init__(self) -> None:
        self._observers: list[Observer] = []
        self._generation = 0

    def __len__(self) -> int:
        return len(self._observers)

    def __contains__(self, observer: Observer) -> bool:
        return observer in self._observers

    def register(self, observer: Observer, source: Callable[[], Any]) -> Observer:
        """Add an observer; its value is selected from `source()` right away."""
        if observer not in self._observers:
            observer._bind(self, source)
            self._observers.append(observer)
        return observer

    def unregister(self, observer: Observer) -> None:
        try:
            self._observers.remove(observer)
        except ValueError:
            pass  # already removed
        observer._disposed = True

    def notify_all(self, snapshot: Any) -> int:
        """Broadcast a committed snapshot. Returns how many effects fired.

        Observers are visited in registration order. If an effect commits a
        newer snapshot, that broadcast reaches every observer, so this pass
        stops instead of delivering the older snapshot to the rest.
        """
        self._generation += 1
        generation = self._generation
        fired = 0
        for observer in list(self._observers):
            if generation != self._generation:
                break
            if observer._disposed:
                continue
            if observer._update(snapshot):
                fired += 1
                if observer._effect is not None:
                    observer._effect(observer._value)
        return fired
