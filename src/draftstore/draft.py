"""Copy-on-write drafts over immutable snapshots.

begin(snapshot) opens a draft: a mutable handle whose writes land on lazily
made shallow copies, never on the snapshot itself. finish(draft) builds the
next snapshot, reusing every untouched container (structural sharing) and
returning the snapshot object itself when nothing changed. Finishing revokes
the whole draft tree: any later access through it, or through a child draft
read from it, raises RevokedDraftAccess.

Draftable values are dicts, lists and sets (subclasses such as defaultdict
or OrderedDict keep their type) and dataclass instances. Everything else is
stored by reference and must be treated as immutable. A draft of another,
still open tree is stored as its current content; one that was already
finalized is rejected with RevokedDraftAccess at the write.
"""

from __future__ import annotations

import copy
import dataclasses
from typing import Any, Callable, Iterator, TypeVar

from draftstore.errors import RevokedDraftAccess

T = TypeVar("T")

# Values of these types are compared by equality when written back, so
# assigning an equal string or number is not a change.
_SCALARS = (str, bytes, int, float, complex, bool, type(None))

_NODE_SLOTS = frozenset(("_scope", "_parent", "_base", "_copy", "_modified", "_fields"))


class _Scope:
    """Revocation flag shared by every node of one draft tree."""

    __slots__ = ("revoked",)

    def __init__(self) -> None:
        self.revoked = False


def is_draftable(value: object) -> bool:
    if isinstance(value, (dict, list, set)):
        return True
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def is_draft(value: object) -> bool:
    return isinstance(value, _DraftNode)


def _same(current: object, value: object) -> bool:
    """Would writing `value` over `current` leave the content unchanged?"""
    if current is value:
        return True
    if isinstance(current, _DraftNode):
        return current._base is value and not current._modified
    return type(current) is type(value) and isinstance(value, _SCALARS) and current == value


def _plain(value: object) -> object:
    return peek(value) if isinstance(value, _DraftNode) else value


class _DraftNode:
    """One draft node: the base container, its lazy copy, and a parent link."""

    __slots__ = ("_scope", "_parent", "_base", "_copy", "_modified")

    def __init__(self, base: Any, scope: _Scope, parent: _DraftNode | None = None) -> None:
        self._scope = scope
        self._parent = parent
        self._base = base
        self._copy = None
        self._modified = False

    def _check(self, operation: str = "read") -> None:
        if self._scope.revoked:
            raise RevokedDraftAccess(operation)

    def _accept(self, value):
        """Vet a value about to be stored in this draft."""
        if isinstance(value, _DraftNode) and value._scope is not self._scope:
            value._check("write")
            return _finalize(value, {})
        return value

    def _source(self):
        return self._copy if self._copy is not None else self._base

    def _prepare(self):
        if self._copy is None:
            self._copy = self._shallow_copy()
        return self._copy

    def _shallow_copy(self):
        raise NotImplementedError

    def _build(self, memo: dict[int, object]) -> object:
        raise NotImplementedError

    def _mark_modified(self) -> None:
        node = self
        while node is not None and not node._modified:
            node._modified = True
            node = node._parent

    def _child(self, key, value):
        """Wrap a draftable value read at `key` in a child draft, once."""
        if isinstance(value, _DraftNode) or not is_draftable(value):
            return value
        child = _new_draft(value, self._scope, self)
        self._prepare()[key] = child
        return child

    def __eq__(self, other: object) -> bool:
        self._check()
        return _finalize(self, {}) == _plain(other)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        if self._scope.revoked:
            return f"{type(self).__name__}(<revoked>)"
        return f"{type(self).__name__}({_finalize(self, {})!r})"


class DraftDict(_DraftNode):
    """Draft over a dict snapshot."""

    __slots__ = ()

    def _shallow_copy(self) -> dict:
        return copy.copy(self._base)

    def _build(self, memo):
        built = copy.copy(self._copy)
        for key, value in self._copy.items():
            built[key] = _resolve(value, memo)
        return built

    # --- Read operations ---

    def __getitem__(self, key):
        self._check()
        source = self._source()
        if key not in source and hasattr(type(source), "__missing__"):
            return self._missing(key)
        return self._child(key, source[key])

    def _missing(self, key):
        # defaultdict-style fallbacks run against the copy, never the snapshot.
        target = self._prepare()
        value = type(target).__missing__(target, key)
        if key not in target:
            return value
        self._mark_modified()
        return self._child(key, target[key])

    def get(self, key, default=None):
        self._check()
        source = self._source()
        if key not in source:
            return default
        return self._child(key, source[key])

    def __contains__(self, key) -> bool:
        self._check()
        return key in self._source()

    def __len__(self) -> int:
        self._check()
        return len(self._source())

    def __iter__(self) -> Iterator:
        self._check()
        return iter(list(self._source()))

    def keys(self):
        self._check()
        return self._source().keys()

    def values(self) -> list:
        return [self[key] for key in list(self.keys())]

    def items(self) -> list:
        return [(key, self[key]) for key in list(self.keys())]

    # --- Write operations ---

    def __setitem__(self, key, value) -> None:
        self._check("write")
        value = self._accept(value)
        source = self._source()
        if key in source and _same(source[key], value):
            return
        self._prepare()[key] = value
        self._mark_modified()

    def __delitem__(self, key) -> None:
        self._check("write")
        if key not in self._source():
            raise KeyError(key)
        del self._prepare()[key]
        self._mark_modified()

    def pop(self, key, *default):
        self._check("write")
        if key not in self._source():
            if default:
                return default[0]
            raise KeyError(key)
        value = self._prepare().pop(key)
        self._mark_modified()
        return _plain(value)

    def setdefault(self, key, default=None):
        self._check("write")
        if key not in self._source():
            self[key] = default
        return self[key]

    def update(self, other=(), **kwargs) -> None:
        for key, value in dict(other, **kwargs).items():
            self[key] = value

    def clear(self) -> None:
        self._check("write")
        if self._source():
            self._prepare().clear()
            self._mark_modified()


class DraftList(_DraftNode):
    """Draft over a list snapshot."""

    __slots__ = ()

    def _shallow_copy(self) -> list:
        return copy.copy(self._base)

    def _build(self, memo):
        built = copy.copy(self._copy)
        built[:] = [_resolve(value, memo) for value in self._copy]
        return built

    # --- Read operations ---

    def __getitem__(self, index):
        self._check()
        source = self._source()
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(len(source)))]
        value = source[index]
        if index < 0:
            index += len(source)
        return self._child(index, value)

    def __len__(self) -> int:
        self._check()
        return len(self._source())

    def __iter__(self) -> Iterator:
        for index in range(len(self)):
            yield self[index]

    def __contains__(self, item) -> bool:
        self._check()
        return item in self._source()

    def index(self, item) -> int:
        self._check()
        return self._source().index(item)

    def count(self, item) -> int:
        self._check()
        return self._source().count(item)

    # --- Write operations ---

    def __setitem__(self, index, value) -> None:
        self._check("write")
        if isinstance(index, slice):
            value = [self._accept(item) for item in value]
        else:
            value = self._accept(value)
            if _same(self._source()[index], value):
                return
        self._prepare()[index] = value
        self._mark_modified()

    def __delitem__(self, index) -> None:
        self._check("write")
        del self._prepare()[index]
        self._mark_modified()

    def __iadd__(self, items) -> DraftList:
        self.extend(items)
        return self

    def append(self, item) -> None:
        self._check("write")
        self._prepare().append(self._accept(item))
        self._mark_modified()

    def extend(self, items) -> None:
        self._check("write")
        items = [self._accept(item) for item in items]
        if items:
            self._prepare().extend(items)
            self._mark_modified()

    def insert(self, index: int, item) -> None:
        self._check("write")
        self._prepare().insert(index, self._accept(item))
        self._mark_modified()

    def pop(self, index: int = -1):
        self._check("write")
        value = self._prepare().pop(index)
        self._mark_modified()
        return _plain(value)

    def remove(self, item) -> None:
        del self[self.index(item)]

    def clear(self) -> None:
        self._check("write")
        if self._source():
            self._prepare().clear()
            self._mark_modified()

    def reverse(self) -> None:
        self._check("write")
        if len(self._source()) > 1:
            self._prepare().reverse()
            self._mark_modified()

    def sort(self, *, key: Callable | None = None, reverse: bool = False) -> None:
        self._check("write")
        keyfn = key or (lambda item: item)
        self._prepare().sort(key=lambda item: keyfn(_plain(item)), reverse=reverse)
        self._mark_modified()


class DraftObject(_DraftNode):
    """Draft over a dataclass instance. Fields are read and written as attributes.

    Attributes that are not dataclass fields (properties, methods) resolve
    against the base instance and so see the pre-draft values.
    """

    __slots__ = ("_fields",)

    def __init__(self, base: Any, scope: _Scope, parent: _DraftNode | None = None) -> None:
        super().__init__(base, scope, parent)
        self._fields = {f.name: f.init for f in dataclasses.fields(base)}
        self._copy = self._shallow_copy()

    def _shallow_copy(self) -> dict:
        return {name: getattr(self._base, name) for name in self._fields}

    def _build(self, memo):
        values = {name: _resolve(value, memo) for name, value in self._copy.items()}
        result = dataclasses.replace(
            self._base, **{name: v for name, v in values.items() if self._fields[name]}
        )
        for name, init in self._fields.items():
            if not init and values[name] is not getattr(result, name):
                object.__setattr__(result, name, values[name])
        return result

    def __getattr__(self, name: str):
        if name in _NODE_SLOTS:
            raise AttributeError(name)
        self._check()
        if name in self._copy:
            return self._child(name, self._copy[name])
        return getattr(self._base, name)

    def __setattr__(self, name: str, value) -> None:
        if name in _NODE_SLOTS:
            object.__setattr__(self, name, value)
            return
        self._check("write")
        if name not in self._copy:
            raise AttributeError(f"{type(self._base).__name__} has no field {name!r}")
        value = self._accept(value)
        if _same(self._copy[name], value):
            return
        self._copy[name] = value
        self._mark_modified()


class DraftSet(_DraftNode):
    """Draft over a set snapshot. Elements are hashable and never drafted."""

    __slots__ = ()

    def _shallow_copy(self) -> set:
        return copy.copy(self._base)

    def _build(self, memo):
        return copy.copy(self._copy)

    # --- Read operations ---

    def __contains__(self, item) -> bool:
        self._check()
        return item in self._source()

    def __len__(self) -> int:
        self._check()
        return len(self._source())

    def __iter__(self) -> Iterator:
        self._check()
        return iter(list(self._source()))

    # --- Write operations ---

    def add(self, item) -> None:
        self._check("write")
        if item not in self._source():
            self._prepare().add(item)
            self._mark_modified()

    def discard(self, item) -> None:
        self._check("write")
        if item in self._source():
            self._prepare().discard(item)
            self._mark_modified()

    def remove(self, item) -> None:
        self._check("write")
        if item not in self._source():
            raise KeyError(item)
        self.discard(item)

    def pop(self):
        self._check("write")
        if not self._source():
            raise KeyError("pop from an empty set")
        value = self._prepare().pop()
        self._mark_modified()
        return value

    def update(self, *others) -> None:
        for other in others:
            for item in other:
                self.add(item)

    def difference_update(self, *others) -> None:
        for other in others:
            for item in other:
                self.discard(item)

    def __ior__(self, other) -> DraftSet:
        self.update(other)
        return self

    def __isub__(self, other) -> DraftSet:
        self.difference_update(other)
        return self

    def clear(self) -> None:
        self._check("write")
        if self._source():
            self._prepare().clear()
            self._mark_modified()


def _new_draft(value, scope: _Scope, parent: _DraftNode | None) -> _DraftNode:
    if isinstance(value, dict):
        return DraftDict(value, scope, parent)
    if isinstance(value, list):
        return DraftList(value, scope, parent)
    if isinstance(value, set):
        return DraftSet(value, scope, parent)
    return DraftObject(value, scope, parent)


def _resolve(value, memo: dict[int, object]):
    if isinstance(value, _DraftNode):
        value._check()
        return _finalize(value, memo)
    return value


def _finalize(node: _DraftNode, memo: dict[int, object]) -> object:
    key = id(node)
    if key not in memo:
        memo[key] = node._build(memo) if node._modified else node._base
    return memo[key]


def _require_root(draft: object) -> _DraftNode:
    if not isinstance(draft, _DraftNode):
        raise TypeError(f"Expected a draft, got {type(draft).__name__}")
    if draft._parent is not None:
        raise ValueError("Expected a root draft returned by begin()")
    return draft


def begin(snapshot: T) -> T:
    """Open a draft over `snapshot`. The snapshot itself is never mutated."""
    if not is_draftable(snapshot):
        raise TypeError(
            f"Cannot draft {type(snapshot).__name__}; "
            "state must be a dict, a list, a set or a dataclass instance"
        )
    return _new_draft(snapshot, _Scope(), None)  # type: ignore[return-value]


def peek(draft: Any) -> Any:
    """Current content of a draft as a snapshot, without finalizing it."""
    if not isinstance(draft, _DraftNode):
        raise TypeError(f"Expected a draft, got {type(draft).__name__}")
    draft._check()
    return _finalize(draft, {})


def finish(draft: Any) -> Any:
    """Finalize a root draft into the next snapshot and revoke it."""
    node = _require_root(draft)
    node._check("finish")
    result = _finalize(node, {})
    node._scope.revoked = True
    return result


def revoke(draft: Any) -> None:
    """Revoke a root draft without building a snapshot."""
    _require_root(draft)._scope.revoked = True


def original(draft: Any) -> Any:
    """The snapshot a draft node was opened over."""
    if not isinstance(draft, _DraftNode):
        raise TypeError(f"Expected a draft, got {type(draft).__name__}")
    draft._check()
    return draft._base
