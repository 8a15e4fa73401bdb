"""Runtime configuration.

Strict mode enables the `Uninitialized` precondition checks. It defaults
from the DRAFTSTORE_STRICT environment variable and can be flipped with
set_strict() (e.g. from a test fixture or an app's startup code).
"""

from __future__ import annotations

import os

_FALSY = ("0", "false", "no", "off")

_strict: bool = os.environ.get("DRAFTSTORE_STRICT", "1").strip().lower() not in _FALSY


def set_strict(enabled: bool) -> None:
    """Enable or disable setup precondition checks."""
    global _strict
    _strict = bool(enabled)


def is_strict() -> bool:
    return _strict
