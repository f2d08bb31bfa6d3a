"""
context.py

Read-only Parse Context
-----------------------

Dynamic values and phrase generators see the outside world (clipboard text,
the current time, results of earlier async lookups) only through a
ParseContext: an immutable snapshot with a content hash.

    provider = ContextProvider({"clipboard": "hello"})
    ctx = provider.snapshot()
    ctx.get("clipboard")          # "hello"
    provider.update({"clipboard": "bye"})
    ctx.get("clipboard")          # still "hello"

The engine never mutates a context. A session keeps the snapshot it was
started with until the caller hands it a newer one.
"""

from __future__ import annotations

import copy
import threading
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional

from .canonical import canonical_hash
from .errors import BadContextError


# -------------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------------


def _deep_freeze(obj: Any) -> Any:
    """
    Recursively freeze an object into an immutable form.

    - dict → MappingProxyType (immutable dict view)
    - list/tuple → tuple (recursively frozen)
    - set → frozenset (recursively frozen)
    - everything else → unchanged
    """
    if isinstance(obj, Mapping):
        return MappingProxyType({k: _deep_freeze(v) for k, v in obj.items()})
    elif isinstance(obj, (list, tuple)):
        return tuple(_deep_freeze(x) for x in obj)
    elif isinstance(obj, set):
        return frozenset(_deep_freeze(x) for x in obj)
    else:
        return obj


def _deep_unfreeze(obj: Any) -> Any:
    """Convert a frozen tree back to plain dicts/lists/sets (fresh copies)."""
    if isinstance(obj, MappingProxyType):
        return {k: _deep_unfreeze(v) for k, v in obj.items()}
    elif isinstance(obj, tuple):
        return [_deep_unfreeze(x) for x in obj]
    elif isinstance(obj, frozenset):
        return {_deep_unfreeze(x) for x in obj}
    else:
        return obj


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """
    Immutable deep merge: shallow copy of base, recursing only where both
    sides hold a dict under the same key.
    """
    if not isinstance(base, dict) or not isinstance(overlay, dict):
        return copy.deepcopy(overlay)

    result = base.copy()
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = copy.deepcopy(v)
    return result


_MISSING = object()


# -------------------------------------------------------------------------
# Snapshot
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class ParseContext:
    """
    Immutable snapshot of external dynamic data.

    data is deep-frozen (MappingProxyType / tuple / frozenset), so neither
    the engine nor a misbehaving dynamic value can change what sibling
    threads observe.
    """

    data: Mapping[str, Any]
    timestamp_ms: int
    context_hash: str

    @classmethod
    def from_data(cls, data: Optional[Mapping[str, Any]] = None, *, timestamp_ms: Optional[int] = None) -> "ParseContext":
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise BadContextError(f"context data must be a mapping, got {type(data).__name__}")
        frozen = _deep_freeze(data)
        try:
            digest = canonical_hash(_deep_unfreeze(frozen))
        except (TypeError, ValueError) as e:
            raise BadContextError(f"context data is not serializable: {e}") from e
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)
        return cls(data=frozen, timestamp_ms=timestamp_ms, context_hash=digest)

    @classmethod
    def empty(cls) -> "ParseContext":
        return cls.from_data({}, timestamp_ms=0)

    def _lookup(self, path: str) -> Any:
        curr: Any = self.data
        for part in path.split("."):
            if isinstance(curr, Mapping) and part in curr:
                curr = curr[part]
            else:
                return _MISSING
        return curr

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated lookup: ctx.get("lookups.weather.city")."""
        value = self._lookup(path)
        return default if value is _MISSING else value

    def has(self, path: str) -> bool:
        return self._lookup(path) is not _MISSING

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __contains__(self, key: object) -> bool:
        return key in self.data

    def to_dict(self) -> Dict[str, Any]:
        """Plain mutable copy of the data (for JSON export and debugging)."""
        return _deep_unfreeze(self.data)


# -------------------------------------------------------------------------
# Provider
# -------------------------------------------------------------------------


class ContextProvider:
    """
    Thread-safe mutable store that hands out ParseContext snapshots.

    Collaborators (clipboard watchers, async lookups) write into it at any
    time; sessions only ever see the snapshot they were given.

        provider = ContextProvider({"clipboard": ""})
        provider.update({"lookups": {"weather": {"city": "Oslo"}}})
        snap = provider.snapshot()
    """

    def __init__(
        self,
        data: Optional[Dict[str, Any]] = None,
        *,
        time_fn: Callable[[], float] = time.time,
    ):
        """
        Args:
            data: initial context data. If None, defaults to {}.
            time_fn: injectable time source (seconds), used for tests.
        """
        if data is not None and not isinstance(data, dict):
            raise BadContextError("ContextProvider data must be a dict")
        self._lock = threading.RLock()
        self._data: Dict[str, Any] = copy.deepcopy(data) if data is not None else {}
        self._time_fn = time_fn

    def _now_ms(self) -> int:
        return int(self._time_fn() * 1000)

    @property
    def data(self) -> Dict[str, Any]:
        """Return a deep copy of the current data."""
        with self._lock:
            return copy.deepcopy(self._data)

    def snapshot(self) -> ParseContext:
        """Freeze the current data into a ParseContext."""
        with self._lock:
            return ParseContext.from_data(self._data, timestamp_ms=self._now_ms())

    def update(self, delta: Dict[str, Any]) -> None:
        """
        Deep-merge delta into the stored data.

        Raises:
            BadContextError: If delta is not a dict
        """
        if not isinstance(delta, dict):
            raise BadContextError("update expects a dict delta")
        with self._lock:
            self._data = _deep_merge(self._data, delta)

    def replace(self, data: Dict[str, Any]) -> None:
        """Replace the stored data entirely."""
        if not isinstance(data, dict):
            raise BadContextError("replace expects a dict")
        with self._lock:
            self._data = copy.deepcopy(data)
