"""
nodes.py

Grammar Node Model
------------------

A grammar is a tree of immutable nodes:

    Literal       fixed text, matched character by character
    DynamicValue  value produced by a function of the context, either
                  without reading input (state-derived) or by reading a
                  bounded run of input (free text)
    Sequence      ordered children, each optionally keyed into the result
    Choice        alternatives, forked in document order
    Argument      wraps one child under a result key
    Phrase        named unit whose tree is generated from the context

Construction never looks at input text. Every node validates its own fields
in __post_init__ and raises MalformedNodeError immediately, so a bad grammar
can never reach a parse session.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple

from .canonical import fold_text
from .errors import MalformedNodeError


class _NoMatch:
    """Sentinel returned by DynamicValue.evaluate to reject the input."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_MATCH"

    def __bool__(self) -> bool:
        return False


NO_MATCH = _NoMatch()


class Node:
    """Marker base class for grammar nodes."""

    __slots__ = ()


def _require_node(value: Any, where: str) -> None:
    if not isinstance(value, Node):
        raise MalformedNodeError(f"{where} must be a grammar node, got {type(value).__name__}")


def _require_key(value: Any, where: str) -> None:
    if not isinstance(value, str) or not value:
        raise MalformedNodeError(f"{where} must be a non-empty string, got {value!r}")


# -------------------------------------------------------------------------
# Leaves
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class Literal(Node):
    """
    Fixed text. Contributes `value` (default None) to the result once fully
    matched, and tags the consumed characters with `category`.
    """

    text: str
    category: str = "literal"
    value: Any = None
    folded: str = field(init=False, repr=False, compare=False)
    starts: Tuple[int, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not isinstance(self.text, str) or not self.text:
            raise MalformedNodeError(f"Literal text must be a non-empty string, got {self.text!r}")
        if not isinstance(self.category, str):
            raise MalformedNodeError("Literal category must be a string")
        folded = fold_text(self.text)
        # Offset into `folded` at which each character of `text` begins
        starts = tuple(min(len(fold_text(self.text[:i])), len(folded)) for i in range(len(self.text)))
        object.__setattr__(self, "folded", folded)
        object.__setattr__(self, "starts", starts)

    def remaining(self, offset: int) -> str:
        """Part of `text` not yet read once `offset` folded characters matched."""
        return self.text[max(bisect_right(self.starts, offset) - 1, 0):]


@dataclass(frozen=True)
class Bounds:
    """Length limits for consuming dynamic values (None = unbounded)."""

    min_length: int = 0
    max_length: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.min_length, int) or self.min_length < 0:
            raise MalformedNodeError(f"min_length must be a non-negative int, got {self.min_length!r}")
        if self.max_length is not None:
            if not isinstance(self.max_length, int) or self.max_length < 0:
                raise MalformedNodeError(f"max_length must be a non-negative int, got {self.max_length!r}")
            if self.max_length < self.min_length:
                raise MalformedNodeError(
                    f"max_length {self.max_length} is smaller than min_length {self.min_length}"
                )

    def allows_more(self, length: int) -> bool:
        return self.max_length is None or length < self.max_length

    def allows_close(self, length: int) -> bool:
        return length >= self.min_length and (self.max_length is None or length <= self.max_length)


@dataclass(frozen=True)
class DynamicValue(Node):
    """
    A value computed at parse time.

    consumes=True:
        evaluate(text, context) -> value | NO_MATCH
        Called once, when the value closes over `text`. `accepts(text, context)`
        (optional) is checked after every consumed character and prunes early.
    consumes=False:
        evaluate(context) -> value | NO_MATCH
        Called when the node is reached; reads no input.

    Either form may return a concurrent.futures.Future; the engine waits on it
    at that call point.
    """

    evaluate: Callable[..., Any]
    consumes: bool = True
    bounds: Bounds = field(default_factory=Bounds)
    category: str = "value"
    placeholder: Optional[str] = None
    accepts: Optional[Callable[[str, Any], bool]] = None

    def __post_init__(self):
        if not callable(self.evaluate):
            raise MalformedNodeError("DynamicValue.evaluate must be callable")
        if not isinstance(self.bounds, Bounds):
            raise MalformedNodeError("DynamicValue.bounds must be a Bounds instance")
        if self.accepts is not None and not callable(self.accepts):
            raise MalformedNodeError("DynamicValue.accepts must be callable or None")
        if not self.consumes and self.accepts is not None:
            raise MalformedNodeError("a non-consuming DynamicValue cannot take an accepts() filter")

    @property
    def label(self) -> str:
        return self.placeholder or self.category


# -------------------------------------------------------------------------
# Combinators
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class Sequence(Node):
    """
    Ordered children. keys[i] (if given) stores child i's value under that key
    in the sequence's result mapping; unkeyed children only contribute the
    bindings of Arguments they contain.
    """

    children: Tuple[Node, ...]
    keys: Tuple[Optional[str], ...] = ()

    def __post_init__(self):
        children = tuple(self.children)
        keys = tuple(self.keys or ())
        if not children:
            raise MalformedNodeError("Sequence needs at least one child")
        for i, child in enumerate(children):
            _require_node(child, f"Sequence child {i}")
        if len(keys) > len(children):
            raise MalformedNodeError(
                f"Sequence has {len(keys)} keys for {len(children)} children"
            )
        for key in keys:
            if key is not None:
                _require_key(key, "Sequence key")
        keys = keys + (None,) * (len(children) - len(keys))
        object.__setattr__(self, "children", children)
        object.__setattr__(self, "keys", keys)


@dataclass(frozen=True)
class Choice(Node):
    """Alternatives; each is tried in its own thread, in declaration order."""

    alternatives: Tuple[Node, ...]

    def __post_init__(self):
        alternatives = tuple(self.alternatives)
        if not alternatives:
            raise MalformedNodeError("Choice needs at least one alternative")
        for i, alt in enumerate(alternatives):
            _require_node(alt, f"Choice alternative {i}")
        object.__setattr__(self, "alternatives", alternatives)


@dataclass(frozen=True)
class Argument(Node):
    key: str
    child: Node

    def __post_init__(self):
        _require_key(self.key, "Argument key")
        _require_node(self.child, "Argument child")


@dataclass(frozen=True)
class Phrase(Node):
    """
    A named grammar unit. `generate(context)` builds its tree; it is called
    each time a thread reaches the phrase, never cached across threads, and
    must be deterministic for a given context snapshot.

    Two Phrase objects with the same identity are the same phrase for the
    extension registry.
    """

    identity: str
    generate: Callable[[Any], Node] = field(compare=False)

    def __post_init__(self):
        _require_key(self.identity, "Phrase identity")
        if not callable(self.generate):
            raise MalformedNodeError(f"Phrase {self.identity!r} generate must be callable")

