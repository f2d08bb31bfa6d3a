"""
engine.py

Derivation Engine
-----------------

Advances a set of live derivation threads one input character at a time.

A thread is an immutable snapshot:

    stack          continuation, a persistent cons list of pending frames
    trace          reversed cons list of events the Synthesizer folds later
    consumed       characters read so far
    last_category  category of the last consumed character
    unfilled       an empty consuming value closed and nothing was read since
    expansions     frames expanded since the last consumed character

Stacks and traces are shared structurally between forks, so forking is O(1)
and a whole thread set can be dropped at any point without cleanup.

One step:

    settle(thread)      expand frames until each descendant's head is a
                        literal cursor, an open text cursor, or the stack is
                        empty (forking on Choice, Phrase and text close points)
    consume(thread, ch) advance the head cursor by one character or die

Ordering: descendants replace their parent in place, so a thread set is
always in fork order (document order of Choice alternatives; a phrase's own
tree before its extensions; a text value's close-here variant before its
keep-open variant).
"""

from __future__ import annotations

import os
import sys
import traceback
from concurrent.futures import Future
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterator, List, Optional, Tuple

from .canonical import fold_char
from .context import ParseContext
from .errors import EngineInvariantError, ExpansionLimitError, MalformedNodeError
from .extension_registry import EMPTY_SNAPSHOT, RegistrySnapshot
from .nodes import (
    NO_MATCH,
    Argument,
    Choice,
    DynamicValue,
    Literal,
    Node,
    Phrase,
    Sequence,
)

# ==========================================
# DEBUGGING INSTRUMENTATION
# ==========================================
# Enable with PHRASAL_DEBUG=1
_DEBUG_ENABLED = os.getenv("PHRASAL_DEBUG", "0") == "1"


def _debug_print(*args, **kwargs):
    """Print to stderr only if debug is enabled."""
    if _DEBUG_ENABLED:
        print(*args, file=sys.stderr, **kwargs)


# ==========================================
# PERSISTENT LISTS
# ==========================================
# (head, tail) pairs terminated by None


def push_all(stack, items) -> Any:
    for item in reversed(items):
        stack = (item, stack)
    return stack


def iter_cons(cons) -> Iterator[Any]:
    while cons is not None:
        yield cons[0]
        cons = cons[1]


# ==========================================
# FRAMES & EVENTS
# ==========================================


class _Close:
    """Frame that ends a combinator; also the trace event it leaves behind."""

    def __repr__(self) -> str:
        return "CLOSE"


CLOSE = _Close()


@dataclass(frozen=True)
class LiteralCursor:
    node: Literal
    offset: int = 0
    matched: str = ""

    @property
    def done(self) -> bool:
        return self.offset >= len(self.node.folded)


@dataclass(frozen=True)
class TextCursor:
    node: DynamicValue
    text: str = ""
    settled: bool = False


@dataclass(frozen=True)
class Slot:
    """A Sequence child waiting to be expanded under its (optional) key."""

    node: Node
    key: Optional[str]


@dataclass(frozen=True)
class Open:
    kind: str
    key: Optional[str] = None
    identity: Optional[str] = None


@dataclass(frozen=True)
class Emit:
    value: Any
    text: str
    category: Optional[str]


# ==========================================
# THREADS
# ==========================================


@dataclass(frozen=True)
class DerivationThread:
    stack: Any
    trace: Any = None
    consumed: int = 0
    last_category: Optional[str] = None
    unfilled: bool = False
    expansions: int = 0

    @property
    def head(self) -> Any:
        return None if self.stack is None else self.stack[0]

    @property
    def finished(self) -> bool:
        """Continuation is empty (nothing more can be consumed)."""
        return self.stack is None

    @property
    def completed(self) -> bool:
        return self.stack is None and not self.unfilled

    def emit(self, event: Any, stack: Any) -> "DerivationThread":
        return replace(self, stack=stack, trace=(event, self.trace))


# ==========================================
# FAULTS
# ==========================================


@dataclass(frozen=True)
class FaultReport:
    """
    A dynamic value or phrase generator raised.

    where: "evaluate" | "accepts" | "generate"
    label: node label or phrase identity
    """

    where: str
    label: str
    error: Exception
    traceback: str


FaultHandler = Callable[[FaultReport], None]

_FAULT = object()


# ==========================================
# ENGINE
# ==========================================


class DerivationEngine:
    """
    Pure step functions over thread sets, bound to one context snapshot and
    one registry snapshot.

        engine = DerivationEngine(registry.snapshot(), ctx)
        threads = engine.seed(root)
        threads = engine.step(threads, "t")
    """

    def __init__(
        self,
        registry: RegistrySnapshot = EMPTY_SNAPSHOT,
        context: Optional[ParseContext] = None,
        *,
        max_expansions: int = 10_000,
        on_fault: Optional[FaultHandler] = None,
    ):
        self.registry = registry
        self.context = context if context is not None else ParseContext.empty()
        self.max_expansions = max_expansions
        self.on_fault = on_fault

    def with_context(self, context: ParseContext) -> "DerivationEngine":
        return DerivationEngine(
            self.registry,
            context,
            max_expansions=self.max_expansions,
            on_fault=self.on_fault,
        )

    # ------------------------------------------------------------------
    # Calls into user code
    # ------------------------------------------------------------------

    def _call(self, where: str, label: str, fn: Callable[..., Any], *args: Any) -> Any:
        """
        Single call point for user functions. Exceptions become FaultReports
        and the caller prunes the thread; siblings never see them.
        """
        try:
            result = fn(*args)
            if isinstance(result, Future):
                result = result.result()
            return result
        except Exception as e:
            tb = traceback.format_exc()
            _debug_print(f"[phrasal] fault in {where} ({label}): {e!r}")
            if self.on_fault is not None:
                try:
                    self.on_fault(FaultReport(where=where, label=label, error=e, traceback=tb))
                except Exception as hook_error:
                    _debug_print(f"[phrasal] fault handler raised {hook_error!r} while reporting {label}")
            return _FAULT

    def _evaluate(self, node: DynamicValue, *args: Any) -> Any:
        value = self._call("evaluate", node.label, node.evaluate, *args)
        return NO_MATCH if value is _FAULT else value

    def _generate(self, phrase: Phrase) -> Optional[Node]:
        tree = self._call("generate", phrase.identity, phrase.generate, self.context)
        if tree is _FAULT:
            return None
        if not isinstance(tree, Node):
            raise MalformedNodeError(
                f"Phrase {phrase.identity!r} generated {type(tree).__name__}, expected a grammar node"
            )
        return tree

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    def seed(self, root: Node) -> Tuple[DerivationThread, ...]:
        """Root thread set for a new session (no input consumed)."""
        if not isinstance(root, Node):
            raise MalformedNodeError(f"grammar root must be a node, got {type(root).__name__}")
        return tuple(self.settle(DerivationThread(stack=(root, None))))

    def settle(self, thread: DerivationThread) -> List[DerivationThread]:
        """
        Expand `thread` until every descendant can consume or is finished.

        Work is a LIFO stack with forks pushed in reverse, so descendants come
        out depth-first in fork order.
        """
        out: List[DerivationThread] = []
        work = [thread]
        while work:
            t = work.pop()
            if t.stack is None:
                out.append(t)
                continue

            head, rest = t.stack

            if isinstance(head, LiteralCursor):
                if not head.done:
                    out.append(t)
                    continue
                node = head.node
                work.append(t.emit(Emit(node.value, head.matched, node.category), rest))
                continue

            if isinstance(head, TextCursor):
                if head.settled:
                    out.append(t)
                else:
                    work.extend(reversed(self._text_forks(t, head, rest)))
                continue

            if head is CLOSE:
                # Bounded by stack depth, so not counted against the budget
                work.append(t.emit(CLOSE, rest))
                continue

            if t.expansions >= self.max_expansions:
                raise ExpansionLimitError(
                    f"expanded {t.expansions} frames without consuming input "
                    f"(non-consuming recursion?) near {type(head).__name__}"
                )
            t = replace(t, expansions=t.expansions + 1)

            if isinstance(head, Literal):
                work.append(replace(t, stack=(LiteralCursor(head), rest)))

            elif isinstance(head, DynamicValue):
                if head.consumes:
                    work.append(replace(t, stack=(TextCursor(head), rest)))
                    continue
                value = self._evaluate(head, self.context)
                if value is NO_MATCH:
                    continue
                work.append(t.emit(Emit(value, "", head.category), rest))

            elif isinstance(head, Sequence):
                frames = [Slot(child, key) for child, key in zip(head.children, head.keys)]
                frames.append(CLOSE)
                work.append(t.emit(Open("sequence"), push_all(rest, frames)))

            elif isinstance(head, Slot):
                work.append(t.emit(Open("slot", key=head.key), push_all(rest, (head.node, CLOSE))))

            elif isinstance(head, Argument):
                work.append(t.emit(Open("argument", key=head.key), push_all(rest, (head.child, CLOSE))))

            elif isinstance(head, Choice):
                forks = [replace(t, stack=(alt, rest)) for alt in head.alternatives]
                work.extend(reversed(forks))

            elif isinstance(head, Phrase):
                forks = []
                for phrase in (head,) + self.registry.resolve(head.identity):
                    tree = self._generate(phrase)
                    if tree is None:
                        continue
                    opened = Open("phrase", identity=phrase.identity)
                    forks.append(t.emit(opened, push_all(rest, (tree, CLOSE))))
                work.extend(reversed(forks))

            else:
                raise EngineInvariantError(f"unexpected continuation frame {head!r}")

        return out

    def _text_forks(self, t: DerivationThread, head: TextCursor, rest: Any) -> List[DerivationThread]:
        node = head.node
        text = head.text
        forks = []
        if node.bounds.allows_close(len(text)):
            value = self._evaluate(node, text, self.context)
            if value is not NO_MATCH:
                closed = t.emit(Emit(value, text, node.category), rest)
                if not text:
                    closed = replace(closed, unfilled=True)
                forks.append(closed)
        if node.bounds.allows_more(len(text)):
            forks.append(replace(t, stack=(TextCursor(node, text, settled=True), rest)))
        return forks

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    def consume(self, thread: DerivationThread, ch: str) -> Optional[DerivationThread]:
        """Read one character. Returns None when the thread dies."""
        if thread.stack is None:
            return None
        head, rest = thread.stack

        if isinstance(head, LiteralCursor):
            node = head.node
            folded = fold_char(ch)
            if not node.folded.startswith(folded, head.offset):
                return None
            cursor: Any = LiteralCursor(node, head.offset + len(folded), head.matched + ch)
        elif isinstance(head, TextCursor):
            node = head.node
            if not node.bounds.allows_more(len(head.text)):
                return None
            text = head.text + ch
            if node.accepts is not None:
                ok = self._call("accepts", node.label, node.accepts, text, self.context)
                if ok is _FAULT or not ok:
                    return None
            cursor = TextCursor(node, text)
        else:
            raise EngineInvariantError(f"thread head {head!r} cannot consume input")

        return replace(
            thread,
            stack=(cursor, rest),
            consumed=thread.consumed + 1,
            last_category=node.category,
            unfilled=False,
            expansions=0,
        )

    def step(self, threads: Tuple[DerivationThread, ...], ch: str) -> Tuple[DerivationThread, ...]:
        """Next thread set after reading `ch`. The input set is untouched."""
        out: List[DerivationThread] = []
        for t in threads:
            advanced = self.consume(t, ch)
            if advanced is not None:
                out.extend(self.settle(advanced))
        _debug_print(f"[phrasal] step {ch!r}: {len(threads)} -> {len(out)} threads")
        return tuple(out)

    def feed(self, threads: Tuple[DerivationThread, ...], text: str) -> Tuple[DerivationThread, ...]:
        for ch in text:
            threads = self.step(threads, ch)
        return threads
