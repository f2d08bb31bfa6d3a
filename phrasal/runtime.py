"""
runtime.py

Phrasal Runtime
---------------

The PhraseRuntime is the entrypoint for incremental parsing sessions.

It connects:
    - ContextProvider    (read-only ParseContext snapshots)
    - ExtensionRegistry  (snapshotted once per session)
    - DerivationEngine   (thread sets, one character at a time)
    - Synthesizer        (completed threads -> results)
    - Candidate Reporter (live threads -> suggestions)

    runtime = PhraseRuntime(grammar, registry=registry)
    handle = runtime.start()
    step = runtime.advance(handle, "tweet hel")
    step = runtime.advance(handle, "lo")
    step.completed[0].result          # {"message": "hello"}
    runtime.end(handle)

Sessions share nothing but the registry snapshot they were started with, so
they can run on different threads without coordination. Mid-session
registry writes only affect sessions started afterwards.
"""

from __future__ import annotations

import sys
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .candidates import Candidate, report
from .config import EngineConfig
from .context import ContextProvider, ParseContext
from .engine import DerivationEngine, DerivationThread, FaultHandler, FaultReport
from .errors import (
    EngineInvariantError,
    MalformedNodeError,
    SessionError,
    SessionFailedError,
    UnknownSessionError,
)
from .extension_registry import EMPTY_SNAPSHOT, ExtensionRegistry
from .nodes import Node
from .synthesizer import Completion, synthesize

Grammar = Union[Node, Callable[[ParseContext], Node]]
Executor = Callable[[Optional[str], Any], Any]
ContextLike = Union[ParseContext, Mapping[str, Any], None]

# Errors that end (only) the session they occur in, whether raised while
# seeding in start() or while stepping; always re-raised as SessionFailedError
_SESSION_FATAL = (EngineInvariantError, MalformedNodeError)


# -------------------------------------------------------------------------
# Result objects
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionHandle:
    id: str
    started_at_ms: int
    registry_version: int
    context_hash: str


@dataclass(frozen=True)
class StepResult:
    """
    Outcome of one advance()/retreat():

        text        everything typed so far
        completed   derivations that consumed exactly `text`, in fork order
        partial     deduplicated next literals / placeholders
        alive       at least one thread survives (complete or partial)
        can_submit  at least one completed derivation exists
    """

    text: str
    completed: Tuple[Completion, ...]
    partial: Tuple[Candidate, ...]
    alive: bool
    can_submit: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "completed": [c.to_dict() for c in self.completed],
            "partial": [c.to_dict() for c in self.partial],
            "alive": self.alive,
            "can_submit": self.can_submit,
        }


# -------------------------------------------------------------------------
# Session
# -------------------------------------------------------------------------


class Session:
    """
    One evolving parse. Not shared between callers; the lock only guards
    against the same handle being advanced from two threads at once.
    """

    def __init__(self, handle: SessionHandle, engine: DerivationEngine, root: Node, *, keep_history: bool):
        self.handle = handle
        self._engine = engine
        self._keep_history = keep_history
        self._lock = threading.Lock()
        self._text = ""
        self._history: List[Tuple[DerivationThread, ...]] = []
        self._threads = engine.seed(root)

    @property
    def text(self) -> str:
        return self._text

    @property
    def threads(self) -> Tuple[DerivationThread, ...]:
        return self._threads

    def advance(self, increment: str, context: Optional[ParseContext] = None) -> StepResult:
        if not isinstance(increment, str):
            raise TypeError(f"input increment must be str, got {type(increment).__name__}")
        with self._lock:
            engine = self._engine if context is None else self._engine.with_context(context)
            threads = self._threads
            history = []
            for ch in increment:
                if self._keep_history:
                    history.append(threads)
                threads = engine.step(threads, ch)
            # Commit only once the whole increment has been computed
            self._engine = engine
            self._threads = threads
            self._history.extend(history)
            self._text += increment
            return self._result()

    def retreat(self, count: int = 1) -> StepResult:
        """Drop the last `count` characters, restoring the earlier thread set."""
        with self._lock:
            if not self._keep_history:
                raise SessionError("retreat() needs keep_history=True")
            if count < 0 or count > len(self._text):
                raise ValueError(f"cannot retreat {count} characters from {len(self._text)}")
            if count:
                self._threads = self._history[-count]
                del self._history[-count:]
                self._text = self._text[:-count]
            return self._result()

    def result(self) -> StepResult:
        with self._lock:
            return self._result()

    def _result(self) -> StepResult:
        completed = tuple(synthesize(t, self._text) for t in self._threads if t.completed)
        candidates = report(self._threads)
        return StepResult(
            text=self._text,
            completed=completed,
            partial=candidates.candidates,
            alive=any(t.completed or not t.finished for t in self._threads),
            can_submit=candidates.can_submit,
        )


# -------------------------------------------------------------------------
# Runtime Core
# -------------------------------------------------------------------------


class PhraseRuntime:
    """
    Session table around one grammar.

    Responsibilities:
        - build a fresh grammar tree per session (when given a generator)
        - snapshot context and registry at start()
        - route increments to the right session
        - fail only the offending session on engine invariant violations
        - forward dynamic-value faults to the fault handler
        - hand completed results to an external executor
    """

    def __init__(
        self,
        grammar: Grammar,
        *,
        registry: Optional[ExtensionRegistry] = None,
        context_provider: Optional[ContextProvider] = None,
        config: Optional[EngineConfig] = None,
        fault_handler: Optional[FaultHandler] = None,
    ):
        if not isinstance(grammar, Node) and not callable(grammar):
            raise MalformedNodeError(
                f"grammar must be a node or a callable returning one, got {type(grammar).__name__}"
            )
        self.grammar = grammar
        self.registry = registry
        self.context_provider = context_provider
        self.config = config or EngineConfig.from_env()
        self.fault_handler = fault_handler
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._trace("initialized", registry=registry is not None, provider=context_provider is not None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _trace(self, event: str, **data: Any) -> None:
        if self.config.debug:
            payload = "" if not data else f" {data}"
            sys.stderr.write(f"[PhraseRuntime] {event}{payload}\n")

    def _on_fault(self, fault: FaultReport) -> None:
        if self.config.debug:
            sys.stderr.write(f"[PhraseRuntime] fault in {fault.where} ({fault.label}):\n{fault.traceback}\n")
        if self.fault_handler is not None:
            self.fault_handler(fault)

    def _context(self, context: ContextLike) -> ParseContext:
        if isinstance(context, ParseContext):
            return context
        if context is not None:
            return ParseContext.from_data(context)
        if self.context_provider is not None:
            return self.context_provider.snapshot()
        return ParseContext.empty()

    def _root(self, context: ParseContext) -> Node:
        if isinstance(self.grammar, Node):
            return self.grammar
        root = self.grammar(context)
        if not isinstance(root, Node):
            raise MalformedNodeError(f"grammar generator returned {type(root).__name__}, expected a node")
        return root

    def _get(self, handle: SessionHandle) -> Session:
        with self._lock:
            session = self._sessions.get(handle.id)
        if session is None:
            raise UnknownSessionError(f"no active session {handle.id}")
        return session

    def _fail(self, handle: SessionHandle, error: Exception) -> SessionFailedError:
        with self._lock:
            self._sessions.pop(handle.id, None)
        self._trace("session.failed", id=handle.id, error=str(error))
        return SessionFailedError(f"session {handle.id} failed: {error}")

    # ------------------------------------------------------------------
    # Session interface
    # ------------------------------------------------------------------

    def start(self, context: ContextLike = None) -> SessionHandle:
        """Open a session and seed its threads (zero input consumed)."""
        ctx = self._context(context)
        registry = self.registry.snapshot() if self.registry is not None else EMPTY_SNAPSHOT
        engine = DerivationEngine(
            registry,
            ctx,
            max_expansions=self.config.max_expansions,
            on_fault=self._on_fault,
        )
        handle = SessionHandle(
            id=uuid.uuid4().hex,
            started_at_ms=int(time.time() * 1000),
            registry_version=registry.version,
            context_hash=ctx.context_hash,
        )
        try:
            session = Session(handle, engine, self._root(ctx), keep_history=self.config.keep_history)
        except _SESSION_FATAL as e:
            self._trace("session.failed", id=handle.id, error=str(e))
            raise SessionFailedError(f"session could not be seeded: {e}") from e
        with self._lock:
            self._sessions[handle.id] = session
        self._trace("session.start", id=handle.id, threads=len(session.threads))
        return handle

    def advance(self, handle: SessionHandle, increment: str, *, context: ContextLike = None) -> StepResult:
        """
        Feed more input. A context given here replaces the session's context
        for this and every later step.
        """
        session = self._get(handle)
        ctx = None if context is None else self._context(context)
        try:
            result = session.advance(increment, ctx)
        except _SESSION_FATAL as e:
            raise self._fail(handle, e) from e
        self._trace("session.advance", id=handle.id, text=result.text, threads=len(session.threads))
        return result

    def retreat(self, handle: SessionHandle, count: int = 1) -> StepResult:
        session = self._get(handle)
        try:
            return session.retreat(count)
        except _SESSION_FATAL as e:
            raise self._fail(handle, e) from e

    def result(self, handle: SessionHandle) -> StepResult:
        """Current state of a session without feeding input."""
        session = self._get(handle)
        try:
            return session.result()
        except _SESSION_FATAL as e:
            raise self._fail(handle, e) from e

    def end(self, handle: SessionHandle) -> bool:
        """Discard a session. Safe at any point; False if it was already gone."""
        with self._lock:
            session = self._sessions.pop(handle.id, None)
        if session is not None:
            self._trace("session.end", id=handle.id)
        return session is not None

    @property
    def active_sessions(self) -> int:
        with self._lock:
            return len(self._sessions)

    def parse(self, text: str, context: ContextLike = None) -> StepResult:
        """One-shot: start, feed the whole string, end."""
        handle = self.start(context)
        try:
            return self.advance(handle, text)
        finally:
            self.end(handle)

    # ------------------------------------------------------------------
    # Execution hand-off
    # ------------------------------------------------------------------

    @staticmethod
    def hand_off(completion: Completion, executor: Executor) -> Any:
        """
        Pass a completed result, with the identity of the phrase that
        produced it, to an external executor. The runtime performs no
        actions of its own.
        """
        if not isinstance(completion, Completion):
            raise TypeError(f"hand_off expects a Completion, got {type(completion).__name__}")
        return executor(completion.phrase, completion.result)
