"""
synthesizer.py

Result Synthesizer
------------------

Folds the trace of one completed thread, bottom-up, into a result value.

    Literal       its configured value (default None)
    DynamicValue  the value it produced
    Argument      {key: child}
    Sequence      one mapping, declaration order; keyed children store their
                  value under their key, unkeyed children merge the bindings
                  of Arguments (and unkeyed Sequences) they contain; later
                  keys overwrite earlier ones
    Choice        the one alternative traversed (Choice leaves no trace)
    Phrase        the tree traversed, own or extension (transparent)

Only threads that complete are ever folded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from .canonical import completion_fingerprint
from .engine import CLOSE, DerivationThread, Emit, Open, iter_cons
from .errors import EngineInvariantError


@dataclass(frozen=True)
class Completion:
    """
    A completed derivation.

    text        the input it consumed (always the whole session input)
    result      folded result value
    phrase      outermost Phrase identity traversed (None if the grammar
                never went through a Phrase)
    segments    (text, category) for each leaf that consumed input
    fingerprint canonical hash of (text, phrase, result)
    """

    text: str
    result: Any
    phrase: Optional[str]
    segments: Tuple[Tuple[str, Optional[str]], ...]
    fingerprint: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consumed_text": self.text,
            "result": self.result,
            "phrase": self.phrase,
            "segments": [list(s) for s in self.segments],
            "fingerprint": self.fingerprint,
        }


class _Fragment(NamedTuple):
    value: Any
    bindings: Optional[Dict[str, Any]]


@dataclass
class _Frame:
    kind: str
    key: Optional[str] = None
    items: List[Tuple[Optional[str], _Fragment]] = field(default_factory=list)

    def only(self) -> _Fragment:
        if len(self.items) != 1:
            raise EngineInvariantError(
                f"{self.kind} frame closed with {len(self.items)} contributions, expected 1"
            )
        return self.items[0][1]


def _close(frame: _Frame) -> Tuple[Optional[str], _Fragment]:
    if frame.kind == "slot":
        return frame.key, frame.only()

    if frame.kind == "sequence":
        mapping: Dict[str, Any] = {}
        for key, fragment in frame.items:
            if key is not None:
                mapping[key] = fragment.value
            elif fragment.bindings:
                mapping.update(fragment.bindings)
        # An unkeyed nested sequence flattens into its parent
        return None, _Fragment(mapping, dict(mapping))

    if frame.kind == "argument":
        value = frame.only().value
        return None, _Fragment({frame.key: value}, {frame.key: value})

    if frame.kind == "phrase":
        return None, frame.only()

    raise EngineInvariantError(f"unknown trace frame kind {frame.kind!r}")


def fold(thread: DerivationThread) -> Tuple[Any, Optional[str], Tuple[Tuple[str, Optional[str]], ...]]:
    """
    Fold a thread's trace.

    Returns:
        (result, outermost phrase identity, consumed segments)
    """
    events = list(iter_cons(thread.trace))
    events.reverse()

    frames = [_Frame("root")]
    segments: List[Tuple[str, Optional[str]]] = []
    phrase: Optional[str] = None

    for event in events:
        if isinstance(event, Emit):
            if event.text:
                segments.append((event.text, event.category))
            frames[-1].items.append((None, _Fragment(event.value, None)))
        elif isinstance(event, Open):
            if event.kind == "phrase" and phrase is None:
                phrase = event.identity
            frames.append(_Frame(event.kind, event.key))
        elif event is CLOSE:
            if len(frames) < 2:
                raise EngineInvariantError("trace closes more frames than it opens")
            done = frames.pop()
            frames[-1].items.append(_close(done))
        else:
            raise EngineInvariantError(f"unknown trace event {event!r}")

    if len(frames) != 1:
        raise EngineInvariantError(f"trace left {len(frames) - 1} frames open")
    return frames[0].only().value, phrase, tuple(segments)


def synthesize(thread: DerivationThread, text: str) -> Completion:
    """Build the Completion for a thread that consumed exactly `text`."""
    if not thread.completed:
        raise EngineInvariantError("only completed threads can be synthesized")
    result, phrase, segments = fold(thread)

    covered = "".join(s for s, _ in segments)
    if covered != text or thread.consumed != len(text):
        raise EngineInvariantError(
            f"derivation covers {covered!r} ({thread.consumed} chars) but input is {text!r}"
        )
    return Completion(
        text=text,
        result=result,
        phrase=phrase,
        segments=segments,
        fingerprint=completion_fingerprint(text, phrase, result),
    )
