"""
candidates.py

Candidate Reporter
------------------

Turns the live thread set into suggestions: which literals (or value
placeholders) can legally come next, and whether the input can already be
submitted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Set, Tuple

from .engine import DerivationThread, LiteralCursor, TextCursor


@dataclass(frozen=True)
class Candidate:
    """
    text        full literal text, or the value's placeholder label
    category    literal / value category
    remainder   part of `text` not typed yet ("" for placeholders)
    placeholder True for open dynamic values
    """

    text: str
    category: Optional[str]
    remainder: str = ""
    placeholder: bool = False

    def to_dict(self):
        return {
            "text": self.text,
            "category": self.category,
            "remainder": self.remainder,
            "placeholder": self.placeholder,
        }


@dataclass(frozen=True)
class CandidateReport:
    candidates: Tuple[Candidate, ...]
    can_submit: bool


def _candidate(thread: DerivationThread) -> Optional[Candidate]:
    head = thread.head
    if isinstance(head, LiteralCursor):
        node = head.node
        return Candidate(node.text, node.category, node.remaining(head.offset))
    if isinstance(head, TextCursor):
        return Candidate(head.node.label, head.node.category, "", placeholder=True)
    return None


def report(threads: Iterable[DerivationThread]) -> CandidateReport:
    """
    Deduplicated (text, category) candidates in fork order, plus whether any
    thread is already complete.
    """
    seen: Set[Tuple[str, Optional[str]]] = set()
    out: List[Candidate] = []
    can_submit = False
    for thread in threads:
        if thread.completed:
            can_submit = True
            continue
        candidate = _candidate(thread)
        if candidate is None:
            continue
        key = (candidate.text, candidate.category)
        if key in seen:
            continue
        seen.add(key)
        out.append(candidate)
    return CandidateReport(candidates=tuple(out), can_submit=can_submit)
