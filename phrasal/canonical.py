"""
phrasal/canonical.py - Shared Canonicalization Logic
"""
import hashlib
import json
import unicodedata
from typing import Any


def fold_text(text: str) -> str:
    """
    Fold text for literal matching.

    Standard:
    - NFKC Unicode normalization of the whole string
    - casefold()
    - NFD, so a composed letter and its decomposed spelling share one form

    The result may be longer than the input (e.g. 'ß' -> 'ss', 'é' -> 'e' + U+0301).
    Literals are matched by prefix against the folded stream.
    """
    return unicodedata.normalize("NFD", unicodedata.normalize("NFKC", text).casefold())


def fold_char(ch: str) -> str:
    """Fold one typed character (same policy as fold_text)."""
    return fold_text(ch)


def _encode_default(obj: Any) -> Any:
    # Result values may carry datetime.time / timedelta / sets from dynamic nodes
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    if hasattr(obj, "total_seconds"):
        return obj.total_seconds()
    if isinstance(obj, (set, frozenset)):
        return sorted(canonical_json(x) for x in obj)
    if hasattr(obj, "items"):
        return dict(obj.items())
    return repr(obj)


def canonical_json(obj: Any) -> str:
    """
    Canonical JSON serialization:
        - sorted keys
        - no whitespace separation
        - ensure_ascii=True
        - reject NaN/Infinity (allow_nan=False)
        - non-JSON values (times, durations, sets, mappings) encoded
          deterministically
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        allow_nan=False,
        default=_encode_default,
    )


def canonical_hash(obj: Any) -> str:
    """SHA-256 hex digest of canonical_json(obj)."""
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()


def completion_fingerprint(text: str, phrase: Any, result: Any) -> str:
    """
    Stable identity for a completed derivation.

    Two completions with the same consumed text, top-level phrase and result
    share a fingerprint; ranking collaborators use it to collapse duplicates.
    """
    return canonical_hash({"text": text, "phrase": phrase, "result": result})
