"""
values.py

Built-in Dynamic Values
-----------------------

Ready-made DynamicValue factories for the argument types most commands need:

    string_value()      free text
    integer_value()     "42", "-7", "twenty-one", "a hundred and five"
    number_value()      integers plus decimals ("2.5")
    time_value()        "3pm", "15:30", "7:05 a.m.", "noon"  -> datetime.time
    duration_value()    "2 hours 30 minutes", "1h30m", "an hour" -> timedelta
    context_value(p)    value stored in the context, reads no input
    lookup_value(p)     one entry of a context-provided collection

Numbers, times and durations are parsed with arpeggio PEG grammars. Every
consuming value rejects leading and trailing whitespace, so a value is never
ambiguous about where it ends.
"""

from __future__ import annotations

import os
import re
import sys
import threading
from collections import OrderedDict
from collections.abc import Mapping
from datetime import time as clock
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from arpeggio import EOF, NoMatch, ParserPython, PTNodeVisitor, ZeroOrMore, visit_parse_tree
from arpeggio import Optional as Maybe
from arpeggio import RegExMatch as _

from .canonical import fold_text
from .nodes import NO_MATCH, Bounds, DynamicValue

# ==========================================
# DEBUGGING INSTRUMENTATION
# ==========================================
_DEBUG_ENABLED = os.getenv("PHRASAL_DEBUG", "0") == "1"


def _debug_print(*args, **kwargs):
    """Print to stderr only if debug is enabled."""
    if _DEBUG_ENABLED:
        print(*args, file=sys.stderr, **kwargs)


# ==========================================
# VOCABULARY
# ==========================================

_UNITS = {
    "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4,
    "five": 5, "six": 6, "seven": 7, "eight": 8, "nine": 9,
}
_TEENS = {
    "ten": 10, "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14,
    "fifteen": 15, "sixteen": 16, "seventeen": 17, "eighteen": 18, "nineteen": 19,
}
_TENS = {
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50,
    "sixty": 60, "seventy": 70, "eighty": 80, "ninety": 90,
}
_NUMBER_WORDS = set(_UNITS) | set(_TEENS) | set(_TENS) | {"a", "an", "and", "hundred", "thousand", "minus"}

_DURATION_UNITS = {
    "weeks": "weeks", "week": "weeks", "w": "weeks",
    "days": "days", "day": "days", "d": "days",
    "hours": "hours", "hour": "hours", "hrs": "hours", "hr": "hours", "h": "hours",
    "minutes": "minutes", "minute": "minutes", "mins": "minutes", "min": "minutes", "m": "minutes",
    "seconds": "seconds", "second": "seconds", "secs": "seconds", "sec": "seconds", "s": "seconds",
}

_NAMED_TIMES = {"noon": clock(12, 0), "midday": clock(12, 0), "midnight": clock(0, 0)}


# ==========================================
# GRAMMAR
# ==========================================
# Input is lowercased before parsing; all terminals are lowercase regexes.


def num_digits():
    return _(r"\d+(\.\d+)?")


def num_unit():
    return _(r"(zero|one|two|three|four|five|six|seven|eight|nine)\b")


def num_teen():
    return _(r"(ten|eleven|twelve|thirteen|fourteen|fifteen|sixteen|seventeen|eighteen|nineteen)\b")


def num_tens():
    return _(r"(twenty|thirty|forty|fifty|sixty|seventy|eighty|ninety)\b")


def num_one():
    # "a hundred", "an hour"
    return _(r"an?\b")


def num_tens_unit():
    # twenty-one, twenty one
    return num_tens, Maybe(_(r"-")), num_unit


def num_small():
    # tens_unit BEFORE tens so "twenty one" is not cut after "twenty"
    return [num_tens_unit, num_teen, num_tens, num_unit]


def num_hundreds():
    return [num_unit, num_one], _(r"hundred\b"), Maybe(_(r"and\b")), Maybe(num_small)


def num_below_thousand():
    return [num_hundreds, num_small]


def num_thousands():
    return [num_below_thousand, num_one], _(r"thousand\b"), Maybe(_(r"and\b")), Maybe(num_below_thousand)


def num_words():
    return [num_thousands, num_below_thousand]


def num_sign():
    return _(r"-|minus\b")


def number():
    return Maybe(num_sign), [num_digits, num_words], EOF


def time_named():
    return _(r"(noon|midday|midnight)\b")


def time_hour():
    return _(r"\d{1,2}")


def time_minute():
    return _(r":\d{2}")


def time_meridiem():
    return _(r"(a\.?m\.?|p\.?m\.?)(?![a-z])")


def time_clock():
    return time_hour, Maybe(time_minute), Maybe(time_meridiem)


def clock_time():
    return [time_named, time_clock], EOF


def dur_unit():
    # Longest spelling first; (?![a-z]) instead of \b so "1h30m" splits
    return _(r"(weeks?|w|days?|d|hours?|hrs?|h|minutes?|mins?|m|seconds?|secs?|s)(?![a-z])")


def dur_part():
    return [num_digits, num_words, num_one], dur_unit


def duration():
    return dur_part, ZeroOrMore(Maybe(_(r"and\b|,")), dur_part), EOF


# ==========================================
# SEMANTIC ACTIONS
# ==========================================
# Anonymous sub-expressions come back as nested lists (see visit__default__),
# so actions flatten before picking out values. Clock and duration parts are
# tagged tuples so they survive flattening.


def _flatten(children):
    flat = []
    for x in children:
        if isinstance(x, list):
            flat.extend(_flatten(x))
        else:
            flat.append(x)
    return flat


def _numbers(children):
    return [c for c in _flatten(children) if isinstance(c, (int, float)) and not isinstance(c, bool)]


def _first_number(children):
    found = _numbers(children)
    if not found:
        raise ValueError("no numeric value")
    return found[0]


def _tagged(children, tag):
    for c in _flatten(children):
        if isinstance(c, tuple) and c[0] == tag:
            return c[1]
    return None


class ValueVisitor(PTNodeVisitor):
    """
    Folds number / time / duration parse trees into Python values.
    Raises ValueError for well-formed but out-of-range input (e.g. "25pm").
    """

    def visit__default__(self, node, children):
        # Terminals (keywords, separators) keep their text
        if not children and hasattr(node, "value"):
            return node.value
        return list(children)

    # --- numbers ---

    def visit_num_digits(self, node, children):
        text = node.value
        return float(text) if "." in text else int(text)

    def visit_num_unit(self, node, children):
        return _UNITS[node.value]

    def visit_num_teen(self, node, children):
        return _TEENS[node.value]

    def visit_num_tens(self, node, children):
        return _TENS[node.value]

    def visit_num_one(self, node, children):
        return 1

    def visit_num_tens_unit(self, node, children):
        return sum(_numbers(children))

    def visit_num_small(self, node, children):
        return _first_number(children)

    def visit_num_hundreds(self, node, children):
        found = _numbers(children)
        return found[0] * 100 + (found[1] if len(found) > 1 else 0)

    def visit_num_below_thousand(self, node, children):
        return _first_number(children)

    def visit_num_thousands(self, node, children):
        found = _numbers(children)
        return found[0] * 1000 + (found[1] if len(found) > 1 else 0)

    def visit_num_words(self, node, children):
        return _first_number(children)

    def visit_num_sign(self, node, children):
        return ("sign", -1)

    def visit_number(self, node, children):
        value = _first_number(children)
        return -value if _tagged(children, "sign") else value

    # --- clock times ---

    def visit_time_named(self, node, children):
        return ("clock", _NAMED_TIMES[node.value])

    def visit_time_hour(self, node, children):
        return ("hour", int(node.value))

    def visit_time_minute(self, node, children):
        return ("minute", int(node.value[1:]))

    def visit_time_meridiem(self, node, children):
        return ("meridiem", "pm" if node.value.startswith("p") else "am")

    def visit_time_clock(self, node, children):
        hour = _tagged(children, "hour")
        minute = _tagged(children, "minute")
        meridiem = _tagged(children, "meridiem")
        if minute is None and meridiem is None:
            # A bare "3" is a number, not a time
            raise ValueError("clock time needs minutes or am/pm")
        if minute is not None and minute > 59:
            raise ValueError(f"minute {minute} out of range")
        if meridiem is None:
            if hour > 23:
                raise ValueError(f"hour {hour} out of range")
        else:
            if not 1 <= hour <= 12:
                raise ValueError(f"hour {hour} out of range for am/pm")
            hour = hour % 12 + (12 if meridiem == "pm" else 0)
        return ("clock", clock(hour, minute or 0))

    def visit_clock_time(self, node, children):
        value = _tagged(children, "clock")
        if value is None:
            raise ValueError("no clock time")
        return value

    # --- durations ---

    def visit_dur_unit(self, node, children):
        return ("unit", _DURATION_UNITS[node.value])

    def visit_dur_part(self, node, children):
        amount = _first_number(children)
        unit = _tagged(children, "unit")
        return ("part", timedelta(**{unit: amount}))

    def visit_duration(self, node, children):
        total = timedelta()
        for c in _flatten(children):
            if isinstance(c, tuple) and c[0] == "part":
                total += c[1]
        return total


# ==========================================
# PARSER CACHE
# ==========================================
# One lazily built parser per grammar, shared by every session. Arpeggio
# parser state is not thread-safe, so parse() runs under _PARSER_LOCK.

_ROOTS = {"number": number, "time": clock_time, "duration": duration}
_PARSERS: Dict[str, ParserPython] = {}
_PARSER_LOCK = threading.Lock()

# Evaluate runs once per close-here fork, i.e. once per typed prefix, so
# results are cached by (grammar, text). Values are immutable.
_VALUE_CACHE: "OrderedDict[Tuple[str, str], Any]" = OrderedDict()
_VALUE_CACHE_MAX_SIZE = 2048
_VALUE_CACHE_LOCK = threading.Lock()


def _get_or_create_parser(name: str) -> ParserPython:
    """Caller holds _PARSER_LOCK."""
    parser = _PARSERS.get(name)
    if parser is None:
        parser = ParserPython(_ROOTS[name], ignore_case=False)
        _PARSERS[name] = parser
    return parser


def parse_value(name: str, text: str) -> Any:
    """
    Parse `text` with one of the built-in grammars ("number", "time",
    "duration").

    Returns:
        the parsed value, or NO_MATCH when the text is not one
    """
    if not text or text != text.strip():
        return NO_MATCH
    key = (name, text.lower())

    with _VALUE_CACHE_LOCK:
        if key in _VALUE_CACHE:
            _VALUE_CACHE.move_to_end(key)
            return _VALUE_CACHE[key]

    with _PARSER_LOCK:
        parser = _get_or_create_parser(name)
        try:
            tree = parser.parse(key[1])
        except NoMatch:
            tree = None
    if tree is None:
        value = NO_MATCH
    else:
        try:
            value = visit_parse_tree(tree, ValueVisitor())
        except ValueError as e:
            _debug_print(f"[phrasal.values] {name} {text!r} rejected: {e}")
            value = NO_MATCH

    with _VALUE_CACHE_LOCK:
        if len(_VALUE_CACHE) >= _VALUE_CACHE_MAX_SIZE:
            _VALUE_CACHE.popitem(last=False)
        _VALUE_CACHE[key] = value
    return value


# ==========================================
# PREFIX FILTERS
# ==========================================
# accepts() runs after every consumed character and must never reject a
# prefix of valid input; it only prunes threads that cannot recover.

_NUMBER_CHARS = re.compile(r"[-a-z0-9. ]*")
_TIME_CHARS = re.compile(r"[0-9:. apmnoidyght]*")
_DURATION_CHARS = re.compile(r"[-a-z0-9., ]*")
_WORD_SPLIT = re.compile(r"[\s\-]+")


def _no_leading_space(text: str) -> bool:
    return bool(text) and not text[0].isspace()


def _words_could_continue(text: str, vocabulary) -> bool:
    """Every finished word is known; the last one is a prefix of a known word."""
    words = _WORD_SPLIT.split(text)
    *done, last = words
    for word in done:
        if word and not word.isdigit() and word not in vocabulary:
            return False
    if not last or last[0].isdigit():
        return True
    return any(v.startswith(last) for v in vocabulary)


def _number_prefix(text: str, context: Any) -> bool:
    lowered = text.lower()
    if not _no_leading_space(text) or not _NUMBER_CHARS.fullmatch(lowered):
        return False
    return _words_could_continue(lowered, _NUMBER_WORDS)


def _time_prefix(text: str, context: Any) -> bool:
    return _no_leading_space(text) and bool(_TIME_CHARS.fullmatch(text.lower()))


def _duration_prefix(text: str, context: Any) -> bool:
    lowered = text.lower()
    if not _no_leading_space(text) or not _DURATION_CHARS.fullmatch(lowered):
        return False
    # "1h30m" style tokens mix digits and unit letters; only check plain words
    words = [w for w in _WORD_SPLIT.split(lowered.replace(",", " ")) if w and w.isalpha()]
    vocabulary = _NUMBER_WORDS | set(_DURATION_UNITS)
    return all(any(v.startswith(w) for v in vocabulary) for w in words)


# ==========================================
# FACTORIES
# ==========================================


def string_value(
    max_length: Optional[int] = None,
    min_length: int = 1,
    category: str = "argument",
    placeholder: str = "string",
) -> DynamicValue:
    """Free text; the value is the text itself."""

    def evaluate(text, context):
        return text if text == text.strip() else NO_MATCH

    return DynamicValue(
        evaluate=evaluate,
        bounds=Bounds(min_length=min_length, max_length=max_length),
        category=category,
        placeholder=placeholder,
        accepts=lambda text, context: _no_leading_space(text),
    )


def integer_value(
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
    category: str = "number",
    placeholder: str = "integer",
) -> DynamicValue:
    """Whole numbers in digits or English words, optionally range-limited."""

    def evaluate(text, context):
        value = parse_value("number", text)
        if value is NO_MATCH:
            return NO_MATCH
        if isinstance(value, float):
            if not value.is_integer():
                return NO_MATCH
            value = int(value)
        if minimum is not None and value < minimum:
            return NO_MATCH
        if maximum is not None and value > maximum:
            return NO_MATCH
        return value

    return DynamicValue(
        evaluate=evaluate,
        bounds=Bounds(min_length=1),
        category=category,
        placeholder=placeholder,
        accepts=_number_prefix,
    )


def number_value(category: str = "number", placeholder: str = "number") -> DynamicValue:
    """Integers or decimals ("2.5"); words yield ints, digits keep their form."""
    return DynamicValue(
        evaluate=lambda text, context: parse_value("number", text),
        bounds=Bounds(min_length=1),
        category=category,
        placeholder=placeholder,
        accepts=_number_prefix,
    )


def time_value(category: str = "time", placeholder: str = "time") -> DynamicValue:
    return DynamicValue(
        evaluate=lambda text, context: parse_value("time", text),
        bounds=Bounds(min_length=1, max_length=12),
        category=category,
        placeholder=placeholder,
        accepts=_time_prefix,
    )


def duration_value(category: str = "duration", placeholder: str = "duration") -> DynamicValue:
    return DynamicValue(
        evaluate=lambda text, context: parse_value("duration", text),
        bounds=Bounds(min_length=1),
        category=category,
        placeholder=placeholder,
        accepts=_duration_prefix,
    )


def context_value(path: str, category: str = "context") -> DynamicValue:
    """
    Reads no input; produces whatever the context holds at `path`
    (clipboard contents, the current time, a finished lookup). A missing
    path prunes the thread.
    """

    def evaluate(context):
        if not context.has(path):
            return NO_MATCH
        return context.get(path)

    return DynamicValue(evaluate=evaluate, consumes=False, category=category, placeholder=path)


def _entries(context: Any, path: str) -> Tuple[Tuple[str, Any], ...]:
    collection = context.get(path)
    if isinstance(collection, Mapping):
        return tuple((str(k), v) for k, v in collection.items())
    if isinstance(collection, (tuple, list, frozenset, set)):
        return tuple((str(v), v) for v in collection)
    return ()


def lookup_value(path: str, category: str = "lookup", placeholder: Optional[str] = None) -> DynamicValue:
    """
    Matches one entry of the collection stored at `path` in the context.

    A mapping contributes its keys as the matchable names and its values as
    results; a sequence contributes each item as both. Matching uses the
    same folding as literals and is pruned per character.
    """

    def evaluate(text, context):
        folded = fold_text(text)
        for name, value in _entries(context, path):
            if fold_text(name) == folded:
                return value
        return NO_MATCH

    def accepts(text, context):
        folded = fold_text(text)
        return any(fold_text(name).startswith(folded) for name, _value in _entries(context, path))

    return DynamicValue(
        evaluate=evaluate,
        bounds=Bounds(min_length=1),
        category=category,
        placeholder=placeholder or path.rsplit(".", 1)[-1],
        accepts=accepts,
    )


__all__ = [
    "string_value",
    "integer_value",
    "number_value",
    "time_value",
    "duration_value",
    "context_value",
    "lookup_value",
    "parse_value",
    "ValueVisitor",
]
