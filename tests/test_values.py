import unittest
import sys
import os
from datetime import time, timedelta

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from phrasal.nodes import NO_MATCH, Argument, Literal, Sequence
from phrasal.context import ParseContext
from phrasal.engine import DerivationEngine
from phrasal.synthesizer import synthesize
from phrasal.values import (
    duration_value,
    integer_value,
    lookup_value,
    number_value,
    parse_value,
    string_value,
    time_value,
)


def results(root, text, context=None):
    engine = DerivationEngine(context=ParseContext.from_data(context or {}))
    threads = engine.feed(engine.seed(root), text)
    return [synthesize(t, text).result for t in threads if t.completed]


class TestNumberGrammar(unittest.TestCase):

    def test_digits(self):
        self.assertEqual(parse_value("number", "42"), 42)
        self.assertEqual(parse_value("number", "-7"), -7)
        self.assertEqual(parse_value("number", "2.5"), 2.5)

    def test_words(self):
        cases = {
            "zero": 0,
            "twelve": 12,
            "Seventeen": 17,
            "twenty": 20,
            "twenty-one": 21,
            "ninety nine": 99,
            "a hundred": 100,
            "a hundred and five": 105,
            "three hundred forty": 340,
            "three thousand two hundred": 3200,
            "minus five": -5,
        }
        for text, expected in cases.items():
            with self.subTest(text=text):
                self.assertEqual(parse_value("number", text), expected)

    def test_rejects(self):
        for text in ["", " 5", "5 ", "twenty tw", "five apples", "hundred"]:
            with self.subTest(text=text):
                self.assertIs(parse_value("number", text), NO_MATCH)


class TestTimeGrammar(unittest.TestCase):

    def test_clock_times(self):
        cases = {
            "3pm": time(15, 0),
            "3 PM": time(15, 0),
            "15:30": time(15, 30),
            "7:05 a.m.": time(7, 5),
            "12am": time(0, 0),
            "12pm": time(12, 0),
            "noon": time(12, 0),
            "Midnight": time(0, 0),
        }
        for text, expected in cases.items():
            with self.subTest(text=text):
                self.assertEqual(parse_value("time", text), expected)

    def test_rejects(self):
        for text in ["3", "25:00", "13pm", "3:75", "0am", "noonish"]:
            with self.subTest(text=text):
                self.assertIs(parse_value("time", text), NO_MATCH)


class TestDurationGrammar(unittest.TestCase):

    def test_durations(self):
        cases = {
            "2 hours 30 minutes": timedelta(hours=2, minutes=30),
            "1h30m": timedelta(minutes=90),
            "an hour": timedelta(hours=1),
            "ninety seconds": timedelta(seconds=90),
            "1.5 hours": timedelta(minutes=90),
            "2 days and 5 minutes": timedelta(days=2, minutes=5),
            "1 week": timedelta(weeks=1),
        }
        for text, expected in cases.items():
            with self.subTest(text=text):
                self.assertEqual(parse_value("duration", text), expected)

    def test_rejects(self):
        for text in ["2", "2 parsecs", "hours"]:
            with self.subTest(text=text):
                self.assertIs(parse_value("duration", text), NO_MATCH)


class TestValueNodes(unittest.TestCase):

    def test_integer_in_command(self):
        root = Sequence([Literal("volume "), Argument("level", integer_value(minimum=0, maximum=100))])
        self.assertEqual(results(root, "volume twenty-one"), [{"level": 21}])
        self.assertEqual(results(root, "volume 80"), [{"level": 80}])
        self.assertEqual(results(root, "volume 101"), [])
        self.assertEqual(results(root, "volume 2.5"), [])

    def test_number_keeps_decimals(self):
        root = Argument("n", number_value())
        self.assertEqual(results(root, "2.5"), [{"n": 2.5}])

    def test_integer_prefix_pruning(self):
        engine = DerivationEngine()
        threads = engine.feed(engine.seed(integer_value()), "twenty x")
        self.assertEqual(threads, ())

    def test_time_in_command(self):
        root = Sequence([Literal("wake me at "), Argument("at", time_value())])
        self.assertEqual(results(root, "wake me at 7:05 am"), [{"at": time(7, 5)}])

    def test_duration_in_command(self):
        root = Sequence([Literal("timer "), Argument("length", duration_value())])
        self.assertEqual(results(root, "timer 1h30m"), [{"length": timedelta(minutes=90)}])

    def test_string_rejects_surrounding_space(self):
        root = Sequence([Literal("tweet "), Argument("message", string_value())])
        self.assertEqual(results(root, "tweet  hi"), [])
        self.assertEqual(results(root, "tweet hi"), [{"message": "hi"}])

    def test_lookup_mapping(self):
        ctx = {"apps": {"Safari": "com.apple.safari", "Notes": "com.apple.notes"}}
        root = Sequence([Literal("open "), Argument("app", lookup_value("apps"))])
        self.assertEqual(results(root, "open safari", ctx), [{"app": "com.apple.safari"}])
        self.assertEqual(results(root, "open saf", ctx), [])

    def test_lookup_prunes_unknown_prefix(self):
        ctx = ParseContext.from_data({"contacts": ["Ada", "Grace"]})
        engine = DerivationEngine(context=ctx)
        root = Sequence([Literal("call "), Argument("who", lookup_value("contacts"))])
        self.assertEqual(engine.feed(engine.seed(root), "call x"), ())
        threads = engine.feed(engine.seed(root), "call grace")
        self.assertEqual([synthesize(t, "call grace").result for t in threads if t.completed], [{"who": "Grace"}])

    def test_lookup_placeholder(self):
        self.assertEqual(lookup_value("lookups.contacts").label, "contacts")


if __name__ == "__main__":
    unittest.main()
