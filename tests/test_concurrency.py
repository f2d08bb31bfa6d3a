import unittest
import threading
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from phrasal.nodes import Argument, Choice, Literal, Phrase, Sequence
from phrasal.config import EngineConfig
from phrasal.extension_registry import ExtensionRegistry
from phrasal.runtime import PhraseRuntime
from phrasal.values import duration_value, string_value


def commands(ctx):
    return Choice([
        Phrase("tweet", lambda c: Sequence([Literal("tweet "), Argument("message", string_value())])),
        Phrase("timer", lambda c: Sequence([Literal("timer "), Argument("length", duration_value())])),
        Phrase("open", lambda c: Sequence([
            Literal("open "),
            Argument("app", Phrase("application", lambda c2: Literal("notes", value="Notes"))),
        ])),
    ])


class TestSessionConcurrency(unittest.TestCase):
    """
    Sessions share only the registry snapshot; parsing from many threads at
    once must give the same answers as parsing serially.
    """

    def test_concurrent_sessions(self):
        registry = ExtensionRegistry()
        registry.register("application", Phrase("website", lambda c: Literal("google.com", value="g")))
        runtime = PhraseRuntime(commands, registry=registry, config=EngineConfig())
        inputs = ["tweet hello there", "timer 2 hours 30 minutes", "open google.com", "open notes"]
        expected = {text: [c.fingerprint for c in runtime.parse(text).completed] for text in inputs}

        exceptions = []
        results = []

        def runner(text):
            try:
                handle = runtime.start()
                for ch in text:
                    step = runtime.advance(handle, ch)
                runtime.end(handle)
                results.append((text, [c.fingerprint for c in step.completed]))
            except Exception as e:
                exceptions.append(e)

        threads = []
        for i in range(20):
            t = threading.Thread(target=runner, args=(inputs[i % len(inputs)],))
            threads.append(t)
            t.start()

        for t in threads:
            t.join()

        self.assertEqual(len(exceptions), 0, f"Exceptions occurred: {exceptions}")
        self.assertEqual(len(results), 20)
        for text, fps in results:
            self.assertEqual(fps, expected[text], text)
        self.assertEqual(runtime.active_sessions, 0)

    def test_registry_writes_during_parsing(self):
        registry = ExtensionRegistry()
        runtime = PhraseRuntime(commands, registry=registry, config=EngineConfig())
        errors = []

        def writer():
            try:
                for i in range(50):
                    registry.register("application", Phrase(f"site{i:02d}", lambda c, i=i: Literal(f"site{i:02d}.com")))
            except Exception as e:
                errors.append(e)

        def reader():
            try:
                for _ in range(20):
                    step = runtime.parse("open notes")
                    assert step.completed[0].result == {"app": "Notes"}
            except Exception as e:
                errors.append(e)

        workers = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(4)]
        for w in workers:
            w.start()
        for w in workers:
            w.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(registry), 50)


if __name__ == "__main__":
    unittest.main()
