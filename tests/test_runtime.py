import unittest
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from phrasal.nodes import Argument, Bounds, Choice, DynamicValue, Literal, Phrase, Sequence
from phrasal.config import EngineConfig
from phrasal.context import ContextProvider, ParseContext
from phrasal.extension_registry import ExtensionRegistry
from phrasal.runtime import PhraseRuntime, SessionHandle, StepResult
from phrasal.errors import (
    MalformedNodeError,
    SelfExtensionError,
    SessionError,
    SessionFailedError,
    UnknownSessionError,
)
from phrasal.values import context_value, string_value


def tweet(ctx):
    return Sequence([Literal("tweet "), Argument("message", string_value(max_length=140))])


def applications(ctx):
    return Choice([Literal("safari", value="Safari"), Literal("notes", value="Notes")])


def open_app(ctx):
    return Sequence([Literal("open "), Argument("app", Phrase("application", applications))])


def commands(ctx):
    return Choice([Phrase("tweet", tweet), Phrase("open", open_app)])


def fingerprints(step):
    return [c.fingerprint for c in step.completed]


class TestSessionLifecycle(unittest.TestCase):

    def setUp(self):
        self.runtime = PhraseRuntime(commands, config=EngineConfig())

    def test_tweet_session(self):
        handle = self.runtime.start()
        self.assertIsInstance(handle, SessionHandle)
        step = self.runtime.advance(handle, "tweet ")
        self.assertEqual(step.completed, ())
        self.assertTrue(step.alive)
        self.assertFalse(step.can_submit)
        self.assertEqual([c.text for c in step.partial], ["string"])

        step = self.runtime.advance(handle, "hello")
        self.assertIsInstance(step, StepResult)
        self.assertEqual(step.text, "tweet hello")
        self.assertEqual(len(step.completed), 1)
        self.assertEqual(step.completed[0].result, {"message": "hello"})
        self.assertEqual(step.completed[0].phrase, "tweet")
        self.assertTrue(step.can_submit)
        self.assertTrue(self.runtime.end(handle))

    def test_empty_input_suggests_roots(self):
        handle = self.runtime.start()
        step = self.runtime.result(handle)
        self.assertEqual(step.text, "")
        self.assertEqual([c.text for c in step.partial], ["tweet ", "open "])
        self.runtime.end(handle)

    def test_dead_input(self):
        step = self.runtime.parse("launch")
        self.assertFalse(step.alive)
        self.assertEqual(step.partial, ())

    def test_unfillable_value_is_not_alive(self):
        grammar = Sequence([Literal("go"), Argument("x", DynamicValue(evaluate=lambda t, c: t, bounds=Bounds(0, 0)))])
        step = PhraseRuntime(grammar, config=EngineConfig()).parse("go")
        self.assertEqual(step.completed, ())
        self.assertEqual(step.partial, ())
        self.assertFalse(step.alive)
        self.assertFalse(step.can_submit)

    def test_unknown_and_ended_handles(self):
        bogus = SessionHandle(id="nope", started_at_ms=0, registry_version=0, context_hash="")
        with self.assertRaises(UnknownSessionError):
            self.runtime.advance(bogus, "t")
        handle = self.runtime.start()
        self.assertTrue(self.runtime.end(handle))
        self.assertFalse(self.runtime.end(handle))
        with self.assertRaises(UnknownSessionError):
            self.runtime.advance(handle, "t")

    def test_parse_leaves_no_session(self):
        self.runtime.parse("open notes")
        self.assertEqual(self.runtime.active_sessions, 0)

    def test_increment_must_be_text(self):
        handle = self.runtime.start()
        with self.assertRaises(TypeError):
            self.runtime.advance(handle, 5)
        self.runtime.end(handle)

    def test_to_dict(self):
        data = self.runtime.parse("open notes").to_dict()
        self.assertEqual(data["completed"][0]["result"], {"app": "Notes"})
        self.assertEqual(data["completed"][0]["consumed_text"], "open notes")
        self.assertTrue(data["can_submit"])

    def test_bad_grammar(self):
        with self.assertRaises(MalformedNodeError):
            PhraseRuntime("tweet")
        runtime = PhraseRuntime(lambda ctx: None)
        with self.assertRaises(SessionFailedError) as caught:
            runtime.start()
        self.assertIsInstance(caught.exception.__cause__, MalformedNodeError)
        self.assertEqual(runtime.active_sessions, 0)


class TestIncrementality(unittest.TestCase):

    def setUp(self):
        self.runtime = PhraseRuntime(commands, config=EngineConfig())

    def test_any_split_gives_same_completions(self):
        text = "tweet open notes"
        whole = fingerprints(self.runtime.parse(text))
        self.assertEqual(len(whole), 1)
        for cut in range(len(text) + 1):
            handle = self.runtime.start()
            self.runtime.advance(handle, text[:cut])
            step = self.runtime.advance(handle, text[cut:])
            self.runtime.end(handle)
            self.assertEqual(fingerprints(step), whole, f"split at {cut}")

    def test_character_by_character(self):
        text = "open safari"
        handle = self.runtime.start()
        for ch in text:
            step = self.runtime.advance(handle, ch)
        self.runtime.end(handle)
        self.assertEqual(fingerprints(step), fingerprints(self.runtime.parse(text)))

    def test_deterministic_across_sessions(self):
        a = self.runtime.parse("tweet open safari")
        b = self.runtime.parse("tweet open safari")
        self.assertEqual(fingerprints(a), fingerprints(b))
        self.assertEqual([c.result for c in a.completed], [c.result for c in b.completed])


class TestRetreat(unittest.TestCase):

    def test_retreat_restores_earlier_state(self):
        runtime = PhraseRuntime(commands, config=EngineConfig())
        handle = runtime.start()
        runtime.advance(handle, "tweet hel")
        step = runtime.retreat(handle, 3)
        self.assertEqual(step.text, "tweet ")
        self.assertEqual(step.completed, ())
        step = runtime.advance(handle, "bye")
        self.assertEqual(step.completed[0].result, {"message": "bye"})

    def test_retreat_to_start(self):
        runtime = PhraseRuntime(commands, config=EngineConfig())
        handle = runtime.start()
        runtime.advance(handle, "open")
        step = runtime.retreat(handle, 4)
        self.assertEqual(step.text, "")
        self.assertEqual(len(step.partial), 2)

    def test_retreat_bounds(self):
        runtime = PhraseRuntime(commands, config=EngineConfig())
        handle = runtime.start()
        runtime.advance(handle, "op")
        with self.assertRaises(ValueError):
            runtime.retreat(handle, 3)

    def test_retreat_needs_history(self):
        runtime = PhraseRuntime(commands, config=EngineConfig(keep_history=False))
        handle = runtime.start()
        runtime.advance(handle, "op")
        with self.assertRaises(SessionError):
            runtime.retreat(handle, 1)


class TestRegistryInteraction(unittest.TestCase):

    def test_self_extension_blocks_before_session(self):
        registry = ExtensionRegistry()
        app = Phrase("application", applications)
        runtime = PhraseRuntime(commands, registry=registry)
        with self.assertRaises(SelfExtensionError):
            registry.register(app, app)
        self.assertEqual(runtime.active_sessions, 0)

    def test_extension_broadens_existing_phrase(self):
        registry = ExtensionRegistry()
        registry.register("application", Phrase("website", lambda ctx: Literal("google.com", value="https://google.com")))
        runtime = PhraseRuntime(commands, registry=registry)
        step = runtime.parse("open google.com")
        self.assertEqual(step.completed[0].result, {"app": "https://google.com"})
        self.assertEqual(step.completed[0].phrase, "open")

    def test_mid_session_registration_is_invisible(self):
        registry = ExtensionRegistry()
        runtime = PhraseRuntime(commands, registry=registry)
        handle = runtime.start()
        runtime.advance(handle, "open ")
        registry.register("application", Phrase("website", lambda ctx: Literal("google.com")))
        step = runtime.advance(handle, "google.com")
        self.assertFalse(step.alive)
        runtime.end(handle)

        fresh = runtime.start()
        self.assertEqual(fresh.registry_version, registry.version)
        self.assertTrue(runtime.advance(fresh, "open google.com").can_submit)
        runtime.end(fresh)


class TestFailures(unittest.TestCase):

    def test_expansion_limit_fails_only_that_session(self):
        def loop(ctx):
            return Choice([Phrase("loop", loop), Literal("y")])

        grammar = Choice([Sequence([Literal("x"), Phrase("loop", loop)]), Literal("z")])
        runtime = PhraseRuntime(grammar, config=EngineConfig(max_expansions=100))
        bad = runtime.start()
        good = runtime.start()
        with self.assertRaises(SessionFailedError):
            runtime.advance(bad, "x")
        with self.assertRaises(UnknownSessionError):
            runtime.advance(bad, "y")
        self.assertTrue(runtime.advance(good, "z").can_submit)
        self.assertEqual(runtime.active_sessions, 1)

    def test_bad_generator_mid_session(self):
        grammar = Sequence([Literal("x"), Phrase("bad", lambda ctx: "not a node")])
        runtime = PhraseRuntime(grammar, config=EngineConfig())
        handle = runtime.start()
        with self.assertRaises(SessionFailedError):
            runtime.advance(handle, "x")
        self.assertEqual(runtime.active_sessions, 0)

    def test_bad_generator_while_seeding(self):
        runtime = PhraseRuntime(Phrase("bad", lambda ctx: "not a node"), config=EngineConfig())
        with self.assertRaises(SessionFailedError) as caught:
            runtime.start()
        self.assertIsInstance(caught.exception.__cause__, MalformedNodeError)
        self.assertEqual(runtime.active_sessions, 0)

    def test_raising_fault_handler_keeps_session_running(self):
        def boom(text, ctx):
            raise RuntimeError("lookup failed")

        def broken_handler(fault):
            raise ValueError("handler broke")

        grammar = Choice([DynamicValue(evaluate=boom, bounds=Bounds(1, 1)), Literal("a")])
        runtime = PhraseRuntime(grammar, fault_handler=broken_handler, config=EngineConfig())
        handle = runtime.start()
        step = runtime.advance(handle, "a")
        self.assertTrue(step.can_submit)
        self.assertEqual(len(step.completed), 1)
        self.assertEqual(runtime.active_sessions, 1)
        runtime.end(handle)

    def test_faults_reach_handler(self):
        faults = []

        def flaky(text, ctx):
            raise ConnectionError("lookup service down")

        grammar = Choice([
            Sequence([Literal("weather "), Argument("city", DynamicValue(evaluate=flaky, placeholder="city"))]),
            Sequence([Literal("weather "), Argument("city", string_value())]),
        ])
        runtime = PhraseRuntime(grammar, fault_handler=faults.append, config=EngineConfig())
        step = runtime.parse("weather oslo")
        self.assertEqual(len(step.completed), 1)
        self.assertTrue(faults)
        self.assertTrue(all(f.label == "city" for f in faults))


class TestContext(unittest.TestCase):

    def paste(self, ctx):
        return Sequence([Literal("paste"), Argument("text", context_value("clipboard"))])

    def test_provider_snapshot_at_start(self):
        provider = ContextProvider({"clipboard": "hello"})
        runtime = PhraseRuntime(self.paste, context_provider=provider, config=EngineConfig())
        handle = runtime.start()
        provider.update({"clipboard": "changed"})
        step = runtime.advance(handle, "paste")
        self.assertEqual(step.completed[0].result, {"text": "hello"})
        self.assertEqual(handle.context_hash, ParseContext.from_data({"clipboard": "hello"}).context_hash)
        runtime.end(handle)

    def test_explicit_context_and_step_override(self):
        runtime = PhraseRuntime(self.paste, config=EngineConfig())
        handle = runtime.start({"clipboard": "first"})
        step = runtime.advance(handle, "paste", context={"clipboard": "second"})
        self.assertEqual(step.completed[0].result, {"text": "second"})
        runtime.end(handle)

    def test_missing_context_prunes(self):
        runtime = PhraseRuntime(self.paste, config=EngineConfig())
        step = runtime.parse("paste")
        self.assertFalse(step.alive)

    def test_generator_sees_context(self):
        def grammar(ctx):
            names = ctx.get("contacts", ())
            return Sequence([Literal("call "), Argument("who", Choice([Literal(n, value=n) for n in names] or [Literal("nobody")]))])

        runtime = PhraseRuntime(grammar, config=EngineConfig())
        step = runtime.parse("call ada", context={"contacts": ["ada", "grace"]})
        self.assertEqual(step.completed[0].result, {"who": "ada"})


class TestHandOff(unittest.TestCase):

    def test_executor_receives_phrase_and_result(self):
        runtime = PhraseRuntime(commands, config=EngineConfig())
        step = runtime.parse("open notes")
        calls = []
        out = runtime.hand_off(step.completed[0], lambda phrase, result: calls.append((phrase, result)) or "done")
        self.assertEqual(out, "done")
        self.assertEqual(calls, [("open", {"app": "Notes"})])

    def test_hand_off_requires_completion(self):
        with self.assertRaises(TypeError):
            PhraseRuntime.hand_off({"app": "Notes"}, print)


if __name__ == "__main__":
    unittest.main()
