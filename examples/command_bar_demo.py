#!/usr/bin/env python3
"""
Command Bar Demo

Simulates a launcher command bar: each keystroke advances one parse session
and prints what a suggestion UI would show.

Shows:
- Incremental suggestions (literal completions and value placeholders)
- Ambiguity (several completed derivations for one input)
- An add-on extending the "application" phrase without touching it
- Hand-off of the chosen result to an executor

Run:
    python examples/command_bar_demo.py
    python examples/command_bar_demo.py "remind me to stretch in 20 minutes"
"""

import sys
from pathlib import Path

# Ensure phrasal is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from phrasal import Argument, Choice, ContextProvider, ExtensionRegistry, Literal, Phrase, PhraseRuntime, Sequence
from phrasal.values import context_value, duration_value, lookup_value, string_value, time_value


# ==========================================
# GRAMMAR
# ==========================================

def application(ctx):
    return Argument("app", lookup_value("apps", category="application", placeholder="application"))


def open_app(ctx):
    return Sequence([Literal("open "), Phrase("application", application)])


def tweet(ctx):
    return Choice([
        Sequence([Literal("tweet "), Argument("message", string_value(max_length=280, placeholder="message"))]),
        Sequence([Literal("tweet clipboard"), Argument("message", context_value("clipboard"))]),
    ])


def remind(ctx):
    return Sequence([
        Literal("remind me to "),
        Argument("task", string_value(placeholder="task")),
        Choice([
            Sequence([Literal(" in "), Argument("after", duration_value())]),
            Sequence([Literal(" at "), Argument("at", time_value())]),
        ]),
    ])


def commands(ctx):
    return Choice([
        Phrase("open", open_app),
        Phrase("tweet", tweet),
        Phrase("remind", remind),
    ])


def website(ctx):
    return Sequence([Literal("http://", category="link"), Argument("url", string_value(placeholder="address"))])


# ==========================================
# EXECUTOR (external collaborator)
# ==========================================

def execute(phrase, result):
    print(f"  -> executing {phrase!r} with {result!r}")
    return True


def show(step):
    print(f"{step.text!r}")
    for c in step.partial:
        label = f"<{c.text}>" if c.placeholder else c.text
        print(f"    next: {label:<22} [{c.category}]")
    for c in step.completed:
        print(f"    done: {c.result!r} via {c.phrase}")
    if not step.alive:
        print("    (no interpretation)")


def main():
    provider = ContextProvider({
        "clipboard": "shipping phrasal today",
        "apps": {"Safari": "com.apple.Safari", "Notes": "com.apple.Notes", "Terminal": "com.apple.Terminal"},
    })
    registry = ExtensionRegistry()
    # Add-on: anything that accepts an application also accepts a URL
    registry.register("application", Phrase("website", website))

    runtime = PhraseRuntime(commands, registry=registry, context_provider=provider)

    text = sys.argv[1] if len(sys.argv) > 1 else "tweet clipboard"
    handle = runtime.start()
    show(runtime.result(handle))
    for ch in text:
        step = runtime.advance(handle, ch)
        show(step)
    runtime.end(handle)

    if step.completed:
        print()
        runtime.hand_off(step.completed[0], execute)


if __name__ == "__main__":
    main()
