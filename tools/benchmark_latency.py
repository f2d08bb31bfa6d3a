#!/usr/bin/env python3
"""
Phrasal Latency Benchmark

Measures per-keystroke step time ONLY.

INCLUDED:
  - Thread set expansion and consumption
  - Dynamic value evaluation (built-in values)
  - Result synthesis and candidate reporting

EXCLUDED:
  - Session start (grammar generation, registry snapshot)
  - Rendering of suggestions
  - Executors
"""

import time
import statistics
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from phrasal import Argument, Choice, EngineConfig, ExtensionRegistry, Literal, Phrase, PhraseRuntime, Sequence
from phrasal.values import duration_value, integer_value, string_value, time_value


def commands(ctx):
    return Choice([
        Phrase("tweet", lambda c: Sequence([Literal("tweet "), Argument("message", string_value(max_length=280))])),
        Phrase("volume", lambda c: Sequence([Literal("set volume to "), Argument("level", integer_value(0, 100))])),
        Phrase("remind", lambda c: Sequence([
            Literal("remind me to "),
            Argument("task", string_value()),
            Choice([
                Sequence([Literal(" in "), Argument("after", duration_value())]),
                Sequence([Literal(" at "), Argument("at", time_value())]),
            ]),
        ])),
    ])


def benchmark(runtime: PhraseRuntime, text: str, iterations: int = 200) -> dict:
    """Benchmark typing `text` one character at a time."""
    times_us = []

    for _ in range(iterations):
        handle = runtime.start()
        for ch in text:
            start = time.perf_counter_ns()
            runtime.advance(handle, ch)
            end = time.perf_counter_ns()
            times_us.append((end - start) / 1000)  # ns → µs
        runtime.end(handle)

    n = len(times_us)
    ordered = sorted(times_us)
    return {
        "steps": n,
        "mean_us": statistics.mean(times_us),
        "median_us": statistics.median(times_us),
        "stdev_us": statistics.stdev(times_us) if n > 1 else 0,
        "min_us": ordered[0],
        "max_us": ordered[-1],
        "p95_us": ordered[int(n * 0.95)],
        "p99_us": ordered[int(n * 0.99)],
    }


def main():
    print("=" * 70)
    print("PHRASAL KEYSTROKE LATENCY BENCHMARK")
    print("=" * 70)
    print()
    print("INCLUDED: Expansion, consumption, value evaluation, synthesis, candidates")
    print("EXCLUDED: Session start, rendering, execution")
    print()

    registry = ExtensionRegistry()
    for i in range(20):
        registry.register("tweet", Phrase(f"addon{i:02d}", lambda c, i=i: Literal(f"post to service {i} ")))
    runtime = PhraseRuntime(commands, registry=registry, config=EngineConfig(keep_history=False))

    cases = [
        ("Free text", "tweet the quick brown fox jumps over the lazy dog"),
        ("Number words", "set volume to seventy-five"),
        ("Ambiguous free text + duration", "remind me to call in the morning in 2 hours 30 minutes"),
        ("Clock time", "remind me to stretch at 7:05 pm"),
    ]

    iterations = 200
    print(f"Iterations per case: {iterations}")
    print()

    for name, text in cases:
        print(f"Input: {text[:50]}{'...' if len(text) > 50 else ''}")
        stats = benchmark(runtime, text, iterations)
        print(f"  {name}")
        print(f"  Mean:   {stats['mean_us']:>7.1f} µs")
        print(f"  Median: {stats['median_us']:>7.1f} µs")
        print(f"  P95:    {stats['p95_us']:>7.1f} µs")
        print(f"  P99:    {stats['p99_us']:>7.1f} µs")
        print(f"  Max:    {stats['max_us']:>7.1f} µs")
        print()

    print("Note: First session may be slower (grammar parser warmup).")


if __name__ == "__main__":
    main()
