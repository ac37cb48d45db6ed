#!/usr/bin/env python3
"""
life-orbit demo: capture, dedupe, search, export.

No LLM needed. No API keys. Just run it.
Set GEMINI_API_KEY to classify with Gemini instead of the default verdict.
"""

import logging
import os
import tempfile

from life_orbit import Orbit, OrbitLevel, gemini_classify, gemini_embed


def header(text):
    print(f"\n{'='*64}")
    print(f"  {text}")
    print(f"{'='*64}\n")


def show(orbit):
    for level in (OrbitLevel.SURVIVAL, OrbitLevel.GROWTH, OrbitLevel.VISION):
        thoughts = [t for t in orbit.thoughts() if t.level is level]
        print(f"  [{level.value}] {len(thoughts)}")
        for t in thoughts:
            mark = "x" if t.completed else " "
            print(f"    [{mark}] {t.content[:50]:<50} <- {len(t.connections)} links")
    print()


def main():
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    api_key = os.getenv("GEMINI_API_KEY")
    kwargs = {}
    if api_key:
        kwargs = {"embed_fn": gemini_embed(api_key), "classify_fn": gemini_classify(api_key)}

    orbit = Orbit(db_path, **kwargs)
    orbit.subscribe(lambda e: print(f"    · {e.kind.value:<6} {e.subject} {e.message}"))

    header("1. CAPTURE")
    for text in [
        "Pay the electricity bill",
        "Plan Gym Session for Thursday",
        "Learn Rust by building a CLI",
        "Open a small bookshop by the sea",
    ]:
        result = orbit.capture(text)
        print(f"  {result.status.value:<9} {text} -> {result.thought.level.value}")
        for reason in result.reasons:
            print(f"            ({reason.value})")

    header("2. DUPLICATE")
    result = orbit.capture("Plan Gym Session for Thursday")
    print(f"  {result.status.value}: already stored as {result.duplicate_of}")

    header("3. SEARCH")
    for t in orbit.search("gym session", threshold=0.3):
        print(f"  {t.similarity:.2f}  {t.content}")
    print(f"  literal 'RUST': {[t.content for t in orbit.search('RUST', semantic=False)]}")

    header("4. REORGANIZE")
    rust = orbit.search("rust", semantic=False)[0]
    orbit.move(rust.id, OrbitLevel.GROWTH)
    orbit.toggle_complete(orbit.search("electricity", semantic=False)[0].id)
    show(orbit)

    header("5. EXPORT")
    exported = orbit.export_json()
    print(f"  {len(exported)} bytes, {orbit.count} thoughts")

    orbit.close()
    os.unlink(db_path)


if __name__ == "__main__":
    main()
