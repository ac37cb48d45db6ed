"""Memory index: a ranking view over a snapshot of thoughts. Nothing here is persisted."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from life_orbit.models import Thought
from life_orbit.vectors import cosine_similarity

Scored = tuple[Thought, float]


def rank(query_vector: Sequence[float], candidates: Iterable[Thought]) -> list[Scored]:
    """Score every candidate that carries a vector, best first.

    Candidates without a vector are skipped entirely. The sort is stable,
    so equal scores keep the order the candidates were given in.
    """
    scored = [
        (thought, cosine_similarity(query_vector, thought.vector))
        for thought in candidates
        if thought.vector
    ]
    scored.sort(key=lambda x: x[1], reverse=True)
    return scored


def retrieve_top_k(query_vector: Sequence[float], candidates: Iterable[Thought],
                   k: int, min_threshold: float = -math.inf) -> list[Scored]:
    """At most k entries of rank(), each scoring >= min_threshold."""
    if k <= 0:
        return []
    return [
        (thought, score)
        for thought, score in rank(query_vector, candidates)
        if score >= min_threshold
    ][:k]


class MemoryIndex:
    """Snapshot of the store, frozen at construction.

    Build a fresh one for every query; later writes to the store are not
    seen by an existing index.
    """

    def __init__(self, thoughts: Iterable[Thought]) -> None:
        self._thoughts = tuple(thoughts)

    def rank(self, query_vector: Sequence[float]) -> list[Scored]:
        return rank(query_vector, self._thoughts)

    def top_k(self, query_vector: Sequence[float], k: int,
              min_threshold: float = -math.inf) -> list[Scored]:
        return retrieve_top_k(query_vector, self._thoughts, k, min_threshold)

    @property
    def thoughts(self) -> tuple[Thought, ...]:
        return self._thoughts

    def __len__(self) -> int:
        return len(self._thoughts)

    def __repr__(self) -> str:
        return f"MemoryIndex(thoughts={len(self)})"
