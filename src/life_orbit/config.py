"""Tunables. Defaults match the behaviour of the original organizer."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields

DEFAULT_DIMENSIONS = 768           # text-embedding-004 / nomic-embed-text
DEFAULT_CONTEXT_K = 5
DEFAULT_DUPLICATE_THRESHOLD = 0.96
DEFAULT_SEARCH_LIMIT = 5
DEFAULT_SEARCH_THRESHOLD = 0.5


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class OrbitConfig:
    dimensions: int = DEFAULT_DIMENSIONS
    context_k: int = DEFAULT_CONTEXT_K
    duplicate_threshold: float = DEFAULT_DUPLICATE_THRESHOLD
    search_limit: int = DEFAULT_SEARCH_LIMIT
    search_threshold: float = DEFAULT_SEARCH_THRESHOLD
    semantic_search: bool = True

    def __post_init__(self) -> None:
        if self.dimensions <= 0:
            raise ValueError(f"dimensions must be positive, got {self.dimensions}")
        if self.context_k < 0:
            raise ValueError(f"context_k must be >= 0, got {self.context_k}")
        if self.search_limit < 0:
            raise ValueError(f"search_limit must be >= 0, got {self.search_limit}")

    @classmethod
    def from_env(cls, prefix: str = "LIFE_ORBIT_", **overrides) -> OrbitConfig:
        """Build a config from environment variables.

        LIFE_ORBIT_DIMENSIONS=384 LIFE_ORBIT_SEMANTIC_SEARCH=false ...
        Explicit keyword overrides win over the environment.
        """
        values: dict = {}
        for f in fields(cls):
            raw = os.getenv(prefix + f.name.upper())
            if raw is None:
                continue
            if f.type in ("bool", bool):
                values[f.name] = _parse_bool(raw)
            elif f.type in ("int", int):
                values[f.name] = int(raw)
            else:
                values[f.name] = float(raw)
        values.update(overrides)
        return cls(**values)
