"""Vector math. Undefined similarity means "no relation", never an error."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """Cosine similarity in [-1, 1].

    Returns exactly 0.0 when either vector is missing or empty, when the
    lengths differ, when either vector has zero norm, or when a
    component is NaN or infinite.
    """
    if a is None or b is None:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.size == 0 or va.shape != vb.shape:
        return 0.0

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    sim = float(np.dot(va, vb) / (norm_a * norm_b))
    if not math.isfinite(sim):
        return 0.0
    # Rounding can push |sim| a hair past 1.0
    return max(-1.0, min(1.0, sim))


def zero_vector(dims: int) -> list[float]:
    return [0.0] * dims


def is_zero(vector: Sequence[float] | None) -> bool:
    if vector is None or len(vector) == 0:
        return True
    return not np.any(np.asarray(vector, dtype=np.float64))
