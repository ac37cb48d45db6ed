"""Embedding providers and the gateway that shields callers from their failures.

Built-in providers:
    numpy_embed(dims)        : zero-dependency hashing vectorizer (offline)
    ollama_embed(model)      : local Ollama server, sync + native async
    gemini_embed(api_key)    : Google text-embedding-004 over REST

Providers raise on failure. EmbeddingGateway never does: a failed call
becomes the zero vector, which scores 0 against everything and so quietly
disables retrieval for that one thought.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import urllib.parse
import warnings
from dataclasses import dataclass
from typing import Callable

import numpy as np

from life_orbit._http import apost_json, post_json
from life_orbit.config import DEFAULT_DIMENSIONS
from life_orbit.vectors import zero_vector

logger = logging.getLogger(__name__)

# Type alias: takes text, returns the embedding as a list of floats
EmbedFn = Callable[[str], list[float]]


# ── Built-in providers ──────────────────────────────────────────────────


def numpy_embed(dims: int = DEFAULT_DIMENSIONS) -> EmbedFn:
    """Hashing vectorizer: tokenize -> hash each token to an index -> normalized TF vector.

    Deterministic, fast, captures word overlap. Identical text always maps
    to the identical vector.
    """

    def _embed(text: str) -> list[float]:
        vec = np.zeros(dims, dtype=np.float64)
        tokens = text.lower().split()
        if not tokens:
            return vec.tolist()
        for token in tokens:
            h = int(hashlib.md5(token.encode()).hexdigest(), 16)
            vec[h % dims] += 1.0
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec = vec / norm
        return vec.tolist()

    _embed.dimensions = dims  # type: ignore[attr-defined]
    return _embed


def ollama_embed(
    model: str = "nomic-embed-text",
    base_url: str = "http://localhost:11434",
    dimensions: int = DEFAULT_DIMENSIONS,
    timeout: float = 10.0,
    max_retries: int = 2,
) -> EmbedFn:
    """Ollama /api/embed provider.

    The returned callable also carries ``async_call`` for a native async
    round trip (no thread pool).
    """
    url = urllib.parse.urljoin(base_url, "/api/embed")

    def _extract(data: dict) -> list[float]:
        return [float(x) for x in data["embeddings"][0]]

    def _embed(text: str) -> list[float]:
        data = post_json(url, {"model": model, "input": text},
                         timeout=timeout, max_retries=max_retries)
        return _extract(data)

    async def _async_embed(text: str) -> list[float]:
        data = await apost_json(url, {"model": model, "input": text},
                                timeout=timeout, max_retries=max_retries)
        return _extract(data)

    _embed.async_call = _async_embed  # type: ignore[attr-defined]
    _embed.dimensions = dimensions  # type: ignore[attr-defined]
    return _embed


def gemini_embed(
    api_key: str,
    model: str = "text-embedding-004",
    base_url: str = "https://generativelanguage.googleapis.com/v1beta",
    dimensions: int = DEFAULT_DIMENSIONS,
    timeout: float = 30.0,
) -> EmbedFn:
    """Google Generative Language embedContent provider.

    Uses urllib.request (stdlib only). Requires an API key.
    """
    url = f"{base_url}/models/{model}:embedContent"

    def _embed(text: str) -> list[float]:
        data = post_json(
            url,
            {"model": f"models/{model}", "content": {"parts": [{"text": text}]}},
            headers={"x-goog-api-key": api_key},
            timeout=timeout,
        )
        return [float(x) for x in data["embedding"]["values"]]

    _embed.dimensions = dimensions  # type: ignore[attr-defined]
    return _embed


# ── Gateway ─────────────────────────────────────────────────────────────


@dataclass
class EmbedResult:
    """Outcome of one embedding call. ``fallback`` marks the zero-vector branch."""

    vector: list[float]
    fallback: bool = False
    error: str = ""


class EmbeddingGateway:
    """Turns text into a vector of fixed length. Never raises."""

    def __init__(self, embed_fn: EmbedFn, dimensions: int | None = None) -> None:
        self._embed_fn = embed_fn
        self.dimensions = (
            dimensions
            or getattr(embed_fn, "dimensions", None)
            or DEFAULT_DIMENSIONS
        )
        self._warned_fallback = False

    def embed(self, text: str) -> list[float]:
        return self.embed_result(text).vector

    async def aembed(self, text: str) -> list[float]:
        return (await self.aembed_result(text)).vector

    def embed_result(self, text: str) -> EmbedResult:
        try:
            raw = self._embed_fn(text)
        except Exception as exc:
            return self._fallback(f"{type(exc).__name__}: {exc}")
        return self._check(raw)

    async def aembed_result(self, text: str) -> EmbedResult:
        async_call = getattr(self._embed_fn, "async_call", None)
        try:
            if async_call is not None:
                raw = await async_call(text)
            else:
                raw = await asyncio.to_thread(self._embed_fn, text)
        except Exception as exc:
            return self._fallback(f"{type(exc).__name__}: {exc}")
        return self._check(raw)

    def _check(self, raw) -> EmbedResult:
        if raw is None:
            return self._fallback("provider returned no embedding")
        try:
            vector = [float(x) for x in raw]
        except Exception as exc:
            return self._fallback(f"non-numeric embedding: {type(exc).__name__}: {exc}")
        if not vector:
            return self._fallback("provider returned an empty embedding")
        if len(vector) != self.dimensions:
            return self._fallback(
                f"provider returned {len(vector)}d, expected {self.dimensions}d"
            )
        if not all(math.isfinite(x) for x in vector):
            return self._fallback("provider returned NaN or infinity")
        return EmbedResult(vector=vector)

    def _fallback(self, error: str) -> EmbedResult:
        logger.warning("embedding unavailable, using zero vector: %s", error)
        if not self._warned_fallback:
            warnings.warn(
                "Embedding provider unavailable, falling back to zero vectors. "
                "Retrieval is disabled for thoughts embedded this way.",
                RuntimeWarning,
                stacklevel=3,
            )
            self._warned_fallback = True
        return EmbedResult(vector=zero_vector(self.dimensions), fallback=True, error=error)

    def __repr__(self) -> str:
        return f"EmbeddingGateway(dimensions={self.dimensions})"
