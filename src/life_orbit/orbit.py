"""Orbit: the core class. Capture, classify, store and search thoughts."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Callable

from life_orbit.classifier import ClassifyFn, PipelineStatus, RetrievalClassifier
from life_orbit.config import OrbitConfig
from life_orbit.embeddings import EmbedFn, EmbeddingGateway, numpy_embed
from life_orbit.errors import ImportFormatError, OrbitError, Reason, StoreError
from life_orbit.index import MemoryIndex, Scored
from life_orbit.models import OrbitLevel, StoreEvent, Thought
from life_orbit.storage import Storage, StoreStats

logger = logging.getLogger(__name__)


class CaptureStatus(str, Enum):
    STORED = "stored"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"      # empty input, pipeline never ran
    FAILED = "failed"          # store could not persist the record


@dataclass
class CaptureResult:
    status: CaptureStatus
    thought: Thought | None = None
    reasons: list[Reason] = field(default_factory=list)
    duplicate_of: str | None = None
    context: list[Scored] = field(default_factory=list)
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status is CaptureStatus.STORED


@dataclass
class Outcome:
    """Result of a store-backed operation. On failure the caller rolls back."""

    ok: bool
    reason: Reason | None = None
    thought: Thought | None = None
    detail: str = ""


class Orbit:
    """Una órbita persistente. Un archivo SQLite = una vida organizada.

    API:
        orbit.capture(text)         : embed, retrieve, dedupe, classify, store
        orbit.search(query)         : semantic or literal search
        orbit.thoughts()            : everything, newest first
        orbit.move(id, level)       : manual reassignment
        orbit.toggle_complete(id)   : mark done / undone
        orbit.delete(id)            : prune
        orbit.export_json()         : dump
        orbit.import_json(text)     : restore, all or nothing
        orbit.subscribe(fn)         : listen to store events

    Two captures running at the same time each rank against the store as it
    was when they started, so neither sees the other as context.
    """

    def __init__(self, path: str | Path = "orbit.db",
                 embed_fn: EmbedFn | None = None,
                 classify_fn: ClassifyFn | None = None,
                 config: OrbitConfig | None = None,
                 _storage: Storage | None = None) -> None:
        self.config = config or OrbitConfig()
        self._storage = _storage or Storage(path)
        if embed_fn is None:
            embed_fn = numpy_embed(self.config.dimensions)
        # The wired provider knows its own output size; the config is the fallback
        self.gateway = EmbeddingGateway(
            embed_fn, getattr(embed_fn, "dimensions", None) or self.config.dimensions
        )
        self.classifier = RetrievalClassifier(
            self.gateway,
            classify_fn,
            context_k=self.config.context_k,
            duplicate_threshold=self.config.duplicate_threshold,
        )
        self._in_flight = 0

    # ── capture ────────────────────────────────────────────────────────

    def capture(self, content: str) -> CaptureResult:
        """Sync wrapper around acapture(). Not for use inside an event loop."""
        return asyncio.run(self.acapture(content))

    async def acapture(self, content: str) -> CaptureResult:
        """Run the classification pipeline for one thought and persist the result."""
        if not content or not content.strip():
            return CaptureResult(status=CaptureStatus.REJECTED,
                                 reasons=[Reason.EMPTY_INPUT])

        self._in_flight += 1
        try:
            try:
                snapshot = await asyncio.to_thread(self._storage.all_thoughts)
            except StoreError as exc:
                return self._capture_failed(exc)

            result = await self.classifier.arun(content, snapshot)

            if result.status is PipelineStatus.DUPLICATE:
                return CaptureResult(
                    status=CaptureStatus.DUPLICATE,
                    reasons=result.reasons,
                    duplicate_of=result.duplicate_of,
                    context=result.context,
                )

            thought = result.to_thought()
            try:
                await asyncio.to_thread(self._storage.save_thought, thought)
            except StoreError as exc:
                return self._capture_failed(exc, result.reasons)

            logger.debug("captured %s into %s", thought.id, thought.level.value)
            return CaptureResult(
                status=CaptureStatus.STORED,
                thought=thought,
                reasons=result.reasons,
                context=result.context,
                error=result.error,
            )
        finally:
            self._in_flight -= 1

    @staticmethod
    def _capture_failed(exc: StoreError,
                        reasons: list[Reason] | None = None) -> CaptureResult:
        logger.error("capture failed: %s", exc)
        return CaptureResult(
            status=CaptureStatus.FAILED,
            reasons=(reasons or []) + [Reason.STORE_FAILURE],
            error=str(exc),
        )

    @property
    def in_flight(self) -> int:
        """Pipelines started and not yet finished."""
        return self._in_flight

    # ── search ─────────────────────────────────────────────────────────

    def search(self, query: str, limit: int | None = None,
               threshold: float | None = None,
               semantic: bool | None = None) -> list[Thought]:
        """Sync wrapper around asearch()."""
        return asyncio.run(self.asearch(query, limit, threshold, semantic))

    async def asearch(self, query: str, limit: int | None = None,
                      threshold: float | None = None,
                      semantic: bool | None = None) -> list[Thought]:
        """Busca pensamientos.

        Semantic: embed the query, rank everything with a vector, keep those
        at or above ``threshold``, at most ``limit``, each annotated with
        its similarity. Literal: case-insensitive substring match over the
        content, newest first, no embedding call.
        Empty query: empty result, no embedding call either.
        """
        if not query or not query.strip():
            return []
        if semantic is None:
            semantic = self.config.semantic_search

        thoughts = await asyncio.to_thread(self._storage.all_thoughts)

        if not semantic:
            needle = query.lower()
            return [t for t in self._newest_first(thoughts)
                    if needle in t.content.lower()]

        if limit is None:
            limit = self.config.search_limit
        if threshold is None:
            threshold = self.config.search_threshold

        query_vector = await self.gateway.aembed(query)
        hits = MemoryIndex(thoughts).top_k(query_vector, limit, threshold)
        return [thought.with_similarity(score) for thought, score in hits]

    # ── listing + mutations ────────────────────────────────────────────

    def thoughts(self) -> list[Thought]:
        """Todos los pensamientos, el más reciente primero."""
        return self._newest_first(self._storage.all_thoughts())

    @staticmethod
    def _newest_first(thoughts: list[Thought]) -> list[Thought]:
        return sorted(thoughts, key=lambda t: t.timestamp, reverse=True)

    def get(self, thought_id: str) -> Thought | None:
        return self._storage.load_thought(thought_id)

    def move(self, thought_id: str, level: str | OrbitLevel) -> Outcome:
        """Reassign a thought to another orbit. No re-embedding, no re-classification."""
        level = OrbitLevel(level)
        return self._update(thought_id, lambda t: replace(t, level=level))

    def toggle_complete(self, thought_id: str) -> Outcome:
        return self._update(thought_id, lambda t: replace(t, completed=not t.completed))

    def _update(self, thought_id: str,
                change: Callable[[Thought], Thought]) -> Outcome:
        try:
            current = self._storage.load_thought(thought_id)
            if current is None:
                return Outcome(False, Reason.NOT_FOUND, detail=thought_id)
            updated = change(current)
            self._storage.save_thought(updated)
        except StoreError as exc:
            logger.error("update %s failed: %s", thought_id, exc)
            return Outcome(False, exc.reason, detail=str(exc))
        return Outcome(True, thought=updated)

    def delete(self, thought_id: str) -> Outcome:
        """Prune a thought. Other thoughts keep it in their connections."""
        try:
            self._storage.delete_thought(thought_id)
        except StoreError as exc:
            logger.error("delete %s failed: %s", thought_id, exc)
            return Outcome(False, exc.reason, detail=str(exc))
        return Outcome(True)

    # ── export / import ────────────────────────────────────────────────

    def export_document(self) -> dict:
        return self._storage.export_document()

    def export_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.export_document(), indent=indent, ensure_ascii=False)

    def import_document(self, document: dict) -> Outcome:
        try:
            count = self._storage.import_document(document)
        except OrbitError as exc:
            logger.error("import failed: %s", exc)
            return Outcome(False, exc.reason, detail=str(exc))
        return Outcome(True, detail=f"{count} thoughts imported")

    def import_json(self, text: str) -> Outcome:
        try:
            document = json.loads(text)
        except (json.JSONDecodeError, TypeError) as exc:
            err = ImportFormatError(f"not valid JSON: {exc}")
            logger.error("import failed: %s", err)
            return Outcome(False, err.reason, detail=str(err))
        return self.import_document(document)

    # ── utilidades ─────────────────────────────────────────────────────

    def subscribe(self, fn: Callable[[StoreEvent], None]) -> Callable[[], None]:
        return self._storage.subscribe(fn)

    def stats(self) -> StoreStats:
        return self._storage.stats()

    @property
    def count(self) -> int:
        """Cuántos pensamientos hay."""
        return self._storage.count()

    def close(self) -> None:
        self._storage.close()

    def __enter__(self) -> Orbit:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Orbit(thoughts={self.count})"
