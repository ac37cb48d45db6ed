"""Retrieval-augmented classification.

One invocation runs five stages, strictly in order:

    1. embed     : gateway.embed(text); failure yields the zero vector
    2. retrieve  : top-k prior thoughts by cosine similarity (context set)
    3. duplicate : best score > duplicate_threshold stops the pipeline
    4. classify  : external verdict on the text plus its context;
                    failure yields SURVIVAL with a generic reasoning
    5. assemble  : PipelineResult.to_thought() builds the candidate record

Nothing here writes to storage. Concurrent invocations share no mutable
state; each one ranks against the snapshot it was handed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import urllib.parse
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from life_orbit._http import apost_json, post_json
from life_orbit.config import DEFAULT_CONTEXT_K, DEFAULT_DUPLICATE_THRESHOLD
from life_orbit.embeddings import EmbeddingGateway
from life_orbit.errors import DuplicateThoughtError, Reason
from life_orbit.index import MemoryIndex, Scored
from life_orbit.models import CLASSIFIABLE_LEVELS, OrbitLevel, Thought

logger = logging.getLogger(__name__)

# (similarity, content) pairs, best first
ContextPairs = list[tuple[float, str]]

# Type: takes text + context pairs, returns the raw reply (JSON str or dict)
ClassifyFn = Callable[[str, ContextPairs], "str | dict"]


@dataclass(frozen=True)
class Verdict:
    level: OrbitLevel
    reasoning: str


FALLBACK_VERDICT = Verdict(OrbitLevel.SURVIVAL, "System busy, default classification.")


# ── Prompt + reply parsing ──────────────────────────────────────────────


def build_prompt(text: str, context: Sequence[tuple[float, str]]) -> str:
    """Render the classification prompt. Context lines carry their similarity as a percentage."""
    context_text = "\n".join(
        f"[relevance: {sim * 100:.0f}%] {content}" for sim, content in context
    )
    return (
        "You are a hippocampus with retrieval-augmented memory.\n\n"
        f'New thought: "{text}"\n\n'
        "Related memories retrieved:\n"
        f"{context_text or '(no history)'}\n\n"
        "Task:\n"
        "1. Using the related memories, decide where this thought sits in the "
        "user's life orbit.\n"
        "2. Classify it as SURVIVAL (chores, the immediate present), GROWTH "
        "(skills, projects) or VISION (long-term aspirations).\n"
        "3. Give a short, insightful reasoning for the classification.\n\n"
        'Reply with JSON only: {"level": "...", "reasoning": "..."}'
    )


_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_verdict(reply: str | dict | None) -> Verdict | None:
    """Parse a classifier reply. None when it does not have the required shape."""
    if isinstance(reply, (str, bytes)):
        text = reply.decode() if isinstance(reply, bytes) else reply
        try:
            reply = json.loads(_FENCE.sub("", text.strip()))
        except json.JSONDecodeError:
            return None
    if not isinstance(reply, dict):
        return None

    level = reply.get("level")
    reasoning = reply.get("reasoning")
    if not isinstance(level, str) or not isinstance(reasoning, str):
        return None
    if not reasoning.strip():
        return None
    try:
        parsed = OrbitLevel(level.strip().upper())
    except ValueError:
        return None
    if parsed not in CLASSIFIABLE_LEVELS:
        return None
    return Verdict(parsed, reasoning.strip())


# ── Built-in providers ──────────────────────────────────────────────────


_VERDICT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "level": {"type": "STRING", "enum": [lv.value for lv in CLASSIFIABLE_LEVELS]},
        "reasoning": {"type": "STRING"},
    },
    "required": ["level", "reasoning"],
}


def gemini_classify(
    api_key: str,
    model: str = "gemini-2.0-flash",
    base_url: str = "https://generativelanguage.googleapis.com/v1beta",
    timeout: float = 30.0,
) -> ClassifyFn:
    """Gemini generateContent with a JSON response schema."""
    url = f"{base_url}/models/{model}:generateContent"

    def _classify(text: str, context: ContextPairs) -> str:
        data = post_json(
            url,
            {
                "contents": [{"parts": [{"text": build_prompt(text, context)}]}],
                "generationConfig": {
                    "responseMimeType": "application/json",
                    "responseSchema": _VERDICT_SCHEMA,
                },
            },
            headers={"x-goog-api-key": api_key},
            timeout=timeout,
        )
        return data["candidates"][0]["content"]["parts"][0]["text"]

    return _classify


def ollama_classify(
    model: str = "llama3.2",
    base_url: str = "http://localhost:11434",
    timeout: float = 60.0,
    max_retries: int = 1,
) -> ClassifyFn:
    """Ollama /api/generate in JSON mode. Also exposes ``async_call``."""
    url = urllib.parse.urljoin(base_url, "/api/generate")

    def _payload(text: str, context: ContextPairs) -> dict:
        return {
            "model": model,
            "prompt": build_prompt(text, context),
            "format": "json",
            "stream": False,
        }

    def _classify(text: str, context: ContextPairs) -> str:
        data = post_json(url, _payload(text, context),
                         timeout=timeout, max_retries=max_retries)
        return data["response"]

    async def _async_classify(text: str, context: ContextPairs) -> str:
        data = await apost_json(url, _payload(text, context),
                                timeout=timeout, max_retries=max_retries)
        return data["response"]

    _classify.async_call = _async_classify  # type: ignore[attr-defined]
    return _classify


# ── Pipeline ────────────────────────────────────────────────────────────


class PipelineStatus(str, Enum):
    CLASSIFIED = "classified"
    FALLBACK = "fallback"      # classifier unavailable, default verdict used
    DUPLICATE = "duplicate"    # stopped before classification


@dataclass
class PipelineResult:
    status: PipelineStatus
    text: str
    vector: list[float]
    context: list[Scored] = field(default_factory=list)
    verdict: Verdict | None = None
    embedding_fallback: bool = False
    error: str = ""

    @property
    def is_duplicate(self) -> bool:
        return self.status is PipelineStatus.DUPLICATE

    @property
    def duplicate_of(self) -> str | None:
        if not self.is_duplicate:
            return None
        return self.context[0][0].id

    @property
    def connections(self) -> list[str]:
        return [thought.id for thought, _ in self.context]

    @property
    def reasons(self) -> list[Reason]:
        """Degraded or terminal conditions the caller may want to report."""
        out = []
        if self.embedding_fallback:
            out.append(Reason.EMBEDDING_FALLBACK)
        if self.status is PipelineStatus.FALLBACK:
            out.append(Reason.CLASSIFICATION_FALLBACK)
        elif self.status is PipelineStatus.DUPLICATE:
            out.append(Reason.DUPLICATE)
        return out

    def to_thought(self) -> Thought:
        """Stage 5: assemble the candidate record."""
        if self.is_duplicate or self.verdict is None:
            raise DuplicateThoughtError(
                f"duplicate of {self.duplicate_of}, nothing to assemble"
            )
        return Thought(
            content=self.text,
            level=self.verdict.level,
            reasoning=self.verdict.reasoning,
            vector=list(self.vector),
            connections=self.connections,
        )


class RetrievalClassifier:
    """Embed, retrieve, dedupe, classify. Explicitly constructed, no globals."""

    def __init__(self, gateway: EmbeddingGateway,
                 classify_fn: ClassifyFn | None = None,
                 context_k: int = DEFAULT_CONTEXT_K,
                 duplicate_threshold: float = DEFAULT_DUPLICATE_THRESHOLD) -> None:
        self.gateway = gateway
        self._classify_fn = classify_fn
        self.context_k = context_k
        self.duplicate_threshold = duplicate_threshold

    def run(self, text: str, snapshot: Sequence[Thought]) -> PipelineResult:
        """Sync wrapper. Do not call from inside a running event loop."""
        return asyncio.run(self.arun(text, snapshot))

    async def arun(self, text: str, snapshot: Sequence[Thought]) -> PipelineResult:
        # 1. Embed
        embedded = await self.gateway.aembed_result(text)

        # 2. Retrieve
        context = MemoryIndex(snapshot).top_k(embedded.vector, self.context_k)

        # 3. Duplicate check
        if context and context[0][1] > self.duplicate_threshold:
            logger.info("duplicate of %s (similarity %.3f)",
                        context[0][0].id, context[0][1])
            return PipelineResult(
                status=PipelineStatus.DUPLICATE,
                text=text,
                vector=embedded.vector,
                context=context,
                embedding_fallback=embedded.fallback,
                error=embedded.error,
            )

        # 4. Classify
        pairs = [(score, thought.content) for thought, score in context]
        verdict, error = await self._classify(text, pairs)
        status = PipelineStatus.CLASSIFIED
        if verdict is None:
            logger.warning("classification fallback: %s", error)
            verdict = FALLBACK_VERDICT
            status = PipelineStatus.FALLBACK

        # 5. Assemble happens in PipelineResult.to_thought()
        return PipelineResult(
            status=status,
            text=text,
            vector=embedded.vector,
            context=context,
            verdict=verdict,
            embedding_fallback=embedded.fallback,
            error="; ".join(e for e in (embedded.error, error) if e),
        )

    async def _classify(self, text: str, pairs: ContextPairs) -> tuple[Verdict | None, str]:
        if self._classify_fn is None:
            return None, "no classifier configured"
        async_call = getattr(self._classify_fn, "async_call", None)
        try:
            if async_call is not None:
                reply = await async_call(text, pairs)
            else:
                reply = await asyncio.to_thread(self._classify_fn, text, pairs)
        except Exception as exc:
            return None, f"{type(exc).__name__}: {exc}"
        verdict = parse_verdict(reply)
        if verdict is None:
            return None, f"unparseable classifier reply: {str(reply)[:200]!r}"
        return verdict, ""
