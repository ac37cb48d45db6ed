"""Tests for the retrieval-augmented classification pipeline."""

import asyncio
import json
from unittest import mock

import pytest

from life_orbit.classifier import (
    FALLBACK_VERDICT,
    PipelineStatus,
    RetrievalClassifier,
    build_prompt,
    gemini_classify,
    ollama_classify,
    parse_verdict,
)
from life_orbit.embeddings import EmbeddingGateway
from life_orbit.errors import DuplicateThoughtError, Reason
from life_orbit.models import OrbitLevel, Thought


def keyed_embed(table, dims=3):
    """Embedding double: looks the text up in ``table``, counts calls."""

    def _embed(text):
        _embed.calls.append(text)
        return table[text]

    _embed.calls = []
    _embed.dimensions = dims
    return _embed


def recording_classifier(reply):
    """Classifier double returning ``reply`` and remembering its arguments."""

    def _classify(text, context):
        _classify.calls.append((text, list(context)))
        if isinstance(reply, Exception):
            raise reply
        return reply

    _classify.calls = []
    return _classify


def _thought(tid, vector, content=None):
    return Thought(content=content or f"content {tid}", id=tid, vector=vector)


TABLE = {
    "go to the gym": [1.0, 0.0, 0.0],
    "learn rust": [0.0, 1.0, 0.0],
    "near gym": [0.6, 0.4, 0.0],
}


@pytest.fixture
def snapshot():
    return [
        _thought("gym", [1.0, 0.0, 0.0], "go to the gym"),
        _thought("rust", [0.0, 1.0, 0.0], "learn rust"),
        _thought("bare", None, "never embedded"),
    ]


# ── Pipeline ───────────────────────────────────────────────────────────


class TestPipeline:
    def test_classified(self, snapshot):
        classify = recording_classifier('{"level": "GROWTH", "reasoning": "a skill"}')
        clf = RetrievalClassifier(EmbeddingGateway(keyed_embed(TABLE)), classify)
        result = clf.run("near gym", snapshot)

        assert result.status is PipelineStatus.CLASSIFIED
        assert result.verdict.level is OrbitLevel.GROWTH
        assert result.reasons == []
        thought = result.to_thought()
        assert thought.content == "near gym"
        assert thought.level is OrbitLevel.GROWTH
        assert thought.reasoning == "a skill"
        assert thought.vector == [0.6, 0.4, 0.0]
        assert thought.connections == ["gym", "rust"]
        assert thought.completed is False

    def test_context_pairs_sent_best_first(self, snapshot):
        classify = recording_classifier({"level": "VISION", "reasoning": "r"})
        clf = RetrievalClassifier(EmbeddingGateway(keyed_embed(TABLE)), classify)
        clf.run("near gym", snapshot)

        text, pairs = classify.calls[0]
        assert text == "near gym"
        assert [content for _, content in pairs] == ["go to the gym", "learn rust"]
        assert pairs[0][0] > pairs[1][0]

    def test_context_limited_to_k(self):
        many = [_thought(f"t{i}", [1.0, float(i), 0.0]) for i in range(8)]
        classify = recording_classifier({"level": "SURVIVAL", "reasoning": "r"})
        clf = RetrievalClassifier(EmbeddingGateway(keyed_embed(TABLE)), classify,
                                  duplicate_threshold=1.1)
        result = clf.run("go to the gym", many)
        assert len(result.context) == 5
        assert len(classify.calls[0][1]) == 5

    def test_duplicate_stops_before_classify(self, snapshot):
        classify = recording_classifier({"level": "VISION", "reasoning": "r"})
        clf = RetrievalClassifier(EmbeddingGateway(keyed_embed(TABLE)), classify)
        result = clf.run("go to the gym", snapshot)

        assert result.status is PipelineStatus.DUPLICATE
        assert result.is_duplicate
        assert result.duplicate_of == "gym"
        assert result.verdict is None
        assert Reason.DUPLICATE in result.reasons
        assert classify.calls == []
        with pytest.raises(DuplicateThoughtError):
            result.to_thought()

    def test_duplicate_threshold_is_strict(self):
        # similarity of [1,0,0] and [1,1,0] is ~0.7071
        snap = [_thought("x", [1.0, 1.0, 0.0])]
        classify = recording_classifier({"level": "GROWTH", "reasoning": "r"})
        gateway = EmbeddingGateway(keyed_embed(TABLE))

        loose = RetrievalClassifier(gateway, classify, duplicate_threshold=0.7)
        assert loose.run("go to the gym", snap).is_duplicate

        strict = RetrievalClassifier(gateway, classify, duplicate_threshold=0.75)
        assert not strict.run("go to the gym", snap).is_duplicate

    def test_empty_snapshot(self):
        classify = recording_classifier({"level": "VISION", "reasoning": "big dream"})
        clf = RetrievalClassifier(EmbeddingGateway(keyed_embed(TABLE)), classify)
        result = clf.run("learn rust", [])
        assert result.status is PipelineStatus.CLASSIFIED
        assert result.context == []
        assert result.to_thought().connections == []
        assert classify.calls[0][1] == []

    def test_nan_vector_in_snapshot_is_not_a_duplicate(self):
        snap = [_thought("nan", [float("nan")] * 3)]
        classify = recording_classifier({"level": "GROWTH", "reasoning": "new"})
        clf = RetrievalClassifier(EmbeddingGateway(keyed_embed(TABLE)), classify)
        result = clf.run("learn rust", snap)
        assert result.status is PipelineStatus.CLASSIFIED
        assert result.context[0][1] == 0.0


# ── Fallbacks ──────────────────────────────────────────────────────────


class TestFallbacks:
    def test_classifier_raises(self, snapshot):
        classify = recording_classifier(TimeoutError("backend down"))
        clf = RetrievalClassifier(EmbeddingGateway(keyed_embed(TABLE)), classify)
        result = clf.run("near gym", snapshot)

        assert result.status is PipelineStatus.FALLBACK
        assert result.verdict == FALLBACK_VERDICT
        assert Reason.CLASSIFICATION_FALLBACK in result.reasons
        assert "backend down" in result.error
        thought = result.to_thought()
        assert thought.level is OrbitLevel.SURVIVAL
        assert thought.reasoning

    @pytest.mark.parametrize("reply", [
        "not json at all",
        '{"level": "GROWTH"}',
        '{"level": "FLOATING", "reasoning": "r"}',
        '{"level": "SOMEDAY", "reasoning": "r"}',
        '{"level": "GROWTH", "reasoning": "   "}',
        '["GROWTH", "r"]',
        None,
    ])
    def test_unparseable_reply(self, snapshot, reply):
        clf = RetrievalClassifier(EmbeddingGateway(keyed_embed(TABLE)),
                                  recording_classifier(reply))
        result = clf.run("near gym", snapshot)
        assert result.status is PipelineStatus.FALLBACK
        assert result.to_thought().level is OrbitLevel.SURVIVAL

    def test_no_classifier_configured(self, snapshot):
        clf = RetrievalClassifier(EmbeddingGateway(keyed_embed(TABLE)))
        result = clf.run("near gym", snapshot)
        assert result.status is PipelineStatus.FALLBACK

    def test_embedding_failure_is_not_fatal(self, snapshot):
        def broken(text):
            raise ConnectionError("no network")

        classify = recording_classifier({"level": "GROWTH", "reasoning": "r"})
        clf = RetrievalClassifier(EmbeddingGateway(broken, dimensions=3), classify)
        result = clf.run("anything", snapshot)

        assert result.status is PipelineStatus.CLASSIFIED
        assert result.embedding_fallback is True
        assert result.vector == [0.0, 0.0, 0.0]
        assert Reason.EMBEDDING_FALLBACK in result.reasons
        # zero query: every score is 0, snapshot order kept, never a duplicate
        assert [t.id for t, _ in result.context] == ["gym", "rust"]
        assert all(score == 0.0 for _, score in result.context)

    def test_async_classifier_is_awaited(self, snapshot):
        def classify(text, context):
            raise AssertionError("sync path should not run")

        async def async_call(text, context):
            return {"level": "VISION", "reasoning": "async verdict"}

        classify.async_call = async_call
        clf = RetrievalClassifier(EmbeddingGateway(keyed_embed(TABLE)), classify)
        result = clf.run("near gym", snapshot)
        assert result.verdict.reasoning == "async verdict"


def test_concurrent_runs_are_independent(snapshot):
    classify = recording_classifier({"level": "GROWTH", "reasoning": "r"})
    clf = RetrievalClassifier(EmbeddingGateway(keyed_embed(TABLE)), classify)

    async def both():
        return await asyncio.gather(
            clf.arun("near gym", snapshot),
            clf.arun("learn rust", snapshot[:1]),
        )

    first, second = asyncio.run(both())
    assert first.connections == ["gym", "rust"]
    assert second.connections == ["gym"]


# ── Prompt + parsing ───────────────────────────────────────────────────


class TestParsing:
    def test_prompt_renders_percentages(self):
        prompt = build_prompt("new idea", [(0.873, "old idea"), (0.5, "other")])
        assert '"new idea"' in prompt
        assert "[relevance: 87%] old idea" in prompt
        assert "[relevance: 50%] other" in prompt
        assert prompt.index("old idea") < prompt.index("other")

    def test_prompt_without_history(self):
        assert "(no history)" in build_prompt("x", [])

    def test_parse_fenced_json(self):
        verdict = parse_verdict('```json\n{"level": "vision", "reasoning": " far "}\n```')
        assert verdict.level is OrbitLevel.VISION
        assert verdict.reasoning == "far"

    def test_parse_dict(self):
        verdict = parse_verdict({"level": "SURVIVAL", "reasoning": "rent"})
        assert verdict.level is OrbitLevel.SURVIVAL


# ── HTTP providers ─────────────────────────────────────────────────────


def _fake_urlopen(payload, seen):
    def _urlopen(req, timeout=None):
        seen.append(req)
        resp = mock.MagicMock()
        resp.__enter__.return_value.read.return_value = json.dumps(payload).encode()
        return resp

    return _urlopen


def test_gemini_classify():
    seen = []
    reply = {"candidates": [{"content": {"parts": [
        {"text": '{"level": "GROWTH", "reasoning": "new skill"}'}]}}]}
    classify = gemini_classify(api_key="k")
    with mock.patch("urllib.request.urlopen", _fake_urlopen(reply, seen)):
        raw = classify("learn rust", [(0.9, "learn go")])
    assert parse_verdict(raw).level is OrbitLevel.GROWTH
    body = json.loads(seen[0].data)
    assert body["generationConfig"]["responseMimeType"] == "application/json"
    assert "[relevance: 90%] learn go" in body["contents"][0]["parts"][0]["text"]


def test_ollama_classify():
    seen = []
    reply = {"response": '{"level": "VISION", "reasoning": "someday"}'}
    classify = ollama_classify(model="llama3.2")
    with mock.patch("urllib.request.urlopen", _fake_urlopen(reply, seen)):
        raw = classify("sail around the world", [])
    assert parse_verdict(raw).level is OrbitLevel.VISION
    assert seen[0].full_url == "http://localhost:11434/api/generate"
    body = json.loads(seen[0].data)
    assert body["format"] == "json"
    assert body["stream"] is False
