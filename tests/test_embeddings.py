"""Tests for embedding providers and the gateway fallback."""

import asyncio
import json
from unittest import mock

import numpy as np
import pytest

from life_orbit.embeddings import (
    EmbeddingGateway,
    gemini_embed,
    numpy_embed,
    ollama_embed,
)
from life_orbit.vectors import cosine_similarity


def _fake_urlopen(payload, seen=None):
    """Patchable urlopen returning ``payload`` as the JSON body."""

    def _urlopen(req, timeout=None):
        if seen is not None:
            seen.append(req)
        resp = mock.MagicMock()
        resp.__enter__.return_value.read.return_value = json.dumps(payload).encode()
        return resp

    return _urlopen


# ── numpy_embed ──────────────────────────────────────────────────────────


def test_numpy_embed_dimensions():
    embed = numpy_embed(dims=256)
    result = embed("hello world")
    assert isinstance(result, list)
    assert len(result) == 256
    assert embed.dimensions == 256


def test_numpy_embed_deterministic():
    embed = numpy_embed()
    assert embed("plan gym session") == embed("plan gym session")


def test_numpy_embed_similar_texts():
    embed = numpy_embed()
    a = embed("buy milk and eggs tomorrow")
    b = embed("buy milk and bread tomorrow")
    c = embed("learn to play the cello someday")
    assert cosine_similarity(a, b) > cosine_similarity(a, c)


def test_numpy_embed_empty_text():
    result = numpy_embed(dims=32)("   ")
    assert np.allclose(result, 0.0), "Empty text should produce zero vector"


# ── gateway ──────────────────────────────────────────────────────────────


class TestGateway:
    def test_passes_vector_through(self):
        gateway = EmbeddingGateway(lambda text: [1.0, 2.0, 3.0], dimensions=3)
        result = gateway.embed_result("x")
        assert result.vector == [1.0, 2.0, 3.0]
        assert result.fallback is False

    def test_dimensions_from_provider(self):
        assert EmbeddingGateway(numpy_embed(dims=64)).dimensions == 64

    def test_default_dimensions(self):
        assert EmbeddingGateway(lambda text: []).dimensions == 768

    def test_raising_provider_gives_zero_vector(self):
        def broken(text):
            raise ConnectionError("quota exceeded")

        gateway = EmbeddingGateway(broken, dimensions=8)
        result = gateway.embed_result("anything")
        assert result.fallback is True
        assert result.vector == [0.0] * 8
        assert "quota exceeded" in result.error
        assert gateway.embed("anything") == [0.0] * 8

    def test_empty_result_gives_zero_vector(self):
        gateway = EmbeddingGateway(lambda text: None, dimensions=4)
        assert gateway.embed_result("x").fallback is True
        gateway = EmbeddingGateway(lambda text: [], dimensions=4)
        assert gateway.embed("x") == [0.0] * 4

    def test_wrong_length_gives_zero_vector(self):
        gateway = EmbeddingGateway(lambda text: [1.0, 1.0], dimensions=4)
        result = gateway.embed_result("x")
        assert result.fallback is True
        assert len(result.vector) == 4

    @pytest.mark.parametrize("reply", [
        42,
        "not a vector",
        (x for x in [1.0, 2.0, 3.0, 4.0, 5.0]),
        [1.0, "two", 3.0, 4.0],
        [1.0, float("nan"), 3.0, 4.0],
        [1.0, float("inf"), 3.0, 4.0],
        np.array([1.0, 2.0]),
    ])
    def test_malformed_reply_gives_zero_vector(self, reply):
        gateway = EmbeddingGateway(lambda text: reply, dimensions=4)
        result = gateway.embed_result("x")
        assert result.fallback is True
        assert result.vector == [0.0] * 4

    def test_generator_of_right_length_accepted(self):
        gateway = EmbeddingGateway(lambda text: (float(i) for i in range(3)), dimensions=3)
        assert gateway.embed_result("x").vector == [0.0, 1.0, 2.0]

    def test_fallback_warns_once(self):
        def broken(text):
            raise OSError("down")

        gateway = EmbeddingGateway(broken, dimensions=2)
        with pytest.warns(RuntimeWarning, match="zero vectors"):
            gateway.embed("first")
        # second call: no new warning, still zero
        assert gateway.embed("second") == [0.0, 0.0]

    def test_async_uses_thread_for_sync_provider(self):
        gateway = EmbeddingGateway(lambda text: [0.5, 0.5], dimensions=2)
        assert asyncio.run(gateway.aembed("x")) == [0.5, 0.5]

    def test_async_prefers_async_call(self):
        calls = []

        def embed(text):
            calls.append("sync")
            return [1.0, 0.0]

        async def async_call(text):
            calls.append("async")
            return [0.0, 1.0]

        embed.async_call = async_call
        gateway = EmbeddingGateway(embed, dimensions=2)
        assert asyncio.run(gateway.aembed("x")) == [0.0, 1.0]
        assert calls == ["async"]

    def test_async_failure_gives_zero_vector(self):
        def embed(text):
            return [1.0, 0.0]

        async def async_call(text):
            raise asyncio.TimeoutError()

        embed.async_call = async_call
        gateway = EmbeddingGateway(embed, dimensions=2)
        result = asyncio.run(gateway.aembed_result("x"))
        assert result.fallback is True
        assert result.vector == [0.0, 0.0]


# ── HTTP providers ───────────────────────────────────────────────────────


def test_ollama_embed_request_and_parse():
    seen = []
    embed = ollama_embed(model="nomic-embed-text", dimensions=3)
    with mock.patch("urllib.request.urlopen",
                    _fake_urlopen({"embeddings": [[0.1, 0.2, 0.3]]}, seen)):
        result = embed("hello")
    assert result == [0.1, 0.2, 0.3]
    assert seen[0].full_url == "http://localhost:11434/api/embed"
    assert json.loads(seen[0].data) == {"model": "nomic-embed-text", "input": "hello"}


def test_ollama_embed_unreachable_falls_back_in_gateway():
    embed = ollama_embed(base_url="http://localhost:19", max_retries=0, timeout=1)
    gateway = EmbeddingGateway(embed)
    result = gateway.embed_result("fallback test")
    assert result.fallback is True
    assert len(result.vector) == 768


def test_ollama_embed_malformed_reply_falls_back_in_gateway():
    gateway = EmbeddingGateway(ollama_embed(dimensions=3))
    with mock.patch("urllib.request.urlopen", _fake_urlopen({"error": "no model"})):
        result = gateway.embed_result("x")
    assert result.fallback is True
    assert "KeyError" in result.error


def test_gemini_embed_request_and_parse():
    seen = []
    embed = gemini_embed(api_key="k-123", dimensions=2)
    with mock.patch("urllib.request.urlopen",
                    _fake_urlopen({"embedding": {"values": [0.25, -0.5]}}, seen)):
        result = embed("a thought")
    assert result == [0.25, -0.5]
    req = seen[0]
    assert req.full_url.endswith("/models/text-embedding-004:embedContent")
    assert req.get_header("X-goog-api-key") == "k-123"
    body = json.loads(req.data)
    assert body["content"]["parts"][0]["text"] == "a thought"


def test_gemini_embed_missing_values_falls_back_in_gateway():
    gateway = EmbeddingGateway(gemini_embed(api_key="k", dimensions=2))
    with mock.patch("urllib.request.urlopen", _fake_urlopen({"embedding": {}})):
        assert gateway.embed("x") == [0.0, 0.0]
