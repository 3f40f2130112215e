# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the embedding cache, text normalization and cosine similarity.

The cache is exercised with small fake models so that hit/miss behaviour,
vector validation and error mapping can be asserted exactly.
"""

import math

import pytest

from persona_memory.errors import DependencyError, InvalidInputError
from persona_memory.memory.embedding import (
    EmbeddingCache,
    HashingEmbedder,
    content_hash,
    cosine_similarity,
    jaccard,
    normalize_text,
    tokenize,
)


class CountingEmbedder:
    """Sync fake model that records every call."""

    model_name = "counting-3"
    dimensions = 3

    def __init__(self):
        self.calls: list[str] = []

    def __call__(self, text: str) -> list[float]:
        self.calls.append(text)
        return [float(len(text)), 1.0, 0.5]


class FailingEmbedder:
    """Fake model that always raises."""

    model_name = "failing"
    dimensions = 3

    def __call__(self, text: str) -> list[float]:
        raise RuntimeError("model offline")


class ManualClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestTextNormalization:
    """Tests for normalize_text, tokenize and helpers."""

    def test_normalize_strips_case_punctuation_and_whitespace(self):
        """Normalization lower-cases, drops punctuation, collapses spaces."""
        assert normalize_text("  Paris, is the   CAPITAL! ") == "paris is the capital"

    def test_tokenize_empty(self):
        """Punctuation-only text has no tokens."""
        assert tokenize("?!...") == []

    def test_content_hash_depends_on_model(self):
        """The same text under different models gets different keys."""
        assert content_hash("model-a", "paris") != content_hash("model-b", "paris")

    def test_jaccard(self):
        """Jaccard overlap of sets; empty sets overlap 0."""
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard(set(), set()) == 0.0


class TestCosineSimilarity:
    """Tests for cosine_similarity edge cases."""

    def test_identical_vectors(self):
        """Identical vectors have similarity 1.0."""
        assert cosine_similarity([0.3, 0.4], [0.3, 0.4]) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        """Opposite vectors have similarity -1.0."""
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        """Orthogonal vectors have similarity 0.0."""
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    @pytest.mark.parametrize(
        "a,b",
        [
            ([0.0, 0.0], [1.0, 0.0]),
            ([], []),
            ([1.0, 0.0], [1.0, 0.0, 0.0]),
            ([math.nan, 1.0], [1.0, 1.0]),
        ],
    )
    def test_degenerate_inputs_return_zero(self, a, b):
        """Zero-magnitude, empty, mismatched and non-finite inputs give 0.0."""
        assert cosine_similarity(a, b) == 0.0


class TestHashingEmbedder:
    """Tests for the deterministic hashing embedder."""

    def test_deterministic_and_normalized(self):
        """Same text, same unit-length vector."""
        embedder = HashingEmbedder(dimensions=64)
        first = embedder("Paris is the capital of France")
        second = embedder("Paris is the capital of France")

        assert first == second
        assert len(first) == 64
        assert math.sqrt(sum(x * x for x in first)) == pytest.approx(1.0)

    def test_shared_tokens_are_similar(self):
        """Texts sharing words score higher than unrelated texts."""
        embedder = HashingEmbedder()
        query = embedder("capital of France")

        related = cosine_similarity(query, embedder("Paris is the capital of France"))
        unrelated = cosine_similarity(query, embedder("I like pizza"))

        assert related > 0.5
        assert related > unrelated

    def test_model_name_includes_dimensions(self):
        """The default model identifier names the dimensionality."""
        assert HashingEmbedder(dimensions=32).model_name == "hashing-32"


class TestEmbeddingCache:
    """Tests for EmbeddingCache memoization and validation."""

    @pytest.mark.asyncio
    async def test_equivalent_texts_share_a_cache_entry(self):
        """Texts equal after normalization hit the same entry."""
        model = CountingEmbedder()
        cache = EmbeddingCache(model)

        first = await cache.embed("Paris, is the capital!")
        second = await cache.embed("paris is the   capital")

        assert first == second
        assert len(model.calls) == 1
        assert cache.get_metrics()["hits"] == 1
        assert cache.hit_rate() == pytest.approx(0.5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "?!..."])
    async def test_empty_text_rejected_without_model_call(self, text):
        """Empty or punctuation-only text raises InvalidInputError."""
        model = CountingEmbedder()
        cache = EmbeddingCache(model)

        with pytest.raises(InvalidInputError):
            await cache.embed(text)
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_model_failure_maps_to_dependency_error(self):
        """Model exceptions surface as DependencyError and are not cached."""
        cache = EmbeddingCache(FailingEmbedder())

        with pytest.raises(DependencyError) as exc_info:
            await cache.embed("hello world")

        assert exc_info.value.dependency == "embedding_model"
        assert exc_info.value.retryable
        assert cache.size() == 0
        assert cache.get_metrics()["failures"] == 1

    @pytest.mark.asyncio
    async def test_non_finite_vector_rejected(self):
        """A vector containing NaN is a dependency failure."""
        cache = EmbeddingCache(lambda text: [1.0, math.nan], model_name="nan-model")

        with pytest.raises(DependencyError, match="non-finite"):
            await cache.embed("hello")

    @pytest.mark.asyncio
    async def test_dimension_change_rejected(self):
        """Vectors must keep the dimensionality first observed."""
        lengths = iter([3, 4])

        def shifting(text: str) -> list[float]:
            return [1.0] * next(lengths)

        cache = EmbeddingCache(shifting, model_name="shifting")
        await cache.embed("first text")

        assert cache.dimensions == 3
        with pytest.raises(DependencyError, match="expected 3 dimensions"):
            await cache.embed("second text")

    @pytest.mark.asyncio
    async def test_async_model_is_awaited(self):
        """Async model callables are supported."""

        async def async_model(text: str) -> list[float]:
            return [0.0, 1.0]

        cache = EmbeddingCache(async_model, model_name="async-model")

        assert await cache.embed("hello") == [0.0, 1.0]

    @pytest.mark.asyncio
    async def test_lru_eviction(self):
        """The least recently used entry is evicted at capacity."""
        model = CountingEmbedder()
        cache = EmbeddingCache(model, max_size=2)

        await cache.embed("alpha")
        await cache.embed("beta")
        await cache.embed("alpha")
        await cache.embed("gamma")

        assert cache.size() == 2
        assert cache.get_cached("beta") is None
        assert cache.get_cached("alpha") is not None

    @pytest.mark.asyncio
    async def test_ttl_expiry_recomputes(self):
        """Entries older than the TTL are recomputed."""
        model = CountingEmbedder()
        clock = ManualClock()
        cache = EmbeddingCache(model, ttl_seconds=10, clock=clock)

        await cache.embed("alpha")
        clock.now += 5
        await cache.embed("alpha")
        clock.now += 11
        await cache.embed("alpha")

        assert len(model.calls) == 2

    @pytest.mark.asyncio
    async def test_invalidate_all_only_costs_recomputation(self):
        """Clearing the cache returns the same vectors afterwards."""
        model = CountingEmbedder()
        cache = EmbeddingCache(model)
        before = await cache.embed("alpha")

        cache.invalidate_all()
        after = await cache.embed("alpha")

        assert before == after
        assert len(model.calls) == 2

    def test_max_size_must_be_positive(self):
        """A cache must hold at least one vector."""
        with pytest.raises(InvalidInputError):
            EmbeddingCache(CountingEmbedder(), max_size=0)
