# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Embedding cache for text -> vector generation.

LRU cache in front of a pluggable embedding model function:
- Key: sha256(model identifier | normalized text)
- Normalization: lower-case, punctuation stripped, whitespace collapsed
- LRU eviction when max size reached, optional TTL expiration
- Thread-safe operations
- Hit/miss metrics

The cache never owns correctness. Dropping it at any time only costs
recomputation, and a change to the normalized text always changes the key.
"""

import asyncio
import inspect
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np

from persona_memory.errors import DependencyError, InvalidInputError
from persona_memory.memory.embedding.similarity import VectorLike, cosine_similarity
from persona_memory.memory.embedding.text import content_hash, normalize_text
from persona_memory.memory.protocols import EmbeddingFunction

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached vector with metadata."""

    vector: tuple[float, ...]
    created_at: float
    last_accessed_at: float

    def is_expired(self, ttl_seconds: Optional[float], now: float) -> bool:
        """Check if this entry has expired."""
        if ttl_seconds is None:
            return False
        return now - self.created_at > ttl_seconds


class EmbeddingCache:
    """Memoizing front for an embedding model function.

    Features:
    - Accepts sync or async model callables (sync ones run in a worker thread)
    - Rejects empty, whitespace-only and punctuation-only text
    - Validates vectors (finite, non-empty, constant dimensionality)
    - LRU eviction with optional TTL

    Example:
        >>> cache = EmbeddingCache(HashingEmbedder())
        >>> vector = await cache.embed("Paris is the capital of France")
        >>> cache.similarity(vector, vector)
        1.0
    """

    DEFAULT_MAX_SIZE = 2048

    def __init__(
        self,
        embed_fn: EmbeddingFunction,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl_seconds: Optional[float] = None,
        model_name: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache.

        Args:
            embed_fn: Model function mapping text to a vector.
            max_size: Maximum number of cached vectors.
            ttl_seconds: Optional time-to-live in seconds.
            model_name: Overrides the model identifier of embed_fn.
            clock: Time source for TTL bookkeeping.
        """
        if max_size < 1:
            raise InvalidInputError("max_size must be at least 1", field="max_size")

        self._embed_fn = embed_fn
        self.model_name = model_name or getattr(embed_fn, "model_name", None) or type(embed_fn).__name__
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock

        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._dimensions: Optional[int] = getattr(embed_fn, "dimensions", None)

        # Metrics
        self._hits = 0
        self._misses = 0
        self._failures = 0

    @property
    def dimensions(self) -> Optional[int]:
        """Dimensionality of vectors for this model, once known."""
        return self._dimensions

    def cache_key(self, text: str) -> str:
        """Return the cache key for text.

        Raises:
            InvalidInputError: If text normalizes to nothing.
        """
        return content_hash(self.model_name, self._normalize(text))

    async def embed(self, text: str) -> list[float]:
        """Return the embedding for text, computing it on a cache miss.

        Args:
            text: Text to embed.

        Returns:
            The embedding vector.

        Raises:
            InvalidInputError: If text is empty after normalization.
            DependencyError: If the model function fails or returns an
                invalid vector.
        """
        normalized = self._normalize(text)
        key = content_hash(self.model_name, normalized)

        cached = self._lookup(key)
        if cached is not None:
            logger.debug(f"Embedding cache hit: {key[:12]}")
            return list(cached)

        vector = await self._compute(text)

        with self._lock:
            if len(self._cache) >= self.max_size and key not in self._cache:
                self._evict_oldest()
            now = self._clock()
            self._cache[key] = CacheEntry(vector=vector, created_at=now, last_accessed_at=now)
            self._cache.move_to_end(key)

        return list(vector)

    def get_cached(self, text: str) -> Optional[list[float]]:
        """Return a cached vector without computing one."""
        try:
            key = self.cache_key(text)
        except InvalidInputError:
            return None
        cached = self._lookup(key)
        return list(cached) if cached is not None else None

    @staticmethod
    def similarity(a: VectorLike, b: VectorLike) -> float:
        """Cosine similarity, 0.0 for zero-magnitude or mismatched vectors."""
        return cosine_similarity(a, b)

    def invalidate_all(self) -> None:
        """Clear the entire cache."""
        with self._lock:
            self._cache.clear()

    def size(self) -> int:
        """Get current cache size."""
        with self._lock:
            return len(self._cache)

    def hit_rate(self) -> float:
        """Get cache hit rate."""
        with self._lock:
            total = self._hits + self._misses
            if total == 0:
                return 0.0
            return self._hits / total

    def get_metrics(self) -> dict[str, Any]:
        """Get cache metrics.

        Returns:
            Dictionary with cache statistics
        """
        with self._lock:
            return {
                "model": self.model_name,
                "dimensions": self._dimensions,
                "size": len(self._cache),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "failures": self._failures,
                "hit_rate": self.hit_rate(),
                "ttl_seconds": self.ttl_seconds,
            }

    def _normalize(self, text: str) -> str:
        if not isinstance(text, str):
            raise InvalidInputError("text must be a string", field="text")
        normalized = normalize_text(text)
        if not normalized:
            raise InvalidInputError("cannot embed empty or whitespace-only text", field="text")
        return normalized

    def _lookup(self, key: str) -> Optional[tuple[float, ...]]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None

            now = self._clock()
            if entry.is_expired(self.ttl_seconds, now):
                del self._cache[key]
                self._misses += 1
                return None

            self._cache.move_to_end(key)
            entry.last_accessed_at = now
            self._hits += 1
            return entry.vector

    async def _compute(self, text: str) -> tuple[float, ...]:
        try:
            if inspect.iscoroutinefunction(self._embed_fn) or inspect.iscoroutinefunction(
                getattr(self._embed_fn, "__call__", None)
            ):
                raw = await self._embed_fn(text)
            else:
                raw = await asyncio.to_thread(self._embed_fn, text)
                if inspect.isawaitable(raw):
                    raw = await raw
        except (InvalidInputError, DependencyError):
            self._record_failure()
            raise
        except Exception as e:
            self._record_failure()
            raise DependencyError("embedding_model", str(e)) from e

        return self._validate(raw)

    def _validate(self, raw: Any) -> tuple[float, ...]:
        try:
            array = np.asarray(raw, dtype=np.float64).ravel()
        except (TypeError, ValueError) as e:
            self._record_failure()
            raise DependencyError("embedding_model", f"non-numeric vector: {e}") from e

        if array.size == 0:
            self._record_failure()
            raise DependencyError("embedding_model", "model returned an empty vector")
        if not np.all(np.isfinite(array)):
            self._record_failure()
            raise DependencyError("embedding_model", "model returned non-finite values")

        with self._lock:
            if self._dimensions is None:
                self._dimensions = int(array.size)
            elif array.size != self._dimensions:
                self._failures += 1
                raise DependencyError(
                    "embedding_model",
                    f"expected {self._dimensions} dimensions for {self.model_name}, got {array.size}",
                )

        return tuple(float(x) for x in array)

    def _record_failure(self) -> None:
        with self._lock:
            self._failures += 1

    def _evict_oldest(self) -> None:
        """Evict the oldest entry (LRU)."""
        if self._cache:
            oldest_key = next(iter(self._cache))
            del self._cache[oldest_key]
