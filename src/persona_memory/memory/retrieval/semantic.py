# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Brute-force semantic search over memory embeddings.

For every candidate with a usable embedding, cosine similarity to the
query vector is computed; candidates at or above the threshold are kept
in a bounded heap and returned in rank order:

1. similarity, descending
2. importance, descending
3. identifier, ascending

Candidates without an embedding for the active model are skipped and
counted. With ``embed_missing`` they are embedded on the fly instead; a
failure there excludes only that candidate.
"""

import logging
import time
from dataclasses import dataclass
from typing import AsyncIterable, Awaitable, Callable, Iterable, Optional, Sequence, Union

from persona_memory.errors import DependencyError, InvalidInputError
from persona_memory.memory.embedding.cache import EmbeddingCache
from persona_memory.memory.embedding.text import jaccard, tokenize
from persona_memory.memory.retrieval.ranking import TopK, stream
from persona_memory.memory.retrieval.types import SearchHit, SemanticSearchQuery, SemanticSearchResult
from persona_memory.memory.schemas import MemoryRecord

logger = logging.getLogger(__name__)

Candidates = Union[Iterable[MemoryRecord], AsyncIterable[MemoryRecord]]
EmbeddedCallback = Callable[[MemoryRecord, list[float]], Awaitable[None]]

# Similarity bands used in explanations, highest first
SIMILARITY_BANDS: tuple[tuple[float, str], ...] = (
    (0.9, "Highly similar content"),
    (0.7, "Similar content"),
    (0.5, "Moderately related"),
    (0.3, "Loosely related"),
)
LOW_SIMILARITY = "Low similarity"


@dataclass
class _Scored:
    record: MemoryRecord
    similarity: float


def _ranks_above(a: _Scored, b: _Scored) -> bool:
    if a.similarity != b.similarity:
        return a.similarity > b.similarity
    if a.record.importance != b.record.importance:
        return a.record.importance > b.record.importance
    return a.record.id < b.record.id


def similarity_band(similarity: float) -> str:
    """Return the human-readable band for a similarity value."""
    for floor, phrase in SIMILARITY_BANDS:
        if similarity >= floor:
            return phrase
    return LOW_SIMILARITY


def explain_similarity(similarity: float, reference: Optional[MemoryRecord], candidate: MemoryRecord) -> str:
    """Describe why two memories are similar.

    Example:
        "Similar content: shares 2 tags and 40% content overlap"
    """
    band = similarity_band(similarity)
    if reference is None:
        return band
    shared_tags = len(reference.tag_set & candidate.tag_set)
    overlap = jaccard(set(tokenize(reference.content)), set(tokenize(candidate.content)))
    noun = "tag" if shared_tags == 1 else "tags"
    return f"{band}: shares {shared_tags} {noun} and {round(overlap * 100)}% content overlap"


class SemanticSearchEngine:
    """Ranks candidate memories against a query embedding.

    Example:
        >>> engine = SemanticSearchEngine(EmbeddingCache(HashingEmbedder()))
        >>> result = await engine.search(SemanticSearchQuery("capital of France"), records)
        >>> result.hits[0].memory.content
        'Paris is the capital of France'
    """

    def __init__(self, cache: EmbeddingCache):
        self.cache = cache

    @property
    def model_name(self) -> str:
        return self.cache.model_name

    def usable_embedding(self, record: MemoryRecord) -> Optional[list[float]]:
        """Return the record's embedding if it belongs to the active model."""
        if not record.has_embedding or record.embedding_model != self.cache.model_name:
            return None
        return record.embedding

    async def search(
        self,
        query: SemanticSearchQuery,
        candidates: Candidates,
        on_embedded: Optional[EmbeddedCallback] = None,
    ) -> SemanticSearchResult:
        """Rank candidates against query text.

        Args:
            query: Validated search request.
            candidates: Records to rank (filters are applied here).
            on_embedded: Awaited with each record embedded on the fly.

        Returns:
            SemanticSearchResult; an empty hit list is a valid outcome.

        Raises:
            InvalidInputError: If the query text has no words.
            DependencyError: If the query itself cannot be embedded.
        """
        start = time.perf_counter()
        query_vector = await self.cache.embed(query.query)

        result = SemanticSearchResult(query=query.query)
        top: TopK[_Scored] = TopK(query.limit, _ranks_above)

        async for record in stream(candidates):
            if not query.filters.matches(record):
                continue
            result.total_candidates += 1

            vector = self.usable_embedding(record)
            if vector is None:
                if not query.embed_missing:
                    result.skipped_unembedded += 1
                    continue
                vector = await self._embed_candidate(record, on_embedded)
                if vector is None:
                    result.failed_embeddings += 1
                    continue

            similarity = self.cache.similarity(query_vector, vector)
            if similarity >= query.threshold:
                top.push(_Scored(record=record, similarity=similarity))

        result.total_matches = top.seen
        result.hits = [
            SearchHit(memory=scored.record, similarity=scored.similarity, rank=rank)
            for rank, scored in enumerate(top.results(), start=1)
        ]
        result.elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            f"Semantic search ranked {result.total_matches} of {result.total_candidates} "
            f"candidates ({result.skipped_unembedded} unembedded) in {result.elapsed_ms:.1f}ms"
        )
        return result

    async def find_similar(
        self,
        target_embedding: Sequence[float],
        candidates: Candidates,
        limit: int = 5,
        threshold: float = 0.5,
        reference: Optional[MemoryRecord] = None,
        exclude_ids: Iterable[str] = (),
    ) -> list[SearchHit]:
        """Rank candidates against an existing embedding.

        Args:
            target_embedding: Vector to compare against.
            candidates: Records to rank; deleted records are ignored.
            limit: Maximum hits.
            threshold: Minimum similarity.
            reference: Record the target embedding belongs to, used for
                the tag and content overlap explanation.
            exclude_ids: Identifiers never returned (typically the target).

        Returns:
            Ranked hits, each with an explanation.
        """
        if limit < 1:
            raise InvalidInputError("limit must be at least 1", field="limit")

        excluded = set(exclude_ids)
        top: TopK[_Scored] = TopK(limit, _ranks_above)
        async for record in stream(candidates):
            if record.is_deleted or record.id in excluded:
                continue
            vector = self.usable_embedding(record)
            if vector is None:
                continue
            similarity = self.cache.similarity(target_embedding, vector)
            if similarity >= threshold:
                top.push(_Scored(record=record, similarity=similarity))

        hits = []
        for rank, scored in enumerate(top.results(), start=1):
            hits.append(
                SearchHit(
                    memory=scored.record,
                    similarity=scored.similarity,
                    rank=rank,
                    explanation=self._safe_explanation(scored, reference),
                )
            )
        return hits

    async def _embed_candidate(
        self, record: MemoryRecord, on_embedded: Optional[EmbeddedCallback]
    ) -> Optional[list[float]]:
        try:
            vector = await self.cache.embed(record.content)
        except (InvalidInputError, DependencyError) as e:
            logger.warning(f"Skipping candidate {record.id}: embedding failed: {e}")
            return None

        if on_embedded is not None:
            try:
                await on_embedded(record, vector)
            except Exception as e:
                logger.warning(f"Could not store embedding for {record.id}: {e}")
        return vector

    @staticmethod
    def _safe_explanation(scored: _Scored, reference: Optional[MemoryRecord]) -> str:
        try:
            return explain_similarity(scored.similarity, reference, scored.record)
        except Exception as e:
            logger.debug(f"Explanation failed for {scored.record.id}: {e}")
            return similarity_band(scored.similarity)
