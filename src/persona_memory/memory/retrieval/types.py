# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Search request and response value objects.

Query objects validate themselves on construction and raise
InvalidInputError, so a rejected search never touches any state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from persona_memory.errors import InvalidInputError
from persona_memory.memory.schemas import MemoryRecord, MemoryTier


@dataclass
class SearchFilters:
    """Record filters shared by keyword and semantic search.

    Attributes:
        persona_id: Only records owned by this persona.
        tier: Only records in this tier.
        memory_type: Only records with this type tag.
        tags: Records must carry every one of these tags (case-insensitive).
        min_importance: Only records with importance at or above this.
        created_after: Only records created at or after this time.
        created_before: Only records created strictly before this time.
    """

    persona_id: Optional[str] = None
    tier: Optional[MemoryTier] = None
    memory_type: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    min_importance: Optional[int] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.tier is not None and not isinstance(self.tier, MemoryTier):
            try:
                self.tier = MemoryTier(self.tier)
            except ValueError as e:
                raise InvalidInputError(f"unknown tier: {self.tier}", field="tier") from e
        if self.min_importance is not None and not 0 <= self.min_importance <= 100:
            raise InvalidInputError("min_importance must be within [0, 100]", field="min_importance")
        if (
            self.created_after is not None
            and self.created_before is not None
            and self.created_after > self.created_before
        ):
            raise InvalidInputError("created_after must not be later than created_before", field="created_after")

    def matches(self, record: MemoryRecord) -> bool:
        """Check whether a live record passes every filter."""
        if record.is_deleted:
            return False
        if self.persona_id is not None and record.persona_id != self.persona_id:
            return False
        if self.tier is not None and record.tier != self.tier:
            return False
        if self.memory_type is not None and record.memory_type != self.memory_type:
            return False
        if self.tags and not {t.lower() for t in self.tags} <= record.tag_set:
            return False
        if self.min_importance is not None and record.importance < self.min_importance:
            return False
        if self.created_after is not None and record.created_at < self.created_after:
            return False
        if self.created_before is not None and record.created_at >= self.created_before:
            return False
        return True


@dataclass
class SemanticSearchQuery:
    """Semantic search request.

    Attributes:
        query: Query text (must contain at least one word).
        filters: Record filters applied before similarity.
        threshold: Minimum cosine similarity for a hit.
        limit: Maximum hits returned.
        embed_missing: Embed unembedded candidates on the fly.
    """

    query: str
    filters: SearchFilters = field(default_factory=SearchFilters)
    threshold: float = 0.1
    limit: int = 10
    embed_missing: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.query, str) or not self.query.strip():
            raise InvalidInputError("query must be non-empty", field="query")
        if not -1.0 <= self.threshold <= 1.0:
            raise InvalidInputError("threshold must be within [-1, 1]", field="threshold")
        if self.limit < 1:
            raise InvalidInputError("limit must be at least 1", field="limit")


@dataclass
class SearchHit:
    """A ranked semantic match."""

    memory: MemoryRecord
    similarity: float
    rank: int
    explanation: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "memory_id": self.memory.id,
            "similarity": self.similarity,
            "rank": self.rank,
            "explanation": self.explanation,
        }


@dataclass
class SemanticSearchResult:
    """Ranked semantic search response.

    Attributes:
        query: Query text.
        hits: Ranked hits, best first, at most ``limit``.
        total_candidates: Records that passed the filters.
        total_matches: Embedded candidates at or above the threshold,
            before truncation to ``limit``.
        skipped_unembedded: Candidates excluded for lacking an embedding.
        failed_embeddings: Candidates whose on-the-fly embedding failed.
        elapsed_ms: Wall time of the search.
    """

    query: str
    hits: list[SearchHit] = field(default_factory=list)
    total_candidates: int = 0
    total_matches: int = 0
    skipped_unembedded: int = 0
    failed_embeddings: int = 0
    elapsed_ms: float = 0.0

    @property
    def memories(self) -> list[MemoryRecord]:
        return [hit.memory for hit in self.hits]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "query": self.query,
            "hits": [hit.to_dict() for hit in self.hits],
            "total_candidates": self.total_candidates,
            "total_matches": self.total_matches,
            "skipped_unembedded": self.skipped_unembedded,
            "failed_embeddings": self.failed_embeddings,
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass
class EnhancedSearchResult:
    """Merged keyword and semantic search response.

    Attributes:
        hits: Semantic hits first, then keyword-only matches.
        total: Merged matches before truncation.
        keyword_total: Keyword matches found.
        semantic: The semantic part, when semantic ranking was requested
            and succeeded.
        semantic_error: Why semantic ranking was skipped, when it failed.
    """

    hits: list[SearchHit] = field(default_factory=list)
    total: int = 0
    keyword_total: int = 0
    semantic: Optional[SemanticSearchResult] = None
    semantic_error: Optional[str] = None

    @property
    def memories(self) -> list[MemoryRecord]:
        return [hit.memory for hit in self.hits]
