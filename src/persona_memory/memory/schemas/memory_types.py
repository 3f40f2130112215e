# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Memory record schemas for the persona memory core.

Defines Pydantic models for memory records together with the tier
enumeration and the small value objects derived from records
(scores, tier transitions, tier metrics, embeddings).

Invariants enforced here:
- content is non-empty
- importance is clamped to [0, 100]; missing or unparseable values become 50
- an embedding vector is always paired with its model identifier
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

# Importance used when a stored value is missing or unparseable
NEUTRAL_IMPORTANCE: int = 50


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class MemoryTier(str, Enum):
    """Coarse recency/importance bucket for a memory record.

    - HOT: frequently used, important memories
    - WARM: default tier for new memories
    - COLD: stale or unimportant memories
    """

    HOT = "hot"
    WARM = "warm"
    COLD = "cold"

    @property
    def rank(self) -> int:
        """Ordering of tiers: cold < warm < hot."""
        return _TIER_RANK[self]

    @classmethod
    def from_rank(cls, rank: int) -> "MemoryTier":
        """Return the tier at the given rank (0=cold, 2=hot)."""
        for tier, tier_rank in _TIER_RANK.items():
            if tier_rank == rank:
                return tier
        raise ValueError(f"no tier with rank {rank}")


_TIER_RANK = {MemoryTier.COLD: 0, MemoryTier.WARM: 1, MemoryTier.HOT: 2}


class TransitionReason(str, Enum):
    """Why a record changed tier."""

    MANUAL = "manual"
    SCORE = "score"
    CAPACITY = "capacity"


def coerce_importance(value: Any) -> int:
    """Coerce a raw importance value into the [0, 100] range.

    Missing or unparseable values map to NEUTRAL_IMPORTANCE.

    Example:
        >>> coerce_importance("75")
        75
        >>> coerce_importance(140)
        100
        >>> coerce_importance(None)
        50
    """
    if value is None or isinstance(value, bool):
        return NEUTRAL_IMPORTANCE
    try:
        number = float(value)
    except (TypeError, ValueError):
        return NEUTRAL_IMPORTANCE
    if number != number:  # NaN
        return NEUTRAL_IMPORTANCE
    return int(max(0.0, min(100.0, round(number))))


class MemoryRecord(BaseModel):
    """A persona-scoped unit of recall.

    Attributes:
        id: Opaque unique identifier.
        persona_id: Persona owning this memory.
        content: The memory text (required, non-empty).
        memory_type: Free-form type tag ("text", "fact", ...).
        name: Optional short title.
        summary: Optional human summary.
        tags: Ordered tags; duplicates allowed, filtered as a set.
        importance: Importance 0-100.
        tier: Current tier.
        embedding: Embedding vector once generated.
        embedding_model: Model identifier paired with the vector.
        access_count: Number of successful retrievals.
        last_accessed_at: Time of the last retrieval.
        created_at: Creation time.
        updated_at: Last mutation time.
        tier_changed_at: Time of the last tier change.
        deleted_at: Soft-delete time; None means live.
    """

    id: str = Field(..., min_length=1, description="Unique memory identifier")
    persona_id: str = Field(..., min_length=1, description="Owning persona")
    content: str = Field(..., description="The memory content")
    memory_type: str = Field(default="text", description="Free-form type tag")
    name: Optional[str] = Field(default=None, description="Optional short title")
    summary: Optional[str] = Field(default=None, description="Optional human summary")
    tags: list[str] = Field(default_factory=list, description="Ordered tag sequence")
    importance: int = Field(default=NEUTRAL_IMPORTANCE, description="Importance 0-100")
    tier: MemoryTier = Field(default=MemoryTier.WARM, description="Current tier")
    embedding: Optional[list[float]] = Field(default=None, description="Embedding vector")
    embedding_model: Optional[str] = Field(default=None, description="Model of the embedding")
    access_count: int = Field(default=0, ge=0, description="Retrieval counter")
    last_accessed_at: Optional[datetime] = Field(default=None, description="Last retrieval time")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")
    updated_at: datetime = Field(default_factory=utc_now, description="Last update time")
    tier_changed_at: Optional[datetime] = Field(default=None, description="Last tier change")
    deleted_at: Optional[datetime] = Field(default=None, description="Soft-delete time")

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        """Reject empty or whitespace-only content."""
        if not v or not v.strip():
            raise ValueError("content must be non-empty")
        return v

    @field_validator("importance", mode="before")
    @classmethod
    def validate_importance(cls, v: Any) -> int:
        """Clamp importance into [0, 100]."""
        return coerce_importance(v)

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> list[str]:
        """Accept None as no tags; strip blank tags."""
        if v is None:
            return []
        return [str(tag).strip() for tag in v if str(tag).strip()]

    @model_validator(mode="after")
    def validate_embedding_pair(self) -> "MemoryRecord":
        """An embedding vector must carry its model identifier."""
        if self.embedding is not None and not self.embedding_model:
            raise ValueError("embedding requires embedding_model")
        return self

    @property
    def is_deleted(self) -> bool:
        """True if the record has been soft-deleted."""
        return self.deleted_at is not None

    @property
    def tag_set(self) -> set[str]:
        """Tags as a case-folded set for filtering."""
        return {tag.lower() for tag in self.tags}

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None and len(self.embedding) > 0


@dataclass
class TierTransition:
    """Audit record for a tier change.

    Attributes:
        memory_id: Memory that moved.
        from_tier: Tier before the move.
        to_tier: Tier after the move.
        reason: MANUAL, SCORE or CAPACITY.
        score: Total score at the time of the move.
        timestamp: When the move was applied.
    """

    memory_id: str
    from_tier: MemoryTier
    to_tier: MemoryTier
    reason: TransitionReason
    score: float
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def is_promotion(self) -> bool:
        return self.to_tier.rank > self.from_tier.rank

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "memory_id": self.memory_id,
            "from_tier": self.from_tier.value,
            "to_tier": self.to_tier.value,
            "reason": self.reason.value,
            "score": self.score,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class MemoryScore:
    """Score breakdown for a single record.

    Component scores are normalized to [0, 1]; total_score is on a
    0-100 scale so that it compares directly with tier thresholds.
    """

    memory_id: str
    importance_score: float
    recency_score: float
    frequency_score: float
    total_score: float
    band_tier: MemoryTier
    recommended_tier: MemoryTier
    current_tier: MemoryTier

    @property
    def should_move(self) -> bool:
        return self.recommended_tier != self.current_tier


@dataclass
class TierMetrics:
    """Derived, read-only aggregate for one tier."""

    tier: MemoryTier
    count: int
    capacity: Optional[int]
    average_importance: float = 0.0
    average_access_count: float = 0.0
    average_age_days: float = 0.0
    storage_bytes: int = 0

    @property
    def utilization(self) -> float:
        """Fraction of capacity in use (0.0 for unbounded tiers)."""
        if not self.capacity:
            return 0.0
        return self.count / self.capacity

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "tier": self.tier.value,
            "count": self.count,
            "capacity": self.capacity,
            "utilization": self.utilization,
            "average_importance": self.average_importance,
            "average_access_count": self.average_access_count,
            "average_age_days": self.average_age_days,
            "storage_bytes": self.storage_bytes,
        }


@dataclass
class MemoryEmbedding:
    """Result of embedding generation for one record."""

    memory_id: str
    vector: list[float]
    model: str
    created_at: datetime = field(default_factory=utc_now)

    @property
    def dimensions(self) -> int:
        return len(self.vector)
