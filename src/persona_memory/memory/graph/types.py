# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Relationship graph type definitions.

Provides core types for the memory relationship graph:
- RelationshipType: Enum for edge types between memories
- Relationship: A directed, typed, weighted edge
- RelationshipCandidate: A proposed edge from discovery
- RelatedMemory / GraphAnalytics / DecayResult: query and sweep results
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from persona_memory.memory.schemas import ItemOutcome, MemoryRecord, utc_now


def clamp_unit(value: float) -> float:
    """Clamp a value into [0.0, 1.0].

    Example:
        >>> clamp_unit(1.7)
        1.0
        >>> clamp_unit(-0.2)
        0.0
    """
    return max(0.0, min(1.0, float(value)))


class RelationshipType(str, Enum):
    """Types of relationships between memories.

    Attributes:
        SIMILAR: Both memories describe closely related content.
        CAUSAL: The source memory led to the target memory.
        TEMPORAL: The memories were formed close together in time.
        DERIVED: The target was derived from the source.
        CONTRADICTS: The memories disagree.
        ELABORATES: The target adds detail to the source.
    """

    SIMILAR = "similar"
    CAUSAL = "causal"
    TEMPORAL = "temporal"
    DERIVED = "derived"
    CONTRADICTS = "contradicts"
    ELABORATES = "elaborates"


class TraversalSort(str, Enum):
    """Sort keys for related-memory traversal results."""

    STRENGTH = "strength"
    CONFIDENCE = "confidence"
    RECENCY = "recency"


class Relationship(BaseModel):
    """A directed, typed link between two memories.

    Strength and confidence are clamped into [0, 1] on construction.
    At most one relationship exists per (from, to, type) triple.

    Attributes:
        id: Unique relationship identifier.
        from_memory_id: Source memory.
        to_memory_id: Target memory.
        relationship_type: Edge type.
        strength: Edge weight (0.0-1.0).
        confidence: Confidence in the edge (0.0-1.0).
        created_at: Creation time.
        last_reinforced_at: Last explicit strengthen/update time.
        last_decayed_at: Last time a decay sweep touched the edge.
    """

    id: str = Field(..., min_length=1)
    from_memory_id: str = Field(..., min_length=1)
    to_memory_id: str = Field(..., min_length=1)
    relationship_type: RelationshipType
    strength: float = 0.5
    confidence: float = 0.8
    created_at: datetime = Field(default_factory=utc_now)
    last_reinforced_at: datetime = Field(default_factory=utc_now)
    last_decayed_at: Optional[datetime] = None

    @field_validator("strength", "confidence", mode="before")
    @classmethod
    def validate_unit_interval(cls, v: Any) -> float:
        """Clamp weights into [0.0, 1.0]."""
        return clamp_unit(v)

    @model_validator(mode="after")
    def validate_endpoints(self) -> "Relationship":
        """A memory cannot be related to itself."""
        if self.from_memory_id == self.to_memory_id:
            raise ValueError("relationship endpoints must differ")
        return self

    @property
    def triple(self) -> tuple[str, str, str]:
        """The (from, to, type) key identifying this edge."""
        return (self.from_memory_id, self.to_memory_id, self.relationship_type.value)

    @property
    def decay_anchor(self) -> datetime:
        """Time from which the next decay sweep measures elapsed days."""
        if self.last_decayed_at is not None and self.last_decayed_at > self.last_reinforced_at:
            return self.last_decayed_at
        return self.last_reinforced_at

    def other_end(self, memory_id: str) -> str:
        """Return the endpoint opposite to memory_id."""
        return self.to_memory_id if self.from_memory_id == memory_id else self.from_memory_id


@dataclass
class RelationshipCandidate:
    """A proposed relationship produced by discovery (not yet applied)."""

    from_memory_id: str
    to_memory_id: str
    relationship_type: RelationshipType
    strength: float
    confidence: float
    reason: str

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "from_memory_id": self.from_memory_id,
            "to_memory_id": self.to_memory_id,
            "relationship_type": self.relationship_type.value,
            "strength": self.strength,
            "confidence": self.confidence,
            "reason": self.reason,
        }


@dataclass
class GraphHit:
    """A memory id reached during traversal, with the edge used to reach it."""

    memory_id: str
    relationship: Relationship
    distance: int


@dataclass
class RelatedMemory:
    """A related memory resolved to its record."""

    memory: MemoryRecord
    relationship: Relationship
    distance: int


@dataclass
class ConnectionCount:
    """Degree of a memory in the relationship graph."""

    memory_id: str
    connection_count: int


@dataclass
class GraphAnalytics:
    """Aggregate statistics over the relationship graph.

    Attributes:
        total_relationships: Number of edges.
        average_strength: Mean edge strength (0.0 when empty).
        most_connected_memory: Highest-degree memory (in + out edges), or
            None when no memory has an edge.
        relationships_by_type: Edge counts per relationship type.
        graph_density: edges / (nodes * (nodes - 1)).
        clusters_found: Connected components, ignoring direction.
    """

    total_relationships: int = 0
    average_strength: float = 0.0
    most_connected_memory: Optional[ConnectionCount] = None
    relationships_by_type: dict[str, int] = field(default_factory=dict)
    graph_density: float = 0.0
    clusters_found: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "total_relationships": self.total_relationships,
            "average_strength": self.average_strength,
            "most_connected_memory": (
                {
                    "memory_id": self.most_connected_memory.memory_id,
                    "connection_count": self.most_connected_memory.connection_count,
                }
                if self.most_connected_memory is not None
                else None
            ),
            "relationships_by_type": dict(self.relationships_by_type),
            "graph_density": self.graph_density,
            "clusters_found": self.clusters_found,
        }


@dataclass
class DecayChange:
    """Planned effect of one decay sweep on one edge."""

    relationship_id: str
    old_strength: float
    new_strength: float
    remove: bool
    decayed_at: datetime


@dataclass
class DecayResult:
    """Result of a relationship decay sweep.

    Attributes:
        decayed: Edges whose strength was reduced and kept.
        removed: Edges removed for falling below the floor.
        unchanged: Edges with no elapsed time since their anchor.
        removed_ids: Identifiers of removed edges.
        failures: Edges whose change could not be committed.
        cancelled: True if the sweep stopped early.
        duration_ms: Wall time of the sweep.
    """

    decayed: int = 0
    removed: int = 0
    unchanged: int = 0
    removed_ids: list[str] = field(default_factory=list)
    failures: list[ItemOutcome[None]] = field(default_factory=list)
    cancelled: bool = False
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return not self.failures and not self.cancelled

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "decayed": self.decayed,
            "removed": self.removed,
            "unchanged": self.unchanged,
            "removed_ids": list(self.removed_ids),
            "failures": [{"item_id": f.item_id, "error": f.error} for f in self.failures],
            "cancelled": self.cancelled,
            "success": self.success,
            "duration_ms": self.duration_ms,
        }
