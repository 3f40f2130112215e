# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Memory relationship graph.

Relationship discovery lives in ``persona_memory.memory.graph.discovery``
and is imported from there directly.
"""

from persona_memory.memory.graph.graph_store import RelationshipGraph
from persona_memory.memory.graph.types import (
    ConnectionCount,
    DecayChange,
    DecayResult,
    GraphAnalytics,
    GraphHit,
    RelatedMemory,
    Relationship,
    RelationshipCandidate,
    RelationshipType,
    TraversalSort,
    clamp_unit,
)

__all__ = [
    "RelationshipGraph",
    "ConnectionCount",
    "DecayChange",
    "DecayResult",
    "GraphAnalytics",
    "GraphHit",
    "RelatedMemory",
    "Relationship",
    "RelationshipCandidate",
    "RelationshipType",
    "TraversalSort",
    "clamp_unit",
]
