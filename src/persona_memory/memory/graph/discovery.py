# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Heuristic relationship discovery.

Proposes edges from a target memory to other live memories of the same
persona. A pair is proposed when at least one signal fires:

- semantic: cosine similarity >= auto_relationship_threshold
- tags: tag Jaccard overlap >= tag_overlap_threshold
- temporal: created within temporal_window_hours of each other

Type assignment, first match wins: similarity >= similar_type_threshold
is "similar"; a temporal signal is "temporal"; a semantic signal is
"elaborates"; tag overlap alone is "similar".

Confidence is the proposal strength plus 0.05 per shared tag. Discovery
never mutates the graph.
"""

import logging
from dataclasses import dataclass
from typing import AsyncIterable, Iterable, Optional, Sequence, Union

from persona_memory.config import GraphConfig
from persona_memory.memory.embedding.text import jaccard
from persona_memory.memory.graph.graph_store import RelationshipGraph
from persona_memory.memory.graph.types import RelationshipCandidate, RelationshipType, clamp_unit
from persona_memory.memory.retrieval.ranking import TopK, stream
from persona_memory.memory.retrieval.semantic import SemanticSearchEngine
from persona_memory.memory.schemas import MemoryRecord

logger = logging.getLogger(__name__)

SHARED_TAG_CONFIDENCE_BOOST = 0.05
# Weight of a purely temporal signal; keeps time-only proposals below auto-create
TEMPORAL_SIGNAL_WEIGHT = 0.5


@dataclass
class _Signals:
    similarity: Optional[float]
    tag_overlap: float
    shared_tags: int
    hours_apart: float


def _stronger(a: RelationshipCandidate, b: RelationshipCandidate) -> bool:
    if a.strength != b.strength:
        return a.strength > b.strength
    return a.to_memory_id < b.to_memory_id


class RelationshipDiscovery:
    """Proposes relationships for a memory without applying them.

    Example:
        >>> discovery = RelationshipDiscovery(graph, engine, config.graph)
        >>> proposals = await discovery.discover(record, store.iter_memories(persona_id=record.persona_id))
        >>> accepted = discovery.select_for_auto_create(proposals)
    """

    def __init__(
        self,
        graph: RelationshipGraph,
        engine: SemanticSearchEngine,
        config: Optional[GraphConfig] = None,
    ):
        self.graph = graph
        self.engine = engine
        self.config = config or graph.config

    async def discover(
        self,
        target: MemoryRecord,
        candidates: Union[Iterable[MemoryRecord], AsyncIterable[MemoryRecord]],
        target_embedding: Optional[Sequence[float]] = None,
    ) -> list[RelationshipCandidate]:
        """Propose relationships from target to candidates.

        Args:
            target: Memory the proposals start from.
            candidates: Other memories; only live ones of the same persona
                that target is not already linked to are considered.
            target_embedding: Target vector; defaults to the stored one.

        Returns:
            Proposals, strongest first, at most max_relationships_per_memory.
        """
        vector = target_embedding if target_embedding is not None else self.engine.usable_embedding(target)
        top: TopK[RelationshipCandidate] = TopK(self.config.max_relationships_per_memory, _stronger)

        async for other in stream(candidates):
            if (
                other.id == target.id
                or other.is_deleted
                or other.persona_id != target.persona_id
                or self.graph.has_link(target.id, other.id)
            ):
                continue
            try:
                proposal = self._propose(target, other, vector)
            except Exception as e:
                logger.warning(f"Failed to analyze relationship candidate {other.id}: {e}")
                continue
            if proposal is not None:
                top.push(proposal)

        proposals = top.results()
        logger.debug(f"Discovered {len(proposals)} relationship candidates for memory {target.id}")
        return proposals

    def select_for_auto_create(self, proposals: Iterable[RelationshipCandidate]) -> list[RelationshipCandidate]:
        """Keep proposals whose confidence meets the auto-create threshold."""
        return [p for p in proposals if p.confidence >= self.config.confidence_threshold]

    def _signals(
        self, target: MemoryRecord, other: MemoryRecord, vector: Optional[Sequence[float]]
    ) -> _Signals:
        similarity = None
        other_vector = self.engine.usable_embedding(other)
        if vector is not None and other_vector is not None:
            similarity = self.engine.cache.similarity(vector, other_vector)
        shared = target.tag_set & other.tag_set
        hours_apart = abs((target.created_at - other.created_at).total_seconds()) / 3600
        return _Signals(
            similarity=similarity,
            tag_overlap=jaccard(target.tag_set, other.tag_set),
            shared_tags=len(shared),
            hours_apart=hours_apart,
        )

    def _propose(
        self, target: MemoryRecord, other: MemoryRecord, vector: Optional[Sequence[float]]
    ) -> Optional[RelationshipCandidate]:
        cfg = self.config
        signals = self._signals(target, other, vector)

        semantic = signals.similarity is not None and signals.similarity >= cfg.auto_relationship_threshold
        tagged = signals.shared_tags > 0 and signals.tag_overlap >= cfg.tag_overlap_threshold
        temporal = cfg.temporal_window_hours > 0 and signals.hours_apart < cfg.temporal_window_hours
        if not (semantic or tagged or temporal):
            return None

        reasons = []
        strengths = []
        if semantic:
            strengths.append(signals.similarity)
            reasons.append(f"Semantic similarity: {signals.similarity * 100:.1f}%")
        if tagged:
            strengths.append(signals.tag_overlap)
            reasons.append(f"Tag overlap: {signals.tag_overlap * 100:.0f}%")
        if temporal:
            proximity = 1.0 - signals.hours_apart / cfg.temporal_window_hours
            strengths.append(TEMPORAL_SIGNAL_WEIGHT * proximity)
            reasons.append(f"Created {signals.hours_apart:.1f}h apart")

        if semantic and signals.similarity >= cfg.similar_type_threshold:
            relationship_type = RelationshipType.SIMILAR
        elif temporal:
            relationship_type = RelationshipType.TEMPORAL
        elif semantic:
            relationship_type = RelationshipType.ELABORATES
        else:
            relationship_type = RelationshipType.SIMILAR

        strength = clamp_unit(max(strengths))
        confidence = clamp_unit(strength + SHARED_TAG_CONFIDENCE_BOOST * signals.shared_tags)
        return RelationshipCandidate(
            from_memory_id=target.id,
            to_memory_id=other.id,
            relationship_type=relationship_type,
            strength=strength,
            confidence=confidence,
            reason="; ".join(reasons),
        )
