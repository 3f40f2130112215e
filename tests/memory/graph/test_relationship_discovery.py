# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Tests for heuristic relationship discovery.

Signals: semantic similarity, tag overlap and creation-time proximity.
Discovery proposes edges; it never changes the graph.
"""

from datetime import timedelta

import pytest

from conftest import FIXED_NOW, make_record
from persona_memory.config import GraphConfig
from persona_memory.memory.embedding import EmbeddingCache, HashingEmbedder
from persona_memory.memory.graph import RelationshipGraph, RelationshipType
from persona_memory.memory.graph.discovery import RelationshipDiscovery
from persona_memory.memory.retrieval import SemanticSearchEngine

EMBEDDER = HashingEmbedder()


def embedded(memory_id, content, **fields):
    return make_record(
        memory_id,
        content=content,
        embedding=EMBEDDER(content),
        embedding_model=EMBEDDER.model_name,
        **fields,
    )


def discovery_for(records, **policy):
    graph = RelationshipGraph(GraphConfig(**policy))
    for record in records:
        graph.add_memory(record.id)
    engine = SemanticSearchEngine(EmbeddingCache(EMBEDDER))
    return RelationshipDiscovery(graph, engine), graph


class TestSignals:
    """Tests for individual discovery signals."""

    @pytest.mark.asyncio
    async def test_near_duplicate_is_similar(self):
        """Identical content yields a 'similar' proposal at full strength."""
        target = embedded("t", "hiking trip to the alps")
        twin = embedded("twin", "hiking trip to the alps")
        discovery, _ = discovery_for([target, twin])

        proposals = await discovery.discover(target, [target, twin])

        assert len(proposals) == 1
        proposal = proposals[0]
        assert proposal.to_memory_id == "twin"
        assert proposal.relationship_type == RelationshipType.SIMILAR
        assert proposal.strength == pytest.approx(1.0)
        assert "Semantic similarity: 100.0%" in proposal.reason

    @pytest.mark.asyncio
    async def test_tag_overlap_alone(self):
        """Shared tags propose a 'similar' edge with a confidence boost."""
        target = make_record("t", content="alpha beta", tags=["travel", "alps", "summer"])
        other = make_record(
            "o", content="gamma delta", tags=["travel", "alps"], created_at=FIXED_NOW - timedelta(hours=48)
        )
        discovery, _ = discovery_for([target, other])

        [proposal] = await discovery.discover(target, [other])

        assert proposal.relationship_type == RelationshipType.SIMILAR
        assert proposal.strength == pytest.approx(2 / 3)
        assert proposal.confidence == pytest.approx(2 / 3 + 0.1)
        assert proposal.reason == "Tag overlap: 67%"

    @pytest.mark.asyncio
    async def test_temporal_proximity_alone(self):
        """Memories created close together get a weak 'temporal' proposal."""
        target = make_record("t", content="alpha beta")
        other = make_record("o", content="gamma delta", created_at=FIXED_NOW - timedelta(hours=6))
        discovery, _ = discovery_for([target, other])

        [proposal] = await discovery.discover(target, [other])

        assert proposal.relationship_type == RelationshipType.TEMPORAL
        assert proposal.strength == pytest.approx(0.5 * (1 - 6 / 24))
        assert proposal.reason == "Created 6.0h apart"
        assert discovery.select_for_auto_create([proposal]) == []

    @pytest.mark.asyncio
    async def test_no_signal_no_proposal(self):
        """Unrelated memories far apart in time are not proposed."""
        target = make_record("t", content="alpha beta")
        other = make_record("o", content="gamma delta", created_at=FIXED_NOW - timedelta(days=5))
        discovery, _ = discovery_for([target, other])

        assert await discovery.discover(target, [other]) == []


class TestCandidateSelection:
    """Tests for which candidates are considered."""

    @pytest.mark.asyncio
    async def test_skips_self_other_personas_deleted_and_linked(self):
        """Only live, unlinked memories of the same persona are proposed."""
        target = embedded("t", "hiking trip")
        candidates = [
            target,
            embedded("foreign", "hiking trip", persona_id="someone-else"),
            embedded("gone", "hiking trip", deleted_at=FIXED_NOW),
            embedded("linked", "hiking trip"),
            embedded("fresh", "hiking trip"),
        ]
        discovery, graph = discovery_for(candidates)
        graph.put(graph.build_relationship("t", "linked", RelationshipType.SIMILAR))

        proposals = await discovery.discover(target, candidates)

        assert [p.to_memory_id for p in proposals] == ["fresh"]
        assert graph.edge_count == 1

    @pytest.mark.asyncio
    async def test_proposal_cap_keeps_strongest(self):
        """At most max_relationships_per_memory proposals, strongest first."""
        target = make_record("t", content="x", tags=["a", "b", "c", "d"])
        candidates = [
            make_record("two", content="y", tags=["a", "b"], created_at=FIXED_NOW - timedelta(days=3)),
            make_record("three", content="y", tags=["a", "b", "c"], created_at=FIXED_NOW - timedelta(days=3)),
            make_record("four", content="y", tags=["a", "b", "c", "d"], created_at=FIXED_NOW - timedelta(days=3)),
        ]
        discovery, _ = discovery_for([target, *candidates], max_relationships_per_memory=2)

        proposals = await discovery.discover(target, candidates)

        assert [p.to_memory_id for p in proposals] == ["four", "three"]

    def test_select_for_auto_create_uses_confidence_threshold(self):
        """Only proposals at or above the confidence threshold are kept."""
        from persona_memory.memory.graph import RelationshipCandidate

        discovery, _ = discovery_for([])
        keep = RelationshipCandidate("a", "b", RelationshipType.SIMILAR, 0.6, 0.6, "x")
        drop = RelationshipCandidate("a", "c", RelationshipType.SIMILAR, 0.5, 0.59, "x")

        assert discovery.select_for_auto_create([keep, drop]) == [keep]
