# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Memory relationship graph with NetworkX backend.

Provides the RelationshipGraph class, an in-memory index over live
memory identifiers and the typed, weighted relationships between them.
The persisted relationship rows are authoritative; this index can be
rebuilt from them at any time.

Edges live in a MultiDiGraph keyed by relationship type, so there is at
most one edge per (from, to, type) triple while different types between
the same pair coexist.
"""

import logging
import uuid
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Iterable, Iterator, Optional

import networkx as nx

from persona_memory.config import GraphConfig
from persona_memory.errors import InvalidInputError, NotFoundError
from persona_memory.memory.graph.types import (
    ConnectionCount,
    DecayChange,
    GraphAnalytics,
    GraphHit,
    Relationship,
    RelationshipType,
    TraversalSort,
    clamp_unit,
)
from persona_memory.memory.schemas import utc_now

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


class RelationshipGraph:
    """Directed multigraph over live memory identifiers.

    Attributes:
        config: Graph policy (defaults, traversal limits, decay).

    Example:
        >>> graph = RelationshipGraph()
        >>> graph.add_memory("m1")
        >>> graph.add_memory("m2")
        >>> rel = graph.build_relationship("m1", "m2", RelationshipType.SIMILAR, 0.8, 0.9)
        >>> graph.put(rel)
        >>> [r.id for r in graph.find_connection_path("m1", "m2")] == [rel.id]
        True
    """

    def __init__(self, config: Optional[GraphConfig] = None) -> None:
        """Initialize the relationship graph.

        Args:
            config: Graph policy. Defaults to GraphConfig().
        """
        self.config = config or GraphConfig()
        self._graph: nx.MultiDiGraph = nx.MultiDiGraph()
        # relationship id -> (from, to, type key)
        self._index: dict[str, tuple[str, str, str]] = {}

    @property
    def node_count(self) -> int:
        """Return the number of memories in the graph."""
        return self._graph.number_of_nodes()

    @property
    def edge_count(self) -> int:
        """Return the number of relationships in the graph."""
        return self._graph.number_of_edges()

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def add_memory(self, memory_id: str) -> None:
        """Register a live memory as a node."""
        self._graph.add_node(memory_id)

    def has_memory(self, memory_id: str) -> bool:
        """Check if a memory is a node of the graph."""
        return self._graph.has_node(memory_id)

    def remove_memory(self, memory_id: str) -> list[Relationship]:
        """Remove a memory and cascade removal of its incident edges.

        Returns:
            The relationships that were removed.
        """
        if not self._graph.has_node(memory_id):
            return []
        removed = self.incident(memory_id)
        for rel in removed:
            self._index.pop(rel.id, None)
        self._graph.remove_node(memory_id)
        return removed

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def build_relationship(
        self,
        from_memory_id: str,
        to_memory_id: str,
        relationship_type: RelationshipType,
        strength: Optional[float] = None,
        confidence: Optional[float] = None,
        now: Optional[datetime] = None,
        relationship_id: Optional[str] = None,
    ) -> Relationship:
        """Build the relationship a create call would store, without storing it.

        A duplicate (from, to, type) yields an updated copy of the existing
        edge that keeps its identifier and creation time.

        Raises:
            InvalidInputError: If from == to or the type is unknown.
            NotFoundError: If either endpoint is not a live memory.
        """
        if from_memory_id == to_memory_id:
            raise InvalidInputError("a memory cannot be related to itself", field="to_memory_id")
        relationship_type = self._coerce_type(relationship_type)
        for memory_id in (from_memory_id, to_memory_id):
            if not self._graph.has_node(memory_id):
                raise NotFoundError("memory", memory_id)

        now = now or utc_now()
        strength = self.config.default_strength if strength is None else strength
        confidence = self.config.default_confidence if confidence is None else confidence

        existing = self.find(from_memory_id, to_memory_id, relationship_type)
        if existing is not None:
            return existing.model_copy(
                update={
                    "strength": clamp_unit(strength),
                    "confidence": clamp_unit(confidence),
                    "last_reinforced_at": now,
                }
            )

        return Relationship(
            id=relationship_id or str(uuid.uuid4()),
            from_memory_id=from_memory_id,
            to_memory_id=to_memory_id,
            relationship_type=relationship_type,
            strength=strength,
            confidence=confidence,
            created_at=now,
            last_reinforced_at=now,
        )

    def build_strength_update(
        self,
        relationship_id: str,
        strength: float,
        confidence: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Relationship:
        """Build an updated copy of an edge with new strength/confidence.

        Raises:
            NotFoundError: If the relationship does not exist.
        """
        existing = self.get(relationship_id)
        if existing is None:
            raise NotFoundError("relationship", relationship_id)
        update: dict[str, Any] = {
            "strength": clamp_unit(strength),
            "last_reinforced_at": now or utc_now(),
        }
        if confidence is not None:
            update["confidence"] = clamp_unit(confidence)
        return existing.model_copy(update=update)

    def put(self, relationship: Relationship) -> None:
        """Insert or replace an edge in the index.

        Raises:
            NotFoundError: If either endpoint is not a live memory.
        """
        for memory_id in (relationship.from_memory_id, relationship.to_memory_id):
            if not self._graph.has_node(memory_id):
                raise NotFoundError("memory", memory_id)

        from_id, to_id, key = relationship.triple
        previous = self._graph.get_edge_data(from_id, to_id, key)
        if previous is not None and previous["relationship"].id != relationship.id:
            self._index.pop(previous["relationship"].id, None)

        self._graph.add_edge(from_id, to_id, key=key, relationship=relationship)
        self._index[relationship.id] = (from_id, to_id, key)

    def delete(self, relationship_id: str) -> bool:
        """Delete an edge.

        Returns:
            True if the edge was removed, False if it did not exist.
        """
        location = self._index.pop(relationship_id, None)
        if location is None:
            return False
        from_id, to_id, key = location
        if self._graph.has_edge(from_id, to_id, key):
            self._graph.remove_edge(from_id, to_id, key)
        return True

    def get(self, relationship_id: str) -> Optional[Relationship]:
        """Get an edge by identifier."""
        location = self._index.get(relationship_id)
        if location is None:
            return None
        data = self._graph.get_edge_data(*location)
        return data["relationship"] if data else None

    def find(
        self, from_memory_id: str, to_memory_id: str, relationship_type: RelationshipType
    ) -> Optional[Relationship]:
        """Get the edge for a (from, to, type) triple."""
        key = RelationshipType(relationship_type).value
        data = self._graph.get_edge_data(from_memory_id, to_memory_id, key)
        return data["relationship"] if data else None

    def has_link(self, from_memory_id: str, to_memory_id: str) -> bool:
        """Check if any edge leads from one memory to the other."""
        return self._graph.has_edge(from_memory_id, to_memory_id)

    def relationships(self) -> Iterator[Relationship]:
        """Iterate all edges."""
        for _, _, data in self._graph.edges(data=True):
            yield data["relationship"]

    def outgoing(self, memory_id: str) -> list[Relationship]:
        """Outgoing edges of a memory, sorted by identifier."""
        if not self._graph.has_node(memory_id):
            return []
        edges = [data["relationship"] for _, _, data in self._graph.out_edges(memory_id, data=True)]
        return sorted(edges, key=lambda r: r.id)

    def incident(self, memory_id: str) -> list[Relationship]:
        """Incoming and outgoing edges of a memory, sorted by identifier."""
        if not self._graph.has_node(memory_id):
            return []
        edges = [data["relationship"] for _, _, data in self._graph.out_edges(memory_id, data=True)]
        edges.extend(data["relationship"] for _, _, data in self._graph.in_edges(memory_id, data=True))
        return sorted(edges, key=lambda r: r.id)

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def get_related(
        self,
        memory_id: str,
        max_depth: Optional[int] = None,
        min_strength: Optional[float] = None,
        relationship_types: Optional[Iterable[RelationshipType]] = None,
        include_decayed: bool = False,
        sort_by: TraversalSort = TraversalSort.STRENGTH,
        now: Optional[datetime] = None,
    ) -> list[GraphHit]:
        """Breadth-first traversal over edges in either direction.

        Each reachable memory is reported once, with the edge that first
        reached it and its hop distance. Type filters always apply; the
        strength and staleness filters are skipped when include_decayed
        is True.

        Args:
            memory_id: Origin memory.
            max_depth: Hop limit (default from config).
            min_strength: Strength filter (default from config).
            relationship_types: Only follow these types.
            include_decayed: Also follow weak and stale edges.
            sort_by: Result order key, descending; ties by relationship id.
            now: Reference time for staleness.

        Returns:
            List of hits; empty for an unknown memory.
        """
        if not self._graph.has_node(memory_id):
            return []

        depth_limit = self.config.max_traversal_depth if max_depth is None else max_depth
        if depth_limit < 1:
            raise InvalidInputError("max_depth must be at least 1", field="max_depth")
        strength_floor = self.config.min_relationship_strength if min_strength is None else min_strength
        allowed = {self._coerce_type(t) for t in relationship_types} if relationship_types else None
        stale_before = (now or utc_now()) - timedelta(days=self.config.relationship_ttl_days)

        visited = {memory_id}
        hits: list[GraphHit] = []
        queue: deque[tuple[str, int]] = deque([(memory_id, 0)])
        while queue:
            node, depth = queue.popleft()
            if depth >= depth_limit:
                continue
            for rel in self.incident(node):
                if allowed is not None and rel.relationship_type not in allowed:
                    continue
                if not include_decayed:
                    if rel.strength < strength_floor or rel.last_reinforced_at < stale_before:
                        continue
                neighbor = rel.other_end(node)
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                hits.append(GraphHit(memory_id=neighbor, relationship=rel, distance=depth + 1))
                queue.append((neighbor, depth + 1))

        sort_key = TraversalSort(sort_by)
        hits.sort(key=lambda h: h.relationship.id)
        hits.sort(key=lambda h: self._sort_value(h.relationship, sort_key), reverse=True)
        return hits

    def find_connection_path(
        self, from_memory_id: str, to_memory_id: str, max_hops: Optional[int] = None
    ) -> Optional[list[Relationship]]:
        """Shortest path by hop count between two memories.

        Follows outgoing edges first. When that finds nothing and
        path_reverse_fallback is enabled, retries ignoring direction, so
        edges in the returned list may point backwards.

        Returns:
            Ordered edge list (empty when from == to), or None when either
            memory is unknown or no path exists within the hop cap.
        """
        if not self._graph.has_node(from_memory_id) or not self._graph.has_node(to_memory_id):
            return None
        if from_memory_id == to_memory_id:
            return []

        hop_cap = self.config.max_path_hops if max_hops is None else max_hops
        path = self._bfs_path(from_memory_id, to_memory_id, hop_cap, directed=True)
        if path is None and self.config.path_reverse_fallback:
            path = self._bfs_path(from_memory_id, to_memory_id, hop_cap, directed=False)
        return path

    def _bfs_path(
        self, source: str, target: str, hop_cap: int, directed: bool
    ) -> Optional[list[Relationship]]:
        parents: dict[str, tuple[str, Relationship]] = {}
        visited = {source}
        queue: deque[tuple[str, int]] = deque([(source, 0)])
        while queue:
            node, depth = queue.popleft()
            if depth >= hop_cap:
                continue
            edges = self.outgoing(node) if directed else self.incident(node)
            for rel in sorted(edges, key=lambda r: (r.other_end(node), r.id)):
                neighbor = rel.other_end(node)
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                parents[neighbor] = (node, rel)
                if neighbor == target:
                    return self._unwind(parents, source, target)
                queue.append((neighbor, depth + 1))
        return None

    @staticmethod
    def _unwind(parents: dict[str, tuple[str, Relationship]], source: str, target: str) -> list[Relationship]:
        path: list[Relationship] = []
        node = target
        while node != source:
            node, rel = parents[node]
            path.append(rel)
        path.reverse()
        return path

    # ------------------------------------------------------------------
    # Decay
    # ------------------------------------------------------------------

    def plan_decay(self, now: Optional[datetime] = None) -> list[DecayChange]:
        """Compute the effect of one decay sweep without applying it.

        strength *= rate ** elapsed_days, where elapsed days run from the
        later of last reinforcement and last decay. Edges with no elapsed
        time are left out of the plan.
        """
        now = now or utc_now()
        changes = []
        for rel in sorted(self.relationships(), key=lambda r: r.id):
            elapsed = (now - rel.decay_anchor).total_seconds() / SECONDS_PER_DAY
            if elapsed <= 0:
                continue
            rate = self.config.decay_rate_for(rel.relationship_type.value)
            new_strength = clamp_unit(rel.strength * (rate ** elapsed))
            changes.append(
                DecayChange(
                    relationship_id=rel.id,
                    old_strength=rel.strength,
                    new_strength=new_strength,
                    remove=new_strength < self.config.decay_floor,
                    decayed_at=now,
                )
            )
        return changes

    def decayed_copy(self, change: DecayChange) -> Optional[Relationship]:
        """Return the edge as it should look after a planned change.

        Returns None when the edge is gone or was touched after planning.
        """
        rel = self.get(change.relationship_id)
        if rel is None or rel.strength != change.old_strength:
            return None
        return rel.model_copy(update={"strength": change.new_strength, "last_decayed_at": change.decayed_at})

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def analytics(self) -> GraphAnalytics:
        """Compute aggregate statistics over the graph."""
        result = GraphAnalytics(relationships_by_type={t.value: 0 for t in RelationshipType})
        edges = list(self.relationships())
        result.total_relationships = len(edges)
        if edges:
            result.average_strength = sum(r.strength for r in edges) / len(edges)
        for rel in edges:
            result.relationships_by_type[rel.relationship_type.value] += 1

        if self.node_count:
            degrees = sorted(self._graph.degree(), key=lambda item: (-item[1], item[0]))
            memory_id, degree = degrees[0]
            if degree > 0:
                result.most_connected_memory = ConnectionCount(memory_id=memory_id, connection_count=degree)
            result.graph_density = nx.density(self._graph) if self.node_count > 1 else 0.0
            result.clusters_found = nx.number_weakly_connected_components(self._graph)
        return result

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Remove all nodes and edges."""
        self._graph.clear()
        self._index.clear()

    def rebuild(self, memory_ids: Iterable[str], relationships: Iterable[Relationship]) -> int:
        """Replace the index with live memories and their edges.

        Edges whose endpoints are not live are dropped.

        Returns:
            Number of dropped edges.
        """
        self.clear()
        for memory_id in memory_ids:
            self._graph.add_node(memory_id)

        dropped = 0
        for rel in relationships:
            if self._graph.has_node(rel.from_memory_id) and self._graph.has_node(rel.to_memory_id):
                self.put(rel)
            else:
                dropped += 1
        if dropped:
            logger.info(f"Dropped {dropped} relationships with missing endpoints during rebuild")
        return dropped

    def to_dict(self) -> dict[str, Any]:
        """Serialize the graph to a dictionary."""
        return {
            "nodes": sorted(self._graph.nodes()),
            "edges": [rel.model_dump(mode="json") for rel in sorted(self.relationships(), key=lambda r: r.id)],
        }

    @staticmethod
    def _coerce_type(relationship_type: Any) -> RelationshipType:
        try:
            return RelationshipType(relationship_type)
        except ValueError as e:
            raise InvalidInputError(
                f"unknown relationship type: {relationship_type}", field="relationship_type"
            ) from e

    @staticmethod
    def _sort_value(rel: Relationship, sort_by: TraversalSort) -> Any:
        if sort_by == TraversalSort.CONFIDENCE:
            return rel.confidence
        if sort_by == TraversalSort.RECENCY:
            return rel.last_reinforced_at
        return rel.strength
