# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""MemoryManager: the single public contract of the memory core.

Orchestrates tier scoring, semantic search, the relationship graph and
persistence. Callers never talk to the components directly.

Concurrency model (single event loop):
- writes to memory rows are serialized per persona with an asyncio.Lock
- relationship mutations are serialized with one graph lock; a memory
  delete takes its persona lock first and the graph lock second
- embedding generation runs without any lock; the vector is applied
  under a short persona lock and discarded if the content changed
- events are published after locks are released
"""

import asyncio
import logging
import math
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional, TypeVar, Union

from pydantic import ValidationError

from persona_memory.config import MemoryCoreConfig, load_config
from persona_memory.errors import (
    DependencyError,
    InvalidInputError,
    MemoryCoreError,
    NotFoundError,
    OperationInProgressError,
)
from persona_memory.memory.embedding.cache import EmbeddingCache
from persona_memory.memory.embedding.models import SentenceTransformerEmbedder
from persona_memory.memory.events import MemoryEvent, MemoryEventBus, MemoryEventKind, Subscriber
from persona_memory.memory.graph.discovery import RelationshipDiscovery
from persona_memory.memory.graph.graph_store import RelationshipGraph
from persona_memory.memory.graph.types import (
    DecayResult,
    GraphAnalytics,
    RelatedMemory,
    Relationship,
    RelationshipCandidate,
    RelationshipType,
    TraversalSort,
)
from persona_memory.memory.lifecycle.decay import SECONDS_PER_DAY
from persona_memory.memory.lifecycle.optimizer import ALL_PERSONAS, PlannedMove, TierOptimizer
from persona_memory.memory.lifecycle.scorer import TierScorer
from persona_memory.memory.observability.health import (
    EMBEDDING_SERVICE,
    GRAPH_SERVICE,
    TIER_MANAGER,
    HealthMonitor,
    MemoryHealth,
)
from persona_memory.memory.observability.metrics import MemoryMetrics
from persona_memory.memory.protocols import EmbeddingFunction, MemoryStore, describe_store
from persona_memory.memory.providers.local import InMemoryMemoryStore
from persona_memory.memory.retrieval.keyword import KeywordSearchResult, keyword_search
from persona_memory.memory.retrieval.semantic import SemanticSearchEngine
from persona_memory.memory.retrieval.types import (
    EnhancedSearchResult,
    SearchFilters,
    SearchHit,
    SemanticSearchQuery,
    SemanticSearchResult,
)
from persona_memory.memory.schemas import (
    NEUTRAL_IMPORTANCE,
    BatchResult,
    ItemOutcome,
    MemoryEmbedding,
    MemoryRecord,
    MemoryScore,
    MemoryTier,
    OptimizationResult,
    TierMetrics,
    TierTransition,
    TransitionReason,
    coerce_importance,
    utc_now,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEYWORD_ONLY_EXPLANATION = "Keyword match only"


class MemoryManager:
    """Persona memory core.

    Example:
        >>> manager = MemoryManager(embedder=HashingEmbedder())
        >>> await manager.initialize()
        >>> record = await manager.create_memory("persona-1", "Paris is the capital of France", importance=80)
        >>> await manager.wait_for_embeddings()
        >>> result = await manager.perform_semantic_search("capital of France", persona_id="persona-1")
        >>> result.hits[0].memory.id == record.id
        True

    Attributes:
        config: Policy configuration.
        store: Persistence collaborator (source of truth).
        graph: In-memory relationship index rebuilt from the store.
        events: Change-notification channel.
    """

    def __init__(
        self,
        store: Optional[MemoryStore] = None,
        embedder: Optional[EmbeddingFunction] = None,
        config: Optional[MemoryCoreConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        events: Optional[MemoryEventBus] = None,
        metrics: Optional[MemoryMetrics] = None,
    ):
        """Initialize the manager.

        Args:
            store: Persistence collaborator. Defaults to InMemoryMemoryStore.
            embedder: Embedding model function. Defaults to a lazily loaded
                SentenceTransformerEmbedder for the configured model.
            config: Policy configuration. Defaults to load_config().
            clock: Source of "now" for every timestamp and sweep.
            events: Change-notification channel.
            metrics: Operation metrics collector.
        """
        self.config = config or load_config()
        self.store: MemoryStore = store if store is not None else InMemoryMemoryStore()
        if embedder is None:
            embedder = SentenceTransformerEmbedder(
                model_name=self.config.embedding.model_name,
                dimensions=self.config.embedding.dimensions,
            )
        self._clock = clock

        self.cache = EmbeddingCache(
            embedder,
            max_size=self.config.embedding.cache_max_size,
            ttl_seconds=self.config.embedding.cache_ttl_seconds,
        )
        self.engine = SemanticSearchEngine(self.cache)
        self.scorer = TierScorer(self.config.tiers)
        self.optimizer = TierOptimizer(self.scorer)
        self.graph = RelationshipGraph(self.config.graph)
        self.discovery = RelationshipDiscovery(self.graph, self.engine, self.config.graph)
        self.events = events or MemoryEventBus()
        self.metrics = metrics or MemoryMetrics()
        self.health = HealthMonitor(window_seconds=self.config.health.window_seconds)

        self._persona_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._graph_lock = asyncio.Lock()
        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._decay_running = False
        self._embedding_tasks: set[asyncio.Task] = set()
        self._last_optimization: Optional[datetime] = None
        self._last_decay: Optional[datetime] = None

    # ==================================================================
    # Lifecycle
    # ==================================================================

    async def initialize(self) -> None:
        """Rebuild the relationship index from persistence.

        A no-op once initialized, so an index already updated by writers is
        never replaced with an older snapshot.

        Raises:
            DependencyError: If persistence cannot be read.
        """
        async with self._init_lock:
            if self._initialized:
                return
            memory_ids = [record.id async for record in self._iter_memories()]
            relationships = [rel async for rel in self._iter_relationships()]
            async with self._graph_lock:
                dropped = self.graph.rebuild(memory_ids, relationships)
            self._initialized = True
        logger.info(
            f"Memory manager initialized: {len(memory_ids)} memories, "
            f"{len(relationships) - dropped} relationships"
        )

    async def shutdown(self, wait: bool = True) -> None:
        """Finish or cancel pending background embedding work."""
        if wait:
            await self.wait_for_embeddings()
        else:
            for task in list(self._embedding_tasks):
                task.cancel()
            if self._embedding_tasks:
                await asyncio.gather(*self._embedding_tasks, return_exceptions=True)
        self._initialized = False
        logger.info("Memory manager shut down")

    async def wait_for_embeddings(self) -> None:
        """Await all pending background embedding work."""
        while self._embedding_tasks:
            await asyncio.gather(*list(self._embedding_tasks), return_exceptions=True)

    @property
    def pending_embeddings(self) -> int:
        return len(self._embedding_tasks)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Subscribe to change notifications; returns an unsubscribe function."""
        return self.events.subscribe(callback)

    # ==================================================================
    # Memory CRUD
    # ==================================================================

    async def create_memory(
        self,
        persona_id: str,
        content: str,
        memory_type: str = "text",
        name: Optional[str] = None,
        summary: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        importance: Union[int, float] = NEUTRAL_IMPORTANCE,
        embed: Optional[bool] = None,
    ) -> MemoryRecord:
        """Create a memory in the warm tier.

        Embedding generation is scheduled in the background and does not
        delay the return.

        Args:
            persona_id: Owning persona.
            content: Memory text (non-empty).
            memory_type: Free-form type tag.
            name: Optional short title.
            summary: Optional human summary.
            tags: Optional tags.
            importance: Importance, clamped to [0, 100].
            embed: Override the auto_embed policy for this record.

        Returns:
            The stored record.

        Raises:
            InvalidInputError: If content is empty or importance is not a number.
            DependencyError: If persistence fails.
        """
        await self._ensure_initialized()
        with self.metrics.track("create_memory"):
            now = self._clock()
            record = self._build_record(
                id=str(uuid.uuid4()),
                persona_id=persona_id,
                content=content,
                memory_type=memory_type,
                name=name,
                summary=summary,
                tags=list(tags) if tags is not None else [],
                importance=self._validate_importance(importance),
                tier=MemoryTier.WARM,
                created_at=now,
                updated_at=now,
                tier_changed_at=now,
            )

            async with self._persona_locks[persona_id]:
                await self._persist("put_memory", self.store.put_memory(record))
                self.graph.add_memory(record.id)

        logger.debug(f"Created memory {record.id} for persona {persona_id} ({len(record.content)} chars)")
        await self._publish(MemoryEventKind.CREATED, record)

        if self.config.embedding.auto_embed if embed is None else embed:
            self._schedule_embedding(record)
        return record

    async def retrieve_memory(self, memory_id: str, include_deleted: bool = False) -> Optional[MemoryRecord]:
        """Read a memory and record the access.

        The access counter and last-accessed time are updated before the
        record is returned. Soft-deleted records are returned only with
        include_deleted=True, and without an access bump.

        Returns:
            The record, or None if it does not exist.
        """
        await self._ensure_initialized()
        with self.metrics.track("retrieve_memory"):
            record = await self._persist("get_memory", self.store.get_memory(memory_id))
            if record is None:
                return None
            if record.is_deleted:
                return record if include_deleted else None

            async with self._persona_locks[record.persona_id]:
                current = await self._persist("get_memory", self.store.get_memory(memory_id))
                if current is None or current.is_deleted:
                    return current if include_deleted else None
                updated = current.model_copy(
                    update={
                        "access_count": current.access_count + 1,
                        "last_accessed_at": self._clock(),
                    }
                )
                await self._persist("update_memory", self.store.update_memory(updated))

        await self._publish(MemoryEventKind.ACCESSED, updated, access_count=updated.access_count)
        return updated

    async def update_memory(
        self,
        memory_id: str,
        content: Optional[str] = None,
        summary: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        importance: Optional[Union[int, float]] = None,
        memory_type: Optional[str] = None,
        name: Optional[str] = None,
    ) -> MemoryRecord:
        """Apply an explicit update to a live memory.

        A content change clears the stored embedding and schedules a new one.

        Raises:
            NotFoundError: If the memory does not exist or is deleted.
            InvalidInputError: If the new values are invalid.
        """
        await self._ensure_initialized()
        with self.metrics.track("update_memory"):
            changes: dict[str, Any] = {}
            if content is not None:
                changes["content"] = content
            if summary is not None:
                changes["summary"] = summary
            if tags is not None:
                changes["tags"] = list(tags)
            if importance is not None:
                changes["importance"] = self._validate_importance(importance)
            if memory_type is not None:
                changes["memory_type"] = memory_type
            if name is not None:
                changes["name"] = name

            existing = await self._require_live(memory_id)
            async with self._persona_locks[existing.persona_id]:
                current = await self._require_live(memory_id)
                content_changed = "content" in changes and changes["content"] != current.content
                fields = current.model_dump()
                fields.update(changes)
                fields["updated_at"] = self._clock()
                if content_changed:
                    fields["embedding"] = None
                    fields["embedding_model"] = None
                updated = self._build_record(**fields)
                await self._persist("update_memory", self.store.update_memory(updated))

        await self._publish(MemoryEventKind.UPDATED, updated, fields=sorted(changes))
        if content_changed and self.config.embedding.auto_embed:
            self._schedule_embedding(updated)
        return updated

    async def delete_memory(self, memory_id: str) -> bool:
        """Soft-delete a memory and cascade removal of its relationships.

        Returns:
            True if the memory was deleted, False if it did not exist or was
            already deleted.
        """
        await self._ensure_initialized()
        with self.metrics.track("delete_memory"):
            record = await self._persist("get_memory", self.store.get_memory(memory_id))
            if record is None or record.is_deleted:
                return False

            async with self._persona_locks[record.persona_id]:
                current = await self._persist("get_memory", self.store.get_memory(memory_id))
                if current is None or current.is_deleted:
                    return False

                async with self._graph_lock:
                    # Edge rows first; a failure here leaves the memory live.
                    removed = []
                    for rel in self.graph.incident(memory_id):
                        await self._persist("delete_relationship", self.store.delete_relationship(rel.id))
                        self.graph.delete(rel.id)
                        removed.append(rel)

                    now = self._clock()
                    deleted = current.model_copy(update={"deleted_at": now, "updated_at": now})
                    await self._persist("update_memory", self.store.update_memory(deleted))
                    self.graph.remove_memory(memory_id)

        logger.debug(f"Deleted memory {memory_id}, cascaded {len(removed)} relationships")
        await self._publish(MemoryEventKind.DELETED, deleted, removed_relationships=len(removed))
        for rel in removed:
            await self._publish_relationship(MemoryEventKind.RELATIONSHIP_DELETED, rel)
        return True

    # ==================================================================
    # Batch operations
    # ==================================================================

    async def batch_create_memories(self, items: Iterable[dict[str, Any]]) -> BatchResult[MemoryRecord]:
        """Create many memories, reporting an outcome per item."""
        result: BatchResult[MemoryRecord] = BatchResult()
        for index, item in enumerate(items):
            try:
                record = await self.create_memory(**item)
            except TypeError as e:
                result.outcomes.append(ItemOutcome(index=index, success=False, error=f"invalid item: {e}"))
            except MemoryCoreError as e:
                result.outcomes.append(ItemOutcome(index=index, success=False, error=str(e)))
            else:
                result.outcomes.append(ItemOutcome(index=index, item_id=record.id, value=record))
        return result

    async def batch_retrieve_memories(self, memory_ids: Iterable[str]) -> BatchResult[MemoryRecord]:
        """Retrieve many memories; a missing memory is a failed item."""
        result: BatchResult[MemoryRecord] = BatchResult()
        for index, memory_id in enumerate(memory_ids):
            try:
                record = await self.retrieve_memory(memory_id)
            except MemoryCoreError as e:
                result.outcomes.append(ItemOutcome(index=index, item_id=memory_id, success=False, error=str(e)))
                continue
            if record is None:
                result.outcomes.append(
                    ItemOutcome(index=index, item_id=memory_id, success=False, error=f"memory not found: {memory_id}")
                )
            else:
                result.outcomes.append(ItemOutcome(index=index, item_id=memory_id, value=record))
        return result

    async def batch_delete_memories(self, memory_ids: Iterable[str]) -> BatchResult[bool]:
        """Delete many memories; deleting a missing memory is a no-op success."""
        result: BatchResult[bool] = BatchResult()
        for index, memory_id in enumerate(memory_ids):
            try:
                deleted = await self.delete_memory(memory_id)
            except MemoryCoreError as e:
                result.outcomes.append(ItemOutcome(index=index, item_id=memory_id, success=False, error=str(e)))
            else:
                result.outcomes.append(ItemOutcome(index=index, item_id=memory_id, value=deleted))
        return result

    # ==================================================================
    # Keyword and semantic search
    # ==================================================================

    async def search_memories(
        self,
        query: str,
        persona_id: Optional[str] = None,
        tier: Optional[MemoryTier] = None,
        memory_type: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
    ) -> KeywordSearchResult:
        """Case-insensitive substring search, most recently created first."""
        await self._ensure_initialized()
        if not isinstance(query, str):
            raise InvalidInputError("query must be a string", field="query")
        limit = self.config.search.keyword_limit if limit is None else limit
        if limit < 1:
            raise InvalidInputError("limit must be at least 1", field="limit")
        filters = SearchFilters(persona_id=persona_id, tier=tier, memory_type=memory_type, tags=list(tags or []))
        with self.metrics.track("search_memories"):
            return await keyword_search(
                self._iter_memories(persona_id=persona_id, tier=filters.tier), query, filters, limit
            )

    async def perform_semantic_search(
        self,
        query: Union[str, SemanticSearchQuery],
        persona_id: Optional[str] = None,
        tier: Optional[MemoryTier] = None,
        memory_type: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        min_importance: Optional[int] = None,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
        embed_missing: bool = False,
    ) -> SemanticSearchResult:
        """Rank live memories by cosine similarity to the query text.

        Args:
            query: Query text, or a fully built SemanticSearchQuery (the
                remaining arguments are then ignored).
            threshold: Minimum similarity (default from config).
            limit: Maximum hits (default from config).
            embed_missing: Embed unembedded candidates on the fly.

        Raises:
            InvalidInputError: If the query is empty.
            DependencyError: If the query cannot be embedded or
                persistence fails.
        """
        await self._ensure_initialized()
        if not isinstance(query, SemanticSearchQuery):
            query = SemanticSearchQuery(
                query=query,
                filters=SearchFilters(
                    persona_id=persona_id,
                    tier=tier,
                    memory_type=memory_type,
                    tags=list(tags or []),
                    min_importance=min_importance,
                    created_after=created_after,
                    created_before=created_before,
                ),
                threshold=self.config.search.similarity_threshold if threshold is None else threshold,
                limit=self.config.search.default_limit if limit is None else limit,
                embed_missing=embed_missing,
            )

        with self.metrics.track("perform_semantic_search"):
            candidates = self._iter_memories(persona_id=query.filters.persona_id, tier=query.filters.tier)
            try:
                result = await self.engine.search(query, candidates, on_embedded=self._store_candidate_embedding)
            except DependencyError as e:
                if e.dependency == "embedding_model":
                    self._record_health(EMBEDDING_SERVICE, False, str(e))
                raise
        self._record_health(EMBEDDING_SERVICE, True)
        return result

    async def find_similar_memories(
        self,
        memory_id: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        same_persona: bool = True,
    ) -> list[SearchHit]:
        """Find memories similar to an existing one, with explanations.

        Raises:
            NotFoundError: If the memory does not exist or is deleted.
        """
        await self._ensure_initialized()
        with self.metrics.track("find_similar_memories"):
            target = await self._require_live(memory_id)
            vector = self.engine.usable_embedding(target)
            if vector is None:
                vector = (await self.generate_memory_embedding(memory_id)).vector
            candidates = self._iter_memories(persona_id=target.persona_id if same_persona else None)
            return await self.engine.find_similar(
                vector,
                candidates,
                limit=self.config.search.similar_memories_limit if limit is None else limit,
                threshold=self.config.search.similar_memories_threshold if threshold is None else threshold,
                reference=target,
                exclude_ids={target.id},
            )

    async def enhanced_search(
        self,
        query: str,
        persona_id: Optional[str] = None,
        tier: Optional[MemoryTier] = None,
        use_semantic: bool = True,
        semantic_threshold: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> EnhancedSearchResult:
        """Merge keyword and semantic results.

        Semantic hits at or above the threshold come first in rank order,
        followed by keyword-only matches in keyword order. When semantic
        ranking fails the keyword results are returned with semantic_error.
        """
        await self._ensure_initialized()
        if not isinstance(query, str) or not query.strip():
            raise InvalidInputError("query must be non-empty", field="query")
        limit = self.config.search.default_limit if limit is None else limit
        if limit < 1:
            raise InvalidInputError("limit must be at least 1", field="limit")

        keyword = await self.search_memories(query, persona_id=persona_id, tier=tier)
        result = EnhancedSearchResult(keyword_total=keyword.total)

        hits: list[SearchHit] = []
        if use_semantic:
            try:
                semantic = await self.perform_semantic_search(
                    query,
                    persona_id=persona_id,
                    tier=tier,
                    threshold=semantic_threshold,
                    limit=limit,
                )
            except (DependencyError, InvalidInputError) as e:
                logger.warning(f"Semantic ranking unavailable, using keyword results: {e}")
                result.semantic_error = str(e)
            else:
                result.semantic = semantic
                hits.extend(semantic.hits)

        seen = {hit.memory.id for hit in hits}
        for record in keyword.memories:
            if record.id not in seen:
                hits.append(SearchHit(memory=record, similarity=0.0, rank=0, explanation=KEYWORD_ONLY_EXPLANATION))
                seen.add(record.id)

        result.total = len(hits)
        result.hits = [
            SearchHit(memory=hit.memory, similarity=hit.similarity, rank=rank, explanation=hit.explanation)
            for rank, hit in enumerate(hits[:limit], start=1)
        ]
        return result

    async def generate_memory_embedding(self, memory_id: str, force: bool = False) -> MemoryEmbedding:
        """Generate (or return the existing) embedding for a memory.

        The model is called without holding any lock; the vector is then
        stored only if the content did not change in the meantime.

        Raises:
            NotFoundError: If the memory does not exist or is deleted.
            DependencyError: If the model or persistence fails.
        """
        await self._ensure_initialized()
        with self.metrics.track("generate_memory_embedding"):
            record = await self._require_live(memory_id)
            existing = self.engine.usable_embedding(record)
            if existing is not None and not force:
                return MemoryEmbedding(memory_id=record.id, vector=list(existing), model=self.cache.model_name)

            try:
                vector = await self.cache.embed(record.content)
            except DependencyError as e:
                self._record_health(EMBEDDING_SERVICE, False, str(e))
                raise
            self._record_health(EMBEDDING_SERVICE, True)

            await self._apply_embedding(record, vector)
            return MemoryEmbedding(
                memory_id=record.id, vector=vector, model=self.cache.model_name, created_at=self._clock()
            )

    # ==================================================================
    # Tiers
    # ==================================================================

    async def promote_memory(self, memory_id: str, target_tier: Optional[MemoryTier] = None) -> TierTransition:
        """Move a memory up, by one tier unless target_tier is given.

        Manual moves bypass hysteresis and are audited with reason "manual".

        Raises:
            NotFoundError: If the memory does not exist or is deleted.
            InvalidInputError: If the target is not above the current tier.
        """
        return await self._manual_move(memory_id, target_tier, upward=True)

    async def demote_memory(self, memory_id: str, target_tier: Optional[MemoryTier] = None) -> TierTransition:
        """Move a memory down, by one tier unless target_tier is given.

        Raises:
            NotFoundError: If the memory does not exist or is deleted.
            InvalidInputError: If the target is not below the current tier.
        """
        return await self._manual_move(memory_id, target_tier, upward=False)

    async def optimize_memory_tiers(
        self,
        persona_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> OptimizationResult:
        """Score every live memory once and apply tier moves.

        Args:
            persona_id: Limit the sweep to one persona.
            cancel_event: Set to stop the sweep before the next record.

        Raises:
            OperationInProgressError: If an overlapping sweep is running.
        """
        await self._ensure_initialized()
        scope = persona_id or ALL_PERSONAS
        with self.metrics.track("optimize_memory_tiers"):
            try:
                result = await self.optimizer.optimize(
                    self._iter_memories(persona_id=persona_id),
                    self._apply_planned_move,
                    scope=scope,
                    now=self._clock(),
                    cancel_event=cancel_event,
                )
            except OperationInProgressError:
                raise
            except MemoryCoreError as e:
                self._record_health(TIER_MANAGER, False, str(e))
                raise

        self._last_optimization = self._clock()
        self._record_health(TIER_MANAGER, not result.failures, f"{len(result.failures)} records failed")
        await self.events.publish(
            MemoryEvent(
                kind=MemoryEventKind.OPTIMIZED,
                persona_id=persona_id,
                payload={
                    "promoted": result.promoted,
                    "demoted": result.demoted,
                    "failures": len(result.failures),
                    "cancelled": result.cancelled,
                },
                timestamp=self._clock(),
            )
        )
        return result

    async def get_memory_score(self, memory_id: str) -> MemoryScore:
        """Return the score breakdown and recommended tier for a memory.

        Raises:
            NotFoundError: If the memory does not exist or is deleted.
        """
        await self._ensure_initialized()
        record = await self._require_live(memory_id)
        return self.scorer.score(record, self._clock())

    async def get_tier_metrics(self, persona_id: Optional[str] = None) -> dict[MemoryTier, TierMetrics]:
        """Aggregate count, capacity and usage statistics per tier."""
        await self._ensure_initialized()
        now = self._clock()
        counts = {tier: 0 for tier in MemoryTier}
        importance = {tier: 0 for tier in MemoryTier}
        accesses = {tier: 0 for tier in MemoryTier}
        age_days = {tier: 0.0 for tier in MemoryTier}
        storage = {tier: 0 for tier in MemoryTier}

        async for record in self._iter_memories(persona_id=persona_id):
            tier = record.tier
            counts[tier] += 1
            importance[tier] += record.importance
            accesses[tier] += record.access_count
            age_days[tier] += max(0.0, (now - record.created_at).total_seconds() / SECONDS_PER_DAY)
            storage[tier] += len(record.content.encode("utf-8"))

        metrics = {}
        for tier in MemoryTier:
            count = counts[tier]
            metrics[tier] = TierMetrics(
                tier=tier,
                count=count,
                capacity=self.config.tiers.capacity_for(tier.value),
                average_importance=importance[tier] / count if count else 0.0,
                average_access_count=accesses[tier] / count if count else 0.0,
                average_age_days=age_days[tier] / count if count else 0.0,
                storage_bytes=storage[tier],
            )
        return metrics

    # ==================================================================
    # Relationships
    # ==================================================================

    async def create_memory_relationship(
        self,
        from_memory_id: str,
        to_memory_id: str,
        relationship_type: Union[RelationshipType, str],
        strength: Optional[float] = None,
        confidence: Optional[float] = None,
    ) -> Relationship:
        """Create a relationship, or update the existing one for the same triple.

        Raises:
            InvalidInputError: If from == to, the type is unknown, or a
                weight is not a finite number.
            NotFoundError: If either memory is not live.
        """
        await self._ensure_initialized()
        if strength is not None:
            self._validate_weight(strength, "strength")
        if confidence is not None:
            self._validate_weight(confidence, "confidence")

        with self.metrics.track("create_memory_relationship"):
            async with self._graph_lock:
                relationship = self.graph.build_relationship(
                    from_memory_id,
                    to_memory_id,
                    relationship_type,
                    strength,
                    confidence,
                    now=self._clock(),
                )
                existed = self.graph.get(relationship.id) is not None
                await self._persist_graph("put_relationship", self.store.put_relationship(relationship))
                self.graph.put(relationship)
                if not existed:
                    self.metrics.count(
                        "relationships_created", {"relationship_type": relationship.relationship_type.value}
                    )

        self._record_health(GRAPH_SERVICE, True)
        kind = MemoryEventKind.RELATIONSHIP_UPDATED if existed else MemoryEventKind.RELATIONSHIP_CREATED
        await self._publish_relationship(kind, relationship)
        return relationship

    async def update_relationship_strength(
        self, relationship_id: str, strength: float, confidence: Optional[float] = None
    ) -> Relationship:
        """Set a relationship's strength (and optionally confidence), clamped to [0, 1].

        Raises:
            NotFoundError: If the relationship does not exist.
        """
        await self._ensure_initialized()
        self._validate_weight(strength, "strength")
        if confidence is not None:
            self._validate_weight(confidence, "confidence")

        with self.metrics.track("update_relationship_strength"):
            async with self._graph_lock:
                relationship = self.graph.build_strength_update(
                    relationship_id, strength, confidence, now=self._clock()
                )
                await self._persist_graph("put_relationship", self.store.put_relationship(relationship))
                self.graph.put(relationship)

        self._record_health(GRAPH_SERVICE, True)
        await self._publish_relationship(MemoryEventKind.RELATIONSHIP_UPDATED, relationship)
        return relationship

    async def delete_memory_relationship(self, relationship_id: str) -> bool:
        """Delete a relationship; False if it did not exist."""
        await self._ensure_initialized()
        with self.metrics.track("delete_memory_relationship"):
            async with self._graph_lock:
                relationship = self.graph.get(relationship_id)
                if relationship is None:
                    return False
                await self._persist_graph("delete_relationship", self.store.delete_relationship(relationship_id))
                self.graph.delete(relationship_id)

        await self._publish_relationship(MemoryEventKind.RELATIONSHIP_DELETED, relationship)
        return True

    async def discover_memory_relationships(self, memory_id: str) -> list[RelationshipCandidate]:
        """Propose relationships for a memory without creating them.

        Raises:
            NotFoundError: If the memory does not exist or is deleted.
        """
        await self._ensure_initialized()
        with self.metrics.track("discover_memory_relationships"):
            target = await self._require_live(memory_id)
            vector = self.engine.usable_embedding(target)
            if vector is None:
                try:
                    vector = (await self.generate_memory_embedding(memory_id)).vector
                except (DependencyError, InvalidInputError) as e:
                    logger.warning(f"Discovering relationships for {memory_id} without semantic signal: {e}")
                    vector = None
            return await self.discovery.discover(
                target, self._iter_memories(persona_id=target.persona_id), target_embedding=vector
            )

    async def auto_create_memory_relationships(self, memory_id: str) -> BatchResult[Relationship]:
        """Create the discovered relationships above the confidence threshold."""
        proposals = await self.discover_memory_relationships(memory_id)
        accepted = self.discovery.select_for_auto_create(proposals)

        result: BatchResult[Relationship] = BatchResult()
        for index, proposal in enumerate(accepted):
            try:
                relationship = await self.create_memory_relationship(
                    proposal.from_memory_id,
                    proposal.to_memory_id,
                    proposal.relationship_type,
                    proposal.strength,
                    proposal.confidence,
                )
            except MemoryCoreError as e:
                result.outcomes.append(
                    ItemOutcome(index=index, item_id=proposal.to_memory_id, success=False, error=str(e))
                )
            else:
                result.outcomes.append(ItemOutcome(index=index, item_id=relationship.id, value=relationship))

        logger.info(
            f"Auto-created {result.succeeded} of {len(proposals)} proposed relationships for memory {memory_id}"
        )
        return result

    async def get_related_memories(
        self,
        memory_id: str,
        max_depth: Optional[int] = None,
        min_strength: Optional[float] = None,
        relationship_types: Optional[Iterable[Union[RelationshipType, str]]] = None,
        include_decayed: bool = False,
        sort_by: Union[TraversalSort, str] = TraversalSort.STRENGTH,
    ) -> list[RelatedMemory]:
        """Breadth-first related memories with hop distances.

        Unknown or deleted memories yield an empty list.
        """
        await self._ensure_initialized()
        try:
            sort_key = TraversalSort(sort_by)
        except ValueError as e:
            raise InvalidInputError(f"unknown sort key: {sort_by}", field="sort_by") from e

        with self.metrics.track("get_related_memories"):
            hits = self.graph.get_related(
                memory_id,
                max_depth=max_depth,
                min_strength=min_strength,
                relationship_types=relationship_types,
                include_decayed=include_decayed,
                sort_by=sort_key,
                now=self._clock(),
            )
            related = []
            for hit in hits:
                record = await self._persist("get_memory", self.store.get_memory(hit.memory_id))
                if record is None or record.is_deleted:
                    continue
                related.append(RelatedMemory(memory=record, relationship=hit.relationship, distance=hit.distance))
            return related

    async def find_memory_connection_path(
        self, from_memory_id: str, to_memory_id: str
    ) -> Optional[list[Relationship]]:
        """Shortest relationship path between two memories, or None."""
        await self._ensure_initialized()
        with self.metrics.track("find_memory_connection_path"):
            return self.graph.find_connection_path(from_memory_id, to_memory_id)

    async def generate_memory_graph_analytics(self) -> GraphAnalytics:
        """Aggregate statistics over the relationship graph."""
        await self._ensure_initialized()
        with self.metrics.track("generate_memory_graph_analytics"):
            return self.graph.analytics()

    async def run_relationship_decay(self, cancel_event: Optional[asyncio.Event] = None) -> DecayResult:
        """Decay every relationship once and remove those below the floor.

        Each edge commits independently; a cancelled run leaves every edge
        either decayed or untouched.

        Raises:
            OperationInProgressError: If a decay run is already active.
        """
        await self._ensure_initialized()
        if self._decay_running:
            raise OperationInProgressError("relationship decay", ALL_PERSONAS)

        self._decay_running = True
        removed: list[Relationship] = []
        try:
            with self.metrics.track("run_relationship_decay"):
                result = await self._decay_pass(self._clock(), cancel_event, removed)
        finally:
            self._decay_running = False

        self._last_decay = self._clock()
        self._record_health(GRAPH_SERVICE, not result.failures, f"{len(result.failures)} relationships failed")
        logger.info(
            f"Relationship decay: decayed={result.decayed} removed={result.removed} "
            f"unchanged={result.unchanged} failures={len(result.failures)} cancelled={result.cancelled}"
        )
        for rel in removed:
            await self._publish_relationship(MemoryEventKind.RELATIONSHIP_DELETED, rel)
        await self.events.publish(
            MemoryEvent(
                kind=MemoryEventKind.DECAYED,
                payload={"decayed": result.decayed, "removed": result.removed, "cancelled": result.cancelled},
                timestamp=self._clock(),
            )
        )
        return result

    # ==================================================================
    # Health
    # ==================================================================

    async def get_memory_health(self) -> MemoryHealth:
        """Aggregate component health with diagnostic details."""
        now = self._clock()
        details: dict[str, Any] = {
            "embedding_cache": self.cache.get_metrics(),
            "pending_embeddings": self.pending_embeddings,
            "graph": {"memories": self.graph.node_count, "relationships": self.graph.edge_count},
            "last_optimization": self._last_optimization.isoformat() if self._last_optimization else None,
            "last_decay": self._last_decay.isoformat() if self._last_decay else None,
            "operations": self.metrics.get_stats(),
            "store": describe_store(self.store),
        }
        try:
            tiers = await self.get_tier_metrics()
        except DependencyError as e:
            self._record_health(TIER_MANAGER, False, str(e))
            details["tiers"] = None
        else:
            details["tiers"] = {tier.value: metrics.to_dict() for tier, metrics in tiers.items()}
        return self.health.report(now, details)

    # ==================================================================
    # Internals
    # ==================================================================

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    def _schedule_embedding(self, record: MemoryRecord) -> None:
        task = asyncio.create_task(self._embed_in_background(record))
        self._embedding_tasks.add(task)
        task.add_done_callback(self._embedding_tasks.discard)

    async def _embed_in_background(self, record: MemoryRecord) -> None:
        try:
            vector = await self.cache.embed(record.content)
        except InvalidInputError as e:
            logger.warning(f"Memory {record.id} has no embeddable content: {e}")
            return
        except MemoryCoreError as e:
            self._record_health(EMBEDDING_SERVICE, False, str(e))
            logger.warning(f"Background embedding failed for memory {record.id}: {e}")
            return
        self._record_health(EMBEDDING_SERVICE, True)
        try:
            await self._apply_embedding(record, vector)
        except MemoryCoreError as e:
            logger.warning(f"Could not store embedding for memory {record.id}: {e}")

    async def _apply_embedding(self, snapshot: MemoryRecord, vector: list[float]) -> bool:
        """Store a vector if the record still has the embedded content."""
        async with self._persona_locks[snapshot.persona_id]:
            current = await self._persist("get_memory", self.store.get_memory(snapshot.id))
            if current is None or current.is_deleted or current.content != snapshot.content:
                logger.debug(f"Discarding stale embedding for memory {snapshot.id}")
                return False
            updated = current.model_copy(update={"embedding": list(vector), "embedding_model": self.cache.model_name})
            await self._persist("update_memory", self.store.update_memory(updated))

        await self._publish(MemoryEventKind.EMBEDDED, updated, dimensions=len(vector), model=self.cache.model_name)
        return True

    async def _store_candidate_embedding(self, record: MemoryRecord, vector: list[float]) -> None:
        await self._apply_embedding(record, vector)

    async def _manual_move(
        self, memory_id: str, target_tier: Optional[MemoryTier], upward: bool
    ) -> TierTransition:
        await self._ensure_initialized()
        operation = "promote_memory" if upward else "demote_memory"
        with self.metrics.track(operation):
            existing = await self._require_live(memory_id)
            async with self._persona_locks[existing.persona_id]:
                record = await self._require_live(memory_id)
                target = self._manual_target(record.tier, target_tier, upward)
                score = self.scorer.score(record, self._clock()).total_score
                transition = await self._commit_tier_change(record, target, TransitionReason.MANUAL, score)

        self._record_health(TIER_MANAGER, True)
        await self._publish_transition(existing.persona_id, transition)
        return transition

    @staticmethod
    def _manual_target(current: MemoryTier, target_tier: Optional[MemoryTier], upward: bool) -> MemoryTier:
        if target_tier is None:
            rank = current.rank + (1 if upward else -1)
            if rank < 0 or rank > MemoryTier.HOT.rank:
                edge = "highest" if upward else "lowest"
                raise InvalidInputError(f"memory is already in the {edge} tier", field="target_tier")
            return MemoryTier.from_rank(rank)

        try:
            target = MemoryTier(target_tier)
        except ValueError as e:
            raise InvalidInputError(f"unknown tier: {target_tier}", field="target_tier") from e
        if upward and target.rank <= current.rank:
            raise InvalidInputError(f"cannot promote from {current.value} to {target.value}", field="target_tier")
        if not upward and target.rank >= current.rank:
            raise InvalidInputError(f"cannot demote from {current.value} to {target.value}", field="target_tier")
        return target

    async def _apply_planned_move(self, move: PlannedMove) -> Optional[TierTransition]:
        async with self._persona_locks[move.persona_id]:
            record = await self._persist("get_memory", self.store.get_memory(move.memory_id))
            if record is None or record.is_deleted or record.tier != move.from_tier:
                return None
            transition = await self._commit_tier_change(record, move.to_tier, move.reason, move.score)

        await self._publish_transition(move.persona_id, transition)
        return transition

    async def _commit_tier_change(
        self, record: MemoryRecord, to_tier: MemoryTier, reason: TransitionReason, score: float
    ) -> TierTransition:
        """Persist a tier change and its audit entry; caller holds the persona lock."""
        now = self._clock()
        updated = record.model_copy(update={"tier": to_tier, "tier_changed_at": now, "updated_at": now})
        await self._persist("update_memory", self.store.update_memory(updated))
        transition = TierTransition(
            memory_id=record.id,
            from_tier=record.tier,
            to_tier=to_tier,
            reason=reason,
            score=score,
            timestamp=now,
        )
        await self._persist("append_transition", self.store.append_transition(transition))
        self.metrics.count("tier_transitions", {"reason": reason.value, "to_tier": to_tier.value})
        return transition

    async def _decay_pass(
        self, now: datetime, cancel_event: Optional[asyncio.Event], removed: list[Relationship]
    ) -> DecayResult:
        result = DecayResult()
        async with self._graph_lock:
            changes = self.graph.plan_decay(now)
            result.unchanged = self.graph.edge_count - len(changes)

        for index, change in enumerate(changes):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                break
            async with self._graph_lock:
                updated = self.graph.decayed_copy(change)
                if updated is None:
                    # Gone or reinforced since planning.
                    result.unchanged += 1
                    continue
                try:
                    if change.remove:
                        await self._persist_graph(
                            "delete_relationship", self.store.delete_relationship(change.relationship_id)
                        )
                        self.graph.delete(change.relationship_id)
                        removed.append(updated)
                        result.removed += 1
                        result.removed_ids.append(change.relationship_id)
                    else:
                        await self._persist_graph("put_relationship", self.store.put_relationship(updated))
                        self.graph.put(updated)
                        result.decayed += 1
                except DependencyError as e:
                    logger.warning(f"Skipping decay of relationship {change.relationship_id}: {e}")
                    result.failures.append(
                        ItemOutcome(index=index, item_id=change.relationship_id, success=False, error=str(e))
                    )
        return result

    async def _require_live(self, memory_id: str) -> MemoryRecord:
        record = await self._persist("get_memory", self.store.get_memory(memory_id))
        if record is None or record.is_deleted:
            raise NotFoundError("memory", memory_id)
        return record

    async def _iter_memories(
        self, persona_id: Optional[str] = None, tier: Optional[MemoryTier] = None
    ) -> AsyncIterator[MemoryRecord]:
        try:
            async for record in self.store.iter_memories(persona_id=persona_id, tier=tier):
                yield record
        except MemoryCoreError:
            raise
        except Exception as e:
            raise DependencyError("persistence", f"iter_memories: {e}") from e

    async def _iter_relationships(self) -> AsyncIterator[Relationship]:
        try:
            async for relationship in self.store.iter_relationships():
                yield relationship
        except MemoryCoreError:
            raise
        except Exception as e:
            raise DependencyError("persistence", f"iter_relationships: {e}") from e

    async def _persist(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except MemoryCoreError:
            raise
        except Exception as e:
            raise DependencyError("persistence", f"{operation}: {e}") from e

    async def _persist_graph(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await self._persist(operation, awaitable)
        except DependencyError as e:
            self._record_health(GRAPH_SERVICE, False, str(e))
            raise

    def _build_record(self, **fields: Any) -> MemoryRecord:
        try:
            return MemoryRecord(**fields)
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            location = ".".join(str(part) for part in first.get("loc", ())) or None
            raise InvalidInputError(first.get("msg", str(e)), field=location) from e

    @staticmethod
    def _validate_importance(value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
            raise InvalidInputError("importance must be a number", field="importance")
        return coerce_importance(value)

    @staticmethod
    def _validate_weight(value: Any, field: str) -> None:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise InvalidInputError(f"{field} must be a finite number", field=field)

    def _record_health(self, component: str, success: bool, error: Optional[str] = None) -> None:
        self.health.record(component, success, self._clock(), error)

    async def _publish(self, kind: MemoryEventKind, record: MemoryRecord, **payload: Any) -> None:
        await self.events.publish(
            MemoryEvent(
                kind=kind,
                persona_id=record.persona_id,
                memory_id=record.id,
                payload=payload,
                timestamp=self._clock(),
            )
        )

    async def _publish_relationship(self, kind: MemoryEventKind, relationship: Relationship) -> None:
        await self.events.publish(
            MemoryEvent(
                kind=kind,
                memory_id=relationship.from_memory_id,
                relationship_id=relationship.id,
                payload={
                    "to_memory_id": relationship.to_memory_id,
                    "relationship_type": relationship.relationship_type.value,
                    "strength": relationship.strength,
                },
                timestamp=self._clock(),
            )
        )

    async def _publish_transition(self, persona_id: str, transition: TierTransition) -> None:
        await self.events.publish(
            MemoryEvent(
                kind=MemoryEventKind.TIER_CHANGED,
                persona_id=persona_id,
                memory_id=transition.memory_id,
                payload=transition.to_dict(),
                timestamp=transition.timestamp,
            )
        )
