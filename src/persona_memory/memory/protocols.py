# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Collaborator protocols for the memory core.

Defines the two external collaborators the core depends on:

- MemoryStore: durable CRUD over memory rows, relationship rows and the
  tier transition audit trail. The store is the source of truth on
  restart; the in-memory relationship graph is rebuilt from it.
- EmbeddingFunction: text -> vector, deterministic for identical
  normalized input, fixed dimensionality per model identifier.
"""

from typing import Any, AsyncIterator, Awaitable, Optional, Protocol, Sequence, Union, runtime_checkable

from persona_memory.memory.graph.types import Relationship
from persona_memory.memory.schemas import MemoryRecord, MemoryTier, TierTransition

# Protocol version for compatibility tracking
MEMORY_STORE_VERSION = "1.0.0"


@runtime_checkable
class MemoryStore(Protocol):
    """Protocol for memory persistence collaborators.

    Every method is a single-row operation except the iterators; callers
    commit each change independently so a long sweep never spans one
    transaction.
    """

    async def put_memory(self, record: MemoryRecord) -> None:
        """Insert a new memory row."""
        ...

    async def get_memory(self, memory_id: str) -> Optional[MemoryRecord]:
        """Return the row for memory_id, including soft-deleted rows."""
        ...

    async def update_memory(self, record: MemoryRecord) -> None:
        """Atomically replace an existing memory row.

        Raises:
            KeyError: If the row does not exist.
        """
        ...

    def iter_memories(
        self,
        persona_id: Optional[str] = None,
        tier: Optional[MemoryTier] = None,
        include_deleted: bool = False,
    ) -> AsyncIterator[MemoryRecord]:
        """Stream memory rows matching the persona/tier filters."""
        ...

    async def put_relationship(self, relationship: Relationship) -> None:
        """Insert or replace a relationship row."""
        ...

    async def delete_relationship(self, relationship_id: str) -> bool:
        """Delete a relationship row; False if it did not exist."""
        ...

    def iter_relationships(self) -> AsyncIterator[Relationship]:
        """Stream all relationship rows."""
        ...

    async def append_transition(self, transition: TierTransition) -> None:
        """Append a tier transition to the audit trail."""
        ...


@runtime_checkable
class EmbeddingFunction(Protocol):
    """Protocol for embedding model callables.

    Implementations may be synchronous or return an awaitable.

    Attributes:
        model_name: Identifier paired with every vector produced.
        dimensions: Fixed dimensionality of produced vectors.
    """

    model_name: str
    dimensions: int

    def __call__(self, text: str) -> Union[Sequence[float], Awaitable[Sequence[float]]]:
        ...


def describe_store(store: Any) -> dict[str, Any]:
    """Return a short description of a store for health details."""
    return {
        "type": type(store).__name__,
        "protocol_version": MEMORY_STORE_VERSION,
        "conforms": isinstance(store, MemoryStore),
    }
