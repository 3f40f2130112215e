# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Local in-memory implementation of MemoryStore.

Stores memory rows, relationship rows and the tier transition audit
trail in dictionaries. Rows are copied on the way in and out, so
callers never share mutable state with the store.

This implementation is suitable for:
- Development and testing
- Embedding the memory core without a database
- Ephemeral memory (data is lost on restart)
"""

from typing import AsyncIterator, Optional

from persona_memory.memory.graph.types import Relationship
from persona_memory.memory.schemas import MemoryRecord, MemoryTier, TierTransition


class InMemoryMemoryStore:
    """In-memory implementation of the MemoryStore protocol.

    Example:
        >>> store = InMemoryMemoryStore()
        >>> await store.put_memory(record)
        >>> (await store.get_memory(record.id)).content == record.content
        True
    """

    def __init__(self) -> None:
        self._memories: dict[str, MemoryRecord] = {}
        self._memory_ids_by_persona: dict[str, list[str]] = {}
        self._relationships: dict[str, Relationship] = {}
        self._transitions: list[TierTransition] = []

    async def put_memory(self, record: MemoryRecord) -> None:
        """Insert a new memory row.

        Raises:
            KeyError: If a row with the same id already exists.
        """
        if record.id in self._memories:
            raise KeyError(f"memory already exists: {record.id}")
        self._memories[record.id] = record.model_copy(deep=True)
        self._memory_ids_by_persona.setdefault(record.persona_id, []).append(record.id)

    async def get_memory(self, memory_id: str) -> Optional[MemoryRecord]:
        """Return a copy of the row, including soft-deleted rows."""
        record = self._memories.get(memory_id)
        return record.model_copy(deep=True) if record is not None else None

    async def update_memory(self, record: MemoryRecord) -> None:
        """Replace an existing memory row.

        Raises:
            KeyError: If the row does not exist.
        """
        if record.id not in self._memories:
            raise KeyError(f"memory not found: {record.id}")
        self._memories[record.id] = record.model_copy(deep=True)

    async def iter_memories(
        self,
        persona_id: Optional[str] = None,
        tier: Optional[MemoryTier] = None,
        include_deleted: bool = False,
    ) -> AsyncIterator[MemoryRecord]:
        """Stream rows matching the filters, in insertion order."""
        if persona_id is not None:
            ids = list(self._memory_ids_by_persona.get(persona_id, []))
        else:
            ids = list(self._memories)

        for memory_id in ids:
            record = self._memories.get(memory_id)
            if record is None:
                continue
            if not include_deleted and record.is_deleted:
                continue
            if tier is not None and record.tier != tier:
                continue
            yield record.model_copy(deep=True)

    async def put_relationship(self, relationship: Relationship) -> None:
        """Insert or replace a relationship row."""
        self._relationships[relationship.id] = relationship.model_copy()

    async def delete_relationship(self, relationship_id: str) -> bool:
        """Delete a relationship row; False if it did not exist."""
        return self._relationships.pop(relationship_id, None) is not None

    async def get_relationship(self, relationship_id: str) -> Optional[Relationship]:
        """Return a copy of a relationship row."""
        relationship = self._relationships.get(relationship_id)
        return relationship.model_copy() if relationship is not None else None

    async def iter_relationships(self) -> AsyncIterator[Relationship]:
        """Stream all relationship rows."""
        for relationship in list(self._relationships.values()):
            yield relationship.model_copy()

    async def append_transition(self, transition: TierTransition) -> None:
        """Append a tier transition to the audit trail."""
        self._transitions.append(transition)

    async def list_transitions(self, memory_id: Optional[str] = None) -> list[TierTransition]:
        """Return the audit trail, optionally for a single memory."""
        if memory_id is None:
            return list(self._transitions)
        return [t for t in self._transitions if t.memory_id == memory_id]

    def count(self) -> int:
        """Number of stored memory rows, including soft-deleted ones."""
        return len(self._memories)
