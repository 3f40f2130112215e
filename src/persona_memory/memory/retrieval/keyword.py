# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Keyword substring search over memory records.

Matching is a case-insensitive substring test across content, name,
summary and tags. Results are ordered most recently created first, ties
broken by ascending identifier.
"""

from dataclasses import dataclass, field
from typing import AsyncIterable, Iterable, Union

from persona_memory.memory.retrieval.ranking import TopK, stream
from persona_memory.memory.retrieval.types import SearchFilters
from persona_memory.memory.schemas import MemoryRecord


def keyword_matches(record: MemoryRecord, query: str) -> bool:
    """Check whether query occurs in any searchable field of record.

    An empty query matches every record.
    """
    needle = query.strip().casefold()
    if not needle:
        return True
    fields = [record.content, record.name or "", record.summary or "", *record.tags]
    return any(needle in value.casefold() for value in fields)


def _more_recent(a: MemoryRecord, b: MemoryRecord) -> bool:
    if a.created_at != b.created_at:
        return a.created_at > b.created_at
    return a.id < b.id


@dataclass
class KeywordSearchResult:
    """Keyword matches, most recent first, with the untruncated count."""

    memories: list[MemoryRecord] = field(default_factory=list)
    total: int = 0


async def keyword_search(
    records: Union[Iterable[MemoryRecord], AsyncIterable[MemoryRecord]],
    query: str,
    filters: SearchFilters,
    limit: int,
) -> KeywordSearchResult:
    """Run a keyword search over streamed records.

    Args:
        records: Candidate records (sync or async iterable).
        query: Substring to look for.
        filters: Record filters; deleted records never match.
        limit: Maximum records returned.

    Returns:
        KeywordSearchResult with at most ``limit`` records.
    """
    top: TopK[MemoryRecord] = TopK(limit, _more_recent)
    async for record in stream(records):
        if filters.matches(record) and keyword_matches(record, query):
            top.push(record)
    return KeywordSearchResult(memories=top.results(), total=top.seen)
