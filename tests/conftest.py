# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Root pytest configuration with shared fixtures and markers.

This file is automatically loaded by pytest and provides:
- Custom markers for test categories
- Shared fixtures: a controllable clock, a deterministic embedder and
  a MemoryManager wired to both
- Test collection customization
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from persona_memory.config import MemoryCoreConfig
from persona_memory.memory.embedding.models import HashingEmbedder
from persona_memory.memory.manager import MemoryManager
from persona_memory.memory.providers.local import InMemoryMemoryStore
from persona_memory.memory.schemas import MemoryRecord, MemoryTier

FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: Mark test as integration test (manager end to end)",
    )
    config.addinivalue_line(
        "markers",
        "slow: Mark test as slow-running (may be skipped in quick runs)",
    )


# ============================================================================
# Shared Fixtures
# ============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_record(
    memory_id: str,
    persona_id: str = "persona-1",
    content: str = "A memory",
    **fields,
) -> MemoryRecord:
    """Build a record with fixed timestamps for unit tests."""
    fields.setdefault("created_at", FIXED_NOW)
    fields.setdefault("updated_at", FIXED_NOW)
    fields.setdefault("tier", MemoryTier.WARM)
    return MemoryRecord(id=memory_id, persona_id=persona_id, content=content, **fields)


@pytest.fixture
def persona_id():
    """Generate a persona ID for isolation tests."""
    return f"test-persona-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def clock():
    """A clock fixed at FIXED_NOW."""
    return FakeClock()


@pytest.fixture
def embedder():
    """Deterministic embedder (no model download)."""
    return HashingEmbedder(dimensions=384)


@pytest.fixture
def store():
    """A fresh in-memory store."""
    return InMemoryMemoryStore()


@pytest.fixture
def manager(store, embedder, clock):
    """A MemoryManager over the in-memory store with default policy."""
    return MemoryManager(store=store, embedder=embedder, config=MemoryCoreConfig(), clock=clock)


# ============================================================================
# Test Collection Hooks
# ============================================================================


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add automatic markers based on paths."""
    for item in items:
        if "manager" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
