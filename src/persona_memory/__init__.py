# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Persona Memory - tiered memory core for persona-based assistants.

Stores memories per persona in hot/warm/cold tiers, ranks them by
semantic similarity and keeps a graph of relationships between them.

Usage:
    from persona_memory import MemoryManager

    manager = MemoryManager()
    await manager.initialize()
    record = await manager.create_memory("persona-1", "Paris is the capital of France")

For installation:
    pip install persona-memory                  # Core (hashing or custom embedder)
    pip install "persona-memory[embeddings]"    # + sentence-transformers
"""

from persona_memory.config import MemoryCoreConfig, load_config
from persona_memory.errors import (
    ConfigurationError,
    DependencyError,
    InvalidInputError,
    MemoryCoreError,
    NotFoundError,
    OperationInProgressError,
)
from persona_memory.memory.graph.types import Relationship, RelationshipType
from persona_memory.memory.manager import MemoryManager
from persona_memory.memory.schemas import MemoryRecord, MemoryTier

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "MemoryManager",
    "MemoryCoreConfig",
    "load_config",
    "MemoryRecord",
    "MemoryTier",
    "Relationship",
    "RelationshipType",
    "ConfigurationError",
    "DependencyError",
    "InvalidInputError",
    "MemoryCoreError",
    "NotFoundError",
    "OperationInProgressError",
]
