# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""MemoryStore implementations."""

from persona_memory.memory.providers.local import InMemoryMemoryStore

__all__ = ["InMemoryMemoryStore"]
