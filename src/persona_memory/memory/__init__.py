# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Memory core for persona-based assistants.

Three-tier memory architecture:

- Hot: frequently used, important memories
- Warm: default tier for new memories
- Cold: rarely used memories, still searchable

MemoryManager (memory.manager) is the public entry point; the
subpackages hold the scoring, retrieval, graph and persistence parts.
"""
