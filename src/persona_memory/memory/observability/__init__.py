# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Observability for the memory core: operation metrics and component health."""

from persona_memory.memory.observability.health import (
    COMPONENTS,
    EMBEDDING_SERVICE,
    GRAPH_SERVICE,
    TIER_MANAGER,
    ComponentHealth,
    HealthMonitor,
    HealthStatus,
    MemoryHealth,
)
from persona_memory.memory.observability.metrics import MemoryMetrics, Timing

__all__ = [
    "COMPONENTS",
    "EMBEDDING_SERVICE",
    "GRAPH_SERVICE",
    "TIER_MANAGER",
    "ComponentHealth",
    "HealthMonitor",
    "HealthStatus",
    "MemoryHealth",
    "MemoryMetrics",
    "Timing",
]
