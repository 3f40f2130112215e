# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Memory record schemas and batch result types."""

from persona_memory.memory.schemas.memory_types import (
    NEUTRAL_IMPORTANCE,
    MemoryEmbedding,
    MemoryRecord,
    MemoryScore,
    MemoryTier,
    TierMetrics,
    TierTransition,
    TransitionReason,
    coerce_importance,
    utc_now,
)
from persona_memory.memory.schemas.results import (
    BatchResult,
    ItemOutcome,
    OptimizationResult,
)

__all__ = [
    "NEUTRAL_IMPORTANCE",
    "MemoryEmbedding",
    "MemoryRecord",
    "MemoryScore",
    "MemoryTier",
    "TierMetrics",
    "TierTransition",
    "TransitionReason",
    "coerce_importance",
    "utc_now",
    "BatchResult",
    "ItemOutcome",
    "OptimizationResult",
]
