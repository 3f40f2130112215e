# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tier scoring and optimization."""

from persona_memory.memory.lifecycle.decay import (
    DEFAULT_FREQUENCY_SATURATION,
    DEFAULT_HALF_LIFE_DAYS,
    days_between,
    frequency_score,
    recency_score,
)
from persona_memory.memory.lifecycle.optimizer import ALL_PERSONAS, PlannedMove, TierOptimizer
from persona_memory.memory.lifecycle.scorer import TierScorer

__all__ = [
    "DEFAULT_FREQUENCY_SATURATION",
    "DEFAULT_HALF_LIFE_DAYS",
    "days_between",
    "frequency_score",
    "recency_score",
    "ALL_PERSONAS",
    "PlannedMove",
    "TierOptimizer",
    "TierScorer",
]
