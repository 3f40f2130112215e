# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tier scoring with hysteresis.

score = 100 * (w_i * importance/100 + w_r * recency + w_f * frequency)

Bands: score >= hot_threshold is hot, >= warm_threshold is warm, else cold.

An automatic move only happens when the band differs from the current
tier AND the score clears the boundary by at least the hysteresis margin:

- promotion to tier T requires score >= threshold(T) + margin
- demotion to tier T requires score < upper_boundary(T) - margin, where
  upper_boundary(cold) = warm_threshold and upper_boundary(warm) = hot_threshold

Scores inside the margin keep the current tier.
"""

from datetime import datetime, timedelta
from typing import Optional

from persona_memory.config import TierConfig
from persona_memory.memory.lifecycle.decay import frequency_score, recency_score
from persona_memory.memory.schemas import MemoryRecord, MemoryScore, MemoryTier, coerce_importance, utc_now


class TierScorer:
    """Pure scoring function mapping a record to a score and a tier.

    Example:
        >>> scorer = TierScorer(TierConfig())
        >>> result = scorer.score(record)
        >>> if result.should_move:
        ...     print(f"{record.id}: {result.current_tier} -> {result.recommended_tier}")
    """

    def __init__(self, config: Optional[TierConfig] = None):
        self.config = config or TierConfig()

    def components(self, record: MemoryRecord, now: datetime) -> tuple[float, float, float]:
        """Return normalized (importance, recency, frequency) in [0, 1]."""
        importance = coerce_importance(getattr(record, "importance", None)) / 100.0
        recency = recency_score(record.last_accessed_at, now, self.config.recency_half_life_days)
        frequency = frequency_score(record.access_count or 0, self.config.frequency_saturation)
        return importance, recency, frequency

    def combine(self, importance: float, recency: float, frequency: float) -> float:
        """Weighted sum of normalized components on a 0-100 scale."""
        cfg = self.config
        total = (
            cfg.importance_weight * importance
            + cfg.recency_weight * recency
            + cfg.frequency_weight * frequency
        )
        return round(100.0 * total, 6)

    def band(self, total: float) -> MemoryTier:
        """Map a score to its raw band, ignoring hysteresis."""
        if total >= self.config.hot_threshold:
            return MemoryTier.HOT
        if total >= self.config.warm_threshold:
            return MemoryTier.WARM
        return MemoryTier.COLD

    def recommend(self, total: float, current: MemoryTier) -> MemoryTier:
        """Apply hysteresis to decide the tier a record should be in."""
        band = self.band(total)
        if band == current:
            return current

        margin = self.config.hysteresis_margin
        if band.rank > current.rank:
            for tier in (MemoryTier.HOT, MemoryTier.WARM):
                if tier.rank > current.rank and total >= self._lower_boundary(tier) + margin:
                    return tier
            return current

        for tier in (MemoryTier.COLD, MemoryTier.WARM):
            if tier.rank < current.rank and total < self._upper_boundary(tier) - margin:
                return tier
        return current

    def dwell_satisfied(self, record: MemoryRecord, now: datetime) -> bool:
        """Check that a record has spent the minimum time in its tier."""
        if self.config.min_dwell_hours <= 0:
            return True
        since = record.tier_changed_at or record.created_at
        return now - since >= timedelta(hours=self.config.min_dwell_hours)

    def score(self, record: MemoryRecord, now: Optional[datetime] = None) -> MemoryScore:
        """Score a record and recommend a tier.

        Missing or unparseable importance counts as neutral (50); a
        record never accessed is maximally stale.
        """
        now = now or utc_now()
        importance, recency, frequency = self.components(record, now)
        total = self.combine(importance, recency, frequency)
        current = record.tier
        recommended = self.recommend(total, current) if self.dwell_satisfied(record, now) else current
        return MemoryScore(
            memory_id=record.id,
            importance_score=importance,
            recency_score=recency,
            frequency_score=frequency,
            total_score=total,
            band_tier=self.band(total),
            recommended_tier=recommended,
            current_tier=current,
        )

    def _lower_boundary(self, tier: MemoryTier) -> float:
        return self.config.hot_threshold if tier == MemoryTier.HOT else self.config.warm_threshold

    def _upper_boundary(self, tier: MemoryTier) -> float:
        return self.config.warm_threshold if tier == MemoryTier.COLD else self.config.hot_threshold
