# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Tests for tier scoring, recency/frequency normalization and hysteresis.

With default policy a record accessed "now" with no access count scores
30 + importance / 2, which makes boundary cases easy to construct.
"""

from datetime import timedelta

import pytest

from conftest import FIXED_NOW, make_record
from persona_memory.config import TierConfig
from persona_memory.memory.lifecycle import TierScorer, frequency_score, recency_score
from persona_memory.memory.schemas import MemoryRecord, MemoryTier


@pytest.fixture
def scorer():
    return TierScorer(TierConfig())


def accessed_now(memory_id, importance, tier, **fields):
    """Record accessed at FIXED_NOW; scores 30 + importance / 2."""
    return make_record(memory_id, importance=importance, tier=tier, last_accessed_at=FIXED_NOW, **fields)


class TestRecencyAndFrequency:
    """Tests for normalized components."""

    def test_recency_half_life(self):
        """Recency halves every half-life."""
        assert recency_score(FIXED_NOW - timedelta(days=7), FIXED_NOW) == pytest.approx(0.5)
        assert recency_score(FIXED_NOW - timedelta(days=14), FIXED_NOW) == pytest.approx(0.25)

    def test_never_accessed_is_stale(self):
        """A record never accessed has recency 0."""
        assert recency_score(None, FIXED_NOW) == 0.0

    def test_future_access_counts_as_now(self):
        """Clock skew never yields recency above 1."""
        assert recency_score(FIXED_NOW + timedelta(hours=1), FIXED_NOW) == 1.0

    def test_frequency_is_log_scaled_and_capped(self):
        """Frequency grows with count and saturates at 1.0."""
        assert frequency_score(0) == 0.0
        assert 0.0 < frequency_score(5) < frequency_score(20) < 1.0
        assert frequency_score(50) == pytest.approx(1.0)
        assert frequency_score(5000) == 1.0


class TestScore:
    """Tests for TierScorer.score."""

    def test_maximal_record_scores_100(self, scorer):
        """Importance 100, accessed now and saturated frequency score 100."""
        record = accessed_now("m1", 100, MemoryTier.WARM, access_count=50)

        score = scorer.score(record, FIXED_NOW)

        assert score.total_score == pytest.approx(100.0)
        assert score.band_tier == MemoryTier.HOT
        assert score.recommended_tier == MemoryTier.HOT
        assert score.should_move

    def test_stale_unimportant_record_goes_cold(self, scorer):
        """A never-accessed record with importance 0 scores 0."""
        record = make_record("m1", importance=0)

        score = scorer.score(record, FIXED_NOW)

        assert score.total_score == 0.0
        assert score.recommended_tier == MemoryTier.COLD

    def test_score_is_monotonic_in_each_component(self, scorer):
        """Raising importance, recency or frequency never lowers the score."""
        base = make_record("m1", importance=40, last_accessed_at=FIXED_NOW - timedelta(days=10), access_count=3)
        higher = [
            base.model_copy(update={"importance": 60}),
            base.model_copy(update={"last_accessed_at": FIXED_NOW - timedelta(days=1)}),
            base.model_copy(update={"access_count": 10}),
        ]

        base_total = scorer.score(base, FIXED_NOW).total_score
        for record in higher:
            assert scorer.score(record, FIXED_NOW).total_score > base_total

    def test_unparseable_importance_counts_as_neutral(self, scorer):
        """A raw importance that is not a number is treated as 50."""
        record = MemoryRecord.model_construct(
            id="m1",
            persona_id="p1",
            content="x",
            importance="very",
            tier=MemoryTier.WARM,
            created_at=FIXED_NOW,
        )

        score = scorer.score(record, FIXED_NOW)

        assert score.importance_score == 0.5
        assert score.total_score == pytest.approx(25.0)


class TestHysteresis:
    """Tests for hysteresis around band boundaries."""

    def test_promotion_needs_margin(self, scorer):
        """Warm -> hot requires hot_threshold + margin (75)."""
        inside_margin = accessed_now("m1", 84, MemoryTier.WARM)  # 72
        at_margin = accessed_now("m2", 90, MemoryTier.WARM)  # 75

        assert scorer.score(inside_margin, FIXED_NOW).recommended_tier == MemoryTier.WARM
        assert scorer.score(at_margin, FIXED_NOW).recommended_tier == MemoryTier.HOT

    def test_demotion_needs_margin(self, scorer):
        """Hot -> warm requires a score below hot_threshold - margin (65)."""
        inside_margin = accessed_now("m1", 74, MemoryTier.HOT)  # 67
        below_margin = accessed_now("m2", 68, MemoryTier.HOT)  # 64

        assert scorer.score(inside_margin, FIXED_NOW).recommended_tier == MemoryTier.HOT
        assert scorer.score(below_margin, FIXED_NOW).recommended_tier == MemoryTier.WARM

    def test_cold_to_warm_needs_margin(self, scorer):
        """Cold -> warm requires warm_threshold + margin (45)."""
        record = accessed_now("m1", 24, MemoryTier.COLD)  # 42

        score = scorer.score(record, FIXED_NOW)

        assert score.band_tier == MemoryTier.WARM
        assert score.recommended_tier == MemoryTier.COLD

    def test_hot_can_drop_straight_to_cold(self, scorer):
        """A hot record scoring far below warm goes directly to cold."""
        record = accessed_now("m1", 0, MemoryTier.HOT)  # 30

        assert scorer.score(record, FIXED_NOW).recommended_tier == MemoryTier.COLD

    def test_zero_margin_uses_raw_bands(self):
        """Without hysteresis the band decides."""
        scorer = TierScorer(TierConfig(hysteresis_margin=0))
        record = accessed_now("m1", 80, MemoryTier.WARM)  # 70

        assert scorer.score(record, FIXED_NOW).recommended_tier == MemoryTier.HOT

    def test_min_dwell_blocks_recent_moves(self):
        """Records that changed tier recently keep their tier."""
        scorer = TierScorer(TierConfig(min_dwell_hours=24))
        fresh = accessed_now("m1", 100, MemoryTier.WARM, tier_changed_at=FIXED_NOW - timedelta(hours=1))
        settled = accessed_now("m2", 100, MemoryTier.WARM, tier_changed_at=FIXED_NOW - timedelta(hours=30))

        assert scorer.score(fresh, FIXED_NOW).recommended_tier == MemoryTier.WARM
        assert scorer.score(settled, FIXED_NOW).recommended_tier == MemoryTier.HOT
