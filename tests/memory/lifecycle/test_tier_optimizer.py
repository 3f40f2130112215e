# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the tier optimization sweep.

The apply hook used here commits moves into a plain dict so that the
effect of a sweep (and of a second sweep) can be inspected directly.
"""

import asyncio

import pytest

from conftest import FIXED_NOW, make_record
from persona_memory.config import TierConfig
from persona_memory.errors import OperationInProgressError
from persona_memory.memory.lifecycle import ALL_PERSONAS, TierOptimizer, TierScorer
from persona_memory.memory.schemas import MemoryRecord, MemoryTier, TierTransition, TransitionReason


class DictTierStore:
    """Records keyed by id with an apply hook for the optimizer."""

    def __init__(self, records):
        self.records = {r.id: r for r in records}
        self.applied: list[str] = []

    def snapshot(self):
        return list(self.records.values())

    async def apply(self, move):
        record = self.records[move.memory_id]
        self.records[move.memory_id] = record.model_copy(update={"tier": move.to_tier})
        self.applied.append(move.memory_id)
        return TierTransition(
            memory_id=move.memory_id,
            from_tier=move.from_tier,
            to_tier=move.to_tier,
            reason=move.reason,
            score=move.score,
            timestamp=FIXED_NOW,
        )


def optimizer_for(**policy) -> TierOptimizer:
    return TierOptimizer(TierScorer(TierConfig(**policy)))


def saturated(memory_id, importance, tier):
    """Accessed now with saturated frequency: scores 50 + importance / 2."""
    return make_record(
        memory_id, importance=importance, tier=tier, last_accessed_at=FIXED_NOW, access_count=50
    )


class TestOptimizeSweep:
    """Tests for banded moves over a population."""

    @pytest.mark.asyncio
    async def test_hundred_warm_records(self):
        """Importance 0-99, never accessed: score = importance / 2.

        Scores below 35 (importance < 70) demote to cold; the rest stay
        warm because nothing reaches 75.
        """
        store = DictTierStore(
            [make_record(f"m{i:03d}", importance=i, tier=MemoryTier.WARM) for i in range(100)]
        )
        optimizer = optimizer_for()

        result = await optimizer.optimize(store.snapshot(), store.apply, now=FIXED_NOW)

        assert result.processed == 100
        assert result.promoted == 0
        assert result.demoted == 70
        assert result.success
        assert all(t.reason == TransitionReason.SCORE for t in result.transitions)
        cold = sorted(r.id for r in store.records.values() if r.tier == MemoryTier.COLD)
        assert cold == [f"m{i:03d}" for i in range(70)]

    @pytest.mark.asyncio
    async def test_second_sweep_is_idempotent(self):
        """Re-running with no change in inputs plans no moves."""
        store = DictTierStore(
            [make_record(f"m{i:03d}", importance=i, tier=MemoryTier.WARM) for i in range(100)]
            + [saturated("star", 90, MemoryTier.COLD)]
        )
        optimizer = optimizer_for()

        first = await optimizer.optimize(store.snapshot(), store.apply, now=FIXED_NOW)
        second = await optimizer.optimize(store.snapshot(), store.apply, now=FIXED_NOW)

        assert first.promoted == 1
        assert store.records["star"].tier == MemoryTier.HOT
        assert second.promoted == 0
        assert second.demoted == 0
        assert second.transitions == []

    @pytest.mark.asyncio
    async def test_deleted_records_are_ignored(self):
        """Soft-deleted records are never scored or moved."""
        store = DictTierStore([make_record("gone", importance=0, deleted_at=FIXED_NOW)])

        result = await optimizer_for().optimize(store.snapshot(), store.apply, now=FIXED_NOW)

        assert result.processed == 0
        assert store.applied == []


class TestCapacity:
    """Tests for per-persona capacity enforcement."""

    @pytest.mark.asyncio
    async def test_overflow_demotes_lowest_scores(self):
        """A capped tier keeps its highest scorers; the rest move down."""
        store = DictTierStore(
            [
                saturated("a", 100, MemoryTier.WARM),  # 100
                saturated("b", 100, MemoryTier.WARM),  # 100
                saturated("c", 80, MemoryTier.HOT),  # 90
                saturated("d", 90, MemoryTier.HOT),  # 95
            ]
        )
        optimizer = optimizer_for(hot_capacity=2)

        result = await optimizer.optimize(store.snapshot(), store.apply, now=FIXED_NOW)

        assert result.promoted == 2
        assert result.demoted == 2
        reasons = {t.memory_id: t.reason for t in result.transitions}
        assert reasons == {
            "a": TransitionReason.SCORE,
            "b": TransitionReason.SCORE,
            "c": TransitionReason.CAPACITY,
            "d": TransitionReason.CAPACITY,
        }
        assert {r.id for r in store.records.values() if r.tier == MemoryTier.HOT} == {"a", "b"}

        again = await optimizer.optimize(store.snapshot(), store.apply, now=FIXED_NOW)
        assert again.transitions == []

    @pytest.mark.asyncio
    async def test_capacity_is_per_persona(self):
        """Each persona gets its own tier capacity."""
        store = DictTierStore(
            [
                saturated("p1-a", 100, MemoryTier.WARM).model_copy(update={"persona_id": "p1"}),
                saturated("p2-a", 100, MemoryTier.WARM).model_copy(update={"persona_id": "p2"}),
            ]
        )

        result = await optimizer_for(hot_capacity=1).optimize(store.snapshot(), store.apply, now=FIXED_NOW)

        assert result.promoted == 2

    @pytest.mark.asyncio
    async def test_capacity_can_be_disabled(self):
        """With enforce_capacity off, only bands decide."""
        store = DictTierStore([saturated(f"m{i}", 100, MemoryTier.WARM) for i in range(3)])

        result = await optimizer_for(hot_capacity=1, enforce_capacity=False).optimize(
            store.snapshot(), store.apply, now=FIXED_NOW
        )

        assert result.promoted == 3


class TestFailuresAndConcurrency:
    """Tests for per-record failures, cancellation and overlap."""

    @pytest.mark.asyncio
    async def test_scoring_failure_is_skipped(self):
        """A record that cannot be scored is reported, the rest proceed."""
        broken = MemoryRecord.model_construct(
            id="broken",
            persona_id="persona-1",
            content="x",
            importance=50,
            tier=MemoryTier.WARM,
            last_accessed_at="yesterday",
            created_at=FIXED_NOW,
        )
        store = DictTierStore([make_record("low", importance=0)])

        result = await optimizer_for().optimize([broken, *store.snapshot()], store.apply, now=FIXED_NOW)

        assert [f.item_id for f in result.failures] == ["broken"]
        assert store.records["low"].tier == MemoryTier.COLD
        assert not result.success

    @pytest.mark.asyncio
    async def test_apply_failure_is_skipped(self):
        """A move that fails to commit does not stop the sweep."""
        store = DictTierStore([make_record("a", importance=0), make_record("b", importance=0)])

        async def flaky_apply(move):
            if move.memory_id == "a":
                raise RuntimeError("write failed")
            return await store.apply(move)

        result = await optimizer_for().optimize(store.snapshot(), flaky_apply, now=FIXED_NOW)

        assert result.demoted == 1
        assert [f.item_id for f in result.failures] == ["a"]
        assert store.records["a"].tier == MemoryTier.WARM

    @pytest.mark.asyncio
    async def test_skipped_move_is_not_counted(self):
        """An apply hook returning None leaves the counters untouched."""
        store = DictTierStore([make_record("a", importance=0)])

        async def stale_apply(move):
            return None

        result = await optimizer_for().optimize(store.snapshot(), stale_apply, now=FIXED_NOW)

        assert result.demoted == 0
        assert result.success

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        """A set cancel event stops the sweep before any record."""
        store = DictTierStore([make_record("a", importance=0)])
        cancel = asyncio.Event()
        cancel.set()

        result = await optimizer_for().optimize(store.snapshot(), store.apply, now=FIXED_NOW, cancel_event=cancel)

        assert result.cancelled
        assert result.processed == 0
        assert store.applied == []

    @pytest.mark.asyncio
    async def test_overlapping_sweeps_rejected(self):
        """A sweep over all personas blocks any other sweep."""
        optimizer = optimizer_for()
        store = DictTierStore([make_record("a", importance=0)])
        overlap_errors = []

        async def reentrant_apply(move):
            assert optimizer.is_running("persona-1")
            try:
                await optimizer.optimize([], store.apply, scope="persona-1")
            except OperationInProgressError as e:
                overlap_errors.append(e)
            return await store.apply(move)

        await optimizer.optimize(store.snapshot(), reentrant_apply, scope=ALL_PERSONAS, now=FIXED_NOW)

        assert len(overlap_errors) == 1
        assert overlap_errors[0].retryable
        assert not optimizer.is_running()

    @pytest.mark.asyncio
    async def test_distinct_personas_may_overlap(self):
        """Sweeps over different personas do not conflict."""
        optimizer = optimizer_for()
        store = DictTierStore([make_record("a", importance=0)])
        inner_results = []

        async def nested_apply(move):
            inner_results.append(await optimizer.optimize([], store.apply, scope="persona-2"))
            return await store.apply(move)

        await optimizer.optimize(store.snapshot(), nested_apply, scope="persona-1", now=FIXED_NOW)

        assert len(inner_results) == 1
        assert inner_results[0].processed == 0
