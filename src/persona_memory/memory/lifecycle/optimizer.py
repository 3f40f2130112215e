# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tier optimization sweep.

A sweep visits every live record once and runs in two steps:

1. Plan: score each record and take the hysteresis recommendation as its
   target tier. A record that cannot be scored is reported as a failure
   and skipped.
2. Capacity: per persona, a capped tier keeps its highest-scoring targets
   (ties by identifier); the overflow targets the next tier down. A record
   pushed below its current tier this way moves with reason ``capacity``.

Moves are then applied one record at a time through a caller-supplied
hook, so each change commits independently and a cancelled sweep leaves
every record either moved or untouched. Because capacity selection is by
score, a second sweep with no intervening access plans no moves.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterable, Awaitable, Callable, Iterable, Optional, Union

from persona_memory.errors import OperationInProgressError
from persona_memory.memory.lifecycle.scorer import TierScorer
from persona_memory.memory.retrieval.ranking import stream
from persona_memory.memory.schemas import (
    ItemOutcome,
    MemoryRecord,
    MemoryTier,
    OptimizationResult,
    TierTransition,
    TransitionReason,
    utc_now,
)

logger = logging.getLogger(__name__)

ALL_PERSONAS = "*"

# Commits one move; returns None when the record changed or vanished meanwhile
ApplyMove = Callable[["PlannedMove"], Awaitable[Optional[TierTransition]]]


@dataclass
class PlannedMove:
    """A tier change decided by the plan step."""

    memory_id: str
    persona_id: str
    from_tier: MemoryTier
    to_tier: MemoryTier
    reason: TransitionReason
    score: float


@dataclass
class _PlanEntry:
    memory_id: str
    persona_id: str
    current: MemoryTier
    target: MemoryTier
    score: float
    capacity_limited: bool = False


class TierOptimizer:
    """Runs tier optimization sweeps over streamed records.

    Attributes:
        scorer: TierScorer providing scores and hysteresis.

    Example:
        >>> optimizer = TierOptimizer(TierScorer(config.tiers))
        >>> result = await optimizer.optimize(store.iter_memories(persona_id="p1"), apply_move, scope="p1")
        >>> print(f"promoted={result.promoted} demoted={result.demoted}")
    """

    def __init__(self, scorer: TierScorer):
        self.scorer = scorer
        self._active: set[str] = set()

    @property
    def config(self):
        return self.scorer.config

    def is_running(self, scope: str = ALL_PERSONAS) -> bool:
        """Check whether a sweep overlapping scope is active."""
        if scope == ALL_PERSONAS:
            return bool(self._active)
        return scope in self._active or ALL_PERSONAS in self._active

    async def optimize(
        self,
        records: Union[Iterable[MemoryRecord], AsyncIterable[MemoryRecord]],
        apply: ApplyMove,
        scope: str = ALL_PERSONAS,
        now: Optional[datetime] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> OptimizationResult:
        """Run one sweep.

        Args:
            records: Records to consider; deleted records are ignored.
            apply: Hook committing a single move.
            scope: Persona id the sweep covers, or "*" for all.
            now: Reference time for recency.
            cancel_event: When set, the sweep stops before the next record.

        Returns:
            OptimizationResult with per-record failures.

        Raises:
            OperationInProgressError: If an overlapping sweep is running.
        """
        if self.is_running(scope):
            raise OperationInProgressError("tier optimization", scope)

        self._active.add(scope)
        start = time.perf_counter()
        result = OptimizationResult()
        try:
            now = now or utc_now()
            plan = await self._plan(records, now, result, cancel_event)
            if not result.cancelled:
                for position, move in enumerate(self.capacity_pass(plan)):
                    if cancel_event is not None and cancel_event.is_set():
                        result.cancelled = True
                        break
                    await self._apply_one(position, move, apply, result)
        finally:
            self._active.discard(scope)
            result.duration_ms = (time.perf_counter() - start) * 1000

        logger.info(
            f"Tier optimization for {scope}: processed={result.processed} "
            f"promoted={result.promoted} demoted={result.demoted} "
            f"failures={len(result.failures)} cancelled={result.cancelled}"
        )
        return result

    async def _plan(
        self,
        records: Union[Iterable[MemoryRecord], AsyncIterable[MemoryRecord]],
        now: datetime,
        result: OptimizationResult,
        cancel_event: Optional[asyncio.Event],
    ) -> list[_PlanEntry]:
        plan: list[_PlanEntry] = []
        index = 0
        async for record in stream(records):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                break
            if record.is_deleted:
                continue
            try:
                score = self.scorer.score(record, now)
            except Exception as e:
                logger.warning(f"Skipping memory {record.id}: scoring failed: {e}")
                result.failures.append(ItemOutcome(index=index, item_id=record.id, success=False, error=str(e)))
            else:
                result.processed += 1
                plan.append(
                    _PlanEntry(
                        memory_id=record.id,
                        persona_id=record.persona_id,
                        current=record.tier,
                        target=score.recommended_tier,
                        score=score.total_score,
                    )
                )
            index += 1
        return plan

    def capacity_pass(self, plan: list[_PlanEntry]) -> list[PlannedMove]:
        """Cap each tier per persona and turn the plan into moves."""
        if self.config.enforce_capacity:
            by_persona: dict[str, list[_PlanEntry]] = {}
            for entry in plan:
                by_persona.setdefault(entry.persona_id, []).append(entry)
            for entries in by_persona.values():
                self._cap(entries)

        moves = []
        for entry in plan:
            if entry.target == entry.current:
                continue
            capacity_move = entry.capacity_limited and entry.target.rank < entry.current.rank
            moves.append(
                PlannedMove(
                    memory_id=entry.memory_id,
                    persona_id=entry.persona_id,
                    from_tier=entry.current,
                    to_tier=entry.target,
                    reason=TransitionReason.CAPACITY if capacity_move else TransitionReason.SCORE,
                    score=entry.score,
                )
            )
        return moves

    def _cap(self, entries: list[_PlanEntry]) -> None:
        for tier in (MemoryTier.HOT, MemoryTier.WARM):
            capacity = self.config.capacity_for(tier.value)
            if capacity is None:
                continue
            members = [e for e in entries if e.target == tier]
            if len(members) <= capacity:
                continue
            members.sort(key=lambda e: (-e.score, e.memory_id))
            lower = MemoryTier.from_rank(tier.rank - 1)
            for entry in members[capacity:]:
                entry.target = lower
                entry.capacity_limited = True

    async def _apply_one(
        self, position: int, move: PlannedMove, apply: ApplyMove, result: OptimizationResult
    ) -> None:
        try:
            transition = await apply(move)
        except Exception as e:
            logger.warning(f"Could not move memory {move.memory_id} to {move.to_tier.value}: {e}")
            result.failures.append(
                ItemOutcome(index=position, item_id=move.memory_id, success=False, error=str(e))
            )
            return

        if transition is None:
            return
        result.transitions.append(transition)
        if transition.is_promotion:
            result.promoted += 1
        else:
            result.demoted += 1
        logger.debug(
            f"Moved memory {move.memory_id}: {move.from_tier.value} -> {move.to_tier.value} ({move.reason.value})"
        )
