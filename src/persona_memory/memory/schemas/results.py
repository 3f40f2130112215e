# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Per-item outcome reporting for batch operations.

Batch operations (batch create/retrieve/delete, tier optimization,
relationship decay) never fail all-or-nothing. Each item gets an
ItemOutcome and the aggregate is only successful when every item is.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

from persona_memory.memory.schemas.memory_types import TierTransition

T = TypeVar("T")


@dataclass
class ItemOutcome(Generic[T]):
    """Outcome for a single item of a batch.

    Attributes:
        index: Position of the item in the request.
        item_id: Identifier of the item, when known.
        success: Whether the item was processed.
        error: Error message when it was not.
        value: Result value for the item (may be None on success).
    """

    index: int
    item_id: Optional[str] = None
    success: bool = True
    error: Optional[str] = None
    value: Optional[T] = None


@dataclass
class BatchResult(Generic[T]):
    """Aggregate of per-item outcomes."""

    outcomes: list[ItemOutcome[T]] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def success(self) -> bool:
        """True only when every item succeeded."""
        return all(o.success for o in self.outcomes)

    @property
    def values(self) -> list[Optional[T]]:
        return [o.value for o in self.outcomes if o.success]

    def to_dict(self) -> dict[str, Any]:
        """Serialize summary and failures to a dictionary."""
        return {
            "success": self.success,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failures": [
                {"index": o.index, "item_id": o.item_id, "error": o.error}
                for o in self.outcomes
                if not o.success
            ],
        }


@dataclass
class OptimizationResult:
    """Result of a tier optimization sweep.

    Attributes:
        processed: Records scored successfully.
        promoted: Records moved to a higher tier.
        demoted: Records moved to a lower tier.
        transitions: Applied tier transitions in application order.
        failures: Records that could not be scored or moved.
        cancelled: True if the sweep stopped before visiting every record.
        duration_ms: Wall time of the sweep.
    """

    processed: int = 0
    promoted: int = 0
    demoted: int = 0
    transitions: list[TierTransition] = field(default_factory=list)
    failures: list[ItemOutcome[None]] = field(default_factory=list)
    cancelled: bool = False
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return not self.failures and not self.cancelled

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "processed": self.processed,
            "promoted": self.promoted,
            "demoted": self.demoted,
            "transitions": [t.to_dict() for t in self.transitions],
            "failures": [
                {"item_id": f.item_id, "error": f.error} for f in self.failures
            ],
            "cancelled": self.cancelled,
            "success": self.success,
            "duration_ms": self.duration_ms,
        }
