# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Change notifications for memory state.

MemoryEventBus is an explicit observer channel owned by the
MemoryManager. Subscribers receive a MemoryEvent for every committed
change; a failing subscriber is logged and never affects the operation
that emitted the event or the other subscribers.
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from persona_memory.memory.schemas import utc_now

logger = logging.getLogger(__name__)


class MemoryEventKind(str, Enum):
    """Kinds of change notifications."""

    CREATED = "created"
    UPDATED = "updated"
    ACCESSED = "accessed"
    DELETED = "deleted"
    EMBEDDED = "embedded"
    TIER_CHANGED = "tier_changed"
    RELATIONSHIP_CREATED = "relationship_created"
    RELATIONSHIP_UPDATED = "relationship_updated"
    RELATIONSHIP_DELETED = "relationship_deleted"
    OPTIMIZED = "optimized"
    DECAYED = "decayed"


@dataclass
class MemoryEvent:
    """A committed change.

    Attributes:
        kind: What happened.
        persona_id: Persona scope, when the change has one.
        memory_id: Memory involved, when there is one.
        relationship_id: Relationship involved, when there is one.
        payload: Small summary of the change (never raw content).
        timestamp: When the change was committed.
    """

    kind: MemoryEventKind
    persona_id: Optional[str] = None
    memory_id: Optional[str] = None
    relationship_id: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)


Subscriber = Callable[[MemoryEvent], Union[None, Awaitable[None]]]


class MemoryEventBus:
    """Fan-out of MemoryEvents to subscribers.

    Example:
        >>> bus = MemoryEventBus()
        >>> unsubscribe = bus.subscribe(lambda event: print(event.kind))
        >>> await bus.publish(MemoryEvent(MemoryEventKind.CREATED, memory_id="m1"))
        MemoryEventKind.CREATED
        >>> unsubscribe()
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber.

        Args:
            callback: Sync or async callable receiving each event.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)
        callback_name = getattr(callback, "__name__", repr(callback))
        logger.debug(f"Event subscriber added: {callback_name}")

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def publish(self, event: MemoryEvent) -> None:
        """Deliver an event to every subscriber in registration order."""
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                callback_name = getattr(callback, "__name__", repr(callback))
                logger.warning(f"Event subscriber {callback_name} failed on {event.kind.value}: {e}")
