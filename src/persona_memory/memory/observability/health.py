# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Component health tracking.

Each component (tier manager, embedding service, graph service) reports
the outcome of its operations. Only the most recent outcome inside the
health window counts:

- ok: every component's latest outcome succeeded, or it has none
- error: every component's latest outcome failed
- degraded: anything in between
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Optional

TIER_MANAGER = "tier_manager"
EMBEDDING_SERVICE = "embedding_service"
GRAPH_SERVICE = "graph_service"
COMPONENTS = (TIER_MANAGER, EMBEDDING_SERVICE, GRAPH_SERVICE)


class HealthStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    ERROR = "error"


@dataclass
class ComponentHealth:
    """Latest known outcome of one component."""

    name: str
    last_success: Optional[bool] = None
    last_checked_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def in_window(self, now: datetime, window: timedelta) -> bool:
        return self.last_checked_at is not None and now - self.last_checked_at <= window

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "last_success": self.last_success,
            "last_checked_at": self.last_checked_at.isoformat() if self.last_checked_at else None,
            "last_error": self.last_error,
        }


@dataclass
class MemoryHealth:
    """Aggregate health report."""

    status: HealthStatus
    components: dict[str, ComponentHealth] = field(default_factory=dict)
    details: dict[str, Any] = field(default_factory=dict)
    checked_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "status": self.status.value,
            "components": {name: c.to_dict() for name, c in self.components.items()},
            "details": self.details,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
        }


class HealthMonitor:
    """Records component outcomes and derives aggregate status."""

    def __init__(self, window_seconds: float = 300.0, components: Iterable[str] = COMPONENTS):
        self.window = timedelta(seconds=window_seconds)
        self._components = {name: ComponentHealth(name=name) for name in components}

    def record(self, component: str, success: bool, now: datetime, error: Optional[str] = None) -> None:
        """Record the latest outcome for a component."""
        health = self._components.setdefault(component, ComponentHealth(name=component))
        health.last_success = success
        health.last_checked_at = now
        health.last_error = None if success else error

    def status(self, now: datetime) -> HealthStatus:
        """Derive the aggregate status at time now."""
        recent = [c for c in self._components.values() if c.in_window(now, self.window)]
        failed = [c for c in recent if not c.last_success]
        if not failed:
            return HealthStatus.OK
        if len(failed) == len(self._components):
            return HealthStatus.ERROR
        return HealthStatus.DEGRADED

    def report(self, now: datetime, details: Optional[dict[str, Any]] = None) -> MemoryHealth:
        """Build a health report at time now."""
        return MemoryHealth(
            status=self.status(now),
            components={name: ComponentHealth(**vars(c)) for name, c in self._components.items()},
            details=details or {},
            checked_at=now,
        )
