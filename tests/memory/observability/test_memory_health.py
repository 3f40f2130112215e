# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Tests for component health aggregation and operation metrics.
"""

from datetime import timedelta

import pytest

from conftest import FIXED_NOW
from persona_memory.memory.observability import (
    EMBEDDING_SERVICE,
    GRAPH_SERVICE,
    TIER_MANAGER,
    HealthMonitor,
    HealthStatus,
    MemoryMetrics,
)


class TestHealthMonitor:
    """Tests for ok / degraded / error derivation."""

    def test_no_outcomes_is_ok(self):
        """A fresh monitor reports ok."""
        assert HealthMonitor().status(FIXED_NOW) == HealthStatus.OK

    def test_one_failing_component_is_degraded(self):
        """Some, but not all, failing components means degraded."""
        monitor = HealthMonitor()
        monitor.record(TIER_MANAGER, True, FIXED_NOW)
        monitor.record(EMBEDDING_SERVICE, False, FIXED_NOW, "model offline")

        report = monitor.report(FIXED_NOW)

        assert report.status == HealthStatus.DEGRADED
        assert report.components[EMBEDDING_SERVICE].last_error == "model offline"
        assert report.to_dict()["status"] == "degraded"

    def test_all_failing_is_error(self):
        """Every component failing within the window means error."""
        monitor = HealthMonitor()
        for component in (TIER_MANAGER, EMBEDDING_SERVICE, GRAPH_SERVICE):
            monitor.record(component, False, FIXED_NOW, "down")

        assert monitor.status(FIXED_NOW) == HealthStatus.ERROR

    def test_latest_outcome_wins(self):
        """A success after a failure restores the component."""
        monitor = HealthMonitor()
        monitor.record(GRAPH_SERVICE, False, FIXED_NOW, "write failed")
        monitor.record(GRAPH_SERVICE, True, FIXED_NOW + timedelta(seconds=1))

        assert monitor.status(FIXED_NOW + timedelta(seconds=2)) == HealthStatus.OK

    def test_failures_outside_window_are_ignored(self):
        """Outcomes older than the window do not count."""
        monitor = HealthMonitor(window_seconds=300)
        monitor.record(EMBEDDING_SERVICE, False, FIXED_NOW, "model offline")

        assert monitor.status(FIXED_NOW + timedelta(seconds=299)) == HealthStatus.DEGRADED
        assert monitor.status(FIXED_NOW + timedelta(seconds=301)) == HealthStatus.OK

    def test_report_is_a_snapshot(self):
        """Later outcomes do not change an earlier report."""
        monitor = HealthMonitor()
        report = monitor.report(FIXED_NOW)
        monitor.record(TIER_MANAGER, False, FIXED_NOW, "boom")

        assert report.components[TIER_MANAGER].last_success is None


class TestMemoryMetrics:
    """Tests for operation counters and latencies."""

    def test_track_records_success(self):
        """A block that completes counts as a success."""
        metrics = MemoryMetrics()

        with metrics.track("create_memory"):
            pass

        stats = metrics.get_stats()
        assert stats["counters"]["create_memory_total"] == 1
        assert stats["counters"]["create_memory_success"] == 1
        assert stats["latencies"]["create_memory"]["count"] == 1

    def test_track_records_error_and_reraises(self):
        """A block that raises counts as an error; the exception propagates."""
        metrics = MemoryMetrics()

        with pytest.raises(RuntimeError):
            with metrics.track("search_memories"):
                raise RuntimeError("boom")

        assert metrics.get_stats()["counters"]["search_memories_error"] == 1

    def test_labelled_counts(self):
        """count() bumps the total and one bucket per label."""
        metrics = MemoryMetrics()
        metrics.count("tier_transitions", {"to_tier": "hot", "reason": "score"})
        metrics.count("tier_transitions", {"to_tier": "cold", "reason": "score"}, amount=2)

        stats = metrics.get_stats()
        assert stats["counters"]["tier_transitions"] == 3
        assert stats["labels"]["tier_transitions_to_tier"] == {"hot": 1, "cold": 2}
        assert stats["labels"]["tier_transitions_reason"] == {"score": 3}

    def test_unused_operation_has_no_latency(self):
        """Only tracked operations appear in the latency section."""
        metrics = MemoryMetrics()
        metrics.record_operation("delete_memory", success=False)

        stats = metrics.get_stats()
        assert stats["counters"] == {"delete_memory_total": 1, "delete_memory_error": 1}
        assert stats["latencies"] == {}
