# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Tests for policy configuration loading.

Covers TierConfig validation, YAML parsing through load_config() and
clamping of out-of-range values.
"""

import pytest

from persona_memory.config import (
    CONFIG_ENV_VAR,
    MAX_TRAVERSAL_DEPTH_HARD_LIMIT,
    GraphConfig,
    MemoryCoreConfig,
    TierConfig,
    load_config,
)
from persona_memory.errors import ConfigurationError


class TestTierConfigValidation:
    """Tests for TierConfig cross-field validation."""

    def test_defaults_are_valid(self):
        """Default policy should construct without errors."""
        config = TierConfig()

        assert config.hot_threshold == 70.0
        assert config.warm_threshold == 40.0
        assert config.hysteresis_margin == 5.0

    def test_weights_must_sum_to_one(self):
        """Weights that do not sum to 1.0 are rejected."""
        with pytest.raises(ConfigurationError, match="sum to 1.0"):
            TierConfig(importance_weight=0.5, recency_weight=0.5, frequency_weight=0.5)

    def test_thresholds_must_be_ordered(self):
        """warm_threshold must be below hot_threshold."""
        with pytest.raises(ConfigurationError):
            TierConfig(hot_threshold=40.0, warm_threshold=70.0)

    def test_configuration_error_is_value_error(self):
        """ConfigurationError should be catchable as ValueError."""
        with pytest.raises(ValueError):
            TierConfig(recency_half_life_days=0)

    def test_capacity_for_tier_names(self):
        """capacity_for maps tier names to capacities."""
        config = TierConfig(hot_capacity=3, warm_capacity=7, cold_capacity=None)

        assert config.capacity_for("hot") == 3
        assert config.capacity_for("warm") == 7
        assert config.capacity_for("cold") is None


class TestGraphConfig:
    """Tests for GraphConfig helpers."""

    def test_decay_rate_falls_back_to_uniform(self):
        """Types without an override use decay_rate."""
        config = GraphConfig(decay_rate=0.9, decay_rates_by_type={"temporal": 0.5})

        assert config.decay_rate_for("temporal") == 0.5
        assert config.decay_rate_for("causal") == 0.9


class TestLoadConfig:
    """Tests for load_config() YAML parsing."""

    def test_missing_file_returns_defaults(self, tmp_path):
        """A non-existent path yields the default policy."""
        config = load_config(tmp_path / "missing.yaml")

        assert config == MemoryCoreConfig()

    def test_no_env_var_returns_defaults(self, monkeypatch):
        """Without a path or env var the defaults are used."""
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

        assert load_config() == MemoryCoreConfig()

    def test_env_var_names_the_file(self, tmp_path, monkeypatch):
        """PERSONA_MEMORY_CONFIG points at the policy file."""
        path = tmp_path / "memory.yaml"
        path.write_text("memory:\n  tiers:\n    hot_capacity: 12\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert load_config().tiers.hot_capacity == 12

    def test_sections_are_parsed(self, tmp_path):
        """Values from each section override defaults."""
        path = tmp_path / "memory.yaml"
        path.write_text(
            "memory:\n"
            "  tiers:\n"
            "    hysteresis_margin: 2.5\n"
            "    cold_capacity: 1000\n"
            "  embedding:\n"
            "    model_name: custom-model\n"
            "    cache_ttl_seconds: 60\n"
            "  search:\n"
            "    default_limit: 3\n"
            "  graph:\n"
            "    decay_rates_by_type:\n"
            "      temporal: 0.5\n"
            "  health:\n"
            "    window_seconds: 60\n"
        )

        config = load_config(path)

        assert config.tiers.hysteresis_margin == 2.5
        assert config.tiers.cold_capacity == 1000
        assert config.embedding.model_name == "custom-model"
        assert config.embedding.cache_ttl_seconds == 60.0
        assert config.search.default_limit == 3
        assert config.graph.decay_rates_by_type == {"temporal": 0.5}
        assert config.health.window_seconds == 60.0

    def test_values_are_clamped_to_hard_limits(self, tmp_path):
        """Out-of-range numbers are clamped, wrong types fall back."""
        path = tmp_path / "memory.yaml"
        path.write_text(
            "memory:\n"
            "  graph:\n"
            "    max_traversal_depth: 100000\n"
            "    decay_floor: lots\n"
        )

        config = load_config(path)

        assert config.graph.max_traversal_depth == MAX_TRAVERSAL_DEPTH_HARD_LIMIT
        assert config.graph.decay_floor == GraphConfig().decay_floor

    def test_invalid_yaml_returns_defaults(self, tmp_path):
        """Unparseable YAML yields the default policy."""
        path = tmp_path / "memory.yaml"
        path.write_text("memory: [unclosed\n")

        assert load_config(path) == MemoryCoreConfig()

    def test_inconsistent_tier_policy_raises(self, tmp_path):
        """A file that parses but breaks tier invariants is rejected."""
        path = tmp_path / "memory.yaml"
        path.write_text("memory:\n  tiers:\n    importance_weight: 0.9\n")

        with pytest.raises(ConfigurationError):
            load_config(path)
