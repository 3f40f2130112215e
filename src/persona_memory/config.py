# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Policy configuration for the persona memory core.

This module provides:
- Dataclass policy objects for tiering, embeddings, search, graph and health
- MemoryCoreConfig aggregating them
- load_config() to parse a YAML policy file (``memory:`` section)

Scoring weights, hysteresis margins and decay rates are injected through
these objects rather than hard-coded, so each algorithm can be exercised
in isolation with its own policy.
"""

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from persona_memory.errors import ConfigurationError

# Environment variable naming a YAML policy file
CONFIG_ENV_VAR = "PERSONA_MEMORY_CONFIG"

# Hard limits that a policy file cannot override
MAX_CAPACITY_HARD_LIMIT = 1_000_000
MAX_TRAVERSAL_DEPTH_HARD_LIMIT = 50
MAX_PATH_HOPS_HARD_LIMIT = 100
WEIGHT_TOLERANCE = 1e-6


@dataclass
class TierConfig:
    """Tier scoring and placement policy.

    Attributes:
        importance_weight: Weight of normalized importance in the score.
        recency_weight: Weight of recency (exponential decay since last access).
        frequency_weight: Weight of log-scaled access count.
        hot_threshold: Score (0-100) at or above which a record belongs in hot.
        warm_threshold: Score (0-100) at or above which a record belongs in warm.
        hysteresis_margin: Points a score must clear a band boundary by
            before an automatic move happens.
        recency_half_life_days: Days after which recency drops to 0.5.
        frequency_saturation: Access count at which frequency reaches 1.0.
        hot_capacity: Maximum records in hot (None for unbounded).
        warm_capacity: Maximum records in warm (None for unbounded).
        cold_capacity: Maximum records in cold (None for unbounded).
        min_dwell_hours: Minimum time in a tier before automatic moves.
        enforce_capacity: Demote overflow after the banded pass.
    """

    importance_weight: float = 0.5
    recency_weight: float = 0.3
    frequency_weight: float = 0.2
    hot_threshold: float = 70.0
    warm_threshold: float = 40.0
    hysteresis_margin: float = 5.0
    recency_half_life_days: float = 7.0
    frequency_saturation: int = 50
    hot_capacity: Optional[int] = 100
    warm_capacity: Optional[int] = 500
    cold_capacity: Optional[int] = None
    min_dwell_hours: float = 0.0
    enforce_capacity: bool = True

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Check cross-field consistency.

        Raises:
            ConfigurationError: If weights do not sum to 1.0 or the
                thresholds are out of order.
        """
        weights = (self.importance_weight, self.recency_weight, self.frequency_weight)
        if any(w < 0 for w in weights):
            raise ConfigurationError("score weights must be non-negative")
        if not math.isclose(sum(weights), 1.0, abs_tol=WEIGHT_TOLERANCE):
            raise ConfigurationError(
                f"score weights must sum to 1.0, got {sum(weights):.6f}"
            )
        if not 0.0 <= self.warm_threshold < self.hot_threshold <= 100.0:
            raise ConfigurationError(
                "thresholds must satisfy 0 <= warm_threshold < hot_threshold <= 100"
            )
        if self.hysteresis_margin < 0:
            raise ConfigurationError("hysteresis_margin must be non-negative")
        if self.recency_half_life_days <= 0:
            raise ConfigurationError("recency_half_life_days must be positive")
        if self.frequency_saturation < 1:
            raise ConfigurationError("frequency_saturation must be at least 1")

    def capacity_for(self, tier: str) -> Optional[int]:
        """Return the configured capacity for a tier name."""
        return {
            "hot": self.hot_capacity,
            "warm": self.warm_capacity,
            "cold": self.cold_capacity,
        }.get(tier)


@dataclass
class EmbeddingConfig:
    """Embedding model and cache policy.

    Attributes:
        model_name: Identifier of the embedding model.
        dimensions: Expected vector dimensionality for the model.
        cache_max_size: Maximum cached vectors (LRU eviction).
        cache_ttl_seconds: Optional TTL for cached vectors (None disables).
        auto_embed: Generate embeddings in the background on create/update.
    """

    model_name: str = "all-MiniLM-L6-v2"
    dimensions: int = 384
    cache_max_size: int = 2048
    cache_ttl_seconds: Optional[float] = None
    auto_embed: bool = True


@dataclass
class SearchConfig:
    """Defaults for keyword and semantic search."""

    similarity_threshold: float = 0.1
    default_limit: int = 10
    keyword_limit: int = 50
    similar_memories_threshold: float = 0.5
    similar_memories_limit: int = 5


@dataclass
class GraphConfig:
    """Relationship graph policy.

    Attributes:
        default_strength: Strength used when a caller omits one.
        default_confidence: Confidence used when a caller omits one.
        min_relationship_strength: Default traversal strength filter.
        decay_rate: Multiplicative strength factor applied per elapsed day.
        decay_rates_by_type: Optional per-type override of decay_rate.
        decay_floor: Edges decayed below this strength are removed.
        max_traversal_depth: Default hop limit for related-memory traversal.
        max_path_hops: Hop cap for connection path search.
        path_reverse_fallback: Retry path search ignoring direction.
        auto_relationship_threshold: Similarity needed to propose an edge.
        similar_type_threshold: Similarity at which a proposal is "similar".
        tag_overlap_threshold: Tag Jaccard overlap needed to propose an edge.
        temporal_window_hours: Creation-time window for temporal proposals.
        confidence_threshold: Confidence needed for auto-creation.
        max_relationships_per_memory: Proposal cap per discovery pass.
        relationship_ttl_days: Edges not reinforced for this long are stale.
    """

    default_strength: float = 0.5
    default_confidence: float = 0.8
    min_relationship_strength: float = 0.1
    decay_rate: float = 0.99
    decay_rates_by_type: dict[str, float] = field(default_factory=dict)
    decay_floor: float = 0.05
    max_traversal_depth: int = 5
    max_path_hops: int = 20
    path_reverse_fallback: bool = True
    auto_relationship_threshold: float = 0.5
    similar_type_threshold: float = 0.8
    tag_overlap_threshold: float = 0.3
    temporal_window_hours: float = 24.0
    confidence_threshold: float = 0.6
    max_relationships_per_memory: int = 20
    relationship_ttl_days: float = 365.0

    def decay_rate_for(self, relationship_type: str) -> float:
        """Return the decay factor for a relationship type.

        Falls back to the uniform decay_rate when no override exists.
        """
        return self.decay_rates_by_type.get(relationship_type, self.decay_rate)


@dataclass
class HealthConfig:
    """Window over which component outcomes count towards health."""

    window_seconds: float = 300.0


@dataclass
class MemoryCoreConfig:
    """Aggregate policy for a MemoryManager instance."""

    tiers: TierConfig = field(default_factory=TierConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    health: HealthConfig = field(default_factory=HealthConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryCoreConfig":
        """Build a configuration from a parsed ``memory:`` mapping.

        Unknown keys are ignored, wrongly typed values fall back to
        defaults and numeric values are clamped to hard limits.

        Raises:
            ConfigurationError: If the resulting tier policy is inconsistent.
        """
        tiers = _section(data, "tiers")
        embedding = _section(data, "embedding")
        search = _section(data, "search")
        graph = _section(data, "graph")
        health = _section(data, "health")

        defaults = TierConfig()
        tier_config = TierConfig(
            importance_weight=_float(tiers, "importance_weight", defaults.importance_weight, 0.0, 1.0),
            recency_weight=_float(tiers, "recency_weight", defaults.recency_weight, 0.0, 1.0),
            frequency_weight=_float(tiers, "frequency_weight", defaults.frequency_weight, 0.0, 1.0),
            hot_threshold=_float(tiers, "hot_threshold", defaults.hot_threshold, 0.0, 100.0),
            warm_threshold=_float(tiers, "warm_threshold", defaults.warm_threshold, 0.0, 100.0),
            hysteresis_margin=_float(tiers, "hysteresis_margin", defaults.hysteresis_margin, 0.0, 50.0),
            recency_half_life_days=_float(
                tiers, "recency_half_life_days", defaults.recency_half_life_days, 0.01, 3650.0
            ),
            frequency_saturation=_int(tiers, "frequency_saturation", defaults.frequency_saturation, 1, 1_000_000),
            hot_capacity=_capacity(tiers, "hot_capacity", defaults.hot_capacity),
            warm_capacity=_capacity(tiers, "warm_capacity", defaults.warm_capacity),
            cold_capacity=_capacity(tiers, "cold_capacity", defaults.cold_capacity),
            min_dwell_hours=_float(tiers, "min_dwell_hours", defaults.min_dwell_hours, 0.0, 24.0 * 365),
            enforce_capacity=_bool(tiers, "enforce_capacity", defaults.enforce_capacity),
        )

        embedding_defaults = EmbeddingConfig()
        model_name = embedding.get("model_name", embedding_defaults.model_name)
        if not isinstance(model_name, str) or not model_name.strip():
            model_name = embedding_defaults.model_name
        ttl = embedding.get("cache_ttl_seconds")
        embedding_config = EmbeddingConfig(
            model_name=model_name,
            dimensions=_int(embedding, "dimensions", embedding_defaults.dimensions, 1, 65536),
            cache_max_size=_int(embedding, "cache_max_size", embedding_defaults.cache_max_size, 1, MAX_CAPACITY_HARD_LIMIT),
            cache_ttl_seconds=float(ttl) if isinstance(ttl, (int, float)) and ttl > 0 else None,
            auto_embed=_bool(embedding, "auto_embed", embedding_defaults.auto_embed),
        )

        search_defaults = SearchConfig()
        search_config = SearchConfig(
            similarity_threshold=_float(search, "similarity_threshold", search_defaults.similarity_threshold, -1.0, 1.0),
            default_limit=_int(search, "default_limit", search_defaults.default_limit, 1, 10_000),
            keyword_limit=_int(search, "keyword_limit", search_defaults.keyword_limit, 1, 10_000),
            similar_memories_threshold=_float(
                search, "similar_memories_threshold", search_defaults.similar_memories_threshold, -1.0, 1.0
            ),
            similar_memories_limit=_int(search, "similar_memories_limit", search_defaults.similar_memories_limit, 1, 10_000),
        )

        graph_defaults = GraphConfig()
        raw_type_rates = graph.get("decay_rates_by_type", {})
        type_rates: dict[str, float] = {}
        if isinstance(raw_type_rates, dict):
            for key, value in raw_type_rates.items():
                if isinstance(key, str) and isinstance(value, (int, float)) and 0 < value <= 1:
                    type_rates[key] = float(value)
        graph_config = GraphConfig(
            default_strength=_float(graph, "default_strength", graph_defaults.default_strength, 0.0, 1.0),
            default_confidence=_float(graph, "default_confidence", graph_defaults.default_confidence, 0.0, 1.0),
            min_relationship_strength=_float(
                graph, "min_relationship_strength", graph_defaults.min_relationship_strength, 0.0, 1.0
            ),
            decay_rate=_float(graph, "decay_rate", graph_defaults.decay_rate, 1e-9, 1.0),
            decay_rates_by_type=type_rates,
            decay_floor=_float(graph, "decay_floor", graph_defaults.decay_floor, 0.0, 1.0),
            max_traversal_depth=_int(
                graph, "max_traversal_depth", graph_defaults.max_traversal_depth, 1, MAX_TRAVERSAL_DEPTH_HARD_LIMIT
            ),
            max_path_hops=_int(graph, "max_path_hops", graph_defaults.max_path_hops, 1, MAX_PATH_HOPS_HARD_LIMIT),
            path_reverse_fallback=_bool(graph, "path_reverse_fallback", graph_defaults.path_reverse_fallback),
            auto_relationship_threshold=_float(
                graph, "auto_relationship_threshold", graph_defaults.auto_relationship_threshold, 0.0, 1.0
            ),
            similar_type_threshold=_float(
                graph, "similar_type_threshold", graph_defaults.similar_type_threshold, 0.0, 1.0
            ),
            tag_overlap_threshold=_float(graph, "tag_overlap_threshold", graph_defaults.tag_overlap_threshold, 0.0, 1.0),
            temporal_window_hours=_float(
                graph, "temporal_window_hours", graph_defaults.temporal_window_hours, 0.0, 24.0 * 365
            ),
            confidence_threshold=_float(graph, "confidence_threshold", graph_defaults.confidence_threshold, 0.0, 1.0),
            max_relationships_per_memory=_int(
                graph, "max_relationships_per_memory", graph_defaults.max_relationships_per_memory, 1, 10_000
            ),
            relationship_ttl_days=_float(
                graph, "relationship_ttl_days", graph_defaults.relationship_ttl_days, 1.0, 36500.0
            ),
        )

        health_config = HealthConfig(
            window_seconds=_float(health, "window_seconds", HealthConfig().window_seconds, 1.0, 86400.0),
        )

        return cls(
            tiers=tier_config,
            embedding=embedding_config,
            search=search_config,
            graph=graph_config,
            health=health_config,
        )


def load_config(path: Optional[Union[str, Path]] = None) -> MemoryCoreConfig:
    """Load policy configuration from a YAML file.

    Args:
        path: Path to the YAML file. Defaults to $PERSONA_MEMORY_CONFIG.

    Returns:
        MemoryCoreConfig with settings from the file, or defaults when the
        file is absent or cannot be parsed.

    Raises:
        ConfigurationError: If the file parses but describes an
            inconsistent tier policy.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if not env_path:
            return MemoryCoreConfig()
        path = env_path

    config_path = Path(path)
    if not config_path.exists():
        return MemoryCoreConfig()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (yaml.YAMLError, IOError):
        return MemoryCoreConfig()

    if not isinstance(data, dict):
        return MemoryCoreConfig()

    memory = data.get("memory", {})
    if not isinstance(memory, dict):
        return MemoryCoreConfig()

    return MemoryCoreConfig.from_dict(memory)


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    return value if isinstance(value, dict) else {}


def _float(section: dict[str, Any], key: str, default: float, low: float, high: float) -> float:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return default
    return max(low, min(float(raw), high))


def _int(section: dict[str, Any], key: str, default: int, low: int, high: int) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return default
    return max(low, min(int(raw), high))


def _bool(section: dict[str, Any], key: str, default: bool) -> bool:
    raw = section.get(key, default)
    return raw if isinstance(raw, bool) else default


def _capacity(section: dict[str, Any], key: str, default: Optional[int]) -> Optional[int]:
    if key not in section:
        return default
    raw = section[key]
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return default
    return max(1, min(int(raw), MAX_CAPACITY_HARD_LIMIT))
