# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Keyword and semantic retrieval over memory records."""

from persona_memory.memory.retrieval.keyword import KeywordSearchResult, keyword_matches, keyword_search
from persona_memory.memory.retrieval.ranking import TopK, stream
from persona_memory.memory.retrieval.semantic import SemanticSearchEngine, explain_similarity, similarity_band
from persona_memory.memory.retrieval.types import (
    EnhancedSearchResult,
    SearchFilters,
    SearchHit,
    SemanticSearchQuery,
    SemanticSearchResult,
)

__all__ = [
    "KeywordSearchResult",
    "keyword_matches",
    "keyword_search",
    "TopK",
    "stream",
    "SemanticSearchEngine",
    "explain_similarity",
    "similarity_band",
    "EnhancedSearchResult",
    "SearchFilters",
    "SearchHit",
    "SemanticSearchQuery",
    "SemanticSearchResult",
]
