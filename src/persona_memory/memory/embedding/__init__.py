# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Embedding generation, caching and similarity."""

from persona_memory.memory.embedding.cache import EmbeddingCache
from persona_memory.memory.embedding.models import HashingEmbedder, SentenceTransformerEmbedder
from persona_memory.memory.embedding.similarity import cosine_similarity
from persona_memory.memory.embedding.text import content_hash, jaccard, normalize_text, tokenize

__all__ = [
    "EmbeddingCache",
    "HashingEmbedder",
    "SentenceTransformerEmbedder",
    "cosine_similarity",
    "content_hash",
    "jaccard",
    "normalize_text",
    "tokenize",
]
