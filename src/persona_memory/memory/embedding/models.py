# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Embedding model adapters.

- SentenceTransformerEmbedder: local sentence-transformers model, loaded
  on first use.
- HashingEmbedder: deterministic signed feature hashing over normalized
  tokens. Needs no model download, so it backs offline development and
  tests.

Model: all-MiniLM-L6-v2 (384-dim, fast, good quality)
"""

import hashlib
import logging
from typing import Optional, Protocol, cast

import numpy as np
from numpy.typing import NDArray

from persona_memory.memory.embedding.text import tokenize

logger = logging.getLogger(__name__)


class EncoderModel(Protocol):
    """Protocol for sentence-transformers style encoders."""

    def encode(
        self,
        sentences: list[str] | str,
        batch_size: int = 32,
        show_progress_bar: bool = False,
        normalize_embeddings: bool = True,
    ) -> NDArray[np.float32]: ...


class SentenceTransformerEmbedder:
    """Embedding function backed by sentence-transformers.

    Example:
        >>> embedder = SentenceTransformerEmbedder()
        >>> vector = embedder("database configuration")
        >>> len(vector)
        384
    """

    DEFAULT_MODEL = "all-MiniLM-L6-v2"
    DEFAULT_EMBEDDING_DIM = 384

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        dimensions: int = DEFAULT_EMBEDDING_DIM,
        lazy_load: bool = True,
    ):
        """Initialize the embedder.

        Args:
            model_name: Sentence-transformers model name.
            dimensions: Expected embedding dimension.
            lazy_load: If True, load model on first use.
        """
        self.model_name = model_name
        self.dimensions = dimensions
        self._model: Optional[EncoderModel] = None

        if not lazy_load:
            self._load_model()

    def _load_model(self) -> EncoderModel:
        """Load the sentence-transformers model."""
        if self._model is not None:
            return self._model

        try:
            from sentence_transformers import SentenceTransformer

            logger.info(f"Loading embedding model: {self.model_name}")
            self._model = cast(EncoderModel, SentenceTransformer(self.model_name))
            logger.info("Embedding model loaded successfully")
            return self._model
        except ImportError as e:
            raise ImportError(
                "sentence-transformers is required for SentenceTransformerEmbedder. "
                "Install with: pip install persona-memory[embeddings]"
            ) from e

    @property
    def model(self) -> EncoderModel:
        """Get the embedding model, loading if necessary."""
        if self._model is None:
            return self._load_model()
        return self._model

    def __call__(self, text: str) -> list[float]:
        embedding = self.model.encode(
            [text],
            batch_size=1,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        vector = embedding[0] if embedding.ndim == 2 else embedding
        return [float(x) for x in vector]


class HashingEmbedder:
    """Deterministic bag-of-tokens embedder.

    Each normalized token is hashed to a bucket and a sign; the vector is
    the L2-normalized sum. Texts that share tokens get positive cosine
    similarity, texts with disjoint tokens get (near) zero.
    """

    DEFAULT_EMBEDDING_DIM = 384

    def __init__(self, dimensions: int = DEFAULT_EMBEDDING_DIM, model_name: Optional[str] = None):
        if dimensions < 1:
            raise ValueError("dimensions must be at least 1")
        self.dimensions = dimensions
        self.model_name = model_name or f"hashing-{dimensions}"

    def _bucket(self, token: str) -> tuple[int, float]:
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        index = int.from_bytes(digest[:8], "big") % self.dimensions
        sign = 1.0 if digest[8] & 1 == 0 else -1.0
        return index, sign

    def __call__(self, text: str) -> list[float]:
        vector = np.zeros(self.dimensions, dtype=np.float64)
        for token in tokenize(text):
            index, sign = self._bucket(token)
            vector[index] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.tolist()
