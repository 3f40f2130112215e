# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Cosine similarity over embedding vectors."""

from typing import Sequence, Union

import numpy as np
from numpy.typing import NDArray

VectorLike = Union[Sequence[float], NDArray[np.floating]]


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """Compute cosine similarity between two vectors.

    Returns exactly 0.0 when either vector is empty or has zero
    magnitude, and when the dimensionalities differ. The result is
    clamped to [-1.0, 1.0] to absorb floating point drift.

    Example:
        >>> cosine_similarity([1.0, 0.0], [1.0, 0.0])
        1.0
        >>> cosine_similarity([1.0, 0.0], [0.0, 0.0])
        0.0
    """
    va = np.asarray(a, dtype=np.float64).ravel()
    vb = np.asarray(b, dtype=np.float64).ravel()

    if va.size == 0 or vb.size == 0 or va.shape != vb.shape:
        return 0.0

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0 or not np.isfinite(norm_a) or not np.isfinite(norm_b):
        return 0.0

    value = float(np.dot(va, vb) / (norm_a * norm_b))
    return max(-1.0, min(1.0, value))
