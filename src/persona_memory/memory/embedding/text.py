# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Text normalization shared by embedding keys and content overlap."""

import hashlib
import re

_PUNCTUATION = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lower-case, strip punctuation and collapse whitespace.

    Example:
        >>> normalize_text("  Paris, is the   CAPITAL! ")
        'paris is the capital'
    """
    lowered = text.lower()
    stripped = _PUNCTUATION.sub("", lowered)
    return _WHITESPACE.sub(" ", stripped).strip()


def tokenize(text: str) -> list[str]:
    """Split normalized text into tokens."""
    normalized = normalize_text(text)
    return normalized.split(" ") if normalized else []


def content_hash(model_name: str, normalized: str) -> str:
    """Hash a model identifier and normalized text into a cache key."""
    key_string = f"{model_name}|{normalized}"
    return hashlib.sha256(key_string.encode("utf-8")).hexdigest()


def jaccard(left: set[str], right: set[str]) -> float:
    """Jaccard overlap of two sets (0.0 when both are empty)."""
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)
