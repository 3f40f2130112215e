# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Recency and frequency normalization for tier scoring.

Recency uses exponential decay on time since last access:
score = 2^(-days_since_access / half_life). A record that was never
accessed is maximally stale and scores 0.0.

Frequency is log-scaled: log1p(count) / log1p(saturation), capped at 1.0.
"""

import math
from datetime import datetime
from typing import Optional

# Default half-life in days (score reaches 0.5 after this many days)
DEFAULT_HALF_LIFE_DAYS: float = 7.0

# Access count at which frequency saturates at 1.0
DEFAULT_FREQUENCY_SATURATION: int = 50

SECONDS_PER_DAY = 24 * 60 * 60


def days_between(earlier: datetime, later: datetime) -> float:
    """Elapsed days from earlier to later (negative if reversed)."""
    return (later - earlier).total_seconds() / SECONDS_PER_DAY


def recency_score(
    last_accessed_at: Optional[datetime],
    now: datetime,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> float:
    """Calculate exponential decay score based on last access time.

    Args:
        last_accessed_at: When the memory was last accessed, or None.
        now: Reference time.
        half_life_days: Days until score decays to 0.5.

    Returns:
        Decay score between 0.0 and 1.0.
        - 0.0 for never-accessed memories
        - 1.0 for memories accessed at (or after) now
        - 0.5 at half_life_days

    Example:
        >>> from datetime import datetime, timezone, timedelta
        >>> now = datetime.now(timezone.utc)
        >>> recency_score(now - timedelta(days=7), now)
        0.5
        >>> recency_score(None, now)
        0.0
    """
    if last_accessed_at is None:
        return 0.0

    days_since_access = days_between(last_accessed_at, now)

    # Clock skew: an access in the future counts as just now
    if days_since_access <= 0:
        return 1.0

    score = math.pow(2, -days_since_access / half_life_days)
    return max(0.0, min(1.0, score))


def frequency_score(access_count: int, saturation: int = DEFAULT_FREQUENCY_SATURATION) -> float:
    """Log-scaled access frequency in [0, 1].

    Example:
        >>> frequency_score(0)
        0.0
        >>> frequency_score(50)
        1.0
    """
    if access_count <= 0:
        return 0.0
    score = math.log1p(access_count) / math.log1p(saturation)
    return max(0.0, min(1.0, score))
