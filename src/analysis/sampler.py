"""
Bounded random sampling of normalized feedback before an extraction call.
"""

from typing import List, Optional, Sequence, TypeVar
import logging

import numpy as np

logger = logging.getLogger(__name__)

T = TypeVar("T")


def sample(items: Sequence[T], cap: int, rng: Optional[np.random.Generator] = None) -> List[T]:
    """
    Return at most `cap` items, chosen uniformly without replacement.

    Args:
        items: Candidate items
        cap: Maximum number of items to keep
        rng: Random source; pass a seeded Generator for reproducible selection

    Returns:
        `items` unchanged (as a list, order preserved) when len(items) <= cap,
        otherwise exactly `cap` distinct items in arbitrary order
    """
    if cap < 0:
        raise ValueError("cap must be non-negative")

    if len(items) <= cap:
        return list(items)

    rng = rng if rng is not None else np.random.default_rng()
    idx = rng.choice(len(items), size=cap, replace=False)

    logger.info(f"Sampled {cap} of {len(items)} feedback items")
    return [items[i] for i in idx]
