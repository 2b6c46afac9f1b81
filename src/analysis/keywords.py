"""
Word-frequency data for the feedback word cloud.
"""

from typing import Dict, List, Union

import pandas as pd

STOP_WORDS = frozenset([
    'the', 'and', 'is', 'in', 'to', 'i', 'a', 'it', 'that', 'was', 'for',
    'of', 'on', 'with', 'as', 'this', 'my', 'at', 'by', 'but', 'not', 'you',
    'from', 'have', 'are', 'be', 'or', 'an', 'they', 'we', 'their', 'been',
])


def word_cloud_data(texts: List[str], limit: int = 100) -> List[Dict[str, Union[str, int]]]:
    """
    Count repeated words across feedback texts.

    Args:
        texts: Feedback texts
        limit: Maximum number of words returned

    Returns:
        [{"text": word, "value": count}, ...] sorted by count descending,
        only words seen more than once
    """
    words = pd.Series(" ".join(texts).lower().split(), dtype="object")
    if words.empty:
        return []

    words = words[
        (words.str.len() > 2)
        & ~words.isin(STOP_WORDS)
        & ~words.str.fullmatch(r"\d+")
    ]

    counts = words.value_counts(sort=False)
    counts = counts[counts > 1].sort_values(ascending=False, kind="stable").head(limit)

    return [{"text": word, "value": int(count)} for word, count in counts.items()]
