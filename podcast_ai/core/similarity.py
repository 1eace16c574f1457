"""
Deduplication of answer sources.
Drops exact repeats, then near-duplicates by word-set Jaccard similarity,
keeping the earliest passage of each overlapping group.
"""

import re
import logging
from typing import Any, Callable, Iterable

from podcast_ai.core.constants import SIMILARITY_THRESHOLD

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r'[^\w\s]')


def word_set(text: str) -> set[str]:
    if not text:
        return set()
    return set(_PUNCTUATION.sub(' ', text.lower()).split())


def jaccard_similarity(text_a: str, text_b: str) -> float:
    a, b = word_set(text_a), word_set(text_b)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def timestamp_sort_key(timestamp: Any) -> float:
    """Seconds for '[HH:MM]', 'HH:MM:SS' or numeric timestamps; unknown sorts last."""
    if isinstance(timestamp, (int, float)):
        return float(timestamp)
    if not timestamp:
        return float('inf')
    parts = str(timestamp).strip('[] ').split(':')
    try:
        values = [int(p) for p in parts]
    except ValueError:
        return float('inf')
    if len(values) == 2:
        # [HH:MM] as produced by format_timestamp
        return values[0] * 3600 + values[1] * 60
    total = 0
    for v in values:
        total = total * 60 + v
    return float(total)


def filter_similar_sources(sources: Iterable[Any],
                           threshold: float = SIMILARITY_THRESHOLD,
                           text_of: Callable[[Any], str] = lambda s: s.transcript_content,
                           key_of: Callable[[Any], tuple] = lambda s: (s.episode_id, s.timestamp),
                           time_of: Callable[[Any], Any] = lambda s: s.timestamp) -> list:
    """
    Remove duplicate and overlapping sources.

    Output is in chronological order, not relevance order.
    """
    seen = set()
    unique = []
    for source in sources:
        key = key_of(source)
        if key in seen:
            continue
        seen.add(key)
        unique.append(source)

    unique.sort(key=lambda s: timestamp_sort_key(time_of(s)))

    kept = []
    for candidate in unique:
        text = text_of(candidate) or ''
        if any(jaccard_similarity(text, text_of(k) or '') > threshold for k in kept):
            logger.debug("Dropping overlapping source %s", key_of(candidate))
            continue
        kept.append(candidate)

    return kept
