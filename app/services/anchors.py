"""Anchor-text quality statistics."""

import re
from collections import Counter
from typing import Iterable, List, Optional, Tuple

from app.models.analysis_response import AnchorQuality, LengthDistribution, TermCount
from app.models.link import LinkEdge
from app.services.ranking import EdgeInput, flatten_edges

# Anchor texts that tell neither users nor search engines anything about the target
GENERIC_TERMS: Tuple[str, ...] = (
    "ici",
    "cliquez",
    "lien",
    "link",
    "click",
    "here",
    "plus",
    "voir",
    "lire",
    "en savoir plus",
    "cliquez ici",
    "read more",
    "click here",
    "learn more",
)

MIN_MEANINGFUL_LENGTH = 4
MIN_KEYWORD_LENGTH = 4
TOP_GENERIC_TERMS = 5
TOP_KEYWORDS = 10


def _term_patterns(terms: Iterable[str]) -> List[Tuple[str, "re.Pattern[str]"]]:
    return [(term, re.compile(rf"(?<!\w){re.escape(term)}(?!\w)")) for term in terms]


_GENERIC_PATTERNS = _term_patterns(GENERIC_TERMS)


def generic_term(anchor_text: str, patterns=None) -> Optional[str]:
    """Return the first generic term *anchor_text* contains as a whole word, if any."""
    text = anchor_text.strip().lower()
    for term, pattern in patterns or _GENERIC_PATTERNS:
        if text == term or pattern.search(text):
            return term
    return None


def _length_bucket(distribution: LengthDistribution, length: int) -> None:
    if 1 <= length <= 3:
        distribution.very_short += 1
    elif 4 <= length <= 10:
        distribution.short += 1
    elif 11 <= length <= 20:
        distribution.medium += 1
    elif length > 20:
        distribution.long += 1


def _percentage(part: int, total: int) -> float:
    return round(part / total * 100, 1) if total else 0.0


def analyze_anchor_quality(edges: EdgeInput, generic_terms: Optional[Iterable[str]] = None) -> AnchorQuality:
    """Classify every anchor text as generic, meaningful and/or keyword-rich.

    An anchor is *generic* when it contains one of the generic terms (only
    the first matching term is counted).  Otherwise it is *meaningful* when
    at least :data:`MIN_MEANINGFUL_LENGTH` characters long, and
    *keyword-rich* when it also contains a word of
    :data:`MIN_KEYWORD_LENGTH` or more characters.
    """
    patterns = _term_patterns(generic_terms) if generic_terms is not None else None
    quality = AnchorQuality(length_distribution=LengthDistribution())
    generic_counts: Counter = Counter()
    keyword_counts: Counter = Counter()

    edge_list: List[LinkEdge] = flatten_edges(edges)
    for edge in edge_list:
        text = edge.anchor_text.strip().lower()
        length = len(text)
        quality.total_anchors += 1
        quality.total_length += length
        _length_bucket(quality.length_distribution, length)

        term = generic_term(text, patterns)
        if term is not None:
            quality.generic_anchors += 1
            generic_counts[term] += 1
            continue
        if length < MIN_MEANINGFUL_LENGTH:
            continue

        quality.meaningful_anchors += 1
        keywords = [word for word in text.split() if len(word) >= MIN_KEYWORD_LENGTH]
        keyword_counts.update(keywords)
        if keywords:
            quality.keyword_rich_anchors += 1

    total = quality.total_anchors
    if total:
        quality.average_length = round(quality.total_length / total, 1)
        quality.meaningful_percentage = _percentage(quality.meaningful_anchors, total)
        quality.generic_percentage = _percentage(quality.generic_anchors, total)
        quality.keyword_rich_percentage = _percentage(quality.keyword_rich_anchors, total)

    quality.common_generic_terms = [
        TermCount(term=term, count=count) for term, count in generic_counts.most_common(TOP_GENERIC_TERMS)
    ]
    quality.common_keywords = [
        TermCount(term=term, count=count) for term, count in keyword_counts.most_common(TOP_KEYWORDS)
    ]
    return quality
