"""String similarity utilities for matching track metadata.

Scores are integers in the range 0..100 and are computed over normalized
``"artist - title"`` strings. Normalization removes decorations that vary
between sources (remaster notes, featured artists, bracketed editions) so the
comparison sees the core identity of a track.
"""

from __future__ import annotations

import math
import re

EXACT_MATCH_SCORE = 100
CONTAINMENT_SCORE = 85

_BRACKETED = re.compile(r"\([^()]*\)|\[[^\[\]]*\]|\{[^{}]*\}")
_FEATURING = re.compile(r"(?<!\w)(?:featuring|feat\.|ft\.)(?!\w)")
_WHITESPACE = re.compile(r"\s+")


def normalize_track_text(text: str) -> str:
    """Lowercase, drop bracketed content and featuring tokens, collapse whitespace."""
    if not text:
        return ""

    s = text.lower()
    # Nested groups are removed from the inside out
    previous = None
    while previous != s:
        previous = s
        s = _BRACKETED.sub(" ", s)
    # Unbalanced brackets never match above; drop the stray characters
    s = re.sub(r"[()\[\]{}]", " ", s)
    # "feat.feat." only exposes its first token once the second is gone
    previous = None
    while previous != s:
        previous = s
        s = _FEATURING.sub(" ", s)
    return _WHITESPACE.sub(" ", s).strip()


def levenshtein_distance(s1: str, s2: str) -> int:
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)

    previous = list(range(len(s2) + 1))
    current = [0] * (len(s2) + 1)

    for i, c1 in enumerate(s1):
        current[0] = i + 1
        for j, c2 in enumerate(s2):
            cost = 0 if c1 == c2 else 1
            current[j + 1] = min(current[j] + 1, previous[j + 1] + 1, previous[j] + cost)
        previous, current = current, previous

    return previous[len(s2)]


def round_half_away_from_zero(value: float) -> int:
    """Round like most other languages do, not with banker's rounding."""
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


def edit_distance_score(s1: str, s2: str) -> int:
    """Similarity derived from edit distance, 100 for two empty strings."""
    a = s1.lower()
    b = s2.lower()
    max_len = max(len(a), len(b))
    if max_len == 0:
        return EXACT_MATCH_SCORE
    distance = levenshtein_distance(a, b)
    return round_half_away_from_zero((1.0 - distance / max_len) * 100)


def match_score(s1: str, s2: str) -> int:
    """Score two already-normalized strings.

    Exact equality scores 100, containment in either direction 85, and
    anything else falls back to the edit distance similarity.
    """
    a = s1.lower()
    b = s2.lower()

    if a == b:
        return EXACT_MATCH_SCORE
    if a in b or b in a:
        return CONTAINMENT_SCORE
    return edit_distance_score(a, b)


def track_key(artist: str, title: str) -> str:
    """Build the normalized ``"artist - title"`` comparison string."""
    return normalize_track_text(f"{artist} - {title}")
