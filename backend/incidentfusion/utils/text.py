"""Free-text normalization shared by duplicate detection and route text matching."""
from __future__ import annotations

import re
from typing import Iterable

from unidecode import unidecode

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_MULTI_SPACE_RE = re.compile(r"\s+")

# Tokens of this length or shorter are ignored ("a", "on", "to", ...)
MIN_TOKEN_LENGTH_EXCLUSIVE = 2


def normalize_text(text: str | None) -> str:
    """Normalize free text for comparison.

    Steps:
    1. Transliterate to ASCII (unidecode)
    2. Lowercase
    3. Replace anything that is not a-z, 0-9 or whitespace with a space
    4. Collapse whitespace
    """
    if not text:
        return ""
    out = unidecode(str(text)).lower()
    out = _NON_ALNUM_RE.sub(" ", out)
    return _MULTI_SPACE_RE.sub(" ", out).strip()


def tokenize(normalized: str) -> frozenset[str]:
    """Whitespace tokens longer than two characters."""
    return frozenset(w for w in normalized.split(" ") if len(w) > MIN_TOKEN_LENGTH_EXCLUSIVE)


def jaccard_similarity(a: Iterable[str], b: Iterable[str]) -> float:
    """|A ∩ B| / |A ∪ B|; 0.0 when both sets are empty."""
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)
