"""
labels.py — turns raw backend labels into presentable terms.

On-device classifiers report hierarchical identifiers such as
"n03063599 coffee mug" or "cup, mug, coffee_mug"; cloud services return plain
words. Everything that reaches the user goes through normalize(), and every
list built from several candidates goes through dedupe().
"""
from __future__ import annotations

import re
from typing import Iterable

# WordNet-style synset ids: one letter followed by digits (n03063599)
_TAXONOMY_ID = re.compile(r"^[A-Za-z]\d+$")
_SEPARATORS = re.compile(r"[_\-]+")
MIN_FRAGMENT_LEN = 3


def _is_meaningful(fragment: str) -> bool:
    return len(fragment) >= MIN_FRAGMENT_LEN and not _TAXONOMY_ID.match(fragment)


def _clean_fragment(fragment: str) -> str:
    words = _SEPARATORS.sub(" ", fragment).split()
    if len(words) > 1:
        words = [w for w in words if not _TAXONOMY_ID.match(w)] or words
    return " ".join(words)


def normalize(raw: str) -> str:
    """
    Clean one raw label.

    Splits on commas, turns _ and - into spaces, drops taxonomy-id words,
    short fragments and taxonomy-id fragments, keeps the most specific (last)
    fragment and capitalises each word. Re-normalising the output is a no-op.
    """
    fragments = [_clean_fragment(part) for part in (raw or "").split(",")]
    meaningful = [f for f in fragments if _is_meaningful(f)]

    chosen = meaningful[-1] if meaningful else (raw or "")
    words = _SEPARATORS.sub(" ", chosen).split()
    return " ".join(w[:1].title() + w[1:].lower() for w in words)


def dedupe(labels: Iterable[str]) -> list[str]:
    """Case-insensitive, order-preserving; the first spelling wins."""
    seen: set[str] = set()
    result: list[str] = []
    for label in labels:
        key = label.casefold()
        if not label or key in seen:
            continue
        seen.add(key)
        result.append(label)
    return result
