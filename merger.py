"""
merger.py — folds backend outcomes into one DetectionResult.

Ranking:
  1. candidates with a bounding box beat whole-image classifications,
     whatever their confidence (localization is the richer signal)
  2. within that set, higher confidence first
  3. ties go to the earlier backend, then to the earlier candidate

Product decision: real web matches win; otherwise the keyword heuristic over
all labels decides, and a product gets one synthetic shopping-search link.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from backends.base import BackendOutcome, RawCandidate, WebMatch
from errors import NoDetection
from labels import dedupe, normalize
from product_classifier import (
    ShoppingReference, build_shopping_reference, classify, reference_from_match,
)

logger = logging.getLogger(__name__)

MAX_LABELS = 8
MAX_SHOPPING_LINKS = 8


@dataclass(frozen=True)
class DetectionResult:
    main_label: str
    confidence: float
    all_labels: tuple[str, ...]                  # main label first
    is_product: bool
    shopping_links: tuple[ShoppingReference, ...]
    backend: str = ""                            # backend of the winning candidate

    @property
    def secondary_labels(self) -> tuple[str, ...]:
        return self.all_labels[1:]

    @property
    def shopping_url(self) -> Optional[str]:
        return self.shopping_links[0].url if self.shopping_links else None


@dataclass(frozen=True)
class _Ranked:
    backend: str
    label: str              # already normalized
    candidate: RawCandidate


def _pool(outcomes: Sequence[BackendOutcome]) -> list[_Ranked]:
    pool: list[_Ranked] = []
    for outcome in outcomes:
        if not outcome.ok:
            continue
        for candidate in outcome.candidates:
            label = normalize(candidate.label)
            if label:
                pool.append(_Ranked(outcome.backend, label, candidate))
    return pool


def _by_confidence(entries: Iterable[_Ranked]) -> list[_Ranked]:
    # sorted() is stable: equal confidences keep backend order
    return sorted(entries, key=lambda e: e.candidate.confidence, reverse=True)


def merge(
    outcomes: Sequence[BackendOutcome],
    keywords: Optional[Iterable[str]] = None,
) -> DetectionResult:
    """
    Merge outcomes listed in backend order.
    Raises NoDetection when no outcome carries a usable candidate.
    """
    pool = _pool(outcomes)
    if not pool:
        raise NoDetection("No backend returned a usable candidate")

    localized = [e for e in pool if e.candidate.bounding_box is not None]
    primary = _by_confidence(localized or pool)
    top = primary[0]
    others = _by_confidence(e for e in pool if e.candidate.bounding_box is None) if localized else []

    all_labels = dedupe(
        [top.label]
        + [normalize(alt) for alt in top.candidate.alternate_labels]
        + [e.label for e in primary[1:]]
        + [e.label for e in others]
    )[:MAX_LABELS]

    web_matches: list[WebMatch] = [m for o in outcomes if o.ok for m in o.web_matches]
    is_product = bool(web_matches) or classify(all_labels, keywords)

    if web_matches:
        links = tuple(
            reference_from_match(m.page_title, m.url) for m in web_matches[:MAX_SHOPPING_LINKS]
        )
    elif is_product:
        links = (build_shopping_reference(top.label),)
    else:
        links = ()

    result = DetectionResult(
        main_label=top.label,
        confidence=top.candidate.confidence,
        all_labels=tuple(all_labels),
        is_product=is_product,
        shopping_links=links,
        backend=top.backend,
    )
    logger.debug(
        "Merged %d candidates → %s (%.0f%%) product=%s labels=%s",
        len(pool), result.main_label, result.confidence * 100, result.is_product,
        ", ".join(result.all_labels),
    )
    return result
