"""
Keyword lexicons used to infer a parent dimension from free text.

Region inference tries, in order:
1. Exact: a canonical keyword is a substring of the canonical area name
2. Fuzzy: rapidfuzz partial ratio of a keyword against the area name is at
   least `fuzzy_threshold`
3. Default: the configured default region

Anything but an exact match is flagged for manual review.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from rapidfuzz import fuzz

from ..normalizer.fields import canonicalize

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_THRESHOLD = 85

CONFIDENCE_EXACT = "exact"
CONFIDENCE_FUZZY = "fuzzy"
CONFIDENCE_DEFAULT = "default"


@dataclass(frozen=True)
class RegionMatch:
    """Result of region inference for one area name."""

    region: str
    confidence: str
    score: float = 100.0

    @property
    def needs_review(self) -> bool:
        return self.confidence != CONFIDENCE_EXACT


def _canonical_lexicon(lexicon: Mapping[str, Sequence[str]]) -> list[tuple[str, str]]:
    """Flatten to ``(keyword, label)`` pairs, longest keyword first."""
    pairs = []
    for label, keywords in lexicon.items():
        for keyword in keywords:
            canonical = canonicalize(keyword)
            if canonical:
                pairs.append((canonical, label))
    # Longer keywords are more specific ("new cairo" before "cairo")
    return sorted(pairs, key=lambda pair: len(pair[0]), reverse=True)


class RegionLexicon:
    """
    Infers the region an area belongs to.

    Example:
        >>> lexicon = RegionLexicon({"new cairo": ["fifth settlement"]}, default="cairo")
        >>> lexicon.match("Fifth Settlement, Cairo")
        RegionMatch(region='new cairo', confidence='exact', score=100.0)
    """

    def __init__(
        self,
        lexicon: Mapping[str, Sequence[str]],
        default: str,
        fuzzy_threshold: int = DEFAULT_FUZZY_THRESHOLD,
    ):
        """
        Args:
            lexicon: Region label -> keywords that identify it
            default: Region used when nothing matches
            fuzzy_threshold: Minimum partial ratio (0-100) for a fuzzy match
        """
        self.default = default
        self.threshold = fuzzy_threshold
        self._keywords = _canonical_lexicon(lexicon)

    def match(self, area_name: str) -> RegionMatch:
        text = canonicalize(area_name)
        if not text:
            return RegionMatch(region=self.default, confidence=CONFIDENCE_DEFAULT, score=0.0)

        for keyword, label in self._keywords:
            if keyword in text:
                return RegionMatch(region=label, confidence=CONFIDENCE_EXACT)

        best_label = None
        best_score = 0.0
        for keyword, label in self._keywords:
            score = fuzz.partial_ratio(keyword, text)
            if score > best_score:
                best_score = score
                best_label = label

        if best_label is not None and best_score >= self.threshold:
            logger.debug(
                "Fuzzy region match",
                extra={"area": area_name, "region": best_label, "score": best_score},
            )
            return RegionMatch(region=best_label, confidence=CONFIDENCE_FUZZY, score=best_score)

        logger.debug(
            "No region match, using default",
            extra={"area": area_name, "best_score": best_score, "threshold": self.threshold},
        )
        return RegionMatch(region=self.default, confidence=CONFIDENCE_DEFAULT, score=best_score)


class TypeCategoryLexicon:
    """Guesses the category of a property type from keywords in its name."""

    def __init__(self, lexicon: Mapping[str, Sequence[str]], default: str):
        self.default = default
        self._keywords = _canonical_lexicon(lexicon)

    def guess(self, type_name: str) -> str:
        text = canonicalize(type_name)
        for keyword, label in self._keywords:
            if keyword in text:
                return label
        return self.default
