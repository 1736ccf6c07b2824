"""
Product Matcher.

Scores scraped listings against a catalog product and keeps the plausible
ones. Three signals contribute to a candidate's score, each only when it
fires:

    EAN          the product EAN (or its last 8 digits) appears in the title
    Brand+Size   fuzzy brand similarity tier plus a unit-aware size match
    Fuzzy title  Levenshtein similarity of stop-word-stripped names

The score is the weighted average of the fired signals, minus the penalties
for unwanted variants (testers, gift sets, samples...), floored at 0.

Classes:
    ProductMatcher: Weighted multi-signal matcher with runtime-tunable config.
"""

import logging
import re
from decimal import Decimal
from typing import Optional

from rapidfuzz.distance import Levenshtein

from margin_scout.models.models import (
    MatchingConfig,
    NormalizedProductData,
    PenaltyRule,
    PriceScrapingResult,
    ProductMatch,
    ScoredResult,
)

logger = logging.getLogger(__name__)

STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "up", "about", "into", "through", "during",
    "before", "after", "above", "below", "between", "among", "within",
    "perfume", "cologne", "eau", "de", "parfum", "spray", "bottle",
})

# unit -> (dimension, factor to the dimension's base unit)
SIZE_UNITS = {
    "ml": ("volume", 1.0),
    "milliliter": ("volume", 1.0),
    "milliliters": ("volume", 1.0),
    "cl": ("volume", 10.0),
    "l": ("volume", 1000.0),
    "liter": ("volume", 1000.0),
    "liters": ("volume", 1000.0),
    "litre": ("volume", 1000.0),
    "oz": ("volume", 29.5735),
    "fl oz": ("volume", 29.5735),
    "g": ("mass", 1.0),
    "gr": ("mass", 1.0),
    "gram": ("mass", 1.0),
    "grams": ("mass", 1.0),
    "kg": ("mass", 1000.0),
    "kilogram": ("mass", 1000.0),
    "kilograms": ("mass", 1000.0),
}

_UNIT_ALTERNATION = "|".join(sorted((re.escape(u) for u in SIZE_UNITS), key=len, reverse=True))
SIZE_PATTERN = re.compile(rf"(\d+(?:[.,]\d+)?)\s*({_UNIT_ALTERNATION})(?![a-z])", re.IGNORECASE)

SIZE_TOLERANCE = 0.05


def similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity in [0, 1]; two empty strings are identical."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def remove_stopwords(text: str) -> str:
    return " ".join(word for word in text.split() if word.lower() not in STOPWORDS)


def extract_sizes(text: str) -> list[tuple[str, float]]:
    """All sizes mentioned in ``text`` as (dimension, amount in ml or g)."""
    sizes = []
    for amount, unit in SIZE_PATTERN.findall(text or ""):
        dimension, factor = SIZE_UNITS[re.sub(r"\s+", " ", unit.lower())]
        sizes.append((dimension, float(amount.replace(",", ".")) * factor))
    return sizes


def sizes_match(first: tuple[str, float], second: tuple[str, float]) -> bool:
    if first[0] != second[0]:
        return False
    tolerance = max(first[1], second[1]) * SIZE_TOLERANCE
    return abs(first[1] - second[1]) <= tolerance


class ProductMatcher:
    """
    Matches scraped candidates against one catalog product.

    The configuration can be changed at runtime through update_config(),
    add_penalty_rule() and remove_penalty_rule().

    Example:
        >>> matcher = ProductMatcher()
        >>> match = matcher.find_matches(product, candidates)
        >>> match.best_match.score, match.margin_opportunity
        (0.87, 42.5)
    """

    def __init__(self, config: Optional[MatchingConfig] = None, **overrides):
        self.config = config.model_copy(deep=True) if config else MatchingConfig()
        if overrides:
            self.update_config(**overrides)

    # -------------------------------------------------------------------------
    # Matching
    # -------------------------------------------------------------------------
    def find_matches(self, product: NormalizedProductData,
                     candidates: list[PriceScrapingResult]) -> ProductMatch:
        matches: list[ScoredResult] = []
        for candidate in candidates:
            score = self.score_candidate(product, candidate)
            if score > self.config.min_score:
                matches.append(ScoredResult(**candidate.model_dump(), score=score))
            else:
                logger.debug("Discarding %r (score %.3f)", candidate.product_title, score)

        matches.sort(key=lambda m: m.score, reverse=True)
        best = matches[0] if matches else None

        margin = None
        if best is not None and best.price > 0 and product.wholesale_price > 0:
            margin = float((best.price - product.wholesale_price) / product.wholesale_price * Decimal(100))

        return ProductMatch(
            normalized_product=product,
            scraped_results=matches,
            best_match=best,
            confidence_score=best.score if best else 0.0,
            margin_opportunity=margin,
        )

    def score_candidate(self, product: NormalizedProductData, candidate: PriceScrapingResult) -> float:
        """Weighted average over the signals that fired, minus penalties, floored at 0."""
        title = candidate.product_title or ""
        total = 0.0
        weights = 0.0

        if product.ean and self.match_ean(product.ean, title):
            total += self.config.ean_weight
            weights += self.config.ean_weight

        brand_size = self.brand_size_score(product, title)
        if brand_size > 0:
            total += brand_size * self.config.brand_size_weight
            weights += self.config.brand_size_weight

        title_score = self.fuzzy_title_score(product, title)
        if title_score > 0:
            total += title_score * self.config.fuzzy_title_weight
            weights += self.config.fuzzy_title_weight

        if weights == 0:
            return 0.0

        return max(0.0, total / weights - self.penalty_score(title))

    # -------------------------------------------------------------------------
    # Signals
    # -------------------------------------------------------------------------
    @staticmethod
    def match_ean(ean: str, title: str) -> bool:
        digits = re.sub(r"\D", "", title or "")
        if not ean or not digits:
            return False
        if ean in digits:
            return True
        # Titles often carry a truncated code
        return len(ean) >= 8 and ean[-8:] in digits

    def brand_size_score(self, product: NormalizedProductData, title: str) -> float:
        brand = product.brand.lower().strip()
        lowered = title.lower()
        score = 0.0

        if brand:
            brand_similarity = similarity(brand, lowered)
            if brand_similarity > 0.8:
                score += 0.6
            elif brand_similarity > 0.6:
                score += 0.4
            elif brand_similarity > 0.4:
                score += 0.2

        if product.variant_size and self.match_size(product.variant_size, title):
            score += 0.4

        return min(1.0, score)

    def fuzzy_title_score(self, product: NormalizedProductData, title: str) -> float:
        lowered = title.lower()
        score = similarity(remove_stopwords(product.product_name.lower()), remove_stopwords(lowered))

        brand = product.brand.lower().strip()
        if brand and brand in lowered:
            return min(1.0, score + 0.2)
        return score

    @staticmethod
    def match_size(variant_size: str, title: str) -> bool:
        wanted = extract_sizes(variant_size)
        if not wanted:
            return False
        return any(sizes_match(wanted[0], found) for found in extract_sizes(title))

    def penalty_score(self, title: str) -> float:
        lowered = title.lower()
        return sum(
            rule.penalty
            for rule in self.config.penalty_rules
            if re.search(r"\b" + re.escape(rule.pattern.lower()), lowered)
        )

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------
    def update_config(self, **changes) -> None:
        unknown = set(changes) - set(MatchingConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown matching config field(s): {', '.join(sorted(unknown))}")
        self.config = MatchingConfig.model_validate({**self.config.model_dump(), **changes})

    def get_config(self) -> MatchingConfig:
        return self.config.model_copy(deep=True)

    def add_penalty_rule(self, rule: PenaltyRule) -> None:
        self.config.penalty_rules.append(rule)

    def remove_penalty_rule(self, pattern: str) -> None:
        self.config.penalty_rules = [r for r in self.config.penalty_rules if r.pattern != pattern]
