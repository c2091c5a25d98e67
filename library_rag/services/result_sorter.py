"""
Deterministic ordering of augmented catalog results.

Sorting never mutates results; every function returns a new list and Python's
stable sort keeps equal-keyed results in their incoming order.
"""

from __future__ import annotations

import functools
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import structlog

from ..core import config
from ..models.catalog import CatalogResult

logger = structlog.get_logger(__name__)

DEFAULT_QUALITY = 0.5
NEAR_TIE = 0.01


class SortType(str, Enum):
    BEST_MATCH = "best_match"
    QUALITY = "quality"
    RELEVANCE = "relevance"
    NEWEST = "newest"
    OLDEST = "oldest"
    TITLE_AZ = "title_az"
    TITLE_ZA = "title_za"
    AUTHOR_AZ = "author_az"
    AUTHOR_ZA = "author_za"


SORT_OPTIONS: List[Dict[str, str]] = [
    {"value": SortType.BEST_MATCH.value, "label": "Best Match", "description": "Quality + Relevance"},
    {"value": SortType.QUALITY.value, "label": "Quality", "description": "Highest quality first"},
    {"value": SortType.RELEVANCE.value, "label": "Relevance", "description": "Most relevant first"},
    {"value": SortType.NEWEST.value, "label": "Newest", "description": "Most recent first"},
    {"value": SortType.OLDEST.value, "label": "Oldest", "description": "Oldest first"},
    {"value": SortType.TITLE_AZ.value, "label": "Title A-Z", "description": "Alphabetical by title"},
    {"value": SortType.TITLE_ZA.value, "label": "Title Z-A", "description": "Reverse alphabetical by title"},
    {"value": SortType.AUTHOR_AZ.value, "label": "Author A-Z", "description": "Alphabetical by author"},
    {"value": SortType.AUTHOR_ZA.value, "label": "Author Z-A", "description": "Reverse alphabetical by author"},
]


def quality_score(result: CatalogResult) -> float:
    score = result.augmentation.quality_score if result.augmentation else None
    return DEFAULT_QUALITY if score is None else score


def relevance_score(result: CatalogResult) -> float:
    return result.score or 0.0


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def available_sort_options() -> List[Dict[str, str]]:
    return [dict(option) for option in SORT_OPTIONS]


def is_valid_sort_type(sort_by: Any) -> bool:
    return sort_by in {s.value for s in SortType}


class ResultSorter:
    def __init__(
        self,
        quality_weight: Optional[float] = None,
        relevance_weight: Optional[float] = None,
    ):
        self.quality_weight = config.BEST_MATCH_QUALITY_WEIGHT if quality_weight is None else quality_weight
        self.relevance_weight = (
            config.BEST_MATCH_RELEVANCE_WEIGHT if relevance_weight is None else relevance_weight
        )

    def sort(self, results: Sequence[CatalogResult], sort_by: Any = SortType.BEST_MATCH) -> List[CatalogResult]:
        items = list(results)
        if not items:
            return items

        try:
            mode = SortType(sort_by)
        except ValueError:
            logger.warning("unknown_sort_type", sort_by=sort_by, fallback=SortType.BEST_MATCH.value)
            mode = SortType.BEST_MATCH

        if mode is SortType.BEST_MATCH:
            return self.by_best_match(items)
        if mode is SortType.QUALITY:
            return self.by_quality(items)
        if mode is SortType.RELEVANCE:
            return self.by_relevance(items)
        if mode in (SortType.NEWEST, SortType.OLDEST):
            return self.by_year(items, newest_first=mode is SortType.NEWEST)
        if mode in (SortType.TITLE_AZ, SortType.TITLE_ZA):
            return self.by_title(items, descending=mode is SortType.TITLE_ZA)
        return self.by_author(items, descending=mode is SortType.AUTHOR_ZA)

    def hybrid_scores(
        self,
        results: Sequence[CatalogResult],
        quality_weight: Optional[float] = None,
        relevance_weight: Optional[float] = None,
    ) -> List[float]:
        qw = self.quality_weight if quality_weight is None else quality_weight
        rw = self.relevance_weight if relevance_weight is None else relevance_weight
        max_relevance = max((relevance_score(r) for r in results), default=0.0)
        scores = []
        for r in results:
            normalized = relevance_score(r) / max_relevance if max_relevance > 0 else 0.0
            scores.append(quality_score(r) * qw + normalized * rw)
        return scores

    def by_best_match(
        self,
        results: Sequence[CatalogResult],
        quality_weight: Optional[float] = None,
        relevance_weight: Optional[float] = None,
    ) -> List[CatalogResult]:
        scores = self.hybrid_scores(results, quality_weight, relevance_weight)
        order = sorted(range(len(results)), key=lambda i: -scores[i])
        return [results[i] for i in order]

    def by_quality(self, results: Sequence[CatalogResult]) -> List[CatalogResult]:
        def compare(a: CatalogResult, b: CatalogResult) -> int:
            qa, qb = quality_score(a), quality_score(b)
            if abs(qa - qb) < NEAR_TIE:
                return _sign(relevance_score(b) - relevance_score(a))
            return _sign(qb - qa)

        return sorted(results, key=functools.cmp_to_key(compare))

    def by_relevance(self, results: Sequence[CatalogResult]) -> List[CatalogResult]:
        def compare(a: CatalogResult, b: CatalogResult) -> int:
            ra, rb = relevance_score(a), relevance_score(b)
            if abs(ra - rb) < NEAR_TIE:
                return _sign(quality_score(b) - quality_score(a))
            return _sign(rb - ra)

        return sorted(results, key=functools.cmp_to_key(compare))

    def by_year(self, results: Sequence[CatalogResult], newest_first: bool = True) -> List[CatalogResult]:
        dated = [r for r in results if r.year]
        undated = [r for r in results if not r.year]
        return sorted(dated, key=lambda r: r.year, reverse=newest_first) + undated

    def by_title(self, results: Sequence[CatalogResult], descending: bool = False) -> List[CatalogResult]:
        return sorted(results, key=lambda r: (r.title or "").casefold(), reverse=descending)

    def by_author(self, results: Sequence[CatalogResult], descending: bool = False) -> List[CatalogResult]:
        named = [r for r in results if r.has_author]
        unnamed = [r for r in results if not r.has_author]
        return sorted(named, key=lambda r: r.author.casefold(), reverse=descending) + unnamed


def sort_statistics(results: Sequence[CatalogResult]) -> Optional[Dict[str, Any]]:
    if not results:
        return None

    def summary(values: List[float]) -> Dict[str, float]:
        return {"min": min(values), "max": max(values), "avg": sum(values) / len(values)}

    years = [r.year for r in results if r.year]
    return {
        "count": len(results),
        "quality": summary([quality_score(r) for r in results]),
        "relevance": summary([relevance_score(r) for r in results]),
        "years": {"min": min(years), "max": max(years), "avg": round(sum(years) / len(years))}
        if years
        else None,
    }
