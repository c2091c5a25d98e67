"""
Catalog records and the annotations computed for them.

``CatalogResult`` is produced by retrieval and enriched in place by the
augmenter; the sorter only reorders lists of them.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_AUTHOR = "Unknown Author"


@dataclass
class ReadingLevel:
    primary: str
    scores: Dict[str, int]
    confidence: float
    indicators: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary": self.primary,
            "scores": dict(self.scores),
            "confidence": self.confidence,
            "indicators": list(self.indicators),
        }


@dataclass
class RelevanceBreakdown:
    overall: float
    title: float
    description: float
    subjects: float
    matched_terms: List[str] = field(default_factory=list)
    relevance_class: str = "tangentially-relevant"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": self.overall,
            "title": self.title,
            "description": self.description,
            "subjects": self.subjects,
            "matchedTerms": list(self.matched_terms),
            "relevanceClass": self.relevance_class,
        }


@dataclass
class ContentAnalysis:
    has_abstract: bool
    content_length: int
    keyword_density: Dict[str, float]
    topic_coverage: Dict[str, Any]
    recency: Dict[str, str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasAbstract": self.has_abstract,
            "contentLength": self.content_length,
            "keywordDensity": dict(self.keyword_density),
            "topicCoverage": dict(self.topic_coverage),
            "recency": dict(self.recency),
        }


@dataclass
class QualityAssessment:
    score: float
    indicators: Dict[str, bool]
    quality_class: str
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "indicators": dict(self.indicators),
            "class": self.quality_class,
            "recommendations": list(self.recommendations),
        }


@dataclass
class Augmentation:
    """Signals attached to a single result by the augmenter.

    A failed augmentation carries only ``error`` and ``basic_insights``.
    """

    reading_level: Optional[ReadingLevel] = None
    relevance: Optional[RelevanceBreakdown] = None
    content: Optional[ContentAnalysis] = None
    format_insights: Dict[str, Any] = field(default_factory=dict)
    subject_expertise: Dict[str, Any] = field(default_factory=dict)
    quality: Optional[QualityAssessment] = None
    usage_recommendations: List[str] = field(default_factory=list)
    ai_insights: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    basic_insights: Optional[Dict[str, Any]] = None

    @property
    def quality_score(self) -> Optional[float]:
        return self.quality.score if self.quality else None

    def to_dict(self) -> Dict[str, Any]:
        if self.error:
            return {"error": self.error, "basicInsights": self.basic_insights}
        return {
            "readingLevel": self.reading_level.to_dict() if self.reading_level else None,
            "relevanceAnalysis": self.relevance.to_dict() if self.relevance else None,
            "contentAnalysis": self.content.to_dict() if self.content else None,
            "formatInsights": dict(self.format_insights),
            "subjectExpertise": dict(self.subject_expertise),
            "qualityIndicators": self.quality.to_dict() if self.quality else None,
            "usageRecommendations": list(self.usage_recommendations),
            "aiInsights": self.ai_insights,
        }


@dataclass
class CatalogResult:
    id: str
    title: str = UNKNOWN_TITLE
    author: str = UNKNOWN_AUTHOR
    publisher: str = ""
    year: Optional[int] = None
    isbn: str = ""
    subjects: List[str] = field(default_factory=list)
    description: str = ""
    score: float = 0.0
    record_ref: str = ""
    format: Optional[str] = None
    augmentation: Optional[Augmentation] = None

    @property
    def has_author(self) -> bool:
        return bool(self.author and self.author.strip() and self.author != UNKNOWN_AUTHOR)

    def summary(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "author": self.author, "year": self.year}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "publisher": self.publisher,
            "year": self.year,
            "isbn": self.isbn,
            "subjects": list(self.subjects),
            "description": self.description,
            "score": self.score,
            "marcRecord": self.record_ref,
        }
        if self.format:
            data["format"] = self.format
        if self.augmentation is not None:
            data["augmentation"] = self.augmentation.to_dict()
        return data


@dataclass
class OptimizationResult:
    original_query: str
    success: bool
    optimized_query: Optional[Dict[str, Any]] = None
    confidence: float = 0.0
    reasoning: str = ""
    strategy: str = ""
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalQuery": self.original_query,
            "success": self.success,
            "optimizedQuery": self.optimized_query,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "strategy": self.strategy,
            "error": self.error,
        }


@dataclass
class FieldInfo:
    type: str
    searchable: bool = False
    boostable: bool = False
    filterable: bool = False
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "searchable": self.searchable,
            "boostable": self.boostable,
            "filterable": self.filterable,
            "description": self.description,
        }


@dataclass
class Schema:
    index_name: str
    fields: Dict[str, FieldInfo] = field(default_factory=dict)
    description: str = "MARC bibliographic records with embedded metadata"
    strategies: List[str] = field(default_factory=list)
    is_fallback: bool = False

    def searchable_fields(self) -> List[str]:
        return [name for name, info in self.fields.items() if info.searchable]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "indexName": self.index_name,
            "description": self.description,
            "fields": {name: info.to_dict() for name, info in self.fields.items()},
            "recommendedQueryStrategies": list(self.strategies),
        }
