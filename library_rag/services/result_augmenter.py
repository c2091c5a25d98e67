"""
Per-result and per-collection quality, relevance and coverage signals.

All local signals are computed synchronously from the record itself. The
optional AI narrative is fetched per record with bounded concurrency and a
timeout; one record's failure leaves its siblings untouched.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import structlog

from ..core import config
from ..core.exceptions import CatalogAssistantError
from ..models.catalog import (
    Augmentation,
    CatalogResult,
    ContentAnalysis,
    QualityAssessment,
    ReadingLevel,
    RelevanceBreakdown,
)

logger = structlog.get_logger(__name__)

# Ordered: ties resolve to the earliest level.
READING_LEVEL_KEYWORDS: Dict[str, tuple] = {
    "beginner": ("introduction", "basics", "fundamentals", "overview", "primer", "guide"),
    "intermediate": ("principles", "methods", "analysis", "concepts", "theory"),
    "advanced": ("advanced", "research", "analysis", "theoretical", "methodology", "dissertation"),
}

READING_LEVEL_INDICATORS: Dict[str, List[str]] = {
    "beginner": ["Suitable for newcomers to the field", "Provides foundational knowledge"],
    "intermediate": ["Requires some background knowledge", "Builds on fundamental concepts"],
    "advanced": ["Requires significant expertise", "Assumes deep familiarity with the field"],
}

FORMAT_INSIGHTS: Dict[str, Dict[str, List[str]]] = {
    "book": {
        "strengths": ["Comprehensive coverage", "Structured learning", "Authoritative content"],
        "considerations": ["May not have latest developments", "Broad rather than specific focus"],
    },
    "article": {
        "strengths": ["Current research", "Specific findings", "Peer-reviewed"],
        "considerations": ["Narrow focus", "Requires background knowledge"],
    },
    "thesis": {
        "strengths": ["Original research", "Detailed methodology", "Comprehensive bibliography"],
        "considerations": ["Single perspective", "May be very specialized"],
    },
    "conference": {
        "strengths": ["Latest developments", "Emerging trends", "Community discussions"],
        "considerations": ["Preliminary findings", "Limited peer review"],
    },
}

RECOMMENDED_USE: Dict[str, str] = {
    "book": "Comprehensive learning and reference",
    "article": "Current research and specific findings",
    "thesis": "In-depth research and methodology",
    "conference": "Latest trends and emerging ideas",
    "report": "Practical applications and case studies",
}

EXPERTISE_INDICATORS: Dict[str, tuple] = {
    "computer science": ("acm", "ieee", "algorithm", "programming", "software"),
    "library science": ("ala", "ifla", "cataloging", "marc", "information literacy"),
    "information science": ("asis&t", "information retrieval", "knowledge management"),
    "education": ("pedagogy", "curriculum", "learning outcomes", "assessment"),
    "social science": ("survey", "qualitative", "quantitative", "methodology"),
}

DOMAIN_KEYWORDS: Dict[str, tuple] = {
    "technology": ("computer", "software", "digital", "electronic", "information technology"),
    "science": ("research", "methodology", "analysis", "data", "statistics"),
    "education": ("education", "teaching", "learning", "curriculum", "pedagogy"),
    "social": ("social", "society", "cultural", "community", "human"),
    "business": ("management", "business", "economics", "finance", "marketing"),
}

AUTHORITY_PUBLISHERS = (
    "oxford", "cambridge", "harvard", "mit", "stanford", "princeton",
    "academic press", "springer", "elsevier", "wiley", "sage",
    "university press", "association for computing machinery", "ieee",
)

MIN_DESCRIPTION_LENGTH = 50

_WORD_RE = re.compile(r"\b\w+\b")


def _current_year() -> int:
    return datetime.now().year


def quality_class(score: float) -> str:
    if score >= 0.8:
        return "high-quality"
    if score >= 0.6:
        return "good-quality"
    if score >= 0.4:
        return "moderate-quality"
    return "basic-quality"


def relevance_class(score: float) -> str:
    if score >= 0.7:
        return "highly-relevant"
    if score >= 0.4:
        return "moderately-relevant"
    return "tangentially-relevant"


def is_authority_publisher(publisher: Optional[str]) -> bool:
    if not publisher:
        return False
    lowered = publisher.lower()
    return any(name in lowered for name in AUTHORITY_PUBLISHERS)


def term_overlap(text: str, terms: Sequence[str]) -> float:
    if not text or not terms:
        return 0.0
    lowered = text.lower()
    return sum(1 for term in terms if term in lowered) / len(terms)


def query_terms(query: str) -> List[str]:
    return [t for t in (query or "").lower().split() if t]


@dataclass
class AugmentedCollection:
    results: List[CatalogResult]
    collection_insights: Optional[Dict[str, Any]] = None
    processing_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "collectionInsights": self.collection_insights,
            "processingTime": self.processing_time_ms,
        }


class ResultAugmenter:
    def __init__(
        self,
        llm: Any = None,
        ai_insights: Optional[bool] = None,
        concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        current_year: Optional[int] = None,
    ):
        self.llm = llm
        self.ai_insights = config.AUGMENT_AI_INSIGHTS if ai_insights is None else ai_insights
        self.concurrency = max(1, concurrency or config.AUGMENT_AI_CONCURRENCY)
        self.timeout = config.AUGMENT_AI_TIMEOUT_SEC if timeout is None else timeout
        self._fixed_year = current_year

    @property
    def current_year(self) -> int:
        return self._fixed_year or _current_year()

    # ────────────────────────────────────────────────────────────
    #  Entry point
    # ────────────────────────────────────────────────────────────

    async def augment(
        self,
        results: List[CatalogResult],
        query: str,
        user_context: str = "",
    ) -> AugmentedCollection:
        """Attach an :class:`Augmentation` to each result, in place."""
        start = time.perf_counter()
        if not results:
            return AugmentedCollection(results=[])

        for result in results:
            result.augmentation = self.augment_single(result, query, user_context)

        if self.ai_insights and self.llm is not None and self.llm.is_available():
            await self._attach_ai_insights(results, query, user_context)

        try:
            insights = self.collection_insights(results)
        except Exception as e:
            logger.error("collection_insights_failed", error=str(e), exc_info=True)
            insights = None

        elapsed = (time.perf_counter() - start) * 1000
        logger.debug("results_augmented", count=len(results), duration_ms=round(elapsed, 2))
        return AugmentedCollection(results=results, collection_insights=insights, processing_time_ms=elapsed)

    def augment_single(self, result: CatalogResult, query: str, user_context: str = "") -> Augmentation:
        try:
            return Augmentation(
                reading_level=self.assess_reading_level(result),
                relevance=self.analyze_relevance(result, query),
                content=self.analyze_content(result),
                format_insights=self.format_insights(result),
                subject_expertise=self.assess_subject_expertise(result),
                quality=self.assess_quality(result),
                usage_recommendations=self.usage_recommendations(result, user_context),
            )
        except Exception as e:
            logger.warning("result_augmentation_failed", result_id=result.id, error=str(e))
            return Augmentation(error=str(e) or type(e).__name__, basic_insights=self.basic_insights(result))

    # ────────────────────────────────────────────────────────────
    #  Per-result signals
    # ────────────────────────────────────────────────────────────

    def assess_reading_level(self, result: CatalogResult) -> ReadingLevel:
        text = f"{result.title} {result.description or ''}".lower()
        scores = {
            level: sum(1 for kw in keywords if kw in text)
            for level, keywords in READING_LEVEL_KEYWORDS.items()
        }
        best = max(scores.values())
        if best == 0:
            primary, confidence = "intermediate", 0.5
        else:
            primary = next(level for level, score in scores.items() if score == best)
            confidence = min(best / 3, 1.0)
        return ReadingLevel(
            primary=primary,
            scores=scores,
            confidence=confidence,
            indicators=list(READING_LEVEL_INDICATORS[primary]),
        )

    def analyze_relevance(self, result: CatalogResult, query: str) -> RelevanceBreakdown:
        terms = query_terms(query)
        subjects_text = " ".join(result.subjects)
        title = term_overlap(result.title, terms)
        description = term_overlap(result.description, terms)
        subjects = term_overlap(subjects_text, terms)
        overall = title * 0.4 + description * 0.3 + subjects * 0.3

        all_text = f"{result.title} {result.description} {subjects_text}".lower()
        return RelevanceBreakdown(
            overall=overall,
            title=title,
            description=description,
            subjects=subjects,
            matched_terms=[t for t in terms if t in all_text],
            relevance_class=relevance_class(overall),
        )

    def analyze_content(self, result: CatalogResult) -> ContentAnalysis:
        description = result.description or ""
        return ContentAnalysis(
            has_abstract=len(description) > 100,
            content_length=len(description),
            keyword_density=self.keyword_density(description),
            topic_coverage={
                "breadth": len(result.subjects),
                "depth": "specialized" if result.subjects else "general",
                "primaryDomain": self.primary_domain(result.subjects),
                "interdisciplinary": len(result.subjects) > 2,
            },
            recency=self.assess_recency(result.year),
        )

    @staticmethod
    def keyword_density(text: str) -> Dict[str, float]:
        words = _WORD_RE.findall(text.lower())
        if not words:
            return {}
        counts = Counter(w for w in words if len(w) > 3)
        return {word: count / len(words) for word, count in counts.most_common(5)}

    @staticmethod
    def primary_domain(subjects: Sequence[str]) -> str:
        if not subjects:
            return "general"
        text = " ".join(subjects).lower()
        for domain, keywords in DOMAIN_KEYWORDS.items():
            if any(kw in text for kw in keywords):
                return domain
        return "general"

    def assess_recency(self, year: Optional[int]) -> Dict[str, str]:
        if not year:
            return {"class": "unknown", "message": "Publication year not available"}
        age = self.current_year - year
        if age <= 2:
            return {"class": "very-recent", "message": "Very recent publication"}
        if age <= 5:
            return {"class": "recent", "message": "Recent publication"}
        if age <= 10:
            return {"class": "moderate", "message": "Moderately recent"}
        return {"class": "older", "message": "Older publication - check for updated information"}

    @staticmethod
    def format_insights(result: CatalogResult) -> Dict[str, Any]:
        fmt = (result.format or "book").lower()
        insights = FORMAT_INSIGHTS.get(fmt, FORMAT_INSIGHTS["book"])
        return {
            "format": fmt,
            "strengths": list(insights["strengths"]),
            "considerations": list(insights["considerations"]),
            "recommendedUse": RECOMMENDED_USE.get(fmt, "General reference and learning"),
        }

    @staticmethod
    def assess_subject_expertise(result: CatalogResult) -> Dict[str, Any]:
        text = f"{result.title} {' '.join(result.subjects)}".lower()
        expertise = {}
        for field_name, indicators in EXPERTISE_INDICATORS.items():
            matches = [ind for ind in indicators if ind in text]
            if matches:
                expertise[field_name] = {
                    "confidence": len(matches) / len(indicators),
                    "indicators": matches,
                }
        return expertise

    def quality_indicators(self, result: CatalogResult) -> Dict[str, bool]:
        year = result.year or 0
        return {
            "hasISBN": bool(result.isbn),
            "hasDescription": len(result.description or "") >= MIN_DESCRIPTION_LENGTH,
            "hasSubjects": bool(result.subjects),
            "hasPublisher": bool(result.publisher),
            "hasYear": year > 1900,
            "authorityPublisher": is_authority_publisher(result.publisher),
            "recentPublication": bool(year) and year >= self.current_year - 10,
        }

    def assess_quality(self, result: CatalogResult) -> QualityAssessment:
        indicators = self.quality_indicators(result)
        score = sum(indicators.values()) / len(indicators)

        recommendations = []
        if not indicators["hasDescription"]:
            recommendations.append("Limited description available - may need additional research")
        if not indicators["hasSubjects"]:
            recommendations.append("No subject headings - verify topic relevance")
        if not indicators["recentPublication"]:
            recommendations.append("Consider checking for more recent sources")
        if indicators["authorityPublisher"]:
            recommendations.append("Published by recognized authority in the field")

        return QualityAssessment(
            score=score,
            indicators=indicators,
            quality_class=quality_class(score),
            recommendations=recommendations,
        )

    def usage_recommendations(self, result: CatalogResult, user_context: str = "") -> List[str]:
        recommendations = []
        if "introduction" in (result.description or "").lower():
            recommendations.append("Good starting point for the topic")
        if result.year and result.year >= self.current_year - 3:
            recommendations.append("Contains current information")
        if len(result.subjects) > 3:
            recommendations.append("Covers multiple related topics")

        context = (user_context or "").lower()
        if "research" in context:
            recommendations.append("Suitable for research purposes")
        if "student" in context or "learning" in context:
            recommendations.append("Appropriate for educational use")
        return recommendations

    def basic_insights(self, result: CatalogResult) -> Dict[str, Any]:
        return {
            "hasDescription": bool(result.description),
            "hasSubjects": bool(result.subjects),
            "estimatedLevel": "beginner" if "introduction" in (result.title or "").lower() else "intermediate",
            "recency": "recent" if (result.year or 0) >= self.current_year - 5 else "older",
        }

    # ────────────────────────────────────────────────────────────
    #  AI narrative
    # ────────────────────────────────────────────────────────────

    async def _attach_ai_insights(self, results: List[CatalogResult], query: str, user_context: str) -> None:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(result: CatalogResult) -> None:
            if result.augmentation is None or result.augmentation.error:
                return
            async with semaphore:
                try:
                    insight = await asyncio.wait_for(
                        self._ai_insight(result, query, user_context), timeout=self.timeout
                    )
                except asyncio.TimeoutError:
                    logger.warning("ai_insight_timeout", result_id=result.id)
                    return
                except CatalogAssistantError as e:
                    logger.warning("ai_insight_failed", result_id=result.id, error=str(e))
                    return
            result.augmentation.ai_insights = insight if isinstance(insight, dict) else None

        await asyncio.gather(*(_one(r) for r in results))

    async def _ai_insight(self, result: CatalogResult, query: str, user_context: str) -> Any:
        prompt = (
            "Analyze this library resource and provide insights:\n\n"
            f'Title: "{result.title}"\n'
            f'Author: "{result.author}"\n'
            f"Year: {result.year or 'Unknown'}\n"
            f'Publisher: "{result.publisher}"\n'
            f"Subjects: {', '.join(result.subjects) or 'None listed'}\n"
            f'Description: "{result.description or "No description available"}"\n\n'
            f'Original Search Query: "{query}"\n'
            f'User Context: "{user_context}"\n\n'
            "Provide analysis in JSON format with the keys contentSummary, relevanceToQuery, "
            "strengthsAndLimitations (list), recommendedFor, complementaryResources, "
            "keyTakeaways (list) and academicValue."
        )
        return await self.llm.generate_json(prompt, temperature=0.3)

    # ────────────────────────────────────────────────────────────
    #  Collection-level signals
    # ────────────────────────────────────────────────────────────

    def collection_insights(self, results: List[CatalogResult]) -> Dict[str, Any]:
        return {
            "overallQuality": self.collection_quality(results),
            "topicCoverage": self.collection_coverage(results),
            "temporalDistribution": self.temporal_distribution(results),
            "diversityAnalysis": self.diversity(results),
            "gapAnalysis": self.identify_gaps(results),
            "recommendations": self.collection_recommendations(results),
        }

    @staticmethod
    def _quality_or_default(result: CatalogResult) -> float:
        score = result.augmentation.quality_score if result.augmentation else None
        return 0.5 if score is None else score

    def collection_quality(self, results: List[CatalogResult]) -> Dict[str, Any]:
        qualities = [self._quality_or_default(r) for r in results]
        average = sum(qualities) / len(qualities) if qualities else 0.0
        if average >= 0.8:
            recommendation = "Excellent collection of high-quality resources"
        elif average >= 0.6:
            recommendation = "Good collection with reliable sources"
        elif average >= 0.4:
            recommendation = "Mixed quality - verify individual sources"
        else:
            recommendation = "Lower quality collection - seek additional authoritative sources"
        return {
            "averageScore": average,
            "distribution": {
                "high": sum(1 for q in qualities if q >= 0.8),
                "good": sum(1 for q in qualities if 0.6 <= q < 0.8),
                "moderate": sum(1 for q in qualities if 0.4 <= q < 0.6),
                "basic": sum(1 for q in qualities if q < 0.4),
            },
            "recommendation": recommendation,
        }

    @staticmethod
    def collection_coverage(results: List[CatalogResult]) -> Dict[str, Any]:
        frequency = Counter(s for r in results for s in r.subjects)
        top = frequency.most_common(10)
        return {
            "totalSubjects": len(frequency),
            "topSubjects": [[subject, count] for subject, count in top],
            "breadth": "broad" if len(frequency) > 10 else "focused",
            "dominantTopics": [subject for subject, _ in top[:3]],
        }

    def temporal_distribution(self, results: List[CatalogResult]) -> Dict[str, Any]:
        now = self.current_year
        ages = [now - r.year for r in results if r.year]
        distribution = {
            "veryRecent": sum(1 for a in ages if a <= 2),
            "recent": sum(1 for a in ages if 2 < a <= 5),
            "moderate": sum(1 for a in ages if 5 < a <= 10),
            "older": sum(1 for a in ages if a > 10),
        }
        if not ages:
            recommendation = "Publication dates unavailable - verify currency of sources"
        else:
            recent_ratio = (distribution["veryRecent"] + distribution["recent"]) / len(ages)
            if recent_ratio >= 0.7:
                recommendation = "Good coverage of recent developments"
            elif recent_ratio >= 0.4:
                recommendation = "Balanced mix of recent and established sources"
            else:
                recommendation = "Consider adding more recent sources for current perspectives"
        return {
            "distribution": distribution,
            "averageAge": sum(ages) / len(ages) if ages else None,
            "recommendation": recommendation,
        }

    @staticmethod
    def diversity(results: List[CatalogResult]) -> Dict[str, Any]:
        formats = {r.format or "book" for r in results}
        publishers = {r.publisher for r in results if r.publisher}
        authors = {r.author for r in results if r.has_author}

        recommendations = []
        if len(formats) == 1:
            recommendations.append("Consider exploring different resource formats")
        if len(publishers) < 3:
            recommendations.append("Seek sources from diverse publishers for broader perspectives")
        if len(authors) < len(results) * 0.7:
            recommendations.append("Several results share authors - look for additional voices")

        return {
            "formatDiversity": len(formats),
            "publisherDiversity": len(publishers),
            "authorDiversity": len(authors),
            "diversityScore": (len(formats) + min(len(publishers), 10) + min(len(authors), 10)) / 23,
            "recommendation": recommendations or ["Good diversity across the collection"],
        }

    def identify_gaps(self, results: List[CatalogResult]) -> List[str]:
        gaps = []
        if not any(r.year and r.year >= self.current_year - 3 for r in results):
            gaps.append("No very recent sources (last 3 years)")
        if not any(
            "introduction" in r.title.lower() or "introduction" in (r.description or "").lower()
            for r in results
        ):
            gaps.append("No introductory-level resources identified")
        if not any(
            "advanced" in r.title.lower() or "research" in (r.description or "").lower()
            for r in results
        ):
            gaps.append("Limited advanced or research-level resources")
        return gaps

    def collection_recommendations(self, results: List[CatalogResult]) -> List[str]:
        recommendations = []
        if len(results) < 5:
            recommendations.append("Consider broadening search terms to find more resources")
        if len(results) > 20:
            recommendations.append("Large result set - consider narrowing search for more precision")
        average = sum(self._quality_or_default(r) for r in results) / len(results)
        if average < 0.6:
            recommendations.append("Verify quality of sources and seek additional authoritative resources")
        return recommendations
