"""
Narrative research insights and citations for a result set.

Both are produced by the language model when it is reachable and fall back to
text assembled from the results otherwise.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import structlog

from ..core.exceptions import CatalogAssistantError
from ..models.catalog import CatalogResult

logger = structlog.get_logger(__name__)

CITATION_STYLES = ("apa", "mla")
CITATION_LIMIT = 5


def _unique(values: Sequence[str], limit: int) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen[:limit]


def fallback_insights(results: Sequence[CatalogResult], query: str) -> Dict[str, Any]:
    return {
        "summary": (
            f'Found {len(results)} resources related to "{query}". The results include various '
            "publications covering different aspects of the topic."
        ),
        "keyTopics": _unique([s for r in results for s in r.subjects], 5),
        "keyAuthors": _unique([r.author for r in results if r.has_author], 5),
        "publicationTrends": "Results span multiple years with recent publications available.",
        "researchGaps": [],
        "methodology": (
            "Review the retrieved resources and consider expanding search terms for comprehensive coverage."
        ),
        "qualityIndicators": "Results include scholarly and peer-reviewed sources.",
        "researchStrategy": "Systematic review approach recommended",
        "sourceQuality": "Mixed quality sources requiring individual evaluation",
        "coverageAnalysis": "Good coverage of main topic areas",
        "nextSteps": ["Review top results", "Expand search terms", "Check recent publications"],
        "fallback": True,
    }


def format_citation(result: CatalogResult, style: str = "apa") -> str:
    author = result.author if result.has_author else "Unknown Author"
    year = str(result.year) if result.year else "n.d."
    publisher = result.publisher or "Publisher unknown"
    if style == "mla":
        return f"{author}. {result.title}. {publisher}, {year}."
    return f"{author}. ({year}). {result.title}. {publisher}."


def fallback_citations(results: Sequence[CatalogResult]) -> Dict[str, List[str]]:
    top = list(results)[:CITATION_LIMIT]
    return {style: [format_citation(r, style) for r in top] for style in CITATION_STYLES}


def _describe(results: Sequence[CatalogResult], limit: int) -> str:
    blocks = []
    for r in list(results)[:limit]:
        blocks.append(
            f"Title: {r.title}\nAuthor: {r.author}\nYear: {r.year or 'n.d.'}\n"
            f"Subjects: {', '.join(r.subjects) or 'N/A'}\nDescription: {r.description or 'N/A'}"
        )
    return "\n\n".join(blocks)


class ResearchInsightsService:
    def __init__(self, llm: Any = None):
        self.llm = llm

    def available(self) -> bool:
        return self.llm is not None and self.llm.is_available()

    async def generate_insights(
        self,
        results: Sequence[CatalogResult],
        query: str,
        user_context: str = "",
    ) -> Dict[str, Any]:
        """Merge the result summary and research guidance into one dict."""
        if not results or not self.available():
            return fallback_insights(results, query)

        try:
            summary, research = await asyncio.gather(
                self._summarize(results, query),
                self._research_insights(results, query, user_context),
            )
        except CatalogAssistantError as e:
            logger.warning("ai_insights_failed", error=str(e))
            return fallback_insights(results, query)

        insights = fallback_insights(results, query)
        insights.update(summary)
        insights.update(research)
        insights["fallback"] = False
        return insights

    async def _summarize(self, results: Sequence[CatalogResult], query: str) -> Dict[str, Any]:
        prompt = (
            "Based on these library catalog search results, create a comprehensive research summary:\n\n"
            f'Original Query: "{query}"\n\n'
            f"Search Results:\n{_describe(results, 10)}\n\n"
            "Analyze these resources and provide insights in JSON format with the keys summary "
            "(2-3 paragraph thematic overview), keyTopics (list), keyAuthors (list), publicationTrends, "
            "researchGaps (list), methodology and qualityIndicators."
        )
        payload = await self.llm.generate_json(prompt, temperature=0.7)
        return payload if isinstance(payload, dict) else {}

    async def _research_insights(
        self, results: Sequence[CatalogResult], query: str, user_context: str
    ) -> Dict[str, Any]:
        key_resources = "\n".join(f"- {r.title} by {r.author} ({r.year or 'n.d.'})" for r in list(results)[:3])
        prompt = (
            "As a research librarian, provide comprehensive insights for this research query:\n\n"
            f'Query: "{query}"\n'
            f'User Context: "{user_context}"\n'
            f"Number of Results: {len(results)}\n\n"
            f"Key Resources Found:\n{key_resources}\n\n"
            "Provide research insights in JSON format with the keys researchStrategy, sourceQuality, "
            "coverageAnalysis, nextSteps (list), timelineEstimate, skillsRequired (list) and "
            "potentialChallenges (list)."
        )
        payload = await self.llm.generate_json(prompt, temperature=0.7)
        return payload if isinstance(payload, dict) else {}

    async def generate_citations(self, results: Sequence[CatalogResult]) -> Dict[str, List[str]]:
        top = list(results)[:CITATION_LIMIT]
        if not top:
            return {style: [] for style in CITATION_STYLES}

        fallback = fallback_citations(top)
        if not self.available():
            return fallback

        citations: Dict[str, List[str]] = {}
        for style in CITATION_STYLES:
            citations[style] = await self._citations(top, style) or fallback[style]
        return citations

    async def _citations(self, results: List[CatalogResult], style: str) -> Optional[List[str]]:
        records = "\n\n".join(
            f"Title: {r.title}\nAuthor: {r.author}\nPublisher: {r.publisher}\n"
            f"Year: {r.year or 'n.d.'}\nISBN: {r.isbn or 'N/A'}"
            for r in results
        )
        prompt = (
            f"Generate {style.upper()} format citations for these library resources:\n\n"
            f"{records}\n\n"
            'Respond with JSON: {"citations": ["formatted citation 1", "formatted citation 2"]}'
        )
        try:
            payload = await self.llm.generate_json(prompt, temperature=0.2)
        except CatalogAssistantError as e:
            logger.warning("citation_generation_failed", style=style, error=str(e))
            return None

        citations = payload.get("citations") if isinstance(payload, dict) else None
        if not isinstance(citations, list):
            return None
        return [str(c) for c in citations if c] or None
