"""
AI-assisted second-pass query optimization.

The language model is shown the index schema, a sample of the initial results
and (optionally) specific titles it thinks the patron is describing, and asked
for a replacement search body. The proposal is validated, executed, and only
adopted when its confidence clears the configured threshold and it actually
returns hits.
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from ..core import config
from ..core.exceptions import CatalogAssistantError, ValidationError
from ..models.catalog import CatalogResult, OptimizationResult, Schema

logger = structlog.get_logger(__name__)

VALID_ROOT_KEYS = frozenset(
    {"query", "bool", "match", "multi_match", "term", "terms", "range", "exists", "script_score"}
)
DEFAULT_CONFIDENCE = 0.5
DEFAULT_REASONING = "AI-generated query optimization"
DEFAULT_STRATEGY = "hybrid_optimization"
OPTIMIZED_RESULT_SIZE = 20


@dataclass
class ExecutionOutcome:
    results: List[CatalogResult]
    used_fallback: bool
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


# ────────────────────────────────────────────────────────────
#  Prompt analysis helpers
# ────────────────────────────────────────────────────────────

def _has_word(text: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", text) is not None


def infer_search_intent(query: str) -> str:
    lowered = query.lower()
    if "book" in lowered and _has_word(lowered, "where"):
        return "a specific book they partially remember"
    if "author" in lowered:
        return "works by a specific author"
    if _has_word(lowered, "about") or _has_word(lowered, "on"):
        return "books about a specific topic"
    if _has_word(lowered, "like") or "similar" in lowered:
        return "books similar to something they know"
    return "resources related to their keywords"


def assess_results_quality(results: List[CatalogResult]) -> str:
    if not results:
        return "No results found - query may be too specific or use uncommon terms"
    if len(results) < 3:
        return "Very few results - could benefit from broader search terms"
    if len(results) > 50:
        return "Many results - could benefit from more specific targeting"
    avg_score = sum(r.score for r in results) / len(results)
    if avg_score < 10:
        return "Low relevance scores - query terms may not match well"
    return "Reasonable results but could be improved"


def suggest_improvements(query: str, results: List[CatalogResult]) -> str:
    suggestions = []
    if len(query) > 50:
        suggestions.append("Query is very long - focus on key terms")
    if len(query.split()) < 3:
        suggestions.append("Query is short - add related terms")
    if not results:
        suggestions.append("Try fuzzy matching and broader field search")
    if any(r.score > 50 for r in results):
        suggestions.append("Some high-scoring results suggest good term matching")
    return ", ".join(suggestions) if suggestions else "Standard optimization approaches"


def validate_query(query: Any) -> None:
    """Raise ``ValidationError`` unless *query* looks like a search body."""
    if not isinstance(query, dict) or not query:
        raise ValidationError("query must be a non-empty object")
    if not VALID_ROOT_KEYS.intersection(query.keys()):
        raise ValidationError("query does not have a recognizable search structure")


def parse_optimization_payload(payload: Any) -> Dict[str, Any]:
    """Apply defaults to a parsed model reply and clamp confidence into [0, 1]."""
    if not isinstance(payload, dict):
        raise ValidationError("optimization reply is not an object")
    if not payload.get("query"):
        raise ValidationError("missing query field in optimization reply")

    confidence = payload.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = DEFAULT_CONFIDENCE
    return {
        "query": payload["query"],
        "confidence": min(max(float(confidence), 0.0), 1.0),
        "reasoning": payload.get("reasoning") or DEFAULT_REASONING,
        "strategy": payload.get("strategy") or DEFAULT_STRATEGY,
    }


class AIQueryOptimizer:
    """Proposes, validates and executes a replacement query."""

    def __init__(
        self,
        llm: Any,
        search_engine: Any,
        confidence_threshold: Optional[float] = None,
    ):
        self.llm = llm
        self.search_engine = search_engine
        self.confidence_threshold = (
            config.OPTIMIZATION_CONFIDENCE_THRESHOLD
            if confidence_threshold is None
            else confidence_threshold
        )

    def should_adopt(self, optimization: OptimizationResult) -> bool:
        return optimization.success and optimization.confidence > self.confidence_threshold

    async def identify_library_materials(self, query: str) -> List[str]:
        """Ask the model for specific titles matching a described work."""
        prompt = (
            "You are a library expert helping identify specific materials a user might be looking for.\n\n"
            f'USER QUERY: "{query}"\n\n'
            "Based on this description, what specific library materials (books, movies, TV series, etc.) "
            "might the user be looking for?\n\n"
            "Provide a list of up to 10 specific titles that match this description. Include book titles "
            "and series, movie titles, TV series and popular works that fit the description.\n\n"
            'Format your response as a simple JSON array of strings: ["Title 1", "Title 2", ...]\n'
            "Be specific with actual titles, not generic descriptions. Return only the JSON array."
        )
        try:
            materials = await self.llm.generate_json(prompt, temperature=0.3)
        except CatalogAssistantError as e:
            logger.warning("material_identification_failed", error=str(e))
            return []
        if not isinstance(materials, list):
            logger.warning("material_identification_invalid", kind=type(materials).__name__)
            return []
        return [str(m) for m in materials if m][:10]

    def build_prompt(
        self,
        query: str,
        initial_results: List[CatalogResult],
        schema: Schema,
        materials: Optional[List[str]] = None,
    ) -> str:
        sample = [
            {
                "title": r.title,
                "author": r.author,
                "subjects": r.subjects,
                "description": (r.description[:200] + "...") if r.description else "",
                "score": r.score,
            }
            for r in initial_results[:5]
        ]

        materials_section = ""
        if materials:
            listed = "\n".join(f"{i}. {m}" for i, m in enumerate(materials, start=1))
            materials_section = (
                "\nLIKELY MATERIALS USER IS LOOKING FOR:\n"
                f"{listed}\n\n"
                "Use these specific titles, authors and series names to improve the query: exact title "
                "matches with high boost, author and series searches, subject/genre matching.\n"
            )

        return (
            "You are an expert Elasticsearch query optimizer for a library catalog system.\n\n"
            "TASK: Analyze the user's search and current results, then generate an improved "
            "Elasticsearch query.\n\n"
            f"INDEX SCHEMA:\n{json.dumps(schema.to_dict(), indent=2)}\n\n"
            f'USER QUERY: "{query}"\n'
            f"{materials_section}\n"
            f"CURRENT RESULTS ({len(initial_results)} found):\n{json.dumps(sample, indent=2)}\n\n"
            "ANALYSIS:\n"
            f"1. The user query seems to be looking for: {infer_search_intent(query)}\n"
            f"2. Current results quality: {assess_results_quality(initial_results)}\n"
            f"3. Potential improvements: {suggest_improvements(query, initial_results)}\n\n"
            "INSTRUCTIONS:\n"
            "Generate an optimized Elasticsearch query that uses field boosting based on query intent, "
            "combines semantic and keyword search, leverages the most relevant schema fields and "
            "improves precision and recall.\n\n"
            "REQUIRED OUTPUT FORMAT (JSON only, no markdown):\n"
            '{"query": {...}, "confidence": 0.8, "reasoning": "why this query should work better", '
            '"strategy": "brief description of the search strategy"}\n'
        )

    async def optimize_query(
        self,
        query: str,
        initial_results: List[CatalogResult],
        schema: Schema,
    ) -> OptimizationResult:
        """Never raises; failures are reported as ``success=False``."""
        start = time.perf_counter()
        try:
            materials = await self.identify_library_materials(query)
            prompt = self.build_prompt(query, initial_results, schema, materials)
            payload = await self.llm.generate_json(prompt, temperature=0.3)
            parsed = parse_optimization_payload(payload)
            validate_query(parsed["query"])
        except CatalogAssistantError as e:
            logger.warning("query_optimization_failed", error=str(e))
            return OptimizationResult(original_query=query, success=False, error=str(e))

        logger.info(
            "query_optimization_completed",
            confidence=parsed["confidence"],
            strategy=parsed["strategy"],
            materials=len(materials),
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return OptimizationResult(
            original_query=query,
            success=True,
            optimized_query=parsed["query"],
            confidence=parsed["confidence"],
            reasoning=parsed["reasoning"],
            strategy=parsed["strategy"],
        )

    async def execute_optimized_query(
        self,
        optimized_query: Dict[str, Any],
        fallback_results: List[CatalogResult],
    ) -> ExecutionOutcome:
        fallback_meta = {"aiResults": 0, "originalResults": len(fallback_results)}
        body = dict(optimized_query) if "query" in optimized_query else {"query": optimized_query}
        body["size"] = OPTIMIZED_RESULT_SIZE
        body["_source"] = {"excludes": ["embedding"]}

        try:
            page = await self.search_engine.search(body)
        except CatalogAssistantError as e:
            logger.warning("optimized_query_failed", error=str(e))
            return ExecutionOutcome(
                results=list(fallback_results),
                used_fallback=True,
                metadata=fallback_meta,
                error=str(e),
            )

        if not page.results and fallback_results:
            logger.info("optimized_query_empty", fallback=len(fallback_results))
            return ExecutionOutcome(
                results=list(fallback_results), used_fallback=True, metadata=fallback_meta
            )

        return ExecutionOutcome(
            results=page.results,
            used_fallback=False,
            metadata={"total": page.total, "maxScore": page.max_score, "searchType": "ai-optimized"},
        )

    async def explain_results(
        self,
        query: str,
        results: List[CatalogResult],
        optimization: OptimizationResult,
    ) -> str:
        fallback = (
            f'Found {len(results)} results for "{query}". The search focused on matching your '
            "key terms across titles, authors, and subject areas."
        )
        top = "\n".join(f"- {r.title} by {r.author} (Score: {r.score:.2f})" for r in results[:3])
        prompt = (
            "You are explaining search results to a user.\n\n"
            f'USER QUERY: "{query}"\n'
            f"RESULTS FOUND: {len(results)} items\n"
            f"OPTIMIZATION USED: {optimization.reasoning}\n\n"
            f"TOP RESULTS:\n{top}\n\n"
            "Explain why these results match the query, highlight the best matches and suggest how "
            "to refine the search if needed. Be conversational and keep it to 2-3 sentences."
        )
        try:
            return (await self.llm.generate(prompt, temperature=0.7)).strip() or fallback
        except CatalogAssistantError as e:
            logger.warning("result_explanation_failed", error=str(e))
            return fallback
