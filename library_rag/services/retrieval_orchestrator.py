"""
Per-turn retrieval pipeline.

A search turn walks ``INIT -> INITIAL_SEARCH -> [OPTIMIZE] -> AUGMENT -> SORT
-> RECOMMEND -> DONE``. ``ERROR_FALLBACK`` replaces live results with the mock
catalog when the index is unreachable or empty. Only an empty query fails the
turn; every later stage degrades in place.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import structlog

from ..core.exceptions import CatalogAssistantError, InputError
from ..logging_config import bind_request_context
from ..models.catalog import CatalogResult, OptimizationResult
from ..models.conversation import MessageRole, utc_now
from ..utils.circuit_breaker import circuit_manager
from .context_store import ContextManager
from .mock_catalog import (
    EMPTY_INDEX_NOTE,
    MISSING_ITEM_NOTE,
    NO_SIMILAR_NOTE,
    UNAVAILABLE_NOTE,
    mock_item,
    mock_results,
    mock_similar_items,
)
from .query_builder import HybridQueryBuilder
from .query_optimizer import AIQueryOptimizer
from .query_rewriter import (
    QueryRewrite,
    QueryRewriter,
    analyze_query_complexity,
    get_query_suggestions,
)
from .recommendation_engine import RecommendationEngine
from .research_insights import ResearchInsightsService
from .result_augmenter import AugmentedCollection, ResultAugmenter
from .result_sorter import (
    ResultSorter,
    SortType,
    available_sort_options,
    is_valid_sort_type,
    sort_statistics,
)
from .schema_extractor import SchemaExtractor

logger = structlog.get_logger(__name__)

DEFAULT_USER = "anonymous"
EXTRA_KEYWORDS = 3
CHAT_RESULT_PREVIEW = 3

SEARCH_INTENT_RE = re.compile(r"\b(?:search|find|look(?:ing)? for)\b", re.IGNORECASE)
SEARCH_TERM_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (r"search for (.+)", r"find (.+)", r"look for (.+)", r"looking for (.+)", r"need (.+)")
)
SEARCH_TERM_NOISE = re.compile(r"books about|articles on|resources about", re.IGNORECASE)

CHAT_REPLIES = {
    "greeting": (
        "Hello! I'm here to help you with your research and finding library resources. "
        "What can I help you search for today?"
    ),
    "help": (
        "I can help you search for books, articles, and other resources in our catalog. "
        "I can also provide research guidance and generate citations."
    ),
    "thanks": (
        "You're welcome! Feel free to ask if you need help finding more resources or have "
        "other research questions."
    ),
    "default": (
        "I'm a research librarian assistant. I can help you search for resources, provide "
        "research guidance, and assist with citations. What would you like to explore?"
    ),
}
CLARIFICATION_REPLY = (
    "I'd be happy to help you search for library resources. Could you please specify what "
    "you're looking for?"
)
CLARIFICATION_SUGGESTIONS = [
    "Search for books about machine learning",
    "Find articles on climate change",
    "Look for resources about digital libraries",
]
ASSISTANT_SUGGESTIONS = ["Search for resources", "Help with citations", "Research strategies"]


class PipelineState(str, Enum):
    INIT = "INIT"
    INITIAL_SEARCH = "INITIAL_SEARCH"
    OPTIMIZE = "OPTIMIZE"
    AUGMENT = "AUGMENT"
    SORT = "SORT"
    RECOMMEND = "RECOMMEND"
    DONE = "DONE"
    ERROR_FALLBACK = "ERROR_FALLBACK"


@dataclass
class InitialSearch:
    results: List[CatalogResult]
    metadata: Dict[str, Any]
    rewrite: Optional[QueryRewrite] = None
    used_mock: bool = False


@dataclass
class PipelineRun:
    """Mutable record of one pass through the pipeline."""

    query: str
    conversation_id: str
    states: List[PipelineState] = field(default_factory=list)
    results: List[CatalogResult] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    rewrite: Optional[QueryRewrite] = None
    optimization: Optional[OptimizationResult] = None
    augmented: Optional[AugmentedCollection] = None
    recommendations: Optional[Dict[str, Any]] = None
    ai_insights: Optional[Dict[str, Any]] = None
    citations: Dict[str, List[str]] = field(default_factory=dict)
    explanation: Optional[str] = None
    used_mock: bool = False

    def enter(self, state: PipelineState) -> None:
        self.states.append(state)
        logger.debug("pipeline_state", state=state.value, conversation_id=self.conversation_id)


def is_search_request(message: str) -> bool:
    return SEARCH_INTENT_RE.search(message) is not None


def extract_search_terms(message: str) -> Optional[str]:
    for pattern in SEARCH_TERM_PATTERNS:
        match = pattern.search(message)
        if match:
            terms = SEARCH_TERM_NOISE.sub("", match.group(1)).strip()
            return terms or None
    return None


def fallback_chat_reply(message: str) -> str:
    lowered = message.lower()
    if re.search(r"\b(hello|hi)\b", lowered):
        return CHAT_REPLIES["greeting"]
    if "help" in lowered:
        return CHAT_REPLIES["help"]
    if "thank" in lowered:
        return CHAT_REPLIES["thanks"]
    return CHAT_REPLIES["default"]


class RetrievalOrchestrator:
    """Runs search and chat turns against the catalog and its collaborators."""

    def __init__(
        self,
        context: ContextManager,
        search_engine: Any,
        embedder: Any = None,
        llm: Any = None,
        *,
        rewriter: Optional[QueryRewriter] = None,
        builder: Optional[HybridQueryBuilder] = None,
        optimizer: Optional[AIQueryOptimizer] = None,
        schema_extractor: Optional[SchemaExtractor] = None,
        augmenter: Optional[ResultAugmenter] = None,
        sorter: Optional[ResultSorter] = None,
        recommender: Optional[RecommendationEngine] = None,
        insights: Optional[ResearchInsightsService] = None,
    ):
        self.context = context
        self.search_engine = search_engine
        self.embedder = embedder
        self.llm = llm
        self.rewriter = rewriter or QueryRewriter(llm)
        self.builder = builder or HybridQueryBuilder()
        self.optimizer = optimizer or AIQueryOptimizer(llm, search_engine)
        self.schema_extractor = schema_extractor or SchemaExtractor(search_engine)
        self.augmenter = augmenter or ResultAugmenter(llm)
        self.sorter = sorter or ResultSorter()
        self.recommender = recommender or RecommendationEngine(llm)
        self.insights = insights or ResearchInsightsService(llm)

    def llm_available(self) -> bool:
        return self.llm is not None and self.llm.is_available()

    async def close(self) -> None:
        for client in (self.search_engine, self.embedder):
            closer = getattr(client, "close", None)
            if closer is not None:
                await closer()

    # ────────────────────────────────────────────────────────────
    #  Search turn
    # ────────────────────────────────────────────────────────────

    async def search(
        self,
        query: Optional[str],
        conversation_id: Optional[str] = None,
        preferences: Optional[Dict[str, Any]] = None,
        sort_by: Any = SortType.BEST_MATCH.value,
        user_id: str = DEFAULT_USER,
        context: str = "",
    ) -> Dict[str, Any]:
        if not query or not query.strip():
            raise InputError("Search query is required")
        query = query.strip()

        conversation_id = await self.context.ensure_conversation(conversation_id, user_id)
        bind_request_context(conversation_id=conversation_id)
        await self.context.add_message(conversation_id, query, MessageRole.USER)
        if preferences:
            await self.context.set_user_preferences(conversation_id, preferences)

        run = await self.run_pipeline(query, conversation_id, sort_by=sort_by, extra_context=context)

        summary = (run.ai_insights or {}).get("summary") or "Search completed successfully."
        reply = run.explanation or f"Found {len(run.results)} resources. {summary}"
        await self.context.add_message(conversation_id, reply, MessageRole.ASSISTANT)
        return self.build_response(run)

    async def run_pipeline(
        self,
        query: str,
        conversation_id: str,
        sort_by: Any = SortType.BEST_MATCH.value,
        extra_context: str = "",
    ) -> PipelineRun:
        start = time.perf_counter()
        run = PipelineRun(query=query, conversation_id=conversation_id)
        run.enter(PipelineState.INIT)

        transcript = await self.context.get_conversation_context(conversation_id) or ""
        full_context = "\n\n".join(part for part in (transcript, extra_context) if part)
        preferences = await self.context.get_user_preferences(conversation_id)

        run.enter(PipelineState.INITIAL_SEARCH)
        initial = await self.initial_search(query, preferences, full_context)
        run.results, run.metadata, run.rewrite = initial.results, dict(initial.metadata), initial.rewrite
        if initial.used_mock:
            run.used_mock = True
            run.enter(PipelineState.ERROR_FALLBACK)
        elif run.results and self.llm_available():
            run.enter(PipelineState.OPTIMIZE)
            await self._optimize(run)

        run.metadata["searchApproach"] = "multi-stage-ai-optimized"
        run.metadata["stagesUsed"] = (
            ["initial", "ai-optimization"]
            if run.optimization is not None and run.optimization.success
            else ["initial-only"]
        )

        run.enter(PipelineState.AUGMENT)
        await self._augment(run, full_context)

        run.enter(PipelineState.SORT)
        self._sort(run, sort_by)

        run.enter(PipelineState.RECOMMEND)
        await self._recommend(run, full_context)

        await self.context.add_search_to_history(conversation_id, query, run.results, run.ai_insights)

        run.enter(PipelineState.DONE)
        elapsed = round((time.perf_counter() - start) * 1000, 2)
        run.metadata["duration_ms"] = elapsed
        logger.info(
            "search_turn_completed",
            query=query,
            results=len(run.results),
            mock=run.used_mock,
            optimized=bool(run.metadata.get("aiOptimized")),
            duration_ms=elapsed,
        )
        return run

    async def initial_search(
        self, query: str, preferences: Dict[str, Any], context: str = ""
    ) -> InitialSearch:
        rewrite = await self.rewriter.rewrite(query, context, preferences)

        try:
            total = await self.search_engine.count()
        except CatalogAssistantError as e:
            logger.warning("search_engine_unavailable", error=str(e))
            return self._mock_search(query, rewrite, "mock-fallback", UNAVAILABLE_NOTE, str(e))
        if total == 0:
            logger.info("catalog_index_empty")
            return self._mock_search(query, rewrite, "mock", EMPTY_INDEX_NOTE)

        embedding = await self.embedder.embed(query) if self.embedder is not None else None
        keywords = [query] + rewrite.subject_headings[:EXTRA_KEYWORDS]
        body = self.builder.build(rewrite.processed_query, keywords, embedding, preferences)

        try:
            page = await self.search_engine.search(body)
        except CatalogAssistantError as e:
            logger.warning("initial_search_failed", error=str(e))
            return self._mock_search(query, rewrite, "mock-fallback", UNAVAILABLE_NOTE, str(e))

        return InitialSearch(
            results=page.results,
            metadata={
                "total": page.total,
                "maxScore": page.max_score,
                "searchType": "hybrid" if embedding else "keyword-only",
            },
            rewrite=rewrite,
        )

    @staticmethod
    def _mock_search(
        query: str,
        rewrite: QueryRewrite,
        search_type: str,
        note: str,
        error: Optional[str] = None,
    ) -> InitialSearch:
        results = mock_results(query)
        metadata: Dict[str, Any] = {"total": len(results), "searchType": search_type, "note": note}
        if error:
            metadata["error"] = error
        return InitialSearch(results=results, metadata=metadata, rewrite=rewrite, used_mock=True)

    async def _optimize(self, run: PipelineRun) -> None:
        initial = list(run.results)
        try:
            schema = await self.schema_extractor.get_schema()
            optimization = await self.optimizer.optimize_query(run.query, initial, schema)
            run.optimization = optimization
            if not self.optimizer.should_adopt(optimization):
                logger.info(
                    "optimization_not_adopted",
                    success=optimization.success,
                    confidence=optimization.confidence,
                )
                return
            outcome = await self.optimizer.execute_optimized_query(optimization.optimized_query, initial)
        except Exception as e:
            logger.warning("optimization_stage_failed", error=str(e), exc_info=True)
            run.results = initial
            return

        run.results = outcome.results
        run.metadata.update(outcome.metadata)
        run.metadata.update(
            {
                "aiOptimized": not outcome.used_fallback,
                "initialResults": len(initial),
                "finalResults": len(outcome.results),
            }
        )

    async def _augment(self, run: PipelineRun, context: str) -> None:
        if not run.results:
            return
        try:
            run.augmented = await self.augmenter.augment(run.results, run.query, context)
        except Exception as e:
            logger.warning("augmentation_stage_failed", error=str(e), exc_info=True)
            return
        run.results = run.augmented.results

    def _sort(self, run: PipelineRun, sort_by: Any) -> None:
        if not run.results:
            return
        if not is_valid_sort_type(sort_by):
            logger.warning("invalid_sort_type", sort_by=sort_by)
            sort_by = SortType.BEST_MATCH.value
        start = time.perf_counter()
        try:
            run.results = self.sorter.sort(run.results, sort_by)
        except Exception as e:
            logger.warning("sort_stage_failed", error=str(e), exc_info=True)
            return
        run.metadata["sortBy"] = sort_by
        run.metadata["sortTime"] = round((time.perf_counter() - start) * 1000, 2)
        run.metadata["sortStats"] = sort_statistics(run.results)

    async def _recommend(self, run: PipelineRun, context: str) -> None:
        conversation = await self.context.get_conversation(run.conversation_id)
        history = list(conversation.search_history) if conversation else []

        try:
            run.recommendations = await self.recommender.generate(run.results, run.query, context, history)
        except Exception as e:
            logger.warning("recommendation_stage_failed", error=str(e), exc_info=True)

        try:
            run.ai_insights = await self.insights.generate_insights(run.results, run.query, context)
            run.citations = await self.insights.generate_citations(run.results)
        except Exception as e:
            logger.warning("insights_stage_failed", error=str(e), exc_info=True)

        if run.optimization is not None and run.optimization.success and run.results:
            run.explanation = await self.optimizer.explain_results(run.query, run.results, run.optimization)

    def build_response(self, run: PipelineRun) -> Dict[str, Any]:
        metadata = dict(run.metadata)
        metadata.update(
            {
                "timestamp": utc_now().isoformat(),
                "states": [s.value for s in run.states],
                "llmEnabled": self.llm_available(),
                "aiOptimizationUsed": bool(run.optimization and run.optimization.success),
                "queryComplexity": analyze_query_complexity(run.query),
                "processingTime": {
                    "resultAugmentation": run.augmented.processing_time_ms if run.augmented else 0,
                    "recommendations": (run.recommendations or {}).get("processingTime", 0),
                },
            }
        )
        return {
            "query": run.query,
            "conversationId": run.conversation_id,
            "rewrite": run.rewrite.to_dict() if run.rewrite else None,
            "results": [r.to_dict() for r in run.results],
            "augmentation": run.augmented.collection_insights if run.augmented else None,
            "recommendations": run.recommendations,
            "aiInsights": run.ai_insights,
            "aiExplanation": run.explanation,
            "aiOptimization": run.optimization.to_dict() if run.optimization else None,
            "citations": run.citations,
            "metadata": metadata,
        }

    # ────────────────────────────────────────────────────────────
    #  Chat turn
    # ────────────────────────────────────────────────────────────

    async def chat(
        self,
        message: Optional[str],
        conversation_id: Optional[str] = None,
        user_id: str = DEFAULT_USER,
    ) -> Dict[str, Any]:
        if not message or not message.strip():
            raise InputError("Message is required")
        message = message.strip()

        conversation_id = await self.context.ensure_conversation(conversation_id, user_id)
        bind_request_context(conversation_id=conversation_id)
        await self.context.add_message(conversation_id, message, MessageRole.USER)

        if is_search_request(message):
            response = await self._chat_search(message, conversation_id)
        else:
            response = await self._chat_reply(message, conversation_id)

        await self.context.add_message(conversation_id, response["message"], MessageRole.ASSISTANT)
        return response

    async def _chat_search(self, message: str, conversation_id: str) -> Dict[str, Any]:
        terms = extract_search_terms(message)
        if not terms:
            return {
                "conversationId": conversation_id,
                "message": CLARIFICATION_REPLY,
                "type": "clarification",
                "suggestions": list(CLARIFICATION_SUGGESTIONS),
            }

        run = await self.run_pipeline(terms, conversation_id)
        summary = (run.ai_insights or {}).get("summary", "")
        return {
            "conversationId": conversation_id,
            "message": f'I found {len(run.results)} resources for "{terms}". {summary}'.strip(),
            "type": "search_results",
            "searchResults": [r.to_dict() for r in run.results[:CHAT_RESULT_PREVIEW]],
            "aiInsights": run.ai_insights,
            "suggestions": list((run.recommendations or {}).get("relatedQueries", [])),
        }

    async def _chat_reply(self, message: str, conversation_id: str) -> Dict[str, Any]:
        reply = None
        if self.llm_available():
            transcript = await self.context.get_conversation_context(conversation_id) or ""
            prompt = (
                "You are a helpful research librarian assistant. Respond to this user message in the "
                "context of library and research services:\n\n"
                f'User message: "{message}"\n'
                f"Conversation context: {transcript}\n\n"
                "Provide a helpful, concise response focused on library and research assistance. If the "
                "user needs to search for resources, guide them on how to search effectively."
            )
            try:
                reply = (await self.llm.generate(prompt)).strip()
            except CatalogAssistantError as e:
                logger.warning("chat_reply_failed", error=str(e))

        return {
            "conversationId": conversation_id,
            "message": reply or fallback_chat_reply(message),
            "type": "assistant_response",
            "suggestions": list(ASSISTANT_SUGGESTIONS),
        }

    # ────────────────────────────────────────────────────────────
    #  Lookups
    # ────────────────────────────────────────────────────────────

    @staticmethod
    def sort_options() -> Dict[str, Any]:
        return {"sortOptions": available_sort_options(), "defaultSort": SortType.BEST_MATCH.value}

    @staticmethod
    def query_suggestions(partial: Optional[str], limit: int = 5) -> Dict[str, Any]:
        partial = (partial or "").strip()
        if not partial:
            raise InputError("Partial query is required")
        return {"query": partial, "suggestions": get_query_suggestions(partial, limit)}

    async def get_conversation(self, conversation_id: str) -> Dict[str, Any]:
        """Raises ``NotFoundError`` for unknown or expired conversations."""
        conversation = await self.context.require_conversation(conversation_id)
        data = conversation.to_dict()
        return {
            "id": data["id"],
            "messages": data["messages"],
            "searchHistory": data["searchHistory"],
            "createdAt": data["createdAt"],
            "lastActivity": data["lastActivity"],
        }

    async def _lookup_item(self, item_id: str) -> Optional[CatalogResult]:
        try:
            return await self.search_engine.get_document(item_id)
        except CatalogAssistantError as e:
            logger.warning("item_lookup_failed", item_id=item_id, error=str(e))
            return None

    async def get_item(self, item_id: str) -> Dict[str, Any]:
        """Record detail; a missing record or unreachable index yields a labelled mock."""
        item_id = (item_id or "").strip()
        if not item_id:
            raise InputError("Item ID is required")
        item = await self._lookup_item(item_id)
        if item is None:
            logger.info("item_mock_fallback", item_id=item_id)
            return {**mock_item(item_id).to_dict(), "note": MISSING_ITEM_NOTE}
        return item.to_dict()

    async def similar_items(self, item_id: str) -> Dict[str, Any]:
        item_id = (item_id or "").strip()
        if not item_id:
            raise InputError("Item ID is required")

        item = await self._lookup_item(item_id)
        if item is not None:
            body = self.builder.build_similar(item.id, item.title, item.subjects)
            try:
                page = await self.search_engine.search(body)
            except CatalogAssistantError as e:
                logger.warning("similar_items_failed", item_id=item_id, error=str(e))
            else:
                results = [r for r in page.results if r.id != item_id]
                return {
                    "itemId": item_id,
                    "results": [{**r.summary(), "score": r.score} for r in results],
                    "total": page.total,
                    "maxScore": page.max_score,
                }

        results = mock_similar_items(item_id)
        return {
            "itemId": item_id,
            "results": [{**r.summary(), "score": r.score} for r in results],
            "total": len(results),
            "note": NO_SIMILAR_NOTE,
        }

    async def health(self) -> Dict[str, Any]:
        circuits = circuit_manager.get_all_stats()
        degraded = any(stats.get("state") == "open" for stats in circuits.values())
        return {
            "status": "degraded" if degraded else "ok",
            "llmAvailable": self.llm_available(),
            "embeddingsConfigured": self.embedder is not None,
            "circuits": circuits,
            "context": await self.context.get_stats(),
        }


def create_orchestrator(context: Optional[ContextManager] = None) -> RetrievalOrchestrator:
    """Wire the orchestrator to the configured collaborators."""
    from .llm_client import llm_client
    from .search_engine import EmbeddingClient, SearchEngineClient

    return RetrievalOrchestrator(
        context or ContextManager(),
        SearchEngineClient(),
        EmbeddingClient(),
        llm_client,
    )
