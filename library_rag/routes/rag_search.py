"""
Catalog search and chat routes
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Query, Request

from ..models.api import ChatRequest, SearchRequest
from ..services.result_sorter import SortType
from ..services.retrieval_orchestrator import DEFAULT_USER, RetrievalOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["catalog"])


def get_orchestrator(request: Request) -> RetrievalOrchestrator:
    return request.app.state.orchestrator


@router.post("/rag-search")
async def rag_search(payload: SearchRequest, request: Request) -> Dict[str, Any]:
    logger.info("rag_search_requested", query=payload.query, conversation_id=payload.conversation_id)
    return await get_orchestrator(request).search(
        payload.query,
        conversation_id=payload.conversation_id,
        preferences=payload.preferences,
        sort_by=payload.sort_by or SortType.BEST_MATCH.value,
        user_id=payload.user_id or DEFAULT_USER,
        context=payload.context or "",
    )


@router.post("/chat")
async def chat(payload: ChatRequest, request: Request) -> Dict[str, Any]:
    return await get_orchestrator(request).chat(
        payload.message,
        conversation_id=payload.conversation_id,
        user_id=payload.user_id or DEFAULT_USER,
    )


@router.get("/sort-options")
async def sort_options(request: Request) -> Dict[str, Any]:
    return get_orchestrator(request).sort_options()


@router.get("/suggestions")
async def suggestions(
    request: Request,
    q: Optional[str] = Query(default=None, description="Partially typed query"),
    limit: int = Query(default=5, ge=1, le=20),
) -> Dict[str, Any]:
    return get_orchestrator(request).query_suggestions(q, limit)


@router.get("/conversation/{conversation_id}")
async def get_conversation(conversation_id: str, request: Request) -> Dict[str, Any]:
    return await get_orchestrator(request).get_conversation(conversation_id)


@router.get("/item/{item_id}")
async def get_item(item_id: str, request: Request) -> Dict[str, Any]:
    return await get_orchestrator(request).get_item(item_id)


@router.get("/item/{item_id}/similar")
async def similar_items(item_id: str, request: Request) -> Dict[str, Any]:
    return await get_orchestrator(request).similar_items(item_id)


@router.get("/health")
async def health(request: Request) -> Dict[str, Any]:
    return await get_orchestrator(request).health()
