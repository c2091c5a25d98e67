"""
FastAPI application factory and configuration
"""

import uuid
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ..logging_config import bind_request_context, clear_request_context, configure_logging
from ..routes.rag_search import router as rag_router
from ..services.context_store import ContextSweeper
from ..services.retrieval_orchestrator import RetrievalOrchestrator, create_orchestrator
from .config import get_allowed_origins, get_environment
from .error_handlers import register_error_handlers

logger = structlog.get_logger(__name__)


def create_app(orchestrator: Optional[RetrievalOrchestrator] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Tests pass a pre-wired orchestrator; otherwise one is built from config.
    """
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("catalog_assistant_starting", environment=get_environment())
        sweeper = ContextSweeper(app.state.orchestrator.context)
        sweeper.start()
        app.state.sweeper = sweeper

        yield

        logger.info("catalog_assistant_stopping")
        await sweeper.stop()
        try:
            await app.state.orchestrator.close()
        except Exception as e:
            logger.warning("client_close_failed", error=str(e))

    app = FastAPI(
        title="Library Catalog Assistant API",
        version="1.0.0",
        description="Conversational hybrid search over a bibliographic catalog",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator or create_orchestrator()

    setup_middleware(app)
    register_error_handlers(app)
    app.include_router(rag_router, prefix="/api")
    return app


def setup_middleware(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Origin"],
        max_age=600,
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request.state.request_id = str(uuid.uuid4())
        clear_request_context()
        bind_request_context(request_id=request.state.request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        return response
