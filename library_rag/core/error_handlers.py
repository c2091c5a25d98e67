"""
Error handlers for the catalog assistant API
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .exceptions import InputError, NotFoundError

logger = structlog.get_logger(__name__)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


async def input_error_handler(request: Request, exc: InputError):
    """Empty or missing query/message"""
    logger.info("input_rejected", detail=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid Input",
            "detail": str(exc),
            "results": [],
            "request_id": _request_id(request),
        },
    )


async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=404,
        content={
            "error": f"{exc.kind.capitalize()} not found",
            "detail": str(exc),
            "request_id": _request_id(request),
        },
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        request_id=_request_id(request),
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": "An unexpected error occurred",
            "request_id": _request_id(request),
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(InputError, input_error_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(Exception, general_exception_handler)
