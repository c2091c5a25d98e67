"""
Centralized retry and backoff configuration for collaborator calls.
Transient transport failures are retried; everything else surfaces at once.
"""

import asyncio
import logging
import os

import aiohttp
import structlog
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)

logger = structlog.get_logger(__name__)

TRANSIENT_ERRORS = (aiohttp.ClientConnectionError, asyncio.TimeoutError)


class RetryConfig:
    """Centralized retry configuration loaded from environment."""

    MAX_RETRIES = int(os.getenv("MAX_RETRIES", "2"))

    LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "2"))
    LLM_BACKOFF_MIN_SEC = float(os.getenv("LLM_BACKOFF_MIN_SEC", "1"))
    LLM_BACKOFF_MAX_SEC = float(os.getenv("LLM_BACKOFF_MAX_SEC", "8"))

    SEARCH_BACKOFF_BASE_SEC = float(os.getenv("SEARCH_BACKOFF_BASE_SEC", "0.5"))
    SEARCH_BACKOFF_MAX_SEC = float(os.getenv("SEARCH_BACKOFF_MAX_SEC", "4"))


def get_llm_retry_decorator(exceptions: tuple = TRANSIENT_ERRORS):
    """
    Get standardized retry decorator for language-model operations.
    """
    return retry(
        stop=stop_after_attempt(RetryConfig.LLM_MAX_RETRIES),
        wait=wait_exponential(
            multiplier=1,
            min=RetryConfig.LLM_BACKOFF_MIN_SEC,
            max=RetryConfig.LLM_BACKOFF_MAX_SEC,
        ),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )


def get_search_retry_decorator():
    """
    Get standardized retry decorator for search-engine and embedding calls.
    """
    return retry(
        stop=stop_after_attempt(RetryConfig.MAX_RETRIES),
        wait=wait_random_exponential(
            multiplier=RetryConfig.SEARCH_BACKOFF_BASE_SEC,
            max=RetryConfig.SEARCH_BACKOFF_MAX_SEC,
        ),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )
