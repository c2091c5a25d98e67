"""
Core configuration for the catalog search assistant.

Tunable knobs for retrieval, scoring and conversation retention live here so
magic numbers are not scattered through the services. Every value can be
overridden through environment variables (a local ``.env`` file is honoured).
"""

import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)) or default)
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)) or default)
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes"}


def get_environment() -> str:
    """Get current environment"""
    return os.getenv("ENVIRONMENT", "development")


def get_allowed_origins() -> List[str]:
    return [
        o.strip()
        for o in os.getenv(
            "ALLOWED_ORIGINS", "http://localhost:4200,http://localhost:3000"
        ).split(",")
        if o.strip()
    ]


# ────────────────────────────────────────────────────────────
#  Logging
# ────────────────────────────────────────────────────────────

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_PRETTY: bool = _env_bool("LOG_PRETTY", False)
# Longest string or list kept verbatim in a log event
LOG_VALUE_LIMIT: int = _env_int("LOG_VALUE_LIMIT", 300)


# ────────────────────────────────────────────────────────────
#  Conversation / research-session retention
# ────────────────────────────────────────────────────────────

# Serialized-character budget for retained conversation messages
CONTEXT_WINDOW: int = _env_int("RAG_CONTEXT_WINDOW", 8000)
CONVERSATION_MAX_IDLE_MINUTES: int = _env_int("CONVERSATION_MAX_IDLE_MINUTES", 30)
RESEARCH_SESSION_ARCHIVE_HOURS: int = _env_int("RESEARCH_SESSION_ARCHIVE_HOURS", 24)
CONTEXT_SWEEP_INTERVAL_SEC: float = _env_float("CONTEXT_SWEEP_INTERVAL_SEC", 300.0)
SEARCH_HISTORY_LIMIT: int = _env_int("SEARCH_HISTORY_LIMIT", 10)

# ────────────────────────────────────────────────────────────
#  Retrieval & scoring
# ────────────────────────────────────────────────────────────

CATALOG_INDEX: str = os.getenv("CATALOG_INDEX", "marc-records")
SEARCH_DEFAULT_SIZE: int = _env_int("SEARCH_DEFAULT_SIZE", 20)
SCHEMA_CACHE_TTL_SEC: float = _env_float("SCHEMA_CACHE_TTL_SEC", 300.0)

HYBRID_KEYWORD_WEIGHT: float = _env_float("HYBRID_KEYWORD_WEIGHT", 0.4)
HYBRID_VECTOR_WEIGHT: float = _env_float("HYBRID_VECTOR_WEIGHT", 0.6)
BEST_MATCH_QUALITY_WEIGHT: float = _env_float("BEST_MATCH_QUALITY_WEIGHT", 0.6)
BEST_MATCH_RELEVANCE_WEIGHT: float = _env_float("BEST_MATCH_RELEVANCE_WEIGHT", 0.4)

# AI-proposed queries are adopted only strictly above this confidence
OPTIMIZATION_CONFIDENCE_THRESHOLD: float = _env_float(
    "OPTIMIZATION_CONFIDENCE_THRESHOLD", 0.4
)

# ────────────────────────────────────────────────────────────
#  Collaborators
# ────────────────────────────────────────────────────────────

ELASTICSEARCH_URL: str = os.getenv("ELASTICSEARCH_URL", "https://localhost:9200")
ELASTICSEARCH_USERNAME: str = os.getenv("ELASTICSEARCH_USERNAME", "elastic")
ELASTICSEARCH_PASSWORD: str = os.getenv("ELASTICSEARCH_PASSWORD", "")
ELASTICSEARCH_VERIFY_TLS: bool = _env_bool("ELASTICSEARCH_VERIFY_TLS", False)
SEARCH_TIMEOUT_SEC: float = _env_float("SEARCH_TIMEOUT_SEC", 15.0)

EMBEDDING_URL: str = os.getenv(
    "EMBEDDING_URL", "http://localhost:11434/api/embeddings"
)
EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "nomic-embed-text")
EMBEDDING_TIMEOUT_SEC: float = _env_float("EMBEDDING_TIMEOUT_SEC", 10.0)

LLM_API_KEY: str = os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY") or ""
LLM_BASE_URL: str = os.getenv("LLM_BASE_URL", "")
LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
LLM_TIMEOUT_SEC: float = _env_float("LLM_TIMEOUT_SEC", 30.0)
LLM_MAX_OUTPUT_TOKENS: int = _env_int("LLM_MAX_OUTPUT_TOKENS", 2048)

# ────────────────────────────────────────────────────────────
#  Augmentation fan-out
# ────────────────────────────────────────────────────────────

AUGMENT_AI_INSIGHTS: bool = _env_bool("AUGMENT_AI_INSIGHTS", True)
AUGMENT_AI_CONCURRENCY: int = _env_int("AUGMENT_AI_CONCURRENCY", 4)
AUGMENT_AI_TIMEOUT_SEC: float = _env_float("AUGMENT_AI_TIMEOUT_SEC", 20.0)
