"""
Index schema introspection for query optimization prompts.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

import structlog

from ..core import config
from ..core.exceptions import CatalogAssistantError
from ..models.catalog import FieldInfo, Schema

logger = structlog.get_logger(__name__)

FIELD_DESCRIPTIONS: Dict[str, str] = {
    "title": "Main title of the work",
    "subtitle": "Subtitle or secondary title",
    "author": "Primary author or creator",
    "publisher": "Publishing organization",
    "publicationYear": "Year of publication",
    "isbn": "International Standard Book Number",
    "subjects": "Library of Congress subject headings",
    "description": "Abstract or summary of content",
    "controlNumber": "MARC control number",
    "callNumber": "Library classification number",
    "format": "Physical format (book, DVD, etc.)",
    "language": "Language of the work",
    "pages": "Number of pages",
    "searchableText": "Combined searchable content",
    "embedding": "Vector embedding for semantic search",
}

ALWAYS_BOOSTABLE = {"title", "author", "subjects", "description"}
NUMERIC_TYPES = {"integer", "long", "date"}

DEFAULT_STRATEGIES = [
    "Use title^3 for title-focused searches",
    "Use subjects^2 for topic searches",
    "Use multi_match across title, author, subjects for general searches",
    "Use fuzzy matching for partial or misspelled terms",
    "Combine with semantic search using embedding field",
]


def describe_field(name: str) -> str:
    return FIELD_DESCRIPTIONS.get(name, f"Field containing {name} information")


def analyze_field(name: str, mapping: Dict[str, Any]) -> FieldInfo:
    field_type = mapping.get("type") or "text"
    info = FieldInfo(type=field_type, description=describe_field(name))
    if field_type == "text":
        info.searchable = info.boostable = True
    elif field_type == "keyword":
        info.searchable = info.filterable = True
    elif field_type in NUMERIC_TYPES:
        info.filterable = True
    if name in ALWAYS_BOOSTABLE:
        info.searchable = info.boostable = True
    return info


def fallback_schema(index_name: Optional[str] = None) -> Schema:
    def f(type_: str, searchable: bool, boostable: bool, filterable: bool, desc: str) -> FieldInfo:
        return FieldInfo(type_, searchable, boostable, filterable, desc)

    return Schema(
        index_name=index_name or config.CATALOG_INDEX,
        fields={
            "title": f("text", True, True, False, "Main title of the work - highest relevance for title searches"),
            "author": f("text", True, True, False, "Primary author or creator - use for author searches"),
            "subjects": f("text", True, True, True, "Library subject headings - excellent for topic searches"),
            "description": f("text", True, True, False, "Content summary - good for detailed concept matching"),
            "publisher": f("text", True, False, True, "Publishing organization"),
            "publicationYear": f("integer", False, False, True, "Publication year - use for date range filters"),
            "searchableText": f("text", True, True, False, "Combined searchable content from all fields"),
        },
        strategies=list(DEFAULT_STRATEGIES),
        is_fallback=True,
    )


def schema_from_mapping(mapping: Dict[str, Any]) -> Schema:
    """Build a :class:`Schema` from a ``GET /<index>/_mapping`` reply."""
    if not mapping:
        raise ValueError("empty mapping")
    index_name = next(iter(mapping))
    properties = ((mapping[index_name] or {}).get("mappings") or {}).get("properties") or {}
    fields = {name: analyze_field(name, cfg or {}) for name, cfg in properties.items()}
    return Schema(index_name=index_name, fields=fields, strategies=list(DEFAULT_STRATEGIES))


def query_recommendations(query: str) -> List[str]:
    recommendations = []
    lowered = query.lower()
    if "book" in lowered and "title" in lowered:
        recommendations.append("High boost on title field (^3)")
    if "author" in lowered or " by " in f" {lowered} ":
        recommendations.append("Focus search on author field")
    if "about" in lowered or "topic" in lowered:
        recommendations.append("High boost on subjects field (^2)")
    if len(query) > 30:
        recommendations.append("Use description field for detailed matching")
    if "like" in lowered or "similar" in lowered:
        recommendations.append("Consider semantic search with embeddings")
    return recommendations


class SchemaExtractor:
    """Caches the index schema for ``ttl`` seconds; never raises."""

    def __init__(self, search_engine: Any, ttl: Optional[float] = None, clock=time.monotonic):
        self.search_engine = search_engine
        self.ttl = config.SCHEMA_CACHE_TTL_SEC if ttl is None else ttl
        self._clock = clock
        self._cached: Optional[Schema] = None
        self._expires_at = 0.0

    async def get_schema(self, index_name: Optional[str] = None) -> Schema:
        if self._cached is not None and self._clock() < self._expires_at:
            return self._cached
        try:
            mapping = await self.search_engine.get_mapping(index_name)
            schema = schema_from_mapping(mapping)
        except (CatalogAssistantError, ValueError, AttributeError) as e:
            logger.warning("schema_fallback", error=str(e))
            return fallback_schema(index_name)

        self._cached = schema
        self._expires_at = self._clock() + self.ttl
        logger.debug("schema_cached", index=schema.index_name, fields=len(schema.fields))
        return schema
