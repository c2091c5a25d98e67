"""
Hybrid (keyword + vector) search body composition.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import structlog

from ..core import config

logger = structlog.get_logger(__name__)

PRIMARY_FIELDS = ["title^3", "author^2", "publisher", "subjects^2", "description"]
KEYWORD_FIELDS = ["title^2", "author", "subjects", "searchableText"]
KEYWORD_BOOST = 0.7
SEARCHABLE_TEXT_BOOST = 1.5
COSINE_SCRIPT = "cosineSimilarity(params.query_vector, 'embedding') + 1.0"
SIMILAR_ITEMS_SIZE = 8


def parse_date_range(value: Any) -> Optional[tuple]:
    """Parse ``"YYYY-YYYY"`` into ``(start, end)``; anything else yields None."""
    if not isinstance(value, str) or "-" not in value:
        return None
    start, _, end = value.partition("-")
    try:
        start_year, end_year = int(start.strip()), int(end.strip())
    except ValueError:
        return None
    if not start_year or not end_year:
        return None
    return start_year, end_year


class HybridQueryBuilder:
    """Builds the disjunctive keyword/vector query sent to the search engine.

    The keyword and vector weights default to the configured values and can be
    overridden per instance or per call.
    """

    def __init__(
        self,
        keyword_weight: Optional[float] = None,
        vector_weight: Optional[float] = None,
        default_size: Optional[int] = None,
    ):
        self.keyword_weight = config.HYBRID_KEYWORD_WEIGHT if keyword_weight is None else keyword_weight
        self.vector_weight = config.HYBRID_VECTOR_WEIGHT if vector_weight is None else vector_weight
        self.default_size = default_size or config.SEARCH_DEFAULT_SIZE

    def keyword_clause(self, search_text: str, keywords: Sequence[str], boost: float) -> Dict[str, Any]:
        clauses: List[Dict[str, Any]] = [
            {
                "multi_match": {
                    "query": search_text,
                    "fields": list(PRIMARY_FIELDS),
                    "type": "best_fields",
                    "fuzziness": "AUTO",
                }
            }
        ]
        seen = {search_text}
        for keyword in keywords:
            if not keyword or keyword in seen:
                continue
            seen.add(keyword)
            clauses.append(
                {
                    "multi_match": {
                        "query": keyword,
                        "fields": list(KEYWORD_FIELDS),
                        "type": "best_fields",
                        "boost": KEYWORD_BOOST,
                    }
                }
            )
        clauses.append(
            {"match": {"searchableText": {"query": search_text, "boost": SEARCHABLE_TEXT_BOOST}}}
        )
        return {"bool": {"should": clauses, "boost": boost}}

    def vector_clause(self, embedding: Sequence[float], boost: float) -> Dict[str, Any]:
        return {
            "script_score": {
                "query": {"match_all": {}},
                "script": {
                    "source": COSINE_SCRIPT,
                    "params": {"query_vector": list(embedding)},
                },
                "boost": boost,
            }
        }

    def filters(self, preferences: Dict[str, Any]) -> List[Dict[str, Any]]:
        filters: List[Dict[str, Any]] = []
        years = parse_date_range(preferences.get("dateRange"))
        if years:
            filters.append({"range": {"publicationYear": {"gte": years[0], "lte": years[1]}}})
        elif preferences.get("dateRange"):
            logger.debug("date_range_ignored", value=preferences.get("dateRange"))

        formats = preferences.get("formats")
        if formats:
            filters.append({"terms": {"format": list(formats)}})
        return filters

    def build(
        self,
        search_text: str,
        keywords: Optional[Sequence[str]] = None,
        embedding: Optional[Sequence[float]] = None,
        preferences: Optional[Dict[str, Any]] = None,
        keyword_weight: Optional[float] = None,
        vector_weight: Optional[float] = None,
    ) -> Dict[str, Any]:
        preferences = preferences or {}
        has_vector = bool(embedding)
        kw_weight = keyword_weight if keyword_weight is not None else self.keyword_weight
        vec_weight = vector_weight if vector_weight is not None else self.vector_weight

        should: List[Dict[str, Any]] = [
            self.keyword_clause(search_text, keywords or [], kw_weight if has_vector else 1.0)
        ]
        if has_vector:
            should.append(self.vector_clause(embedding, vec_weight))

        bool_query: Dict[str, Any] = {"should": should}
        filters = self.filters(preferences)
        if filters:
            bool_query["filter"] = filters

        try:
            size = int(preferences.get("maxResults") or self.default_size)
        except (TypeError, ValueError):
            size = self.default_size

        return {
            "query": {"bool": bool_query},
            "size": size,
            "_source": {"excludes": ["embedding"]},
        }

    def build_similar(
        self,
        item_id: str,
        title: str,
        subjects: Sequence[str] = (),
        size: int = SIMILAR_ITEMS_SIZE,
    ) -> Dict[str, Any]:
        """Title/subject query for records like *item_id*, excluding the item itself."""
        should: List[Dict[str, Any]] = []
        if title:
            should.append({"match": {"title": {"query": title, "boost": 2.0}}})
        for subject in subjects:
            if subject:
                should.append({"match_phrase": {"subjects": subject}})
        return {
            "query": {
                "bool": {
                    "should": should,
                    "minimum_should_match": 1,
                    "must_not": [{"ids": {"values": [item_id]}}],
                }
            },
            "size": size,
            "_source": {"excludes": ["embedding"]},
        }
