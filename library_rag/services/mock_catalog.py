"""Fixed stand-in records served when the search index is unreachable or empty."""

from __future__ import annotations

from typing import List

from ..models.catalog import CatalogResult

UNAVAILABLE_NOTE = "Using mock data - search index not available"
EMPTY_INDEX_NOTE = "Using mock data - no MARC records indexed yet"

_RECORDS = (
    {
        "id": "mock_001",
        "title": "Introduction to Information Science",
        "author": "Jane Smith",
        "publisher": "Academic Press",
        "year": 2023,
        "isbn": "978-0-123456-78-9",
        "score": 0.95,
        "record_ref": "mock_001234567",
        "subjects": ("Information Science", "Library Science"),
        "description": "A comprehensive introduction to the field of information science.",
    },
    {
        "id": "mock_002",
        "title": "Database Systems and Design",
        "author": "John Doe",
        "publisher": "Tech Publications",
        "year": 2022,
        "isbn": "978-0-987654-32-1",
        "score": 0.87,
        "record_ref": "mock_001234568",
        "subjects": ("Database Design", "Computer Science"),
        "description": "Modern approaches to database design and implementation.",
    },
    {
        "id": "mock_003",
        "title": "Modern Library Science",
        "author": "Alice Johnson",
        "publisher": "University Press",
        "year": 2024,
        "isbn": "978-0-456789-01-2",
        "score": 0.78,
        "record_ref": "mock_001234569",
        "subjects": ("Library Science", "Information Management"),
        "description": "Contemporary practices in library and information science.",
    },
)


def mock_results(query: str) -> List[CatalogResult]:
    """Records whose title, author, publisher or a subject contains *query*."""
    needle = (query or "").strip().lower()
    matches = []
    for record in _RECORDS:
        haystacks = [record["title"], record["author"], record["publisher"], *record["subjects"]]
        if any(needle in h.lower() for h in haystacks):
            matches.append(CatalogResult(**{**record, "subjects": list(record["subjects"])}))
    return matches


MISSING_ITEM_NOTE = "Using mock data - item not found in search index"
NO_SIMILAR_NOTE = "Using mock data - similar items search unavailable"

_SIMILAR = (
    ("mock_similar_001", "Digital Libraries and Information Systems", "Robert Brown", 2022, 0.87),
    ("mock_similar_002", "Library Science Fundamentals", "Alice Johnson", 2024, 0.82),
    ("mock_similar_003", "Information Architecture", "David Wilson", 2023, 0.78),
    ("mock_similar_004", "Data Science for Libraries", "Sarah Davis", 2023, 0.75),
)


def mock_item(item_id: str) -> CatalogResult:
    """Demonstration record served under *item_id* when the lookup fails."""
    record = {**_RECORDS[0], "id": item_id, "record_ref": item_id}
    record["subjects"] = ["Information Science", "Library Science", "Academic Research", "Data Management"]
    return CatalogResult(**record)


def mock_similar_items(item_id: str) -> List[CatalogResult]:
    return [
        CatalogResult(id=sid, title=title, author=author, year=year, score=score)
        for sid, title, author, year, score in _SIMILAR
        if sid != item_id
    ]
