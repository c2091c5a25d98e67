import pytest

from conftest import FakeSearchEngine
from library_rag.services.schema_extractor import (
    SchemaExtractor,
    analyze_field,
    fallback_schema,
    query_recommendations,
    schema_from_mapping,
)

MAPPING = {
    "marc-records": {
        "mappings": {
            "properties": {
                "title": {"type": "text"},
                "isbn": {"type": "keyword"},
                "publicationYear": {"type": "integer"},
                "callNumber": {"type": "keyword"},
                "shelfNote": {"type": "text"},
            }
        }
    }
}


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_field_analysis():
    title = analyze_field("title", {"type": "text"})
    assert title.searchable and title.boostable and not title.filterable

    isbn = analyze_field("isbn", {"type": "keyword"})
    assert isbn.searchable and isbn.filterable and not isbn.boostable

    year = analyze_field("publicationYear", {"type": "integer"})
    assert year.filterable and not year.searchable

    assert analyze_field("shelfNote", {}).description == "Field containing shelfNote information"


def test_schema_from_mapping():
    schema = schema_from_mapping(MAPPING)
    assert schema.index_name == "marc-records"
    assert set(schema.searchable_fields()) == {"title", "isbn", "callNumber", "shelfNote"}
    assert not schema.is_fallback
    assert schema.to_dict()["fields"]["callNumber"]["description"] == "Library classification number"


@pytest.mark.asyncio
async def test_unavailable_mapping_gives_fallback_schema():
    schema = await SchemaExtractor(FakeSearchEngine(mapping=None)).get_schema()
    assert schema.is_fallback
    assert "publicationYear" in schema.fields
    assert schema.fields["publicationYear"].filterable


@pytest.mark.asyncio
async def test_schema_is_cached_until_ttl():
    engine = FakeSearchEngine(mapping=MAPPING)
    clock = _Clock()
    extractor = SchemaExtractor(engine, ttl=60, clock=clock)

    first = await extractor.get_schema()
    engine.mapping = None
    assert await extractor.get_schema() is first

    clock.now = 61
    assert (await extractor.get_schema()).is_fallback


def test_fallback_schema_shape():
    schema = fallback_schema("custom")
    assert schema.index_name == "custom"
    assert schema.to_dict()["recommendedQueryStrategies"]


def test_query_recommendations():
    recommendations = query_recommendations("book title with dragons by le guin")
    assert "High boost on title field (^3)" in recommendations
    assert "Focus search on author field" in recommendations
    assert "Use description field for detailed matching" in recommendations
