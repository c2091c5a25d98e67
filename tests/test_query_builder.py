from library_rag.services.query_builder import HybridQueryBuilder, parse_date_range


def _should(body):
    return body["query"]["bool"]["should"]


def test_hybrid_weights_with_embedding():
    body = HybridQueryBuilder().build("library science", ["libraries"], embedding=[0.1, 0.2])

    keyword, vector = _should(body)
    assert keyword["bool"]["boost"] == 0.4
    assert vector["script_score"]["boost"] == 0.6
    assert vector["script_score"]["script"]["params"]["query_vector"] == [0.1, 0.2]


def test_keyword_only_without_embedding():
    body = HybridQueryBuilder().build("library science", embedding=None)

    should = _should(body)
    assert len(should) == 1
    assert should[0]["bool"]["boost"] == 1.0


def test_weights_overridable_per_call():
    body = HybridQueryBuilder(keyword_weight=0.2, vector_weight=0.8).build(
        "x", embedding=[1.0], keyword_weight=0.5
    )
    keyword, vector = _should(body)
    assert keyword["bool"]["boost"] == 0.5
    assert vector["script_score"]["boost"] == 0.8


def test_keyword_clauses_skip_duplicates():
    body = HybridQueryBuilder().build("databases", ["databases", "Database design", "", "Database design"])

    clauses = _should(body)[0]["bool"]["should"]
    queries = [c["multi_match"]["query"] for c in clauses if "multi_match" in c]
    assert queries == ["databases", "Database design"]
    assert clauses[-1]["match"]["searchableText"]["query"] == "databases"


def test_filters_from_preferences():
    body = HybridQueryBuilder().build(
        "maps",
        preferences={"dateRange": "1990-2000", "formats": ["book", "map"], "maxResults": 5},
    )

    assert body["size"] == 5
    assert body["query"]["bool"]["filter"] == [
        {"range": {"publicationYear": {"gte": 1990, "lte": 2000}}},
        {"terms": {"format": ["book", "map"]}},
    ]
    assert body["_source"] == {"excludes": ["embedding"]}


def test_malformed_date_range_is_ignored():
    body = HybridQueryBuilder(default_size=7).build("maps", preferences={"dateRange": "recent"})
    assert "filter" not in body["query"]["bool"]
    assert body["size"] == 7


def test_parse_date_range():
    assert parse_date_range("2001-2010") == (2001, 2010)
    assert parse_date_range("abc-def") is None
    assert parse_date_range(None) is None


def test_similar_query_excludes_item():
    body = HybridQueryBuilder().build_similar("m1", "River Atlas", ["Rivers", ""], size=5)

    bool_query = body["query"]["bool"]
    assert bool_query["must_not"] == [{"ids": {"values": ["m1"]}}]
    assert bool_query["minimum_should_match"] == 1
    assert len(bool_query["should"]) == 2
    assert body["size"] == 5
    assert body["_source"] == {"excludes": ["embedding"]}
