import pytest

from conftest import FakeEmbedder, FakeLLM, FakeSearchEngine, build_result, page_of
from library_rag.core.exceptions import CollaboratorUnavailable, InputError, NotFoundError
from library_rag.services.context_store import ContextManager
from library_rag.services.mock_catalog import (
    EMPTY_INDEX_NOTE,
    MISSING_ITEM_NOTE,
    NO_SIMILAR_NOTE,
    UNAVAILABLE_NOTE,
)
from library_rag.services.retrieval_orchestrator import (
    CHAT_REPLIES,
    PipelineState,
    RetrievalOrchestrator,
    extract_search_terms,
    fallback_chat_reply,
    is_search_request,
)

OPTIMIZE_MARKER = "Elasticsearch query optimizer"
ADOPTED_QUERY = {"query": {"match": {"title": "cartography"}}}


def _orchestrator(engine=None, llm=None, embedder=None):
    return RetrievalOrchestrator(
        ContextManager(),
        engine or FakeSearchEngine(pages=[page_of(build_result("a"), build_result("b"))]),
        embedder,
        llm,
    )


def _states(response):
    return response["metadata"]["states"]


@pytest.mark.asyncio
async def test_search_without_model_runs_every_stage_but_optimize():
    orchestrator = _orchestrator()

    response = await orchestrator.search("old maps")

    assert _states(response) == ["INIT", "INITIAL_SEARCH", "AUGMENT", "SORT", "RECOMMEND", "DONE"]
    assert {r["id"] for r in response["results"]} == {"a", "b"}
    assert response["metadata"]["searchType"] == "keyword-only"
    assert response["metadata"]["sortBy"] == "best_match"
    assert response["metadata"]["llmEnabled"] is False
    assert response["aiInsights"]["fallback"] is True
    assert response["citations"]["apa"]
    assert response["augmentation"]["overallQuality"]
    assert response["rewrite"]["originalQuery"] == "old maps"


@pytest.mark.asyncio
async def test_adopted_optimization_replaces_results():
    engine = FakeSearchEngine(
        pages=[
            page_of(build_result("a"), build_result("b")),
            page_of(build_result("x", title="Cartography", score=12.0)),
        ]
    )
    llm = FakeLLM(
        rules=[(OPTIMIZE_MARKER, {**ADOPTED_QUERY, "confidence": 0.9, "reasoning": "title match"})],
        text="These maps match your interest.",
    )
    orchestrator = _orchestrator(engine, llm)

    response = await orchestrator.search("old maps")

    assert _states(response) == [
        "INIT", "INITIAL_SEARCH", "OPTIMIZE", "AUGMENT", "SORT", "RECOMMEND", "DONE",
    ]
    assert [r["id"] for r in response["results"]] == ["x"]
    metadata = response["metadata"]
    assert metadata["aiOptimized"] is True
    assert metadata["initialResults"] == 2
    assert metadata["finalResults"] == 1
    assert metadata["stagesUsed"] == ["initial", "ai-optimization"]
    assert response["aiOptimization"]["confidence"] == 0.9
    assert response["aiExplanation"] == "These maps match your interest."
    assert engine.bodies[1]["query"] == {"match": {"title": "cartography"}}


@pytest.mark.asyncio
async def test_low_confidence_optimization_keeps_initial_results():
    engine = FakeSearchEngine(pages=[page_of(build_result("a"), build_result("b"))])
    llm = FakeLLM(rules=[(OPTIMIZE_MARKER, {**ADOPTED_QUERY, "confidence": 0.39})])
    orchestrator = _orchestrator(engine, llm)

    response = await orchestrator.search("old maps")

    assert {r["id"] for r in response["results"]} == {"a", "b"}
    assert "aiOptimized" not in response["metadata"]
    assert len(engine.bodies) == 1


@pytest.mark.asyncio
async def test_unreachable_engine_uses_mock_catalog():
    engine = FakeSearchEngine(total=CollaboratorUnavailable("search_engine"))
    orchestrator = _orchestrator(engine, FakeLLM())

    response = await orchestrator.search("library science")

    states = _states(response)
    assert "ERROR_FALLBACK" in states
    assert "OPTIMIZE" not in states
    assert states[-4:] == ["AUGMENT", "SORT", "RECOMMEND", "DONE"]
    assert {r["id"] for r in response["results"]} == {"mock_001", "mock_003"}
    assert response["metadata"]["note"] == UNAVAILABLE_NOTE
    assert response["metadata"]["searchType"] == "mock-fallback"
    assert engine.bodies == []


@pytest.mark.asyncio
async def test_empty_index_uses_mock_catalog():
    orchestrator = _orchestrator(FakeSearchEngine(total=0))

    response = await orchestrator.search("database")

    assert [r["id"] for r in response["results"]] == ["mock_002"]
    assert response["metadata"]["note"] == EMPTY_INDEX_NOTE
    assert response["metadata"]["searchType"] == "mock"


@pytest.mark.asyncio
async def test_failed_search_call_uses_mock_catalog():
    engine = FakeSearchEngine(pages=[CollaboratorUnavailable("search_engine", "HTTP 500")])

    response = await _orchestrator(engine).search("jane smith")

    assert [r["id"] for r in response["results"]] == ["mock_001"]
    assert response["metadata"]["error"] == "HTTP 500"


@pytest.mark.asyncio
async def test_no_results_still_recommends():
    orchestrator = _orchestrator(FakeSearchEngine(pages=[page_of()]), FakeLLM())

    response = await orchestrator.search("zzz nothing matches")

    assert response["results"] == []
    assert "OPTIMIZE" not in _states(response)
    assert response["recommendations"]["nextSteps"]["immediate"]
    assert response["aiInsights"]["summary"].startswith("Found 0 resources")
    assert response["citations"] == {"apa": [], "mla": []}


@pytest.mark.asyncio
async def test_empty_query_is_rejected():
    orchestrator = _orchestrator()
    with pytest.raises(InputError):
        await orchestrator.search("   ")
    with pytest.raises(InputError):
        await orchestrator.search(None)


@pytest.mark.asyncio
async def test_hybrid_search_inputs():
    engine = FakeSearchEngine(pages=[page_of(build_result("a"))])
    embedder = FakeEmbedder([0.5, 0.5])
    orchestrator = _orchestrator(engine, embedder=embedder)

    response = await orchestrator.search(
        "Databse privacy", preferences={"dateRange": "2000-2010"}, sort_by="newest"
    )

    assert response["metadata"]["searchType"] == "hybrid"
    assert response["metadata"]["sortBy"] == "newest"
    assert embedder.texts == ["Databse privacy"]

    body = engine.bodies[0]
    keyword_clause, vector_clause = body["query"]["bool"]["should"]
    queries = [c["multi_match"]["query"] for c in keyword_clause["bool"]["should"] if "multi_match" in c]
    assert queries[0] == "database privacy"
    assert queries[1] == "Databse privacy"
    assert "Privacy" in queries
    assert vector_clause["script_score"]["boost"] == 0.6
    assert body["query"]["bool"]["filter"] == [{"range": {"publicationYear": {"gte": 2000, "lte": 2010}}}]


@pytest.mark.asyncio
async def test_invalid_sort_falls_back_to_best_match():
    response = await _orchestrator().search("maps", sort_by="popularity")
    assert response["metadata"]["sortBy"] == "best_match"


@pytest.mark.asyncio
async def test_search_turns_share_conversation():
    orchestrator = _orchestrator()

    first = await orchestrator.search("maps")
    second = await orchestrator.search("atlases", conversation_id=first["conversationId"])

    assert second["conversationId"] == first["conversationId"]
    conversation = await orchestrator.get_conversation(first["conversationId"])
    assert len(conversation["messages"]) == 4
    assert [s["query"] for s in conversation["searchHistory"]] == ["maps", "atlases"]


@pytest.mark.asyncio
async def test_unknown_conversation_lookup_raises():
    with pytest.raises(NotFoundError):
        await _orchestrator().get_conversation("nope")


@pytest.mark.asyncio
async def test_chat_search_intent_runs_pipeline():
    orchestrator = _orchestrator(
        FakeSearchEngine(pages=[page_of(*(build_result(str(i)) for i in range(5)))])
    )

    response = await orchestrator.chat("Can you find books about machine learning")

    assert response["type"] == "search_results"
    assert len(response["searchResults"]) == 3
    assert response["message"].startswith('I found 5 resources for "machine learning"')
    assert response["suggestions"]


@pytest.mark.asyncio
async def test_chat_search_without_terms_asks_for_clarification():
    response = await _orchestrator().chat("search")
    assert response["type"] == "clarification"
    assert len(response["suggestions"]) == 3


@pytest.mark.asyncio
async def test_chat_reply_with_and_without_model():
    assert (await _orchestrator().chat("hello there"))["message"] == CHAT_REPLIES["greeting"]

    response = await _orchestrator(llm=FakeLLM(text="  Try the reference desk.  ")).chat("what are your hours?")
    assert response["type"] == "assistant_response"
    assert response["message"] == "Try the reference desk."


@pytest.mark.asyncio
async def test_chat_reply_model_failure_falls_back():
    llm = FakeLLM(text=CollaboratorUnavailable("language_model"))
    response = await _orchestrator(llm=llm).chat("thanks a lot")
    assert response["message"] == CHAT_REPLIES["thanks"]


@pytest.mark.asyncio
async def test_empty_chat_message_is_rejected():
    with pytest.raises(InputError):
        await _orchestrator().chat("")


def test_chat_intent_helpers():
    assert is_search_request("Please look for atlases")
    assert not is_search_request("what are your hours")
    assert not is_search_request("which research strategies do you suggest?")
    assert is_search_request("I am looking for maps")
    assert extract_search_terms("I am looking for resources about digital libraries") == "digital libraries"
    assert extract_search_terms("find") is None
    assert fallback_chat_reply("this is a question") == CHAT_REPLIES["default"]
    assert fallback_chat_reply("Hi!") == CHAT_REPLIES["greeting"]
    assert fallback_chat_reply("can you help") == CHAT_REPLIES["help"]


@pytest.mark.asyncio
async def test_health_and_sort_options():
    orchestrator = _orchestrator(embedder=FakeEmbedder())
    await orchestrator.search("maps")

    health = await orchestrator.health()
    assert health["status"] == "ok"
    assert health["embeddingsConfigured"] is True
    assert health["context"]["activeConversations"] == 1

    options = orchestrator.sort_options()
    assert options["defaultSort"] == "best_match"
    assert len(options["sortOptions"]) == 9


@pytest.mark.asyncio
async def test_close_releases_clients():
    engine = FakeSearchEngine()
    await _orchestrator(engine).close()
    assert engine.closed


def test_pipeline_states_are_named():
    assert PipelineState.ERROR_FALLBACK.value == "ERROR_FALLBACK"


@pytest.mark.asyncio
async def test_item_detail_from_index():
    record = build_result("m1", title="River Atlas", subjects=["Rivers"])
    orchestrator = _orchestrator(FakeSearchEngine(documents={"m1": record}))

    item = await orchestrator.get_item("m1")

    assert item["title"] == "River Atlas"
    assert "note" not in item


@pytest.mark.asyncio
async def test_item_detail_falls_back_to_mock():
    unreachable = FakeSearchEngine(documents=CollaboratorUnavailable("search_engine", "down"))

    missing = await _orchestrator().get_item("nope")
    down = await _orchestrator(unreachable).get_item("m1")

    assert missing["id"] == "nope"
    assert missing["note"] == MISSING_ITEM_NOTE
    assert down["marcRecord"] == "m1"
    with pytest.raises(InputError):
        await _orchestrator().get_item("  ")


@pytest.mark.asyncio
async def test_similar_items_excludes_source_record():
    record = build_result("m1", title="River Atlas", subjects=["Rivers", "Hydrology"])
    engine = FakeSearchEngine(
        pages=[page_of(build_result("m1"), build_result("m2", score=4.0))],
        documents={"m1": record},
    )

    similar = await _orchestrator(engine).similar_items("m1")

    assert similar["itemId"] == "m1"
    assert [r["id"] for r in similar["results"]] == ["m2"]
    assert similar["results"][0]["score"] == 4.0
    query = engine.bodies[-1]["query"]["bool"]
    assert query["must_not"] == [{"ids": {"values": ["m1"]}}]
    assert {"match_phrase": {"subjects": "Hydrology"}} in query["should"]


@pytest.mark.asyncio
async def test_similar_items_fall_back_to_mock():
    record = build_result("m1")
    failing = FakeSearchEngine(
        pages=[CollaboratorUnavailable("search_engine", "HTTP 500")], documents={"m1": record}
    )

    unknown = await _orchestrator().similar_items("nope")
    failed = await _orchestrator(failing).similar_items("m1")

    for response in (unknown, failed):
        assert response["note"] == NO_SIMILAR_NOTE
        assert len(response["results"]) == 4
