import pytest
from fastapi.testclient import TestClient

from conftest import FakeSearchEngine, build_result, page_of
from library_rag.core.app import create_app
from library_rag.services.context_store import ContextManager
from library_rag.services.retrieval_orchestrator import RetrievalOrchestrator


@pytest.fixture
def engine():
    atlas = build_result("a", title="Atlas of Rivers", subjects=["Rivers"])
    return FakeSearchEngine(pages=[page_of(atlas, build_result("b"))], documents={"a": atlas})


@pytest.fixture
def client(engine):
    orchestrator = RetrievalOrchestrator(ContextManager(), engine)
    with TestClient(create_app(orchestrator)) as test_client:
        yield test_client


def test_rag_search_returns_results(client):
    response = client.post("/api/rag-search", json={"query": "rivers", "sortBy": "title_az"})

    assert response.status_code == 200
    body = response.json()
    assert [r["title"] for r in body["results"]] == ["Atlas of Rivers", "Title b"]
    assert body["metadata"]["sortBy"] == "title_az"
    assert body["conversationId"]
    assert response.headers["X-Request-ID"]


def test_empty_query_is_a_bad_request(client):
    response = client.post("/api/rag-search", json={"query": "  "})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid Input"
    assert body["results"] == []
    assert body["request_id"] == response.headers["X-Request-ID"]


def test_missing_query_is_a_bad_request(client):
    assert client.post("/api/rag-search", json={}).status_code == 400


def test_conversation_round_trip(client):
    conversation_id = client.post("/api/rag-search", json={"query": "rivers"}).json()["conversationId"]

    response = client.get(f"/api/conversation/{conversation_id}")

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == conversation_id
    assert [m["role"] for m in body["messages"]] == ["user", "assistant"]
    assert body["searchHistory"][0]["query"] == "rivers"


def test_unknown_conversation_is_not_found(client):
    response = client.get("/api/conversation/does-not-exist")
    assert response.status_code == 404
    assert response.json()["error"] == "Conversation not found"


def test_chat_endpoint(client):
    response = client.post("/api/chat", json={"message": "hi there"})
    assert response.status_code == 200
    assert response.json()["type"] == "assistant_response"

    assert client.post("/api/chat", json={"message": ""}).status_code == 400


def test_item_detail(client):
    body = client.get("/api/item/a").json()
    assert body["title"] == "Atlas of Rivers"
    assert "note" not in body

    mock = client.get("/api/item/unknown").json()
    assert mock["id"] == "unknown"
    assert mock["note"]


def test_similar_items(client, engine):
    body = client.get("/api/item/a/similar").json()

    assert body["itemId"] == "a"
    assert [r["id"] for r in body["results"]] == ["b"]
    assert engine.bodies[-1]["query"]["bool"]["must_not"] == [{"ids": {"values": ["a"]}}]


def test_null_optional_fields_use_defaults(client):
    payload = {"query": "rivers", "sortBy": None, "preferences": None, "context": None, "userId": None}

    response = client.post("/api/rag-search", json=payload)

    assert response.status_code == 200
    metadata = response.json()["metadata"]
    assert metadata["sortBy"] == "best_match"
    assert metadata["sortStats"]["count"] == 2
    assert metadata["queryComplexity"]["difficulty"] == "simple"


def test_query_suggestions(client):
    body = client.get("/api/suggestions", params={"q": "data", "limit": 3}).json()
    assert body["query"] == "data"
    assert 0 < len(body["suggestions"]) <= 3

    assert client.get("/api/suggestions").status_code == 400


def test_sort_options(client):
    body = client.get("/api/sort-options").json()
    assert body["defaultSort"] == "best_match"
    assert {o["value"] for o in body["sortOptions"]} >= {"newest", "author_za"}


def test_health(client):
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["llmAvailable"] is False


def test_unexpected_errors_are_500(engine):
    class _Broken(RetrievalOrchestrator):
        def sort_options(self):
            raise RuntimeError("boom")

    app = create_app(_Broken(ContextManager(), engine))
    with TestClient(app, raise_server_exceptions=False) as test_client:
        response = test_client.get("/api/sort-options")

    assert response.status_code == 500
    assert response.json()["error"] == "Internal Server Error"


def test_shutdown_closes_collaborators(engine):
    with TestClient(create_app(RetrievalOrchestrator(ContextManager(), engine))):
        pass
    assert engine.closed
