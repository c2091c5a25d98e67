from types import SimpleNamespace

import aiohttp
import pytest
from openai import OpenAIError

from library_rag.core.exceptions import CollaboratorUnavailable, ValidationError
from library_rag.services.llm_client import LLMClient
from library_rag.services.search_engine import EmbeddingClient, SearchEngineClient, hit_to_result


class _DummyResponse:
    def __init__(self, status, payload=None):
        self.status = status
        self._payload = payload

    async def json(self):
        return self._payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class _DummySession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


def _engine(*responses):
    session = _DummySession(*responses)
    client = SearchEngineClient(
        base_url="http://es.test:9200/", username="elastic", password="", index="marc", session=session
    )
    return client, session


SEARCH_REPLY = {
    "hits": {
        "total": {"value": 2},
        "max_score": 3.5,
        "hits": [
            {
                "_id": "1",
                "_score": 3.5,
                "_source": {
                    "title": "Maps and Territories",
                    "author": "Ada Lee",
                    "publicationYear": "1998c",
                    "subjects": "Cartography",
                    "controlNumber": "ocm001",
                },
            },
            {"_id": "2", "_score": 1.0, "_source": {}},
        ],
    }
}


@pytest.mark.asyncio
async def test_search_maps_hits_to_results():
    client, session = _engine(_DummyResponse(200, SEARCH_REPLY))

    page = await client.search({"query": {"match_all": {}}})

    assert page.total == 2
    assert page.max_score == 3.5
    first, second = page.results
    assert first.year == 1998
    assert first.subjects == ["Cartography"]
    assert first.record_ref == "ocm001"
    assert second.title == "Unknown Title"
    assert not second.has_author

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", "http://es.test:9200/marc/_search")
    assert kwargs["auth"] is None


@pytest.mark.asyncio
async def test_count_and_bad_status():
    client, _ = _engine(_DummyResponse(200, {"count": 42}), _DummyResponse(503))
    assert await client.count() == 42
    with pytest.raises(CollaboratorUnavailable):
        await client.count()


@pytest.mark.asyncio
async def test_connection_errors_become_collaborator_unavailable():
    client, session = _engine(aiohttp.ClientConnectionError("refused"))

    with pytest.raises(CollaboratorUnavailable):
        await client.search({"query": {"match_all": {}}})
    assert len(session.calls) == 2


@pytest.mark.asyncio
async def test_repeated_failures_open_the_circuit():
    client, session = _engine(_DummyResponse(500))

    for _ in range(5):
        with pytest.raises(CollaboratorUnavailable):
            await client.count()
    calls = len(session.calls)

    with pytest.raises(CollaboratorUnavailable):
        await client.count()
    assert len(session.calls) == calls


@pytest.mark.asyncio
async def test_missing_document_and_mapping():
    client, _ = _engine(_DummyResponse(404), _DummyResponse(200, {"marc": {"mappings": {}}}))
    assert await client.get_document("nope") is None
    assert await client.get_mapping() == {"marc": {"mappings": {}}}


@pytest.mark.asyncio
async def test_close_closes_session():
    client, session = _engine(_DummyResponse(200, {}))
    await client.close()
    assert session.closed


def test_hit_to_result_defaults():
    result = hit_to_result({"_id": 7, "_source": {"publicationYear": None}})
    assert result.id == "7"
    assert result.year is None
    assert result.score == 0.0


@pytest.mark.asyncio
async def test_embedding_client():
    session = _DummySession(_DummyResponse(200, {"embedding": [1, 2.5]}), _DummyResponse(500))
    client = EmbeddingClient(url="http://embed.test/api/embeddings", model="nomic", session=session)

    assert await client.embed("maps") == [1.0, 2.5]
    assert session.calls[0][2]["json"] == {"model": "nomic", "prompt": "maps"}
    assert await client.embed("maps") is None
    assert await client.embed("   ") is None
    assert len(session.calls) == 2


class _Completions:
    def __init__(self, reply):
        self.reply = reply
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if isinstance(self.reply, Exception):
            raise self.reply
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _llm(reply):
    client = LLMClient(api_key="", model="test-model")
    completions = _Completions(reply)
    client._client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return client, completions


@pytest.mark.asyncio
async def test_llm_without_key_is_unavailable():
    client = LLMClient(api_key="")
    assert not client.is_available()
    with pytest.raises(CollaboratorUnavailable):
        await client.generate("hello")


@pytest.mark.asyncio
async def test_llm_generate_sends_system_and_context():
    client, completions = _llm("Plain answer")

    assert await client.generate("Where are the atlases?", context="user: hi") == "Plain answer"

    messages = completions.kwargs["messages"]
    assert [m["role"] for m in messages] == ["system", "system", "user"]
    assert completions.kwargs["model"] == "test-model"
    assert client.is_available()


@pytest.mark.asyncio
async def test_llm_generate_json_parses_fenced_reply():
    client, _ = _llm('```json\n{"confidence": 0.8}\n```')
    assert await client.generate_json("optimize") == {"confidence": 0.8}


@pytest.mark.asyncio
async def test_llm_generate_json_rejects_prose():
    client, _ = _llm("I cannot help with that.")
    with pytest.raises(ValidationError):
        await client.generate_json("optimize")


@pytest.mark.asyncio
async def test_llm_provider_errors_become_collaborator_unavailable():
    client, _ = _llm(OpenAIError("quota exceeded"))
    with pytest.raises(CollaboratorUnavailable):
        await client.generate("hello")


@pytest.mark.asyncio
async def test_llm_empty_completion_is_unavailable():
    client, _ = _llm("")
    with pytest.raises(CollaboratorUnavailable):
        await client.generate("hello")
