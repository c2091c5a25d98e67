"""Shared fakes for the catalog assistant tests.

The search engine, embedding service and language model are replaced by
in-process doubles so no test touches the network.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from library_rag.core.exceptions import CollaboratorUnavailable, ValidationError
from library_rag.models.catalog import CatalogResult
from library_rag.services.search_engine import SearchPage
from library_rag.utils.circuit_breaker import circuit_manager


class FakeLLM:
    """Replies chosen by the first rule whose marker appears in the prompt.

    A rule reply may be a value, an exception instance (raised) or a callable
    taking the prompt.
    """

    def __init__(
        self,
        rules: Sequence[Tuple[str, Any]] = (),
        available: bool = True,
        text: Any = "Here is what I found.",
    ):
        self.rules = list(rules)
        self.available = available
        self.text = text
        self.prompts: List[str] = []

    def is_available(self) -> bool:
        return self.available

    def _reply(self, value: Any, prompt: str) -> Any:
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value(prompt)
        return value

    async def generate(self, prompt: str, context: Optional[str] = None, temperature: float = 0.7) -> str:
        self.prompts.append(prompt)
        return self._reply(self.text, prompt)

    async def generate_json(self, prompt: str, context: Optional[str] = None, temperature: float = 0.3) -> Any:
        self.prompts.append(prompt)
        for marker, value in self.rules:
            if marker in prompt:
                return self._reply(value, prompt)
        raise ValidationError("no JSON reply configured")


class FakeSearchEngine:
    """Returns queued pages in order; the last page repeats."""

    def __init__(
        self,
        pages: Sequence[Any] = (),
        total: Any = 100,
        mapping: Optional[Dict[str, Any]] = None,
        documents: Any = None,
    ):
        self.pages = list(pages)
        self.total = total
        self.mapping = mapping
        self.documents = {} if documents is None else documents
        self.bodies: List[Dict[str, Any]] = []
        self.closed = False

    async def count(self, index: Optional[str] = None) -> int:
        if isinstance(self.total, Exception):
            raise self.total
        return self.total

    async def search(self, body: Dict[str, Any], index: Optional[str] = None) -> SearchPage:
        self.bodies.append(body)
        if not self.pages:
            return SearchPage()
        page = self.pages.pop(0) if len(self.pages) > 1 else self.pages[0]
        if isinstance(page, Exception):
            raise page
        return page

    async def get_document(self, doc_id: str, index: Optional[str] = None) -> Optional[CatalogResult]:
        if isinstance(self.documents, Exception):
            raise self.documents
        return self.documents.get(doc_id)

    async def get_mapping(self, index: Optional[str] = None) -> Dict[str, Any]:
        if self.mapping is None:
            raise CollaboratorUnavailable("search_engine", "mapping unavailable")
        return self.mapping

    async def close(self) -> None:
        self.closed = True


class FakeEmbedder:
    def __init__(self, vector: Optional[List[float]] = None):
        self.vector = vector
        self.texts: List[str] = []

    async def embed(self, text: str) -> Optional[List[float]]:
        self.texts.append(text)
        return self.vector

    async def close(self) -> None:
        pass


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def build_result(id: str = "r1", **overrides: Any) -> CatalogResult:
    data = {
        "title": f"Title {id}",
        "author": f"Author {id}",
        "publisher": "Example Press",
        "year": 2015,
        "isbn": "",
        "subjects": [],
        "description": "",
        "score": 1.0,
    }
    data.update(overrides)
    return CatalogResult(id=id, **data)


def page_of(*results: CatalogResult) -> SearchPage:
    max_score = max((r.score for r in results), default=None)
    return SearchPage(results=list(results), total=len(results), max_score=max_score)


@pytest.fixture(autouse=True)
def reset_circuits():
    circuit_manager.reset_all()
    yield
    circuit_manager.reset_all()


@pytest.fixture
def make_result():
    return build_result


@pytest.fixture
def make_page():
    return page_of


@pytest.fixture
def fake_clock():
    return FakeClock()
