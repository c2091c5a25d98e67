"""
Search-engine collaborator
==========================

Async client for the Elasticsearch REST API holding the bibliographic index.
Only the operations the pipeline needs are exposed: ranked search, document
count, lookup by id and field-mapping introspection.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from ..core import config
from ..core.exceptions import CollaboratorUnavailable
from ..models.catalog import UNKNOWN_AUTHOR, UNKNOWN_TITLE, CatalogResult
from ..utils.circuit_breaker import with_circuit_breaker
from ..utils.retry import get_search_retry_decorator

logger = structlog.get_logger(__name__)

SERVICE_NAME = "search_engine"


def _parse_year(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip()[:4])
    except (TypeError, ValueError):
        return None


@dataclass
class SearchPage:
    results: List[CatalogResult] = field(default_factory=list)
    total: int = 0
    max_score: Optional[float] = None


def hit_to_result(hit: Dict[str, Any]) -> CatalogResult:
    """Map a raw search hit to a :class:`CatalogResult`."""
    source = hit.get("_source") or {}
    subjects = source.get("subjects") or []
    if isinstance(subjects, str):
        subjects = [subjects]
    return CatalogResult(
        id=str(hit.get("_id", "")),
        title=source.get("title") or UNKNOWN_TITLE,
        author=source.get("author") or UNKNOWN_AUTHOR,
        publisher=source.get("publisher") or "",
        year=_parse_year(source.get("publicationYear")),
        isbn=source.get("isbn") or "",
        subjects=list(subjects),
        description=source.get("description") or "",
        score=float(hit.get("_score") or 0.0),
        record_ref=str(source.get("controlNumber") or hit.get("_id", "")),
        format=source.get("format"),
    )


class SearchEngineClient:
    """Elasticsearch REST client over a shared aiohttp session."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        verify_tls: Optional[bool] = None,
        index: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = (base_url or config.ELASTICSEARCH_URL).rstrip("/")
        self.username = username if username is not None else config.ELASTICSEARCH_USERNAME
        self.password = password if password is not None else config.ELASTICSEARCH_PASSWORD
        self.verify_tls = config.ELASTICSEARCH_VERIFY_TLS if verify_tls is None else verify_tls
        self.index = index or config.CATALOG_INDEX
        self.session = session

    async def __aenter__(self):
        self._sess()
        return self

    async def __aexit__(self, *_exc):
        await self.close()

    def _sess(self) -> aiohttp.ClientSession:
        if self.session is None or getattr(self.session, "closed", False):
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=config.SEARCH_TIMEOUT_SEC)
            )
        return self.session

    async def close(self) -> None:
        if self.session is not None and not getattr(self.session, "closed", True):
            await self.session.close()

    def _auth(self) -> Optional[aiohttp.BasicAuth]:
        if self.password:
            return aiohttp.BasicAuth(self.username, self.password)
        return None

    @get_search_retry_decorator()
    async def _send(self, method: str, path: str, body: Optional[Dict[str, Any]]) -> tuple:
        async with self._sess().request(
            method,
            f"{self.base_url}/{path.lstrip('/')}",
            json=body,
            auth=self._auth(),
            ssl=None if self.verify_tls else False,
        ) as resp:
            if resp.status >= 400:
                return resp.status, None
            return resp.status, await resp.json()

    async def _request(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        allow_missing: bool = False,
    ) -> Optional[Dict[str, Any]]:
        try:
            status, payload = await self._send(method, path, body)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("search_engine_request_failed", path=path, error=str(e))
            raise CollaboratorUnavailable(SERVICE_NAME, str(e) or type(e).__name__) from e

        if status == 404 and allow_missing:
            return None
        if status >= 400:
            logger.warning("search_engine_bad_status", path=path, status=status)
            raise CollaboratorUnavailable(SERVICE_NAME, f"HTTP {status} from {path}")
        return payload or {}

    @with_circuit_breaker(SERVICE_NAME, failure_threshold=5, recovery_timeout=30.0)
    async def search(self, body: Dict[str, Any], index: Optional[str] = None) -> SearchPage:
        """Run a search body and return its hits as catalog results."""
        payload = await self._request("POST", f"{index or self.index}/_search", body)
        hits_block = (payload or {}).get("hits") or {}
        hits = hits_block.get("hits") or []
        total = hits_block.get("total", len(hits))
        if isinstance(total, dict):
            total = total.get("value", len(hits))
        return SearchPage(
            results=[hit_to_result(hit) for hit in hits],
            total=int(total or 0),
            max_score=hits_block.get("max_score"),
        )

    @with_circuit_breaker(SERVICE_NAME, failure_threshold=5, recovery_timeout=30.0)
    async def count(self, index: Optional[str] = None) -> int:
        payload = await self._request("GET", f"{index or self.index}/_count")
        return int((payload or {}).get("count") or 0)

    async def get_document(self, doc_id: str, index: Optional[str] = None) -> Optional[CatalogResult]:
        payload = await self._request(
            "GET", f"{index or self.index}/_doc/{doc_id}?_source_excludes=embedding", allow_missing=True
        )
        if not payload or not payload.get("found", True):
            return None
        return hit_to_result(payload)

    async def get_mapping(self, index: Optional[str] = None) -> Dict[str, Any]:
        return await self._request("GET", f"{index or self.index}/_mapping") or {}


class EmbeddingClient:
    """Embedding collaborator (Ollama-compatible ``/api/embeddings``).

    Failures are never raised; ``embed`` returns ``None`` instead so the
    pipeline degrades to keyword-only search.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        model: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url or config.EMBEDDING_URL
        self.model = model or config.EMBEDDING_MODEL
        self.session = session

    def _sess(self) -> aiohttp.ClientSession:
        if self.session is None or getattr(self.session, "closed", False):
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=config.EMBEDDING_TIMEOUT_SEC)
            )
        return self.session

    async def close(self) -> None:
        if self.session is not None and not getattr(self.session, "closed", True):
            await self.session.close()

    @get_search_retry_decorator()
    async def _post(self, text: str) -> tuple:
        async with self._sess().request(
            "POST", self.url, json={"model": self.model, "prompt": text}
        ) as resp:
            if resp.status >= 400:
                return resp.status, None
            return resp.status, await resp.json()

    async def embed(self, text: str) -> Optional[List[float]]:
        if not text or not text.strip():
            return None
        try:
            status, payload = await self._post(text)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("embedding_unavailable", error=str(e) or type(e).__name__)
            return None
        if status >= 400:
            logger.warning("embedding_bad_status", status=status)
            return None
        vector = (payload or {}).get("embedding")
        if not isinstance(vector, list) or not vector:
            logger.warning("embedding_empty_response")
            return None
        return [float(v) for v in vector]
