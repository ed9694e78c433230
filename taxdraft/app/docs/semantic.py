"""External semantic search backend (Azure AI Search, REST API over httpx).

The backend is optional. Callers probe is_configured() and the hybrid
retriever degrades to local lexical search whenever it is absent, empty or
failing.
"""

import logging
from collections.abc import Sequence
from typing import Any, Protocol
from uuid import UUID

import httpx

from taxdraft.app.config import RuntimeConfig
from taxdraft.app.models.docs import IndexedChunk, RetrievalResult

logger = logging.getLogger(__name__)

BATCH_SIZE = 100


class SemanticSearchError(Exception):
    """Raised when the external search service fails or answers garbage."""


class SemanticSearchBackend(Protocol):
    """Optional external ranking service mirroring the chunk store."""

    def is_configured(self) -> bool:
        """True when the backend can be called."""
        ...

    async def search(self, query: str, case_id: UUID, top_k: int) -> list[RetrievalResult]:
        """Rank chunks of a case for a query, best first.

        Raises:
            SemanticSearchError: On transport or protocol failure
        """
        ...

    async def index_chunks(self, chunks: Sequence[IndexedChunk]) -> int:
        """Upload chunks; returns the number indexed."""
        ...

    async def delete_chunks(self, chunk_ids: Sequence[UUID]) -> None:
        """Remove chunks by id."""
        ...


class NullSemanticBackend:
    """Backend used when no external service is configured."""

    def is_configured(self) -> bool:
        return False

    async def search(self, query: str, case_id: UUID, top_k: int) -> list[RetrievalResult]:
        return []

    async def index_chunks(self, chunks: Sequence[IndexedChunk]) -> int:
        return 0

    async def delete_chunks(self, chunk_ids: Sequence[UUID]) -> None:
        return None


def _index_definition(index_name: str) -> dict[str, Any]:
    return {
        "name": index_name,
        "fields": [
            {"name": "chunk_id", "type": "Edm.String", "key": True, "filterable": True},
            {
                "name": "content",
                "type": "Edm.String",
                "searchable": True,
                "analyzer": "fr.microsoft",
            },
            {"name": "case_id", "type": "Edm.String", "filterable": True},
            {"name": "document_id", "type": "Edm.String", "filterable": True},
            {"name": "filename", "type": "Edm.String", "searchable": True, "filterable": True},
            {"name": "doc_type", "type": "Edm.String", "filterable": True},
            {"name": "section_title", "type": "Edm.String", "searchable": True},
        ],
        "semantic": {
            "defaultConfiguration": "default",
            "configurations": [
                {
                    "name": "default",
                    "prioritizedFields": {
                        "titleField": {"fieldName": "filename"},
                        "prioritizedContentFields": [{"fieldName": "content"}],
                    },
                }
            ],
        },
    }


class AzureSearchBackend:
    """Azure AI Search index of chunks with semantic ranking."""

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        *,
        index_name: str = "responsia-tax-chunks",
        api_version: str = "2023-11-01",
        timeout_sec: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize backend.

        Args:
            endpoint: Service URL, e.g. https://<name>.search.windows.net
            api_key: Admin key
            index_name: Index holding the chunks
            api_version: REST API version
            timeout_sec: Per-request timeout
            client: Optional httpx client (for testing with mocks)
        """
        self._endpoint = endpoint.rstrip("/")
        self._api_key = api_key
        self._index_name = index_name
        self._api_version = api_version
        self._timeout_sec = timeout_sec
        self._client = client
        self._index_ready = False

    def is_configured(self) -> bool:
        return bool(self._endpoint and self._api_key)

    async def _request(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        url = f"{self._endpoint}{path}"
        headers = {"api-key": self._api_key, "Content-Type": "application/json"}
        params = {"api-version": self._api_version}

        close_client = False
        client = self._client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout_sec)
            close_client = True

        try:
            response = await client.request(
                method, url, params=params, headers=headers, json=payload
            )
            response.raise_for_status()
            if not response.content:
                return {}
            data = response.json()
        except httpx.HTTPError as e:
            raise SemanticSearchError(f"Azure AI Search {method} {path} failed: {e}") from e
        except ValueError as e:
            raise SemanticSearchError(f"Azure AI Search returned invalid JSON: {e}") from e
        finally:
            if close_client:
                await client.aclose()

        if not isinstance(data, dict):
            raise SemanticSearchError("Azure AI Search returned an unexpected payload")
        return data

    async def ensure_index(self) -> None:
        """Create or update the index once per backend instance."""
        if self._index_ready:
            return

        try:
            await self._request(
                "PUT",
                f"/indexes/{self._index_name}",
                _index_definition(self._index_name),
            )
            self._index_ready = True
            logger.info(f"Azure AI Search index '{self._index_name}' ready")
        except SemanticSearchError as e:
            logger.warning(f"Could not ensure Azure AI Search index: {e}")

    async def index_chunks(self, chunks: Sequence[IndexedChunk]) -> int:
        """Upload chunks with mergeOrUpload, in batches of 100."""
        if not chunks:
            return 0

        await self.ensure_index()

        docs = [
            {
                "@search.action": "mergeOrUpload",
                "chunk_id": str(c.chunk_id),
                "content": c.content,
                "case_id": str(c.case_id),
                "document_id": str(c.document_id),
                "filename": c.filename,
                "doc_type": c.doc_type,
                "section_title": c.section_title or "",
            }
            for c in chunks
        ]

        indexed = 0
        for i in range(0, len(docs), BATCH_SIZE):
            batch = docs[i : i + BATCH_SIZE]
            await self._request("POST", f"/indexes/{self._index_name}/docs/index", {"value": batch})
            indexed += len(batch)

        logger.info(f"Indexed {indexed} chunks for document {chunks[0].filename}")
        return indexed

    async def delete_chunks(self, chunk_ids: Sequence[UUID]) -> None:
        """Delete chunks by id, in batches of 100."""
        if not chunk_ids:
            return

        docs = [{"@search.action": "delete", "chunk_id": str(cid)} for cid in chunk_ids]
        for i in range(0, len(docs), BATCH_SIZE):
            batch = docs[i : i + BATCH_SIZE]
            await self._request("POST", f"/indexes/{self._index_name}/docs/index", {"value": batch})

    async def search(self, query: str, case_id: UUID, top_k: int) -> list[RetrievalResult]:
        """Semantic query restricted to one case."""
        await self.ensure_index()

        data = await self._request(
            "POST",
            f"/indexes/{self._index_name}/docs/search",
            {
                "search": query,
                "filter": f"case_id eq '{case_id}'",
                "top": top_k,
                "queryType": "semantic",
                "semanticConfiguration": "default",
            },
        )

        docs = data.get("value", [])
        if not isinstance(docs, list):
            raise SemanticSearchError("Azure AI Search result 'value' is not a list")

        results: list[RetrievalResult] = []
        try:
            for doc in docs:
                score = doc.get("@search.rerankerScore")
                if score is None:
                    score = doc.get("@search.score", 0.0)
                results.append(
                    RetrievalResult(
                        chunk_id=UUID(doc["chunk_id"]),
                        content=doc["content"],
                        section_title=doc.get("section_title") or None,
                        source_filename=doc.get("filename", ""),
                        source_doc_type=doc.get("doc_type", "other"),
                        score=float(score or 0.0),
                    )
                )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise SemanticSearchError(f"Malformed Azure AI Search result: {e}") from e

        logger.info(f"Azure AI Search: {len(results)} results for query ({query[:60]}...)")
        return results[:top_k]


def semantic_backend_from_config(
    config: RuntimeConfig,
    client: httpx.AsyncClient | None = None,
) -> SemanticSearchBackend:
    """Build the semantic backend for this request's configuration.

    Returns:
        AzureSearchBackend when endpoint and key are set, NullSemanticBackend otherwise
    """
    if config.azure_search_endpoint and config.azure_search_key:
        return AzureSearchBackend(
            config.azure_search_endpoint,
            config.azure_search_key,
            index_name=config.azure_search_index_name,
            api_version=config.azure_search_api_version,
            timeout_sec=config.azure_search_timeout_sec,
            client=client,
        )
    return NullSemanticBackend()
