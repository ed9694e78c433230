"""Hybrid retriever - semantic backend first, local lexical waterfall second."""

import logging
from collections.abc import Collection
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from taxdraft.app.config import Settings, get_settings
from taxdraft.app.docs.lexical import LexicalSearch, lexical_search_for, tokenize_query
from taxdraft.app.docs.semantic import (
    NullSemanticBackend,
    SemanticSearchBackend,
    SemanticSearchError,
)
from taxdraft.app.models.docs import RetrievalResult
from taxdraft.app.utils.metrics import PrometheusRetrievalMetrics

logger = logging.getLogger(__name__)


class HybridRetriever:
    """Search a case's chunks through an ordered waterfall of strategies.

    1. document_ids given: local path only, scoped to those documents.
    2. Semantic backend configured: its results win if there is at least one.
       Empty results and backend errors fall through to the local path.
    3. Local path: full-text results, then trigram similarity results for the
       remaining slots (excluding chunks already returned).
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        semantic: SemanticSearchBackend | None = None,
        lexical: LexicalSearch | None = None,
        settings: Settings | None = None,
        metrics: PrometheusRetrievalMetrics | None = None,
    ) -> None:
        """Initialize retriever.

        Args:
            session: Async database session
            semantic: Optional external semantic backend
            lexical: Local engine (default: picked from the session's dialect)
            settings: Settings providing the similarity threshold
            metrics: Retrieval metrics recorder
        """
        self._session = session
        self._semantic = semantic or NullSemanticBackend()
        self._lexical = lexical or lexical_search_for(session)
        self._settings = settings or get_settings()
        self._metrics = metrics or PrometheusRetrievalMetrics()

    async def search(
        self,
        query: str,
        case_id: UUID,
        top_k: int,
        document_ids: Collection[UUID] | None = None,
    ) -> list[RetrievalResult]:
        """Return at most top_k results for query, best first.

        Never raises on backend trouble: search degrades to fewer or no
        results instead.
        """
        if top_k <= 0 or not query.strip():
            return []

        if not document_ids and self._semantic.is_configured():
            semantic_results = await self._search_semantic(query, case_id, top_k)
            if semantic_results:
                return semantic_results

        return await self._search_local(query, case_id, top_k, document_ids)

    async def _search_semantic(
        self, query: str, case_id: UUID, top_k: int
    ) -> list[RetrievalResult]:
        try:
            results = await self._semantic.search(query, case_id, top_k)
        except SemanticSearchError as e:
            logger.warning(f"Semantic search failed, falling back to local search: {e}")
            self._metrics.inc_fallback("error")
            return []
        except Exception as e:
            logger.exception(f"Unexpected semantic search error, using local search: {e}")
            self._metrics.inc_fallback("error")
            return []

        if not results:
            logger.info("Semantic search returned nothing, falling back to local search")
            self._metrics.inc_fallback("empty")
            return []

        results = results[:top_k]
        self._metrics.inc_results("semantic", len(results))
        return results

    async def _search_local(
        self,
        query: str,
        case_id: UUID,
        top_k: int,
        document_ids: Collection[UUID] | None,
    ) -> list[RetrievalResult]:
        tokens = tokenize_query(query)
        if not tokens:
            return []

        primary = await self._lexical.fulltext(
            self._session,
            tokens=tokens,
            case_id=case_id,
            limit=top_k,
            document_ids=document_ids,
        )
        primary = primary[:top_k]
        self._metrics.inc_results("fulltext", len(primary))

        remaining = top_k - len(primary)
        if remaining <= 0:
            return primary

        seen = {r.chunk_id for r in primary}
        fallback = await self._lexical.similar(
            self._session,
            query=query,
            case_id=case_id,
            limit=remaining,
            min_similarity=self._settings.trigram_min_similarity,
            exclude_ids=seen,
            document_ids=document_ids,
        )
        fallback = [r for r in fallback if r.chunk_id not in seen][:remaining]
        self._metrics.inc_results("trigram", len(fallback))

        logger.debug(
            f"Local search for case {case_id}: {len(primary)} full-text, "
            f"{len(fallback)} trigram results"
        )
        return primary + fallback
