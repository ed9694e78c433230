"""Case search endpoints - hybrid chunk search and chunk counts."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from taxdraft.app.api.deps import get_retriever
from taxdraft.app.config import get_settings
from taxdraft.app.db.chunks import count_chunks
from taxdraft.app.db.engine import get_session
from taxdraft.app.db.models import Case
from taxdraft.app.docs.retriever import HybridRetriever
from taxdraft.app.models.docs import RetrievalResult

router = APIRouter(prefix="/cases", tags=["search"])


class ChunkCountResponse(BaseModel):
    """Response for GET /cases/{case_id}/chunks/count."""

    case_id: uuid.UUID
    chunk_count: int


def _parse_document_ids(raw: str | None) -> list[uuid.UUID] | None:
    if not raw:
        return None
    try:
        ids = [uuid.UUID(part.strip()) for part in raw.split(",") if part.strip()]
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="document_ids must be a comma-separated list of UUIDs",
        ) from e
    return ids or None


async def _require_case(session: AsyncSession, case_id: uuid.UUID) -> None:
    if await session.get(Case, case_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Case not found")


@router.get("/{case_id}/search", response_model=list[RetrievalResult])
async def search_case(
    case_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_session)],
    retriever: Annotated[HybridRetriever, Depends(get_retriever)],
    q: Annotated[str, Query(description="Search query")] = "",
    top_k: Annotated[int | None, Query(ge=1, description="Maximum results")] = None,
    document_ids: Annotated[
        str | None, Query(description="Comma-separated document ids to search in")
    ] = None,
) -> list[RetrievalResult]:
    """Search a case's document chunks.

    Args:
        case_id: Case to search
        session: Database session
        retriever: Hybrid retriever
        q: Query text (required, non-blank)
        top_k: Result count (default 10, capped at 50)
        document_ids: Optional document filter

    Returns:
        Ranked results
    """
    if not q.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Query parameter 'q' is required",
        )

    settings = get_settings()
    limit = min(top_k or settings.search_default_top_k, settings.search_max_top_k)
    doc_filter = _parse_document_ids(document_ids)

    await _require_case(session, case_id)
    return await retriever.search(q, case_id, limit, document_ids=doc_filter)


@router.get("/{case_id}/chunks/count", response_model=ChunkCountResponse)
async def get_chunk_count(
    case_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ChunkCountResponse:
    """Number of indexed chunks of a case."""
    await _require_case(session, case_id)
    return ChunkCountResponse(case_id=case_id, chunk_count=await count_chunks(session, case_id))
