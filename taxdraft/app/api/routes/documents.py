"""Document indexing endpoints - OCR hand-off, reindex, chunk removal."""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taxdraft.app.api.deps import get_semantic_backend
from taxdraft.app.db.chunks import delete_chunks
from taxdraft.app.db.engine import get_session, get_session_factory
from taxdraft.app.db.models import Document
from taxdraft.app.docs.ingest import ReindexScheduler, get_reindex_scheduler, reindex_document
from taxdraft.app.docs.semantic import SemanticSearchBackend

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])


class ExtractedTextRequest(BaseModel):
    """Request body for POST /documents/{document_id}/text."""

    text: str = Field(..., description="Full text extracted from the document")


class ExtractedTextResponse(BaseModel):
    """Response for POST /documents/{document_id}/text."""

    document_id: uuid.UUID
    status: str


class ReindexResponse(BaseModel):
    """Response for POST /documents/{document_id}/reindex."""

    document_id: uuid.UUID
    chunks_created: int


class DeleteChunksResponse(BaseModel):
    """Response for DELETE /documents/{document_id}/chunks."""

    document_id: uuid.UUID
    chunks_deleted: int


async def _require_document(session: AsyncSession, document_id: uuid.UUID) -> Document:
    document = await session.get(Document, document_id)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return document


@router.post(
    "/{document_id}/text",
    response_model=ExtractedTextResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_extracted_text(
    document_id: uuid.UUID,
    request: ExtractedTextRequest,
    session: Annotated[AsyncSession, Depends(get_session)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    scheduler: Annotated[ReindexScheduler, Depends(get_reindex_scheduler)],
) -> ExtractedTextResponse:
    """Store OCR output and reindex the document in the background.

    The response does not wait for chunking; reindex failures are only logged.
    """
    document = await _require_document(session, document_id)
    document.extracted_text = request.text
    await session.commit()

    scheduler.schedule(document_id, session_factory)
    logger.info(f"Scheduled reindex of document {document_id} ({len(request.text)} chars)")

    return ExtractedTextResponse(document_id=document_id, status="accepted")


@router.post("/{document_id}/reindex", response_model=ReindexResponse)
async def reindex(
    document_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_session)],
    semantic: Annotated[SemanticSearchBackend, Depends(get_semantic_backend)],
    scheduler: Annotated[ReindexScheduler, Depends(get_reindex_scheduler)],
) -> ReindexResponse:
    """Re-chunk the stored extracted text now.

    Waits for any background reindex of the same document to finish first.
    """
    document = await _require_document(session, document_id)
    if not document.extracted_text:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Document has no extracted text",
        )

    async with scheduler.lock_for(document_id):
        created = await reindex_document(session, document, semantic=semantic)
    return ReindexResponse(document_id=document_id, chunks_created=created)


@router.delete("/{document_id}/chunks", response_model=DeleteChunksResponse)
async def remove_chunks(
    document_id: uuid.UUID,
    session: Annotated[AsyncSession, Depends(get_session)],
    semantic: Annotated[SemanticSearchBackend, Depends(get_semantic_backend)],
) -> DeleteChunksResponse:
    """Drop a document's chunks (external index notified best-effort)."""
    await _require_document(session, document_id)
    deleted = await delete_chunks(session, document_id, semantic=semantic)
    return DeleteChunksResponse(document_id=document_id, chunks_deleted=deleted)
