"""Chunk store - durable chunks keyed by case and source document."""

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taxdraft.app.db.models import DocumentChunk
from taxdraft.app.docs.chunker import TextChunk
from taxdraft.app.docs.semantic import SemanticSearchBackend, SemanticSearchError

logger = logging.getLogger(__name__)


@dataclass
class ChunkReplacement:
    """Outcome of replace_chunks()."""

    removed_ids: list[uuid.UUID] = field(default_factory=list)
    chunks: list[DocumentChunk] = field(default_factory=list)


async def _chunk_ids(session: AsyncSession, document_id: uuid.UUID) -> list[uuid.UUID]:
    result = await session.execute(
        select(DocumentChunk.id).where(DocumentChunk.document_id == document_id)
    )
    return list(result.scalars().all())


async def forget_external(
    semantic: SemanticSearchBackend | None, chunk_ids: Sequence[uuid.UUID]
) -> None:
    """Best-effort removal of chunk ids from the external index."""
    if semantic is None or not chunk_ids or not semantic.is_configured():
        return

    try:
        await semantic.delete_chunks(chunk_ids)
    except SemanticSearchError as e:
        logger.warning(f"Failed to remove {len(chunk_ids)} chunks from external index: {e}")


async def replace_chunks(
    session: AsyncSession,
    document_id: uuid.UUID,
    case_id: uuid.UUID,
    chunks: Sequence[TextChunk],
    semantic: SemanticSearchBackend | None = None,
) -> ChunkReplacement:
    """Swap the chunk set of a document in one transaction.

    Old rows are deleted and new rows inserted before a single commit, so
    readers see either the old set or the new one. The external index is
    then told to drop the old ids (best-effort).

    Args:
        session: Database session
        document_id: Source document
        case_id: Owning case
        chunks: New chunks, in document order
        semantic: Optional external backend to notify

    Returns:
        Removed chunk ids and the inserted rows
    """
    try:
        removed_ids = await _chunk_ids(session, document_id)
        await session.execute(delete(DocumentChunk).where(DocumentChunk.document_id == document_id))

        now = datetime.now(UTC)
        rows = [
            DocumentChunk(
                id=uuid.uuid4(),
                case_id=case_id,
                document_id=document_id,
                content=chunk.content,
                section_title=None,
                start_offset=chunk.start,
                end_offset=chunk.end,
                created_at=now,
            )
            for chunk in chunks
        ]
        session.add_all(rows)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    await forget_external(semantic, removed_ids)

    logger.info(
        f"Replaced chunks of document {document_id}: "
        f"{len(removed_ids)} removed, {len(rows)} created"
    )
    return ChunkReplacement(removed_ids=removed_ids, chunks=rows)


async def delete_chunks(
    session: AsyncSession,
    document_id: uuid.UUID,
    semantic: SemanticSearchBackend | None = None,
) -> int:
    """Delete every chunk of a document.

    Returns:
        Number of chunks removed
    """
    removed_ids = await _chunk_ids(session, document_id)
    await session.execute(delete(DocumentChunk).where(DocumentChunk.document_id == document_id))
    await session.commit()

    await forget_external(semantic, removed_ids)
    return len(removed_ids)


async def count_chunks(session: AsyncSession, case_id: uuid.UUID) -> int:
    """Number of chunks stored for a case."""
    result = await session.execute(
        select(func.count()).select_from(DocumentChunk).where(DocumentChunk.case_id == case_id)
    )
    return int(result.scalar_one())


async def list_chunks(session: AsyncSession, document_id: uuid.UUID) -> list[DocumentChunk]:
    """Chunks of a document in text order."""
    result = await session.execute(
        select(DocumentChunk)
        .where(DocumentChunk.document_id == document_id)
        .order_by(DocumentChunk.start_offset, DocumentChunk.id)
    )
    return list(result.scalars().all())
