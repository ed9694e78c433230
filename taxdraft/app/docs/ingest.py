"""Document indexing - chunk extracted text, persist, mirror to the search index."""

import asyncio
import logging
import uuid
import weakref

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taxdraft.app.config import Settings, get_settings, load_runtime_config
from taxdraft.app.db.chunks import replace_chunks
from taxdraft.app.db.models import Document
from taxdraft.app.db.sql_repositories import SqlSettingsStore
from taxdraft.app.docs.chunker import chunk_text
from taxdraft.app.docs.semantic import (
    SemanticSearchBackend,
    SemanticSearchError,
    semantic_backend_from_config,
)
from taxdraft.app.models.docs import IndexedChunk

logger = logging.getLogger(__name__)


async def reindex_document(
    session: AsyncSession,
    document: Document,
    *,
    text: str | None = None,
    semantic: SemanticSearchBackend | None = None,
    settings: Settings | None = None,
) -> int:
    """Re-chunk a document and replace its stored chunks.

    The chunk swap is transactional; syncing the external index afterwards
    is best-effort. An empty chunking result still removes the old chunks.

    Args:
        session: Database session
        document: Document to process
        text: Extracted text (defaults to document.extracted_text)
        semantic: Optional external backend to mirror chunks into
        settings: Chunking parameters (defaults to get_settings())

    Returns:
        Number of chunks created
    """
    settings = settings or get_settings()
    source = document.extracted_text if text is None else text

    chunks = chunk_text(
        source or "",
        max_chars=settings.chunk_max_chars,
        overlap=settings.chunk_overlap,
        min_chars=settings.chunk_min_chars,
    )
    if not chunks:
        logger.warning(f"No chunks produced for document {document.id} ({document.filename})")

    replacement = await replace_chunks(
        session, document.id, document.case_id, chunks, semantic=semantic
    )

    if semantic is not None and semantic.is_configured() and replacement.chunks:
        indexed = [
            IndexedChunk(
                chunk_id=row.id,
                content=row.content,
                case_id=row.case_id,
                document_id=row.document_id,
                filename=document.filename,
                doc_type=document.doc_type,
                section_title=row.section_title,
            )
            for row in replacement.chunks
        ]
        try:
            await semantic.index_chunks(indexed)
        except SemanticSearchError as e:
            logger.warning(f"Failed to index chunks of document {document.id} externally: {e}")

    return len(replacement.chunks)


class ReindexScheduler:
    """Fire-and-forget reindexing with bounded concurrency.

    Tasks are kept referenced until done so they are not garbage collected
    mid-flight; failures are logged and never reach the caller. Reindexes
    of the same document never overlap, whether scheduled here or run
    inline under lock_for().
    """

    def __init__(self, max_concurrency: int = 2) -> None:
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: set[asyncio.Task[None]] = set()
        # Entries disappear once no task holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, document_id: uuid.UUID) -> asyncio.Lock:
        """Lock serializing reindexes of one document."""
        lock = self._locks.get(document_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[document_id] = lock
        return lock

    def schedule(
        self,
        document_id: uuid.UUID,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> asyncio.Task[None]:
        """Start reindexing a document in the background."""
        task = asyncio.create_task(self._run(document_id, session_factory))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled task (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(
        self,
        document_id: uuid.UUID,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with self.lock_for(document_id), self._semaphore:
            async with session_factory() as session:
                try:
                    document = await session.get(Document, document_id)
                    if document is None:
                        logger.warning(f"Reindex skipped: document {document_id} not found")
                        return

                    config = await load_runtime_config(SqlSettingsStore(session))
                    created = await reindex_document(
                        session, document, semantic=semantic_backend_from_config(config)
                    )
                    logger.info(f"Background reindex of document {document_id}: {created} chunks")
                except Exception as e:
                    logger.warning(
                        f"Background reindex of document {document_id} failed: {e}",
                        exc_info=True,
                    )


_scheduler: ReindexScheduler | None = None


def get_reindex_scheduler() -> ReindexScheduler:
    """Process-wide scheduler (FastAPI dependency)."""
    global _scheduler
    if _scheduler is None:
        _scheduler = ReindexScheduler(get_settings().reindex_max_concurrency)
    return _scheduler
