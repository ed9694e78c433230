"""Document retrieval domain models."""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel

DocType = Literal["question_dr", "support", "response_draft", "other"]


class RetrievalResult(BaseModel):
    """Ranked chunk returned by a search. Transient, never persisted."""

    chunk_id: UUID
    content: str
    section_title: str | None = None
    source_filename: str
    source_doc_type: str
    score: float  # engine-specific, not comparable across stages


class IndexedChunk(BaseModel):
    """Chunk payload mirrored into the external search index."""

    chunk_id: UUID
    content: str
    case_id: UUID
    document_id: UUID
    filename: str
    doc_type: str
    section_title: str | None = None
