"""Local lexical search: full-text stage and trigram similarity stage.

Two engines share one contract. PostgreSQL runs both stages in SQL
(french tsvector + pg_trgm); other databases (SQLite in tests and local
development) load the case's chunks and score them in Python with the same
tokenization and the pg_trgm similarity definition.
"""

import logging
import math
import re
from collections.abc import Collection
from typing import Protocol
from uuid import UUID

from sqlalchemy import Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taxdraft.app.db.models import Document, DocumentChunk
from taxdraft.app.models.docs import RetrievalResult

logger = logging.getLogger(__name__)

# Letters (incl. Latin-1 accented), digits
_NON_WORD = re.compile(r"[^a-zA-ZÀ-ÿ0-9]")
_WORD = re.compile(r"[a-zA-ZÀ-ÿ0-9]+")

FTS_CONFIG = "french"


def tokenize_query(query: str) -> list[str]:
    """Turn a free-text query into full-text search terms.

    Tokens of length <= 2 are discarded before non-alphanumeric characters
    are stripped; tokens left empty are dropped.
    """
    tokens = []
    for raw in query.split():
        if len(raw) <= 2:
            continue
        token = _NON_WORD.sub("", raw)
        if token:
            tokens.append(token)
    return tokens


def build_tsquery(tokens: list[str]) -> str:
    """OR the tokens together as a to_tsquery expression."""
    return " | ".join(tokens)


def trigrams(text: str) -> set[str]:
    """Word trigrams as computed by pg_trgm.

    Each lower-cased word is padded with two spaces in front and one
    behind before being cut into 3-character windows.
    """
    result: set[str] = set()
    for word in _WORD.findall(text.lower()):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            result.add(padded[i : i + 3])
    return result


def trigram_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the trigram sets of a and b (0.0 - 1.0)."""
    ta = trigrams(a)
    tb = trigrams(b)
    if not ta or not tb:
        return 0.0
    return len(ta & tb) / len(ta | tb)


def fulltext_score(tokens: list[str], content: str) -> float:
    """Relevance of content for OR-ed tokens.

    A token hits a word it prefixes (a cheap stand-in for stemming). Each
    matched token contributes up to 1.0, saturating with repeated hits, so
    covering more distinct tokens always ranks higher.
    """
    words = _WORD.findall(content.lower())
    if not words:
        return 0.0

    score = 0.0
    for token in {t.lower() for t in tokens}:
        hits = sum(1 for word in words if word.startswith(token))
        if hits:
            score += 1.0 - 1.0 / (1.0 + hits)
    return score


class LexicalSearch(Protocol):
    """Local search engine used by the hybrid retriever."""

    async def fulltext(
        self,
        session: AsyncSession,
        *,
        tokens: list[str],
        case_id: UUID,
        limit: int,
        document_ids: Collection[UUID] | None = None,
    ) -> list[RetrievalResult]:
        """Primary stage: relevance-ranked full-text matches, best first."""
        ...

    async def similar(
        self,
        session: AsyncSession,
        *,
        query: str,
        case_id: UUID,
        limit: int,
        min_similarity: float,
        exclude_ids: Collection[UUID] = (),
        document_ids: Collection[UUID] | None = None,
    ) -> list[RetrievalResult]:
        """Fallback stage: fuzzy similarity above a threshold, best first."""
        ...


def _base_query(case_id: UUID, document_ids: Collection[UUID] | None) -> Select:
    stmt = (
        select(DocumentChunk, Document.filename, Document.doc_type)
        .join(Document, Document.id == DocumentChunk.document_id)
        .where(DocumentChunk.case_id == case_id)
    )
    if document_ids:
        stmt = stmt.where(DocumentChunk.document_id.in_(list(document_ids)))
    return stmt


class PythonLexicalSearch:
    """Portable engine: loads the case's chunks and scores them in Python."""

    async def _load(
        self,
        session: AsyncSession,
        case_id: UUID,
        document_ids: Collection[UUID] | None,
    ) -> list[tuple[DocumentChunk, str, str]]:
        # Stable order so equal scores always rank the same way
        stmt = _base_query(case_id, document_ids).order_by(
            DocumentChunk.document_id, DocumentChunk.start_offset, DocumentChunk.id
        )
        result = await session.execute(stmt)
        return [(row[0], row[1], row[2]) for row in result.all()]

    async def fulltext(
        self,
        session: AsyncSession,
        *,
        tokens: list[str],
        case_id: UUID,
        limit: int,
        document_ids: Collection[UUID] | None = None,
    ) -> list[RetrievalResult]:
        """Score every chunk of the case against the tokens."""
        if not tokens or limit <= 0:
            return []

        scored: list[tuple[float, int, RetrievalResult]] = []
        for position, (chunk, filename, doc_type) in enumerate(
            await self._load(session, case_id, document_ids)
        ):
            score = fulltext_score(tokens, chunk.content)
            if score > 0:
                scored.append((score, position, _to_result(chunk, filename, doc_type, score)))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [result for _, _, result in scored[:limit]]

    async def similar(
        self,
        session: AsyncSession,
        *,
        query: str,
        case_id: UUID,
        limit: int,
        min_similarity: float,
        exclude_ids: Collection[UUID] = (),
        document_ids: Collection[UUID] | None = None,
    ) -> list[RetrievalResult]:
        """Rank chunks by trigram similarity with the raw query."""
        if limit <= 0:
            return []

        excluded = set(exclude_ids)
        scored: list[tuple[float, int, RetrievalResult]] = []
        for position, (chunk, filename, doc_type) in enumerate(
            await self._load(session, case_id, document_ids)
        ):
            if chunk.id in excluded:
                continue
            score = trigram_similarity(chunk.content, query)
            if score > min_similarity:
                scored.append((score, position, _to_result(chunk, filename, doc_type, score)))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [result for _, _, result in scored[:limit]]


class PostgresLexicalSearch:
    """PostgreSQL engine: french full-text search and pg_trgm similarity."""

    async def fulltext(
        self,
        session: AsyncSession,
        *,
        tokens: list[str],
        case_id: UUID,
        limit: int,
        document_ids: Collection[UUID] | None = None,
    ) -> list[RetrievalResult]:
        """ts_rank_cd-ranked matches of the OR-ed tsquery."""
        if not tokens or limit <= 0:
            return []

        tsvector = func.to_tsvector(FTS_CONFIG, DocumentChunk.content)
        tsquery = func.to_tsquery(FTS_CONFIG, build_tsquery(tokens))
        score = func.ts_rank_cd(tsvector, tsquery).label("score")

        stmt = (
            _base_query(case_id, document_ids)
            .add_columns(score)
            .where(tsvector.op("@@")(tsquery))
            .order_by(score.desc(), DocumentChunk.id)
            .limit(limit)
        )
        result = await session.execute(stmt)
        return [
            _to_result(chunk, filename, doc_type, float(rank or 0.0))
            for chunk, filename, doc_type, rank in result.all()
        ]

    async def similar(
        self,
        session: AsyncSession,
        *,
        query: str,
        case_id: UUID,
        limit: int,
        min_similarity: float,
        exclude_ids: Collection[UUID] = (),
        document_ids: Collection[UUID] | None = None,
    ) -> list[RetrievalResult]:
        """pg_trgm similarity matches; empty if the extension is unavailable."""
        if limit <= 0:
            return []

        similarity = func.similarity(DocumentChunk.content, query).label("score")
        stmt = (
            _base_query(case_id, document_ids)
            .add_columns(similarity)
            .where(func.similarity(DocumentChunk.content, query) > min_similarity)
            .order_by(similarity.desc(), DocumentChunk.id)
            .limit(limit)
        )
        if exclude_ids:
            stmt = stmt.where(DocumentChunk.id.not_in(list(exclude_ids)))

        try:
            # Savepoint keeps the outer transaction usable if pg_trgm is missing
            async with session.begin_nested():
                result = await session.execute(stmt)
                rows = result.all()
        except SQLAlchemyError as e:
            logger.warning(f"Trigram search failed (pg_trgm may not be available): {e}")
            return []

        return [
            _to_result(chunk, filename, doc_type, float(score or 0.0))
            for chunk, filename, doc_type, score in rows
        ]


def _to_result(chunk: DocumentChunk, filename: str, doc_type: str, score: float) -> RetrievalResult:
    return RetrievalResult(
        chunk_id=chunk.id,
        content=chunk.content,
        section_title=chunk.section_title,
        source_filename=filename,
        source_doc_type=doc_type,
        score=score if math.isfinite(score) else 0.0,
    )


def lexical_search_for(session: AsyncSession) -> LexicalSearch:
    """Pick the engine matching the session's database dialect."""
    if session.get_bind().dialect.name == "postgresql":
        return PostgresLexicalSearch()
    return PythonLexicalSearch()
