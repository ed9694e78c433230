"""Context assembler - builds the system prompt of a question's conversation.

Sections, in order, separated by a blank line and omitted when empty:
base instruction, earlier-round history, current question, document excerpts.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from taxdraft.app.config import RuntimeConfig, Settings, get_settings
from taxdraft.app.db.questions import (
    AnsweredQuestion,
    QuestionContext,
    list_answered_before_round,
)
from taxdraft.app.docs.retriever import HybridRetriever
from taxdraft.app.models.chat import ChatOptions
from taxdraft.app.models.docs import RetrievalResult

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "\n\n"
BLOCK_SEPARATOR = "\n\n---\n\n"
TRUNCATION_MARKER = "\n[...]"

HISTORY_HEADER = "HISTORIQUE DES TOURS PRÉCÉDENTS (questions et réponses déjà traitées):"
EXCERPTS_HEADER = (
    "EXTRAITS DE DOCUMENTS DE RÉFÉRENCE (utilisez-les pour enrichir votre réponse):"
)
EXCERPTS_INSTRUCTION = (
    "IMPORTANT: Inspirez-vous de ces extraits pour structurer et enrichir votre réponse, "
    "mais ne les copiez pas verbatim."
)


def effective_base_instruction(
    question: QuestionContext,
    config: RuntimeConfig,
    override: str | None = None,
) -> str:
    """Base instruction: per-call override > case instruction > global default."""
    for candidate in (override, question.custom_instruction, config.default_system_prompt):
        if candidate and candidate.strip():
            return candidate.strip()
    return ""


def format_history(answered: list[AnsweredQuestion]) -> str:
    """Render earlier-round answers as labeled blocks under a header."""
    if not answered:
        return ""

    blocks = [
        f"[Tour {a.round_number} — Q{a.question_number}]\n"
        f"Question: {a.question_text}\n"
        f"Réponse: {a.response_text}"
        for a in answered
    ]
    return f"{HISTORY_HEADER}\n\n{BLOCK_SEPARATOR.join(blocks)}"


def format_question(question: QuestionContext) -> str:
    return (
        f"---\nQUESTION DU CONTRÔLEUR (Question {question.question_number}):\n"
        f"{question.question_text}"
    )


def format_excerpts(results: list[RetrievalResult], max_chars: int = 800) -> str:
    """Render retrieved chunks with their source, truncated to max_chars."""
    if not results:
        return ""

    excerpts = []
    for r in results:
        content = r.content
        if len(content) > max_chars:
            content = content[:max_chars] + TRUNCATION_MARKER
        excerpts.append(f"[Source: {r.source_filename}]\n{content}")

    return (
        f"{EXCERPTS_HEADER}\n\n{BLOCK_SEPARATOR.join(excerpts)}"
        f"\n\n{EXCERPTS_INSTRUCTION}"
    )


async def build_system_prompt(
    session: AsyncSession,
    question: QuestionContext,
    options: ChatOptions,
    retriever: HybridRetriever,
    config: RuntimeConfig,
    settings: Settings | None = None,
) -> str:
    """Assemble the full system prompt for a question's first turn.

    Args:
        session: Database session
        question: Question with its round and case facts
        options: Per-turn chat options
        retriever: Retriever scoped to the request
        config: Runtime configuration (global default instruction)
        settings: Static settings (excerpt count and size)

    Returns:
        The prompt; may be empty if every section is empty
    """
    settings = settings or get_settings()
    parts: list[str] = []

    base = effective_base_instruction(question, config, options.system_prompt_override)
    if base:
        parts.append(base)

    if question.round_number > 1:
        answered = await list_answered_before_round(
            session, question.case_id, question.round_number
        )
        history = format_history(answered)
        if history:
            parts.append(history)
            logger.info(
                f"Injected {len(answered)} earlier answer(s) for round {question.round_number}"
            )

    parts.append(format_question(question))

    if options.include_documents or options.document_ids:
        results = await retriever.search(
            question.question_text,
            question.case_id,
            settings.context_top_k,
            document_ids=options.document_ids or None,
        )
        excerpts = format_excerpts(results, settings.excerpt_max_chars)
        if excerpts:
            parts.append(excerpts)
            logger.info(
                f"Injected {len(results)} excerpt(s) for question {question.question_number}"
            )

    return SECTION_SEPARATOR.join(parts)
