"""Repository for conversation message operations.

Messages are append-only per question and ordered by a per-question
sequence number; the only removal is clearing a whole conversation.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taxdraft.app.db.models import ConversationMessage
from taxdraft.app.models.chat import Role, StoredMessage


def _to_stored(message: ConversationMessage) -> StoredMessage:
    return StoredMessage(
        id=message.id,
        question_id=message.question_id,
        role=message.role,  # type: ignore[arg-type]
        content=message.content,
        model=message.model,
        tokens_in=message.tokens_in,
        tokens_out=message.tokens_out,
        created_at=message.created_at,
    )


async def get_messages(session: AsyncSession, question_id: uuid.UUID) -> list[StoredMessage]:
    """List a question's messages, oldest first.

    Args:
        session: Database session
        question_id: Question ID

    Returns:
        Messages ordered by sequence
    """
    result = await session.execute(
        select(ConversationMessage)
        .where(ConversationMessage.question_id == question_id)
        .order_by(ConversationMessage.sequence)
    )
    return [_to_stored(m) for m in result.scalars().all()]


async def append_message(
    session: AsyncSession,
    question_id: uuid.UUID,
    role: Role,
    content: str,
    model: str | None = None,
    tokens_in: int | None = None,
    tokens_out: int | None = None,
) -> StoredMessage:
    """Append a message at the end of a question's conversation and commit.

    Args:
        session: Database session
        question_id: Question ID
        role: system, user or assistant
        content: Message text
        model: Model id (user and assistant messages)
        tokens_in: Prompt tokens (assistant messages)
        tokens_out: Completion tokens (assistant messages)

    Returns:
        The persisted message
    """
    result = await session.execute(
        select(func.max(ConversationMessage.sequence)).where(
            ConversationMessage.question_id == question_id
        )
    )
    last_sequence = result.scalar_one_or_none()

    message = ConversationMessage(
        id=uuid.uuid4(),
        question_id=question_id,
        sequence=0 if last_sequence is None else last_sequence + 1,
        role=role,
        content=content,
        model=model,
        tokens_in=tokens_in,
        tokens_out=tokens_out,
        created_at=datetime.now(UTC),
    )
    session.add(message)
    await session.commit()
    return _to_stored(message)


async def clear_messages(session: AsyncSession, question_id: uuid.UUID) -> int:
    """Delete every message of a question.

    Returns:
        Number of messages removed
    """
    result = await session.execute(
        delete(ConversationMessage).where(ConversationMessage.question_id == question_id)
    )
    await session.commit()
    return result.rowcount or 0
