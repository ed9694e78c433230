"""Read/write access to questions for the drafting pipeline."""

import uuid
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taxdraft.app.db.models import Case, Question, Round


@dataclass(frozen=True)
class QuestionContext:
    """A question together with the round and case facts the pipeline needs."""

    question_id: uuid.UUID
    question_number: int
    question_text: str
    response_text: str | None
    round_number: int
    case_id: uuid.UUID
    custom_instruction: str | None


@dataclass(frozen=True)
class AnsweredQuestion:
    """Earlier-round question with its response, for history assembly."""

    round_number: int
    question_number: int
    question_text: str
    response_text: str


async def get_question_context(
    session: AsyncSession, question_id: uuid.UUID
) -> QuestionContext | None:
    """Load a question with its round number and case instruction.

    Returns:
        QuestionContext, or None if the question does not exist
    """
    result = await session.execute(
        select(Question, Round.round_number, Case.id, Case.custom_instruction)
        .join(Round, Round.id == Question.round_id)
        .join(Case, Case.id == Round.case_id)
        .where(Question.id == question_id)
    )
    row = result.one_or_none()
    if row is None:
        return None

    question, round_number, case_id, custom_instruction = row
    return QuestionContext(
        question_id=question.id,
        question_number=question.question_number,
        question_text=question.question_text,
        response_text=question.response_text,
        round_number=round_number,
        case_id=case_id,
        custom_instruction=custom_instruction,
    )


async def list_answered_before_round(
    session: AsyncSession, case_id: uuid.UUID, round_number: int
) -> list[AnsweredQuestion]:
    """Answered questions of every earlier round of a case.

    Ordered by round number, then question number. Questions whose response
    is empty or blank are skipped.
    """
    result = await session.execute(
        select(
            Round.round_number,
            Question.question_number,
            Question.question_text,
            Question.response_text,
        )
        .join(Round, Round.id == Question.round_id)
        .where(
            Round.case_id == case_id,
            Round.round_number < round_number,
            Question.response_text.is_not(None),
        )
        .order_by(Round.round_number, Question.question_number)
    )
    return [
        AnsweredQuestion(
            round_number=r_num,
            question_number=q_num,
            question_text=q_text,
            response_text=response,
        )
        for r_num, q_num, q_text, response in result.all()
        if response and response.strip()
    ]


async def set_question_response(
    session: AsyncSession, question_id: uuid.UUID, response_text: str
) -> None:
    """Overwrite a question's response field and commit."""
    await session.execute(
        update(Question).where(Question.id == question_id).values(response_text=response_text)
    )
    await session.commit()
