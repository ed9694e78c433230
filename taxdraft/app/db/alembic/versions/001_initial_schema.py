"""Initial schema: cases, rounds, questions, documents, chunks, conversations, settings

Revision ID: 001
Revises:
Create Date: 2026-10-19

On PostgreSQL this also enables pg_trgm and creates the GIN indexes used by
the lexical search stages (french full-text and trigram similarity).
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _is_postgres() -> bool:
    return op.get_bind().dialect.name == "postgresql"


def upgrade() -> None:
    """Create all tables."""
    op.create_table(
        "cases",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("custom_instruction", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    op.create_table(
        "rounds",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "case_id", sa.Uuid(), sa.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("round_number", sa.Integer(), nullable=False),
    )
    op.create_index("idx_rounds_case", "rounds", ["case_id", "round_number"])

    op.create_table(
        "questions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "round_id", sa.Uuid(), sa.ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("question_number", sa.Integer(), nullable=False),
        sa.Column("question_text", sa.Text(), nullable=False),
        sa.Column("response_text", sa.Text(), nullable=True),
    )
    op.create_index("idx_questions_round", "questions", ["round_id", "question_number"])

    op.create_table(
        "documents",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "case_id", sa.Uuid(), sa.ForeignKey("cases.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("filename", sa.String(500), nullable=False),
        sa.Column("doc_type", sa.String(32), nullable=False, server_default="other"),
        sa.Column("extracted_text", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("idx_documents_case", "documents", ["case_id"])

    op.create_table(
        "document_chunks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("case_id", sa.Uuid(), nullable=False),
        sa.Column(
            "document_id",
            sa.Uuid(),
            sa.ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("section_title", sa.String(500), nullable=True),
        sa.Column("start_offset", sa.Integer(), nullable=False),
        sa.Column("end_offset", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("idx_chunks_case", "document_chunks", ["case_id"])
    op.create_index("idx_chunks_document", "document_chunks", ["document_id", "start_offset"])

    op.create_table(
        "conversation_messages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "question_id",
            sa.Uuid(),
            sa.ForeignKey("questions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("model", sa.String(100), nullable=True),
        sa.Column("tokens_in", sa.Integer(), nullable=True),
        sa.Column("tokens_out", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_messages_question_seq", "conversation_messages", ["question_id", "sequence"]
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    if _is_postgres():
        op.execute("CREATE EXTENSION IF NOT EXISTS pg_trgm")
        op.execute(
            "CREATE INDEX idx_chunks_content_fts ON document_chunks "
            "USING GIN (to_tsvector('french', content))"
        )
        op.execute(
            "CREATE INDEX idx_chunks_content_trgm ON document_chunks "
            "USING GIN (content gin_trgm_ops)"
        )


def downgrade() -> None:
    """Drop all tables."""
    if _is_postgres():
        op.execute("DROP INDEX IF EXISTS idx_chunks_content_trgm")
        op.execute("DROP INDEX IF EXISTS idx_chunks_content_fts")

    op.drop_table("settings")
    op.drop_index("idx_messages_question_seq", table_name="conversation_messages")
    op.drop_table("conversation_messages")
    op.drop_index("idx_chunks_document", table_name="document_chunks")
    op.drop_index("idx_chunks_case", table_name="document_chunks")
    op.drop_table("document_chunks")
    op.drop_index("idx_documents_case", table_name="documents")
    op.drop_table("documents")
    op.drop_index("idx_questions_round", table_name="questions")
    op.drop_table("questions")
    op.drop_index("idx_rounds_case", table_name="rounds")
    op.drop_table("rounds")
    op.drop_table("cases")
