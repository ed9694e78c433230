"""Request-scoped dependencies shared by the routers."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from taxdraft.app.config import RuntimeConfig, load_runtime_config
from taxdraft.app.db.engine import get_session
from taxdraft.app.db.sql_repositories import SqlSettingsStore
from taxdraft.app.docs.retriever import HybridRetriever
from taxdraft.app.docs.semantic import SemanticSearchBackend, semantic_backend_from_config


async def get_runtime_config(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> RuntimeConfig:
    """Resolve credentials and instructions for this request.

    Reloaded on every request so updated settings apply without a restart.
    """
    return await load_runtime_config(SqlSettingsStore(session))


def get_semantic_backend(
    config: Annotated[RuntimeConfig, Depends(get_runtime_config)],
) -> SemanticSearchBackend:
    """External semantic backend for this request (null backend if unset)."""
    return semantic_backend_from_config(config)


def get_retriever(
    session: Annotated[AsyncSession, Depends(get_session)],
    semantic: Annotated[SemanticSearchBackend, Depends(get_semantic_backend)],
) -> HybridRetriever:
    """Hybrid retriever bound to the request's session."""
    return HybridRetriever(session, semantic=semantic)
