"""FastAPI application."""

from fastapi import FastAPI

from taxdraft.app.api.routes.chat import router as chat_router
from taxdraft.app.api.routes.documents import router as documents_router
from taxdraft.app.api.routes.health import router as health_router
from taxdraft.app.api.routes.metrics import router as metrics_router
from taxdraft.app.api.routes.search import router as search_router

app = FastAPI(title="Tax Draft API", version="0.1.0")

# Register routes
app.include_router(health_router, tags=["health"])
app.include_router(metrics_router, tags=["metrics"])
app.include_router(chat_router, tags=["chat"])
app.include_router(search_router)
app.include_router(documents_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Tax Draft API", "version": "0.1.0"}
