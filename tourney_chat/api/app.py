"""FastAPI gateway over the chat core."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..app import Application
from ..logging_config import get_logger
from .routes import chat, control, diagnostics

logger = get_logger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:5174"

# Process-wide application used when none is passed in
_app: Application | None = None


def get_app() -> Application:
    """Get (lazily creating) the process-wide application."""
    global _app
    if _app is None:
        _app = Application()
    return _app


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_fastapi_app(application: Application | None = None) -> FastAPI:
    """Build the gateway. The application starts and stops with the server."""
    application = application or get_app()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await application.start()
        try:
            yield
        finally:
            sim = control.get_sim_instance()
            if sim is not None:
                await sim.stop()
            await application.stop()
            logger.info("Chat gateway stopped")

    fastapi_app = FastAPI(
        title="Tournament Chat API",
        description="Realtime tournament chat sessions over the BaaS backend",
        version="0.1.0",
        lifespan=lifespan,
    )
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @fastapi_app.get("/api/health", tags=["diagnostics"])
    async def health() -> dict:
        """Liveness plus the configured backend kind."""
        return {
            "status": "ok",
            "backend": application.settings.backend,
            "sessions": len(application.sessions),
        }

    fastapi_app.include_router(chat.create_chat_router(application))
    fastapi_app.include_router(control.create_control_router(application))
    fastapi_app.include_router(diagnostics.create_diagnostics_router(application))
    return fastapi_app
