"""FastAPI application setup."""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..app import Application
from .routes import control, conversation, observability


def create_fastapi_app(application: Application, sim: Any = None) -> FastAPI:
    """Create and configure FastAPI application around a started-on-demand app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        await application.start()
        if sim is not None and hasattr(sim, "on_application_started"):
            await sim.on_application_started(application)
        yield
        # Shutdown
        if sim is not None:
            await sim.stop()
        await application.stop()

    fastapi_app = FastAPI(
        title="Conversation Sync API",
        description="Canonical message view and typing state of one conversation",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Enable CORS
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:5174"],  # Vite default
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    fastapi_app.include_router(conversation.create_conversation_router(application))
    fastapi_app.include_router(observability.create_observability_router(application))
    fastapi_app.include_router(control.create_control_router(application, sim))

    return fastapi_app
