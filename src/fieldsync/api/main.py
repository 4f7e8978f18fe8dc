"""FastAPI application factory."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from sqlmodel import SQLModel

from fieldsync.api.routes import sync as sync_routes
from fieldsync.db.engine import get_engine
from fieldsync.sync.services import SyncServices, build_services


def create_app(services: Optional[SyncServices] = None) -> FastAPI:
    """Build and return the FastAPI app.

    Args:
        services: pre-wired sync services (tests); built from settings on
            startup when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            engine = get_engine()
            # Create tables on startup (idempotent)
            SQLModel.metadata.create_all(engine)
            app.state.services = build_services(engine)
        yield

    app = FastAPI(
        title="Fieldsync API",
        description="Outbound sync queue, workflows and health",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])

    return app


# Module-level app instance for uvicorn
app = create_app()
