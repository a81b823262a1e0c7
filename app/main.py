"""FastAPI application entrypoint."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.api.v1.router import api_router
from app.api.v1.billing import webhook_router
from app.services.session_service import AvatarSession

logger = logging.getLogger(__name__)


def create_app(session: Optional[AvatarSession] = None) -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup/shutdown lifecycle."""
        logger.info("Starting %s (env=%s)", settings.app_name, settings.environment)
        app.state.session = session or AvatarSession(settings)
        await app.state.session.start()
        yield
        logger.info("Shutting down %s", settings.app_name)
        await app.state.session.stop()

    app = FastAPI(
        title=settings.app_name,
        description="Video generation jobs, credit ledger and store reconciliation for Avatar.IA",
        version="0.1.0",
        openapi_url=f"{settings.api_v1_prefix}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix=settings.api_v1_prefix)
    app.include_router(webhook_router)  # POST /webhooks/stripe (no auth)
    return app


app = create_app()
