"""FastAPI application factory."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.config import Config
from server.dependencies import get_orchestrator
from server.middleware import RequestIDMiddleware
from server.routes import confirmations, contacts, health, scrape
from utils.logger import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup/shutdown logic."""
    logger.info("FastAPI server starting up")

    required_keys = ["API_KEYS", "SCRAPING_API_URL"]
    missing = [k for k in required_keys if not os.getenv(k)]
    if missing:
        logger.warning(f"Missing environment variables: {missing}")

    config = Config()
    if config.validate():
        logger.info(config.get_service_info())
    else:
        logger.error(
            "Invalid scraping service configuration",
            extra={"extra_fields": {"service": config.get_service_info()}},
        )
    if config.UPLOAD_ID is None:
        logger.warning("UPLOAD_ID not set; select an upload with PUT /v1/contacts/upload")

    yield

    logger.info("FastAPI server shutting down")
    if hasattr(get_orchestrator, "_instance"):
        await get_orchestrator._instance.aclose()


def create_app() -> FastAPI:
    """Factory function to create FastAPI application."""
    app = FastAPI(
        title="Contact Scrape Orchestrator API",
        description="Discovery, confirmation and scraping workflow for uploaded contacts",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(RequestIDMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(contacts.router)
    app.include_router(scrape.router)
    app.include_router(confirmations.router)

    return app
