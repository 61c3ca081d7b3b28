"""FastAPI dependencies for authentication and orchestrator access."""

import os
import secrets

from fastapi import Header, HTTPException, Request, status

from api.scraping_client import ScrapingServiceClient
from config.config import Config
from orchestrator.core import ScrapeOrchestrator
from server.utils import redact_sensitive_headers
from utils.logger import get_logger

logger = get_logger(__name__)


def configured_api_keys() -> list[str]:
    """Operator keys from the comma-separated API_KEYS variable."""
    return [key.strip() for key in os.getenv("API_KEYS", "").split(",") if key.strip()]


def _key_matches(candidate: str, keys: list[str]) -> bool:
    return any(secrets.compare_digest(candidate.encode(), key.encode()) for key in keys)


async def get_api_key(request: Request, x_api_key: str | None = Header(None)) -> str:
    """Require an X-API-Key header matching one of the configured operator keys."""
    keys = configured_api_keys()
    context = {
        "request_id": getattr(request.state, "request_id", "unknown"),
        "path": request.url.path,
        "headers": redact_sensitive_headers(dict(request.headers)),
    }

    if not keys:
        logger.error("No API_KEYS configured; rejecting request", extra={"extra_fields": context})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API authentication not configured",
        )

    if x_api_key is None or not _key_matches(x_api_key, keys):
        logger.warning("Rejected request with bad API key", extra={"extra_fields": context})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing API key"
        )

    return x_api_key


def get_orchestrator() -> ScrapeOrchestrator:
    """Process-wide orchestrator; the registry and confirmation queue live in it."""
    orchestrator = getattr(get_orchestrator, "_instance", None)
    if orchestrator is None:
        config = Config()
        orchestrator = ScrapeOrchestrator(ScrapingServiceClient(config=config), config=config)
        get_orchestrator._instance = orchestrator
        logger.info(
            "Orchestrator created",
            extra={"extra_fields": {"upload_id": config.UPLOAD_ID, "service": config.get_service_info()}},
        )
    return orchestrator
