"""Shared utilities for FastAPI routes."""

from collections.abc import Mapping

from fastapi import HTTPException, status

from orchestrator.errors import ConfirmationError, ContactNotFoundError, OrchestrationError

MAX_PAGE_SIZE = 100
SENSITIVE_HEADERS = {"x-api-key", "authorization"}


def clamp_page_size(page_size):
    """Clamp page_size to prevent oversized listings."""
    if page_size is None:
        return None
    return max(1, min(page_size, MAX_PAGE_SIZE))


def to_http_exception(exc: OrchestrationError) -> HTTPException:
    """Map an orchestration error onto the HTTP status the client should see."""
    if isinstance(exc, ContactNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ConfirmationError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def redact_sensitive_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """
    Redact auth-bearing headers before logging.
    """
    redacted: dict[str, str] = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS and value:
            redacted[key] = "[REDACTED]"
        else:
            redacted[key] = value
    return redacted
