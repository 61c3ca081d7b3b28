"""Pydantic request models for FastAPI endpoints."""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from models.scrape_status import ScrapeStatus, classify_status
from orchestrator.contact_registry import ALL_STATUSES


class SelectionRequest(BaseModel):
    contact_ids: List[int] = Field(..., min_length=1)


class FilterRequest(BaseModel):
    status: str = ALL_STATUSES

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        if value == ALL_STATUSES:
            return value
        status = classify_status(value)
        if status == ScrapeStatus.UNKNOWN:
            raise ValueError(f"unknown status filter '{value}'")
        return status.value


class ScrapeRequest(BaseModel):
    # None scrapes the current selection
    contact_ids: Optional[List[int]] = None


class RetryFailedRequest(BaseModel):
    # None retries every scrape_failed contact in the registry
    contact_ids: Optional[List[int]] = None


class UploadRequest(BaseModel):
    upload_id: int = Field(..., ge=1)
