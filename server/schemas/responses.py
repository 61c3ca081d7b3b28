"""Pydantic response models (DTOs) for FastAPI endpoints."""

from typing import Any

from pydantic import BaseModel, Field


class ErrorDTO(BaseModel):
    code: str
    message: str
    operation: str
    retryable: bool
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_error(cls, error):
        if error is None:
            return None
        return cls(
            code=error.code,
            message=error.message,
            operation=error.operation,
            retryable=error.retryable,
            details=error.details,
        )


class ContactDTO(BaseModel):
    id: int
    upload_id: int
    business_name: str | None = None
    website: str | None = None
    email: str | None = None
    state: str | None = None
    zip_code: str | None = None
    status: str
    error_message: str | None = None
    scrape_method: str | None = None
    scrape_priority: int | None = None
    provisional: bool = False

    @classmethod
    def from_contact(cls, contact):
        return cls(**contact.to_dict())


class ContactPageDTO(BaseModel):
    items: list[ContactDTO]
    total: int
    page: int
    page_size: int
    total_pages: int
    status_filter: str
    search: str | None = None

    @classmethod
    def from_page(cls, page):
        return cls(
            items=[ContactDTO.from_contact(c) for c in page.items],
            total=page.total,
            page=page.page,
            page_size=page.page_size,
            total_pages=page.total_pages,
            status_filter=page.status_filter,
            search=page.search,
        )


class RegistryStatsDTO(BaseModel):
    total: int
    by_status: dict[str, int]
    provisional: int


class ServiceStatsDTO(BaseModel):
    upload_id: int
    stats: dict[str, Any] = Field(default_factory=dict)
    error: ErrorDTO | None = None

    @classmethod
    def from_result(cls, result) -> "ServiceStatsDTO":
        return cls(
            upload_id=result.upload_id,
            stats=result.stats,
            error=ErrorDTO.from_error(result.error),
        )


class RefreshResponseDTO(BaseModel):
    success: bool
    contact_count: int
    error: ErrorDTO | None = None
    upload_id: int | None = None


class SelectionDTO(BaseModel):
    contact_ids: list[int]
    rejected_ids: list[int] = Field(default_factory=list)
    status_filter: str


class ScrapeOutcomeDTO(BaseModel):
    contact_id: int
    success: bool
    url_override: str | None = None
    message: str | None = None
    error: ErrorDTO | None = None
    timestamp: str

    @classmethod
    def from_outcome(cls, outcome):
        return cls(
            contact_id=outcome.contact_id,
            success=outcome.is_success,
            url_override=outcome.url_override,
            message=outcome.message,
            error=ErrorDTO.from_error(outcome.error),
            timestamp=outcome.timestamp,
        )


class ScrapePassDTO(BaseModel):
    pass_id: str
    created_at: str
    selected_ids: list[int]
    outcomes: list[ScrapeOutcomeDTO]
    success_count: int
    error_count: int
    pending_request_id: str | None = None
    deferred_ids: list[int] = Field(default_factory=list)
    uncovered_ids: list[int] = Field(default_factory=list)
    skipped_ids: list[int] = Field(default_factory=list)
    removed_ids: list[int] = Field(default_factory=list)
    rejected_ids: list[int] = Field(default_factory=list)
    refreshed: bool = False

    @classmethod
    def from_summary(cls, summary):
        """Convert ScrapePassSummary to DTO."""
        return cls(
            pass_id=summary.pass_id,
            created_at=summary.created_at.isoformat(),
            selected_ids=list(summary.selected_ids),
            outcomes=[ScrapeOutcomeDTO.from_outcome(o) for o in summary.outcomes],
            success_count=summary.success_count,
            error_count=summary.error_count,
            pending_request_id=summary.pending_request_id,
            deferred_ids=list(summary.deferred_ids),
            uncovered_ids=list(summary.uncovered_ids),
            skipped_ids=list(summary.skipped_ids),
            removed_ids=list(summary.removed_ids),
            rejected_ids=list(summary.rejected_ids),
            refreshed=summary.refreshed,
        )


class ResetOutcomeDTO(BaseModel):
    contact_id: int
    success: bool
    status: str | None = None
    message: str | None = None
    error: ErrorDTO | None = None

    @classmethod
    def from_outcome(cls, outcome):
        return cls(
            contact_id=outcome.contact_id,
            success=outcome.is_success,
            status=outcome.status,
            message=outcome.message,
            error=ErrorDTO.from_error(outcome.error),
        )


class CandidateDTO(BaseModel):
    contact_id: int
    upload_id: int
    business_name: str
    discovered_website: str
    confidence: str
    search_query: str | None = None


class ConfirmationDTO(BaseModel):
    request_id: str
    kind: str
    created_at: str
    # single
    candidate: CandidateDTO | None = None
    # batch
    upload_id: int | None = None
    position: int | None = None
    total: int | None = None
    current: CandidateDTO | None = None
    current_confirmed: bool | None = None
    candidates: list[CandidateDTO] = Field(default_factory=list)
    confirmed_ids: list[int] = Field(default_factory=list)
    removed_ids: list[int] = Field(default_factory=list)
    can_submit: bool | None = None
    can_exit: bool = True

    @classmethod
    def from_request(cls, request):
        return cls(**request.to_dict())


class ConfirmationHeadDTO(BaseModel):
    confirmation: ConfirmationDTO | None = None
    queued: int = 0


class ConfirmationResultDTO(BaseModel):
    """Outcome of a confirmation action: the dialog state or the finished pass."""

    confirmation: ConfirmationDTO | None = None
    scrape_pass: ScrapePassDTO | None = None
    queued: int = 0


class AbortResponseDTO(BaseModel):
    aborted: int


class StatusDTO(BaseModel):
    busy: bool
    queue_size: int
    in_flight: list[str]
    selected: int
    status_filter: str
    notices: list[str]


class HealthResponseDTO(BaseModel):
    status: str
    timestamp: str
    version: str = "1.0.0"
