"""Contact listing, selection and retry endpoints."""

from fastapi import APIRouter, Depends, Query

from orchestrator.core import ScrapeOrchestrator
from orchestrator.errors import OrchestrationError
from server.dependencies import get_api_key, get_orchestrator
from server.schemas.requests import (
    FilterRequest,
    RetryFailedRequest,
    SelectionRequest,
    UploadRequest,
)
from server.schemas.responses import (
    ContactPageDTO,
    ErrorDTO,
    RefreshResponseDTO,
    RegistryStatsDTO,
    ResetOutcomeDTO,
    SelectionDTO,
    ServiceStatsDTO,
)
from server.utils import clamp_page_size, to_http_exception
from utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["Contacts"])


def _refresh_dto(orchestrator: ScrapeOrchestrator, snapshot) -> RefreshResponseDTO:
    return RefreshResponseDTO(
        success=snapshot.is_success,
        contact_count=len(orchestrator.registry),
        error=ErrorDTO.from_error(snapshot.error),
        upload_id=orchestrator.registry.upload_id,
    )


def _selection_dto(orchestrator: ScrapeOrchestrator, rejected: list[int] | None = None) -> SelectionDTO:
    return SelectionDTO(
        contact_ids=orchestrator.selection.ids(),
        rejected_ids=rejected or [],
        status_filter=orchestrator.status_filter,
    )


@router.get("/contacts", response_model=ContactPageDTO)
async def list_contacts(
    status: str | None = Query(None),
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1),
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    """Filtered, searchable page of the contact registry."""
    view = orchestrator.registry.view(
        status_filter=status or orchestrator.status_filter,
        search=search,
        page=page,
        page_size=clamp_page_size(page_size) or orchestrator.config.DEFAULT_PAGE_SIZE,
    )
    return ContactPageDTO.from_page(view)


@router.post("/contacts/refresh", response_model=RefreshResponseDTO)
async def refresh_contacts(
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    snapshot = await orchestrator.refresh()
    return _refresh_dto(orchestrator, snapshot)


@router.put("/contacts/upload", response_model=RefreshResponseDTO)
async def select_upload(
    request: UploadRequest,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    """Track another upload cohort; drops the selection and pending confirmations."""
    snapshot = await orchestrator.select_upload(request.upload_id)
    return _refresh_dto(orchestrator, snapshot)


@router.get("/contacts/stats", response_model=RegistryStatsDTO)
async def contact_stats(
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    stats = orchestrator.registry.stats()
    return RegistryStatsDTO(total=stats.total, by_status=stats.by_status, provisional=stats.provisional)


@router.get("/contacts/stats/service", response_model=list[ServiceStatsDTO])
async def service_stats(
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    """Counts as the scraping service reports them, one entry per tracked upload."""
    results = await orchestrator.service_stats()
    return [ServiceStatsDTO.from_result(r) for r in results]


@router.post("/contacts/retry-failed", response_model=list[ResetOutcomeDTO])
async def retry_failed(
    request: RetryFailedRequest | None = None,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    """Reset failed contacts so they can be selected again."""
    ids = request.contact_ids if request else None
    outcomes = await orchestrator.retry_failed(ids)
    return [ResetOutcomeDTO.from_outcome(o) for o in outcomes]


@router.post("/contacts/{contact_id}/retry", response_model=ResetOutcomeDTO)
async def retry_contact(
    contact_id: int,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    try:
        outcome = await orchestrator.retry(contact_id)
    except OrchestrationError as e:
        raise to_http_exception(e)
    return ResetOutcomeDTO.from_outcome(outcome)


# ---------- selection ----------


@router.get("/selection", response_model=SelectionDTO)
async def get_selection(
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    return _selection_dto(orchestrator)


@router.post("/selection", response_model=SelectionDTO)
async def select_contacts(
    request: SelectionRequest,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    """Add contacts to the selection; ineligible ids come back as rejected."""
    rejected = orchestrator.selection.select_all(request.contact_ids)
    return _selection_dto(orchestrator, rejected)


@router.delete("/selection/{contact_id}", response_model=SelectionDTO)
async def deselect_contact(
    contact_id: int,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    orchestrator.selection.deselect(contact_id)
    return _selection_dto(orchestrator)


@router.delete("/selection", response_model=SelectionDTO)
async def clear_selection(
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    orchestrator.selection.clear_all()
    return _selection_dto(orchestrator)


@router.put("/selection/filter", response_model=SelectionDTO)
async def change_filter(
    request: FilterRequest,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    """Switch the view filter; this clears the selection."""
    orchestrator.set_filter(request.status)
    return _selection_dto(orchestrator)
