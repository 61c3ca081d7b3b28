"""Scrape pass, abort and status endpoints."""

from fastapi import APIRouter, Depends

from orchestrator.core import ScrapeOrchestrator
from server.dependencies import get_api_key, get_orchestrator
from server.schemas.requests import ScrapeRequest
from server.schemas.responses import AbortResponseDTO, ScrapePassDTO, StatusDTO
from utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["Scrape"])


@router.post("/scrape", response_model=ScrapePassDTO)
async def start_scrape(
    request: ScrapeRequest | None = None,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    """
    Run a scrape pass over the given ids, or the current selection.

    When discovery needs an operator decision the pass returns with
    pending_request_id set; fetch it from /v1/confirmations/head.
    """
    ids = request.contact_ids if request else None
    summary = await orchestrator.start_scrape(ids)
    return ScrapePassDTO.from_summary(summary)


@router.post("/scrape/abort", response_model=AbortResponseDTO)
async def abort_scrape(
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    return AbortResponseDTO(aborted=orchestrator.abort_in_flight())


@router.get("/status", response_model=StatusDTO)
async def get_status(
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    """Busy flag, queue size and pending operator notices (notices are drained)."""
    return StatusDTO(
        busy=orchestrator.is_busy,
        queue_size=len(orchestrator.queue),
        in_flight=orchestrator.in_flight_labels,
        selected=len(orchestrator.selection),
        status_filter=orchestrator.status_filter,
        notices=orchestrator.drain_notices(),
    )
