"""Website confirmation endpoints. Only the head of the queue can be acted on."""

from fastapi import APIRouter, Depends

from orchestrator.confirmation import SingleConfirmation
from orchestrator.core import ScrapeOrchestrator
from orchestrator.errors import OrchestrationError
from server.dependencies import get_api_key, get_orchestrator
from server.schemas.responses import (
    ConfirmationDTO,
    ConfirmationHeadDTO,
    ConfirmationResultDTO,
    ScrapePassDTO,
)
from server.utils import to_http_exception
from utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/confirmations", tags=["Confirmations"])


def _head(orchestrator: ScrapeOrchestrator) -> ConfirmationDTO | None:
    request = orchestrator.active_confirmation()
    return ConfirmationDTO.from_request(request) if request else None


def _finished(orchestrator: ScrapeOrchestrator, summary) -> ConfirmationResultDTO:
    """Pass result plus whatever dialog is next in line."""
    return ConfirmationResultDTO(
        confirmation=_head(orchestrator),
        scrape_pass=ScrapePassDTO.from_summary(summary),
        queued=len(orchestrator.queue),
    )


def _batch_step(orchestrator: ScrapeOrchestrator, request_id: str, action: str) -> ConfirmationResultDTO:
    try:
        request = orchestrator.batch_action(request_id, action)
    except OrchestrationError as e:
        raise to_http_exception(e)
    return ConfirmationResultDTO(
        confirmation=ConfirmationDTO.from_request(request),
        queued=len(orchestrator.queue),
    )


@router.get("/head", response_model=ConfirmationHeadDTO)
async def get_head(
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    """The one dialog the UI should be showing, if any."""
    return ConfirmationHeadDTO(confirmation=_head(orchestrator), queued=len(orchestrator.queue))


@router.post("/{request_id}/confirm", response_model=ConfirmationResultDTO)
async def confirm(
    request_id: str,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    """
    Confirm the discovered website.

    A single request scrapes immediately; in a batch this marks the current
    candidate and advances.
    """
    if isinstance(orchestrator.queue.get(request_id), SingleConfirmation):
        try:
            summary = await orchestrator.resolve_single(request_id, confirm=True)
        except OrchestrationError as e:
            raise to_http_exception(e)
        return _finished(orchestrator, summary)
    return _batch_step(orchestrator, request_id, "confirm")


@router.post("/{request_id}/cancel", response_model=ConfirmationResultDTO)
async def cancel(
    request_id: str,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    """Close the dialog; nothing it covers is scraped."""
    try:
        if isinstance(orchestrator.queue.get(request_id), SingleConfirmation):
            summary = await orchestrator.resolve_single(request_id, confirm=False)
        else:
            summary = orchestrator.cancel_confirmation(request_id)
    except OrchestrationError as e:
        raise to_http_exception(e)
    return _finished(orchestrator, summary)


@router.post("/{request_id}/next", response_model=ConfirmationResultDTO)
async def next_candidate(
    request_id: str,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    return _batch_step(orchestrator, request_id, "next")


@router.post("/{request_id}/previous", response_model=ConfirmationResultDTO)
async def previous_candidate(
    request_id: str,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    return _batch_step(orchestrator, request_id, "previous")


@router.post("/{request_id}/skip", response_model=ConfirmationResultDTO)
async def skip_candidate(
    request_id: str,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    return _batch_step(orchestrator, request_id, "skip")


@router.post("/{request_id}/remove", response_model=ConfirmationResultDTO)
async def remove_candidate(
    request_id: str,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    return _batch_step(orchestrator, request_id, "remove")


@router.post("/{request_id}/submit", response_model=ConfirmationResultDTO)
async def submit(
    request_id: str,
    orchestrator: ScrapeOrchestrator = Depends(get_orchestrator),
    api_key: str = Depends(get_api_key),
):
    """Scrape every confirmed candidate of the batch in one call."""
    try:
        summary = await orchestrator.submit_batch(request_id)
    except OrchestrationError as e:
        raise to_http_exception(e)
    return _finished(orchestrator, summary)
