"""
Retry of failed contacts.

A retry resets the contact server-side, patches the local record, waits a
short settle delay so the service has committed the change, then refreshes
the registry. Resetting never scrapes; the contact simply becomes
selectable again.
"""

import asyncio
from typing import Awaitable, Callable

from api.base_client import BaseScrapingClient
from models.scrape_result import AdapterError, ResetOutcome
from models.scrape_status import ScrapeStatus, classify_status
from orchestrator.contact_registry import ContactRegistry
from orchestrator.in_flight import InFlightTasks, caller_cancelled
from utils.logger import get_logger

logger = get_logger(__name__)

RESETTABLE_STATUSES = frozenset({ScrapeStatus.SCRAPE_FAILED, ScrapeStatus.SCRAPED})

StatusUpdateCallback = Callable[[int, ScrapeStatus], None]
NoticeCallback = Callable[[str], None]
RefreshCallback = Callable[[], Awaitable[None]]


class ResetController:
    def __init__(
        self,
        client: BaseScrapingClient,
        registry: ContactRegistry,
        refresh: RefreshCallback,
        settle_delay_s: float = 0.3,
        on_status_update: StatusUpdateCallback | None = None,
        notify: NoticeCallback | None = None,
        in_flight: InFlightTasks | None = None,
    ):
        self._client = client
        self._registry = registry
        self._refresh = refresh
        self._settle_delay_s = settle_delay_s
        self._on_status_update = on_status_update or self._patch_registry
        self._notify = notify or (lambda message: None)
        self._in_flight = in_flight if in_flight is not None else InFlightTasks()

    def _patch_registry(self, contact_id: int, status: ScrapeStatus) -> None:
        self._registry.apply_optimistic(contact_id, status)

    async def retry(self, contact_id: int) -> ResetOutcome:
        """
        Reset one contact and reconcile the registry.

        On failure the operator gets a notice and the registry is refreshed
        anyway so it shows the true state.

        Raises:
            ContactNotFoundError: contact_id is not in the registry
        """
        self._registry.require(contact_id)
        outcome = await self._reset(contact_id)
        if outcome.is_success:
            await asyncio.sleep(self._settle_delay_s)
        await self._refresh()
        return outcome

    async def retry_many(self, contact_ids: list[int], refresh: bool = True) -> list[ResetOutcome]:
        """
        Reset several contacts concurrently, then settle and refresh once.

        Args:
            contact_ids: Contacts to reset
            refresh: Run the settle delay and registry refresh afterwards
        """
        if not contact_ids:
            return []
        outcomes = list(await asyncio.gather(*(self._reset(cid) for cid in contact_ids)))

        succeeded = sum(1 for o in outcomes if o.is_success)
        logger.info(
            f"Reset {succeeded}/{len(outcomes)} contacts",
            extra={
                "extra_fields": {
                    "failed": [o.contact_id for o in outcomes if o.is_error],
                }
            },
        )
        if refresh:
            if succeeded:
                await asyncio.sleep(self._settle_delay_s)
            await self._refresh()
        return outcomes

    async def _reset(self, contact_id: int) -> ResetOutcome:
        contact = self._registry.get(contact_id)
        if contact is not None and contact.status not in RESETTABLE_STATUSES:
            outcome = ResetOutcome(
                contact_id=contact_id,
                error=AdapterError(
                    code="bad_request",
                    message=f"Contact is {contact.status.value}, nothing to reset",
                    operation="reset",
                ),
            )
            self._notify(f"Contact {contact_id} cannot be reset while {contact.status.value}.")
            return outcome

        task = self._in_flight.spawn(
            self._client.reset_contact(contact_id), label=f"reset:{contact_id}"
        )
        try:
            outcome = await task
        except asyncio.CancelledError:
            if caller_cancelled():
                raise
            outcome = ResetOutcome(
                contact_id=contact_id,
                error=AdapterError(code="cancelled", message="Reset aborted", operation="reset"),
            )
        except Exception as e:
            logger.error(
                f"Unexpected error resetting contact {contact_id}: {e}",
                extra={"extra_fields": {"contact_id": contact_id, "error_type": type(e).__name__}},
            )
            outcome = ResetOutcome(
                contact_id=contact_id,
                error=AdapterError(
                    code="unknown",
                    message=f"Unexpected error: {e!s}",
                    operation="reset",
                    details={"exception_type": type(e).__name__},
                ),
            )

        if outcome.is_error:
            logger.warning(
                f"Reset failed for contact {contact_id}: {outcome.error_message}",
                extra={"extra_fields": {"contact_id": contact_id, "error_code": outcome.error.code}},
            )
            self._notify(f"Failed to reset contact {contact_id}. Please try again.")
            return outcome

        status = classify_status(outcome.status)
        if status == ScrapeStatus.UNKNOWN:
            status = ScrapeStatus.READY_TO_SCRAPE
        self._on_status_update(contact_id, status)
        logger.info(
            f"Contact {contact_id} reset",
            extra={"extra_fields": {"contact_id": contact_id, "status": status.value}},
        )
        return outcome
