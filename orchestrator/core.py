"""
ScrapeOrchestrator - Core business logic layer for contact scraping.

Key guarantees:
- API layer stays thin (no adapter calls there)
- Adapter failures never bubble up; they come back as outcomes and notices
- The registry is reconciled with the scraping service after every pass
"""

import asyncio
from collections import deque
from contextlib import contextmanager
from typing import Awaitable, Callable, Iterable, Iterator

from api.base_client import BaseScrapingClient
from config.config import Config, RefreshScope
from models.scrape_pass import ScrapePassSummary
from models.scrape_result import AdapterError, ContactsSnapshot, ResetOutcome, StatsResult
from models.scrape_status import ScrapeStatus
from orchestrator.batch_orchestrator import BatchScrapeOrchestrator
from orchestrator.confirmation import (
    BatchConfirmation,
    ConfirmationQueue,
    ConfirmationRequest,
)
from orchestrator.contact_registry import ALL_STATUSES, ContactRegistry
from orchestrator.errors import ConfirmationError
from orchestrator.in_flight import InFlightTasks
from orchestrator.reset_controller import ResetController
from orchestrator.selection import SelectionSet
from utils.logger import get_logger

logger = get_logger(__name__)

AfterScrapeCallback = Callable[[], Awaitable[None]]
FilterChangeCallback = Callable[[str], None]
StatusUpdateCallback = Callable[[int, ScrapeStatus], None]

BATCH_ACTIONS = ("next", "previous", "confirm", "skip", "remove")


class ScrapeOrchestrator:
    def __init__(
        self,
        client: BaseScrapingClient,
        config: Config | None = None,
        registry: ContactRegistry | None = None,
        on_after_scrape: AfterScrapeCallback | None = None,
        on_filter_change: FilterChangeCallback | None = None,
        on_contact_status_update: StatusUpdateCallback | None = None,
        max_notices: int = 50,
    ):
        self._config = config if config is not None else Config()
        self._client = client
        if registry is None:
            registry = ContactRegistry(
                upload_id=self._config.UPLOAD_ID,
                fetch_limit=self._config.REGISTRY_FETCH_LIMIT,
            )
        self.registry = registry
        self.selection = SelectionSet(self.registry)
        self.queue = ConfirmationQueue()
        self.status_filter = ALL_STATUSES
        self.notices: deque[str] = deque(maxlen=max_notices)

        self._on_after_scrape = on_after_scrape
        self._on_filter_change = on_filter_change
        self._on_contact_status_update = on_contact_status_update
        self._active = 0

        self._in_flight = InFlightTasks()
        self._batch = BatchScrapeOrchestrator(
            client,
            self.registry,
            self.queue,
            refresh=self._after_scrape,
            in_flight=self._in_flight,
            batch_discovery_max_limit=self._config.BATCH_DISCOVERY_MAX_LIMIT,
        )
        self._reset = ResetController(
            client,
            self.registry,
            refresh=self._after_scrape,
            settle_delay_s=self._config.RESET_SETTLE_DELAY_S,
            on_status_update=self._status_updated,
            notify=self.notify,
            in_flight=self._in_flight,
        )

    # ---------- helpers ----------

    @contextmanager
    def _busy(self) -> Iterator[None]:
        self._active += 1
        try:
            yield
        finally:
            self._active -= 1

    @property
    def config(self) -> Config:
        return self._config

    @property
    def is_busy(self) -> bool:
        return self._active > 0 or len(self._in_flight) > 0

    @property
    def in_flight_labels(self) -> list[str]:
        return self._in_flight.labels()

    def notify(self, message: str) -> None:
        """Post an operator-visible notice."""
        self.notices.append(message)
        logger.warning(message, extra={"extra_fields": {"notice": True}})

    def drain_notices(self) -> list[str]:
        drained = list(self.notices)
        self.notices.clear()
        return drained

    def _status_updated(self, contact_id: int, status: ScrapeStatus) -> None:
        self.registry.apply_optimistic(contact_id, status)
        if self._on_contact_status_update is not None:
            self._on_contact_status_update(contact_id, status)

    async def refresh(self) -> ContactsSnapshot:
        """Pull the authoritative snapshot into the registry."""
        if not self.registry.tracked_upload_ids():
            self.notify("No upload selected. Select an upload before refreshing contacts.")
            return ContactsSnapshot(
                upload_id=0,
                error=AdapterError(
                    code="bad_request", message="No upload selected", operation="fetch_contacts"
                ),
            )
        ready_only = self._config.REFRESH_SCOPE == RefreshScope.READY.value
        snapshot = await self.registry.refresh(self._client, ready_only=ready_only)
        if snapshot.is_error:
            self.notify(f"Could not refresh contacts: {snapshot.error_message}")
        self.selection.prune()
        return snapshot

    async def _after_scrape(self) -> None:
        if self._on_after_scrape is None:
            await self.refresh()
            return
        try:
            await self._on_after_scrape()
        except Exception as e:
            logger.error(
                f"after-scrape callback failed: {e}",
                extra={"extra_fields": {"error_type": type(e).__name__}},
            )
            self.notify("Contacts could not be reloaded after scraping.")

    async def select_upload(self, upload_id: int) -> ContactsSnapshot:
        """
        Switch the registry to another upload cohort and load it.

        The selection and any pending confirmations belong to the old cohort,
        so both are dropped.
        """
        dropped = self.queue.clear()
        self.selection.clear_all()
        self.registry.upload_id = upload_id
        self.registry.replace_all(())
        logger.info(
            f"Tracking upload {upload_id}",
            extra={
                "extra_fields": {
                    "upload_id": upload_id,
                    "dropped_confirmations": [r.request_id for r in dropped],
                }
            },
        )
        return await self.refresh()

    async def service_stats(self) -> list[StatsResult]:
        """Per-status counts as reported by the scraping service, per tracked upload."""
        return [await self._client.get_stats(uid) for uid in self.registry.tracked_upload_ids()]

    # ---------- selection / view ----------

    def set_filter(self, status_filter: str) -> None:
        """Change the view filter; the selection never survives a filter change."""
        self.status_filter = status_filter
        self.selection.clear_all()
        if self._on_filter_change is not None:
            self._on_filter_change(status_filter)

    # ---------- scraping ----------

    async def start_scrape(self, selection: Iterable[int] | None = None) -> ScrapePassSummary:
        """
        Run a scrape pass over the given ids (or the current selection).

        Failed contacts in the selection are reset first so they re-enter
        the pass as ready_to_scrape.
        """
        ids = list(selection) if selection is not None else self.selection.ids()
        if not ids:
            self.notify("Please select at least one contact to scrape.")
            return ScrapePassSummary()

        with self._busy():
            failed = [
                cid
                for cid in ids
                if (contact := self.registry.get(cid)) is not None
                and contact.status == ScrapeStatus.SCRAPE_FAILED
            ]
            if failed:
                outcomes = await self._reset.retry_many(failed, refresh=False)
                if any(o.is_success for o in outcomes):
                    await asyncio.sleep(self._config.RESET_SETTLE_DELAY_S)

            summary = await self._batch.run(ids)

        for cid in ids:
            self.selection.deselect(cid)
        return summary

    async def retry(self, contact_id: int) -> ResetOutcome:
        with self._busy():
            return await self._reset.retry(contact_id)

    async def retry_failed(self, contact_ids: Iterable[int] | None = None) -> list[ResetOutcome]:
        """Reset the given ids, or every scrape_failed contact when omitted."""
        if contact_ids is None:
            ids = [c.id for c in self.registry.all() if c.status == ScrapeStatus.SCRAPE_FAILED]
        else:
            ids = list(contact_ids)
        with self._busy():
            return await self._reset.retry_many(ids)

    def abort_in_flight(self) -> int:
        """Cancel outstanding adapter calls. Pending confirmations are untouched."""
        return self._in_flight.abort_all()

    # ---------- confirmations ----------

    def active_confirmation(self) -> ConfirmationRequest | None:
        return self.queue.head()

    async def resolve_single(self, request_id: str, confirm: bool) -> ScrapePassSummary:
        with self._busy():
            return await self._batch.resolve_single(request_id, confirm)

    def batch_action(self, request_id: str, action: str) -> BatchConfirmation:
        """
        Apply a navigation/marking action to the active batch confirmation.

        Args:
            request_id: Active batch request id
            action: One of next, previous, confirm, skip, remove

        Raises:
            ConfirmationError: unknown/inactive request or unknown action
        """
        request = self.queue.require_head(request_id)
        if not isinstance(request, BatchConfirmation):
            raise ConfirmationError("Active confirmation is a single request", request_id)
        if action not in BATCH_ACTIONS:
            raise ConfirmationError(f"Unknown batch action '{action}'", request_id)

        if action == "next":
            request.next()
        elif action == "previous":
            request.previous()
        elif action == "confirm":
            request.confirm_current()
        elif action == "skip":
            request.skip_current()
        else:
            request.remove_current()
        return request

    async def submit_batch(self, request_id: str) -> ScrapePassSummary:
        with self._busy():
            return await self._batch.submit_batch(request_id)

    def cancel_confirmation(self, request_id: str) -> ScrapePassSummary:
        return self._batch.cancel(request_id)

    async def aclose(self) -> None:
        self.abort_in_flight()
        await self._client.aclose()
