"""
BatchScrapeOrchestrator - Fans the single-item pipeline out over a selection.

Contacts with a website are scraped concurrently; each call's result is
captured on its own so one failure never aborts the others. Contacts that
need discovery go through one batch-discovery call when they share an
upload, and otherwise through the single-item pipeline one at a time. A
pass stops at the first confirmation it hands off; the confirmation's
resolution (resolve_single / submit_batch) finishes the work.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from api.base_client import BaseScrapingClient
from models.contact import Contact, needs_discovery
from models.scrape_pass import ScrapePassSummary
from models.scrape_result import BatchDiscoveryResult, ScrapeOutcome
from models.scrape_status import ScrapeStatus
from orchestrator.confirmation import (
    BatchConfirmation,
    ConfirmationQueue,
    DecisionKind,
    DiscoveryCandidate,
    SingleConfirmation,
)
from orchestrator.contact_registry import ContactRegistry
from orchestrator.errors import ConfirmationError
from orchestrator.in_flight import InFlightTasks, caller_cancelled
from orchestrator.pipeline import (
    PipelineStage,
    ScrapePipeline,
    cancelled_outcome,
    exception_outcome,
)
from utils.logger import bind_pass_id, current_pass_id, get_logger

logger = get_logger(__name__)

BATCH_DISCOVERY_MARGIN = 10

RefreshCallback = Callable[[], Awaitable[None]]


async def _no_refresh() -> None:
    return None


@dataclass
class _DiscoveryPhase:
    outcomes: list[ScrapeOutcome] = field(default_factory=list)
    pending_request_id: str | None = None
    deferred_ids: list[int] = field(default_factory=list)
    uncovered_ids: list[int] = field(default_factory=list)
    skipped_ids: list[int] = field(default_factory=list)


def partition(contacts: list[Contact]) -> tuple[list[Contact], list[Contact]]:
    """Split contacts into (direct candidates, discovery candidates)."""
    direct = [c for c in contacts if not needs_discovery(c)]
    discovery = [c for c in contacts if needs_discovery(c)]
    return direct, discovery


def batch_discovery_limit(selected: int, cap: int) -> int:
    """
    Result count to request from batch discovery.

    Asks for comfortably more than the selection because the upload may
    have gained or lost ready contacts since the selection was made. The cap
    only bounds the extra headroom; the result is never below
    selected + BATCH_DISCOVERY_MARGIN.
    """
    floor = max(selected, 0) + BATCH_DISCOVERY_MARGIN
    return max(floor, min(selected * 2, cap))


class BatchScrapeOrchestrator:
    """
    Runs scrape passes over a selection of contacts.

    Example usage:
        orchestrator = BatchScrapeOrchestrator(client, registry, queue, refresh=on_after_scrape)
        summary = await orchestrator.run([11, 12, 13])
        if summary.awaiting_confirmation:
            request = queue.head()
    """

    def __init__(
        self,
        client: BaseScrapingClient,
        registry: ContactRegistry,
        queue: ConfirmationQueue,
        refresh: RefreshCallback | None = None,
        in_flight: InFlightTasks | None = None,
        pipeline: ScrapePipeline | None = None,
        batch_discovery_max_limit: int = 100,
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Discovery/scrape adapter
            registry: Contact registry updated with every outcome
            queue: Queue receiving confirmation requests
            refresh: Coroutine function run once a pass's scrapes have settled
            in_flight: Shared tracker for abortable adapter calls
            pipeline: Single-item pipeline (built from client/registry if omitted)
            batch_discovery_max_limit: Cap on the headroom requested above the selection size
        """
        self._client = client
        self._registry = registry
        self._queue = queue
        self._refresh = refresh or _no_refresh
        self._in_flight = in_flight if in_flight is not None else InFlightTasks()
        self._pipeline = (
            pipeline if pipeline is not None else ScrapePipeline(client, registry, self._in_flight)
        )
        self._batch_discovery_max_limit = batch_discovery_max_limit

    @property
    def pipeline(self) -> ScrapePipeline:
        return self._pipeline

    # ---------- pass ----------

    async def run(self, contact_ids: list[int]) -> ScrapePassSummary:
        """
        Execute one scrape pass.

        Args:
            contact_ids: Selected contact ids, in selection order

        Returns:
            ScrapePassSummary for the pass
        """
        with bind_pass_id() as pass_id:
            contacts, rejected = self._resolve(contact_ids)
            direct, discovery = partition(contacts)

            logger.info(
                f"Starting scrape pass with {len(contacts)} contacts",
                extra={
                    "extra_fields": {
                        "direct": [c.id for c in direct],
                        "discovery": [c.id for c in discovery],
                        "rejected": rejected,
                    }
                },
            )

            # launched before discovery starts so both run concurrently
            direct_tasks = [asyncio.ensure_future(self._pipeline.scrape(c.id)) for c in direct]

            try:
                phase = await self._discovery_phase(discovery)
            except asyncio.CancelledError:
                for task in direct_tasks:
                    task.cancel()
                raise

            settled = await asyncio.gather(*direct_tasks, return_exceptions=True)
            outcomes = [
                self._settled_outcome(contact.id, result)
                for contact, result in zip(direct, settled)
            ]
            outcomes.extend(phase.outcomes)

            refreshed = False
            if outcomes:
                await self._refresh()
                refreshed = True

            summary = ScrapePassSummary(
                pass_id=pass_id,
                selected_ids=tuple(contact_ids),
                outcomes=tuple(outcomes),
                pending_request_id=phase.pending_request_id,
                deferred_ids=tuple(phase.deferred_ids),
                uncovered_ids=tuple(phase.uncovered_ids),
                skipped_ids=tuple(phase.skipped_ids),
                rejected_ids=tuple(rejected),
                refreshed=refreshed,
            )

            logger.info(
                f"Scrape pass complete: {summary.success_count} success, {summary.error_count} errors",
                extra={
                    "extra_fields": {
                        "success_count": summary.success_count,
                        "error_count": summary.error_count,
                        "pending_request_id": summary.pending_request_id,
                        "deferred": list(summary.deferred_ids),
                        "uncovered": list(summary.uncovered_ids),
                    }
                },
            )
            return summary

    def _resolve(self, contact_ids: list[int]) -> tuple[list[Contact], list[int]]:
        """Look up contacts, keeping only those ready to scrape and not awaiting confirmation."""
        awaiting = self._queue.pending_contact_ids()
        contacts, rejected, seen = [], [], set()
        for cid in contact_ids:
            if cid in seen:
                continue
            seen.add(cid)
            contact = self._registry.get(cid)
            if contact is None or contact.status != ScrapeStatus.READY_TO_SCRAPE or cid in awaiting:
                rejected.append(cid)
            else:
                contacts.append(contact)
        return contacts, rejected

    @staticmethod
    def _settled_outcome(contact_id: int, result: ScrapeOutcome | BaseException) -> ScrapeOutcome:
        if isinstance(result, asyncio.CancelledError):
            return cancelled_outcome(contact_id)
        if isinstance(result, BaseException):
            logger.error(
                f"Unexpected error for contact {contact_id}: {result}",
                extra={
                    "extra_fields": {
                        "contact_id": contact_id,
                        "error_type": type(result).__name__,
                    }
                },
            )
            return exception_outcome(contact_id, None, result)
        return result

    # ---------- discovery ----------

    async def _discovery_phase(self, candidates: list[Contact]) -> _DiscoveryPhase:
        if not candidates:
            return _DiscoveryPhase()

        if len(candidates) > 1 and len({c.upload_id for c in candidates}) == 1:
            phase = await self._batch_discovery(candidates)
            if phase is not None:
                return phase
            logger.info(
                "Falling back to sequential discovery",
                extra={"extra_fields": {"candidates": [c.id for c in candidates]}},
            )

        return await self._sequential_discovery(candidates)

    async def _batch_discovery(self, candidates: list[Contact]) -> _DiscoveryPhase | None:
        """
        One discovery call for the whole cohort.

        Returns:
            The phase (with a BatchConfirmation enqueued) when at least one
            selected contact got a usable website, None to fall back
        """
        upload_id = candidates[0].upload_id
        by_id = {c.id: c for c in candidates}
        limit = batch_discovery_limit(len(candidates), self._batch_discovery_max_limit)

        task = self._in_flight.spawn(
            self._client.discover_batch(upload_id, limit), label=f"discover_batch:{upload_id}"
        )
        try:
            result: BatchDiscoveryResult = await task
        except asyncio.CancelledError:
            if caller_cancelled():
                raise
            return None
        except Exception as e:
            logger.error(
                f"Unexpected batch discovery error: {e}",
                extra={"extra_fields": {"upload_id": upload_id, "error_type": type(e).__name__}},
            )
            return None

        if result.is_error:
            logger.warning(
                f"Batch discovery failed: {result.error_message}",
                extra={"extra_fields": {"upload_id": upload_id, "error_code": result.error.code}},
            )
            return None

        covered, seen = [], set()
        for entry in result.covering(by_id):
            if entry.contact_id not in seen:
                seen.add(entry.contact_id)
                covered.append(entry)

        usable = [r for r in covered if r.is_usable]
        if not usable:
            logger.info(
                "Batch discovery produced no usable website for the selection",
                extra={"extra_fields": {"upload_id": upload_id, "covered": len(covered)}},
            )
            return None

        uncovered = [cid for cid in by_id if cid not in seen]
        failed = [r.contact_id for r in covered if not r.is_usable]
        if uncovered:
            logger.warning(
                f"Batch discovery did not cover {len(uncovered)} selected contacts",
                extra={"extra_fields": {"upload_id": upload_id, "uncovered": uncovered}},
            )

        request = BatchConfirmation(
            upload_id=upload_id,
            candidates=tuple(DiscoveryCandidate.from_result(r, by_id[r.contact_id]) for r in usable),
            pass_id=current_pass_id(),
        )
        self._queue.enqueue(request)
        logger.info(
            f"Handed {len(request.candidates)} discovered websites to batch confirmation",
            extra={"extra_fields": {"request_id": request.request_id, "upload_id": upload_id}},
        )
        return _DiscoveryPhase(
            pending_request_id=request.request_id,
            deferred_ids=failed,
            uncovered_ids=uncovered,
        )

    async def _sequential_discovery(self, candidates: list[Contact]) -> _DiscoveryPhase:
        phase = _DiscoveryPhase()
        for index, contact in enumerate(candidates):
            result = await self._pipeline.run(contact)
            if result.stage == PipelineStage.SCRAPED:
                phase.outcomes.append(result.outcome)
            elif result.stage == PipelineStage.SUSPENDED:
                self._queue.enqueue(result.request)
                phase.pending_request_id = result.request.request_id
                # one dialog at a time: the rest wait for a later pass
                phase.deferred_ids = [c.id for c in candidates[index + 1 :]]
                break
            else:
                phase.skipped_ids.append(contact.id)
        return phase

    # ---------- resumption ----------

    async def resolve_single(self, request_id: str, confirm: bool) -> ScrapePassSummary:
        """
        Apply the operator's answer to the active single confirmation.

        confirm=True scrapes with the discovered URL; False cancels the item.

        Raises:
            ConfirmationError: unknown request, not the active dialog, or a
                batch request
        """
        request = self._queue.require_head(request_id)
        if not isinstance(request, SingleConfirmation):
            raise ConfirmationError("Active confirmation is a batch request", request_id)
        self._queue.pop(request_id)

        decision = request.confirm() if confirm else request.cancel()
        contact_id = request.candidate.contact_id

        with bind_pass_id(request.pass_id) as pass_id:
            logger.info(
                f"Single confirmation resolved: {decision.kind.value}",
                extra={"extra_fields": {"request_id": request_id, "contact_id": contact_id}},
            )
            result = await self._pipeline.resume(contact_id, decision)

            outcomes = (result.outcome,) if result.outcome else ()
            if outcomes:
                await self._refresh()
            return ScrapePassSummary(
                pass_id=pass_id,
                selected_ids=(contact_id,),
                outcomes=outcomes,
                skipped_ids=(contact_id,) if result.stage == PipelineStage.SKIPPED else (),
                removed_ids=(contact_id,) if result.stage == PipelineStage.REMOVED else (),
                refreshed=bool(outcomes),
            )

    async def submit_batch(self, request_id: str) -> ScrapePassSummary:
        """
        Submit the active batch confirmation.

        Sends the confirmed {contact_id: url} map in one scrape_batch call;
        removed and unconfirmed contacts are not scraped.

        Raises:
            ConfirmationError: unknown request, not the active dialog, a
                single request, or nothing confirmed
        """
        request = self._queue.require_head(request_id)
        if not isinstance(request, BatchConfirmation):
            raise ConfirmationError("Active confirmation is a single request", request_id)
        overrides = request.submit()
        self._queue.pop(request_id)
        decisions = request.decisions()

        with bind_pass_id(request.pass_id) as pass_id:
            for contact_id in overrides:
                self._registry.apply_optimistic(contact_id, ScrapeStatus.SCRAPING)

            logger.info(
                f"Submitting batch scrape for {len(overrides)} confirmed contacts",
                extra={
                    "extra_fields": {
                        "request_id": request_id,
                        "upload_id": request.upload_id,
                        "confirmed": sorted(overrides),
                    }
                },
            )
            outcomes = await self._scrape_confirmed(request.upload_id, overrides)
            await self._refresh()

            return ScrapePassSummary(
                pass_id=pass_id,
                selected_ids=request.contact_ids,
                outcomes=tuple(outcomes),
                skipped_ids=tuple(
                    cid for cid, d in decisions.items() if d.kind == DecisionKind.SKIPPED
                ),
                removed_ids=tuple(
                    cid for cid, d in decisions.items() if d.kind == DecisionKind.REMOVED
                ),
                refreshed=True,
            )

    async def _scrape_confirmed(self, upload_id: int, overrides: dict[int, str]) -> list[ScrapeOutcome]:
        task = self._in_flight.spawn(
            self._client.scrape_batch(upload_id, len(overrides), url_overrides=overrides),
            label=f"scrape_batch:{upload_id}",
        )
        batch = None
        try:
            batch = await task
        except asyncio.CancelledError:
            if caller_cancelled():
                raise
            return [cancelled_outcome(cid, url) for cid, url in overrides.items()]
        except Exception as e:
            logger.error(
                f"Unexpected batch scrape error: {e}",
                extra={"extra_fields": {"upload_id": upload_id, "error_type": type(e).__name__}},
            )
            outcomes = [exception_outcome(cid, url, e) for cid, url in overrides.items()]

        if batch is not None and batch.is_error:
            outcomes = [
                ScrapeOutcome(contact_id=cid, url_override=url, error=batch.error)
                for cid, url in overrides.items()
            ]
        elif batch is not None:
            outcomes = list(batch.results)
            missing = set(overrides) - {o.contact_id for o in outcomes}
            if missing:
                logger.warning(
                    "Batch scrape response omitted confirmed contacts",
                    extra={"extra_fields": {"upload_id": upload_id, "missing": sorted(missing)}},
                )

        for outcome in outcomes:
            self._pipeline.record_outcome(outcome)
        return outcomes

    def cancel(self, request_id: str) -> ScrapePassSummary:
        """
        Close the active dialog without scraping anything it covers.

        In-flight calls from other passes keep running; aborting them is a
        separate action.
        """
        request = self._queue.pop(request_id)
        logger.info(
            "Confirmation closed without scraping",
            extra={"extra_fields": {"request_id": request_id, "kind": request.kind.value}},
        )
        removed: tuple[int, ...] = ()
        if isinstance(request, BatchConfirmation):
            removed = tuple(sorted(request.removed_ids))
        return ScrapePassSummary(
            pass_id=request.pass_id or request_id,
            selected_ids=request.contact_ids,
            skipped_ids=tuple(cid for cid in request.contact_ids if cid not in removed),
            removed_ids=removed,
        )
