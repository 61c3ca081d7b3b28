"""
Single-item scrape pipeline.

Per contact: scrape directly when the contact has a website, otherwise
discover a candidate website first and suspend for confirmation. Discovery
is advisory, so any discovery failure degrades to a plain scrape and lets
the scraping service resolve the target itself.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum

from api.base_client import BaseScrapingClient
from models.contact import Contact, needs_discovery
from models.scrape_result import AdapterError, DiscoveryResult, ScrapeOutcome
from models.scrape_status import ScrapeStatus
from orchestrator.confirmation import (
    ConfirmationDecision,
    DecisionKind,
    DiscoveryCandidate,
    SingleConfirmation,
)
from orchestrator.contact_registry import ContactRegistry
from orchestrator.in_flight import InFlightTasks, caller_cancelled
from utils.logger import current_pass_id, get_logger

logger = get_logger(__name__)


class PipelineStage(str, Enum):
    SCRAPED = "scraped"  # a scrape call was made; see outcome for success
    SUSPENDED = "suspended"  # waiting on a confirmation decision
    SKIPPED = "skipped"  # no scrape call in this pass
    REMOVED = "removed"  # dropped from the batch by the operator


@dataclass(frozen=True)
class PipelineResult:
    contact_id: int
    stage: PipelineStage
    outcome: ScrapeOutcome | None = None
    request: SingleConfirmation | None = None
    discovery: DiscoveryResult | None = None


def cancelled_outcome(contact_id: int, url_override: str | None = None) -> ScrapeOutcome:
    return ScrapeOutcome(
        contact_id=contact_id,
        url_override=url_override,
        error=AdapterError(
            code="cancelled",
            message="Scrape request aborted before a response arrived",
            operation="scrape",
        ),
    )


def exception_outcome(contact_id: int, url_override: str | None, exc: BaseException) -> ScrapeOutcome:
    return ScrapeOutcome(
        contact_id=contact_id,
        url_override=url_override,
        error=AdapterError(
            code="unknown",
            message=f"Unexpected error: {exc!s}",
            operation="scrape",
            details={"exception_type": type(exc).__name__},
        ),
    )


class ScrapePipeline:
    def __init__(
        self,
        client: BaseScrapingClient,
        registry: ContactRegistry,
        in_flight: InFlightTasks | None = None,
    ):
        self._client = client
        self._registry = registry
        self._in_flight = in_flight if in_flight is not None else InFlightTasks()

    async def scrape(self, contact_id: int, url_override: str | None = None) -> ScrapeOutcome:
        """
        Issue one scrape call and mirror its result into the registry.

        The contact is marked scraping before the call and scraped or
        scrape_failed afterwards; both writes are provisional until the next
        registry refresh. An aborted call yields a `cancelled` outcome and
        leaves the provisional scraping status for the refresh to settle.
        """
        self._registry.apply_optimistic(contact_id, ScrapeStatus.SCRAPING)
        task = self._in_flight.spawn(
            self._client.scrape_one(contact_id, url_override), label=f"scrape:{contact_id}"
        )
        try:
            outcome = await task
        except asyncio.CancelledError:
            if caller_cancelled():
                raise
            return cancelled_outcome(contact_id, url_override)
        except Exception as e:
            logger.error(
                f"Unexpected error scraping contact {contact_id}: {e}",
                extra={"extra_fields": {"contact_id": contact_id, "error_type": type(e).__name__}},
            )
            outcome = exception_outcome(contact_id, url_override, e)

        self.record_outcome(outcome)
        return outcome

    def record_outcome(self, outcome: ScrapeOutcome) -> None:
        if outcome.is_success:
            self._registry.apply_optimistic(outcome.contact_id, ScrapeStatus.SCRAPED)
        else:
            self._registry.apply_optimistic(
                outcome.contact_id, ScrapeStatus.SCRAPE_FAILED, outcome.error_message
            )
        logger.info(
            f"Scrape {'succeeded' if outcome.is_success else 'failed'} for contact {outcome.contact_id}",
            extra={
                "extra_fields": {
                    "contact_id": outcome.contact_id,
                    "url_override": outcome.url_override,
                    "error_code": outcome.error.code if outcome.error else None,
                }
            },
        )

    async def discover(self, contact_id: int) -> DiscoveryResult | None:
        """Run discovery for one contact; None when the call was aborted."""
        task = self._in_flight.spawn(
            self._client.discover_one(contact_id), label=f"discover:{contact_id}"
        )
        try:
            return await task
        except asyncio.CancelledError:
            if caller_cancelled():
                raise
            return None
        except Exception as e:
            return DiscoveryResult(
                contact_id=contact_id,
                error=AdapterError(
                    code="unknown",
                    message=f"Unexpected error: {e!s}",
                    operation="discover",
                    details={"exception_type": type(e).__name__},
                ),
            )

    async def run(self, contact: Contact) -> PipelineResult:
        """
        Drive one contact as far as it can go without a human.

        Returns:
            SCRAPED with the outcome, SUSPENDED with a SingleConfirmation to
            enqueue, or SKIPPED if discovery was aborted
        """
        if not needs_discovery(contact):
            outcome = await self.scrape(contact.id)
            return PipelineResult(contact.id, PipelineStage.SCRAPED, outcome=outcome)

        discovery = await self.discover(contact.id)
        if discovery is None:
            return PipelineResult(contact.id, PipelineStage.SKIPPED)

        if not discovery.is_usable:
            logger.info(
                f"Discovery failed for contact {contact.id}, scraping without a discovered URL",
                extra={
                    "extra_fields": {
                        "contact_id": contact.id,
                        "error_code": discovery.error.code if discovery.error else None,
                        "error_message": discovery.error_message,
                    }
                },
            )
            outcome = await self.scrape(contact.id)
            return PipelineResult(
                contact.id, PipelineStage.SCRAPED, outcome=outcome, discovery=discovery
            )

        request = SingleConfirmation(
            candidate=DiscoveryCandidate.from_result(discovery, contact),
            pass_id=current_pass_id(),
        )
        logger.info(
            f"Contact {contact.id} awaiting website confirmation",
            extra={
                "extra_fields": {
                    "contact_id": contact.id,
                    "request_id": request.request_id,
                    "discovered_website": discovery.discovered_website,
                    "confidence": discovery.confidence,
                }
            },
        )
        return PipelineResult(
            contact.id, PipelineStage.SUSPENDED, request=request, discovery=discovery
        )

    async def resume(self, contact_id: int, decision: ConfirmationDecision) -> PipelineResult:
        """Continue a suspended contact with the operator's decision."""
        if decision.kind == DecisionKind.CONFIRMED:
            outcome = await self.scrape(contact_id, decision.url)
            return PipelineResult(contact_id, PipelineStage.SCRAPED, outcome=outcome)
        if decision.kind == DecisionKind.REMOVED:
            return PipelineResult(contact_id, PipelineStage.REMOVED)
        return PipelineResult(contact_id, PipelineStage.SKIPPED)
