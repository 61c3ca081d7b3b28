from abc import ABC, abstractmethod

from models.scrape_result import (
    BatchDiscoveryResult,
    ContactsSnapshot,
    DiscoveryResult,
    ResetOutcome,
    ScrapeBatchOutcome,
    ScrapeOutcome,
    StatsResult,
)


class BaseScrapingClient(ABC):
    """
    Abstract base class for the remote discovery/scrape service.

    Implementations must never raise for transport or remote failures:
    every operation returns its result dataclass with `error` populated
    instead. The only exception allowed to escape is asyncio.CancelledError
    when the calling task is aborted.
    """

    @abstractmethod
    async def discover_one(self, contact_id: int) -> DiscoveryResult:
        """
        Ask the service to find a candidate website for one contact.

        Args:
            contact_id: Contact to discover a website for

        Returns:
            DiscoveryResult with discovered_website and confidence on success
        """

    @abstractmethod
    async def discover_batch(self, upload_id: int, limit: int) -> BatchDiscoveryResult:
        """
        Discover candidate websites for up to `limit` contacts of an upload.

        Args:
            upload_id: Upload cohort to run discovery for
            limit: Maximum number of contacts the service should cover

        Returns:
            BatchDiscoveryResult with one DiscoveryResult per covered contact
        """

    @abstractmethod
    async def scrape_one(self, contact_id: int, url_override: str | None = None) -> ScrapeOutcome:
        """
        Scrape one contact.

        Args:
            contact_id: Contact to scrape
            url_override: Confirmed website to scrape instead of the
                service's own resolution

        Returns:
            ScrapeOutcome for the contact
        """

    @abstractmethod
    async def scrape_batch(
        self, upload_id: int, limit: int, url_overrides: dict[int, str] | None = None
    ) -> ScrapeBatchOutcome:
        """
        Scrape several contacts of an upload in one call.

        Args:
            upload_id: Upload cohort
            limit: Maximum number of contacts to scrape
            url_overrides: Confirmed websites keyed by contact id

        Returns:
            ScrapeBatchOutcome with per-contact results and a summary
        """

    @abstractmethod
    async def reset_contact(self, contact_id: int) -> ResetOutcome:
        """Move a contact back to a scrapeable status on the service."""

    @abstractmethod
    async def fetch_contacts(
        self, upload_id: int, ready_only: bool = False, limit: int | None = None
    ) -> ContactsSnapshot:
        """Fetch the authoritative contact list for an upload."""

    async def get_stats(self, upload_id: int) -> StatsResult:
        """
        Per-status counts for an upload.

        The default derives the counts from fetch_contacts(); subclasses with
        a dedicated endpoint should override it.
        """
        snapshot = await self.fetch_contacts(upload_id)
        if snapshot.is_error:
            return StatsResult(upload_id=upload_id, error=snapshot.error)
        by_status: dict[str, int] = {}
        for contact in snapshot.contacts:
            by_status[contact.status.value] = by_status.get(contact.status.value, 0) + 1
        return StatsResult(
            upload_id=upload_id,
            stats={"totalContacts": len(snapshot.contacts), "byStatus": by_status},
        )

    async def aclose(self) -> None:
        """Release any network resources held by the client."""
        return None
