import asyncio
import os
from dataclasses import replace

import pytest
from dotenv import load_dotenv

from api.base_client import BaseScrapingClient
from models.contact import Contact
from models.scrape_result import (
    AdapterError,
    BatchDiscoveryResult,
    ContactsSnapshot,
    DiscoveryResult,
    ResetOutcome,
    ScrapeBatchOutcome,
    ScrapeOutcome,
)
from models.scrape_status import ScrapeStatus

# Load environment variables from .env file for tests
load_dotenv()


class FakeScrapingClient(BaseScrapingClient):
    """
    In-memory scraping service.

    Holds the authoritative contact records, records every call, and
    tracks how many scrape calls overlap so concurrency can be asserted.
    """

    def __init__(self, contacts=(), delay_s: float = 0.0):
        self.contacts: dict[int, Contact] = {c.id: c for c in contacts}
        self.delay_s = delay_s
        self.discoveries: dict[int, DiscoveryResult] = {}
        self.batch_discovery: BatchDiscoveryResult | None = None
        self.scrape_errors: dict[int, str] = {}
        self.scrape_raises: set[int] = set()
        self.reset_errors: dict[int, str] = {}
        self.hang_ids: set[int] = set()
        self.fetch_error: AdapterError | None = None
        self.calls: list[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    def seed(self, *contacts: Contact) -> list[Contact]:
        for contact in contacts:
            self.contacts[contact.id] = contact
        return list(contacts)

    def calls_to(self, operation: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == operation]

    def _set_status(self, contact_id: int, status: ScrapeStatus, error_message: str | None = None):
        if contact_id in self.contacts:
            self.contacts[contact_id] = replace(
                self.contacts[contact_id], status=status, error_message=error_message
            )

    async def discover_one(self, contact_id: int) -> DiscoveryResult:
        self.calls.append(("discover_one", contact_id))
        await asyncio.sleep(self.delay_s)
        if contact_id in self.discoveries:
            return self.discoveries[contact_id]
        return DiscoveryResult(
            contact_id=contact_id,
            error=AdapterError(code="not_found", message="No website found", operation="discover"),
        )

    async def discover_batch(self, upload_id: int, limit: int) -> BatchDiscoveryResult:
        self.calls.append(("discover_batch", upload_id, limit))
        await asyncio.sleep(self.delay_s)
        if self.batch_discovery is not None:
            return self.batch_discovery
        return BatchDiscoveryResult(
            upload_id=upload_id,
            error=AdapterError(
                code="remote_error", message="Batch discovery unavailable", operation="discover_batch"
            ),
        )

    async def scrape_one(self, contact_id: int, url_override: str | None = None) -> ScrapeOutcome:
        self.calls.append(("scrape_one", contact_id, url_override))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay_s)
            if contact_id in self.hang_ids:
                await asyncio.sleep(3600)
            if contact_id in self.scrape_raises:
                raise RuntimeError("adapter bug")
        finally:
            self.in_flight -= 1

        if contact_id in self.scrape_errors:
            message = self.scrape_errors[contact_id]
            self._set_status(contact_id, ScrapeStatus.SCRAPE_FAILED, message)
            return ScrapeOutcome(
                contact_id=contact_id,
                url_override=url_override,
                error=AdapterError(code="remote_error", message=message, operation="scrape"),
            )
        self._set_status(contact_id, ScrapeStatus.SCRAPED)
        return ScrapeOutcome(
            contact_id=contact_id, url_override=url_override, message="Contact scraped successfully"
        )

    async def scrape_batch(
        self, upload_id: int, limit: int, url_overrides: dict[int, str] | None = None
    ) -> ScrapeBatchOutcome:
        self.calls.append(("scrape_batch", upload_id, limit, dict(url_overrides or {})))
        await asyncio.sleep(self.delay_s)
        results = []
        for contact_id, url in (url_overrides or {}).items():
            if contact_id in self.scrape_errors:
                message = self.scrape_errors[contact_id]
                self._set_status(contact_id, ScrapeStatus.SCRAPE_FAILED, message)
                results.append(
                    ScrapeOutcome(
                        contact_id=contact_id,
                        url_override=url,
                        error=AdapterError(code="remote_error", message=message, operation="scrape_batch"),
                    )
                )
            else:
                self._set_status(contact_id, ScrapeStatus.SCRAPED)
                results.append(ScrapeOutcome(contact_id=contact_id, url_override=url))
        return ScrapeBatchOutcome(upload_id=upload_id, results=tuple(results))

    async def reset_contact(self, contact_id: int) -> ResetOutcome:
        self.calls.append(("reset_contact", contact_id))
        await asyncio.sleep(self.delay_s)
        if contact_id in self.hang_ids:
            await asyncio.sleep(3600)
        if contact_id in self.reset_errors:
            return ResetOutcome(
                contact_id=contact_id,
                error=AdapterError(
                    code="remote_error", message=self.reset_errors[contact_id], operation="reset"
                ),
            )
        self._set_status(contact_id, ScrapeStatus.READY_TO_SCRAPE)
        return ResetOutcome(contact_id=contact_id, status="ready_to_scrape", message="Contact reset")

    async def fetch_contacts(
        self, upload_id: int, ready_only: bool = False, limit: int | None = None
    ) -> ContactsSnapshot:
        self.calls.append(("fetch_contacts", upload_id, ready_only))
        if self.fetch_error is not None:
            return ContactsSnapshot(upload_id=upload_id, error=self.fetch_error)
        contacts = [c for c in self.contacts.values() if c.upload_id == upload_id]
        if ready_only:
            contacts = [c for c in contacts if c.status == ScrapeStatus.READY_TO_SCRAPE]
        if limit is not None:
            contacts = contacts[:limit]
        return ContactsSnapshot(upload_id=upload_id, contacts=tuple(contacts))

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client():
    """Empty in-memory scraping service; tests seed `fake_client.contacts`."""
    return FakeScrapingClient()


@pytest.fixture
def mock_env(monkeypatch):
    """Fixture to mock environment variables for testing."""
    env_vars = {
        "SCRAPING_API_URL": "http://scraper.test",
        "SCRAPING_API_TOKEN": "test-token",
        "RESET_SETTLE_DELAY_S": "0",
        "UPLOAD_ID": "1",
        "API_KEYS": "test-key",
    }
    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)
    return env_vars


@pytest.fixture(autouse=True)
def _no_dotenv_scope_leak(monkeypatch):
    # a developer's .env must not change registry refresh behaviour under test
    if os.getenv("REGISTRY_REFRESH_SCOPE"):
        monkeypatch.delenv("REGISTRY_REFRESH_SCOPE")
