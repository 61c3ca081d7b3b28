"""Tests for the ScrapeOrchestrator facade: callbacks, busy flag and abort."""

import asyncio

from config.config import Config
from models.contact import Contact
from models.scrape_result import AdapterError
from models.scrape_status import ScrapeStatus
from orchestrator.contact_registry import ContactRegistry
from orchestrator.core import ScrapeOrchestrator


def _site(contact_id: int, **kwargs) -> Contact:
    return Contact(id=contact_id, upload_id=1, website=f"https://site{contact_id}.test", **kwargs)


def _orchestrator(fake_client, *contacts, **kwargs) -> ScrapeOrchestrator:
    fake_client.seed(*contacts)
    orchestrator = ScrapeOrchestrator(fake_client, config=Config(), **kwargs)
    orchestrator.registry.replace_all(contacts)
    return orchestrator


def test_custom_after_scrape_callback_replaces_refresh(mock_env, fake_client):
    calls = []

    async def after_scrape():
        calls.append("after")

    orchestrator = _orchestrator(fake_client, _site(1), on_after_scrape=after_scrape)

    summary = asyncio.run(orchestrator.start_scrape([1]))

    assert summary.success_count == 1
    assert calls == ["after"]
    assert fake_client.calls_to("fetch_contacts") == []
    # without a refresh the optimistic value is still provisional
    assert orchestrator.registry.get(1).provisional


def test_failing_after_scrape_callback_becomes_notice(mock_env, fake_client):
    async def after_scrape():
        raise RuntimeError("reload failed")

    orchestrator = _orchestrator(fake_client, _site(1), on_after_scrape=after_scrape)

    summary = asyncio.run(orchestrator.start_scrape([1]))

    assert summary.success_count == 1
    assert orchestrator.drain_notices() == ["Contacts could not be reloaded after scraping."]


def test_refresh_failure_posts_notice(mock_env, fake_client):
    orchestrator = _orchestrator(fake_client, _site(1))
    fake_client.fetch_error = AdapterError(code="network", message="down", operation="fetch_contacts")

    asyncio.run(orchestrator.refresh())

    assert orchestrator.drain_notices() == ["Could not refresh contacts: down"]


def test_status_update_callback_sees_reset(mock_env, fake_client):
    updates = []
    orchestrator = _orchestrator(
        fake_client,
        _site(1, status="scrape_failed", error_message="Timeout"),
        on_contact_status_update=lambda cid, status: updates.append((cid, status)),
    )

    asyncio.run(orchestrator.retry(1))

    assert updates == [(1, ScrapeStatus.READY_TO_SCRAPE)]
    assert orchestrator.registry.get(1).status == ScrapeStatus.READY_TO_SCRAPE


def test_failed_contacts_in_selection_are_reset_first(mock_env, fake_client):
    orchestrator = _orchestrator(fake_client, _site(1, status="scrape_failed", error_message="x"))
    orchestrator.selection.select(1)

    summary = asyncio.run(orchestrator.start_scrape())

    assert [c[0] for c in fake_client.calls] == ["reset_contact", "scrape_one", "fetch_contacts"]
    assert summary.success_count == 1


def test_failed_reset_keeps_contact_out_of_the_pass(mock_env, fake_client):
    orchestrator = _orchestrator(fake_client, _site(1, status="scrape_failed", error_message="x"))
    fake_client.reset_errors[1] = "locked"

    summary = asyncio.run(orchestrator.start_scrape([1]))

    assert summary.rejected_ids == (1,)
    assert fake_client.calls_to("scrape_one") == []
    assert orchestrator.drain_notices() == ["Failed to reset contact 1. Please try again."]


def test_filter_change_clears_selection_and_notifies(mock_env, fake_client):
    seen = []
    orchestrator = _orchestrator(fake_client, _site(1), on_filter_change=seen.append)
    orchestrator.selection.select(1)

    orchestrator.set_filter("scraped")

    assert orchestrator.selection.ids() == []
    assert orchestrator.status_filter == "scraped"
    assert seen == ["scraped"]


def test_abort_cancels_in_flight_scrapes_only(mock_env, fake_client):
    orchestrator = _orchestrator(fake_client, _site(1), _site(2))
    fake_client.hang_ids.add(2)

    async def run():
        scrape = asyncio.ensure_future(orchestrator.start_scrape([1, 2]))
        await asyncio.sleep(0.02)
        assert orchestrator.is_busy
        assert orchestrator.in_flight_labels == ["scrape:2"]
        aborted = orchestrator.abort_in_flight()
        summary = await scrape
        return aborted, summary

    aborted, summary = asyncio.run(run())

    assert aborted == 1
    by_id = {o.contact_id: o for o in summary.outcomes}
    assert by_id[1].is_success
    assert by_id[2].error.code == "cancelled"
    assert not orchestrator.is_busy


def test_aclose_closes_client(mock_env, fake_client):
    orchestrator = _orchestrator(fake_client, _site(1))
    asyncio.run(orchestrator.aclose())
    assert fake_client.closed


def test_empty_registry_passed_in_is_used(mock_env, fake_client):
    registry = ContactRegistry(upload_id=7)
    fake_client.seed(Contact(id=1, upload_id=7, website="https://site1.test"))

    orchestrator = ScrapeOrchestrator(fake_client, config=Config(), registry=registry)
    asyncio.run(orchestrator.refresh())

    assert orchestrator.registry is registry
    assert fake_client.calls_to("fetch_contacts") == [("fetch_contacts", 7, False)]
    assert 1 in registry


def test_ready_scope_refresh_settles_scraped_contacts(mock_env, fake_client, monkeypatch):
    monkeypatch.setenv("REGISTRY_REFRESH_SCOPE", "ready")
    orchestrator = _orchestrator(fake_client, _site(1), _site(2))
    fake_client.scrape_errors[2] = "Captcha wall"

    summary = asyncio.run(orchestrator.start_scrape([1, 2]))

    assert summary.refreshed
    assert orchestrator.registry.get(1).status == ScrapeStatus.SCRAPED
    assert orchestrator.registry.get(2).status == ScrapeStatus.SCRAPE_FAILED
    assert not any(c.provisional for c in orchestrator.registry.all())


def test_refresh_without_upload_posts_notice(mock_env, fake_client, monkeypatch):
    monkeypatch.delenv("UPLOAD_ID")
    orchestrator = ScrapeOrchestrator(fake_client, config=Config())

    snapshot = asyncio.run(orchestrator.refresh())

    assert snapshot.error.code == "bad_request"
    assert fake_client.calls_to("fetch_contacts") == []
    assert orchestrator.drain_notices() == [
        "No upload selected. Select an upload before refreshing contacts."
    ]


def test_select_upload_switches_cohort_and_drops_selection(mock_env, fake_client):
    orchestrator = _orchestrator(fake_client, _site(1))
    orchestrator.selection.select(1)
    fake_client.seed(Contact(id=20, upload_id=2, website="https://other.test"))

    snapshot = asyncio.run(orchestrator.select_upload(2))

    assert snapshot.is_success
    assert orchestrator.registry.upload_id == 2
    assert [c.id for c in orchestrator.registry.all()] == [20]
    assert orchestrator.selection.ids() == []


def test_service_stats_come_from_the_client(mock_env, fake_client):
    orchestrator = _orchestrator(fake_client, _site(1), _site(2, status="scraped"))

    results = asyncio.run(orchestrator.service_stats())

    assert [r.upload_id for r in results] == [1]
    assert results[0].stats == {
        "totalContacts": 2,
        "byStatus": {"ready_to_scrape": 1, "scraped": 1},
    }
