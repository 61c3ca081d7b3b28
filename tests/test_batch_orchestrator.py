"""
Tests for BatchScrapeOrchestrator.

Purpose
-------
Validate the fan-out semantics of a scrape pass without any network:
- direct candidates are scraped concurrently and in isolation
- discovery candidates go through batch discovery when they share an upload
- a pass hands off to at most one confirmation dialog
- the registry is refreshed once per pass, after everything has settled
"""

import asyncio

import pytest

from models.contact import Contact
from models.scrape_result import AdapterError, BatchDiscoveryResult, DiscoveryResult
from models.scrape_status import ScrapeStatus
from orchestrator.batch_orchestrator import (
    BatchScrapeOrchestrator,
    batch_discovery_limit,
    partition,
)
from orchestrator.confirmation import BatchConfirmation, ConfirmationQueue, SingleConfirmation
from orchestrator.contact_registry import ContactRegistry
from orchestrator.errors import ConfirmationError
from orchestrator.in_flight import InFlightTasks


def _site(contact_id: int, upload_id: int = 1) -> Contact:
    return Contact(id=contact_id, upload_id=upload_id, website=f"https://site{contact_id}.test")


def _named(contact_id: int, upload_id: int = 1) -> Contact:
    return Contact(id=contact_id, upload_id=upload_id, business_name=f"Business {contact_id}")


def _found(contact_id: int) -> DiscoveryResult:
    return DiscoveryResult(
        contact_id=contact_id,
        discovered_website=f"https://found{contact_id}.test",
        confidence="high",
    )


def _not_found(contact_id: int) -> DiscoveryResult:
    return DiscoveryResult(
        contact_id=contact_id,
        error=AdapterError(code="remote_error", message="Website not found", operation="discover_batch"),
    )


def _build(fake_client, *contacts, upload_id=1):
    fake_client.seed(*contacts)
    registry = ContactRegistry(contacts, upload_id=upload_id)
    queue = ConfirmationQueue()

    async def refresh():
        await registry.refresh(fake_client)

    orchestrator = BatchScrapeOrchestrator(
        fake_client, registry, queue, refresh=refresh, batch_discovery_max_limit=100
    )
    return orchestrator, registry, queue


def _refreshes(fake_client) -> int:
    return len(fake_client.calls_to("fetch_contacts"))


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------


def test_partition_splits_by_discovery_need():
    direct, discovery = partition([_site(1), _named(2), _site(3)])
    assert [c.id for c in direct] == [1, 3]
    assert [c.id for c in discovery] == [2]


@pytest.mark.parametrize(
    "selected, cap, expected",
    [
        (1, 100, 11),
        (3, 100, 13),
        (10, 100, 20),
        (40, 100, 80),
        (80, 100, 100),
        (5, 12, 15),
        (100, 100, 110),
        (150, 100, 160),
    ],
)
def test_batch_discovery_limit(selected, cap, expected):
    assert batch_discovery_limit(selected, cap) == expected


# -------------------------------------------------------------------
# Direct scrapes
# -------------------------------------------------------------------


def test_direct_batch_runs_concurrently_and_refreshes_once(fake_client):
    fake_client.delay_s = 0.05
    orchestrator, registry, queue = _build(fake_client, _site(1), _site(2), _site(3))

    summary = asyncio.run(orchestrator.run([1, 2, 3]))

    assert len(fake_client.calls_to("scrape_one")) == 3
    assert fake_client.max_in_flight == 3
    assert summary.success_count == 3
    assert summary.error_count == 0
    assert summary.refreshed
    assert _refreshes(fake_client) == 1
    assert all(c.status == ScrapeStatus.SCRAPED and not c.provisional for c in registry.all())
    assert len(queue) == 0


def test_one_failure_does_not_affect_the_others(fake_client):
    orchestrator, registry, _ = _build(fake_client, _site(1), _site(2), _site(3))
    fake_client.scrape_errors[2] = "Blocked by robots.txt"
    fake_client.scrape_raises.add(3)

    summary = asyncio.run(orchestrator.run([1, 2, 3]))

    by_id = {o.contact_id: o for o in summary.outcomes}
    assert by_id[1].is_success
    assert by_id[2].error_message == "Blocked by robots.txt"
    assert by_id[3].error.code == "unknown"
    assert summary.success_count == 1
    assert summary.error_count == 2
    assert registry.get(1).status == ScrapeStatus.SCRAPED
    assert registry.get(2).status == ScrapeStatus.SCRAPE_FAILED


def test_unscrapeable_ids_are_rejected(fake_client):
    done = Contact(id=2, upload_id=1, website="https://done.test", status="scraped")
    orchestrator, _, _ = _build(fake_client, _site(1), done)

    summary = asyncio.run(orchestrator.run([1, 2, 1, 404]))

    assert summary.rejected_ids == (2, 404)
    assert fake_client.calls_to("scrape_one") == [("scrape_one", 1, None)]


def test_direct_scrapes_register_with_a_shared_tracker(fake_client):
    contacts = (_site(1), _site(2))
    fake_client.seed(*contacts)
    fake_client.hang_ids.add(2)
    registry = ContactRegistry(contacts, upload_id=1)
    tracker = InFlightTasks()
    orchestrator = BatchScrapeOrchestrator(fake_client, registry, ConfirmationQueue(), in_flight=tracker)

    async def run():
        scrape = asyncio.ensure_future(orchestrator.run([1, 2]))
        await asyncio.sleep(0.02)
        assert tracker.labels() == ["scrape:2"]
        tracker.abort_all()
        return await scrape

    summary = asyncio.run(run())

    by_id = {o.contact_id: o for o in summary.outcomes}
    assert by_id[1].is_success
    assert by_id[2].error.code == "cancelled"
    assert len(tracker) == 0


def test_empty_selection_makes_no_calls(fake_client):
    orchestrator, _, _ = _build(fake_client, _site(1))

    summary = asyncio.run(orchestrator.run([]))

    assert fake_client.calls == []
    assert not summary.refreshed


# -------------------------------------------------------------------
# Discovery phase
# -------------------------------------------------------------------


def test_batch_discovery_hands_off_one_batch_dialog(fake_client):
    orchestrator, registry, queue = _build(fake_client, _named(1), _named(2), _named(3), _site(4))
    fake_client.batch_discovery = BatchDiscoveryResult(
        upload_id=1,
        results=(_found(1), _found(99), _found(2), _not_found(3)),
    )

    summary = asyncio.run(orchestrator.run([1, 2, 3, 4]))

    assert fake_client.calls_to("discover_batch") == [("discover_batch", 1, 13)]
    assert fake_client.calls_to("discover_one") == []
    assert fake_client.calls_to("scrape_one") == [("scrape_one", 4, None)]

    request = queue.head()
    assert isinstance(request, BatchConfirmation)
    assert len(queue) == 1
    assert request.contact_ids == (1, 2)
    assert summary.pending_request_id == request.request_id
    assert summary.deferred_ids == (3,)
    assert summary.uncovered_ids == ()
    assert request.pass_id == summary.pass_id
    # the direct scrape still triggers the end-of-pass refresh
    assert _refreshes(fake_client) == 1


def test_contacts_missing_from_batch_response_are_reported(fake_client):
    orchestrator, registry, queue = _build(fake_client, _named(1), _named(2))
    fake_client.batch_discovery = BatchDiscoveryResult(upload_id=1, results=(_found(1),))

    summary = asyncio.run(orchestrator.run([1, 2]))

    assert queue.head().contact_ids == (1,)
    assert summary.uncovered_ids == (2,)
    assert registry.get(2).status == ScrapeStatus.READY_TO_SCRAPE
    assert fake_client.calls_to("discover_one") == []


def test_failed_batch_discovery_falls_back_to_sequential(fake_client):
    orchestrator, registry, queue = _build(fake_client, _named(1), _named(2), _named(3))
    fake_client.discoveries[2] = _found(2)

    summary = asyncio.run(orchestrator.run([1, 2, 3]))

    assert [c[0] for c in fake_client.calls] == [
        "discover_batch",
        "discover_one",  # 1: not found
        "scrape_one",  # 1: fail-open
        "discover_one",  # 2: found, suspends
        "fetch_contacts",
    ]
    assert len(queue) == 1
    assert isinstance(queue.head(), SingleConfirmation)
    assert queue.head().candidate.contact_id == 2
    assert summary.deferred_ids == (3,)
    assert [o.contact_id for o in summary.outcomes] == [1]


def test_batch_discovery_without_usable_results_falls_back(fake_client):
    orchestrator, _, queue = _build(fake_client, _named(1), _named(2))
    fake_client.batch_discovery = BatchDiscoveryResult(
        upload_id=1, results=(_not_found(1), _not_found(2))
    )

    summary = asyncio.run(orchestrator.run([1, 2]))

    assert [c[1] for c in fake_client.calls_to("discover_one")] == [1, 2]
    assert [c[1] for c in fake_client.calls_to("scrape_one")] == [1, 2]
    assert len(queue) == 0
    assert summary.success_count == 2


def test_mixed_uploads_skip_batch_discovery(fake_client):
    orchestrator, _, _ = _build(fake_client, _named(1, upload_id=1), _named(2, upload_id=2), upload_id=None)

    asyncio.run(orchestrator.run([1, 2]))

    assert fake_client.calls_to("discover_batch") == []
    assert [c[1] for c in fake_client.calls_to("discover_one")] == [1, 2]


def test_single_discovery_candidate_uses_single_pipeline(fake_client):
    orchestrator, _, queue = _build(fake_client, _named(1))
    fake_client.discoveries[1] = _found(1)

    summary = asyncio.run(orchestrator.run([1]))

    assert fake_client.calls == [("discover_one", 1)]
    assert isinstance(queue.head(), SingleConfirmation)
    assert summary.awaiting_confirmation
    assert not summary.refreshed


def test_contacts_awaiting_confirmation_are_not_rerun(fake_client):
    orchestrator, _, queue = _build(fake_client, _named(1))
    fake_client.discoveries[1] = _found(1)
    asyncio.run(orchestrator.run([1]))

    summary = asyncio.run(orchestrator.run([1]))

    assert summary.rejected_ids == (1,)
    assert len(queue) == 1


# -------------------------------------------------------------------
# Resumption
# -------------------------------------------------------------------


def test_submit_batch_scrapes_confirmed_only(fake_client):
    orchestrator, registry, queue = _build(fake_client, _named(1), _named(2), _named(3))
    fake_client.batch_discovery = BatchDiscoveryResult(
        upload_id=1, results=(_found(1), _found(2), _found(3))
    )
    asyncio.run(orchestrator.run([1, 2, 3]))
    request = queue.head()
    request.confirm_current()  # 1
    request.remove_current()  # 2
    fake_client.calls.clear()

    summary = asyncio.run(orchestrator.submit_batch(request.request_id))

    assert fake_client.calls_to("scrape_batch") == [
        ("scrape_batch", 1, 1, {1: "https://found1.test"})
    ]
    assert summary.success_count == 1
    assert summary.removed_ids == (2,)
    assert summary.skipped_ids == (3,)
    assert _refreshes(fake_client) == 1
    assert registry.get(1).status == ScrapeStatus.SCRAPED
    assert registry.get(2).status == ScrapeStatus.READY_TO_SCRAPE
    assert len(queue) == 0


def test_submit_without_confirmation_keeps_dialog_open(fake_client):
    orchestrator, _, queue = _build(fake_client, _named(1), _named(2))
    fake_client.batch_discovery = BatchDiscoveryResult(upload_id=1, results=(_found(1), _found(2)))
    asyncio.run(orchestrator.run([1, 2]))
    request_id = queue.head().request_id

    with pytest.raises(ConfirmationError):
        asyncio.run(orchestrator.submit_batch(request_id))

    assert len(queue) == 1
    assert fake_client.calls_to("scrape_batch") == []


def test_failed_batch_scrape_marks_every_confirmed_contact(fake_client):
    orchestrator, registry, queue = _build(fake_client, _named(1), _named(2))
    fake_client.batch_discovery = BatchDiscoveryResult(upload_id=1, results=(_found(1), _found(2)))
    asyncio.run(orchestrator.run([1, 2]))
    request = queue.head()
    request.confirm_current()
    request.confirm_current()
    fake_client.fetch_error = AdapterError(code="network", message="down", operation="fetch_contacts")

    async def broken_batch(upload_id, limit, url_overrides=None):
        raise RuntimeError("connection reset")

    fake_client.scrape_batch = broken_batch

    summary = asyncio.run(orchestrator.submit_batch(request.request_id))

    assert summary.error_count == 2
    assert registry.get(1).status == ScrapeStatus.SCRAPE_FAILED
    assert registry.get(2).status == ScrapeStatus.SCRAPE_FAILED


def test_resolve_single_confirm_scrapes_with_discovered_url(fake_client):
    orchestrator, registry, queue = _build(fake_client, _named(1))
    fake_client.discoveries[1] = _found(1)
    asyncio.run(orchestrator.run([1]))
    request_id = queue.head().request_id

    summary = asyncio.run(orchestrator.resolve_single(request_id, confirm=True))

    assert fake_client.calls_to("scrape_one") == [("scrape_one", 1, "https://found1.test")]
    assert summary.success_count == 1
    assert summary.refreshed
    assert registry.get(1).status == ScrapeStatus.SCRAPED
    assert len(queue) == 0


def test_resolve_single_cancel_makes_no_call(fake_client):
    orchestrator, registry, queue = _build(fake_client, _named(1))
    fake_client.discoveries[1] = _found(1)
    asyncio.run(orchestrator.run([1]))
    request_id = queue.head().request_id
    fake_client.calls.clear()

    summary = asyncio.run(orchestrator.resolve_single(request_id, confirm=False))

    assert fake_client.calls == []
    assert summary.skipped_ids == (1,)
    assert registry.get(1).status == ScrapeStatus.READY_TO_SCRAPE


def test_only_the_head_request_can_be_resolved(fake_client):
    orchestrator, _, queue = _build(fake_client, _named(1), _named(2))
    fake_client.discoveries[1] = _found(1)
    fake_client.discoveries[2] = _found(2)
    first = asyncio.run(orchestrator.run([1]))
    second = asyncio.run(orchestrator.run([2]))

    assert len(queue) == 2
    assert queue.head().request_id == first.pending_request_id

    with pytest.raises(ConfirmationError):
        asyncio.run(orchestrator.resolve_single(second.pending_request_id, confirm=True))
    assert fake_client.calls_to("scrape_one") == []

    asyncio.run(orchestrator.resolve_single(first.pending_request_id, confirm=False))
    assert queue.head().request_id == second.pending_request_id


def test_cancel_closes_dialog_without_network(fake_client):
    orchestrator, _, queue = _build(fake_client, _named(1), _named(2))
    fake_client.batch_discovery = BatchDiscoveryResult(upload_id=1, results=(_found(1), _found(2)))
    asyncio.run(orchestrator.run([1, 2]))
    request = queue.head()
    request.remove_current()
    fake_client.calls.clear()

    summary = orchestrator.cancel(request.request_id)

    assert fake_client.calls == []
    assert summary.removed_ids == (1,)
    assert summary.skipped_ids == (2,)
    assert len(queue) == 0
