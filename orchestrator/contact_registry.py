"""Client-held contact registry with provisional updates and server-wins refresh."""

import math
import threading
from dataclasses import dataclass, field, replace
from typing import Iterable

from api.base_client import BaseScrapingClient
from models.contact import Contact
from models.scrape_result import ContactsSnapshot
from models.scrape_status import ScrapeStatus, classify_status
from orchestrator.errors import ContactNotFoundError
from utils.logger import get_logger

logger = get_logger(__name__)

ALL_STATUSES = "all"

_SEARCH_FIELDS = ("business_name", "website", "email", "state", "zip_code")


@dataclass(frozen=True)
class ContactPage:
    items: list[Contact]
    total: int
    page: int
    page_size: int
    total_pages: int
    status_filter: str = ALL_STATUSES
    search: str | None = None


@dataclass
class RegistryStats:
    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    provisional: int = 0


class ContactRegistry:
    """
    The one piece of mutable shared state in the scrape workflow.

    Records are only ever swapped whole (frozen Contact + dataclasses.replace)
    under a lock. Local optimistic writes are tagged provisional; anything
    that comes from the scraping service replaces them unconditionally.
    """

    def __init__(
        self,
        contacts: Iterable[Contact] = (),
        upload_id: int | None = None,
        fetch_limit: int | None = None,
    ):
        self._lock = threading.Lock()
        self._contacts: dict[int, Contact] = {c.id: c for c in contacts}
        self.upload_id = upload_id
        self.fetch_limit = fetch_limit

    # ---------- reads ----------

    def get(self, contact_id: int) -> Contact | None:
        with self._lock:
            return self._contacts.get(contact_id)

    def require(self, contact_id: int) -> Contact:
        contact = self.get(contact_id)
        if contact is None:
            raise ContactNotFoundError(contact_id)
        return contact

    def all(self) -> list[Contact]:
        with self._lock:
            return list(self._contacts.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._contacts)

    def __contains__(self, contact_id: object) -> bool:
        with self._lock:
            return contact_id in self._contacts

    # ---------- writes ----------

    def apply_optimistic(
        self, contact_id: int, status: ScrapeStatus | str, error_message: str | None = None
    ) -> Contact | None:
        """
        Record a local, not-yet-confirmed status for a contact.

        Returns:
            The new record, or None if the contact is not in the registry
        """
        status = classify_status(status)
        with self._lock:
            current = self._contacts.get(contact_id)
            if current is None:
                return None
            updated = replace(
                current,
                status=status,
                error_message=error_message if status == ScrapeStatus.SCRAPE_FAILED else None,
                provisional=True,
            )
            self._contacts[contact_id] = updated

        logger.debug(
            "Optimistic status update",
            extra={
                "extra_fields": {
                    "contact_id": contact_id,
                    "from_status": current.status.value,
                    "to_status": status.value,
                }
            },
        )
        return updated

    def apply_server_record(self, contact: Contact) -> Contact:
        """Store an authoritative record; it always wins over a provisional one."""
        record = replace(contact, provisional=False) if contact.provisional else contact
        with self._lock:
            previous = self._contacts.get(contact.id)
            self._contacts[contact.id] = record

        if previous is not None and previous.provisional and previous.status != record.status:
            logger.info(
                "Server status overrides provisional value",
                extra={
                    "extra_fields": {
                        "contact_id": contact.id,
                        "provisional_status": previous.status.value,
                        "server_status": record.status.value,
                    }
                },
            )
        return record

    def replace_all(self, contacts: Iterable[Contact]) -> None:
        """Swap the whole registry for an authoritative snapshot."""
        snapshot = list(contacts)
        with self._lock:
            previous = self._contacts
            self._contacts = {
                c.id: (replace(c, provisional=False) if c.provisional else c) for c in snapshot
            }

        overridden = [
            cid
            for cid, old in previous.items()
            if old.provisional and cid in self._contacts and self._contacts[cid].status != old.status
        ]
        logger.info(
            f"Registry replaced with {len(snapshot)} contacts",
            extra={
                "extra_fields": {
                    "contact_count": len(snapshot),
                    "dropped": len(set(previous) - {c.id for c in snapshot}),
                    "provisional_overridden": overridden,
                }
            },
        )

    async def refresh(self, client: BaseScrapingClient, ready_only: bool = False) -> ContactsSnapshot:
        """
        Reconcile with the scraping service.

        A full snapshot replaces the registry; a ready-only snapshot is
        partial, so its records are merged one by one. Provisional records
        the ready-only snapshot does not cover are then settled from a full
        fetch. A failed fetch leaves the registry untouched.

        Args:
            client: Adapter to fetch from
            ready_only: Fetch only contacts the service reports as ready

        Returns:
            The ContactsSnapshot the registry was reconciled with
        """
        upload_ids = self.tracked_upload_ids()
        if not upload_ids:
            logger.info("Registry refresh skipped: no upload tracked")
            return ContactsSnapshot(upload_id=self.upload_id or 0)

        fetched, failure = await self._fetch(client, upload_ids, ready_only)
        if failure is not None:
            return failure

        if not ready_only:
            self.replace_all(fetched)
            return ContactsSnapshot(upload_id=upload_ids[0], contacts=tuple(fetched))

        for contact in fetched:
            self.apply_server_record(contact)

        covered = {c.id for c in fetched}
        stale = {c.id for c in self.all() if c.provisional and c.id not in covered}
        if stale:
            full, failure = await self._fetch(client, upload_ids, ready_only=False)
            if failure is not None:
                return failure
            settled = [c for c in full if c.id in stale]
            for contact in settled:
                self.apply_server_record(contact)
            logger.info(
                f"Settled {len(settled)} provisional contacts outside the ready scope",
                extra={"extra_fields": {"stale": sorted(stale), "settled": len(settled)}},
            )

        return ContactsSnapshot(upload_id=upload_ids[0], contacts=tuple(fetched))

    async def _fetch(
        self, client: BaseScrapingClient, upload_ids: list[int], ready_only: bool
    ) -> tuple[list[Contact], ContactsSnapshot | None]:
        fetched: list[Contact] = []
        for upload_id in upload_ids:
            snapshot = await client.fetch_contacts(
                upload_id, ready_only=ready_only, limit=self.fetch_limit
            )
            if snapshot.is_error:
                logger.warning(
                    f"Registry refresh failed: {snapshot.error.message}",
                    extra={
                        "extra_fields": {
                            "upload_id": upload_id,
                            "ready_only": ready_only,
                            "error_code": snapshot.error.code,
                        }
                    },
                )
                return fetched, snapshot
            fetched.extend(snapshot.contacts)
        return fetched, None

    def tracked_upload_ids(self) -> list[int]:
        if self.upload_id is not None:
            return [self.upload_id]
        with self._lock:
            return sorted({c.upload_id for c in self._contacts.values()})

    # ---------- view ----------

    def view(
        self,
        status_filter: str | ScrapeStatus = ALL_STATUSES,
        search: str | None = None,
        page: int = 1,
        page_size: int = 15,
    ) -> ContactPage:
        """
        Status-filtered, searchable, paginated slice of the registry.

        Out-of-range pages are clamped; there is always at least one page.
        """
        contacts = self.all()

        filter_key = ALL_STATUSES
        if status_filter != ALL_STATUSES:
            wanted = classify_status(status_filter)
            filter_key = wanted.value
            contacts = [c for c in contacts if c.status == wanted]

        needle = (search or "").strip().lower()
        if needle:
            contacts = [
                c
                for c in contacts
                if any(needle in (getattr(c, f) or "").lower() for f in _SEARCH_FIELDS)
            ]

        page_size = max(1, page_size)
        total = len(contacts)
        total_pages = max(1, math.ceil(total / page_size))
        current = min(max(1, page), total_pages)
        start = (current - 1) * page_size

        return ContactPage(
            items=contacts[start : start + page_size],
            total=total,
            page=current,
            page_size=page_size,
            total_pages=total_pages,
            status_filter=filter_key,
            search=needle or None,
        )

    def stats(self) -> RegistryStats:
        stats = RegistryStats()
        for contact in self.all():
            stats.total += 1
            key = contact.status.value
            stats.by_status[key] = stats.by_status.get(key, 0) + 1
            if contact.provisional:
                stats.provisional += 1
        return stats
