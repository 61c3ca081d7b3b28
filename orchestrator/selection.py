"""Transient set of contact ids picked for the next scrape pass."""

import threading
from typing import Iterable

from models.scrape_status import SELECTABLE_STATUSES
from orchestrator.contact_registry import ContactRegistry


class SelectionSet:
    """
    User selection restricted to scrapeable contacts.

    Only contacts whose current status is ready_to_scrape or scrape_failed
    can be added. Insertion order is kept so passes process contacts in the
    order they were picked.
    """

    def __init__(self, registry: ContactRegistry):
        self._registry = registry
        self._ids: dict[int, None] = {}
        self._lock = threading.Lock()

    def _selectable(self, contact_id: int) -> bool:
        contact = self._registry.get(contact_id)
        return contact is not None and contact.status in SELECTABLE_STATUSES

    def select(self, contact_id: int) -> bool:
        """Add a contact; returns False when its status does not allow it."""
        if not self._selectable(contact_id):
            return False
        with self._lock:
            self._ids[contact_id] = None
        return True

    def deselect(self, contact_id: int) -> None:
        with self._lock:
            self._ids.pop(contact_id, None)

    def toggle(self, contact_id: int) -> bool:
        """Flip membership; returns whether the contact is selected afterwards."""
        with self._lock:
            if contact_id in self._ids:
                del self._ids[contact_id]
                return False
        return self.select(contact_id)

    def select_all(self, contact_ids: Iterable[int]) -> list[int]:
        """Select every eligible id, returning the ones that were rejected."""
        return [cid for cid in contact_ids if not self.select(cid)]

    def clear_all(self) -> None:
        with self._lock:
            self._ids.clear()

    def prune(self) -> list[int]:
        """Drop ids whose contact has left a selectable status or the registry."""
        with self._lock:
            current = list(self._ids)
        dropped = [cid for cid in current if not self._selectable(cid)]
        with self._lock:
            for cid in dropped:
                self._ids.pop(cid, None)
        return dropped

    def ids(self) -> list[int]:
        self.prune()
        with self._lock:
            return list(self._ids)

    def __contains__(self, contact_id: object) -> bool:
        with self._lock:
            held = contact_id in self._ids
        return held and self._selectable(contact_id)  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self.ids())
