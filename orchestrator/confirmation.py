"""
Human-in-the-loop website confirmation.

Discovery produces candidate websites; nothing is scraped with a discovered
URL until an operator confirms it. Pending requests wait in a FIFO
ConfirmationQueue owned by the orchestrator and the UI only ever renders
the head, so at most one dialog is open at a time.

Nothing in this module touches the network. A request is pure decision
state until the orchestrator consumes it.
"""

import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from models.contact import Contact
from models.scrape_result import DiscoveryResult
from orchestrator.errors import ConfirmationError


class DecisionKind(str, Enum):
    CONFIRMED = "confirmed"
    SKIPPED = "skipped"
    REMOVED = "removed"


@dataclass(frozen=True)
class ConfirmationDecision:
    kind: DecisionKind
    url: str | None = None

    def __post_init__(self):
        if self.kind == DecisionKind.CONFIRMED and not self.url:
            raise ValueError("a confirmed decision needs a url")

    @classmethod
    def confirmed(cls, url: str) -> "ConfirmationDecision":
        return cls(kind=DecisionKind.CONFIRMED, url=url)

    @classmethod
    def skipped(cls) -> "ConfirmationDecision":
        return cls(kind=DecisionKind.SKIPPED)

    @classmethod
    def removed(cls) -> "ConfirmationDecision":
        return cls(kind=DecisionKind.REMOVED)


@dataclass(frozen=True)
class DiscoveryCandidate:
    contact_id: int
    upload_id: int
    business_name: str
    discovered_website: str
    confidence: str = "low"
    search_query: str | None = None

    @classmethod
    def from_result(cls, result: DiscoveryResult, contact: Contact) -> "DiscoveryCandidate":
        return cls(
            contact_id=result.contact_id,
            upload_id=contact.upload_id,
            business_name=result.business_name or contact.display_name,
            discovered_website=result.discovered_website or "",
            confidence=result.confidence or "low",
            search_query=result.search_query,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "upload_id": self.upload_id,
            "business_name": self.business_name,
            "discovered_website": self.discovered_website,
            "confidence": self.confidence,
            "search_query": self.search_query,
        }


class ConfirmationKind(str, Enum):
    SINGLE = "single"
    BATCH = "batch"


@dataclass
class _RequestBase:
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()), init=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc), init=False)
    pass_id: str | None = field(default=None, kw_only=True)


@dataclass
class SingleConfirmation(_RequestBase):
    """
    One discovered website awaiting an operator decision.

    confirm() scrapes with the discovered URL, cancel() leaves the contact
    alone for this pass, visit() is inspection only.
    """

    candidate: DiscoveryCandidate
    kind: ConfirmationKind = field(default=ConfirmationKind.SINGLE, init=False)

    @property
    def contact_ids(self) -> tuple[int, ...]:
        return (self.candidate.contact_id,)

    def confirm(self) -> ConfirmationDecision:
        return ConfirmationDecision.confirmed(self.candidate.discovered_website)

    def cancel(self) -> ConfirmationDecision:
        return ConfirmationDecision.skipped()

    def visit(self) -> str:
        return self.candidate.discovered_website

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "kind": self.kind.value,
            "created_at": self.created_at.isoformat(),
            "candidate": self.candidate.to_dict(),
        }


@dataclass
class BatchConfirmation(_RequestBase):
    """
    Navigable list of discovered websites for one upload cohort.

    Each candidate can be confirmed or removed; anything not confirmed by
    the time the batch is submitted counts as skipped. Removed candidates
    disappear from navigation and can never reach the submitted map.
    """

    upload_id: int
    candidates: tuple[DiscoveryCandidate, ...]
    kind: ConfirmationKind = field(default=ConfirmationKind.BATCH, init=False)
    _index: int = field(default=0, init=False, repr=False)
    _confirmed: dict[int, str] = field(default_factory=dict, init=False, repr=False)
    _removed: set[int] = field(default_factory=set, init=False, repr=False)

    def __post_init__(self):
        self.candidates = tuple(c for c in self.candidates if c.discovered_website)

    @property
    def contact_ids(self) -> tuple[int, ...]:
        return tuple(c.contact_id for c in self.candidates)

    @property
    def visible(self) -> list[DiscoveryCandidate]:
        return [c for c in self.candidates if c.contact_id not in self._removed]

    @property
    def current(self) -> DiscoveryCandidate | None:
        visible = self.visible
        if not visible:
            return None
        return visible[min(self._index, len(visible) - 1)]

    @property
    def position(self) -> tuple[int, int]:
        """(1-based index of the current candidate, number of visible candidates)."""
        total = len(self.visible)
        return (min(self._index, total - 1) + 1 if total else 0, total)

    @property
    def confirmed_count(self) -> int:
        return len(self._confirmed)

    @property
    def removed_ids(self) -> frozenset[int]:
        return frozenset(self._removed)

    @property
    def can_submit(self) -> bool:
        return bool(self._confirmed)

    @property
    def can_exit(self) -> bool:
        # cancel stays available even when every candidate was removed
        return True

    def is_confirmed(self, contact_id: int) -> bool:
        return contact_id in self._confirmed

    def next(self) -> DiscoveryCandidate | None:
        if self._index < len(self.visible) - 1:
            self._index += 1
        return self.current

    def previous(self) -> DiscoveryCandidate | None:
        if self._index > 0:
            self._index -= 1
        return self.current

    def confirm_current(self) -> DiscoveryCandidate | None:
        """Confirm the current candidate and advance when possible."""
        candidate = self.current
        if candidate is None:
            raise ConfirmationError("No candidate left to confirm", self.request_id)
        self._confirmed[candidate.contact_id] = candidate.discovered_website
        return self.next()

    def skip_current(self) -> DiscoveryCandidate | None:
        return self.next()

    def remove_current(self) -> DiscoveryCandidate | None:
        """Remove the current candidate from the batch."""
        candidate = self.current
        if candidate is None:
            raise ConfirmationError("No candidate left to remove", self.request_id)
        self._removed.add(candidate.contact_id)
        self._confirmed.pop(candidate.contact_id, None)
        remaining = len(self.visible)
        if self._index >= remaining and self._index > 0:
            self._index = remaining - 1
        return self.current

    def visit_current(self) -> str | None:
        candidate = self.current
        return candidate.discovered_website if candidate else None

    def decisions(self) -> dict[int, ConfirmationDecision]:
        """Per-contact decision; unmarked candidates are skipped."""
        out: dict[int, ConfirmationDecision] = {}
        for candidate in self.candidates:
            cid = candidate.contact_id
            if cid in self._removed:
                out[cid] = ConfirmationDecision.removed()
            elif cid in self._confirmed:
                out[cid] = ConfirmationDecision.confirmed(self._confirmed[cid])
            else:
                out[cid] = ConfirmationDecision.skipped()
        return out

    def submit(self) -> dict[int, str]:
        """
        Build the {contact_id: url} map handed to the batch scrape call.

        Raises:
            ConfirmationError: when no candidate has been confirmed
        """
        if not self.can_submit:
            raise ConfirmationError("Confirm at least one website before submitting", self.request_id)
        return {
            cid: decision.url
            for cid, decision in self.decisions().items()
            if decision.kind == DecisionKind.CONFIRMED
        }

    def to_dict(self) -> dict[str, Any]:
        index, total = self.position
        current = self.current
        return {
            "request_id": self.request_id,
            "kind": self.kind.value,
            "created_at": self.created_at.isoformat(),
            "upload_id": self.upload_id,
            "position": index,
            "total": total,
            "current": current.to_dict() if current else None,
            "current_confirmed": bool(current and self.is_confirmed(current.contact_id)),
            "candidates": [c.to_dict() for c in self.visible],
            "confirmed_ids": sorted(self._confirmed),
            "removed_ids": sorted(self._removed),
            "can_submit": self.can_submit,
            "can_exit": self.can_exit,
        }


ConfirmationRequest = SingleConfirmation | BatchConfirmation


class ConfirmationQueue:
    """
    FIFO of pending confirmation requests.

    The head is the only request a UI may show or act on.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: deque[ConfirmationRequest] = deque()

    def enqueue(self, request: ConfirmationRequest) -> int:
        """Append a request; returns its position (0 means it is the head)."""
        with self._lock:
            self._pending.append(request)
            return len(self._pending) - 1

    def head(self) -> ConfirmationRequest | None:
        with self._lock:
            return self._pending[0] if self._pending else None

    def get(self, request_id: str) -> ConfirmationRequest | None:
        with self._lock:
            return next((r for r in self._pending if r.request_id == request_id), None)

    def require_head(self, request_id: str) -> ConfirmationRequest:
        """
        Return the head request if it has the given id.

        Raises:
            ConfirmationError: unknown id, or the request is not at the head
        """
        with self._lock:
            if not any(r.request_id == request_id for r in self._pending):
                raise ConfirmationError(f"Confirmation {request_id} not found", request_id)
            if self._pending[0].request_id != request_id:
                raise ConfirmationError(
                    f"Confirmation {request_id} is not the active dialog", request_id
                )
            return self._pending[0]

    def pop(self, request_id: str) -> ConfirmationRequest:
        """Remove and return the head request with the given id."""
        request = self.require_head(request_id)
        with self._lock:
            self._pending.popleft()
        return request

    def pending_contact_ids(self) -> set[int]:
        with self._lock:
            return {cid for r in self._pending for cid in r.contact_ids}

    def clear(self) -> list[ConfirmationRequest]:
        with self._lock:
            dropped = list(self._pending)
            self._pending.clear()
            return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
