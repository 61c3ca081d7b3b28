"""
ScrapePassSummary - Aggregate result of one batch scrape pass.

Immutable dataclass wrapping the per-contact ScrapeOutcome objects collected
by the batch orchestrator, plus the ids that did not reach a scrape call in
this pass and why.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from models.scrape_result import ScrapeOutcome


@dataclass(frozen=True)
class ScrapePassSummary:
    """
    Immutable summary of a scrape pass.

    Attributes:
        pass_id: Correlation id shared by the pass's log records
        created_at: UTC timestamp when the pass started
        selected_ids: Contact ids that entered the pass
        outcomes: One ScrapeOutcome per scrape call made inline by the pass
        pending_request_id: Confirmation request the pass handed off to, if any
        deferred_ids: Discovery candidates left for a later pass
        uncovered_ids: Selected ids missing from a batch discovery response
        skipped_ids: Contacts whose confirmation was skipped or cancelled
        removed_ids: Contacts removed during confirmation
        rejected_ids: Selected ids that were not scrapeable when the pass ran
        refreshed: Whether the registry refresh ran at the end of the pass
    """

    pass_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    selected_ids: tuple[int, ...] = field(default_factory=tuple)
    outcomes: tuple[ScrapeOutcome, ...] = field(default_factory=tuple)
    pending_request_id: str | None = None
    deferred_ids: tuple[int, ...] = field(default_factory=tuple)
    uncovered_ids: tuple[int, ...] = field(default_factory=tuple)
    skipped_ids: tuple[int, ...] = field(default_factory=tuple)
    removed_ids: tuple[int, ...] = field(default_factory=tuple)
    rejected_ids: tuple[int, ...] = field(default_factory=tuple)
    refreshed: bool = False

    @property
    def success_count(self) -> int:
        """Number of scrape calls that succeeded."""
        return sum(1 for o in self.outcomes if o.is_success)

    @property
    def error_count(self) -> int:
        """Number of scrape calls that failed."""
        return sum(1 for o in self.outcomes if o.is_error)

    @property
    def awaiting_confirmation(self) -> bool:
        return self.pending_request_id is not None

    def __len__(self) -> int:
        return len(self.outcomes)

    def to_dict(self) -> dict:
        return {
            "pass_id": self.pass_id,
            "created_at": self.created_at.isoformat(),
            "selected_ids": list(self.selected_ids),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "success_count": self.success_count,
            "error_count": self.error_count,
            "pending_request_id": self.pending_request_id,
            "deferred_ids": list(self.deferred_ids),
            "uncovered_ids": list(self.uncovered_ids),
            "skipped_ids": list(self.skipped_ids),
            "removed_ids": list(self.removed_ids),
            "rejected_ids": list(self.rejected_ids),
            "refreshed": self.refreshed,
        }
