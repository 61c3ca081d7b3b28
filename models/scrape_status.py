"""
Canonical scrape status vocabulary.

The scraping service and older uploads spell statuses in several ways
("Ready", "scrape-failed", "FAILED", ...). Everything that crosses the
adapter boundary is folded into ScrapeStatus here and nowhere else.
"""

import re
from enum import Enum
from typing import Any


class ScrapeStatus(str, Enum):
    READY_TO_SCRAPE = "ready_to_scrape"
    SCRAPING = "scraping"
    SCRAPED = "scraped"
    SCRAPE_FAILED = "scrape_failed"
    UNKNOWN = "unknown"


_SYNONYMS: dict[str, ScrapeStatus] = {
    "ready": ScrapeStatus.READY_TO_SCRAPE,
    "failed": ScrapeStatus.SCRAPE_FAILED,
}

_SEPARATORS = re.compile(r"[\s\-_]+")

# Statuses a user may put into a selection
SELECTABLE_STATUSES = frozenset({ScrapeStatus.READY_TO_SCRAPE, ScrapeStatus.SCRAPE_FAILED})

_TRANSITIONS: dict[ScrapeStatus, frozenset[ScrapeStatus]] = {
    ScrapeStatus.READY_TO_SCRAPE: frozenset({ScrapeStatus.SCRAPING}),
    ScrapeStatus.SCRAPING: frozenset({ScrapeStatus.SCRAPED, ScrapeStatus.SCRAPE_FAILED}),
    # leaving a terminal state requires an explicit reset
    ScrapeStatus.SCRAPED: frozenset({ScrapeStatus.READY_TO_SCRAPE}),
    ScrapeStatus.SCRAPE_FAILED: frozenset({ScrapeStatus.READY_TO_SCRAPE}),
    ScrapeStatus.UNKNOWN: frozenset(),
}


def classify_status(value: Any) -> ScrapeStatus:
    """
    Map an arbitrary status value onto the canonical set.

    Case, hyphens, spaces and underscores are ignored. Unrecognised, empty
    or non-string input yields ScrapeStatus.UNKNOWN. Never raises.

    Args:
        value: Raw status from the scraping service or a caller

    Returns:
        The canonical ScrapeStatus
    """
    if isinstance(value, ScrapeStatus):
        return value
    if not isinstance(value, str):
        return ScrapeStatus.UNKNOWN

    token = _SEPARATORS.sub("_", value.strip().lower()).strip("_")
    if not token:
        return ScrapeStatus.UNKNOWN
    if token in _SYNONYMS:
        return _SYNONYMS[token]
    try:
        return ScrapeStatus(token)
    except ValueError:
        return ScrapeStatus.UNKNOWN


def can_transition(src: ScrapeStatus, dst: ScrapeStatus) -> bool:
    """Whether the status machine allows moving from src to dst."""
    return dst in _TRANSITIONS.get(src, frozenset())


def is_terminal(status: ScrapeStatus) -> bool:
    return status in (ScrapeStatus.SCRAPED, ScrapeStatus.SCRAPE_FAILED)
