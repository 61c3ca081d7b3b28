"""
Models package for contacts, adapter results and pass summaries.
"""

from .contact import Contact, ScrapeMethod, needs_discovery
from .scrape_pass import ScrapePassSummary
from .scrape_result import (
    AdapterError,
    BatchDiscoveryResult,
    ContactsSnapshot,
    DiscoveryResult,
    ResetOutcome,
    ScrapeBatchOutcome,
    ScrapeOutcome,
    StatsResult,
)
from .scrape_status import ScrapeStatus, classify_status

__all__ = [
    "AdapterError",
    "BatchDiscoveryResult",
    "Contact",
    "ContactsSnapshot",
    "DiscoveryResult",
    "ResetOutcome",
    "ScrapeBatchOutcome",
    "ScrapeMethod",
    "ScrapeOutcome",
    "ScrapePassSummary",
    "ScrapeStatus",
    "StatsResult",
    "classify_status",
    "needs_discovery",
]
