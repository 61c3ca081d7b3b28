"""
Contact - the unit of work for scraping.

Contacts are created upstream by CSV ingestion and fetched from the scraping
service on demand. The orchestration layer only ever changes `status`,
`error_message` and the `provisional` marker, and always by building a new
record with dataclasses.replace().
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from models.scrape_status import ScrapeStatus, classify_status


class ScrapeMethod(str, Enum):
    DIRECT_URL = "direct_url"
    EMAIL_DOMAIN = "email_domain"
    BUSINESS_SEARCH = "business_search"

    @classmethod
    def parse(cls, value: Any) -> "ScrapeMethod | None":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class Contact:
    """
    Immutable snapshot of one contact.

    Attributes:
        id: Contact id, unique within a registry snapshot
        upload_id: CSV upload the contact came from (batch-discovery cohort)
        business_name, website, email, state, zip_code: Identifying fields
        status: Canonical scrape status
        error_message: Set only while status is SCRAPE_FAILED
        scrape_method: How the service would obtain a target URL
        scrape_priority: Ordering hint from the service
        provisional: True while the record holds an optimistic local value
            that has not yet been confirmed by a registry refresh
    """

    id: int
    upload_id: int
    business_name: str | None = None
    website: str | None = None
    email: str | None = None
    state: str | None = None
    zip_code: str | None = None
    status: ScrapeStatus = ScrapeStatus.READY_TO_SCRAPE
    error_message: str | None = None
    scrape_method: ScrapeMethod | None = None
    scrape_priority: int | None = None
    provisional: bool = False

    def __post_init__(self):
        object.__setattr__(self, "status", classify_status(self.status))
        if self.status != ScrapeStatus.SCRAPE_FAILED and self.error_message is not None:
            object.__setattr__(self, "error_message", None)

    @property
    def display_name(self) -> str:
        return self.business_name or self.website or self.email or f"Contact #{self.id}"

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Contact":
        """Build a Contact from the scraping service's camelCase JSON."""
        upload_id = payload.get("csvUploadId", payload.get("uploadId"))
        priority = payload.get("scrapePriority")
        return cls(
            id=int(payload["id"]),
            upload_id=int(upload_id) if upload_id is not None else 0,
            business_name=_clean(payload.get("businessName")),
            website=_clean(payload.get("website")),
            email=_clean(payload.get("email")),
            state=_clean(payload.get("state")),
            zip_code=_clean(payload.get("zipCode")),
            status=classify_status(payload.get("status")),
            error_message=_clean(payload.get("errorMessage")),
            scrape_method=ScrapeMethod.parse(payload.get("scrapeMethod")),
            scrape_priority=int(priority) if isinstance(priority, (int, float)) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "upload_id": self.upload_id,
            "business_name": self.business_name,
            "website": self.website,
            "email": self.email,
            "state": self.state,
            "zip_code": self.zip_code,
            "status": self.status.value,
            "error_message": self.error_message,
            "scrape_method": self.scrape_method.value if self.scrape_method else None,
            "scrape_priority": self.scrape_priority,
            "provisional": self.provisional,
        }


def needs_discovery(contact: Contact) -> bool:
    """
    True when a website has to be discovered (and confirmed) before scraping.

    A contact with a website never needs discovery. Otherwise it does when it
    has a business name to search for or is explicitly tagged for business
    search.
    """
    if _clean(contact.website):
        return False
    return bool(_clean(contact.business_name)) or contact.scrape_method == ScrapeMethod.BUSINESS_SEARCH
