from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from models.contact import Contact

Confidence = Literal["high", "medium", "low"]

VALID_ERROR_CODES = {
    "timeout",
    "network",
    "auth",
    "rate_limit",
    "bad_request",
    "not_found",
    "remote_error",
    "invalid_response",
    "cancelled",
    "unknown",
}


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class AdapterError:
    code: str
    message: str
    operation: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.code not in VALID_ERROR_CODES:
            md = dict(self.details)
            md.setdefault("original_code", self.code)
            object.__setattr__(self, "details", md)
            object.__setattr__(self, "code", "unknown")

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "operation": self.operation,
            "retryable": self.retryable,
            "details": self.details,
        }


class _Tagged:
    """Success/failure helpers shared by every adapter result."""

    error: AdapterError | None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def error_message(self) -> str | None:
        return self.error.message if self.error else None


@dataclass(frozen=True)
class DiscoveryResult(_Tagged):
    contact_id: int
    discovered_website: str | None = None
    confidence: Confidence | None = None
    search_query: str | None = None
    business_name: str | None = None
    error: AdapterError | None = None

    def __post_init__(self):
        if self.confidence not in (None, "high", "medium", "low"):
            object.__setattr__(self, "confidence", "low")
        # a success without a URL is not usable for confirmation
        if self.error is None and not self.discovered_website:
            object.__setattr__(
                self,
                "error",
                AdapterError(
                    code="invalid_response",
                    message="Discovery returned no website",
                    operation="discover",
                ),
            )

    @property
    def is_usable(self) -> bool:
        return self.is_success and bool(self.discovered_website)


@dataclass(frozen=True)
class BatchDiscoveryResult(_Tagged):
    upload_id: int
    results: tuple[DiscoveryResult, ...] = field(default_factory=tuple)
    error: AdapterError | None = None

    def covering(self, contact_ids) -> tuple[DiscoveryResult, ...]:
        """Entries for the given ids only, in response order."""
        wanted = set(contact_ids)
        return tuple(r for r in self.results if r.contact_id in wanted)


@dataclass(frozen=True)
class ScrapeOutcome(_Tagged):
    contact_id: int
    url_override: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    message: str | None = None
    error: AdapterError | None = None
    timestamp: str = field(default_factory=_utc_timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "success": self.is_success,
            "url_override": self.url_override,
            "message": self.message,
            "error": self.error.to_dict() if self.error else None,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ScrapeBatchOutcome(_Tagged):
    upload_id: int
    results: tuple[ScrapeOutcome, ...] = field(default_factory=tuple)
    summary: dict[str, int] = field(default_factory=dict)
    error: AdapterError | None = None


@dataclass(frozen=True)
class ResetOutcome(_Tagged):
    contact_id: int
    status: str | None = None
    message: str | None = None
    error: AdapterError | None = None


@dataclass(frozen=True)
class ContactsSnapshot(_Tagged):
    upload_id: int
    contacts: tuple[Contact, ...] = field(default_factory=tuple)
    error: AdapterError | None = None


@dataclass(frozen=True)
class StatsResult(_Tagged):
    upload_id: int
    stats: dict[str, Any] = field(default_factory=dict)
    error: AdapterError | None = None
