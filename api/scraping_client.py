import time
from typing import Any

import httpx

from config.config import Config
from models.contact import Contact
from models.scrape_result import (
    AdapterError,
    BatchDiscoveryResult,
    ContactsSnapshot,
    DiscoveryResult,
    ResetOutcome,
    ScrapeBatchOutcome,
    ScrapeOutcome,
    StatsResult,
)
from utils.logger import get_logger

from .base_client import BaseScrapingClient

logger = get_logger(__name__)


def _error_code_for_status(status_code: int) -> tuple[str, bool]:
    """Map an HTTP status onto (error code, retryable)."""
    if status_code in (401, 403):
        return "auth", False
    if status_code == 404:
        return "not_found", False
    if status_code == 408:
        return "timeout", True
    if status_code == 429:
        return "rate_limit", True
    if 400 <= status_code < 500:
        return "bad_request", False
    return "remote_error", True


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


class ScrapingServiceClient(BaseScrapingClient):
    """
    HTTP client for the scraping/discovery service.

    Uses a shared httpx.AsyncClient; every response is normalized into the
    result dataclasses from models.scrape_result.

    IMPORTANT: Never raises for transport or remote errors - returns the
    result with `error` set instead.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_token: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        config: Config | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Service root URL (defaults to SCRAPING_API_URL)
            api_token: Bearer token (defaults to SCRAPING_API_TOKEN)
            timeout_s: Per-request timeout (defaults to SCRAPING_REQUEST_TIMEOUT_S)
            transport: Optional httpx transport, used by tests
            config: Pre-built Config; a fresh one is read from the environment if omitted
        """
        config = config or Config()
        self.base_url = (base_url or config.SCRAPING_API_URL).rstrip("/")
        self.timeout_s = timeout_s or config.REQUEST_TIMEOUT_S
        token = api_token if api_token is not None else config.SCRAPING_API_TOKEN

        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout_s,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---------- transport ----------

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> tuple[Any, AdapterError | None]:
        """
        Perform one request and unwrap the service envelope.

        Returns:
            (payload, None) on success, (None, AdapterError) on any failure
        """
        start = time.time()
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            return None, self._log_error(
                AdapterError(
                    code="timeout",
                    message="Request timeout",
                    operation=operation,
                    retryable=True,
                    details={"timeout_seconds": self.timeout_s, "path": path},
                ),
                e,
            )
        except httpx.TransportError as e:
            return None, self._log_error(
                AdapterError(
                    code="network",
                    message=f"Network error: {e!s}",
                    operation=operation,
                    retryable=True,
                    details={"exception_type": type(e).__name__, "path": path},
                ),
                e,
            )
        except httpx.HTTPError as e:
            return None, self._log_error(
                AdapterError(
                    code="unknown",
                    message=f"Unexpected error: {e!s}",
                    operation=operation,
                    details={"exception_type": type(e).__name__, "path": path},
                ),
                e,
            )

        latency_ms = int((time.time() - start) * 1000)

        if response.status_code >= 400:
            code, retryable = _error_code_for_status(response.status_code)
            return None, self._log_error(
                AdapterError(
                    code=code,
                    message=self._http_error_message(response),
                    operation=operation,
                    retryable=retryable,
                    details={"status_code": response.status_code, "path": path},
                )
            )

        try:
            body = response.json()
        except ValueError:
            return None, self._log_error(
                AdapterError(
                    code="invalid_response",
                    message="Response body is not valid JSON",
                    operation=operation,
                    details={"status_code": response.status_code, "path": path},
                )
            )

        logger.debug(
            f"{operation} responded",
            extra={
                "extra_fields": {
                    "operation": operation,
                    "path": path,
                    "status_code": response.status_code,
                    "latency_ms": latency_ms,
                }
            },
        )
        return self._unwrap(body, operation)

    @staticmethod
    def _http_error_message(response: httpx.Response) -> str:
        try:
            body = _as_dict(response.json())
        except ValueError:
            body = {}
        return (
            body.get("error")
            or body.get("message")
            or f"HTTP {response.status_code}: {response.reason_phrase}"
        )

    def _unwrap(self, body: Any, operation: str) -> tuple[Any, AdapterError | None]:
        """
        Normalize the service's response shapes.

        {success, data, error} envelopes are unwrapped; when `data` is absent
        the whole body is the payload; anything else is a bare payload.
        """
        if isinstance(body, dict) and "success" in body:
            if not body.get("success"):
                return None, self._log_error(
                    AdapterError(
                        code="remote_error",
                        message=body.get("error") or body.get("message") or "Remote operation failed",
                        operation=operation,
                    )
                )
            data = body.get("data")
            return (data if data is not None else body), None
        return body, None

    @staticmethod
    def _log_error(error: AdapterError, exc: Exception | None = None) -> AdapterError:
        logger.warning(
            f"{error.operation} failed: {error.code}",
            extra={
                "extra_fields": {
                    "operation": error.operation,
                    "error_code": error.code,
                    "error_message": error.message,
                    "retryable": error.retryable,
                    "exception_type": type(exc).__name__ if exc else None,
                }
            },
        )
        return error

    # ---------- payload parsing ----------

    @staticmethod
    def _discovery_from(contact_id: int, entry: dict[str, Any], operation: str) -> DiscoveryResult:
        if entry.get("success") is False:
            return DiscoveryResult(
                contact_id=contact_id,
                business_name=entry.get("businessName"),
                error=AdapterError(
                    code="remote_error",
                    message=entry.get("error") or entry.get("message") or "Website discovery failed",
                    operation=operation,
                ),
            )
        data = _as_dict(entry.get("data")) or entry
        return DiscoveryResult(
            contact_id=contact_id,
            discovered_website=data.get("discoveredWebsite"),
            confidence=data.get("confidence"),
            search_query=data.get("searchQuery"),
            business_name=data.get("businessName") or entry.get("businessName"),
        )

    @staticmethod
    def _scrape_outcome_from(
        contact_id: int, url_override: str | None, payload: Any, operation: str
    ) -> ScrapeOutcome:
        inner = _as_dict(payload)
        data = _as_dict(inner.get("data")) or _as_dict(inner.get("scrapedData")) or inner
        message = inner.get("message")

        failure = None
        if inner.get("success") is False:
            failure = inner.get("error") or message or "Scraping failed"
        elif data.get("scrapeSuccess") is False:
            failure = data.get("errorMessage") or "Scraping failed"

        error = None
        if failure is not None:
            error = AdapterError(code="remote_error", message=failure, operation=operation)
        return ScrapeOutcome(
            contact_id=contact_id,
            url_override=url_override,
            data=data,
            message=message,
            error=error,
        )

    # ---------- operations ----------

    async def discover_one(self, contact_id: int) -> DiscoveryResult:
        payload, error = await self._request(
            "POST", f"/scraping/discover-website/{contact_id}", "discover"
        )
        if error:
            return DiscoveryResult(contact_id=contact_id, error=error)
        return self._discovery_from(contact_id, _as_dict(payload), "discover")

    async def discover_batch(self, upload_id: int, limit: int) -> BatchDiscoveryResult:
        payload, error = await self._request(
            "POST",
            "/scraping/discover-batch",
            "discover_batch",
            json={"uploadId": upload_id, "limit": limit},
        )
        if error:
            return BatchDiscoveryResult(upload_id=upload_id, error=error)

        entries = payload if isinstance(payload, list) else _as_dict(payload).get("results")
        if not isinstance(entries, list):
            return BatchDiscoveryResult(
                upload_id=upload_id,
                error=self._log_error(
                    AdapterError(
                        code="invalid_response",
                        message="Batch discovery response has no results",
                        operation="discover_batch",
                    )
                ),
            )

        results = []
        for entry in entries:
            entry = _as_dict(entry)
            contact_id = entry.get("contactId")
            if not isinstance(contact_id, int):
                logger.warning(
                    "Dropping batch discovery entry without contactId",
                    extra={"extra_fields": {"upload_id": upload_id}},
                )
                continue
            results.append(self._discovery_from(contact_id, entry, "discover_batch"))

        logger.info(
            f"Batch discovery returned {len(results)} results",
            extra={"extra_fields": {"upload_id": upload_id, "limit": limit}},
        )
        return BatchDiscoveryResult(upload_id=upload_id, results=tuple(results))

    async def scrape_one(self, contact_id: int, url_override: str | None = None) -> ScrapeOutcome:
        body = {"confirmedWebsite": url_override} if url_override else None
        payload, error = await self._request(
            "POST", f"/scraping/scrape/{contact_id}", "scrape", json=body
        )
        if error:
            return ScrapeOutcome(contact_id=contact_id, url_override=url_override, error=error)
        return self._scrape_outcome_from(contact_id, url_override, payload, "scrape")

    async def scrape_batch(
        self, upload_id: int, limit: int, url_overrides: dict[int, str] | None = None
    ) -> ScrapeBatchOutcome:
        body: dict[str, Any] = {"uploadId": upload_id, "limit": limit}
        if url_overrides:
            body["confirmedWebsites"] = {str(cid): url for cid, url in url_overrides.items()}

        payload, error = await self._request("POST", "/scraping/batch", "scrape_batch", json=body)
        if error:
            return ScrapeBatchOutcome(upload_id=upload_id, error=error)

        payload = _as_dict(payload)
        overrides = url_overrides or {}
        results = []
        for item in payload.get("results") or []:
            item = _as_dict(item)
            contact_id = item.get("contactId")
            if not isinstance(contact_id, int):
                continue
            results.append(
                self._scrape_outcome_from(
                    contact_id, overrides.get(contact_id), item, "scrape_batch"
                )
            )

        summary = {
            k: int(v) for k, v in _as_dict(payload.get("summary")).items() if isinstance(v, int)
        }
        return ScrapeBatchOutcome(upload_id=upload_id, results=tuple(results), summary=summary)

    async def reset_contact(self, contact_id: int) -> ResetOutcome:
        payload, error = await self._request("POST", f"/scraping/reset/{contact_id}", "reset")
        if error:
            return ResetOutcome(contact_id=contact_id, error=error)
        payload = _as_dict(payload)
        return ResetOutcome(
            contact_id=contact_id, status=payload.get("status"), message=payload.get("message")
        )

    async def fetch_contacts(
        self, upload_id: int, ready_only: bool = False, limit: int | None = None
    ) -> ContactsSnapshot:
        scope = "ready" if ready_only else "all"
        params = {"limit": limit} if isinstance(limit, int) else None
        payload, error = await self._request(
            "GET", f"/scraping/{scope}/{upload_id}", "fetch_contacts", params=params
        )
        if error:
            return ContactsSnapshot(upload_id=upload_id, error=error)

        raw = payload if isinstance(payload, list) else _as_dict(payload).get("contacts") or []
        contacts = []
        for entry in raw:
            try:
                contacts.append(Contact.from_payload(_as_dict(entry)))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    f"Skipping malformed contact record: {e}",
                    extra={"extra_fields": {"upload_id": upload_id}},
                )
        return ContactsSnapshot(upload_id=upload_id, contacts=tuple(contacts))

    async def get_stats(self, upload_id: int) -> StatsResult:
        payload, error = await self._request("GET", f"/scraping/stats/{upload_id}", "stats")
        if error:
            return StatsResult(upload_id=upload_id, error=error)
        payload = _as_dict(payload)
        return StatsResult(upload_id=upload_id, stats=_as_dict(payload.get("stats")) or payload)
