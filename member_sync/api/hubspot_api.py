"""
HubSpot CRM API wrapper for membership directory synchronization.

Provides a thin authenticated interface to the HubSpot REST API for:
- Reading one page of a list's members together with their contact properties
- Reading list metadata (name and filter definitions)
- Reading company records and contact-to-company associations
- Exponential backoff retry for rate limits and server errors

Every request is bounded by a timeout. Non-success responses raise
HubSpotAPIError; "no associated company" is an empty result, not an error.
"""

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from member_sync.config.loader import ConfigError
from member_sync.sync.member import CONTACT_PROPERTIES, ExternalContactRecord

HUBSPOT_API_BASE = "https://api.hubapi.com"

# Company properties requested for enrichment
COMPANY_PROPERTIES = ("name", "domain", "industry", "city", "state")

# HubSpot caps list membership pages at 250 and batch reads at 100
DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 250
BATCH_READ_SIZE = 100

# Retry configuration defaults
DEFAULT_TIMEOUT = 30.0  # seconds
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 30.0  # seconds

USER_AGENT = "member-sync/0.1.0"

logger = logging.getLogger(__name__)


class HubSpotAPIError(Exception):
    """Raised when a HubSpot API operation fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(HubSpotAPIError):
    """Raised when rate limit is exceeded and retries are exhausted."""

    pass


class HubSpotTimeoutError(HubSpotAPIError):
    """Raised when a request does not complete within the timeout."""

    pass


class NotFoundError(HubSpotAPIError):
    """Raised when the requested list, contact or company does not exist."""

    pass


@dataclass(frozen=True)
class ContactPage:
    """
    One page of list members.

    Attributes:
        records: Members on this page, in membership order
        next_cursor: Cursor for the following page, None on the last page
        total: Total member count when HubSpot reports it
    """

    records: tuple[ExternalContactRecord, ...] = field(default_factory=tuple)
    next_cursor: Optional[str] = None
    total: Optional[int] = None


class HubSpotAPI:
    """
    HubSpot API wrapper for list, contact and company reads.

    Attributes:
        session: requests.Session carrying the bearer token

    Usage:
        api = HubSpotAPI(api_key)

        # First page of a list
        page = api.get_list_memberships_page("4959")

        # Following page
        page = api.get_list_memberships_page("4959", after=page.next_cursor)

        # List metadata with filters
        metadata = api.get_list("4959")

        # Company lookup
        company = api.get_company("1234")
    """

    def __init__(
        self,
        api_key: Optional[str],
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        base_url: str = HUBSPOT_API_BASE,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the HubSpot API wrapper.

        Args:
            api_key: HubSpot private app token
            page_size: Members per page when listing (capped at 250)
            timeout: Per-request timeout in seconds
            max_retries: Attempts for rate limited or server error responses
            initial_retry_delay: Initial backoff delay in seconds
            max_retry_delay: Maximum backoff delay in seconds
            base_url: API root, overridable for testing
            session: Optional pre-built requests session

        Raises:
            ConfigError: If api_key is empty, before any request is made
        """
        if not api_key:
            raise ConfigError("HUBSPOT_API_KEY is not set")

        self.page_size = min(page_size, MAX_PAGE_SIZE)
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self.base_url = base_url.rstrip("/")

        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            }
        )

    # =========================================================================
    # Request Plumbing
    # =========================================================================

    def _retry_with_backoff(
        self, operation: Callable[[], requests.Response], operation_name: str
    ) -> requests.Response:
        """
        Execute a request with exponential backoff retry.

        429 and 5xx responses are retried. Timeouts and connection errors are
        retried too, then surfaced as HubSpotTimeoutError / HubSpotAPIError.

        Returns:
            The first successful (2xx) response

        Raises:
            RateLimitError: If retries are exhausted due to rate limits
            NotFoundError: On a 404 response
            HubSpotTimeoutError: If the final attempt timed out
            HubSpotAPIError: For any other failure
        """
        delay = self.initial_retry_delay

        for attempt in range(self.max_retries):
            is_last = attempt == self.max_retries - 1

            try:
                response = operation()
            except requests.Timeout as e:
                if not is_last:
                    logger.warning(
                        f"{operation_name} timed out, retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue
                raise HubSpotTimeoutError(
                    f"{operation_name} timed out after {self.timeout:.0f}s"
                ) from e
            except requests.RequestException as e:
                if not is_last:
                    logger.warning(
                        f"{operation_name} request failed ({e}), "
                        f"retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue
                raise HubSpotAPIError(f"{operation_name} failed: {e}") from e

            status_code = response.status_code

            if 200 <= status_code < 300:
                return response

            if status_code == 429:
                if not is_last:
                    retry_after = _retry_after_seconds(response)
                    wait = min(retry_after or delay, self.max_retry_delay)
                    logger.warning(
                        f"{operation_name} rate limited, retrying in "
                        f"{wait:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(wait)
                    delay = min(delay * 2, self.max_retry_delay)
                    continue
                raise RateLimitError(
                    f"Rate limit exceeded for {operation_name} "
                    f"after {self.max_retries} attempts",
                    status_code=status_code,
                )

            if status_code >= 500 and not is_last:
                logger.warning(
                    f"{operation_name} server error ({status_code}), "
                    f"retrying in {delay:.1f}s"
                )
                time.sleep(delay)
                delay = min(delay * 2, self.max_retry_delay)
                continue

            detail = _error_detail(response)
            if status_code == 404:
                raise NotFoundError(
                    f"{operation_name} not found: {detail}", status_code=status_code
                )

            logger.error(f"{operation_name} failed with status {status_code}: {detail}")
            raise HubSpotAPIError(
                f"{operation_name} failed with status {status_code}: {detail}",
                status_code=status_code,
            )

        # max_retries >= 1, so the loop always returns or raises
        raise HubSpotAPIError(f"{operation_name} failed after all retries")

    def _request_json(
        self,
        method: str,
        path: str,
        operation_name: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Issue a request and decode its JSON object body.

        Raises:
            HubSpotAPIError: If the body is not a JSON object
        """
        url = f"{self.base_url}{path}"

        def execute() -> requests.Response:
            return self.session.request(
                method, url, params=params, json=json_body, timeout=self.timeout
            )

        response = self._retry_with_backoff(execute, operation_name)

        try:
            body = response.json()
        except ValueError as e:
            raise HubSpotAPIError(
                f"{operation_name} returned malformed JSON", response.status_code
            ) from e

        if not isinstance(body, dict):
            raise HubSpotAPIError(
                f"{operation_name} returned {type(body).__name__}, expected object",
                response.status_code,
            )
        return body

    # =========================================================================
    # Lists
    # =========================================================================

    def get_list(self, list_id: str) -> dict[str, Any]:
        """
        Get a list's metadata, including its filter definitions.

        Returns:
            The list object (the "list" member of the v3 response)

        Raises:
            NotFoundError: If the list does not exist
            HubSpotAPIError: If the request fails
        """
        logger.debug(f"Fetching list metadata for {list_id}")
        body = self._request_json(
            "GET",
            f"/crm/v3/lists/{list_id}",
            f"get_list({list_id})",
            params={"includeFilters": "true"},
        )
        list_data = body.get("list", body)
        if not isinstance(list_data, dict):
            raise HubSpotAPIError(f"get_list({list_id}) returned malformed list")
        return list_data

    def _read_memberships(
        self,
        list_id: str,
        after: Optional[str],
        limit: Optional[int],
    ) -> tuple[list[str], Optional[str], Optional[int]]:
        """Read one memberships page: (record ids, next cursor, total)."""
        params: dict[str, Any] = {"limit": min(limit or self.page_size, MAX_PAGE_SIZE)}
        if after:
            params["after"] = after

        operation = f"get_list_memberships({list_id}, after={after})"
        body = self._request_json(
            "GET", f"/crm/v3/lists/{list_id}/memberships", operation, params=params
        )

        results = body.get("results", [])
        if not isinstance(results, list):
            raise HubSpotAPIError(f"{operation} returned malformed results")

        record_ids = [
            str(item["recordId"])
            for item in results
            if isinstance(item, dict) and item.get("recordId") is not None
        ]

        paging = body.get("paging") or {}
        next_cursor = (paging.get("next") or {}).get("after")
        total = body.get("total")

        return (
            record_ids,
            str(next_cursor) if next_cursor else None,
            total if isinstance(total, int) else None,
        )

    def get_list_member_ids_page(
        self,
        list_id: str,
        after: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> ContactPage:
        """
        Get one page of list members without reading their properties.

        Records carry only the record id. Used where membership is all
        that matters, such as company lookups.
        """
        record_ids, next_cursor, total = self._read_memberships(list_id, after, limit)
        return ContactPage(
            records=tuple(ExternalContactRecord(record_id=rid) for rid in record_ids),
            next_cursor=next_cursor,
            total=total,
        )

    def get_list_memberships_page(
        self,
        list_id: str,
        after: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> ContactPage:
        """
        Get one page of list members with their contact properties.

        Reads the membership page, then the members' properties in batch.
        Every member on the page is returned. A member whose properties
        could not be read gets a record with no properties, so it still
        counts as on the list and its stored values are kept.

        Args:
            list_id: HubSpot list id
            after: Cursor from the previous page, None for the first page
            limit: Page size override

        Returns:
            ContactPage with records in membership order and the next cursor

        Raises:
            HubSpotAPIError: If either request fails or returns malformed data
        """
        record_ids, next_cursor, total = self._read_memberships(list_id, after, limit)

        records = self.batch_read_contacts(record_ids)
        by_id = {record.record_id: record for record in records}
        missing = [rid for rid in record_ids if rid not in by_id]
        if missing:
            logger.warning(
                f"{len(missing)} member(s) of list {list_id} had no readable "
                f"contact record, keeping stored values: {', '.join(missing)}"
            )

        return ContactPage(
            records=tuple(
                by_id.get(rid) or ExternalContactRecord(record_id=rid)
                for rid in record_ids
            ),
            next_cursor=next_cursor,
            total=total,
        )

    # =========================================================================
    # Contacts
    # =========================================================================

    def batch_read_contacts(
        self,
        record_ids: Sequence[str],
        properties: Sequence[str] = CONTACT_PROPERTIES,
    ) -> list[ExternalContactRecord]:
        """
        Read contact properties for many contacts.

        Args:
            record_ids: Contact ids to read (chunked by 100)
            properties: Properties to request

        Returns:
            Records in the order HubSpot returned them
        """
        records: list[ExternalContactRecord] = []

        for start in range(0, len(record_ids), BATCH_READ_SIZE):
            chunk = record_ids[start : start + BATCH_READ_SIZE]
            body = self._request_json(
                "POST",
                "/crm/v3/objects/contacts/batch/read",
                f"batch_read_contacts({len(chunk)})",
                json_body={
                    "properties": list(properties),
                    "inputs": [{"id": rid} for rid in chunk],
                },
            )
            errors = body.get("errors") or []
            if errors:
                logger.warning(
                    f"Batch read of {len(chunk)} contact(s) reported "
                    f"{len(errors)} error(s)"
                )
            for result in body.get("results", []):
                try:
                    records.append(ExternalContactRecord.from_api_response(result))
                except (ValueError, AttributeError) as e:
                    raise HubSpotAPIError(f"Malformed contact in batch read: {e}") from e

        return records

    def get_contact_company_ids(self, contact_id: str) -> list[str]:
        """
        Get the ids of companies associated with a contact.

        Returns:
            Company ids; empty when the contact has no company
        """
        body = self._request_json(
            "GET",
            f"/crm/v4/objects/contacts/{contact_id}/associations/companies",
            f"get_contact_company_ids({contact_id})",
        )
        return [
            str(item["toObjectId"])
            for item in body.get("results", [])
            if isinstance(item, dict) and item.get("toObjectId") is not None
        ]

    # =========================================================================
    # Companies
    # =========================================================================

    def get_company(
        self, company_id: str, properties: Sequence[str] = COMPANY_PROPERTIES
    ) -> dict[str, Any]:
        """
        Get one company record.

        Raises:
            NotFoundError: If the company does not exist
            HubSpotAPIError: If the request fails
        """
        return self._request_json(
            "GET",
            f"/crm/v3/objects/companies/{company_id}",
            f"get_company({company_id})",
            params={"properties": ",".join(properties)},
        )

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()

    def __enter__(self) -> "HubSpotAPI":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _retry_after_seconds(response: requests.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_detail(response: requests.Response) -> str:
    """Extract HubSpot's error message, falling back to the raw body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason or ""
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.text[:500]
