"""
Company enrichment for the member directory.

Looks up the companies associated with the contacts of a HubSpot list.
Enrichment is best effort: a failed association or company lookup is
logged and skipped, unlike reconciliation where any page failure aborts.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Optional

from member_sync.api.hubspot_api import HubSpotAPI, HubSpotAPIError, NotFoundError
from member_sync.sync.pagination import SyncCancelledError, iter_pages

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass
class CompanyRecord:
    """A HubSpot company associated with one or more list contacts."""

    company_id: str
    name: str = ""
    domain: str = ""
    industry: str = ""
    city: str = ""
    state: str = ""
    contact_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_api_response(
        cls, result: dict[str, Any], contact_ids: Optional[list[str]] = None
    ) -> "CompanyRecord":
        """Create a company from a HubSpot CRM object."""
        properties = result.get("properties") or {}

        def prop(name: str) -> str:
            value = properties.get(name)
            return str(value).strip() if value else ""

        return cls(
            company_id=str(result.get("id", "")),
            name=prop("name"),
            domain=prop("domain"),
            industry=prop("industry"),
            city=prop("city"),
            state=prop("state"),
            contact_ids=sorted(contact_ids or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.company_id,
            "name": self.name,
            "domain": self.domain,
            "industry": self.industry,
            "city": self.city,
            "state": self.state,
            "contactIds": list(self.contact_ids),
        }


@dataclass
class EnrichmentResult:
    """Companies found for a list plus the lookups that failed."""

    companies: list[CompanyRecord] = field(default_factory=list)
    failed_company_ids: list[str] = field(default_factory=list)
    failed_contact_ids: list[str] = field(default_factory=list)
    cancelled: bool = False


class CompanyEnricher:
    """
    Fetches the companies of a list's contacts.

    Usage:
        enricher = CompanyEnricher(api, max_workers=4)
        result = enricher.fetch_companies_for_list("4981")
        for company in result.companies:
            print(company.name)
    """

    def __init__(
        self,
        api: HubSpotAPI,
        max_workers: int = DEFAULT_MAX_WORKERS,
        page_size: Optional[int] = None,
    ):
        self.api = api
        self.max_workers = max(1, max_workers)
        self.page_size = page_size

    def _company_ids_for_contact(self, contact_id: str) -> Optional[list[str]]:
        """Association lookup; None when the lookup itself failed."""
        try:
            return self.api.get_contact_company_ids(contact_id)
        except NotFoundError:
            # Contact deleted since the page was read
            return []
        except HubSpotAPIError as e:
            logger.warning(f"Skipping companies of contact {contact_id}: {e}")
            return None

    def _fetch_company(
        self, company_id: str, contact_ids: list[str]
    ) -> Optional[CompanyRecord]:
        try:
            result = self.api.get_company(company_id)
        except HubSpotAPIError as e:
            logger.warning(f"Skipping company {company_id}: {e}")
            return None
        return CompanyRecord.from_api_response(result, contact_ids)

    def fetch_companies_for_list(
        self,
        list_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> EnrichmentResult:
        """
        Collect the companies associated with a list's contacts.

        The list itself is paginated strictly; a page failure propagates as
        PaginationError. Association and company lookups fan out over a
        bounded thread pool and failures are isolated per item.

        Returns:
            EnrichmentResult with companies sorted by name
        """
        result = EnrichmentResult()
        contact_ids: list[str] = []

        try:
            for page in iter_pages(
                self.api, list_id, self.page_size, cancel_event, ids_only=True
            ):
                contact_ids.extend(record.record_id for record in page.records)
        except SyncCancelledError:
            logger.warning(f"Company lookup for list {list_id} cancelled")
            result.cancelled = True
            return result

        logger.info(
            f"Looking up companies for {len(contact_ids)} contact(s) of list {list_id}"
        )

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        def lookup(contact_id: str) -> Optional[list[str]]:
            if cancelled():
                return None
            return self._company_ids_for_contact(contact_id)

        def fetch(company_id: str, members: list[str]) -> Optional[CompanyRecord]:
            if cancelled():
                return None
            return self._fetch_company(company_id, members)

        contacts_by_company: dict[str, list[str]] = {}
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="associations"
        ) as executor:
            lookups = {
                contact_id: executor.submit(lookup, contact_id)
                for contact_id in dict.fromkeys(contact_ids)
            }

        for contact_id, future in lookups.items():
            company_ids = future.result()
            if company_ids is None:
                if cancelled():
                    result.cancelled = True
                else:
                    result.failed_contact_ids.append(contact_id)
                continue
            for company_id in company_ids:
                contacts_by_company.setdefault(company_id, []).append(contact_id)

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="companies"
        ) as executor:
            fetches = {
                company_id: executor.submit(fetch, company_id, members)
                for company_id, members in contacts_by_company.items()
            }

        for company_id, future in fetches.items():
            company = future.result()
            if company is None:
                if cancelled():
                    result.cancelled = True
                else:
                    result.failed_company_ids.append(company_id)
                continue
            result.companies.append(company)

        result.companies.sort(key=lambda c: (c.name.lower(), c.company_id))
        logger.info(
            f"Found {len(result.companies)} company(ies) for list {list_id}; "
            f"{len(result.failed_company_ids)} lookup(s) failed"
        )
        return result
