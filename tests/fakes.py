"""
In-memory stand-ins used across the test suite.
"""

from typing import Optional

from member_sync.api.hubspot_api import ContactPage, HubSpotAPIError
from member_sync.sync.member import ExternalContactRecord


def make_record(record_id: str, **properties: Optional[str]) -> ExternalContactRecord:
    """Build a HubSpot contact record from keyword properties."""
    return ExternalContactRecord(record_id=str(record_id), properties=properties)


class FakePageSource:
    """
    In-memory stand-in for the HubSpotAPI list membership page reads.

    Pages are served in order, each linked to the next by a cursor
    "cursor-<n>". Page numbers listed in fail_on raise HubSpotAPIError.
    """

    def __init__(self, pages: list[list[ExternalContactRecord]], fail_on=()):
        self.pages = pages
        self.fail_on = set(fail_on)
        self.calls: list[Optional[str]] = []

    def get_list_memberships_page(self, list_id, after=None, limit=None):
        self.calls.append(after)
        index = 0 if after is None else int(after.split("-")[1])
        if index + 1 in self.fail_on:
            raise HubSpotAPIError(f"page {index + 1} failed", status_code=500)
        next_cursor = f"cursor-{index + 1}" if index + 1 < len(self.pages) else None
        return ContactPage(records=tuple(self.pages[index]), next_cursor=next_cursor)

    def get_list_member_ids_page(self, list_id, after=None, limit=None):
        page = self.get_list_memberships_page(list_id, after, limit)
        return ContactPage(
            records=tuple(
                ExternalContactRecord(record_id=r.record_id) for r in page.records
            ),
            next_cursor=page.next_cursor,
        )
