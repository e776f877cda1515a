"""
Pagination aggregator for HubSpot list memberships.

Follows ``after`` cursors page by page until HubSpot stops returning one,
producing an ExternalListSnapshot of the whole list. Pages are requested
strictly in sequence since each cursor comes from the previous page.
"""

import logging
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Protocol

from member_sync.sync.member import ExternalContactRecord

logger = logging.getLogger(__name__)


class PaginationError(Exception):
    """Raised when a page cannot be fetched; no partial snapshot is returned."""

    def __init__(self, message: str, page_number: int):
        super().__init__(message)
        self.page_number = page_number


class SyncCancelledError(Exception):
    """Raised when a run is cancelled before it could finish."""

    pass


class PageSource(Protocol):
    """Anything that can return one page of list members (HubSpotAPI)."""

    def get_list_memberships_page(
        self, list_id: str, after: Optional[str] = None, limit: Optional[int] = None
    ): ...

    def get_list_member_ids_page(
        self, list_id: str, after: Optional[str] = None, limit: Optional[int] = None
    ): ...


@dataclass(frozen=True)
class FetchedPage:
    """A page of members as yielded by iter_pages()."""

    page_number: int
    records: tuple[ExternalContactRecord, ...]
    next_cursor: Optional[str]

    @property
    def is_last(self) -> bool:
        return self.next_cursor is None


@dataclass(frozen=True)
class ExternalListSnapshot:
    """
    Point-in-time enumeration of a HubSpot list's members.

    Attributes:
        list_id: HubSpot list id
        records: Members in the order the pages returned them
        complete: True only when pagination ran until no cursor remained
        page_count: Number of pages fetched

    A snapshot built from a subset of pages must keep complete=False; the
    reconciliation engine refuses to deactivate anyone against it.
    """

    list_id: str
    records: tuple[ExternalContactRecord, ...] = field(default_factory=tuple)
    complete: bool = False
    page_count: int = 0
    _index: Mapping[str, ExternalContactRecord] = field(
        default_factory=lambda: MappingProxyType({}), repr=False, compare=False
    )

    def __post_init__(self) -> None:
        index: dict[str, ExternalContactRecord] = {}
        for record in self.records:
            # First occurrence wins if a member shows up on two pages
            index.setdefault(record.record_id, record)
        object.__setattr__(self, "_index", MappingProxyType(index))

    def get(self, record_id: str) -> Optional[ExternalContactRecord]:
        """Look up a member by record id."""
        return self._index.get(str(record_id))

    def __contains__(self, record_id: object) -> bool:
        return str(record_id) in self._index

    def __len__(self) -> int:
        return len(self.records)

    @property
    def record_ids(self) -> frozenset[str]:
        return frozenset(self._index)


def iter_pages(
    client: PageSource,
    list_id: str,
    page_size: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    start_cursor: Optional[str] = None,
    ids_only: bool = False,
) -> Iterator[FetchedPage]:
    """
    Lazily yield pages of a list's members, following cursors.

    Nothing is requested until the generator is advanced, and the next page
    is only requested when the caller asks for it, so a caller can stop or
    cancel cleanly between pages. Passing ``start_cursor`` resumes from a
    known cursor.

    Args:
        client: Page source, normally a HubSpotAPI
        list_id: HubSpot list id
        page_size: Optional page size override
        cancel_event: When set, no further page is requested
        start_cursor: Cursor to resume from
        ids_only: Read only member ids, skipping the contact property read

    Yields:
        FetchedPage objects, numbered from 1

    Raises:
        PaginationError: If a page request fails or the cursor repeats
        SyncCancelledError: If cancel_event is set before a page request
    """
    cursor = start_cursor
    seen_cursors: set[str] = set()
    page_number = 0
    fetch_page = (
        client.get_list_member_ids_page
        if ids_only
        else client.get_list_memberships_page
    )

    while True:
        page_number += 1

        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelledError(
                f"Pagination of list {list_id} cancelled before page {page_number}"
            )

        logger.debug(f"Fetching page {page_number} of list {list_id}")
        try:
            page = fetch_page(list_id, after=cursor, limit=page_size)
        except Exception as e:
            raise PaginationError(
                f"Failed to fetch page {page_number} of list {list_id}: {e}",
                page_number=page_number,
            ) from e

        next_cursor = page.next_cursor or None
        yield FetchedPage(
            page_number=page_number,
            records=tuple(page.records),
            next_cursor=next_cursor,
        )

        if next_cursor is None:
            return

        if next_cursor in seen_cursors:
            raise PaginationError(
                f"List {list_id} returned cursor {next_cursor!r} twice",
                page_number=page_number,
            )
        seen_cursors.add(next_cursor)
        cursor = next_cursor


def collect_snapshot(
    client: PageSource,
    list_id: str,
    page_size: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ExternalListSnapshot:
    """
    Fetch every page of a list into one complete snapshot.

    Records are concatenated in page order without reordering. Either the
    whole list is returned with complete=True or an exception is raised.

    Raises:
        PaginationError: If any page fails
        SyncCancelledError: If cancelled between pages
    """
    records: list[ExternalContactRecord] = []
    page_count = 0
    exhausted = False

    for page in iter_pages(client, list_id, page_size, cancel_event):
        records.extend(page.records)
        page_count = page.page_number
        exhausted = page.is_last

    snapshot = ExternalListSnapshot(
        list_id=str(list_id),
        records=tuple(records),
        complete=exhausted,
        page_count=page_count,
    )
    logger.info(
        f"Fetched {len(snapshot)} members of list {list_id} in {page_count} page(s)"
    )
    return snapshot
