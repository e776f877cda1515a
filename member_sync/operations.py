"""
Operations exposed to the admin tooling.

Each operation returns an OperationResponse holding an HTTP-style status
code and a JSON-serializable body, so it can back a web handler or the CLI:

- sync_members: reconcile members against the HubSpot list
- test_connection: check a list id and discover its field mapping
- fetch_companies: look up companies of the companies list's contacts

Every operation checks the HubSpot credential before any network call.
"""

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from member_sync.api.hubspot_api import HubSpotAPI, HubSpotAPIError
from member_sync.config.loader import ConfigError, Settings
from member_sync.storage.db import ProfileDatabase, ProfileStoreError
from member_sync.sync.companies import CompanyEnricher
from member_sync.sync.engine import (
    IncompleteSnapshotError,
    ReconciliationEngine,
    ReconciliationError,
    SyncSummary,
    dedupe_record_ids,
)
from member_sync.sync.field_mapping import FieldMappingError, FieldMappingResolver
from member_sync.sync.pagination import PaginationError, SyncCancelledError
from member_sync.utils.paths import IN_MEMORY_DATABASE

logger = logging.getLogger(__name__)

# Status used when the caller went away mid-run (nginx convention)
STATUS_CLIENT_CLOSED = 499

# Errors reported to the caller as a failed operation
OPERATION_ERRORS = (
    ConfigError,
    HubSpotAPIError,
    PaginationError,
    IncompleteSnapshotError,
    ReconciliationError,
    ProfileStoreError,
    FieldMappingError,
)


@dataclass
class OperationResponse:
    """Status code and JSON body returned by an operation."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return bool(self.body.get("success"))


def _failure(status_code: int, error: str, **extra: Any) -> OperationResponse:
    return OperationResponse(status_code, {"success": False, "error": error, **extra})


def build_api(settings: Settings) -> HubSpotAPI:
    """
    Create a HubSpotAPI from settings.

    Raises:
        ConfigError: If the HubSpot credential is missing
    """
    return HubSpotAPI(
        settings.require_api_key(),
        page_size=settings.page_size,
        timeout=settings.timeout,
        max_retries=settings.max_retries,
        initial_retry_delay=settings.initial_retry_delay,
        max_retry_delay=settings.max_retry_delay,
    )


def open_database(settings: Settings) -> ProfileDatabase:
    """Open (and create if needed) the profile database named in settings."""
    if settings.database_path != IN_MEMORY_DATABASE:
        Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
    database = ProfileDatabase(settings.database_path)
    database.initialize()
    return database


def sync_members(
    member_ids: Optional[Sequence[Any]],
    settings: Settings,
    api: Optional[HubSpotAPI] = None,
    database: Optional[ProfileDatabase] = None,
    cancel_event: Optional[threading.Event] = None,
) -> OperationResponse:
    """
    Reconcile the given members against the configured HubSpot list.

    Returns:
        200 with {success: true, summary: {updated, deactivated}};
        400 when member ids are not a list, or none remain once blanks and
        duplicates are dropped;
        499 with the partial summary when cancelled;
        500 with {success: false, error} on failure. Per-member failures
        also return 500, with the partial summary and failed ids attached.
    """
    try:
        settings.require_api_key()
        list_id = settings.require_list_id()
    except ConfigError as e:
        logger.error(f"Sync not started: {e}")
        return _failure(500, str(e))

    if not isinstance(member_ids, (list, tuple)):
        return _failure(400, "memberIds must be a non-empty list")

    ids = dedupe_record_ids(member_ids)
    if not ids:
        return _failure(400, "memberIds must be a non-empty list")

    logger.info(f"Starting HubSpot sync of {len(ids)} member(s) from list {list_id}")

    try:
        api = api or build_api(settings)
        database = database or open_database(settings)
        engine = ReconciliationEngine(
            database, max_workers=settings.max_workers, fail_fast=settings.fail_fast
        )
        summary = engine.run_sync(
            ids,
            client=api,
            list_id=list_id,
            page_size=settings.page_size,
            cancel_event=cancel_event,
        )
    except SyncCancelledError as e:
        logger.warning(str(e))
        return _failure(
            STATUS_CLIENT_CLOSED,
            "Sync cancelled",
            summary=SyncSummary(requested=len(ids), cancelled=True).to_dict(),
        )
    except OPERATION_ERRORS as e:
        logger.error(f"Error in HubSpot sync: {e}")
        return _failure(500, str(e))

    if summary.cancelled:
        return _failure(STATUS_CLIENT_CLOSED, "Sync cancelled", summary=summary.to_dict())

    if summary.has_failures:
        return _failure(
            500,
            f"{summary.failed} of {summary.requested} member(s) failed to sync",
            summary=summary.to_dict(),
        )

    return OperationResponse(200, {"success": True, "summary": summary.to_dict()})


def test_connection(
    list_id: Optional[str],
    settings: Settings,
    api: Optional[HubSpotAPI] = None,
    database: Optional[ProfileDatabase] = None,
) -> OperationResponse:
    """
    Verify a HubSpot list and discover its field mapping.

    The mapping is stored with the list settings when a database is
    available.

    Returns:
        200 with {success: true, listId, listName, properties, message};
        400 when the list id is missing or not numeric;
        404 when HubSpot does not know the list;
        500 with {success: false, error} on other failures
    """
    try:
        settings.require_api_key()
    except ConfigError as e:
        return _failure(500, str(e))

    list_id = (list_id or "").strip()
    if not list_id:
        return _failure(400, "List ID is required")
    if not list_id.isdigit():
        return _failure(400, "List ID must be a number")

    logger.info(f"Testing connection for HubSpot list ID: {list_id}")

    try:
        api = api or build_api(settings)
        result = FieldMappingResolver(api).resolve(list_id)
    except FieldMappingError as e:
        cause = e.__cause__
        status = 404 if getattr(cause, "status_code", None) == 404 else 500
        logger.error(f"Connection test failed: {e}")
        return _failure(status, str(e))
    except OPERATION_ERRORS as e:
        logger.error(f"Connection test failed: {e}")
        return _failure(500, str(e))

    try:
        database = database or open_database(settings)
        database.save_field_mapping(result.list_id, result.list_name, result.mapping)
    except ProfileStoreError as e:
        # The connection itself works; report it but keep the result
        logger.warning(f"Could not store field mapping for list {list_id}: {e}")

    return OperationResponse(
        200,
        {
            "success": True,
            "listId": int(list_id),
            "listName": result.list_name,
            "properties": result.mapping,
            "message": "Successfully connected to HubSpot list",
        },
    )


def fetch_companies(
    settings: Settings,
    api: Optional[HubSpotAPI] = None,
    cancel_event: Optional[threading.Event] = None,
) -> OperationResponse:
    """
    Look up the companies associated with the companies list's contacts.

    Individual company failures are skipped (listed under "skipped");
    only configuration and list pagination failures fail the operation.

    Returns:
        200 with {success: true, data: [company, ...]}
    """
    try:
        settings.require_api_key()
        list_id = settings.require_companies_list_id()
    except ConfigError as e:
        return _failure(500, str(e))

    try:
        api = api or build_api(settings)
        enricher = CompanyEnricher(
            api, max_workers=settings.max_workers, page_size=settings.page_size
        )
        result = enricher.fetch_companies_for_list(list_id, cancel_event)
    except OPERATION_ERRORS as e:
        logger.error(f"Company lookup failed: {e}")
        return _failure(500, str(e))

    body: dict[str, Any] = {
        "success": True,
        "data": [company.to_dict() for company in result.companies],
    }
    if result.failed_company_ids:
        body["skipped"] = result.failed_company_ids
    if result.cancelled:
        return _failure(STATUS_CLIENT_CLOSED, "Company lookup cancelled", data=body["data"])
    return OperationResponse(200, body)
