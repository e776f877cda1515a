"""
Reconciliation engine for HubSpot membership directory synchronization.

Compares requested members against a complete snapshot of the HubSpot list
and the local profile store:

- Members still on the list are merged field by field and upserted as active.
  A blank HubSpot value never overwrites a stored value.
- Members missing from the list are marked inactive; nothing else about
  their profile changes.
- Members unknown to both sides are skipped.
"""

import logging
import threading
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from member_sync.storage.db import ProfileDatabase, ProfileStoreError
from member_sync.sync.member import (
    SYNCED_FIELDS,
    ExternalContactRecord,
    LocalProfile,
    email_domain_of,
)
from member_sync.sync.pagination import (
    ExternalListSnapshot,
    PageSource,
    collect_snapshot,
)
from member_sync.utils.logging import get_audit_logger

logger = logging.getLogger(__name__)


class IncompleteSnapshotError(Exception):
    """Raised when reconciliation is attempted against a partial snapshot."""

    pass


class ReconciliationError(Exception):
    """Raised in fail-fast mode when a member cannot be reconciled."""

    def __init__(self, message: str, record_id: str):
        super().__init__(message)
        self.record_id = record_id


class MemberAction(str, Enum):
    """Outcome of reconciling one member."""

    UPDATED = "updated"  # Present in HubSpot, profile upserted as active
    DEACTIVATED = "deactivated"  # Absent from HubSpot, profile marked inactive
    SKIPPED = "skipped"  # Absent from HubSpot and from the local store
    FAILED = "failed"  # Store error while applying the decision


@dataclass(frozen=True)
class MemberResult:
    """Result of reconciling a single member."""

    record_id: str
    action: MemberAction
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.action is not MemberAction.FAILED


@dataclass
class SyncSummary:
    """
    Statistics from a reconciliation run.

    Counts are accumulated per member; failures keep the record id and
    error text so an operator can retry just those members.
    """

    updated: int = 0
    deactivated: int = 0
    skipped: int = 0
    failures: list[MemberResult] = field(default_factory=list)
    cancelled: bool = False
    requested: int = 0

    def add(self, result: MemberResult) -> None:
        """Fold one member result into the counts."""
        if result.action is MemberAction.UPDATED:
            self.updated += 1
        elif result.action is MemberAction.DEACTIVATED:
            self.deactivated += 1
        elif result.action is MemberAction.SKIPPED:
            self.skipped += 1
        else:
            self.failures.append(result)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def processed(self) -> int:
        return self.updated + self.deactivated + self.skipped + self.failed

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize for the trigger response.

        Always contains updated and deactivated; skipped, failed and
        cancelled appear only when they carry information.
        """
        data: dict[str, Any] = {
            "updated": self.updated,
            "deactivated": self.deactivated,
        }
        if self.skipped:
            data["skipped"] = self.skipped
        if self.failures:
            data["failed"] = [
                {"recordId": f.record_id, "error": f.error} for f in self.failures
            ]
        if self.cancelled:
            data["cancelled"] = True
        return data

    def summary(self) -> str:
        """Generate a human-readable summary of the run."""
        lines = [
            "Sync Summary:",
            f"  Requested members: {self.requested}",
            f"  Updated: {self.updated}",
            f"  Deactivated: {self.deactivated}",
        ]
        if self.skipped:
            lines.append(f"  Skipped (unknown to both sides): {self.skipped}")
        if self.failures:
            lines.append(f"  Failed: {self.failed}")
            for failure in self.failures:
                lines.append(f"    {failure.record_id}: {failure.error}")
        if self.cancelled:
            lines.append(
                f"  Cancelled after {self.processed} of {self.requested} members"
            )
        return "\n".join(lines)


def merge_profile(
    record: ExternalContactRecord, existing: Optional[LocalProfile]
) -> LocalProfile:
    """
    Merge a HubSpot record over the stored profile.

    For every synced field: take the HubSpot value if it is non-empty,
    otherwise keep the stored value, otherwise use "". record_id comes from
    the record and active is always True. Full name is rebuilt from the
    merged first and last names. Email domain is kept from the stored profile
    and only derived from the merged email when nothing is stored.

    Args:
        record: Member as currently reported by HubSpot
        existing: Stored profile, or None for a new member

    Returns:
        The profile to upsert
    """
    values: dict[str, Any] = {}
    for profile_field in SYNCED_FIELDS:
        incoming = record.value(profile_field.external_property or "")
        if incoming:
            values[profile_field.attribute] = incoming
        elif existing is not None and getattr(existing, profile_field.attribute):
            values[profile_field.attribute] = getattr(existing, profile_field.attribute)
        else:
            values[profile_field.attribute] = ""

    full_name = f"{values['first_name']} {values['last_name']}".strip()
    if not full_name and existing is not None:
        full_name = existing.full_name or ""
    values["full_name"] = full_name

    email_domain = existing.email_domain if existing is not None else None
    if not email_domain:
        email_domain = email_domain_of(values["email"])
    values["email_domain"] = email_domain

    return LocalProfile(record_id=record.record_id, active=True, **values)


def dedupe_record_ids(record_ids: Iterable[Any]) -> list[str]:
    """Normalize ids to stripped strings, dropping blanks and duplicates."""
    seen: dict[str, None] = {}
    for raw in record_ids:
        if raw is None:
            continue
        record_id = str(raw).strip()
        if record_id:
            seen.setdefault(record_id, None)
    return list(seen)


class ReconciliationEngine:
    """
    Applies a HubSpot list snapshot to the local profile store.

    Features:
    - Merge rule that never replaces stored data with blanks
    - Deactivation only against a complete snapshot
    - Per-member failure isolation (or fail-fast when requested)
    - Bounded parallelism across members
    - Cancellation between members

    Usage:
        engine = ReconciliationEngine(database=ProfileDatabase(path))

        snapshot = collect_snapshot(api, "4959")
        summary = engine.reconcile(["42", "43"], snapshot)
        print(summary.summary())

        # Or fetch and reconcile in one call
        summary = engine.run_sync(["42", "43"], client=api, list_id="4959")
    """

    def __init__(
        self,
        database: ProfileDatabase,
        max_workers: int = 1,
        fail_fast: bool = False,
    ):
        """
        Initialize the reconciliation engine.

        Args:
            database: Profile store to read from and write to
            max_workers: Members reconciled concurrently (1 = sequential)
            fail_fast: Abort the run on the first store error instead of
                recording it and continuing
        """
        self.database = database
        self.max_workers = max(1, max_workers)
        self.fail_fast = fail_fast

    def reconcile_member(
        self, record_id: str, snapshot: ExternalListSnapshot
    ) -> MemberResult:
        """
        Reconcile one member against the snapshot and store.

        Store errors are returned as a FAILED result, never raised.
        """
        audit = get_audit_logger()
        try:
            existing = self.database.get_profile(record_id)
            record = snapshot.get(record_id)

            if record is not None:
                merged = merge_profile(record, existing)
                self.database.upsert_profile(merged)
                audit.info(
                    f"{record_id}: {'updated' if existing else 'created'} "
                    f"({merged.full_name or 'no name'})"
                )
                return MemberResult(record_id, MemberAction.UPDATED)

            if existing is not None:
                self.database.update_profile_fields(record_id, active=False)
                audit.info(f"{record_id}: deactivated (not in list {snapshot.list_id})")
                return MemberResult(record_id, MemberAction.DEACTIVATED)

            audit.info(f"{record_id}: skipped (unknown locally and in HubSpot)")
            return MemberResult(record_id, MemberAction.SKIPPED)

        except ProfileStoreError as e:
            logger.error(f"Failed to reconcile member {record_id}: {e}")
            audit.warning(f"{record_id}: failed ({e})")
            return MemberResult(record_id, MemberAction.FAILED, error=str(e))

    def reconcile(
        self,
        record_ids: Iterable[Any],
        snapshot: ExternalListSnapshot,
        cancel_event: Optional[threading.Event] = None,
    ) -> SyncSummary:
        """
        Reconcile requested members against a complete snapshot.

        Args:
            record_ids: Member record ids to reconcile; duplicates collapse
            snapshot: Complete snapshot of the HubSpot list
            cancel_event: When set, no further member is started and the
                partial summary is returned with cancelled=True

        Returns:
            SyncSummary for the run

        Raises:
            IncompleteSnapshotError: If the snapshot is not complete
            ReconciliationError: In fail-fast mode, on the first failure
        """
        if not snapshot.complete:
            raise IncompleteSnapshotError(
                f"Snapshot of list {snapshot.list_id} is incomplete "
                f"({snapshot.page_count} page(s) fetched); refusing to reconcile"
            )

        ids = dedupe_record_ids(record_ids)
        summary = SyncSummary(requested=len(ids))
        logger.info(
            f"Reconciling {len(ids)} member(s) against {len(snapshot)} "
            f"list member(s) (workers={self.max_workers}, fail_fast={self.fail_fast})"
        )

        if self.max_workers == 1 or len(ids) <= 1:
            self._reconcile_sequential(ids, snapshot, summary, cancel_event)
        else:
            self._reconcile_parallel(ids, snapshot, summary, cancel_event)

        if summary.cancelled:
            logger.warning(
                f"Reconciliation cancelled after {summary.processed} "
                f"of {summary.requested} member(s)"
            )
        logger.info(
            f"Reconciliation finished: {summary.updated} updated, "
            f"{summary.deactivated} deactivated, {summary.skipped} skipped, "
            f"{summary.failed} failed"
        )
        return summary

    def _check_fail_fast(self, result: MemberResult) -> None:
        if self.fail_fast and not result.ok:
            raise ReconciliationError(
                f"Failed to reconcile member {result.record_id}: {result.error}",
                record_id=result.record_id,
            )

    def _reconcile_sequential(
        self,
        ids: list[str],
        snapshot: ExternalListSnapshot,
        summary: SyncSummary,
        cancel_event: Optional[threading.Event],
    ) -> None:
        for record_id in ids:
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                return
            result = self.reconcile_member(record_id, snapshot)
            summary.add(result)
            self._check_fail_fast(result)

    def _reconcile_parallel(
        self,
        ids: list[str],
        snapshot: ExternalListSnapshot,
        summary: SyncSummary,
        cancel_event: Optional[threading.Event],
    ) -> None:
        """
        Reconcile on a bounded thread pool.

        Ids are distinct, so no two workers touch the same profile. A member
        whose turn comes after cancellation (or after a fail-fast failure)
        is not started.
        """
        stop = threading.Event()

        def work(record_id: str) -> Optional[MemberResult]:
            if stop.is_set() or (cancel_event is not None and cancel_event.is_set()):
                return None
            result = self.reconcile_member(record_id, snapshot)
            if self.fail_fast and not result.ok:
                stop.set()
            return result

        # Leaving the block waits for every submitted member
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="reconcile"
        ) as executor:
            futures: list[Future[Optional[MemberResult]]] = [
                executor.submit(work, record_id) for record_id in ids
            ]

        first_failure: Optional[MemberResult] = None
        for future in futures:
            result = future.result()
            if result is None:
                if not stop.is_set():
                    summary.cancelled = True
                continue
            summary.add(result)
            if first_failure is None and not result.ok:
                first_failure = result

        if first_failure is not None:
            self._check_fail_fast(first_failure)

    def run_sync(
        self,
        record_ids: Iterable[Any],
        client: PageSource,
        list_id: str,
        page_size: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> SyncSummary:
        """
        Fetch the complete list snapshot, then reconcile the members.

        The snapshot is fully built before any member is touched. On a run
        that was neither cancelled nor failed, the list's last sync time
        is recorded.

        Raises:
            PaginationError: If the list cannot be fully enumerated
            SyncCancelledError: If cancelled while paginating
            ReconciliationError: In fail-fast mode
        """
        snapshot = collect_snapshot(client, list_id, page_size, cancel_event)
        summary = self.reconcile(record_ids, snapshot, cancel_event)

        if not summary.cancelled and not summary.has_failures:
            self.database.record_sync(list_id)
        return summary

    def __repr__(self) -> str:
        return (
            f"ReconciliationEngine(database={self.database!r}, "
            f"max_workers={self.max_workers}, fail_fast={self.fail_fast})"
        )
