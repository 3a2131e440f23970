"""Reconciliation engine for managed prefix lists.

The engine implements one reconciliation step:
1. Fetch the list (describe + every page of entries at that version)
2. Diff the desired CIDRs against the entries we own
3. Apply the diff with a single versioned modify call
4. Optionally wait for the list to settle (modify-complete)

Ownership is decided solely by the entry description: an entry is ours
iff its description matches the configured tag, case-insensitively.
Entries carrying any other description are never added to a removal.

The engine keeps no state between calls and never retries on its own.
A stale version surfaces as VersionConflict; re-fetching and retrying is
the caller's decision (see prefixsync.poller).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from typing import TypeVar

from .config import (
    DEFAULT_CONVERGENCE_POLL_SECONDS,
    DEFAULT_CONVERGENCE_TIMEOUT_SECONDS,
    MAX_ENTRY_PAGES,
)
from .errors import (
    AllowListError,
    Cardinality,
    CardinalityError,
    ConvergenceTimeout,
    DuplicateEntry,
    NothingToDo,
    UnknownRemoteError,
    classify_error,
)
from .gateway import PrefixListGateway
from .models import AllowListEntry, AllowListSnapshot, Diff, Network, PrefixListState
from .timer import IntervalTimer

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ApplyResult:
    """Result of applying entries one by one in tolerant mode."""

    snapshot: AllowListSnapshot
    added: list[AllowListEntry] = field(default_factory=list)
    already_present: list[AllowListEntry] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added)


class PrefixListReconciler:
    """Fetch, diff and apply changes to a single managed prefix list."""

    def __init__(
        self,
        gateway: PrefixListGateway,
        description: str,
        *,
        max_entry_pages: int = MAX_ENTRY_PAGES,
        convergence_timeout: float = DEFAULT_CONVERGENCE_TIMEOUT_SECONDS,
        convergence_poll_interval: float = DEFAULT_CONVERGENCE_POLL_SECONDS,
    ) -> None:
        """Initialize the engine.

        Args:
            gateway: Remote prefix list API.
            description: Ownership tag written on, and used to recognise, our entries.
            max_entry_pages: Upper bound on pages followed during fetch.
            convergence_timeout: Default overall wait for await_convergence.
            convergence_poll_interval: Default describe interval while waiting.
        """
        self._gateway = gateway
        self._description = description
        self._max_entry_pages = max_entry_pages
        self._convergence_timeout = convergence_timeout
        self._convergence_poll_interval = convergence_poll_interval

    @property
    def description(self) -> str:
        return self._description

    async def _remote(self, operation: str, call: Awaitable[T]) -> T:
        """Await a gateway call, converting failures into AllowListError."""
        try:
            return await call
        except AllowListError:
            raise
        except Exception as e:
            error = classify_error(e)
            logger.debug(
                "Remote call failed",
                extra={
                    "operation": operation,
                    "error_type": type(error).__name__,
                    "details": error.details,
                },
            )
            raise error from e

    async def describe_one(self, list_id: str) -> AllowListSnapshot:
        """Describe the list, enforcing that exactly one list matches."""
        snapshots = await self._remote("describe", self._gateway.describe(list_id))

        if not snapshots:
            raise CardinalityError(Cardinality.NONE, f"Prefix list `{list_id}` not found.")
        if len(snapshots) > 1:
            raise CardinalityError(
                Cardinality.TOO_MANY,
                f"Got {len(snapshots)} prefix lists from AWS for `{list_id}`.",
            )
        return snapshots[0]

    async def fetch(self, list_id: str) -> AllowListSnapshot:
        """Return the list metadata together with all of its entries.

        Entries are read at the described version and accumulated in the
        order the pages arrive. Pages are requested one after another.
        """
        snapshot = await self.describe_one(list_id)

        entries: list[AllowListEntry] = []
        token: str | None = None
        pages = 0
        while True:
            if pages >= self._max_entry_pages:
                raise UnknownRemoteError(
                    f"Entry pagination for `{list_id}` did not finish after {pages} pages."
                )
            page = await self._remote(
                "list_entries",
                self._gateway.list_entries(list_id, snapshot.version, token),
            )
            pages += 1
            entries.extend(page.entries)
            if not page.next_token:
                break
            token = page.next_token

        logger.debug(
            "Fetched prefix list",
            extra={
                "prefix_list_id": list_id,
                "version": snapshot.version,
                "entries": len(entries),
                "pages": pages,
            },
        )
        return snapshot.with_entries(tuple(entries))

    def owned(self, snapshot: AllowListSnapshot) -> frozenset[Network]:
        """CIDRs of the entries carrying our ownership tag."""
        return snapshot.owned_cidrs(self._description)

    def diff(self, snapshot: AllowListSnapshot, desired: Iterable[Network]) -> Diff:
        """Compute additions and removals against owned entries only."""
        desired_set = frozenset(desired)
        owned = self.owned(snapshot)
        return Diff(to_add=desired_set - owned, to_remove=owned - desired_set)

    async def reconcile(
        self,
        snapshot: AllowListSnapshot,
        desired: Iterable[Network],
    ) -> AllowListSnapshot:
        """Bring owned entries in line with the desired set in one modify call.

        Returns:
            The snapshot returned by modify (metadata only, no entries).

        Raises:
            NothingToDo: If the owned entries already match.
            VersionConflict: If snapshot.version is stale.
            AllowListError: For any other classified remote failure.
        """
        diff = self.diff(snapshot, desired)
        if diff.is_empty:
            raise NothingToDo("No IPs to add or remove.")

        add = [AllowListEntry(cidr=cidr, description=self._description) for cidr in diff.to_add]
        remove = sorted(diff.to_remove, key=str)

        logger.info(
            "Updating prefix list",
            extra={
                "prefix_list_id": snapshot.id,
                "version": snapshot.version,
                "add": sorted(str(c) for c in diff.to_add),
                "remove": [str(c) for c in remove],
            },
        )

        result = await self._remote(
            "modify",
            self._gateway.modify(snapshot.id, snapshot.version, add, remove),
        )
        logger.info(
            "Prefix list updated",
            extra={"prefix_list_id": result.id, "version": result.version},
        )
        return result

    async def apply_entries(
        self,
        snapshot: AllowListSnapshot,
        entries: Iterable[AllowListEntry],
        *,
        wait: bool = True,
    ) -> ApplyResult:
        """Add entries one call at a time, tolerating duplicates.

        AWS fails a whole batch if a single entry is a duplicate, so each
        entry gets its own modify call. A DuplicateEntry response only skips
        that entry; any other error propagates immediately. Entries whose
        CIDR is already present in the snapshot are skipped without a call.

        A list in modify-in-progress rejects further modifications, so the
        list is always awaited between two calls regardless of wait.

        Args:
            snapshot: A fully fetched snapshot.
            entries: Entries to ensure, with their own descriptions.
            wait: Also wait for the list to settle after the last call.
        """
        result = ApplyResult(snapshot=snapshot)
        present = snapshot.cidrs()
        current = snapshot
        settling = False

        for entry in entries:
            if entry.cidr in present:
                logger.info("Entry already present", extra={"cidr": str(entry.cidr)})
                result.already_present.append(entry)
                continue

            if settling:
                current = await self.await_convergence(current.id)
                settling = False

            try:
                current = await self._remote(
                    "modify",
                    self._gateway.modify(current.id, current.version, [entry], []),
                )
            except DuplicateEntry as e:
                logger.warning(
                    "Entry already exists, skipping",
                    extra={"cidr": str(entry.cidr), "code": e.code},
                )
                result.already_present.append(entry)
                continue

            present = present | {entry.cidr}
            result.added.append(entry)
            settling = True

        if settling and wait:
            current = await self.await_convergence(current.id)

        result.snapshot = current
        return result

    async def _poll_state(
        self,
        list_id: str,
        desired_state: PrefixListState,
        poll_interval: float,
    ) -> AllowListSnapshot:
        timer = IntervalTimer(poll_interval)
        while True:
            await timer.tick()
            snapshot = await self.describe_one(list_id)
            if snapshot.state == desired_state:
                return snapshot
            if snapshot.state is not None and snapshot.state.is_failed:
                raise UnknownRemoteError(
                    f"Prefix list `{list_id}` entered state {snapshot.state.value} "
                    f"while waiting for {desired_state.value}."
                )
            logger.debug(
                "Waiting for prefix list state",
                extra={
                    "prefix_list_id": list_id,
                    "state": snapshot.state.value if snapshot.state else None,
                    "desired_state": desired_state.value,
                },
            )

    async def await_convergence(
        self,
        list_id: str,
        desired_state: PrefixListState = PrefixListState.MODIFY_COMPLETE,
        timeout: float | None = None,
        poll_interval: float | None = None,
    ) -> AllowListSnapshot:
        """Poll describe until the list reaches desired_state.

        Raises:
            ConvergenceTimeout: If the state is not reached within timeout.
            AllowListError: If a describe call fails.
        """
        timeout = self._convergence_timeout if timeout is None else timeout
        poll_interval = self._convergence_poll_interval if poll_interval is None else poll_interval

        try:
            return await asyncio.wait_for(
                self._poll_state(list_id, desired_state, poll_interval),
                timeout=timeout,
            )
        except TimeoutError as e:
            raise ConvergenceTimeout(
                f"Prefix list `{list_id}` did not reach {desired_state.value} "
                f"within {timeout}s."
            ) from e
