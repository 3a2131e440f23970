"""Poll loop keeping a prefix list in sync with the current public IP.

Each tick:
1. Fetch the list if no current snapshot is held
2. Ask the address source for the current public address
3. Skip the tick if detection failed or the address did not change
4. Reconcile the list towards {address/32}
5. On a stale version, re-fetch and retry (bounded)

A failed tick drops the snapshot, so the next tick starts from a fresh
fetch.

On shutdown the loop runs one last reconciliation with an empty desired
set, removing every entry we own.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .config import Config
from .errors import AllowListError, NothingToDo, VersionConflict
from .external_ip import AddressSource
from .models import Address, AllowListSnapshot, Network, host_network
from .notification import Notifier
from .reconciler import PrefixListReconciler
from .timer import IntervalTimer

logger = logging.getLogger(__name__)

# Recent tick results kept for inspection
MAX_HISTORY = 100


@dataclass
class CycleResult:
    """Result of a single poll tick."""

    address: Address | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    skipped: bool = False
    changed: bool = False
    error: AllowListError | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return self.error is None


def log_allowlist_error(error: AllowListError, message: str) -> None:
    """Log a classified error: summary at error level, raw payload at debug."""
    logger.error(
        f"{message}: {error.message}",
        extra={"error_type": type(error).__name__},
    )
    if error.details:
        logger.debug("Remote error details", extra={"details": error.details})


class AllowListPoller:
    """Drive the reconciler from external IP changes until shutdown."""

    def __init__(
        self,
        config: Config,
        reconciler: PrefixListReconciler,
        address_source: AddressSource,
        notifier: Notifier | None = None,
        *,
        interval: float | None = None,
    ) -> None:
        """Initialize the poll loop.

        Args:
            config: Validated configuration.
            reconciler: Engine bound to the configured ownership tag.
            address_source: Collaborator reporting the public address.
            notifier: Optional desktop notifier.
            interval: Poll period override in seconds (tests use fractions).
        """
        self._config = config
        self._reconciler = reconciler
        self._address_source = address_source
        self._notifier = notifier or Notifier(enabled=False)
        self._interval = interval if interval is not None else config.poll_interval_seconds
        self._shutdown_event = asyncio.Event()
        self._current_address: Address | None = None
        self._snapshot: AllowListSnapshot | None = None
        self.history: deque[CycleResult] = deque(maxlen=MAX_HISTORY)

    @property
    def current_address(self) -> Address | None:
        return self._current_address

    @property
    def snapshot(self) -> AllowListSnapshot | None:
        return self._snapshot

    def shutdown(self) -> None:
        """Signal the loop to clean up and stop."""
        logger.info("Shutdown requested", extra={"prefix_list_id": self._config.prefix_list_id})
        self._shutdown_event.set()

    async def run(self) -> None:
        """Poll until shutdown, then remove our entries.

        The list is fetched on the first tick and again after any failed
        reconciliation, so a transient failure is retried on the next tick.

        Raises:
            AllowListError: On the first fatal error. No cleanup is attempted
                in that case since the list may not be reachable.
        """
        logger.info(f"Sleeping {self._interval} seconds between external IP checks.")

        timer = IntervalTimer(self._interval)
        while not self._shutdown_event.is_set():
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=timer.time_until_next(),
                )
            except TimeoutError:
                # Normal timeout, tick is due
                pass

            # Shutdown wins over a tick that became due at the same time
            if self._shutdown_event.is_set():
                break

            timer.advance()
            result = await self._tick()
            self.history.append(result)
            self._log_result(result)

            if result.error is not None and result.error.fatal:
                await self._notifier.notify(
                    "prefixsync stopped",
                    f"{type(result.error).__name__}: {result.error.message}",
                    urgent=True,
                )
                raise result.error

        logger.info("Received shutdown. Cleaning up...")
        await self.cleanup()

    async def _tick(self) -> CycleResult:
        result = CycleResult()
        try:
            await self._tick_once(result)
        except AllowListError as e:
            result.error = e
            # The remote version may have moved, start over from a fetch
            self._snapshot = None
        result.end_time = datetime.now(UTC)
        return result

    async def _tick_once(self, result: CycleResult) -> None:
        if self._snapshot is None:
            self._snapshot = await self._reconciler.fetch(self._config.prefix_list_id)
            logger.info(f"Managing prefix list {self._snapshot}")

        address = await self._address_source.get_current_address()
        result.address = address
        if address is None:
            logger.error("Failed to determine external IP.")
            result.skipped = True
            return
        if address == self._current_address:
            logger.info("External IP didn't change.")
            result.skipped = True
            return

        logger.info(f"Got new external IP: {host_network(address)}")
        self._snapshot, result.changed = await self.sync(
            self._snapshot, frozenset({host_network(address)})
        )
        self._current_address = address
        if result.changed:
            await self._notifier.notify(
                "External IP changed",
                f"{self._config.prefix_list_id} now allows {host_network(address)}",
            )

    async def sync(
        self,
        snapshot: AllowListSnapshot,
        desired: frozenset[Network],
    ) -> tuple[AllowListSnapshot, bool]:
        """Reconcile towards desired, re-fetching on stale versions.

        Returns:
            The freshest known snapshot and whether the list was modified.

        Raises:
            AllowListError: Any error other than NothingToDo, including a
                VersionConflict that persists past max_conflict_retries.
        """
        list_id = self._config.prefix_list_id
        attempts = 0
        while True:
            try:
                await self._reconciler.reconcile(snapshot, desired)
            except NothingToDo:
                logger.info("Prefix list already up to date.")
                return snapshot, False
            except VersionConflict as e:
                if attempts >= self._config.max_conflict_retries:
                    raise
                attempts += 1
                logger.warning(
                    "Prefix list changed underneath us, re-fetching",
                    extra={"attempt": attempts, "code": e.code, "version": snapshot.version},
                )
                snapshot = await self._reconciler.fetch(list_id)
                continue
            break

        if self._config.wait_for_convergence:
            await self._reconciler.await_convergence(list_id)
        return await self._reconciler.fetch(list_id), True

    async def cleanup(self) -> bool:
        """Remove every entry we own from the list.

        Returns:
            Whether any entry was removed.
        """
        snapshot = await self._reconciler.fetch(self._config.prefix_list_id)
        self._snapshot, changed = await self.sync(snapshot, frozenset())
        self._current_address = None
        if changed:
            await self._notifier.notify(
                "prefixsync cleaned up",
                f"Removed managed entries from {self._config.prefix_list_id}",
            )
        return changed

    def _log_result(self, result: CycleResult) -> None:
        extra: dict[str, Any] = {
            "prefix_list_id": self._config.prefix_list_id,
            "address": str(result.address) if result.address else None,
            "changed": result.changed,
            "duration_seconds": result.duration_seconds,
        }
        if result.error is not None:
            action = "aborting" if result.error.fatal else "retrying next tick"
            log_allowlist_error(result.error, f"Reconciliation failed, {action}")
        elif result.changed:
            logger.info("Reconciliation applied", extra=extra)
        else:
            logger.debug("Reconciliation result", extra=extra)
