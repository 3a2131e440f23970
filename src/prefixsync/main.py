"""Runners for the prefixsync commands.

Each runner takes a validated Config, builds the collaborators it needs,
and returns a process exit code:
    0  success, including cleanup after a shutdown signal
    1  unrecovered error
    2  credentials or permission error (fix the identity, not the input)
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from botocore.exceptions import BotoCoreError

from .config import Config, LogFormat
from .errors import AllowListError, CredentialsError, PermissionDenied
from .external_ip import AddressSource, ExternalAddressConsensus, StaticAddressSource
from .gateway import Ec2PrefixListGateway, PrefixListGateway
from .notification import Notifier
from .poller import AllowListPoller, log_allowlist_error
from .reconciler import PrefixListReconciler
from .spec_loader import SpecLoadError, load_entries

logger = logging.getLogger(__name__)

HANDLER_NAME = "prefixsync"

# LogRecord attributes that are not user-supplied extras
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(verbose: bool = False, log_format: LogFormat = LogFormat.TEXT) -> None:
    """Configure the root logger for the process."""
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    if log_format == LogFormat.JSON:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("[ %(levelname)-5s ][ %(name)-15s ] %(message)s"))

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if existing.get_name() == HANDLER_NAME:
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Reduce noise from the AWS SDK and HTTP clients
    for noisy in ("botocore", "boto3", "urllib3", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def exit_code_for(error: AllowListError) -> int:
    if isinstance(error, (CredentialsError, PermissionDenied)):
        return 2
    return 1


def build_reconciler(config: Config, gateway: PrefixListGateway) -> PrefixListReconciler:
    return PrefixListReconciler(
        gateway,
        config.description,
        max_entry_pages=config.max_entry_pages,
        convergence_timeout=config.convergence_timeout_seconds,
        convergence_poll_interval=config.convergence_poll_seconds,
    )


def build_address_source(config: Config) -> AddressSource:
    if config.external_ip:
        return StaticAddressSource(config.external_ip)
    return ExternalAddressConsensus(
        config.ip_sources,
        timeout=config.ip_detection_timeout_seconds,
    )


def build_gateway(config: Config) -> PrefixListGateway:
    """Create the boto3-backed gateway.

    Raises:
        BotoCoreError: If boto3 cannot build a client (e.g. no region).
    """
    return Ec2PrefixListGateway(region=config.region)


def _resolve_gateway(config: Config, gateway: PrefixListGateway | None) -> PrefixListGateway | None:
    if gateway is not None:
        return gateway
    try:
        return build_gateway(config)
    except BotoCoreError as e:
        logger.error(f"Failed to create EC2 client: {e}")
        return None


async def run_watch(
    config: Config,
    *,
    gateway: PrefixListGateway | None = None,
    address_source: AddressSource | None = None,
    notifier: Notifier | None = None,
) -> int:
    """Keep the prefix list in sync with the public IP until interrupted."""
    resolved = _resolve_gateway(config, gateway)
    if resolved is None:
        return 1

    poller = AllowListPoller(
        config,
        build_reconciler(config, resolved),
        address_source or build_address_source(config),
        notifier or Notifier(enabled=config.enable_notifications),
    )

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        poller.shutdown()

    installed: list[signal.Signals] = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform or outside the main thread
            pass

    try:
        await poller.run()
    except AllowListError as e:
        log_allowlist_error(e, "Stopping")
        return exit_code_for(e)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)

    logger.info("Stopped")
    return 0


async def run_cleanup(config: Config, *, gateway: PrefixListGateway | None = None) -> int:
    """Remove every entry carrying the ownership tag, then exit."""
    resolved = _resolve_gateway(config, gateway)
    if resolved is None:
        return 1

    poller = AllowListPoller(
        config,
        build_reconciler(config, resolved),
        build_address_source(config),
        Notifier(enabled=config.enable_notifications),
    )
    try:
        changed = await poller.cleanup()
    except AllowListError as e:
        log_allowlist_error(e, "Cleanup failed")
        return exit_code_for(e)

    logger.info("Cleanup complete" if changed else "Nothing to clean up")
    return 0


async def run_show(
    config: Config,
    *,
    gateway: PrefixListGateway | None = None,
    emit: Callable[[str], None] = print,
) -> int:
    """Print the prefix list and its entries, marking the ones we own."""
    resolved = _resolve_gateway(config, gateway)
    if resolved is None:
        return 1

    reconciler = build_reconciler(config, resolved)
    try:
        snapshot = await reconciler.fetch(config.prefix_list_id)
    except AllowListError as e:
        log_allowlist_error(e, "Failed to fetch prefix list")
        return exit_code_for(e)

    emit(str(snapshot))
    if snapshot.state is not None:
        emit(f"state: {snapshot.state.value}")
    for entry in snapshot.entries:
        marker = "*" if entry.is_owned_by(config.description) else " "
        emit(f"{marker} {entry.cidr}\t{entry.description}")
    return 0


async def run_apply(
    config: Config,
    rules_file: Path,
    *,
    gateway: PrefixListGateway | None = None,
) -> int:
    """Add the entries of a rules file one by one, tolerating duplicates."""
    try:
        spec = load_entries(rules_file)
    except SpecLoadError as e:
        logger.error("Rules file loading failed", extra={"error": str(e)})
        return 1

    entries = spec.to_entries()
    tagged = [str(e.cidr) for e in entries if e.is_owned_by(config.description)]
    if tagged:
        # They would be removed again by the next watch or cleanup run
        logger.error(
            "Rules file entries must not use the ownership description",
            extra={"cidrs": tagged, "description": config.description},
        )
        return 1

    resolved = _resolve_gateway(config, gateway)
    if resolved is None:
        return 1

    reconciler = build_reconciler(config, resolved)
    try:
        snapshot = await reconciler.fetch(config.prefix_list_id)
        result = await reconciler.apply_entries(
            snapshot, entries, wait=config.wait_for_convergence
        )
    except AllowListError as e:
        log_allowlist_error(e, "Applying entries failed")
        return exit_code_for(e)

    logger.info(
        "Entries applied",
        extra={
            "added": [str(e.cidr) for e in result.added],
            "already_present": [str(e.cidr) for e in result.already_present],
            "version": result.snapshot.version,
        },
    )
    return 0
