"""Configuration management with validation.

All inputs are validated at load time so a misconfigured run fails before
the first call to AWS.
"""

from __future__ import annotations

import ipaddress
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class LogFormat(str, Enum):
    """Supported log output formats."""

    JSON = "json"
    TEXT = "text"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_POLL_INTERVAL_SECONDS = 60
MIN_POLL_INTERVAL_SECONDS = 5
MAX_POLL_INTERVAL_SECONDS = 86400

DEFAULT_IP_DETECTION_TIMEOUT_SECONDS = 10
DEFAULT_CONVERGENCE_TIMEOUT_SECONDS = 60
DEFAULT_CONVERGENCE_POLL_SECONDS = 10

# One re-fetch-and-retry after a stale version by default
DEFAULT_MAX_CONFLICT_RETRIES = 1
MAX_CONFLICT_RETRIES_LIMIT = 10

# Guard against a remote that never stops returning page tokens
MAX_ENTRY_PAGES = 2000

# AWS limit on prefix list entry descriptions
MAX_DESCRIPTION_LENGTH = 255

MAX_RULES_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max rules file
MAX_RULES_FILE_ENTRIES = 1000

# Input validation patterns
VALID_PREFIX_LIST_ID_PATTERN = r"^pl-([0-9a-f]{8}|[0-9a-f]{17})$"

DEFAULT_IP_SOURCES: tuple[str, ...] = (
    "https://checkip.amazonaws.com",
    "https://api.ipify.org",
    "https://icanhazip.com",
    "https://ifconfig.me/ip",
    "https://ipinfo.io/ip",
)


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    prefix_list_id: str
    description: str

    # AWS region, None lets boto3 resolve it from its own config chain
    region: str | None = None

    # Timing
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    convergence_timeout_seconds: int = DEFAULT_CONVERGENCE_TIMEOUT_SECONDS
    convergence_poll_seconds: int = DEFAULT_CONVERGENCE_POLL_SECONDS

    # External IP detection
    external_ip: str | None = None
    ip_sources: tuple[str, ...] = field(default_factory=lambda: DEFAULT_IP_SOURCES)
    ip_detection_timeout_seconds: int = DEFAULT_IP_DETECTION_TIMEOUT_SECONDS

    # Behavior
    wait_for_convergence: bool = True
    max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES
    max_entry_pages: int = MAX_ENTRY_PAGES
    enable_notifications: bool = False

    # Logging
    verbose: bool = False
    log_format: LogFormat = LogFormat.TEXT

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.prefix_list_id:
            errors.append("PREFIX_LIST_ID is required")
        elif not re.match(VALID_PREFIX_LIST_ID_PATTERN, self.prefix_list_id):
            errors.append(
                f"PREFIX_LIST_ID must look like 'pl-1234567890abcdef0': {self.prefix_list_id}"
            )

        if not self.description:
            errors.append("ENTRY_DESCRIPTION is required")
        elif len(self.description) > MAX_DESCRIPTION_LENGTH:
            errors.append(
                f"ENTRY_DESCRIPTION exceeds maximum length of {MAX_DESCRIPTION_LENGTH}"
            )

        if not (
            MIN_POLL_INTERVAL_SECONDS <= self.poll_interval_seconds <= MAX_POLL_INTERVAL_SECONDS
        ):
            errors.append(
                f"POLL_INTERVAL must be between {MIN_POLL_INTERVAL_SECONDS} "
                f"and {MAX_POLL_INTERVAL_SECONDS} seconds"
            )

        if self.convergence_timeout_seconds < 1:
            errors.append("CONVERGENCE_TIMEOUT must be at least 1 second")
        if self.convergence_poll_seconds < 1:
            errors.append("CONVERGENCE_POLL_INTERVAL must be at least 1 second")
        elif self.convergence_poll_seconds > self.convergence_timeout_seconds:
            errors.append("CONVERGENCE_POLL_INTERVAL cannot exceed CONVERGENCE_TIMEOUT")

        if self.ip_detection_timeout_seconds < 1:
            errors.append("IP_DETECTION_TIMEOUT must be at least 1 second")

        if self.external_ip is not None:
            try:
                ipaddress.ip_address(self.external_ip)
            except ValueError:
                errors.append(f"EXTERNAL_IP is not a valid IP address: {self.external_ip}")
        elif not self.ip_sources:
            errors.append("IP_SOURCES must name at least one source when EXTERNAL_IP is unset")

        for source in self.ip_sources:
            if not source.startswith(("https://", "http://")):
                errors.append(f"IP source must be an http(s) URL: {source}")

        if not (0 <= self.max_conflict_retries <= MAX_CONFLICT_RETRIES_LIMIT):
            errors.append(
                f"MAX_CONFLICT_RETRIES must be between 0 and {MAX_CONFLICT_RETRIES_LIMIT}"
            )

        if self.max_entry_pages < 1:
            errors.append("max_entry_pages must be at least 1")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables.

        Keyword overrides (typically command-line options) win over the
        environment; overrides whose value is None are ignored.

        Environment Variables:
            PREFIX_LIST_ID: Managed prefix list to keep in sync (pl-...)
            ENTRY_DESCRIPTION: Ownership tag written on managed entries
            AWS_REGION: Region of the prefix list (default: boto3 config chain)
            POLL_INTERVAL: Seconds between external IP checks (default: 60)
            EXTERNAL_IP: Fixed address to publish instead of detecting one
            IP_SOURCES: Comma-separated plaintext IP echo URLs
            IP_DETECTION_TIMEOUT: Per-source HTTP timeout in seconds (default: 10)
            WAIT_FOR_CONVERGENCE: Wait for modify-complete after changes (default: true)
            CONVERGENCE_TIMEOUT: Seconds to wait for convergence (default: 60)
            CONVERGENCE_POLL_INTERVAL: Seconds between state polls (default: 10)
            MAX_CONFLICT_RETRIES: Re-fetch attempts after a stale version (default: 1)
            ENABLE_NOTIFICATIONS: Send desktop notifications (default: false)
            VERBOSE: Enable debug logging (default: false)
            LOG_FORMAT: One of text, json (default: text)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_sources(value: str | None) -> tuple[str, ...]:
            if not value:
                return DEFAULT_IP_SOURCES
            return tuple(s.strip() for s in value.split(",") if s.strip())

        def get_log_format(value: str | None) -> LogFormat:
            if not value:
                return LogFormat.TEXT
            try:
                return LogFormat(value.lower())
            except ValueError as e:
                valid = [f.value for f in LogFormat]
                raise ConfigurationError(f"LOG_FORMAT must be one of {valid}: {value}") from e

        values: dict[str, Any] = {
            "prefix_list_id": os.environ.get("PREFIX_LIST_ID", ""),
            "description": os.environ.get("ENTRY_DESCRIPTION", ""),
            "region": os.environ.get("AWS_REGION") or None,
            "poll_interval_seconds": get_int("POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            "external_ip": os.environ.get("EXTERNAL_IP") or None,
            "ip_sources": get_sources(os.environ.get("IP_SOURCES")),
            "ip_detection_timeout_seconds": get_int(
                "IP_DETECTION_TIMEOUT", DEFAULT_IP_DETECTION_TIMEOUT_SECONDS
            ),
            "wait_for_convergence": get_bool("WAIT_FOR_CONVERGENCE", True),
            "convergence_timeout_seconds": get_int(
                "CONVERGENCE_TIMEOUT", DEFAULT_CONVERGENCE_TIMEOUT_SECONDS
            ),
            "convergence_poll_seconds": get_int(
                "CONVERGENCE_POLL_INTERVAL", DEFAULT_CONVERGENCE_POLL_SECONDS
            ),
            "max_conflict_retries": get_int("MAX_CONFLICT_RETRIES", DEFAULT_MAX_CONFLICT_RETRIES),
            "enable_notifications": get_bool("ENABLE_NOTIFICATIONS", False),
            "verbose": get_bool("VERBOSE", False),
            "log_format": get_log_format(os.environ.get("LOG_FORMAT")),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})

        return cls(**values)
