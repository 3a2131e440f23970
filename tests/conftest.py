"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for aws_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

# Environment variables read by Config.from_env
CONFIG_ENV_VARS = (
    "PREFIX_LIST_ID",
    "ENTRY_DESCRIPTION",
    "AWS_REGION",
    "POLL_INTERVAL",
    "EXTERNAL_IP",
    "IP_SOURCES",
    "IP_DETECTION_TIMEOUT",
    "WAIT_FOR_CONVERGENCE",
    "CONVERGENCE_TIMEOUT",
    "CONVERGENCE_POLL_INTERVAL",
    "MAX_CONFLICT_RETRIES",
    "ENABLE_NOTIFICATIONS",
    "VERBOSE",
    "LOG_FORMAT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the caller's environment out of configuration."""
    for key in CONFIG_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
