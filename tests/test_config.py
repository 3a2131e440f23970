"""Tests for configuration loading."""

import os
from unittest.mock import patch

import pytest

from prefixsync.config import (
    DEFAULT_IP_SOURCES,
    DEFAULT_POLL_INTERVAL_SECONDS,
    Config,
    ConfigurationError,
    LogFormat,
)

LIST_ID = "pl-0123456789abcdef0"


class TestConfig:
    """Tests for Config class."""

    def test_valid_config(self) -> None:
        """Test creating a valid configuration."""
        config = Config(prefix_list_id=LIST_ID, description="home")

        assert config.poll_interval_seconds == DEFAULT_POLL_INTERVAL_SECONDS
        assert config.ip_sources == DEFAULT_IP_SOURCES
        assert config.wait_for_convergence is True
        assert config.log_format == LogFormat.TEXT

    def test_short_prefix_list_id(self) -> None:
        """Test that the legacy 8-digit ID form is accepted."""
        assert Config(prefix_list_id="pl-6da54004", description="home").prefix_list_id

    def test_missing_prefix_list_id(self) -> None:
        """Test that missing prefix list ID raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(prefix_list_id="", description="home")

        assert "PREFIX_LIST_ID" in str(exc_info.value)

    def test_invalid_prefix_list_id(self) -> None:
        """Test that a security group ID is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(prefix_list_id="sg-0123456789abcdef0", description="home")

        assert "PREFIX_LIST_ID" in str(exc_info.value)

    def test_missing_description(self) -> None:
        """Test that the ownership tag is required."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(prefix_list_id=LIST_ID, description="")

        assert "ENTRY_DESCRIPTION" in str(exc_info.value)

    def test_description_too_long(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(prefix_list_id=LIST_ID, description="x" * 256)

        assert "ENTRY_DESCRIPTION" in str(exc_info.value)

    def test_poll_interval_bounds(self) -> None:
        """Test poll interval validation."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(prefix_list_id=LIST_ID, description="home", poll_interval_seconds=1)

        assert "POLL_INTERVAL" in str(exc_info.value)

    def test_convergence_poll_cannot_exceed_timeout(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(
                prefix_list_id=LIST_ID,
                description="home",
                convergence_timeout_seconds=5,
                convergence_poll_seconds=10,
            )

        assert "CONVERGENCE_POLL_INTERVAL" in str(exc_info.value)

    def test_invalid_external_ip(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(prefix_list_id=LIST_ID, description="home", external_ip="my-laptop")

        assert "EXTERNAL_IP" in str(exc_info.value)

    def test_ip_sources_must_be_urls(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(prefix_list_id=LIST_ID, description="home", ip_sources=("ftp://example.com",))

        assert "http(s)" in str(exc_info.value)

    def test_conflict_retry_bounds(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(prefix_list_id=LIST_ID, description="home", max_conflict_retries=-1)

        assert "MAX_CONFLICT_RETRIES" in str(exc_info.value)

    def test_all_errors_reported_together(self) -> None:
        """Test that every problem is listed in a single error."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(prefix_list_id="", description="", poll_interval_seconds=0)

        message = str(exc_info.value)
        assert "PREFIX_LIST_ID" in message
        assert "ENTRY_DESCRIPTION" in message
        assert "POLL_INTERVAL" in message

    def test_config_is_frozen(self) -> None:
        config = Config(prefix_list_id=LIST_ID, description="home")
        with pytest.raises(AttributeError):
            config.description = "other"  # type: ignore[misc]


class TestConfigFromEnv:
    """Tests for Config.from_env."""

    def test_from_env(self) -> None:
        """Test loading config from environment variables."""
        env = {
            "PREFIX_LIST_ID": LIST_ID,
            "ENTRY_DESCRIPTION": "home",
            "AWS_REGION": "eu-central-1",
            "POLL_INTERVAL": "30",
            "IP_SOURCES": "https://a.example, https://b.example",
            "WAIT_FOR_CONVERGENCE": "false",
            "ENABLE_NOTIFICATIONS": "yes",
            "LOG_FORMAT": "JSON",
        }

        with patch.dict(os.environ, env, clear=False):
            config = Config.from_env()

        assert config.prefix_list_id == LIST_ID
        assert config.region == "eu-central-1"
        assert config.poll_interval_seconds == 30
        assert config.ip_sources == ("https://a.example", "https://b.example")
        assert config.wait_for_convergence is False
        assert config.enable_notifications is True
        assert config.log_format == LogFormat.JSON

    def test_overrides_win_over_env(self) -> None:
        env = {"PREFIX_LIST_ID": LIST_ID, "ENTRY_DESCRIPTION": "home", "POLL_INTERVAL": "30"}

        with patch.dict(os.environ, env, clear=False):
            config = Config.from_env(poll_interval_seconds=90, description=None)

        assert config.poll_interval_seconds == 90
        assert config.description == "home"

    def test_invalid_integer(self) -> None:
        env = {"PREFIX_LIST_ID": LIST_ID, "ENTRY_DESCRIPTION": "home", "POLL_INTERVAL": "soon"}

        with patch.dict(os.environ, env, clear=False):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "POLL_INTERVAL" in str(exc_info.value)

    def test_invalid_log_format(self) -> None:
        env = {"PREFIX_LIST_ID": LIST_ID, "ENTRY_DESCRIPTION": "home", "LOG_FORMAT": "xml"}

        with patch.dict(os.environ, env, clear=False):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "LOG_FORMAT" in str(exc_info.value)

    def test_missing_required_env(self) -> None:
        with pytest.raises(ConfigurationError):
            Config.from_env()
