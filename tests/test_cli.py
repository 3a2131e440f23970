"""Tests for the prefixsync command line."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from aws_mock import MOCK_LIST_ID, MockAwsContext, mock_aws_context
from prefixsync.cli import cli
from prefixsync.main import HANDLER_NAME

TAG = "home"
BASE_ARGS = ["--prefix-list-id", MOCK_LIST_ID, "--description", TAG]


@pytest.fixture(autouse=True)
def drop_log_handler() -> Generator[None, None, None]:
    """Detach the stdout handler bound to CliRunner's captured stream."""
    yield
    root = logging.getLogger()
    for handler in [h for h in root.handlers if h.get_name() == HANDLER_NAME]:
        root.removeHandler(handler)


@pytest.fixture
def aws() -> Generator[MockAwsContext, None, None]:
    with mock_aws_context() as ctx:
        ctx.state.add_list(
            MOCK_LIST_ID,
            [
                ("203.0.113.0/24", "office"),
                ("198.51.100.7/32", TAG),
            ],
        )
        yield ctx


class TestCli:
    """Tests for the click command group."""

    def test_show(self, aws: MockAwsContext) -> None:
        result = CliRunner().invoke(cli, [*BASE_ARGS, "show"])

        assert result.exit_code == 0, result.output
        assert f"ID: {MOCK_LIST_ID} (home-access)" in result.output
        assert f"* 198.51.100.7/32\t{TAG}" in result.output

    def test_cleanup(self, aws: MockAwsContext) -> None:
        result = CliRunner().invoke(cli, [*BASE_ARGS, "cleanup"])

        assert result.exit_code == 0, result.output
        assert aws.state.cidrs(MOCK_LIST_ID) == {"203.0.113.0/24"}

    def test_apply(self, aws: MockAwsContext, tmp_path: Path) -> None:
        rules = tmp_path / "rules.yaml"
        rules.write_text("entries:\n  - cidr: 192.0.2.0/28\n    description: vpn\n")

        result = CliRunner().invoke(cli, [*BASE_ARGS, "apply", "--no-wait", str(rules)])

        assert result.exit_code == 0, result.output
        assert "192.0.2.0/28" in aws.state.cidrs(MOCK_LIST_ID)

    def test_apply_no_wait_with_slow_modify(self, aws: MockAwsContext, tmp_path: Path) -> None:
        aws.state.get(MOCK_LIST_ID).settle_after = 1
        rules = tmp_path / "rules.yaml"
        rules.write_text(
            "entries:\n"
            "  - cidr: 192.0.2.0/28\n"
            "    description: vpn\n"
            "  - cidr: 192.0.2.16/28\n"
            "    description: vpn\n"
        )

        result = CliRunner().invoke(cli, [*BASE_ARGS, "apply", "--no-wait", str(rules)])

        assert result.exit_code == 0, result.output
        assert {"192.0.2.0/28", "192.0.2.16/28"} <= aws.state.cidrs(MOCK_LIST_ID)

    def test_options_fall_back_to_environment(self, aws: MockAwsContext) -> None:
        result = CliRunner().invoke(
            cli,
            ["show"],
            env={"PREFIX_LIST_ID": MOCK_LIST_ID, "ENTRY_DESCRIPTION": TAG},
        )

        assert result.exit_code == 0, result.output
        assert aws.gateway.call_count("describe") == 1

    def test_invalid_configuration(self) -> None:
        result = CliRunner().invoke(cli, ["--prefix-list-id", "sg-123", "show"])

        assert result.exit_code == 1
        assert "Configuration validation failed" in result.output
        assert "ENTRY_DESCRIPTION" in result.output

    def test_invalid_interval_for_watch(self, aws: MockAwsContext) -> None:
        result = CliRunner().invoke(cli, [*BASE_ARGS, "watch", "--interval", "1"])

        assert result.exit_code == 1
        assert "POLL_INTERVAL" in result.output
        assert aws.gateway.calls == []

    def test_remote_error_exit_code(self, aws: MockAwsContext) -> None:
        aws.state.get(MOCK_LIST_ID).describe_copies = 0

        result = CliRunner().invoke(cli, [*BASE_ARGS, "show"])

        assert result.exit_code == 1

    def test_log_format_choice(self) -> None:
        result = CliRunner().invoke(cli, [*BASE_ARGS, "--log-format", "xml", "show"])

        assert result.exit_code == 2
        assert "xml" in result.output
