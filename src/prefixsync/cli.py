"""prefixsync command line interface.

Usage:
    prefixsync --prefix-list-id pl-0123abcd --description home watch
    prefixsync --prefix-list-id pl-0123abcd --description home cleanup
    prefixsync --prefix-list-id pl-0123abcd --description home show
    prefixsync --prefix-list-id pl-0123abcd --description home apply rules.yaml

Every option can also be given through the environment variables read by
Config.from_env; options given on the command line take precedence.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import click

from .config import Config, ConfigurationError, LogFormat
from .main import run_apply, run_cleanup, run_show, run_watch, setup_logging


def load_config(ctx: click.Context, **overrides: Any) -> Config:
    """Build the configuration from the environment plus command-line overrides.

    Raises:
        click.ClickException: If the configuration is invalid.
    """
    options = {**ctx.obj, **overrides}
    try:
        config = Config.from_env(**options)
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    setup_logging(verbose=config.verbose, log_format=config.log_format)
    return config


@click.group()
@click.option("--prefix-list-id", help="Managed prefix list ID (env: PREFIX_LIST_ID).")
@click.option(
    "--description",
    help="Description tagging the entries this tool owns (env: ENTRY_DESCRIPTION).",
)
@click.option("--region", help="AWS region of the prefix list (env: AWS_REGION).")
@click.option("-v", "--verbose", is_flag=True, default=None, help="Enable debug logging.")
@click.option(
    "--log-format",
    type=click.Choice([f.value for f in LogFormat]),
    default=None,
    help="Log output format (env: LOG_FORMAT).",
)
@click.version_option(package_name="prefixsync")
@click.pass_context
def cli(
    ctx: click.Context,
    prefix_list_id: str | None,
    description: str | None,
    region: str | None,
    verbose: bool | None,
    log_format: str | None,
) -> None:
    """Keep an AWS managed prefix list in sync with your public IP."""
    ctx.ensure_object(dict)
    ctx.obj.update(
        {
            "prefix_list_id": prefix_list_id,
            "description": description,
            "region": region,
            "verbose": verbose,
            "log_format": LogFormat(log_format) if log_format else None,
        }
    )


@cli.command()
@click.option("--interval", type=int, help="Seconds between external IP checks.")
@click.option("--ip", "external_ip", help="Publish this address instead of detecting one.")
@click.option(
    "--ip-source",
    "ip_sources",
    multiple=True,
    help="Plaintext IP echo URL, may be repeated.",
)
@click.option(
    "--wait/--no-wait",
    default=None,
    help="Wait for the list to settle after each change.",
)
@click.option("--notify/--no-notify", default=None, help="Send desktop notifications.")
@click.pass_context
def watch(
    ctx: click.Context,
    interval: int | None,
    external_ip: str | None,
    ip_sources: tuple[str, ...],
    wait: bool | None,
    notify: bool | None,
) -> None:
    """Track the public IP until interrupted, then remove our entries."""
    config = load_config(
        ctx,
        poll_interval_seconds=interval,
        external_ip=external_ip,
        ip_sources=ip_sources or None,
        wait_for_convergence=wait,
        enable_notifications=notify,
    )
    ctx.exit(asyncio.run(run_watch(config)))


@cli.command()
@click.pass_context
def cleanup(ctx: click.Context) -> None:
    """Remove every entry we own and exit."""
    config = load_config(ctx)
    ctx.exit(asyncio.run(run_cleanup(config)))


@cli.command()
@click.pass_context
def show(ctx: click.Context) -> None:
    """Print the prefix list, marking owned entries with '*'."""
    config = load_config(ctx)
    ctx.exit(asyncio.run(run_show(config, emit=click.echo)))


@cli.command()
@click.argument("rules_file", type=click.Path(path_type=Path, dir_okay=False))
@click.option(
    "--wait/--no-wait",
    default=None,
    help="Wait for the list to settle between entries.",
)
@click.pass_context
def apply(ctx: click.Context, rules_file: Path, wait: bool | None) -> None:
    """Add the entries of RULES_FILE one by one, skipping duplicates."""
    config = load_config(ctx, wait_for_convergence=wait)
    ctx.exit(asyncio.run(run_apply(config, rules_file)))


if __name__ == "__main__":
    cli()
