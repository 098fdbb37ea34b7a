"""Command line interface for pair-relay using Click."""

import asyncio
import json
import sys
from pathlib import Path

import click
from loguru import logger

from pair_relay.config import ConfigError, get_config, reload_config
from pair_relay.pairing import VALID_ADDRESSING
from pair_relay.router import VALID_REPLACE_POLICIES


def configure_logging(level: str) -> None:
    """Route loguru output to stderr at ``level``."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def _parse_pairs(values) -> dict:
    pairs = {}
    for value in values:
        left, sep, right = value.partition("=")
        if not sep or not left.strip() or not right.strip():
            raise click.BadParameter(
                f"Expected IDENTITY=COUNTERPART, got '{value}'", param_hint="--pair"
            )
        pairs[left.strip()] = right.strip()
    return pairs


def _load(config_path):
    if config_path:
        return reload_config(Path(config_path))
    return get_config()


@click.group()
def cli():
    pass


@cli.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="TOML configuration file. Defaults to pair-relay.toml or ~/.pair-relay/config.toml.",
)
@click.option("--host", type=str, help="Interface to bind to (default: 0.0.0.0).")
@click.option("--port", "-p", type=int, help="Port to listen on (default: $PORT or 3000).")
@click.option(
    "--addressing",
    type=click.Choice(sorted(VALID_ADDRESSING)),
    help="How signaling destinations are resolved.",
)
@click.option(
    "--replace-policy",
    type=click.Choice(sorted(VALID_REPLACE_POLICIES)),
    help="What to do with a connection whose identity is re-registered elsewhere.",
)
@click.option(
    "--pair",
    "pairs",
    multiple=True,
    metavar="IDENTITY=COUNTERPART",
    help="Add a pairing. May be given multiple times.",
)
@click.option("--log-level", type=str, help="Log level (DEBUG, INFO, WARNING, ...).")
def serve(config_path, host, port, addressing, replace_policy, pairs, log_level):
    """Start the signaling relay.

    Example:
        pair-relay serve --port 3000 --pair device=console
    """
    extra_pairs = _parse_pairs(pairs)
    config = _load(config_path)

    try:
        relay_config = config.relay_config(
            host=host,
            port=port,
            addressing=addressing,
            replace_policy=replace_policy,
            log_level=log_level,
            pairings=extra_pairs,
        )
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    configure_logging(relay_config.log_level)

    from pair_relay.server import main

    try:
        asyncio.run(main(relay_config))
    except OSError as e:
        logger.error(f"Failed to start relay: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Relay stopped")


# =============================================================================
# Config Commands (subgroup)
# =============================================================================


@cli.group(name="config")
def config_group():
    """Inspect relay configuration."""
    pass


@config_group.command(name="show")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="TOML configuration file to load.",
)
def config_show(config_path):
    """Print the effective configuration as JSON."""
    config = _load(config_path)
    try:
        relay_config = config.relay_config()
    except ConfigError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(1)

    source = str(config.config_file) if config.config_file else "defaults"
    click.echo(f"Source: {source}")
    click.echo(json.dumps(relay_config.to_dict(), indent=2))


@config_group.command(name="check")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def config_check(path):
    """Validate a TOML configuration file and its pairings."""
    from pair_relay.config import Config

    config = Config()
    config._load_config_file(Path(path))
    if config.config_file is None:
        click.echo(f"Could not parse {path}", err=True)
        sys.exit(1)

    try:
        relay_config = config.relay_config()
    except ConfigError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(1)

    table = relay_config.pairing_table()
    click.echo(f"{path}: OK")
    for left, right in table.pairs():
        click.echo(f"  {left} <-> {right}")


if __name__ == "__main__":
    cli()
