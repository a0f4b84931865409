"""Helpers shared by CLI commands."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import NoReturn

import click

from cryptmirror.core.config import WatcherConfig, get_config_dir, load_config
from cryptmirror.core.logs import setup_logging
from cryptmirror.core.types import ConfigError
from cryptmirror.remote.base import Transport
from cryptmirror.sync.engine import build_transport


def get_config_file() -> Path:
    """Get the default path of the config file."""
    return get_config_dir() / "config.json"


config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.cryptmirror/config.json).",
)

verbose_option = click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")


def fail(message: str) -> NoReturn:
    """Print an error and exit with status 1."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def load_or_exit(config_path: Path | None) -> WatcherConfig:
    """Load and validate the configuration, exiting on error."""
    try:
        config = load_config(config_path or get_config_file())
        config.validate()
    except ConfigError as e:
        fail(str(e))
    return config


def transport_or_exit(config: WatcherConfig) -> Transport:
    """Build the configured transport, exiting on error."""
    try:
        return build_transport(config)
    except ConfigError as e:
        fail(str(e))


def init_logging(log_file: Path | None = None, verbose: bool = False) -> None:
    """Configure logging for a CLI command."""
    setup_logging(log_file, logging.DEBUG if verbose else logging.INFO)
