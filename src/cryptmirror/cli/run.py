"""Watch commands for the cryptmirror CLI.

Commands:
- run: Pull the remote baseline, then watch and mirror continuously
- pull: Pull the remote baseline only
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import click

from cryptmirror.cli.common import (
    config_option,
    fail,
    init_logging,
    load_or_exit,
    transport_or_exit,
    verbose_option,
)
from cryptmirror.core.types import ConfigError
from cryptmirror.sync.engine import start_watcher
from cryptmirror.sync.initial import initial_pull
from cryptmirror.sync.types import RetryExhaustedError

logger = logging.getLogger(__name__)


@click.command()
@config_option
@click.option("--skip-pull", is_flag=True, help="Do not pull the remote tree before watching.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write logs to this file.",
)
@verbose_option
def run(config_path: Path | None, skip_pull: bool, log_file: Path | None, verbose: bool) -> None:
    """Watch the configured folder and mirror it, encrypted, to the remote."""
    init_logging(log_file, verbose)
    config = load_or_exit(config_path)
    transport = transport_or_exit(config)

    if not skip_pull:
        try:
            initial_pull(config, transport)
        except RetryExhaustedError as e:
            logger.warning("Initial pull failed, continuing with local state: %s", e)

    cancel = threading.Event()
    errors: list[BaseException] = []

    def target() -> None:
        try:
            start_watcher(cancel, config, transport)
        except ConfigError as e:
            errors.append(e)
            cancel.set()

    watcher = threading.Thread(target=target, name="watcher")
    watcher.start()
    click.echo(f"Watching {config.watched_folder}... (Ctrl+C to stop)")

    try:
        while watcher.is_alive():
            watcher.join(timeout=0.5)
    except KeyboardInterrupt:
        click.echo("\nStopping...")
        cancel.set()
        watcher.join()

    if errors:
        fail(str(errors[0]))


@click.command()
@config_option
@verbose_option
def pull(config_path: Path | None, verbose: bool) -> None:
    """Pull the remote tree into the watched folder and decrypt it."""
    init_logging(verbose=verbose)
    config = load_or_exit(config_path)
    transport = transport_or_exit(config)

    try:
        decrypted, failed = initial_pull(config, transport)
    except RetryExhaustedError as e:
        fail(f"Pull failed: {e}")

    click.echo(f"Pulled {transport.location}: {decrypted} decrypted, {failed} failed")
    if failed:
        fail(f"{failed} files could not be decrypted")
