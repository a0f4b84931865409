"""Remote inspection commands for the cryptmirror CLI.

Commands:
- check: Test the connection to the remote
- ls-remote: List files in the remote mirror
- decrypt: Decrypt a single downloaded artifact
"""

from __future__ import annotations

from pathlib import Path

import click

from cryptmirror.cli.common import config_option, fail, load_or_exit, transport_or_exit
from cryptmirror.core.crypto import CryptoError, decrypt_file
from cryptmirror.core.types import ConfigError
from cryptmirror.remote.base import NotFoundError, TransportError


@click.command()
@config_option
def check(config_path: Path | None) -> None:
    """Test that the remote is reachable."""
    config = load_or_exit(config_path)
    transport = transport_or_exit(config)
    try:
        transport.check()
    except TransportError as e:
        fail(f"Remote check failed: {e}")
    click.echo(f"OK: {transport.location}")


@click.command("ls-remote")
@config_option
@click.option("--max-depth", type=int, default=None, help="Limit listing depth.")
def ls_remote(config_path: Path | None, max_depth: int | None) -> None:
    """List files in the remote mirror."""
    config = load_or_exit(config_path)
    transport = transport_or_exit(config)
    try:
        files = transport.list_files(transport.remote_root, recursive=True, max_depth=max_depth)
    except NotFoundError:
        files = []
    except TransportError as e:
        fail(f"Listing failed: {e}")

    if not files:
        click.echo("Remote is empty.")
        return
    for name in files:
        click.echo(name)


@click.command()
@config_option
@click.argument("in_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("out_path", type=click.Path(dir_okay=False, path_type=Path))
def decrypt(config_path: Path | None, in_path: Path, out_path: Path) -> None:
    """Decrypt IN_PATH (an .enc artifact) into OUT_PATH."""
    config = load_or_exit(config_path)
    try:
        decrypt_file(config.load_key(), in_path, out_path)
    except (ConfigError, CryptoError) as e:
        fail(f"Decryption failed: {e}")
    click.echo(f"Decrypted {in_path} -> {out_path}")
