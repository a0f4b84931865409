"""Command-line interface for cryptmirror.

Commands:
- run: Pull, then watch and mirror continuously
- pull: Pull the remote tree and decrypt it
- check: Test the connection to the remote
- ls-remote: List files in the remote mirror
- decrypt: Decrypt a single artifact
"""

from __future__ import annotations

import click

from cryptmirror.cli.common import get_config_file
from cryptmirror.cli.remote import check, decrypt, ls_remote
from cryptmirror.cli.run import pull, run


@click.group()
@click.version_option(package_name="cryptmirror")
def cli() -> None:
    """cryptmirror - Encrypted directory mirroring."""


# Watch commands
cli.add_command(run)
cli.add_command(pull)

# Remote commands
cli.add_command(check)
cli.add_command(ls_remote)
cli.add_command(decrypt)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "get_config_file",
    "main",
]
