"""
notevault CLI -- unlock, edit, and sync encrypted notes.

Each command group lives in its own module and is registered on the
main Click group below.

Entry point: notevault.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="notevault")
@click.option("--verbose", "-v", is_flag=True, help="Show sync activity on stderr.")
def main(verbose):
    """notevault -- encrypted notes, mirrored everywhere you unlock them."""
    from ._common import setup_logging

    setup_logging(verbose)


from .notes import register_note_commands
from .serve import register_serve_commands

register_note_commands(main)
register_serve_commands(main)
