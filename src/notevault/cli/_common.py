"""Shared utilities for all CLI command modules.

Provides the Rich console instance, connectivity formatting, logging
setup, and the unlock helper every note command starts with.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console

from .. import NOTEVAULT_HOME
from ..config import NotevaultConfig, load_config
from ..models import Connectivity, OperationResult
from ..sync import SyncCoordinator, build_coordinator

console = Console()
logger = logging.getLogger("notevault.cli")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

home_option = click.option(
    "--home", default=NOTEVAULT_HOME, type=click.Path(), help="notevault home directory."
)
id_option = click.option("--id", "sync_id", required=True, help="Sync ID of the vault.")
code_option = click.option(
    "--code",
    envvar="NOTEVAULT_CODE",
    prompt="Security code",
    hide_input=True,
    help="Security code (prompted when omitted).",
)


def setup_logging(verbose: bool = False) -> None:
    """Send log records to stderr; INFO with --verbose, WARNING otherwise."""
    logging.basicConfig(format=LOG_FORMAT, stream=sys.stderr)
    logging.getLogger().setLevel(logging.INFO if verbose else logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def connectivity_icon(connectivity: Connectivity) -> str:
    """Map connectivity to a Rich-formatted indicator.

    Args:
        connectivity: Last observed remote reachability.

    Returns:
        str: Rich markup string.
    """
    return {
        Connectivity.ONLINE: "[bold green]ONLINE[/]",
        Connectivity.OFFLINE: "[bold yellow]OFFLINE[/]",
        Connectivity.ERROR: "[bold red]ERROR[/]",
    }.get(connectivity, "[dim]UNKNOWN[/]")


def report(result: OperationResult) -> None:
    """Print a result's status line and any notification."""
    style = "green" if result.ok else "red"
    console.print(
        f"  [{style}]{result.status}[/] {connectivity_icon(result.connectivity)}"
    )
    if result.notification:
        console.print(f"  [yellow]{result.notification}[/]")


def get_config(home: str) -> NotevaultConfig:
    return load_config(Path(home))


def open_vault(home: str, sync_id: str, code: str, **kwargs) -> tuple[SyncCoordinator, str]:
    """Build a coordinator and unlock ``sync_id``; exit(1) on failure.

    Returns:
        (coordinator, decrypted note content)
    """
    coordinator = build_coordinator(get_config(home), **kwargs)
    result = coordinator.unlock(sync_id, code)
    if not result.ok:
        report(result)
        if result.reset_required:
            console.print("  [dim]Re-enter your credentials to try again.[/]")
        sys.exit(1)
    report(result)
    return coordinator, result.content
