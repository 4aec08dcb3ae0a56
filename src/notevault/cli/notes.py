"""Note commands: show, write, edit, pad, delete."""

from __future__ import annotations

import sys

import click

from ._common import (
    code_option,
    console,
    home_option,
    id_option,
    open_vault,
    report,
)
from ..models import SaveResult, SyncOutcome


def _exit_for_save(result: SaveResult) -> None:
    report(result)
    if not result.ok:
        sys.exit(1)


def register_note_commands(main: click.Group) -> None:
    """Register the note editing commands on the main CLI group."""

    @main.command()
    @home_option
    @id_option
    @code_option
    def show(home, sync_id, code):
        """Unlock a vault and print its note."""
        coordinator, content = open_vault(home, sync_id, code)
        try:
            console.print()
            console.print(content, markup=False, highlight=False)
        finally:
            coordinator.lock()

    @main.command()
    @home_option
    @id_option
    @code_option
    @click.option("--text", default=None, help="New note content. Reads stdin when omitted.")
    def write(home, sync_id, code, text):
        """Replace a vault's note and sync it."""
        if text is None:
            text = click.get_text_stream("stdin").read()
        coordinator, _ = open_vault(home, sync_id, code)
        try:
            result = coordinator.save(text)
        finally:
            coordinator.lock()
        if result.outcome == SyncOutcome.UNCHANGED:
            console.print("  [dim]No changes.[/]")
        _exit_for_save(result)

    @main.command()
    @home_option
    @id_option
    @code_option
    def edit(home, sync_id, code):
        """Open a vault's note in $EDITOR and sync on exit."""
        coordinator, content = open_vault(home, sync_id, code)
        try:
            edited = click.edit(content, extension=".txt", require_save=True)
            if edited is None:
                console.print("  [dim]Editor closed without saving.[/]")
                return
            result = coordinator.save(edited)
        finally:
            coordinator.lock()
        _exit_for_save(result)

    @main.command()
    @home_option
    @id_option
    @code_option
    def pad(home, sync_id, code):
        """Append lines from stdin; autosaves after each pause in typing.

        End input with Ctrl-D to flush the last save and lock the vault.
        """

        def on_result(result: SaveResult) -> None:
            if not result.superseded:
                report(result)

        coordinator, content = open_vault(home, sync_id, code, on_result=on_result)
        if content:
            console.print(content, markup=False, highlight=False)
        try:
            for line in click.get_text_stream("stdin"):
                content += line
                coordinator.schedule_save(content)
            final = coordinator.flush()
            if final is not None:
                report(final)
        finally:
            coordinator.lock()

    @main.command()
    @home_option
    @id_option
    @code_option
    @click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
    def delete(home, sync_id, code, yes):
        """Delete a vault from the server and this device."""
        coordinator, _ = open_vault(home, sync_id, code)
        try:
            if not yes and not click.confirm(f"Delete vault '{sync_id}' everywhere?"):
                console.print("  [dim]Aborted.[/]")
                return
            result = coordinator.delete_vault()
        finally:
            coordinator.lock()
        report(result)
        if not result.ok:
            sys.exit(1)
