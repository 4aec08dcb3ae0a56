"""Server and configuration commands: serve, config."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.table import Table

from ._common import console, get_config, home_option, setup_logging
from ..server import serve as run_server


def register_serve_commands(main: click.Group) -> None:
    """Register the serve and config commands on the main CLI group."""

    @main.command()
    @home_option
    @click.option("--host", default=None, help="Interface to bind.")
    @click.option("--port", default=None, type=int, help="Port to listen on.")
    @click.option("--data-dir", default=None, type=click.Path(), help="Record directory.")
    @click.option("--verbose", "-v", is_flag=True, help="Show server activity on stderr.")
    def serve(home, host, port, data_dir, verbose):
        """Run the notes API server."""
        if verbose:
            setup_logging(verbose)
        config = get_config(home)
        updates = {}
        if host:
            updates["host"] = host
        if port is not None:
            updates["port"] = port
        if data_dir:
            updates["data_dir"] = Path(data_dir).expanduser()
        config = config.model_copy(update=updates)

        console.print(
            f"\n  Notes API on [cyan]http://{config.host}:{config.port}[/]"
            f"\n  [dim]Records: {config.data_dir}[/]\n"
        )
        run_server(config)

    @main.command("config")
    @home_option
    @click.option("--json-out", is_flag=True, help="Print configuration as JSON.")
    def show_config(home, json_out):
        """Show the effective configuration."""
        config = get_config(home)
        data = config.model_dump(mode="json")
        if json_out:
            click.echo(json.dumps(data, indent=2))
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Setting", style="bold")
        table.add_column("Value", style="cyan")
        for key, value in data.items():
            table.add_row(key, str(value))
        console.print()
        console.print(table)
        console.print()
