"""Command registration utilities for the mediadocs CLI."""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console

from mediadocs.cli.commands import convert, manage
from mediadocs.cli.commands.convert import ManagerFactory
from mediadocs.cli.commands.manage import HistoryStoreFactory


def register_commands(
    app: typer.Typer,
    console: Console,
    *,
    manager_factory: Optional[ManagerFactory] = None,
    history_store_factory: Optional[HistoryStoreFactory] = None,
) -> None:
    """Attach command groups to the provided Typer application."""

    convert.register(app, console, manager_factory=manager_factory)
    manage.register(app, console, history_store_factory=history_store_factory)

    @app.callback(invoke_without_command=True)
    def main_callback(ctx: typer.Context) -> None:
        """Convert videos into styled documents."""

        if ctx.invoked_subcommand is None:
            console.print("[bold green]mediadocs CLI ready for commands.[/bold green]")


__all__ = ["HistoryStoreFactory", "ManagerFactory", "register_commands"]
