"""CLI entry point and application wiring."""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console

from mediadocs.cli.commands import HistoryStoreFactory, ManagerFactory, register_commands


class CLIApplication:
    """Central orchestrator for the mediadocs Typer application."""

    def __init__(
        self,
        console: Optional[Console] = None,
        *,
        manager_factory: Optional[ManagerFactory] = None,
        history_store_factory: Optional[HistoryStoreFactory] = None,
    ) -> None:
        self.console = console or Console()
        self._app = typer.Typer(add_completion=False, rich_markup_mode="rich")
        register_commands(
            self._app,
            self.console,
            manager_factory=manager_factory,
            history_store_factory=history_store_factory,
        )

    @property
    def app(self) -> typer.Typer:
        """Return the underlying Typer application instance."""

        return self._app

    def run(self, *, prog_name: Optional[str] = None, args: Optional[list[str]] = None) -> None:
        self._app(prog_name=prog_name, args=args)


def create_app(
    console: Optional[Console] = None,
    *,
    manager_factory: Optional[ManagerFactory] = None,
    history_store_factory: Optional[HistoryStoreFactory] = None,
) -> typer.Typer:
    """Factory helper that returns the configured Typer application."""

    return CLIApplication(
        console=console,
        manager_factory=manager_factory,
        history_store_factory=history_store_factory,
    ).app


def main() -> None:
    """Console script entry point for the installed ``mediadocs`` command."""

    CLIApplication().run(prog_name="mediadocs")


__all__ = ["CLIApplication", "create_app", "main"]
