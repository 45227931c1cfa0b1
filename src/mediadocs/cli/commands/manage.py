"""CLI commands for conversion history, the artifact cache and database migrations."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Optional

import typer
from rich.console import Console
from rich.table import Table

from mediadocs.config.settings import get_settings
from mediadocs.db.migrate import run_migrations
from mediadocs.models.job import HistoryEntry
from mediadocs.services.cache import DEFAULT_MAX_AGE_DAYS, clear_expired_caches, delete_cache, list_caches
from mediadocs.services.jobs import default_repositories
from mediadocs.services.storage import Repository

HistoryStoreFactory = Callable[[], Repository[HistoryEntry]]


def _default_history_store() -> Repository[HistoryEntry]:
    return default_repositories(get_settings())[1]


def _cache_root(root: Optional[Path]) -> Path:
    return root if root is not None else Path(get_settings().output_root)


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{size} B"  # pragma: no cover


def register(
    app: typer.Typer,
    console: Console,
    *,
    history_store_factory: Optional[HistoryStoreFactory] = None,
) -> None:
    """Register the ``history``, ``cache`` and ``migrate`` commands."""

    build_history_store = history_store_factory or _default_history_store

    @app.command("history")
    def history(
        limit: int = typer.Option(20, "--limit", min=1, help="Maximum entries to show"),
        json_output: bool = typer.Option(False, "--json", help="Output history as JSON"),
    ) -> None:
        """Show completed conversions, newest first."""

        entries = sorted(build_history_store().list(), key=lambda entry: entry.completed_at, reverse=True)[:limit]
        if json_output:
            payload = [entry.model_dump(mode="json") for entry in entries]
            typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
            return
        if not entries:
            console.print("[yellow]No completed conversions yet.[/yellow]")
            return

        table = Table(title="Conversion History")
        table.add_column("Completed", style="cyan")
        table.add_column("Title", overflow="fold")
        table.add_column("Style")
        table.add_column("ASR")
        table.add_column("Keyframes", justify="right")
        table.add_column("Words", justify="right")
        table.add_column("Document", overflow="fold")
        for entry in entries:
            table.add_row(
                entry.completed_at.strftime("%Y-%m-%d %H:%M"),
                entry.title,
                entry.style.value,
                entry.asr_engine.value,
                str(entry.keyframe_count),
                str(entry.word_count),
                entry.document_path or "-",
            )
        console.print(table)

    cache_app = typer.Typer(help="Inspect and prune cached per-video artifacts.")
    app.add_typer(cache_app, name="cache")

    @cache_app.command("list")
    def cache_list(
        root: Optional[Path] = typer.Option(None, "--root", help="Cache root (defaults to OUTPUT_ROOT)"),
        json_output: bool = typer.Option(False, "--json", help="Output cache entries as JSON"),
    ) -> None:
        entries = list_caches(_cache_root(root))
        if json_output:
            typer.echo(json.dumps([entry.model_dump(mode="json") for entry in entries], indent=2))
            return
        if not entries:
            console.print("[yellow]Cache is empty.[/yellow]")
            return

        table = Table(title="Artifact Cache")
        table.add_column("Key", style="cyan")
        table.add_column("Size", justify="right")
        table.add_column("Modified")
        table.add_column("Transcript")
        table.add_column("Keyframes")
        for entry in entries:
            table.add_row(
                entry.key,
                _format_size(entry.size),
                entry.created_at.strftime("%Y-%m-%d %H:%M"),
                "yes" if entry.has_transcript else "no",
                "yes" if entry.has_keyframes else "no",
            )
        console.print(table)

    @cache_app.command("delete")
    def cache_delete(
        key: str = typer.Argument(..., help="Cache key (the video id)"),
        root: Optional[Path] = typer.Option(None, "--root", help="Cache root (defaults to OUTPUT_ROOT)"),
    ) -> None:
        try:
            removed = delete_cache(_cache_root(root), key)
        except ValueError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=1) from exc
        if not removed:
            console.print(f"[yellow]No cache named {key}.[/yellow]")
            raise typer.Exit(code=1)
        console.print(f"[green]Deleted cache {key}.[/green]")

    @cache_app.command("clear-expired")
    def cache_clear_expired(
        max_age_days: int = typer.Option(DEFAULT_MAX_AGE_DAYS, "--max-age-days", min=0, help="Age threshold in days"),
        root: Optional[Path] = typer.Option(None, "--root", help="Cache root (defaults to OUTPUT_ROOT)"),
    ) -> None:
        removed = clear_expired_caches(_cache_root(root), max_age_days, console=console)
        console.print(f"Removed {len(removed)} expired cache(s).")

    @app.command("migrate")
    def migrate() -> None:
        """Apply the SQL migrations to DATABASE_URL."""

        try:
            run_migrations(console)
        except RuntimeError as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=1) from exc


__all__ = ["HistoryStoreFactory", "register"]
