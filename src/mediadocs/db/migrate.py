"""Apply the SQL files in ``db/migrations`` once each, in name order."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Set

from psycopg2.extensions import connection as PsycopgConnection
from rich.console import Console
from rich.table import Table

from mediadocs.config.settings import get_settings
from mediadocs.db.connection import open_connection

MIGRATIONS_ROOT = Path(__file__).resolve().parent / "migrations"

_LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    name TEXT PRIMARY KEY,
    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


def _applied_names(conn: PsycopgConnection) -> Set[str]:
    with conn.cursor() as cur:
        cur.execute(_LEDGER_DDL)
        cur.execute("SELECT name FROM schema_migrations")
        rows = cur.fetchall()
    conn.commit()
    return {row[0] for row in rows}


def _apply(conn: PsycopgConnection, migration: Path) -> None:
    # One transaction per file so a failure leaves earlier files recorded.
    try:
        with conn.cursor() as cur:
            cur.execute(migration.read_text(encoding="utf-8"))
            cur.execute("INSERT INTO schema_migrations (name) VALUES (%s)", (migration.name,))
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def run_migrations(
    console: Optional[Console] = None,
    *,
    dsn: Optional[str] = None,
    directory: Path = MIGRATIONS_ROOT,
) -> List[str]:
    """Apply pending migrations and return the names applied by this call.

    Raises ``RuntimeError`` when no DSN is given and ``DATABASE_URL`` is unset.
    """

    console = console or Console()
    migrations = sorted(directory.glob("*.sql"))
    if not migrations:
        console.print("[yellow]No migrations found.[/yellow]")
        return []

    if dsn is None:
        database_url = get_settings().database_url
        if database_url is None:
            raise RuntimeError("DATABASE_URL is not configured; cannot run migrations.")
        dsn = str(database_url)

    table = Table(title="Database Migrations")
    table.add_column("Migration", style="cyan")
    table.add_column("Status")

    applied: List[str] = []
    conn = open_connection(dsn)
    try:
        already = _applied_names(conn)
        for migration in migrations:
            if migration.name in already:
                table.add_row(migration.name, "[dim]already applied[/dim]")
                continue
            try:
                _apply(conn, migration)
            except Exception as exc:
                table.add_row(migration.name, "[red]failed[/red]")
                console.print(table)
                console.print(f"[red]Migration {migration.name} failed:[/red] {exc}")
                raise
            applied.append(migration.name)
            table.add_row(migration.name, "[green]applied[/green]")
    finally:
        conn.close()

    console.print(table)
    return applied


__all__ = ["MIGRATIONS_ROOT", "run_migrations"]
