"""Pooled Postgres connections shared by the job and history repositories."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from psycopg2 import InterfaceError, OperationalError, connect
from psycopg2.extensions import connection as PsycopgConnection
from psycopg2.pool import ThreadedConnectionPool

from mediadocs.config.settings import get_settings

APPLICATION_NAME = "mediadocs"


class DatabasePool:
    """Connection pool safe to use from the worker threads repositories run on.

    Each checkout is one transaction: committed when the block exits cleanly, rolled back when
    it raises. Connections that die mid-transaction are closed instead of returned.
    """

    def __init__(self, dsn: str, *, max_connections: int = 5) -> None:
        self._pool = ThreadedConnectionPool(1, max_connections, dsn, application_name=APPLICATION_NAME)

    @contextmanager
    def connection(self) -> Iterator[PsycopgConnection]:
        conn = self._pool.getconn()
        discard = False
        try:
            yield conn
            conn.commit()
        except (OperationalError, InterfaceError):
            discard = True
            raise
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn, close=discard or bool(conn.closed))

    def close(self) -> None:
        self._pool.closeall()


_pools: Dict[str, DatabasePool] = {}
_pools_lock = threading.Lock()


def pool_for(dsn: str, *, max_connections: Optional[int] = None) -> DatabasePool:
    """Return the shared pool for ``dsn``, creating it on first use."""

    with _pools_lock:
        pool = _pools.get(dsn)
        if pool is None:
            size = max_connections or get_settings().database_pool_size
            pool = _pools[dsn] = DatabasePool(dsn, max_connections=size)
        return pool


def close_pools() -> None:
    with _pools_lock:
        for pool in _pools.values():
            pool.close()
        _pools.clear()


@contextmanager
def get_connection() -> Iterator[PsycopgConnection]:
    """Check out a transactional connection to ``DATABASE_URL``."""

    database_url = get_settings().database_url
    if database_url is None:
        raise RuntimeError("DATABASE_URL is not configured.")
    with pool_for(str(database_url)).connection() as conn:
        yield conn


def open_connection(dsn: str) -> PsycopgConnection:
    """Open an unpooled connection, used for schema changes."""

    return connect(dsn, application_name=APPLICATION_NAME)


__all__ = ["APPLICATION_NAME", "DatabasePool", "close_pools", "get_connection", "open_connection", "pool_for"]
