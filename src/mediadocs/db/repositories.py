"""Postgres implementation of the storage ``Repository`` contract."""

from __future__ import annotations

from typing import Any, ClassVar, Dict, Generic, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from psycopg2.extras import Json, RealDictCursor

from mediadocs.db import ConnectionFactory
from mediadocs.models.base import MediaDocsBaseModel

ModelT = TypeVar("ModelT", bound=MediaDocsBaseModel)


class RepositoryError(RuntimeError):
    """A statement that must return a row returned none."""


class PostgresRepository(Generic[ModelT]):
    """Table-backed store keyed by a text ``id`` column.

    Subclasses name the table, the model and the persisted columns. Columns listed in
    ``json_fields`` are wrapped with :class:`psycopg2.extras.Json` so they land in JSONB.
    """

    table_name: ClassVar[str]
    model_type: ClassVar[Type[MediaDocsBaseModel]]
    fields: ClassVar[Sequence[str]]
    json_fields: ClassVar[frozenset[str]] = frozenset()
    order_by: ClassVar[str] = "created_at DESC"

    def __init__(self, connection_factory: ConnectionFactory) -> None:
        self._connection_factory = connection_factory

    def create(self, model: ModelT) -> ModelT:
        payload = self._row_values(model)
        columns, values = self._column_lists(payload)
        return self._returning(f"INSERT INTO {self.table_name} ({columns}) VALUES ({values}) RETURNING *", payload)

    def update(self, model: ModelT) -> ModelT:
        """Write the whole record, inserting it if absent. Concurrent writers: last one wins."""

        payload = self._row_values(model)
        columns, values = self._column_lists(payload)
        assignments = ", ".join(f"{name} = EXCLUDED.{name}" for name in payload if name != "id")
        return self._returning(
            f"INSERT INTO {self.table_name} ({columns}) VALUES ({values}) "
            f"ON CONFLICT (id) DO UPDATE SET {assignments} RETURNING *",
            payload,
        )

    def get(self, record_id: str) -> Optional[ModelT]:
        rows = self._select("id = %(id)s", {"id": record_id})
        return rows[0] if rows else None

    def list(self) -> List[ModelT]:
        return self._select()

    def delete(self, record_id: str) -> bool:
        with self._connection_factory() as conn, conn.cursor() as cur:
            cur.execute(f"DELETE FROM {self.table_name} WHERE id = %(id)s", {"id": record_id})
            return cur.rowcount > 0

    def _select(self, where: Optional[str] = None, params: Optional[Mapping[str, Any]] = None) -> List[ModelT]:
        query = f"SELECT * FROM {self.table_name}"
        if where:
            query += f" WHERE {where}"
        query += f" ORDER BY {self.order_by}"
        with self._connection_factory() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, params or {})
            return [self._to_model(row) for row in cur.fetchall()]

    def _returning(self, query: str, payload: Mapping[str, Any]) -> ModelT:
        with self._connection_factory() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, payload)
            row = cur.fetchone()
        if row is None:
            raise RepositoryError(f"{self.table_name}: statement returned no row")
        return self._to_model(row)

    def _row_values(self, model: ModelT) -> Dict[str, Any]:
        dumped = model.model_dump(mode="json")
        return {
            name: Json(dumped[name]) if name in self.json_fields and dumped[name] is not None else dumped[name]
            for name in self.fields
            if name in dumped
        }

    @staticmethod
    def _column_lists(payload: Mapping[str, Any]) -> Tuple[str, str]:
        return ", ".join(payload), ", ".join(f"%({name})s" for name in payload)

    def _to_model(self, row: Mapping[str, Any]) -> ModelT:
        return self.model_type.model_validate(dict(row))  # type: ignore[return-value]


def model_fields(model_type: Type[MediaDocsBaseModel], *, exclude: Iterable[str] = ()) -> Tuple[str, ...]:
    excluded = set(exclude)
    return tuple(name for name in model_type.model_fields if name not in excluded)


__all__ = ["PostgresRepository", "RepositoryError", "model_fields"]
