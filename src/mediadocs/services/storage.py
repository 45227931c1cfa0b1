"""Persistence contract for job snapshots and history, plus an in-memory store."""

from __future__ import annotations

import threading
from typing import Dict, Generic, List, Optional, Protocol, TypeVar

from mediadocs.models.base import MediaDocsBaseModel

ModelT = TypeVar("ModelT", bound=MediaDocsBaseModel)


class Repository(Protocol[ModelT]):
    """Minimal store keyed by the model's ``id``; ``update`` is a last-write-wins upsert."""

    def create(self, model: ModelT) -> ModelT: ...

    def update(self, model: ModelT) -> ModelT: ...

    def get(self, record_id: str) -> Optional[ModelT]: ...

    def list(self) -> List[ModelT]: ...

    def delete(self, record_id: str) -> bool: ...


class RecordExistsError(KeyError):
    """Raised when ``create`` is called for an id that is already stored."""


class InMemoryRepository(Generic[ModelT]):
    """Process-local store holding deep copies so callers cannot mutate stored state."""

    def __init__(self) -> None:
        self._records: Dict[str, ModelT] = {}
        self._lock = threading.Lock()

    def create(self, model: ModelT) -> ModelT:
        record_id = getattr(model, "id")
        with self._lock:
            if record_id in self._records:
                raise RecordExistsError(record_id)
            self._records[record_id] = model.model_copy(deep=True)
        return model

    def update(self, model: ModelT) -> ModelT:
        with self._lock:
            self._records[getattr(model, "id")] = model.model_copy(deep=True)
        return model

    def get(self, record_id: str) -> Optional[ModelT]:
        with self._lock:
            stored = self._records.get(record_id)
        return stored.model_copy(deep=True) if stored is not None else None

    def list(self) -> List[ModelT]:
        with self._lock:
            records = list(self._records.values())
        return [record.model_copy(deep=True) for record in records]

    def delete(self, record_id: str) -> bool:
        with self._lock:
            return self._records.pop(record_id, None) is not None

    def __len__(self) -> int:
        return len(self._records)


__all__ = ["InMemoryRepository", "RecordExistsError", "Repository"]
