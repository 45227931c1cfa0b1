"""Repositories for the ``conversion_jobs`` and ``conversion_history`` tables."""

from __future__ import annotations

from typing import List

from mediadocs.db.repositories import PostgresRepository, model_fields
from mediadocs.models.job import HistoryEntry, Job


class JobRepository(PostgresRepository[Job]):
    """Conversion job snapshots."""

    table_name = "conversion_jobs"
    model_type = Job
    fields = model_fields(Job)
    json_fields = frozenset({"keyframe_config", "error", "warnings", "transcript", "keyframes"})

    def list_active(self) -> List[Job]:
        return self._select("stage NOT IN ('completed', 'error')")


class HistoryRepository(PostgresRepository[HistoryEntry]):
    """Completed conversions."""

    table_name = "conversion_history"
    model_type = HistoryEntry
    fields = model_fields(HistoryEntry)
    order_by = "completed_at DESC"


__all__ = ["HistoryRepository", "JobRepository"]
