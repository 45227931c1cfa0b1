"""Progress tracking types shared across the CLI and services."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt


class ProcessingStage(str, Enum):
    """Lifecycle stages for converting a video into a document."""

    DOWNLOADING = "downloading"
    TRANSCRIBING = "transcribing"
    EXTRACTING_KEYFRAMES = "extracting-keyframes"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStage.COMPLETED, ProcessingStage.ERROR)


# Stage-local progress callback: (percent within the stage, optional message).
StageProgress = Callable[[float, Optional[str]], None]

WORK_STAGES: Tuple[ProcessingStage, ...] = (
    ProcessingStage.DOWNLOADING,
    ProcessingStage.TRANSCRIBING,
    ProcessingStage.EXTRACTING_KEYFRAMES,
    ProcessingStage.GENERATING,
)


def stage_rank(stage: ProcessingStage) -> int:
    """Position of ``stage`` in the successful path; ``error`` ranks with no stage."""

    if stage is ProcessingStage.COMPLETED:
        return len(WORK_STAGES)
    if stage is ProcessingStage.ERROR:
        return -1
    return WORK_STAGES.index(stage)


class StageWeights(BaseModel):
    """Relative share of the overall progress bar owned by each work stage."""

    downloading: NonNegativeInt = 15
    transcribing: NonNegativeInt = 35
    extracting_keyframes: NonNegativeInt = 30
    generating: NonNegativeInt = 20

    model_config = ConfigDict(extra="forbid", frozen=True)

    def ranges(self) -> Dict[ProcessingStage, Tuple[float, float]]:
        """Return the ``(start, end)`` overall-percentage window of every work stage."""

        weights = [self.downloading, self.transcribing, self.extracting_keyframes, self.generating]
        total = sum(weights) or len(weights)
        if not sum(weights):
            weights = [1, 1, 1, 1]

        windows: Dict[ProcessingStage, Tuple[float, float]] = {}
        cursor = 0.0
        for stage, weight in zip(WORK_STAGES, weights):
            span = 100.0 * weight / total
            windows[stage] = (cursor, cursor + span)
            cursor += span
        return windows

    def overall(self, stage: ProcessingStage, stage_progress: float) -> int:
        """Map a stage-local percentage onto the whole-job percentage."""

        if stage is ProcessingStage.COMPLETED:
            return 100
        if stage is ProcessingStage.ERROR:
            return 0
        start, end = self.ranges()[stage]
        local = min(max(stage_progress, 0.0), 100.0)
        return int(start + (end - start) * local / 100.0)


class ProgressEvent(BaseModel):
    """Immutable progress notification published for a single job."""

    job_id: str
    stage: ProcessingStage
    progress: int = Field(ge=0, le=100)
    message: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    sequence: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(extra="forbid", frozen=True)


def merge_progress(current: Optional[ProgressEvent], incoming: ProgressEvent) -> ProgressEvent:
    """Pick the authoritative event when deliveries arrive duplicated or out of order.

    A terminal event always wins over a non-terminal one. Otherwise the higher overall
    percentage wins and ties go to the later sequence number.
    """

    if current is None:
        return incoming
    if current.stage.is_terminal and not incoming.stage.is_terminal:
        return current
    if incoming.stage.is_terminal and not current.stage.is_terminal:
        return incoming
    if incoming.progress != current.progress:
        return incoming if incoming.progress > current.progress else current
    return incoming if incoming.sequence >= current.sequence else current


__all__ = [
    "ProcessingStage",
    "ProgressEvent",
    "StageProgress",
    "StageWeights",
    "WORK_STAGES",
    "merge_progress",
    "stage_rank",
]
