"""Pydantic models describing conversion jobs and their history."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import Field

from mediadocs.models.base import MediaDocsBaseModel
from mediadocs.models.keyframe import Keyframe, KeyframeConfig
from mediadocs.models.transcript import TranscriptSegment
from mediadocs.utils.errors import ErrorKind
from mediadocs.utils.progress import ProcessingStage


class DocumentStyle(str, Enum):
    """Output styles the document synthesizer can render."""

    NOTE = "note"
    SUMMARY = "summary"
    ARTICLE = "article"
    MINDMAP = "mindmap"
    SOCIAL_MEDIA_POST = "social-media-post"
    TABLE = "table"


class AsrEngineId(str, Enum):
    """Selectable transcription engines."""

    LOCAL = "local"
    CLOUD = "cloud"
    CAPTIONS = "captions"


class KeyframeStrategyId(str, Enum):
    """Selectable keyframe selection strategies."""

    UNIFORM = "uniform"
    KEYWORD = "keyword"
    SEMANTIC = "semantic"
    VISUAL = "visual"
    HYBRID = "hybrid"


class JobErrorInfo(MediaDocsBaseModel):
    """Failure details recorded on a job that reached the ``error`` stage."""

    kind: ErrorKind
    message: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Job(MediaDocsBaseModel):
    """One end-to-end conversion request and its lifecycle state.

    The job manager owns the live instance and hands out deep copies as snapshots.
    ``furthest_stage`` records the last stage whose output was committed so a retry can
    skip redundant work.
    """

    id: str
    source: str
    platform: str
    video_id: str
    style: DocumentStyle
    asr_engine: AsrEngineId
    keyframe_strategy: KeyframeStrategyId
    keyframe_config: KeyframeConfig = Field(default_factory=KeyframeConfig)
    language: Optional[str] = None
    force_transcription: bool = False
    force_keyframes: bool = False
    vision: bool = False
    stage: ProcessingStage = ProcessingStage.DOWNLOADING
    furthest_stage: Optional[ProcessingStage] = None
    progress: int = Field(default=0, ge=0, le=100)
    message: Optional[str] = None
    error: Optional[JobErrorInfo] = None
    warnings: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    title: Optional[str] = None
    duration: Optional[float] = Field(default=None, ge=0.0)
    output_dir: Optional[str] = None
    audio_path: Optional[str] = None
    video_path: Optional[str] = None
    document_path: Optional[str] = None
    transcript: List[TranscriptSegment] = Field(default_factory=list)
    keyframes: List[Keyframe] = Field(default_factory=list)
    result: Optional[str] = None
    cancel_requested: bool = False
    retry_of: Optional[str] = None


class HistoryEntry(MediaDocsBaseModel):
    """Compact record of a finished conversion kept by the persistence layer."""

    id: str
    source: str
    title: str
    style: DocumentStyle
    asr_engine: AsrEngineId
    keyframe_strategy: KeyframeStrategyId
    keyframe_count: int = Field(ge=0)
    word_count: int = Field(ge=0)
    document_path: Optional[str] = None
    created_at: datetime
    completed_at: datetime


__all__ = [
    "AsrEngineId",
    "DocumentStyle",
    "HistoryEntry",
    "Job",
    "JobErrorInfo",
    "KeyframeStrategyId",
]
