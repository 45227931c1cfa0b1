"""Error kinds surfaced by the conversion pipeline."""

from __future__ import annotations

from enum import Enum
from typing import ClassVar, Optional


class ErrorKind(str, Enum):
    """Uniform classification attached to every failed job."""

    SOURCE_INVALID = "SourceInvalid"
    DOWNLOAD_FAILED = "DownloadFailed"
    TRANSCRIPTION_FAILED = "TranscriptionFailed"
    CONNECTOR_UNAVAILABLE = "ConnectorUnavailable"
    CAPTURE_FAILED = "CaptureFailed"
    GENERATION_FAILED = "GenerationFailed"
    CANCELLED = "Cancelled"


class PipelineError(RuntimeError):
    """Base exception for stage failures; ``kind`` drives job error reporting."""

    kind: ClassVar[ErrorKind]


class SourceInvalidError(PipelineError, ValueError):
    """Raised when a source reference cannot be resolved to a supported video."""

    kind = ErrorKind.SOURCE_INVALID


class DownloadFailedError(PipelineError):
    """Raised when media assets cannot be downloaded."""

    kind = ErrorKind.DOWNLOAD_FAILED


class TranscriptionFailedError(PipelineError):
    """Raised when an ASR engine fails; ``reason`` normalises provider failures."""

    kind = ErrorKind.TRANSCRIPTION_FAILED

    def __init__(self, message: str, *, reason: str = "provider", provider_code: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.provider_code = provider_code


class ConnectorUnavailableError(PipelineError):
    """Raised when the automation surface cannot be reached within the retry budget."""

    kind = ErrorKind.CONNECTOR_UNAVAILABLE


class CaptureFailedError(PipelineError):
    """Raised when a frame cannot be captured, or when no frame at all was captured."""

    kind = ErrorKind.CAPTURE_FAILED


class GenerationFailedError(PipelineError):
    """Raised when the language model returns nothing usable."""

    kind = ErrorKind.GENERATION_FAILED


class JobCancelledError(PipelineError):
    """Raised at a stage boundary once cancellation of a job has been requested."""

    kind = ErrorKind.CANCELLED


class JobNotFoundError(KeyError):
    """Raised when a job id is unknown to the job manager."""


class UnsupportedOptionError(ValueError):
    """Raised when a style, strategy or engine is outside the supported set."""


class InvalidJobStateError(ValueError):
    """Raised when an operation is not allowed in the job's current stage."""


__all__ = [
    "CaptureFailedError",
    "ConnectorUnavailableError",
    "DownloadFailedError",
    "ErrorKind",
    "GenerationFailedError",
    "InvalidJobStateError",
    "JobCancelledError",
    "JobNotFoundError",
    "PipelineError",
    "SourceInvalidError",
    "TranscriptionFailedError",
    "UnsupportedOptionError",
]
