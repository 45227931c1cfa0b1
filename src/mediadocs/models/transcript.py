"""Pydantic models for timestamped transcripts."""

from __future__ import annotations

from typing import Iterable, List

from pydantic import Field, model_validator

from mediadocs.models.base import MediaDocsBaseModel

OVERLAP_TOLERANCE_SECONDS = 0.05


class TranscriptSegment(MediaDocsBaseModel):
    """Segment of a transcript including precise timing metadata."""

    start: float = Field(ge=0.0)
    end: float = Field(gt=0.0)
    text: str

    @model_validator(mode="after")
    def _check_order(self) -> "TranscriptSegment":
        if self.start >= self.end:
            raise ValueError(f"segment start {self.start} must be before end {self.end}")
        return self

    @property
    def midpoint(self) -> float:
        return (self.start + self.end) / 2.0


def normalize_segments(
    segments: Iterable[TranscriptSegment],
    *,
    tolerance: float = OVERLAP_TOLERANCE_SECONDS,
) -> List[TranscriptSegment]:
    """Return segments sorted by start, rounded to milliseconds and free of real overlaps.

    Empty texts are dropped. A segment starting more than ``tolerance`` seconds before the
    previous one ends is clipped to begin at that end; if nothing is left it is dropped.
    """

    ordered = sorted(
        (segment for segment in segments if segment.text.strip()),
        key=lambda segment: (segment.start, segment.end),
    )

    normalized: List[TranscriptSegment] = []
    for segment in ordered:
        start = round(segment.start, 3)
        end = round(segment.end, 3)
        if normalized and start < normalized[-1].end - tolerance:
            start = normalized[-1].end
        if end <= start:
            continue
        normalized.append(TranscriptSegment(start=start, end=end, text=" ".join(segment.text.split())))
    return normalized


__all__ = [
    "OVERLAP_TOLERANCE_SECONDS",
    "TranscriptSegment",
    "normalize_segments",
]
