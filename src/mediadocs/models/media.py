"""Pydantic models describing downloaded media and subtitle tracks."""

from __future__ import annotations

from typing import List, Optional

from pydantic import ConfigDict, Field

from mediadocs.models.base import MediaDocsBaseModel


class SubtitleTrackRef(MediaDocsBaseModel):
    """Location of one subtitle track advertised by the video provider."""

    url: str
    title: str


class SubtitleLine(MediaDocsBaseModel):
    """A single timed subtitle entry."""

    start: float = Field(alias="from", ge=0.0)
    end: float = Field(alias="to", ge=0.0)
    content: str

    # Bilibili entries also carry sid, location and music.
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SubtitleTrack(MediaDocsBaseModel):
    """Successfully fetched subtitle track and the SRT file written for it."""

    url: str
    title: str
    lines: List[SubtitleLine] = Field(default_factory=list)
    output_path: Optional[str] = None


class MediaAssets(MediaDocsBaseModel):
    """Local media resolved for a source reference."""

    platform: str
    video_id: str
    title: str
    output_dir: str
    audio_path: str
    video_path: Optional[str] = None
    duration: Optional[float] = Field(default=None, ge=0.0)
    subtitle_tracks: List[SubtitleTrackRef] = Field(default_factory=list)


__all__ = ["MediaAssets", "SubtitleLine", "SubtitleTrack", "SubtitleTrackRef"]
