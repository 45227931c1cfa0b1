"""Pydantic models describing captured keyframes."""

from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from mediadocs.models.base import MediaDocsBaseModel


class Keyframe(MediaDocsBaseModel):
    """A representative frame with its position in the video and nearby speech."""

    timestamp: float = Field(ge=0.0)
    image_path: str
    image_url: Optional[str] = None
    text: str = ""


class KeyframeConfig(MediaDocsBaseModel):
    """Tunable selection parameters shared by every keyframe strategy.

    ``target_count`` of ``None`` derives the count from the video duration.
    """

    target_count: Optional[int] = Field(default=None, ge=1)
    max_count: int = Field(default=30, ge=1)
    min_interval: float = Field(default=2.0, ge=0.0)
    keywords: List[str] = Field(default_factory=list)
    caption_window: float = Field(default=15.0, gt=0.0)
    scene_sample_interval: float = Field(default=2.0, gt=0.0)
    semantic_weight: float = Field(default=0.5, ge=0.0, le=1.0)


__all__ = ["Keyframe", "KeyframeConfig"]
