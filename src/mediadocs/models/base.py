"""Shared base model definitions for mediadocs domain objects."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class MediaDocsBaseModel(BaseModel):
    """Base model configured for project-wide defaults."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


__all__ = ["MediaDocsBaseModel"]
