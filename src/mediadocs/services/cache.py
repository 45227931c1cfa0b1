"""Management of per-video artifact directories under the output root."""

from __future__ import annotations

import json
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence

from pydantic import Field, TypeAdapter, ValidationError
from rich.console import Console

from mediadocs.models.base import MediaDocsBaseModel
from mediadocs.models.transcript import TranscriptSegment
from mediadocs.services.keyframes import KEYFRAMES_MANIFEST as KEYFRAMES_CACHE

TRANSCRIPT_CACHE = "transcript.json"
# Settings the cached keyframes were selected with.
KEYFRAMES_SOURCE = "keyframes.source.json"
_SEGMENT_LIST = TypeAdapter(List[TranscriptSegment])
DEFAULT_MAX_AGE_DAYS = 7


class CacheEntry(MediaDocsBaseModel):
    """One cached artifact directory."""

    key: str
    path: str
    size: int = Field(ge=0)
    created_at: datetime
    has_transcript: bool = False
    has_keyframes: bool = False


def _directory_size(directory: Path) -> int:
    return sum(path.stat().st_size for path in directory.rglob("*") if path.is_file())


def _resolve_key(root: Path, key: str) -> Path:
    candidate = (root / key).resolve()
    if candidate.parent != root.resolve() or not key or key in {".", ".."}:
        raise ValueError(f"Invalid cache key: {key!r}")
    return candidate


def list_caches(root: Path | str) -> List[CacheEntry]:
    """Return cache directories under ``root``, newest first."""

    root = Path(root)
    if not root.is_dir():
        return []

    entries: List[CacheEntry] = []
    for directory in root.iterdir():
        if not directory.is_dir():
            continue
        stats = directory.stat()
        entries.append(
            CacheEntry(
                key=directory.name,
                path=str(directory),
                size=_directory_size(directory),
                created_at=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
                has_transcript=(directory / TRANSCRIPT_CACHE).exists(),
                has_keyframes=(directory / KEYFRAMES_CACHE).exists(),
            )
        )
    return sorted(entries, key=lambda entry: entry.created_at, reverse=True)


def delete_cache(root: Path | str, key: str) -> bool:
    """Remove the cache directory ``key``; returns ``False`` if it did not exist."""

    directory = _resolve_key(Path(root), key)
    if not directory.is_dir():
        return False
    shutil.rmtree(directory)
    return True


def clear_expired_caches(
    root: Path | str,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS,
    *,
    now: Optional[datetime] = None,
    console: Optional[Console] = None,
) -> List[str]:
    """Delete caches older than ``max_age_days`` and return their keys."""

    console = console or Console()
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=max_age_days)
    removed: List[str] = []
    for entry in list_caches(root):
        if entry.created_at < cutoff and delete_cache(root, entry.key):
            console.log(f"Removed expired cache {entry.key}")
            removed.append(entry.key)
    return removed


def save_transcript(
    output_dir: Path | str,
    engine_id: str,
    segments: Sequence[TranscriptSegment],
    *,
    language: Optional[str] = None,
) -> Path:
    """Store ``segments`` produced by ``engine_id`` so a later run can skip transcription."""

    path = Path(output_dir) / TRANSCRIPT_CACHE
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "engine": engine_id,
        "language": language,
        "segments": [segment.model_dump(mode="json") for segment in segments],
    }
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    return path


def load_transcript(
    output_dir: Path | str, engine_id: str, *, language: Optional[str] = None
) -> Optional[List[TranscriptSegment]]:
    """Return cached segments if ``engine_id`` produced them for the same ``language``."""

    path = Path(output_dir) / TRANSCRIPT_CACHE
    if not path.exists():
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        if payload.get("engine") != engine_id or payload.get("language") != language:
            return None
        segments = _SEGMENT_LIST.validate_python(payload.get("segments", []))
    except (OSError, ValueError, AttributeError, ValidationError):
        return None
    return segments or None


def save_keyframe_source(output_dir: Path | str, source: Mapping[str, Any]) -> Path:
    """Record the selection settings that produced the keyframes in ``output_dir``."""

    path = Path(output_dir) / KEYFRAMES_SOURCE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(dict(source), indent=2, sort_keys=True, ensure_ascii=False), encoding="utf-8")
    return path


def keyframe_source_matches(output_dir: Path | str, source: Mapping[str, Any]) -> bool:
    path = Path(output_dir) / KEYFRAMES_SOURCE
    try:
        return json.loads(path.read_text(encoding="utf-8")) == json.loads(json.dumps(dict(source)))
    except (OSError, ValueError):
        return False


__all__ = [
    "CacheEntry",
    "DEFAULT_MAX_AGE_DAYS",
    "KEYFRAMES_CACHE",
    "KEYFRAMES_SOURCE",
    "TRANSCRIPT_CACHE",
    "clear_expired_caches",
    "delete_cache",
    "keyframe_source_matches",
    "list_caches",
    "load_transcript",
    "save_keyframe_source",
    "save_transcript",
]
