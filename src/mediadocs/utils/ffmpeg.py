"""Thin wrappers around the ``ffmpeg``/``ffprobe`` executables."""

from __future__ import annotations

import json
import re
import subprocess
from pathlib import Path
from typing import List, Tuple

_PTS_TIME_PATTERN = re.compile(r"pts_time:([0-9.]+)")
_SCENE_SCORE_PATTERN = re.compile(r"lavfi\.scene_score=([0-9.]+)")


def probe_duration(media_path: Path | str) -> float:
    """Return the container duration of ``media_path`` in seconds."""

    command = [
        "ffprobe",
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "json",
        str(media_path),
    ]
    try:
        completed = subprocess.run(command, check=True, capture_output=True, text=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise RuntimeError(f"Failed to probe media duration for {media_path}") from exc

    try:
        payload = json.loads(completed.stdout or "{}")
        return float(payload["format"]["duration"])
    except (KeyError, TypeError, ValueError) as exc:
        raise RuntimeError(f"ffprobe returned no duration for {media_path}") from exc


def extract_frame(
    input_video: Path | str,
    timestamp: float,
    output_path: Path | str,
) -> Path:
    """Write the frame shown at ``timestamp`` seconds to ``output_path`` as a JPEG."""

    target = Path(output_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    command = [
        "ffmpeg",
        "-y",
        "-ss",
        f"{max(timestamp, 0.0):.3f}",
        "-i",
        str(input_video),
        "-frames:v",
        "1",
        "-q:v",
        "2",
        str(target),
    ]

    try:
        subprocess.run(command, check=True, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise RuntimeError(f"Failed to extract frame at {timestamp:.2f}s with ffmpeg") from exc

    if not target.exists() or target.stat().st_size == 0:
        raise RuntimeError(f"ffmpeg produced no image for {timestamp:.2f}s")
    return target


def parse_scene_scores(ffmpeg_stderr: str) -> List[Tuple[float, float]]:
    """Pair every ``pts_time`` with the ``lavfi.scene_score`` printed after it."""

    scores: List[Tuple[float, float]] = []
    pending_time: float | None = None
    for line in ffmpeg_stderr.splitlines():
        time_match = _PTS_TIME_PATTERN.search(line)
        if time_match:
            pending_time = float(time_match.group(1))
            continue
        score_match = _SCENE_SCORE_PATTERN.search(line)
        if score_match and pending_time is not None:
            scores.append((pending_time, float(score_match.group(1))))
            pending_time = None
    return scores


def sample_scene_scores(
    input_video: Path | str,
    *,
    interval_seconds: float = 2.0,
) -> List[Tuple[float, float]]:
    """Score the visual change between successive frames sampled every ``interval_seconds``.

    Returns ``(timestamp, score)`` pairs where ``score`` lies in ``[0, 1]``.
    """

    if interval_seconds <= 0:
        raise ValueError("interval_seconds must be positive")

    command = [
        "ffmpeg",
        "-hide_banner",
        "-i",
        str(input_video),
        "-vf",
        f"fps=1/{interval_seconds},select='gte(scene,0)',metadata=print",
        "-an",
        "-f",
        "null",
        "-",
    ]
    try:
        completed = subprocess.run(command, check=True, capture_output=True, text=True)
    except (OSError, subprocess.CalledProcessError) as exc:
        raise RuntimeError("Failed to score scene changes with ffmpeg") from exc

    return parse_scene_scores(completed.stderr)


__all__ = ["extract_frame", "parse_scene_scores", "probe_duration", "sample_scene_scores"]
