"""Best-effort download of subtitle tracks into SRT files."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests
from rich.console import Console

from mediadocs.models.media import SubtitleLine, SubtitleTrack, SubtitleTrackRef
from mediadocs.utils.validation import sanitize_title

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)
REQUEST_TIMEOUT_SECONDS = 15

HttpGet = Callable[..., Any]


@dataclass
class SubtitleFetchResult:
    """Outcome of one ``fetch_all`` call: the saved tracks and a message per failed track."""

    tracks: List[SubtitleTrack] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)


def format_srt_time(total_seconds: float) -> str:
    """Format seconds as an SRT timestamp (``HH:MM:SS,mmm``)."""

    total_millis = int(round(max(total_seconds, 0.0) * 1000))
    hours, remainder = divmod(total_millis, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    seconds, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{millis:03d}"


def lines_to_srt(lines: Iterable[SubtitleLine]) -> str:
    blocks = [
        f"{index}\n{format_srt_time(line.start)} --> {format_srt_time(line.end)}\n{line.content}\n"
        for index, line in enumerate(lines, start=1)
    ]
    return "\n".join(blocks)


def parse_subtitle_payload(payload: Dict[str, Any]) -> List[SubtitleLine]:
    """Read either a ``body`` list of ``from``/``to``/``content`` entries or json3 ``events``.

    Raises
    ------
    ValueError
        If the payload has neither shape.
    """

    if isinstance(payload.get("body"), list):
        return [SubtitleLine.model_validate(item) for item in payload["body"]]

    events = payload.get("events")
    if not isinstance(events, list):
        raise ValueError("Subtitle payload has neither 'body' nor 'events'")

    lines: List[SubtitleLine] = []
    for event in events:
        text = "".join(seg.get("utf8", "") for seg in event.get("segs") or []).strip()
        if not text or "tStartMs" not in event:
            continue
        start = event["tStartMs"] / 1000.0
        end = start + event.get("dDurationMs", 0) / 1000.0
        lines.append(SubtitleLine(start=start, end=end, content=text))
    return lines


class SubtitleFetcher:
    """Fetch every advertised subtitle track concurrently; one failed track never fails the rest."""

    def __init__(self, *, console: Optional[Console] = None, http_get: Optional[HttpGet] = None) -> None:
        self._console = console or Console()
        self._http_get = http_get or requests.get

    async def fetch_all(
        self,
        tracks: Iterable[SubtitleTrackRef],
        base_title: str,
        output_dir: Path,
        *,
        on_failure: Optional[Callable[[str], None]] = None,
    ) -> SubtitleFetchResult:
        """Download all ``tracks`` and write one SRT file per success.

        Failures are logged, passed to ``on_failure`` and returned in the result; this method
        does not raise. Concurrent calls share no state.
        """

        tracks = list(tracks)
        result = SubtitleFetchResult()
        if not tracks:
            self._console.log("No subtitle tracks available")
            return result

        self._console.log(f"Found {len(tracks)} subtitle track(s); downloading")
        fetched = await asyncio.gather(
            *(self._fetch_one(track, base_title, Path(output_dir), result.failures, on_failure) for track in tracks)
        )
        result.tracks = [track for track in fetched if track is not None]
        return result

    async def _fetch_one(
        self,
        track: SubtitleTrackRef,
        base_title: str,
        output_dir: Path,
        failures: List[str],
        on_failure: Optional[Callable[[str], None]],
    ) -> Optional[SubtitleTrack]:
        try:
            payload = await asyncio.to_thread(self._download_json, track.url)
            lines = parse_subtitle_payload(payload)
            srt_path = output_dir / f"{sanitize_title(f'{base_title}-{track.title}')}.srt"
            output_dir.mkdir(parents=True, exist_ok=True)
            srt_path.write_text(lines_to_srt(lines), encoding="utf-8")
        except Exception as exc:
            message = f"Subtitle '{track.title}' failed: {exc}"
            failures.append(message)
            self._console.log(f"[yellow]{message}[/yellow] (url={track.url})")
            if on_failure is not None:
                on_failure(message)
            return None

        self._console.log(f"Subtitle saved: {srt_path}")
        return SubtitleTrack(url=track.url, title=track.title, lines=lines, output_path=str(srt_path))

    def _download_json(self, url: str) -> Dict[str, Any]:
        if url.startswith("//"):
            url = f"https:{url}"
        response = self._http_get(url, headers={"User-Agent": USER_AGENT}, timeout=REQUEST_TIMEOUT_SECONDS)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("Subtitle payload is not a JSON object")
        return payload


__all__ = ["SubtitleFetchResult", "SubtitleFetcher", "format_srt_time", "lines_to_srt", "parse_subtitle_payload"]
