"""Media acquisition service built on ``yt-dlp``."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yt_dlp
from pydantic import ValidationError
from rich.console import Console

from mediadocs.models.media import MediaAssets, SubtitleTrackRef
from mediadocs.utils.errors import DownloadFailedError
from mediadocs.utils.progress import StageProgress
from mediadocs.utils.validation import SourceReference, sanitize_title

MEDIA_MANIFEST = "media.json"
AUDIO_FORMAT = "bestaudio/best"
# WebM first: the bundled Chromium cannot decode H.264 for browser capture.
VIDEO_FORMAT = "bestvideo[ext=webm]/bestvideo[ext=mp4]/bestvideo/best"

YoutubeDLFactory = Callable[[Dict[str, Any]], Any]


class MediaFetcher:
    """Resolve a source reference to local audio and video files.

    Downloads land in the job output directory and are described by ``media.json``; when that
    manifest and its files already exist the download is skipped entirely.
    """

    def __init__(
        self,
        *,
        console: Optional[Console] = None,
        ydl_factory: Optional[YoutubeDLFactory] = None,
    ) -> None:
        self._console = console or Console()
        self._ydl_factory = ydl_factory or yt_dlp.YoutubeDL

    async def fetch(
        self,
        source: SourceReference,
        output_dir: Path,
        *,
        on_progress: Optional[StageProgress] = None,
    ) -> MediaAssets:
        """Return local media for ``source``, downloading only what is missing."""

        cached = self.load_cached(output_dir)
        if cached is not None:
            self._console.log(f"Using cached media for {source.video_id}")
            if on_progress:
                on_progress(100, "Using cached media")
            return cached

        loop = asyncio.get_running_loop()

        def threadsafe_progress(percent: float, message: Optional[str]) -> None:
            if on_progress is not None:
                loop.call_soon_threadsafe(on_progress, percent, message)

        return await asyncio.to_thread(self._download, source, output_dir, threadsafe_progress)

    def load_cached(self, output_dir: Path) -> Optional[MediaAssets]:
        """Return the stored manifest if every file it references still exists."""

        manifest = Path(output_dir) / MEDIA_MANIFEST
        if not manifest.exists():
            return None
        try:
            assets = MediaAssets.model_validate_json(manifest.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            self._console.log(f"[yellow]Ignoring unreadable media manifest {manifest}:[/yellow] {exc}")
            return None

        paths = [assets.audio_path] + ([assets.video_path] if assets.video_path else [])
        if not all(Path(path).exists() for path in paths):
            return None
        return assets

    def _download(self, source: SourceReference, output_dir: Path, on_progress: StageProgress) -> MediaAssets:
        output_dir.mkdir(parents=True, exist_ok=True)
        on_progress(0, "Fetching video metadata")

        try:
            info = self._extract_info(source.url)
            title = str(info.get("title") or source.video_id)
            safe_title = sanitize_title(title, fallback=source.video_id)

            audio_path = self._download_stream(
                source.url,
                output_dir,
                f"{safe_title}-audio",
                AUDIO_FORMAT,
                on_progress,
                progress_range=(0, 50),
            )
            video_path = self._download_stream(
                source.url,
                output_dir,
                f"{safe_title}-video",
                VIDEO_FORMAT,
                on_progress,
                progress_range=(50, 100),
            )
        except yt_dlp.utils.DownloadError as exc:
            raise DownloadFailedError(f"Failed to download {source.url}: {exc}") from exc
        except OSError as exc:
            raise DownloadFailedError(f"Failed to write media for {source.url}: {exc}") from exc

        duration = info.get("duration")
        assets = MediaAssets(
            platform=source.platform,
            video_id=source.video_id,
            title=title,
            output_dir=str(output_dir),
            audio_path=str(audio_path),
            video_path=str(video_path),
            duration=float(duration) if duration else None,
            subtitle_tracks=self._subtitle_tracks(info),
        )
        (output_dir / MEDIA_MANIFEST).write_text(assets.model_dump_json(indent=2), encoding="utf-8")
        on_progress(100, "Download complete")
        return assets

    def _extract_info(self, url: str) -> Dict[str, Any]:
        ydl_opts = {"quiet": True, "no_warnings": True, "skip_download": True}
        with self._ydl_factory(ydl_opts) as ydl:
            info = ydl.extract_info(url, download=False)
        if not info:
            raise DownloadFailedError(f"No metadata returned for {url}")
        return dict(info)

    def _download_stream(
        self,
        url: str,
        output_dir: Path,
        stem: str,
        format_selector: str,
        on_progress: StageProgress,
        *,
        progress_range: tuple[int, int],
    ) -> Path:
        start, end = progress_range

        def hook(status: Dict[str, Any]) -> None:
            if status.get("status") != "downloading":
                return
            total = status.get("total_bytes") or status.get("total_bytes_estimate")
            downloaded = status.get("downloaded_bytes") or 0
            if not total:
                return
            fraction = min(downloaded / total, 1.0)
            on_progress(start + (end - start) * fraction, f"Downloading {stem}: {fraction:.0%}")

        ydl_opts = {
            "format": format_selector,
            "outtmpl": str(output_dir / f"{stem}.%(ext)s"),
            "quiet": True,
            "no_warnings": True,
            "progress_hooks": [hook],
        }
        with self._ydl_factory(ydl_opts) as ydl:
            ydl.download([url])

        downloaded_files = sorted(path for path in output_dir.glob(f"{stem}.*") if not path.name.endswith(".part"))
        if not downloaded_files:
            raise DownloadFailedError(f"yt-dlp finished without producing {stem}")
        return downloaded_files[0]

    @staticmethod
    def _subtitle_tracks(info: Dict[str, Any]) -> List[SubtitleTrackRef]:
        tracks: List[SubtitleTrackRef] = []
        for language, formats in (info.get("subtitles") or {}).items():
            for entry in formats or []:
                if entry.get("ext") == "json3" and entry.get("url"):
                    tracks.append(SubtitleTrackRef(url=entry["url"], title=entry.get("name") or language))
                    break
        return tracks


__all__ = ["MEDIA_MANIFEST", "MediaFetcher"]
