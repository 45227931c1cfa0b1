"""Validation helpers for video source references and artifact names."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

from mediadocs.utils.errors import SourceInvalidError

YOUTUBE = "youtube"
BILIBILI = "bilibili"

_YOUTUBE_ID_PATTERN = re.compile(r"^[0-9A-Za-z_-]{11}$")
_BV_ID_PATTERN = re.compile(r"^BV[0-9A-Za-z]{10}$")
_BV_IN_PATH_PATTERN = re.compile(r"/video/(BV[0-9A-Za-z]{10})")
# ASCII punctuation, CJK punctuation, zero-width space and whitespace are not allowed in file names.
_TITLE_STRIP_PATTERN = re.compile(
    r"[「」`~!@#$%^&*()=|{}':;\",\[\].<>​/\\?！￥…（）—【】‘’“”；：。，、？\s+]"
)


@dataclass(frozen=True, slots=True)
class SourceReference:
    """Normalised reference to a downloadable video."""

    platform: str
    video_id: str

    @property
    def url(self) -> str:
        if self.platform == YOUTUBE:
            return f"https://www.youtube.com/watch?v={self.video_id}"
        return f"https://www.bilibili.com/video/{self.video_id}"


def _youtube_id_from_url(parsed) -> str | None:
    if parsed.netloc in {"youtu.be", "www.youtu.be"}:
        candidate = parsed.path.lstrip("/")
        return candidate if _YOUTUBE_ID_PATTERN.fullmatch(candidate) else None

    if not parsed.netloc.endswith("youtube.com"):
        return None

    # Handle standard watch URLs as well as embedded and shorts formats.
    if parsed.path == "/watch":
        candidates = parse_qs(parsed.query).get("v", [])
        if candidates and _YOUTUBE_ID_PATTERN.fullmatch(candidates[0]):
            return candidates[0]
        return None

    embedded_match = re.search(r"/(?:embed|shorts|live)/([0-9A-Za-z_-]{11})", parsed.path)
    return embedded_match.group(1) if embedded_match else None


def parse_source(reference: str) -> SourceReference:
    """Resolve a raw video id or URL into a :class:`SourceReference`.

    Raises
    ------
    SourceInvalidError
        If the reference is empty or does not identify a supported video.
    """

    if not isinstance(reference, str) or not reference.strip():
        raise SourceInvalidError("Source reference is empty.")

    stripped = reference.strip()
    if _BV_ID_PATTERN.fullmatch(stripped):
        return SourceReference(platform=BILIBILI, video_id=stripped)
    if _YOUTUBE_ID_PATTERN.fullmatch(stripped):
        return SourceReference(platform=YOUTUBE, video_id=stripped)

    parsed = urlparse(stripped)
    if parsed.scheme in {"http", "https"}:
        if parsed.netloc.endswith("bilibili.com"):
            match = _BV_IN_PATH_PATTERN.search(parsed.path)
            if match:
                return SourceReference(platform=BILIBILI, video_id=match.group(1))
        else:
            video_id = _youtube_id_from_url(parsed)
            if video_id:
                return SourceReference(platform=YOUTUBE, video_id=video_id)

    raise SourceInvalidError(f"Invalid video URL or id: {reference!r}")


def sanitize_title(title: str, *, fallback: str = "untitled") -> str:
    """Strip punctuation and whitespace so ``title`` is safe as a file name."""

    cleaned = _TITLE_STRIP_PATTERN.sub("", title or "")
    return cleaned or fallback


__all__ = ["BILIBILI", "SourceReference", "YOUTUBE", "parse_source", "sanitize_title"]
