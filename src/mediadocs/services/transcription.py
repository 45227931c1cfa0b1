"""Transcription engines turning downloaded audio into timestamped segments."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

import openai
from openai import AsyncOpenAI
from rich.console import Console
from youtube_transcript_api import YouTubeTranscriptApi
from youtube_transcript_api._errors import NoTranscriptFound, TranscriptsDisabled, VideoUnavailable

from mediadocs.config.settings import Settings, get_settings
from mediadocs.models.job import AsrEngineId
from mediadocs.models.media import MediaAssets
from mediadocs.models.transcript import TranscriptSegment, normalize_segments
from mediadocs.utils.errors import TranscriptionFailedError, UnsupportedOptionError
from mediadocs.utils.progress import StageProgress
from mediadocs.utils.validation import YOUTUBE

try:  # pragma: no cover - optional dependency heavy to load in tests
    import torch  # type: ignore
    import whisperx  # type: ignore
except ImportError:  # pragma: no cover
    torch = None
    whisperx = None


@runtime_checkable
class TranscriptionEngine(Protocol):
    """Common contract of every speech-to-text engine."""

    engine_id: AsrEngineId

    async def prepare(self, on_progress: Optional[StageProgress] = None) -> None:
        """Make the engine ready; may download model weights on first use."""

    async def transcribe(
        self,
        assets: MediaAssets,
        *,
        language: Optional[str] = None,
        on_progress: Optional[StageProgress] = None,
    ) -> List[TranscriptSegment]:
        """Return normalised segments for ``assets``."""


def _segments_from_items(items: Iterable[Any]) -> List[TranscriptSegment]:
    """Build segments from provider items exposing ``start``/``end``/``text`` as keys or attributes."""

    segments: List[TranscriptSegment] = []
    for item in items:
        if isinstance(item, Mapping):
            start, end, text = item.get("start", 0.0), item.get("end"), item.get("text", "")
        else:
            start, end, text = getattr(item, "start", 0.0), getattr(item, "end", None), getattr(item, "text", "")
        start = float(start or 0.0)
        end = float(end) if end is not None else start
        text = (text or "").strip()
        if not text or end <= start:
            continue
        segments.append(TranscriptSegment(start=start, end=end, text=text))
    return normalize_segments(segments)


def _emit(callback: Optional[StageProgress], percent: float, message: str) -> None:
    if callback is not None:
        callback(percent, message)


class LocalWhisperEngine:
    """Run WhisperX on this machine."""

    engine_id = AsrEngineId.LOCAL

    def __init__(self, *, settings: Optional[Settings] = None, console: Optional[Console] = None) -> None:
        self._settings = settings or get_settings()
        self._console = console or Console()
        self._model: Any = None

    async def prepare(self, on_progress: Optional[StageProgress] = None) -> None:
        if self._model is not None:
            _emit(on_progress, 100, "Local speech model ready")
            return
        if whisperx is None:
            raise TranscriptionFailedError(
                "Local transcription requires the `whisperx` package to be installed.",
                reason="unavailable",
            )

        _emit(on_progress, 0, f"Loading speech model {self._settings.local_asr_model}")
        self._model = await asyncio.to_thread(self._load_model)
        _emit(on_progress, 100, "Local speech model ready")

    def _load_model(self) -> Any:
        device = self._settings.local_asr_device
        if device is None:
            device = "cuda" if torch is not None and torch.cuda.is_available() else "cpu"  # type: ignore[operator]
        compute_type = "float16" if device == "cuda" else "int8"
        self._console.log(f"Loading WhisperX model {self._settings.local_asr_model} on {device}")
        return whisperx.load_model(self._settings.local_asr_model, device=device, compute_type=compute_type)

    async def transcribe(
        self,
        assets: MediaAssets,
        *,
        language: Optional[str] = None,
        on_progress: Optional[StageProgress] = None,
    ) -> List[TranscriptSegment]:
        await self.prepare()
        _emit(on_progress, 5, "Transcribing audio locally")
        try:
            result = await asyncio.to_thread(self._run, assets.audio_path, language)
        except Exception as exc:
            raise TranscriptionFailedError(f"Local transcription failed: {exc}") from exc

        segments = _segments_from_items(result.get("segments", []))
        _emit(on_progress, 100, f"Transcribed {len(segments)} segments")
        return segments

    def _run(self, audio_path: str, language: Optional[str]) -> dict:
        audio = whisperx.load_audio(str(audio_path))
        kwargs = {"language": language} if language else {}
        return self._model.transcribe(audio, **kwargs)


class CloudWhisperEngine:
    """Send audio to the OpenAI transcription endpoint."""

    engine_id = AsrEngineId.CLOUD

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._console = console or Console()
        self._client = client

    async def prepare(self, on_progress: Optional[StageProgress] = None) -> None:
        self._ensure_client()
        _emit(on_progress, 100, "Cloud transcription ready")

    def _ensure_client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = self._settings.openai_api_key
            if api_key is None:
                raise TranscriptionFailedError(
                    "Cloud transcription requires OPENAI_API_KEY to be set.", reason="auth"
                )
            self._client = AsyncOpenAI(api_key=api_key.get_secret_value())
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def transcribe(
        self,
        assets: MediaAssets,
        *,
        language: Optional[str] = None,
        on_progress: Optional[StageProgress] = None,
    ) -> List[TranscriptSegment]:
        client = self._ensure_client()
        _emit(on_progress, 5, "Uploading audio for transcription")

        request: dict = {
            "model": self._settings.cloud_asr_model,
            "response_format": "verbose_json",
            "timestamp_granularities": ["segment"],
        }
        if language:
            request["language"] = language

        try:
            with Path(assets.audio_path).open("rb") as audio_file:
                response = await client.audio.transcriptions.create(file=audio_file, **request)
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise TranscriptionFailedError(
                f"Transcription provider rejected credentials: {exc}", reason="auth", provider_code=_code(exc)
            ) from exc
        except openai.RateLimitError as exc:
            raise TranscriptionFailedError(
                f"Transcription provider rate limit hit: {exc}", reason="rate_limit", provider_code=_code(exc)
            ) from exc
        except openai.APIError as exc:
            raise TranscriptionFailedError(
                f"Transcription provider error: {exc}", reason="provider", provider_code=_code(exc)
            ) from exc
        except OSError as exc:
            raise TranscriptionFailedError(f"Cannot read audio {assets.audio_path}: {exc}") from exc

        segments = _segments_from_items(getattr(response, "segments", None) or [])
        if not segments:
            raise TranscriptionFailedError("Transcription provider returned no segments")
        _emit(on_progress, 100, f"Transcribed {len(segments)} segments")
        return segments


def _code(exc: openai.APIError) -> Optional[str]:
    code = getattr(exc, "code", None) or getattr(exc, "status_code", None)
    return str(code) if code is not None else None


class CaptionsEngine:
    """Use a YouTube video's published captions instead of running speech recognition."""

    engine_id = AsrEngineId.CAPTIONS

    def __init__(
        self,
        *,
        console: Optional[Console] = None,
        transcript_api: Optional[YouTubeTranscriptApi] = None,
    ) -> None:
        self._console = console or Console()
        self._transcript_api = transcript_api or YouTubeTranscriptApi()

    async def prepare(self, on_progress: Optional[StageProgress] = None) -> None:
        _emit(on_progress, 100, "Captions engine ready")

    async def transcribe(
        self,
        assets: MediaAssets,
        *,
        language: Optional[str] = None,
        on_progress: Optional[StageProgress] = None,
    ) -> List[TranscriptSegment]:
        if assets.platform != YOUTUBE:
            raise TranscriptionFailedError(
                f"Captions are only available for YouTube sources, not {assets.platform}.", reason="unavailable"
            )

        self._console.log("Fetching transcript from YouTube captions")
        _emit(on_progress, 10, "Fetching captions")
        languages = (language,) if language else ("en",)
        try:
            fetched = await asyncio.to_thread(self._transcript_api.fetch, assets.video_id, languages=languages)
        except (VideoUnavailable, TranscriptsDisabled, NoTranscriptFound) as exc:
            raise TranscriptionFailedError(f"Captions unavailable: {exc}", reason="unavailable") from exc
        except Exception as exc:
            raise TranscriptionFailedError(f"Caption fetch failed: {exc}") from exc

        items = [
            {"start": item["start"], "end": item["start"] + item["duration"], "text": item["text"]}
            for item in fetched.to_raw_data()
        ]
        segments = _segments_from_items(items)
        _emit(on_progress, 100, f"Fetched {len(segments)} caption segments")
        return segments


def build_engine(
    engine_id: AsrEngineId | str,
    *,
    settings: Optional[Settings] = None,
    console: Optional[Console] = None,
) -> TranscriptionEngine:
    """Construct the engine registered for ``engine_id``.

    Raises
    ------
    UnsupportedOptionError
        If ``engine_id`` is not a known engine.
    """

    try:
        resolved = AsrEngineId(engine_id)
    except ValueError as exc:
        raise UnsupportedOptionError(f"Unsupported ASR engine: {engine_id!r}") from exc

    if resolved is AsrEngineId.LOCAL:
        return LocalWhisperEngine(settings=settings, console=console)
    if resolved is AsrEngineId.CLOUD:
        return CloudWhisperEngine(settings=settings, console=console)
    return CaptionsEngine(console=console)


__all__ = [
    "CaptionsEngine",
    "CloudWhisperEngine",
    "LocalWhisperEngine",
    "TranscriptionEngine",
    "build_engine",
]
