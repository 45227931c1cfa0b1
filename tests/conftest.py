from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import pytest
from rich.console import Console

from mediadocs.config.settings import RateLimitConfig, Settings
from mediadocs.models.job import AsrEngineId
from mediadocs.models.media import MediaAssets, SubtitleTrackRef
from mediadocs.models.transcript import TranscriptSegment
from mediadocs.services.connector import ResourceConnector
from mediadocs.services.jobs import JobManager
from mediadocs.services.keyframes import KeyframeExtractor
from mediadocs.services.rate_limit import RateLimiterRegistry
from mediadocs.services.storage import InMemoryRepository
from mediadocs.services.subtitles import SubtitleFetcher
from mediadocs.services.synthesis import DocumentSynthesizer
from mediadocs.utils.errors import CaptureFailedError
from mediadocs.utils.validation import SourceReference

VIDEO_ID = "dQw4w9WgXcQ"


def make_segments() -> List[TranscriptSegment]:
    return [
        TranscriptSegment(start=0.0, end=8.0, text="Welcome to this talk about sourdough bread."),
        TranscriptSegment(start=8.0, end=20.0, text="First we feed the starter with flour and water."),
        TranscriptSegment(start=20.0, end=35.0, text="Then the dough rests while gluten develops."),
        TranscriptSegment(start=35.0, end=50.0, text="Shaping the loaf builds surface tension."),
        TranscriptSegment(start=50.0, end=58.0, text="Finally bake it hot with steam."),
    ]


class FakeFetcher:
    def __init__(self, *, duration: float = 60.0, title: str = "Sourdough Basics") -> None:
        self.duration = duration
        self.title = title
        self.subtitle_tracks: List[SubtitleTrackRef] = []
        self.calls = 0

    async def fetch(self, source: SourceReference, output_dir: Path, *, on_progress=None) -> MediaAssets:
        self.calls += 1
        output_dir.mkdir(parents=True, exist_ok=True)
        audio = output_dir / "audio.m4a"
        video = output_dir / "video.webm"
        audio.write_bytes(b"audio")
        video.write_bytes(b"video")
        if on_progress:
            on_progress(50, "Downloading audio")
            on_progress(100, "Download complete")
        return MediaAssets(
            platform=source.platform,
            video_id=source.video_id,
            title=self.title,
            output_dir=str(output_dir),
            audio_path=str(audio),
            video_path=str(video),
            duration=self.duration,
            subtitle_tracks=list(self.subtitle_tracks),
        )


class FakeResponse:
    def __init__(self, payload: Any) -> None:
        self.payload = payload

    def raise_for_status(self) -> None:
        if isinstance(self.payload, Exception):
            raise self.payload

    def json(self) -> Any:
        return self.payload


class FakeHttp:
    """Stand-in for ``requests.get`` serving canned JSON (or an error) per URL."""

    def __init__(self) -> None:
        self.responses: Dict[str, Any] = {}
        self.urls: List[str] = []

    def __call__(self, url: str, **_kwargs: Any) -> FakeResponse:
        self.urls.append(url)
        return FakeResponse(self.responses[url])


class FakeEngine:
    engine_id = AsrEngineId.CAPTIONS

    def __init__(
        self,
        segments: Optional[List[TranscriptSegment]] = None,
        *,
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.segments = make_segments() if segments is None else segments
        self.error = error
        self.gate = gate
        self.entered: Optional[asyncio.Event] = None
        self.prepare_calls = 0
        self.transcribe_calls = 0

    async def prepare(self, on_progress=None) -> None:
        self.prepare_calls += 1
        if on_progress:
            on_progress(100, "ready")

    async def transcribe(self, assets, *, language=None, on_progress=None) -> List[TranscriptSegment]:
        self.transcribe_calls += 1
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if on_progress:
            on_progress(50, "halfway")
        if self.error is not None:
            raise self.error
        return list(self.segments)


class FakeCapturer:
    def __init__(self, *, fail_at: Optional[Set[float]] = None, always_fail: bool = False) -> None:
        self.fail_at = fail_at or set()
        self.always_fail = always_fail
        self.timestamps: List[float] = []

    async def capture(self, video_path: Path, timestamp: float, output_path: Path) -> Path:
        self.timestamps.append(timestamp)
        if self.always_fail or round(timestamp, 3) in self.fail_at:
            raise CaptureFailedError(f"cannot seek to {timestamp:.2f}")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"\xff\xd8jpeg")
        return output_path


class FakeGenerator:
    def __init__(self, responses: Optional[List[object]] = None, *, gate: Optional[asyncio.Event] = None) -> None:
        self.responses = list(responses or [])
        self.gate = gate
        self.entered: Optional[asyncio.Event] = None
        self.prompts: List[str] = []
        self.system_prompts: List[str] = []
        self.attachments: List[List[object]] = []

    async def generate(self, prompt: str, *, system_prompt: str, attachments=()) -> str:
        self.prompts.append(prompt)
        self.system_prompts.append(system_prompt)
        self.attachments.append(list(attachments))
        if self.entered is not None:
            self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.pop(0) if self.responses else "# Notes\n\nBake with steam."
        if isinstance(response, Exception):
            raise response
        return str(response)


class FakeHandle:
    def __init__(self) -> None:
        self.connected = True
        self.handlers: dict = {}
        self.closed = False

    def is_connected(self) -> bool:
        return self.connected

    def on(self, event: str, handler: Callable) -> None:
        self.handlers[event] = handler

    def disconnect(self) -> None:
        self.connected = False
        self.handlers["disconnected"](self)

    async def close(self) -> None:
        self.closed = True
        self.connected = False


class FakeLauncher:
    def __init__(self, *, failures: int = 0) -> None:
        self.failures = failures
        self.attempts = 0
        self.handles: List[FakeHandle] = []
        self.closed = False

    async def launch(self) -> FakeHandle:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise RuntimeError("browser crashed on start")
        handle = FakeHandle()
        self.handles.append(handle)
        return handle

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def console() -> Console:
    return Console(quiet=True)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        OUTPUT_ROOT=tmp_path / "jobs",
        KEYFRAME_MIN_INTERVAL_SECONDS=2.0,
        rate_limits=RateLimitConfig(),
    )


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def subtitle_http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def capturer() -> FakeCapturer:
    return FakeCapturer()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def build_manager(settings, console, fetcher, engine, capturer, generator, launcher, subtitle_http):
    """Return a factory so tests can build the manager inside their own event loop."""

    def factory(service_console: Optional[Console] = None) -> JobManager:
        active_console = service_console or console
        extractor = KeyframeExtractor(
            connector=ResourceConnector(launcher=launcher, retry_delay=0, console=active_console),
            direct_capturer=capturer,
            connector_capturer=capturer,
            media_root=settings.output_root,
            console=active_console,
        )
        return JobManager(
            settings=settings,
            console=active_console,
            store=InMemoryRepository(),
            history_store=InMemoryRepository(),
            fetcher=fetcher,
            subtitle_fetcher=SubtitleFetcher(console=active_console, http_get=subtitle_http),
            engines={AsrEngineId.CAPTIONS: engine, AsrEngineId.CLOUD: engine, AsrEngineId.LOCAL: engine},
            extractor=extractor,
            synthesizer=DocumentSynthesizer(generator=generator, settings=settings, console=active_console),
            rate_limiters=RateLimiterRegistry(RateLimitConfig(), console=active_console),
        )

    return factory
