"""Keyframe selection strategies and frame capture."""

from __future__ import annotations

import asyncio
import contextlib
import json
import math
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, ClassVar, Dict, List, Optional, Protocol, Sequence, Tuple

from playwright.async_api import Error as PlaywrightError
from pydantic import TypeAdapter, ValidationError
from rich.console import Console

from mediadocs.models.job import KeyframeStrategyId
from mediadocs.models.keyframe import Keyframe, KeyframeConfig
from mediadocs.models.transcript import TranscriptSegment
from mediadocs.services.connector import ResourceConnector
from mediadocs.utils.errors import CaptureFailedError, ConnectorUnavailableError, UnsupportedOptionError
from mediadocs.utils.ffmpeg import extract_frame, probe_duration, sample_scene_scores
from mediadocs.utils.progress import StageProgress

KEYFRAMES_DIRNAME = "keyframes"
KEYFRAMES_MANIFEST = "keyframes.json"
MEDIA_URL_PREFIX = "/media-files"
MIN_TARGET_FRAMES = 8
MAX_TARGET_FRAMES = 30
FRAMES_PER_MINUTE = 2.5
SEMANTIC_WINDOW_BOUNDS = (20.0, 40.0)

_TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)
_KEYFRAME_LIST = TypeAdapter(List[Keyframe])

Candidate = Tuple[float, float]
SceneSampler = Callable[..., List[Tuple[float, float]]]


def derive_target_count(duration: float) -> int:
    """Frames for a video of ``duration`` seconds: 2.5 per minute, clamped to ``[8, 30]``."""

    return max(MIN_TARGET_FRAMES, min(MAX_TARGET_FRAMES, round(duration / 60.0 * FRAMES_PER_MINUTE)))


def uniform_times(duration: float, count: int, min_interval: float = 0.0) -> List[float]:
    """Evenly spaced timestamps ``duration / (n + 1)`` apart, reducing ``n`` until spacing fits."""

    if duration <= 0 or count <= 0:
        return []
    n = count
    while n > 1 and duration / (n + 1) < min_interval:
        n -= 1
    step = duration / (n + 1)
    return [step * (index + 1) for index in range(n)]


def select_times(
    candidates: Sequence[Candidate],
    duration: float,
    min_interval: float,
    max_count: int,
) -> List[float]:
    """Greedily keep the highest-scored candidates that respect ``min_interval``.

    Timestamps are clamped to ``[0, duration]``; the result is strictly ascending and holds at
    most ``max_count`` entries. Ties in score prefer the earlier timestamp.
    """

    clamped = [(min(max(time, 0.0), duration), score) for time, score in candidates]
    chosen: List[float] = []
    for time, _score in sorted(clamped, key=lambda item: (-item[1], item[0])):
        if len(chosen) >= max_count:
            break
        if all(time != other and abs(time - other) >= min_interval for other in chosen):
            chosen.append(time)
    return sorted(chosen)


def local_maxima(points: Sequence[Candidate]) -> List[Candidate]:
    """Return positive-scored points not lower than either neighbour."""

    peaks: List[Candidate] = []
    for index, (time, score) in enumerate(points):
        left = points[index - 1][1] if index > 0 else -math.inf
        right = points[index + 1][1] if index + 1 < len(points) else -math.inf
        if score > 0 and score >= left and score >= right:
            peaks.append((time, score))
    return peaks


def caption_for(timestamp: float, transcript: Sequence[TranscriptSegment], window: float) -> str:
    """Join the text of segments overlapping ``[timestamp - window, timestamp + window]``."""

    return " ".join(
        segment.text
        for segment in transcript
        if segment.end >= timestamp - window and segment.start <= timestamp + window
    )


def _tokens(text: str) -> List[str]:
    return _TOKEN_PATTERN.findall(text.lower())


@dataclass
class SelectionContext:
    """Inputs shared by every strategy for a single extraction."""

    video_path: Path
    duration: float
    transcript: List[TranscriptSegment]
    config: KeyframeConfig
    target_count: int

    @property
    def limit(self) -> int:
        return max(1, min(self.target_count, self.config.max_count))

    def uniform(self) -> List[float]:
        return uniform_times(self.duration, self.limit, self.config.min_interval)


class KeyframeStrategy:
    """Base class for selection strategies.

    Subclasses produce scored candidates; :meth:`select` turns them into the final timestamps.
    An empty candidate set falls back to uniform spacing.
    """

    strategy_id: ClassVar[KeyframeStrategyId]
    uses_connector: ClassVar[bool] = True

    def __init__(self, *, console: Optional[Console] = None) -> None:
        self._console = console or Console()

    async def candidates(self, context: SelectionContext) -> List[Candidate]:
        raise NotImplementedError

    async def select(self, context: SelectionContext) -> List[float]:
        candidates = await self.candidates(context)
        if not candidates:
            self._console.log(
                f"[yellow]{self.strategy_id.value} strategy found no candidates; using uniform spacing.[/yellow]"
            )
            return context.uniform()
        return select_times(candidates, context.duration, context.config.min_interval, context.limit)


class UniformStrategy(KeyframeStrategy):
    strategy_id = KeyframeStrategyId.UNIFORM
    uses_connector = False

    async def candidates(self, context: SelectionContext) -> List[Candidate]:
        return [(time, 1.0) for time in context.uniform()]

    async def select(self, context: SelectionContext) -> List[float]:
        return context.uniform()


class KeywordStrategy(KeyframeStrategy):
    """One candidate per transcript segment mentioning a configured keyword, scored by hit count."""

    strategy_id = KeyframeStrategyId.KEYWORD
    uses_connector = False

    async def candidates(self, context: SelectionContext) -> List[Candidate]:
        keywords = [keyword.lower() for keyword in context.config.keywords if keyword.strip()]
        if not keywords:
            return []

        found: List[Candidate] = []
        for segment in context.transcript:
            text = segment.text.lower()
            hits = sum(text.count(keyword) for keyword in keywords)
            if hits:
                found.append((segment.midpoint, float(hits)))
        return found


class SemanticStrategy(KeyframeStrategy):
    """Score transcript windows by topical novelty weighted by how much is said."""

    strategy_id = KeyframeStrategyId.SEMANTIC

    def window_length(self, context: SelectionContext) -> float:
        low, high = SEMANTIC_WINDOW_BOUNDS
        return max(low, min(high, context.duration / max(context.target_count, 1)))

    def window_scores(self, context: SelectionContext) -> List[Tuple[float, float, float]]:
        """Return ``(start, end, score)`` for consecutive transcript windows."""

        if not context.transcript:
            return []

        length = self.window_length(context)
        windows: List[Tuple[float, float, List[str]]] = []
        start = context.transcript[0].start
        words: List[str] = []
        for index, segment in enumerate(context.transcript):
            words.extend(_tokens(segment.text))
            is_last = index == len(context.transcript) - 1
            if is_last or segment.end - start >= length:
                windows.append((start, segment.end, words))
                if not is_last:
                    start = context.transcript[index + 1].start
                    words = []

        scored: List[Tuple[float, float, float]] = []
        previous: set = set()
        for window_start, window_end, window_words in windows:
            vocabulary = set(window_words)
            union = vocabulary | previous
            novelty = 1.0 - (len(vocabulary & previous) / len(union) if union else 0.0)
            scored.append((window_start, window_end, novelty * math.log1p(len(window_words))))
            previous = vocabulary
        return scored

    async def candidates(self, context: SelectionContext) -> List[Candidate]:
        return [
            ((start + end) / 2.0, score)
            for start, end, score in self.window_scores(context)
            if score > 0
        ]


class VisualStrategy(KeyframeStrategy):
    """Pick peaks of the scene-change score between successive sampled frames."""

    strategy_id = KeyframeStrategyId.VISUAL

    def __init__(self, *, console: Optional[Console] = None, scene_sampler: Optional[SceneSampler] = None) -> None:
        super().__init__(console=console)
        self._scene_sampler = scene_sampler or sample_scene_scores

    async def scene_scores(self, context: SelectionContext) -> List[Candidate]:
        try:
            scores = await asyncio.to_thread(
                self._scene_sampler,
                context.video_path,
                interval_seconds=context.config.scene_sample_interval,
            )
        except RuntimeError as exc:
            self._console.log(f"[yellow]Scene detection failed:[/yellow] {exc}")
            return []
        return sorted(scores)

    async def candidates(self, context: SelectionContext) -> List[Candidate]:
        return local_maxima(await self.scene_scores(context))


class HybridStrategy(VisualStrategy):
    """Blend semantic and visual scores on the visual sampling grid."""

    strategy_id = KeyframeStrategyId.HYBRID

    def __init__(self, *, console: Optional[Console] = None, scene_sampler: Optional[SceneSampler] = None) -> None:
        super().__init__(console=console, scene_sampler=scene_sampler)
        self._semantic = SemanticStrategy(console=console)

    async def candidates(self, context: SelectionContext) -> List[Candidate]:
        windows = self._semantic.window_scores(context)
        visual = await self.scene_scores(context)
        if not visual:
            return [((start + end) / 2.0, score) for start, end, score in windows if score > 0]

        semantic_peak = max((score for _, _, score in windows), default=0.0) or 1.0
        visual_peak = max(score for _, score in visual) or 1.0
        weight = context.config.semantic_weight

        def semantic_at(time: float) -> float:
            for start, end, score in windows:
                if start <= time <= end:
                    return score / semantic_peak
            return 0.0

        blended = [
            (time, weight * semantic_at(time) + (1.0 - weight) * score / visual_peak)
            for time, score in visual
        ]
        return local_maxima(blended)


def default_strategies(
    *,
    console: Optional[Console] = None,
    scene_sampler: Optional[SceneSampler] = None,
) -> Dict[KeyframeStrategyId, KeyframeStrategy]:
    """Registry of the built-in strategies keyed by id."""

    return {
        KeyframeStrategyId.UNIFORM: UniformStrategy(console=console),
        KeyframeStrategyId.KEYWORD: KeywordStrategy(console=console),
        KeyframeStrategyId.SEMANTIC: SemanticStrategy(console=console),
        KeyframeStrategyId.VISUAL: VisualStrategy(console=console, scene_sampler=scene_sampler),
        KeyframeStrategyId.HYBRID: HybridStrategy(console=console, scene_sampler=scene_sampler),
    }


class FrameCapturer(Protocol):
    async def capture(self, video_path: Path, timestamp: float, output_path: Path) -> Path:
        """Write the frame at ``timestamp`` to ``output_path``."""


class FfmpegFrameCapturer:
    """Capture frames by seeking with ffmpeg."""

    async def capture(self, video_path: Path, timestamp: float, output_path: Path) -> Path:
        try:
            return await asyncio.to_thread(extract_frame, video_path, timestamp, output_path)
        except RuntimeError as exc:
            raise CaptureFailedError(str(exc)) from exc


_WAIT_FOR_METADATA = "() => { const v = document.querySelector('video'); return !!v && v.readyState >= 1; }"
_SEEK_SCRIPT = """
(time) => new Promise((resolve, reject) => {
  const video = document.querySelector('video');
  video.pause();
  video.addEventListener('seeked', () => resolve(video.currentTime), { once: true });
  video.addEventListener('error', () => reject(new Error('video element error')), { once: true });
  video.currentTime = time;
})
"""


class BrowserFrameCapturer:
    """Capture frames by seeking a ``<video>`` element in the shared headless browser."""

    def __init__(self, connector: ResourceConnector, *, timeout_ms: float = 30_000) -> None:
        self._connector = connector
        self._timeout_ms = timeout_ms

    async def capture(self, video_path: Path, timestamp: float, output_path: Path) -> Path:
        browser = await self._connector.acquire()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            page = await browser.new_page()
        except PlaywrightError as exc:
            self._connector.invalidate()
            raise CaptureFailedError(f"Could not open a browser page: {exc}") from exc

        try:
            await page.goto(Path(video_path).resolve().as_uri(), timeout=self._timeout_ms)
            await page.wait_for_function(_WAIT_FOR_METADATA, timeout=self._timeout_ms)
            await page.evaluate(_SEEK_SCRIPT, timestamp)
            await page.locator("video").screenshot(path=str(output_path), type="jpeg", timeout=self._timeout_ms)
        except PlaywrightError as exc:
            raise CaptureFailedError(f"Browser capture at {timestamp:.2f}s failed: {exc}") from exc
        finally:
            with contextlib.suppress(PlaywrightError):
                await page.close()

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise CaptureFailedError(f"Browser produced no image for {timestamp:.2f}s")
        return output_path


@dataclass
class KeyframeResult:
    keyframes: List[Keyframe]
    warnings: List[str] = field(default_factory=list)


def load_keyframes(output_dir: Path) -> Optional[List[Keyframe]]:
    """Return keyframes stored by a previous extraction if every image still exists."""

    manifest = Path(output_dir) / KEYFRAMES_MANIFEST
    if not manifest.exists():
        return None
    try:
        keyframes = _KEYFRAME_LIST.validate_json(manifest.read_text(encoding="utf-8"))
    except (OSError, ValidationError):
        return None
    if not keyframes or not all(Path(keyframe.image_path).exists() for keyframe in keyframes):
        return None
    return keyframes


class KeyframeExtractor:
    """Select timestamps with a strategy and capture one image per timestamp.

    Uniform and keyword strategies capture with ffmpeg directly; the others go through the
    shared browser connector. A failed frame is skipped with a warning; the stage fails only
    when no frame at all could be captured.
    """

    def __init__(
        self,
        *,
        connector: Optional[ResourceConnector] = None,
        strategies: Optional[Dict[KeyframeStrategyId, KeyframeStrategy]] = None,
        direct_capturer: Optional[FrameCapturer] = None,
        connector_capturer: Optional[FrameCapturer] = None,
        media_root: Optional[Path] = None,
        console: Optional[Console] = None,
    ) -> None:
        self._console = console or Console()
        self._connector = connector or ResourceConnector(console=self._console)
        self._strategies = strategies or default_strategies(console=self._console)
        self._direct_capturer = direct_capturer or FfmpegFrameCapturer()
        self._connector_capturer = connector_capturer or BrowserFrameCapturer(self._connector)
        self._media_root = Path(media_root).resolve() if media_root else None

    @property
    def connector(self) -> ResourceConnector:
        return self._connector

    def strategy(self, strategy_id: KeyframeStrategyId | str) -> KeyframeStrategy:
        try:
            return self._strategies[KeyframeStrategyId(strategy_id)]
        except (KeyError, ValueError) as exc:
            raise UnsupportedOptionError(f"Unsupported keyframe strategy: {strategy_id!r}") from exc

    async def extract(
        self,
        video_path: Path | str,
        transcript: Sequence[TranscriptSegment],
        strategy_id: KeyframeStrategyId | str,
        config: Optional[KeyframeConfig] = None,
        *,
        output_dir: Path,
        duration: Optional[float] = None,
        on_progress: Optional[StageProgress] = None,
    ) -> KeyframeResult:
        """Extract keyframes from ``video_path`` into ``output_dir/keyframes``.

        Raises
        ------
        CaptureFailedError
            If the duration is unknown or no frame could be captured.
        ConnectorUnavailableError
            If the browser connector cannot be reached.
        """

        strategy = self.strategy(strategy_id)
        config = config or KeyframeConfig()
        video = Path(video_path)
        output_dir = Path(output_dir)
        self._emit(on_progress, 0, f"Selecting keyframes ({strategy.strategy_id.value})")

        if duration is None or duration <= 0:
            try:
                duration = await asyncio.to_thread(probe_duration, video)
            except RuntimeError as exc:
                raise CaptureFailedError(f"Cannot determine video duration: {exc}") from exc

        context = SelectionContext(
            video_path=video,
            duration=duration,
            transcript=list(transcript),
            config=config,
            target_count=config.target_count or derive_target_count(duration),
        )
        timestamps = await strategy.select(context)
        self._console.log(f"Extracting {len(timestamps)} keyframes with '{strategy.strategy_id.value}' strategy")
        self._emit(on_progress, 5, f"Selected {len(timestamps)} timestamps")

        capturer = self._connector_capturer if strategy.uses_connector else self._direct_capturer
        frames_dir = output_dir / KEYFRAMES_DIRNAME
        frames_dir.mkdir(parents=True, exist_ok=True)

        result = KeyframeResult(keyframes=[])
        for index, timestamp in enumerate(timestamps, start=1):
            target = frames_dir / f"frame_{index:03d}.jpg"
            try:
                image_path = await capturer.capture(video, timestamp, target)
            except ConnectorUnavailableError:
                raise
            except Exception as exc:
                warning = f"Skipped keyframe at {timestamp:.2f}s: {exc}"
                self._console.log(f"[yellow]{warning}[/yellow]")
                result.warnings.append(warning)
            else:
                result.keyframes.append(
                    Keyframe(
                        timestamp=timestamp,
                        image_path=str(image_path),
                        image_url=self._image_url(Path(image_path)),
                        text=caption_for(timestamp, context.transcript, config.caption_window),
                    )
                )
            self._emit(on_progress, 5 + 95 * index / len(timestamps), f"Keyframe {index}/{len(timestamps)}")

        if not result.keyframes:
            raise CaptureFailedError(f"No keyframes captured out of {len(timestamps)} attempted")

        manifest = output_dir / KEYFRAMES_MANIFEST
        manifest.write_text(
            json.dumps([keyframe.model_dump(mode="json") for keyframe in result.keyframes], indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        self._emit(on_progress, 100, f"Extracted {len(result.keyframes)} keyframes")
        return result

    def _image_url(self, image_path: Path) -> Optional[str]:
        if self._media_root is None:
            return None
        try:
            relative = image_path.resolve().relative_to(self._media_root)
        except ValueError:
            return None
        return f"{MEDIA_URL_PREFIX}/{relative.as_posix()}"

    @staticmethod
    def _emit(callback: Optional[StageProgress], percent: float, message: str) -> None:
        if callback is not None:
            callback(percent, message)

    async def close(self) -> None:
        await self._connector.close()


__all__ = [
    "BrowserFrameCapturer",
    "FfmpegFrameCapturer",
    "FrameCapturer",
    "HybridStrategy",
    "KeyframeExtractor",
    "KeyframeResult",
    "KeyframeStrategy",
    "KeywordStrategy",
    "SelectionContext",
    "SemanticStrategy",
    "UniformStrategy",
    "VisualStrategy",
    "caption_for",
    "default_strategies",
    "derive_target_count",
    "load_keyframes",
    "local_maxima",
    "select_times",
    "uniform_times",
]
