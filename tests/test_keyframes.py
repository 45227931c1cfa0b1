import asyncio
from pathlib import Path

import pytest
from playwright.async_api import Error as PlaywrightError

from mediadocs.models.job import KeyframeStrategyId
from mediadocs.models.keyframe import KeyframeConfig
from mediadocs.services.connector import ResourceConnector
from mediadocs.services.keyframes import (
    KEYFRAMES_MANIFEST,
    BrowserFrameCapturer,
    HybridStrategy,
    KeyframeExtractor,
    KeywordStrategy,
    SelectionContext,
    SemanticStrategy,
    VisualStrategy,
    caption_for,
    default_strategies,
    derive_target_count,
    load_keyframes,
    local_maxima,
    select_times,
    uniform_times,
)
from mediadocs.utils.errors import CaptureFailedError, ConnectorUnavailableError, UnsupportedOptionError

from conftest import FakeCapturer, FakeHandle, FakeLauncher, make_segments

SCENE_SCORES = [(0.0, 0.1), (10.0, 0.8), (20.0, 0.2), (30.0, 0.1), (40.0, 0.9), (50.0, 0.3)]


def _context(tmp_path, *, duration=60.0, target=5, **config):
    return SelectionContext(
        video_path=tmp_path / "video.webm",
        duration=duration,
        transcript=make_segments(),
        config=KeyframeConfig(**config),
        target_count=target,
    )


def _extractor(tmp_path, console, *, capturer=None, launcher=None, scene_sampler=None):
    capturer = capturer or FakeCapturer()
    connector = ResourceConnector(launcher=launcher or FakeLauncher(), max_attempts=2, retry_delay=0, console=console)
    return KeyframeExtractor(
        connector=connector,
        strategies=default_strategies(console=console, scene_sampler=scene_sampler or (lambda *_a, **_k: SCENE_SCORES)),
        direct_capturer=capturer,
        connector_capturer=capturer if launcher is None else None,
        media_root=tmp_path,
        console=console,
    )


def test_target_count_scales_with_duration():
    assert derive_target_count(60) == 8
    assert derive_target_count(480) == 20
    assert derive_target_count(3 * 3600) == 30


def test_uniform_times_are_evenly_spaced():
    assert uniform_times(60, 5) == pytest.approx([10, 20, 30, 40, 50])
    assert uniform_times(0, 5) == []


def test_uniform_times_shrink_count_to_respect_min_interval():
    assert uniform_times(10, 5, min_interval=3) == pytest.approx([10 / 3, 20 / 3])


def test_select_times_enforces_spacing_order_and_cap():
    candidates = [(30.0, 0.9), (31.0, 0.95), (5.0, 0.5), (80.0, 0.7), (50.0, 0.6), (50.0, 0.6)]
    chosen = select_times(candidates, duration=60.0, min_interval=2.0, max_count=3)
    assert chosen == [31.0, 50.0, 60.0]


def test_select_times_breaks_ties_by_earlier_time():
    assert select_times([(20.0, 1.0), (10.0, 1.0)], duration=60, min_interval=0, max_count=1) == [10.0]


def test_local_maxima_ignores_flat_zero_scores():
    assert local_maxima(SCENE_SCORES) == [(10.0, 0.8), (40.0, 0.9)]
    assert local_maxima([(0.0, 0.0), (1.0, 0.0)]) == []


def test_caption_collects_overlapping_segments():
    caption = caption_for(21.0, make_segments(), window=2.0)
    assert caption == "First we feed the starter with flour and water. Then the dough rests while gluten develops."


def test_keyword_strategy_scores_segments_by_hits(tmp_path, console):
    context = _context(tmp_path, keywords=["starter", "GLUTEN", "rests"])
    candidates = asyncio.run(KeywordStrategy(console=console).candidates(context))
    assert candidates == [(14.0, 1.0), (27.5, 2.0)]


def test_keyword_strategy_without_matches_falls_back_to_uniform(tmp_path, console):
    context = _context(tmp_path, keywords=["pizza"])
    times = asyncio.run(KeywordStrategy(console=console).select(context))
    assert times == pytest.approx([10, 20, 30, 40, 50])


def test_semantic_strategy_scores_novel_windows(tmp_path, console):
    strategy = SemanticStrategy(console=console)
    context = _context(tmp_path)
    assert strategy.window_length(context) == 20.0
    windows = strategy.window_scores(context)
    assert windows[0][:2] == (0.0, 20.0)
    assert all(score > 0 for _, _, score in windows)
    times = asyncio.run(strategy.select(context))
    assert times == sorted(times) and 0 < len(times) <= 5


def test_visual_strategy_picks_scene_peaks(tmp_path, console):
    strategy = VisualStrategy(console=console, scene_sampler=lambda *_a, **_k: SCENE_SCORES)
    assert asyncio.run(strategy.select(_context(tmp_path))) == [10.0, 40.0]


def test_visual_strategy_falls_back_when_scene_detection_fails(tmp_path, console):
    def broken_sampler(*_args, **_kwargs):
        raise RuntimeError("ffmpeg missing")

    strategy = VisualStrategy(console=console, scene_sampler=broken_sampler)
    assert asyncio.run(strategy.select(_context(tmp_path))) == pytest.approx([10, 20, 30, 40, 50])


def test_hybrid_strategy_weights_semantic_and_visual(tmp_path, console):
    strategy = HybridStrategy(console=console, scene_sampler=lambda *_a, **_k: SCENE_SCORES)
    visual_only = asyncio.run(strategy.select(_context(tmp_path, semantic_weight=0.0)))
    assert visual_only == [10.0, 40.0]
    blended = asyncio.run(strategy.select(_context(tmp_path, semantic_weight=0.5)))
    assert blended == sorted(blended) and blended


def test_extract_uniform_uses_direct_capture_and_writes_manifest(tmp_path, console):
    capturer = FakeCapturer()
    extractor = _extractor(tmp_path, console, capturer=capturer)
    progress = []

    result = asyncio.run(
        extractor.extract(
            tmp_path / "video.webm",
            make_segments(),
            "uniform",
            KeyframeConfig(target_count=5),
            output_dir=tmp_path / "job",
            duration=60.0,
            on_progress=lambda percent, _message: progress.append(percent),
        )
    )

    assert [frame.timestamp for frame in result.keyframes] == pytest.approx([10, 20, 30, 40, 50])
    assert result.warnings == []
    assert result.keyframes[0].image_url == "/media-files/job/keyframes/frame_001.jpg"
    assert "sourdough" in result.keyframes[0].text
    assert progress[0] == 0 and progress[-1] == 100 and progress == sorted(progress)
    assert (tmp_path / "job" / KEYFRAMES_MANIFEST).exists()
    assert load_keyframes(tmp_path / "job") == result.keyframes
    assert extractor.connector.launch_count == 0


def test_extract_skips_failed_frames_with_warnings(tmp_path, console):
    capturer = FakeCapturer(fail_at={20.0, 40.0})
    extractor = _extractor(tmp_path, console, capturer=capturer)

    result = asyncio.run(
        extractor.extract(
            tmp_path / "video.webm", [], KeyframeStrategyId.UNIFORM, KeyframeConfig(target_count=5),
            output_dir=tmp_path, duration=60.0,
        )
    )

    assert len(result.keyframes) == 3
    assert len(result.warnings) == 2


def test_extract_fails_when_no_frame_is_captured(tmp_path, console):
    extractor = _extractor(tmp_path, console, capturer=FakeCapturer(always_fail=True))

    with pytest.raises(CaptureFailedError):
        asyncio.run(
            extractor.extract(
                tmp_path / "video.webm", [], "uniform", KeyframeConfig(target_count=3),
                output_dir=tmp_path, duration=30.0,
            )
        )
    assert load_keyframes(tmp_path) is None


def test_browser_strategies_surface_connector_unavailable(tmp_path, console):
    extractor = _extractor(tmp_path, console, launcher=FakeLauncher(failures=100))

    with pytest.raises(ConnectorUnavailableError):
        asyncio.run(
            extractor.extract(
                tmp_path / "video.webm", make_segments(), "visual", KeyframeConfig(target_count=3),
                output_dir=tmp_path, duration=60.0,
            )
        )


def test_unknown_strategy_is_rejected(tmp_path, console):
    with pytest.raises(UnsupportedOptionError):
        _extractor(tmp_path, console).strategy("random")


def test_load_keyframes_requires_every_image(tmp_path, console):
    capturer = FakeCapturer()
    extractor = _extractor(tmp_path, console, capturer=capturer)
    result = asyncio.run(
        extractor.extract(
            tmp_path / "video.webm", [], "uniform", KeyframeConfig(target_count=2),
            output_dir=tmp_path, duration=30.0,
        )
    )
    Path(result.keyframes[0].image_path).unlink()
    assert load_keyframes(tmp_path) is None


class FakeLocator:
    def __init__(self, page):
        self.page = page

    async def screenshot(self, *, path, type, timeout):
        if self.page.fail_screenshot:
            raise PlaywrightError("element is not visible")
        Path(path).write_bytes(b"\xff\xd8jpeg")


class FakePage:
    def __init__(self, *, fail_screenshot=False):
        self.fail_screenshot = fail_screenshot
        self.urls = []
        self.seeks = []
        self.closed = False

    async def goto(self, url, *, timeout):
        self.urls.append(url)

    async def wait_for_function(self, script, *, timeout):
        return True

    async def evaluate(self, script, timestamp):
        self.seeks.append(timestamp)
        return timestamp

    def locator(self, selector):
        return FakeLocator(self)

    async def close(self):
        self.closed = True


class FakeBrowser(FakeHandle):
    def __init__(self, *, page_error=None, fail_screenshot=False):
        super().__init__()
        self.page_error = page_error
        self.fail_screenshot = fail_screenshot
        self.pages = []

    async def new_page(self):
        if self.page_error is not None:
            raise self.page_error
        page = FakePage(fail_screenshot=self.fail_screenshot)
        self.pages.append(page)
        return page


class BrowserLauncher(FakeLauncher):
    def __init__(self, *browsers):
        super().__init__()
        self.browsers = list(browsers)

    async def launch(self):
        self.attempts += 1
        browser = self.browsers.pop(0)
        self.handles.append(browser)
        return browser


def _browser_capturer(launcher, console):
    connector = ResourceConnector(launcher=launcher, max_attempts=1, retry_delay=0, console=console)
    return connector, BrowserFrameCapturer(connector, timeout_ms=1_000)


def test_browser_capture_seeks_and_closes_page(tmp_path, console):
    browser = FakeBrowser()
    connector, capturer = _browser_capturer(BrowserLauncher(browser), console)
    video = tmp_path / "video.webm"

    path = asyncio.run(capturer.capture(video, 12.5, tmp_path / "frames" / "frame_001.jpg"))

    assert path.read_bytes() == b"\xff\xd8jpeg"
    page = browser.pages[0]
    assert page.urls == [video.resolve().as_uri()]
    assert page.seeks == [12.5]
    assert page.closed is True
    assert connector.handle is browser


def test_browser_page_failure_invalidates_handle(tmp_path, console):
    broken = FakeBrowser(page_error=PlaywrightError("Target page, context or browser has been closed"))
    healthy = FakeBrowser()
    launcher = BrowserLauncher(broken, healthy)
    connector, capturer = _browser_capturer(launcher, console)

    async def scenario():
        with pytest.raises(CaptureFailedError, match="Could not open a browser page"):
            await capturer.capture(tmp_path / "video.webm", 5.0, tmp_path / "a.jpg")
        dropped = connector.handle
        await capturer.capture(tmp_path / "video.webm", 5.0, tmp_path / "b.jpg")
        return dropped

    dropped = asyncio.run(scenario())

    assert dropped is None
    assert launcher.attempts == 2
    assert connector.handle is healthy
    assert (tmp_path / "b.jpg").exists()


def test_browser_screenshot_failure_keeps_handle(tmp_path, console):
    browser = FakeBrowser(fail_screenshot=True)
    connector, capturer = _browser_capturer(BrowserLauncher(browser), console)

    with pytest.raises(CaptureFailedError, match="12.50s"):
        asyncio.run(capturer.capture(tmp_path / "video.webm", 12.5, tmp_path / "frame.jpg"))

    assert browser.pages[0].closed is True
    assert connector.handle is browser
