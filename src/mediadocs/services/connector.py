"""Shared headless-browser connection with bounded reconnects."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Protocol

from playwright.async_api import Browser, Playwright, async_playwright
from rich.console import Console

from mediadocs.utils.errors import ConnectorUnavailableError

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_RETRY_DELAY_SECONDS = 0.5
CHROMIUM_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
)


class BrowserLauncher(Protocol):
    """Creates new automation handles for :class:`ResourceConnector`."""

    async def launch(self) -> Any:
        """Return a connected handle exposing ``is_connected``, ``on`` and ``close``."""

    async def close(self) -> None:
        """Release driver resources held by the launcher."""


class PlaywrightLauncher:
    """Launch headless Chromium through the Playwright driver."""

    def __init__(self, *, headless: bool = True) -> None:
        self._headless = headless
        self._playwright: Optional[Playwright] = None

    async def launch(self) -> Browser:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=self._headless, args=list(CHROMIUM_ARGS))

    async def close(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


class ResourceConnector:
    """Single shared browser handle for every job in the process.

    ``acquire`` is single-flight: concurrent callers wait on one lock, so at most one launch
    is ever in progress. A handle that reports a disconnect is dropped and the next ``acquire``
    launches a fresh one.
    """

    def __init__(
        self,
        *,
        launcher: Optional[BrowserLauncher] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
        console: Optional[Console] = None,
    ) -> None:
        self._launcher = launcher or PlaywrightLauncher()
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = max(0.0, retry_delay)
        self._console = console or Console()
        self._handle: Optional[Any] = None
        self._lock = asyncio.Lock()
        self.launch_count = 0

    @property
    def handle(self) -> Optional[Any]:
        return self._handle

    async def acquire(self) -> Any:
        """Return a live handle, launching one if the cached handle is gone.

        Raises
        ------
        ConnectorUnavailableError
            If no handle could be launched within ``max_attempts`` tries.
        """

        async with self._lock:
            if self._handle is not None and self._handle.is_connected():
                return self._handle

            self._handle = None
            last_error: Optional[BaseException] = None
            for attempt in range(1, self._max_attempts + 1):
                try:
                    handle = await self._launcher.launch()
                except Exception as exc:
                    last_error = exc
                    self._console.log(
                        f"[yellow]Browser launch attempt {attempt}/{self._max_attempts} failed:[/yellow] {exc}"
                    )
                    if attempt < self._max_attempts:
                        await asyncio.sleep(self._retry_delay)
                    continue

                self.launch_count += 1
                handle.on("disconnected", lambda *_args, current=handle: self._on_disconnected(current))
                self._handle = handle
                return handle

            raise ConnectorUnavailableError(
                f"Browser unavailable after {self._max_attempts} attempts: {last_error}"
            ) from last_error

    def invalidate(self) -> None:
        """Forget the cached handle so the next ``acquire`` launches a new one."""

        self._handle = None

    def _on_disconnected(self, handle: Any) -> None:
        if handle is self._handle:
            self._console.log("[yellow]Browser disconnected; will relaunch on next use.[/yellow]")
            self.invalidate()

    async def close(self) -> None:
        """Close the cached handle and the launcher."""

        async with self._lock:
            handle, self._handle = self._handle, None
            if handle is not None and handle.is_connected():
                await handle.close()
            await self._launcher.close()


__all__ = ["BrowserLauncher", "CHROMIUM_ARGS", "PlaywrightLauncher", "ResourceConnector"]
