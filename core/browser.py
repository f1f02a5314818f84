#!/usr/bin/env python3
"""
Browser Engine Manager

Owns the single Playwright Chromium instance shared by every job in the
process. The engine is launched lazily on first use and reused across jobs;
each platform run opens its own context on top of it.

Example:
    from core.browser import BrowserEngineManager

    manager = BrowserEngineManager(headless=True)
    browser = await manager.get_or_create_engine()
    context = await browser.new_context()
    ...
    await manager.shutdown()
"""

import asyncio
import logging
from typing import Optional, Dict, Any, List, Callable
from datetime import datetime

from playwright.async_api import async_playwright

from core.error_handler import EngineUnavailable

logger = logging.getLogger(__name__)

DEFAULT_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
]


class BrowserEngineManager:
    """
    Lazily launched, process-wide Chromium engine.

    ``get_or_create_engine`` is safe to call from concurrent tasks: launches
    are serialized by a lock, so at most one engine exists at a time. A
    disconnected engine is dropped and replaced on the next call.
    """

    def __init__(
        self,
        headless: bool = True,
        proxy: Optional[Dict[str, str]] = None,
        launch_args: Optional[List[str]] = None,
        playwright_factory: Callable[[], Any] = async_playwright,
    ):
        """
        Args:
            headless: Launch without a visible window
            proxy: Playwright proxy settings (server, username, password, bypass)
            launch_args: Extra Chromium command line switches
            playwright_factory: Callable returning an object with ``start()``
        """
        self.headless = headless
        self.proxy = proxy
        self.launch_args = list(launch_args) if launch_args is not None else list(DEFAULT_LAUNCH_ARGS)
        self._playwright_factory = playwright_factory

        self._playwright = None
        self._browser = None
        self._lock = asyncio.Lock()
        self._launched_at: Optional[datetime] = None
        self._launch_count = 0

    @property
    def browser(self):
        return self._browser

    def is_connected(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def get_or_create_engine(self):
        """Return the shared browser, launching it if needed."""
        async with self._lock:
            if self.is_connected():
                return self._browser

            if self._browser is not None:
                logger.warning("Browser engine disconnected; relaunching")
                await self._close_quietly()

            try:
                await self._launch()
            except Exception as e:
                await self._close_quietly()
                raise EngineUnavailable(f"Failed to launch browser engine: {e}") from e

            return self._browser

    async def _launch(self):
        launch_options: Dict[str, Any] = {
            "headless": self.headless,
            "args": self.launch_args,
        }
        if self.proxy:
            launch_options["proxy"] = self.proxy

        self._playwright = await self._playwright_factory().start()
        self._browser = await self._playwright.chromium.launch(**launch_options)
        self._launched_at = datetime.now()
        self._launch_count += 1

        proxy_server = self.proxy.get("server") if self.proxy else None
        logger.info(
            f"Launched Chromium (headless={self.headless}"
            + (f", proxy={proxy_server}" if proxy_server else "")
            + ")"
        )

    async def _close_quietly(self):
        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._playwright = None

        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.debug(f"Error closing browser: {e}")
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                logger.debug(f"Error stopping playwright: {e}")

    async def shutdown(self):
        """Close the browser and stop Playwright. Safe to call more than once."""
        async with self._lock:
            if self._browser is None and self._playwright is None:
                return
            await self._close_quietly()
            logger.info("Browser engine shut down")

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        return {
            "connected": self.is_connected(),
            "headless": self.headless,
            "proxy": bool(self.proxy),
            "launch_count": self._launch_count,
            "launched_at": self._launched_at.isoformat() if self._launched_at else None,
        }

    async def __aenter__(self):
        await self.get_or_create_engine()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
