"""HTTP-first page fetcher with sticky escalation to headless rendering."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Protocol

import httpx

from .antibot import BLOCK_STATUSES, UserAgentPool, find_challenge_marker
from .config import HarvesterSettings
from .errors import NetworkError, RenderError
from .urls import extract_domain

LOGGER = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-gpu",
]


class FetchMode(str, Enum):
    """How a domain is fetched within a session."""

    HTTP = "http"
    RENDER = "render"


@dataclass
class FetchedPage:
    """Document returned by a fetch."""

    url: str
    final_url: str
    html: str
    mode: FetchMode = FetchMode.HTTP


class Renderer(Protocol):
    """Headless rendering backend."""

    async def render(self, url: str) -> FetchedPage:
        ...

    async def close(self) -> None:
        ...


class BrowserRenderer:
    """Playwright-backed renderer holding one browser page open across calls.

    The browser starts lazily on the first ``render()`` and must be released
    with ``close()``.
    """

    def __init__(self, settings: HarvesterSettings) -> None:
        self.settings = settings
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._lock = asyncio.Lock()

    async def _ensure_page(self):
        if self._page is not None:
            return self._page

        from playwright.async_api import async_playwright

        from .antibot.fingerprint import create_stealth_context

        LOGGER.info("Launching headless browser (headless=%s)", self.settings.headless)
        self._playwright = await async_playwright().start()
        launch_kwargs = {"headless": self.settings.headless, "args": LAUNCH_ARGS}
        if self.settings.proxy:
            launch_kwargs["proxy"] = self.settings.proxy.to_playwright_dict()
        self._browser = await self._playwright.chromium.launch(**launch_kwargs)
        self._context = await create_stealth_context(self._browser)
        self._page = await self._context.new_page()
        self._page.set_default_timeout(self.settings.render_timeout * 1000)
        return self._page

    async def render(self, url: str) -> FetchedPage:
        """Navigate to ``url`` and wait for any challenge to clear.

        Raises
        ------
        NetworkError
            Navigation failed (unreachable host, timeout)
        RenderError
            Browser could not start, or the challenge never cleared
        """
        from playwright.async_api import Error as PlaywrightError

        async with self._lock:
            try:
                page = await self._ensure_page()
            except PlaywrightError as exc:
                raise RenderError(f"Browser start failed: {exc}", url=url) from exc

            try:
                await page.goto(
                    url,
                    wait_until="domcontentloaded",
                    timeout=self.settings.render_timeout * 1000,
                )
            except PlaywrightError as exc:
                raise NetworkError(f"Navigation failed: {exc}", url=url) from exc

            deadline = time.monotonic() + self.settings.challenge_timeout
            while True:
                try:
                    html = await page.content()
                except PlaywrightError as exc:
                    # content() races with challenge redirects; retry until the deadline.
                    LOGGER.debug("page.content() failed during challenge wait: %s", exc)
                    html = ""
                marker = find_challenge_marker(html, self.settings.extra_challenge_markers)
                if html and marker is None:
                    return FetchedPage(url=url, final_url=page.url, html=html, mode=FetchMode.RENDER)
                if time.monotonic() >= deadline:
                    raise RenderError(
                        f"Challenge did not clear within {self.settings.challenge_timeout:.0f}s "
                        f"(marker={marker!r})",
                        url=url,
                    )
                await asyncio.sleep(self.settings.challenge_poll_interval)

    async def close(self) -> None:
        """Release page, context, browser and the Playwright driver."""
        for resource in (self._page, self._context, self._browser):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as exc:
                LOGGER.warning("Error closing browser resource: %s", exc)
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:
                LOGGER.warning("Error stopping Playwright: %s", exc)
        self._page = self._context = self._browser = self._playwright = None


class FetchSession:
    """Per-crawl fetch session.

    Tries a plain HTTP GET first. A challenge page, a block status or any
    request error (transport failure, redirect loop, bad encoding) marks the
    domain render-required for the rest of the session; such domains go
    straight to the renderer afterwards.

    Parameters
    ----------
    settings : HarvesterSettings
        Timeouts, proxy and challenge markers
    client : httpx.AsyncClient, optional
        HTTP client (created and owned by the session if not provided)
    renderer : Renderer, optional
        Rendering backend (``BrowserRenderer`` if not provided)
    user_agents : UserAgentPool, optional
        Source of request headers
    """

    def __init__(
        self,
        settings: Optional[HarvesterSettings] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        renderer: Optional[Renderer] = None,
        user_agents: Optional[UserAgentPool] = None,
    ) -> None:
        self.settings = settings or HarvesterSettings()
        self.user_agents = user_agents or UserAgentPool()
        self._owns_client = client is None
        if client is None:
            client_kwargs = {
                "timeout": httpx.Timeout(self.settings.http_timeout),
                "follow_redirects": True,
                "headers": self.user_agents.browser_headers(),
            }
            if self.settings.proxy:
                client_kwargs["proxy"] = self.settings.proxy.to_httpx_url()
            client = httpx.AsyncClient(**client_kwargs)
        self.client = client
        self.renderer: Renderer = renderer or BrowserRenderer(self.settings)
        self.domain_modes: Dict[str, FetchMode] = {}
        self._closed = False

    async def __aenter__(self) -> FetchSession:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def mode_for(self, url: str) -> FetchMode:
        return self.domain_modes.get(extract_domain(url), FetchMode.HTTP)

    def mark_render_required(self, url: str, reason: str) -> None:
        domain = extract_domain(url)
        if self.domain_modes.get(domain) != FetchMode.RENDER:
            LOGGER.info("Escalating %s to headless rendering: %s", domain, reason)
        self.domain_modes[domain] = FetchMode.RENDER

    async def fetch_html(self, url: str) -> str:
        return (await self.fetch(url)).html

    async def fetch(self, url: str) -> FetchedPage:
        """Fetch ``url`` using the cheapest mode allowed for its domain."""
        if self.mode_for(url) == FetchMode.RENDER:
            return await self.renderer.render(url)

        try:
            response = await self.client.get(url)
        except httpx.RequestError as exc:
            LOGGER.warning("HTTP fetch failed for %s: %s", url, exc)
            self.mark_render_required(url, f"request error ({type(exc).__name__})")
            return await self.renderer.render(url)

        html = response.text
        if response.status_code in BLOCK_STATUSES:
            self.mark_render_required(url, f"HTTP {response.status_code}")
            return await self.renderer.render(url)

        marker = find_challenge_marker(html, self.settings.extra_challenge_markers)
        if marker is not None:
            self.mark_render_required(url, f"challenge marker {marker!r}")
            return await self.renderer.render(url)

        if response.status_code >= 400:
            raise NetworkError(f"HTTP {response.status_code} for {url}", url=url)

        LOGGER.debug("Fetched %s over HTTP (%d bytes)", url, len(html))
        return FetchedPage(url=url, final_url=str(response.url), html=html, mode=FetchMode.HTTP)

    async def close(self) -> None:
        """Release the renderer and the HTTP client. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            await self.renderer.close()
        finally:
            if self._owns_client:
                await self.client.aclose()
