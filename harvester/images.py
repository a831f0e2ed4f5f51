"""Download of product images into a product folder."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import httpx

from .antibot import UserAgentPool
from .config import HarvesterSettings
from .urls import file_extension

LOGGER = logging.getLogger(__name__)


class ImagePipeline:
    """Size-filtered, capped image downloader.

    Candidates are probed with ``HEAD``; a known ``Content-Length`` below
    ``image_min_bytes`` rejects the image, an unknown size lets it through.
    Accepted images are fetched in order and saved as ``image_<n><ext>``.
    Failures skip the image and never propagate.
    """

    def __init__(
        self,
        settings: Optional[HarvesterSettings] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or HarvesterSettings()
        self._owns_client = client is None
        if client is None:
            client_kwargs = {
                "timeout": httpx.Timeout(self.settings.image_timeout),
                "follow_redirects": True,
                "headers": UserAgentPool().browser_headers(),
            }
            if self.settings.proxy:
                client_kwargs["proxy"] = self.settings.proxy.to_httpx_url()
            client = httpx.AsyncClient(**client_kwargs)
        self.client = client

    async def probe_size(self, url: str) -> Optional[int]:
        """Declared size in bytes, or ``None`` when unknown."""
        try:
            response = await self.client.head(url)
        except httpx.HTTPError as exc:
            LOGGER.debug("HEAD %s failed: %s", url, exc)
            return None
        if response.status_code >= 400:
            return None
        length = response.headers.get("content-length")
        if length is None or not length.strip().isdigit():
            return None
        return int(length)

    async def download(self, url: str, destination: Path) -> bool:
        try:
            response = await self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.warning("Image download failed for %s: %s", url, exc)
            return False
        try:
            destination.write_bytes(response.content)
        except OSError as exc:
            LOGGER.warning("Could not write %s: %s", destination, exc)
            return False
        return True

    async def download_all(self, urls: List[str], dest_dir: Path) -> List[str]:
        """Download qualifying images from ``urls`` into ``dest_dir``.

        Returns
        -------
        list[str]
            Filenames written, in discovery order
        """
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        saved: List[str] = []

        for url in urls:
            if len(saved) >= self.settings.max_images:
                break
            size = await self.probe_size(url)
            if size is not None and size < self.settings.image_min_bytes:
                LOGGER.debug("Skipping small image %s (%d bytes)", url, size)
                continue

            filename = f"image_{len(saved) + 1}{file_extension(url)}"
            if await self.download(url, dest_dir / filename):
                saved.append(filename)

        LOGGER.info("Saved %d of %d image(s) into %s", len(saved), len(urls), dest_dir)
        return saved

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
