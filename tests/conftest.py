from __future__ import annotations

from typing import Dict, List, Optional

import pytest

from harvester.config import HarvesterSettings
from harvester.errors import NetworkError
from harvester.fetcher import FetchedPage, FetchMode


class FakeRenderer:
    """Renderer stand-in serving canned HTML."""

    def __init__(self, pages: Optional[Dict[str, str]] = None) -> None:
        self.pages = pages or {}
        self.calls: List[str] = []
        self.closed = False

    async def render(self, url: str) -> FetchedPage:
        self.calls.append(url)
        html = self.pages.get(url, "<html><body>rendered</body></html>")
        return FetchedPage(url=url, final_url=url, html=html, mode=FetchMode.RENDER)

    async def close(self) -> None:
        self.closed = True


class FakeSession:
    """Fetch session stand-in keyed by URL; unknown URLs raise NetworkError."""

    def __init__(self, pages: Dict[str, str]) -> None:
        self.pages = pages
        self.calls: List[str] = []
        self.closed = False

    async def fetch(self, url: str) -> FetchedPage:
        self.calls.append(url)
        if url not in self.pages:
            raise NetworkError(f"HTTP 404 for {url}", url=url)
        return FetchedPage(url=url, final_url=url, html=self.pages[url])

    async def close(self) -> None:
        self.closed = True


class FakeImagePipeline:
    """Writes a placeholder file per image URL, up to ``max_images``."""

    def __init__(self, max_images: int = 10) -> None:
        self.max_images = max_images
        self.calls: List[List[str]] = []

    async def download_all(self, urls, dest_dir):
        self.calls.append(list(urls))
        dest_dir.mkdir(parents=True, exist_ok=True)
        names = []
        for index, _ in enumerate(urls[: self.max_images], start=1):
            name = f"image_{index}.jpg"
            (dest_dir / name).write_bytes(b"\xff\xd8" + b"0" * 6000)
            names.append(name)
        return names

    async def close(self) -> None:
        pass


def listing_html(links: List[str], next_url: Optional[str] = None) -> str:
    items = "".join(f'<li class="card"><a href="{link}">Item</a></li>' for link in links)
    pager = ""
    if next_url:
        pager = f'<nav class="pagination"><a href="{next_url}" rel="next">Next</a></nav>'
    return f"<html><body><ul>{items}</ul>{pager}</body></html>"


def product_html(name: str, price: str = "R$ 1.299,90", images: int = 2) -> str:
    gallery = "".join(
        f'<img src="https://cdn.shop.test/{name.lower().replace(" ", "-")}-{i}.jpg">'
        for i in range(1, images + 1)
    )
    return (
        f"<html><head><title>{name} | Shop</title></head><body>"
        f'<h1 class="product-title">{name}</h1>'
        f'<span class="price">{price}</span>'
        f'<div class="product-description">Great {name} with warranty.</div>'
        f'<div class="product-gallery">{gallery}</div>'
        "</body></html>"
    )


@pytest.fixture
def settings(tmp_path) -> HarvesterSettings:
    return HarvesterSettings(
        work_dir=tmp_path / "work",
        output_dir=tmp_path / "out",
        page_delay=0,
        product_delay=0,
        item_timeout=5,
        checkpoint_every=1,
        challenge_timeout=1,
        challenge_poll_interval=0,
        delivery_backoff=0,
    )
