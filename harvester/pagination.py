"""Pagination discovery across listing pages."""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional, Protocol
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from .config import HarvesterSettings
from .errors import FetchError
from .extraction.listing import listing_links
from .extraction.strategies import StrategyRegistry, selectors_for
from .fetcher import FetchedPage
from .urls import is_valid_url, listing_key, same_site

LOGGER = logging.getLogger(__name__)

GENERIC_NEXT_SELECTORS = (
    "link[rel~='next']",
    "a[rel~='next']",
    "a.next",
    "a.next-page",
    "li.next a",
    ".pagination-next a",
)
PAGINATION_KEYWORDS = ("pagination", "pager", "paginacao", "paginacion", "page-numbers", "paging")
NEXT_WORDS = (
    "next", "siguiente", "próxima", "proxima", "próximo", "proximo", "seguinte", "avançar",
)
NEXT_SYMBOLS = ("›", "»", ">", "→", ">>")


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> FetchedPage:
        ...


@dataclass
class DiscoveredPage:
    """One step of pagination discovery."""

    page_number: int
    url: str
    new_links: List[str] = field(default_factory=list)
    has_next: bool = False
    total_so_far: int = 0


def _href(element: Tag, base_url: str) -> Optional[str]:
    href = (element.get("href") or "").strip()
    if not href or href.startswith(("#", "javascript:")):
        return None
    absolute = urljoin(base_url, href)
    if not is_valid_url(absolute) or not same_site(absolute, base_url):
        return None
    return absolute


def _is_pagination_container(tag: Tag) -> bool:
    classes = tag.get("class") or []
    attrs = " ".join([*classes, tag.get("id") or "", tag.get("aria-label") or ""]).lower()
    return any(keyword in attrs for keyword in PAGINATION_KEYWORDS)


def _looks_like_next(anchor: Tag) -> bool:
    text = anchor.get_text(" ", strip=True).lower()
    label = " ".join([anchor.get("aria-label") or "", anchor.get("title") or ""]).lower()
    classes = " ".join(anchor.get("class") or []).lower()
    if text in NEXT_SYMBOLS or any(word in text for word in NEXT_WORDS):
        return True
    if any(word in label for word in NEXT_WORDS):
        return True
    return bool(re.search(r"\bnext\b|--next\b|-next\b", classes))


def find_next_page_url(
    html: str,
    base_url: str,
    current_page: int = 1,
    *,
    registry: Optional[StrategyRegistry] = None,
) -> Optional[str]:
    """Locate the "next page" control of a listing page.

    Order: site-strategy selectors, ``rel=next`` and next-classed anchors,
    next-like anchors inside a pagination container, then the anchor
    labelled ``current_page + 1`` inside a pagination container.
    """
    soup = BeautifulSoup(html or "", "html.parser")

    for selector in [*selectors_for(base_url, "next_page_selectors", registry), *GENERIC_NEXT_SELECTORS]:
        for element in soup.select(selector):
            url = _href(element, base_url)
            if url:
                return url

    containers = [tag for tag in soup.find_all(True) if _is_pagination_container(tag)]
    for container in containers:
        for anchor in container.find_all("a", href=True):
            if _looks_like_next(anchor):
                url = _href(anchor, base_url)
                if url:
                    return url

    wanted = str(current_page + 1)
    for container in containers:
        for anchor in container.find_all("a", href=True):
            if anchor.get_text(strip=True) == wanted:
                url = _href(anchor, base_url)
                if url:
                    return url
    return None


async def discover(
    fetcher: PageFetcher,
    seed_url: str,
    settings: Optional[HarvesterSettings] = None,
    *,
    registry: Optional[StrategyRegistry] = None,
) -> AsyncIterator[DiscoveredPage]:
    """Walk listing pages from ``seed_url`` yielding newly found product links.

    Stops on saturation (a non-first page adds nothing), a missing next
    control, a revisited page, or the page/link ceilings. A fetch error on
    the first page propagates; later ones end discovery.
    """
    settings = settings or HarvesterSettings()
    visited: set = set()
    seen: Dict[str, None] = {}
    url: Optional[str] = seed_url
    page_number = 1

    while url:
        key = listing_key(url)
        if key in visited:
            LOGGER.info("Listing page %s already visited, stopping", url)
            break
        visited.add(key)

        try:
            page = await fetcher.fetch(url)
        except FetchError as exc:
            if page_number == 1:
                raise
            LOGGER.warning("Listing page %d (%s) failed, stopping discovery: %s", page_number, url, exc)
            break
        visited.add(listing_key(page.final_url))

        links = listing_links(page.html, page.final_url, registry=registry)
        new_links = [link for link in links if link not in seen]
        room = max(settings.max_links - len(seen), 0)
        if len(new_links) > room:
            LOGGER.info("Link ceiling (%d) reached on page %d", settings.max_links, page_number)
            new_links = new_links[:room]
        for link in new_links:
            seen[link] = None

        next_url = find_next_page_url(page.html, page.final_url, page_number, registry=registry)
        if next_url and listing_key(next_url) in visited:
            next_url = None

        saturated = page_number > 1 and not new_links
        at_ceiling = page_number >= settings.max_pages or len(seen) >= settings.max_links
        has_next = bool(next_url) and not saturated and not at_ceiling

        LOGGER.info(
            "Listing page %d: %d new link(s), %d total, next=%s",
            page_number,
            len(new_links),
            len(seen),
            next_url if has_next else None,
        )
        yield DiscoveredPage(
            page_number=page_number,
            url=page.final_url,
            new_links=new_links,
            has_next=has_next,
            total_so_far=len(seen),
        )

        if not has_next:
            break
        url = next_url
        page_number += 1
        if settings.page_delay > 0:
            await asyncio.sleep(settings.page_delay)


async def collect_links(
    fetcher: PageFetcher,
    seed_url: str,
    settings: Optional[HarvesterSettings] = None,
    *,
    registry: Optional[StrategyRegistry] = None,
) -> List[str]:
    """Run discovery to completion and return every product link in order."""
    links: List[str] = []
    async for page in discover(fetcher, seed_url, settings, registry=registry):
        links.extend(page.new_links)
    return links
