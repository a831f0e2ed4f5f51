"""Product-link discovery on listing (category/search) pages."""
from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from ..urls import is_valid_url, same_site, strip_query
from .strategies import StrategyRegistry, selectors_for

LOGGER = logging.getLogger(__name__)

PRODUCT_PATH_RE = re.compile(
    r"/(?:product|products|producto|productos|produto|produtos|item|items|p|dp|prod)/",
    re.IGNORECASE,
)
# Last path segment ends in a numeric id: /phone-x-12345, /MLB-123456789, /98765.html
NUMERIC_ID_RE = re.compile(r"\d{2,}(?:\.html?)?/?$")
EXCLUDE_RE = re.compile(
    r"(?:^|/)(?:cart|carrinho|carrito|checkout|login|signin|sign-in|logout|register|"
    r"account|conta|minha-conta|mi-cuenta|search|busca|buscar|category|categories|"
    r"categoria|categorias|wishlist|favoritos|contact|contato|contacto|help|ajuda|"
    r"ayuda|blog|faq|terms|privacy|politica|page|pagina)(?:/|$|\?|\.)",
    re.IGNORECASE,
)
SKIP_SCHEMES = ("mailto:", "tel:", "javascript:", "whatsapp:", "#")
SKIP_EXTENSIONS = re.compile(r"\.(?:jpe?g|png|gif|svg|webp|ico|css|js|pdf|zip)$", re.IGNORECASE)


def _make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _resolve(href: Optional[str], base_url: str) -> Optional[str]:
    if not href:
        return None
    href = href.strip()
    if not href or href.lower().startswith(SKIP_SCHEMES):
        return None
    absolute = urljoin(base_url, href)
    if not is_valid_url(absolute):
        return None
    return strip_query(absolute)


def _is_excluded(url: str) -> bool:
    path = urlparse(url).path
    return bool(EXCLUDE_RE.search(path) or SKIP_EXTENSIONS.search(path))


def looks_like_product_url(url: str, base_url: str) -> bool:
    """Generic product-link heuristic (path conventions or trailing numeric id)."""
    if not same_site(url, base_url) or _is_excluded(url):
        return False
    path = urlparse(url).path
    if path in ("", "/"):
        return False
    return bool(PRODUCT_PATH_RE.search(path) or NUMERIC_ID_RE.search(path))


def _add(found: List[str], seen: set, url: Optional[str]) -> None:
    if url and url not in seen:
        seen.add(url)
        found.append(url)


def _strategy_links(soup: BeautifulSoup, base_url: str, selectors: Iterable[str]) -> List[str]:
    found: List[str] = []
    seen: set = set()
    for selector in selectors:
        for element in soup.select(selector):
            anchor = element if element.name == "a" else element.find("a", href=True)
            if not isinstance(anchor, Tag):
                continue
            url = _resolve(anchor.get("href"), base_url)
            if url and same_site(url, base_url):
                _add(found, seen, url)
    return found


def listing_links(
    html: str,
    base_url: str,
    *,
    registry: Optional[StrategyRegistry] = None,
) -> List[str]:
    """Absolute product-detail URLs found on a listing page.

    Site-strategy selectors and the generic path heuristic are unioned; the
    "anchor wraps an image" fallback runs only when both come up empty.
    Query strings are stripped; relative links resolve against ``base_url``,
    which should be the page's final (post-redirect) URL.

    Returns
    -------
    list[str]
        Deduplicated URLs in document order
    """
    soup = _make_soup(html)
    found: List[str] = []
    seen: set = set()

    for url in _strategy_links(soup, base_url, selectors_for(base_url, "listing_selectors", registry)):
        _add(found, seen, url)

    anchors = soup.find_all("a", href=True)
    for anchor in anchors:
        url = _resolve(anchor.get("href"), base_url)
        if url and looks_like_product_url(url, base_url):
            _add(found, seen, url)

    if not found:
        for anchor in anchors:
            if anchor.find("img") is None:
                continue
            url = _resolve(anchor.get("href"), base_url)
            if not url or not same_site(url, base_url) or _is_excluded(url):
                continue
            if strip_query(base_url).rstrip("/") == url.rstrip("/"):
                continue
            _add(found, seen, url)
        if found:
            LOGGER.debug("Image-anchor fallback produced %d link(s) on %s", len(found), base_url)

    LOGGER.debug("Found %d product link(s) on %s", len(found), base_url)
    return found
