"""Structured data extraction from product detail pages."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from .strategies import StrategyRegistry, selectors_for

LOGGER = logging.getLogger(__name__)

NAME_SELECTORS: Sequence[str] = (
    "h1.product-title",
    "h1.product_title",
    "h1.item-title",
    ".product-name h1",
    "h1[itemprop='name']",
    ".product-title",
    "h1[data-testid*='title']",
    "h1",
)

DESCRIPTION_SELECTORS: Sequence[str] = (
    ".product-description",
    ".product__description",
    ".item-description",
    "[itemprop='description']",
    "#description",
    ".description",
    ".descripcion",
    ".descricao",
    ".product-details",
    "[data-testid*='description']",
    ".product-content",
    ".item-details",
)
DESCRIPTION_KEYWORDS = ("descri", "detalhes", "details", "sobre o produto", "acerca del producto")
DESCRIPTION_SIBLING_BUDGET = 500
PARAGRAPH_MIN_LENGTH = 50
PARAGRAPH_BUDGET = 1000

PRICE_SELECTORS: Sequence[str] = (
    "[itemprop='price']",
    "meta[property='product:price:amount']",
    ".product-price",
    ".price",
    ".precio",
    ".preco",
    ".item-price",
    "[data-testid*='price']",
    ".value",
    ".cost",
)
CURRENCY_RE = re.compile(
    r"(?:R\$|US\$|U\$S|\$|€|£|₲|\bGs\.?|\b(?:USD|BRL|EUR|PYG|ARS|MXN|CLP))\s?\d[\d.,]*"
    r"|\d[\d.,]*\s?(?:€|\b(?:USD|BRL|EUR|PYG|Gs)\b)",
    re.IGNORECASE,
)
PRICE_TEXT_MAX = 40

GALLERY_KEYWORDS = (
    "gallery", "galeria", "carousel", "slider", "swiper", "product-image", "product-images",
    "product-photo", "product-media", "product__media", "zoom", "thumbnails", "fotos", "photos",
    "pdp-image",
)
RELATED_KEYWORDS = (
    "related", "similar", "recommend", "upsell", "up-sell", "cross-sell", "crosssell",
    "also-like", "also-bought", "you-may", "relacionados", "similares", "recomendados",
    "recently-viewed",
)
RELATED_TEXT = (
    "related products", "similar products", "you may also like", "you might also like",
    "customers also", "produtos relacionados", "productos relacionados", "produtos similares",
    "productos similares", "também pode gostar", "tambien te puede", "también te puede",
)
EXCLUDED_IMAGE_RE = re.compile(
    r"(?:^|[/_.-])(?:logo|icons?|placeholder|no-?image|banner|sprite|spinner|loader|blank)"
    r"(?=[/_.-]|\d|$)",
    re.IGNORECASE,
)
IMAGE_SRC_ATTRS = (
    "data-zoom-image", "data-large_image", "data-src", "data-original",
    "data-lazy", "data-lazy-src", "src",
)
MIN_IMAGE_DIMENSION = 100
MAX_CANDIDATE_IMAGES = 20
SKIP_ANCESTORS = ("html", "body", "main", "[document]")


@dataclass
class ProductDetail:
    """Fields extracted from a product page."""

    name: str
    url: str
    description: str = ""
    price: Optional[str] = None
    images: List[str] = field(default_factory=list)


def _clean(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def _text(element: Tag) -> str:
    return _clean(element.get_text(" ", strip=True))


def _first_text(soup: BeautifulSoup, selectors: Iterable[str]) -> str:
    for selector in selectors:
        for element in soup.select(selector):
            text = _text(element)
            if text:
                return text
    return ""


def _meta_content(soup: BeautifulSoup, *queries: dict) -> str:
    for attrs in queries:
        tag = soup.find("meta", attrs=attrs)
        if tag and _clean(tag.get("content")):
            return _clean(tag.get("content"))
    return ""


# -- name -------------------------------------------------------------------


def extract_name(soup: BeautifulSoup, url: str, registry: Optional[StrategyRegistry] = None) -> str:
    name = _first_text(soup, [*selectors_for(url, "name_selectors", registry), *NAME_SELECTORS])
    if name:
        return name
    name = _meta_content(soup, {"property": "og:title"})
    if name:
        return name
    if soup.title and soup.title.string:
        return _clean(soup.title.string)
    return ""


# -- description ------------------------------------------------------------


def _description_after_heading(soup: BeautifulSoup) -> str:
    for heading in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
        if not any(keyword in _text(heading).lower() for keyword in DESCRIPTION_KEYWORDS):
            continue
        parts: List[str] = []
        length = 0
        for sibling in heading.find_next_siblings():
            if length >= DESCRIPTION_SIBLING_BUDGET:
                break
            text = _text(sibling)
            if len(text) > 20:
                parts.append(text)
                length += len(text)
        if parts:
            return "\n\n".join(parts)
    return ""


def extract_description(
    soup: BeautifulSoup,
    url: str,
    registry: Optional[StrategyRegistry] = None,
) -> str:
    description = _first_text(
        soup, [*selectors_for(url, "description_selectors", registry), *DESCRIPTION_SELECTORS]
    )
    if description:
        return description

    description = _description_after_heading(soup)
    if description:
        return description

    description = _meta_content(soup, {"name": "description"}, {"property": "og:description"})
    if description:
        return description

    paragraphs = [_text(p) for p in soup.find_all("p")]
    joined = "\n\n".join(p for p in paragraphs if len(p) > PARAGRAPH_MIN_LENGTH)
    return joined[:PARAGRAPH_BUDGET]


# -- price ------------------------------------------------------------------


def _price_from_element(element: Tag) -> str:
    text = _text(element) or _clean(element.get("content"))
    if not text or not re.search(r"\d", text):
        return ""
    if len(text) <= PRICE_TEXT_MAX:
        return text
    # Selector hit a whole price block; keep only the amount.
    match = CURRENCY_RE.search(text)
    return match.group(0).strip() if match else ""


def extract_price(
    soup: BeautifulSoup,
    url: str,
    registry: Optional[StrategyRegistry] = None,
) -> Optional[str]:
    for selector in [*selectors_for(url, "price_selectors", registry), *PRICE_SELECTORS]:
        for element in soup.select(selector):
            price = _price_from_element(element)
            if price:
                return price

    for node in soup.find_all(string=True):
        if not isinstance(node, NavigableString) or isinstance(node, Comment) or node.parent is None:
            continue
        if node.parent.name in ("script", "style", "noscript", "title"):
            continue
        text = _clean(str(node))
        if not text or len(text) > PRICE_TEXT_MAX:
            continue
        match = CURRENCY_RE.search(text)
        if match:
            return match.group(0).strip()
    return None


# -- images -----------------------------------------------------------------


def _attr_text(tag: Tag) -> str:
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    return " ".join([*classes, tag.get("id") or ""]).lower()


def _has_related_heading(tag: Tag) -> bool:
    # Only headings that title this container: direct children or inside its
    # first child element (a header wrapper).
    candidates = list(tag.find_all(["h2", "h3", "h4", "h5"], recursive=False))
    first_child = next((c for c in tag.children if isinstance(c, Tag)), None)
    if first_child is not None:
        if first_child.name in ("h2", "h3", "h4", "h5"):
            candidates.append(first_child)
        else:
            candidates.extend(first_child.find_all(["h2", "h3", "h4", "h5"], recursive=False))
    return any(
        phrase in _text(heading).lower() for heading in candidates for phrase in RELATED_TEXT
    )


def _is_related_container(tag: Tag) -> bool:
    if tag.name in SKIP_ANCESTORS:
        return False
    attrs = _attr_text(tag)
    if any(keyword in attrs for keyword in RELATED_KEYWORDS):
        return True
    return _has_related_heading(tag)


def in_related_section(element: Tag) -> bool:
    """True when the element or an ancestor looks like a related-products block."""
    node: Optional[Tag] = element
    while node is not None and isinstance(node, Tag):
        if _is_related_container(node):
            return True
        node = node.parent
    return False


def _in_gallery(element: Tag, gallery_nodes: List[Tag]) -> bool:
    node = element.parent
    while node is not None and isinstance(node, Tag) and node.name not in SKIP_ANCESTORS:
        if any(node is gallery for gallery in gallery_nodes):
            return True
        attrs = _attr_text(node)
        if any(keyword in attrs for keyword in GALLERY_KEYWORDS):
            return True
        node = node.parent
    return False


def _image_src(img: Tag, base_url: str) -> Optional[str]:
    for attr in IMAGE_SRC_ATTRS:
        value = _clean(img.get(attr))
        if value and not value.startswith("data:"):
            return urljoin(base_url, value)
    srcset = _clean(img.get("srcset") or img.get("data-srcset"))
    if srcset:
        first = srcset.split(",")[0].strip().split(" ")[0]
        if first and not first.startswith("data:"):
            return urljoin(base_url, first)
    return None


def _dimension(img: Tag, attr: str) -> Optional[int]:
    match = re.match(r"\s*(\d+)", str(img.get(attr) or ""))
    return int(match.group(1)) if match else None


def _large_enough(img: Tag) -> bool:
    for attr in ("width", "height"):
        value = _dimension(img, attr)
        if value is not None and value < MIN_IMAGE_DIMENSION:
            return False
    return True


def _usable(url: Optional[str]) -> bool:
    return bool(url) and url.startswith(("http://", "https://")) and not EXCLUDED_IMAGE_RE.search(url)


def _collect(urls: Iterable[Optional[str]]) -> List[str]:
    result: List[str] = []
    seen = set()
    for url in urls:
        if _usable(url) and url not in seen:
            seen.add(url)
            result.append(url)
            if len(result) >= MAX_CANDIDATE_IMAGES:
                break
    return result


def extract_images(
    soup: BeautifulSoup,
    url: str,
    registry: Optional[StrategyRegistry] = None,
) -> List[str]:
    gallery_nodes: List[Tag] = []
    for selector in selectors_for(url, "gallery_selectors", registry):
        gallery_nodes.extend(soup.select(selector))

    images = [img for img in soup.find_all("img") if not in_related_section(img)]

    primary = _collect(
        _image_src(img, url) for img in images if _in_gallery(img, gallery_nodes)
    )
    if primary:
        return primary

    fallback = _collect(_image_src(img, url) for img in images if _large_enough(img))
    if fallback:
        return fallback

    og_image = _meta_content(soup, {"property": "og:image"})
    return _collect([urljoin(url, og_image)] if og_image else [])


# -- entry point ------------------------------------------------------------


def product_detail(
    html: str,
    url: str,
    *,
    registry: Optional[StrategyRegistry] = None,
) -> Optional[ProductDetail]:
    """Extract name, description, price and image URLs from a detail page.

    Returns ``None`` when no product name can be located; callers treat
    that as "not a product" and skip the page.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    name = extract_name(soup, url, registry)
    if not name:
        LOGGER.info("No product name found on %s", url)
        return None

    detail = ProductDetail(
        name=name,
        url=url,
        description=extract_description(soup, url, registry),
        price=extract_price(soup, url, registry),
        images=extract_images(soup, url, registry),
    )
    LOGGER.debug("Extracted %r from %s (%d image(s))", detail.name, url, len(detail.images))
    return detail
