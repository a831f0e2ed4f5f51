"""URL and domain helpers."""
from __future__ import annotations

import posixpath
import re
import unicodedata
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from .errors import ValidationError

MAX_FOLDER_NAME = 100
TRACKING_PARAMS = ("utm_", "gclid", "fbclid", "srsltid", "ref_")
IMAGE_EXTENSIONS = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".webp", ".avif", ".bmp", ".svg", ".tif", ".tiff"}
)


def is_valid_url(url: Optional[str]) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc) and bool(parsed.hostname)


def validate_seed_url(url: Optional[str]) -> str:
    """Return the stripped seed URL or raise ``ValidationError``."""
    if not url or not isinstance(url, str) or not url.strip():
        raise ValidationError("URL is required")
    url = url.strip()
    if not is_valid_url(url):
        raise ValidationError(f"Invalid URL: {url}")
    return url


def extract_domain(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def _bare_host(host: str) -> str:
    return host[4:] if host.startswith("www.") else host


def same_site(url: str, other: str) -> bool:
    """Same host, ignoring a leading ``www.``."""
    first, second = extract_domain(url), extract_domain(other)
    return bool(first) and _bare_host(first) == _bare_host(second)


def file_extension(url: str) -> str:
    """Lowercase image extension of the URL path.

    Falls back to ``.jpg`` when the path has no extension or names a script
    (``.php``, ``.aspx``) rather than an image file.
    """
    try:
        ext = posixpath.splitext(urlparse(url).path)[1].lower()
    except ValueError:
        return ".jpg"
    return ext if ext in IMAGE_EXTENSIONS else ".jpg"


def strip_query(url: str) -> str:
    parsed = urlparse(url)
    return urlunparse(parsed._replace(query="", fragment=""))


def listing_key(url: str) -> str:
    """Visited-set key for listing pages.

    Drops the fragment and tracking parameters and sorts the rest, so
    ``?page=2&sort=price`` and ``?sort=price&page=2#top`` collide while
    ``?page=2`` and ``?page=3`` stay distinct.
    """
    parsed = urlparse(url)
    params = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not key.lower().startswith(TRACKING_PARAMS)
    ]
    path = parsed.path.rstrip("/") or "/"
    return urlunparse(
        (
            parsed.scheme.lower(),
            _bare_host(parsed.netloc.lower()),
            path,
            "",
            urlencode(sorted(params)),
            "",
        )
    )


def sanitize_folder_name(name: str) -> str:
    """Filesystem-safe, length-bounded slug for a product folder."""
    value = unicodedata.normalize("NFKD", name or "")
    value = value.encode("ascii", "ignore").decode("ascii").lower()
    value = re.sub(r"[^a-z0-9]+", "_", value).strip("_")
    value = value[:MAX_FOLDER_NAME].rstrip("_")
    return value or "product"


def category_from_url(url: str) -> Optional[str]:
    """Last non-empty path segment of a category URL."""
    try:
        segments = [s for s in urlparse(url).path.split("/") if s]
    except ValueError:
        return None
    if not segments:
        return None
    label = posixpath.splitext(segments[-1])[0]
    return label or None
