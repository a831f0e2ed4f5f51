"""Bot-challenge page detection."""
from __future__ import annotations

from typing import Iterable, Optional, Sequence

# Substrings found in interstitial challenge pages (markup, script paths,
# cookie names) of the common anti-bot vendors.
CHALLENGE_MARKERS: Sequence[str] = (
    # Cloudflare
    "/cdn-cgi/challenge-platform/",
    "challenges.cloudflare.com",
    "cf-browser-verification",
    "cf_chl_opt",
    "cf-challenge-running",
    "<title>just a moment...</title>",
    "checking your browser before accessing",
    # Imperva / Incapsula
    "_incapsula_resource",
    "incapsula incident id",
    # PerimeterX / HUMAN
    "px-captcha",
    "_pxhd",
    # DataDome
    "geo.captcha-delivery.com",
    "dd.captcha-delivery.com",
    # Sucuri
    "sucuri_cloudproxy_js",
    "sucuri website firewall",
    # AWS WAF
    "awswafintegration",
    "aws-waf-token",
    # Akamai
    "/_sec/cp_challenge/",
)

# HTTP statuses that anti-bot layers answer with instead of content.
BLOCK_STATUSES = frozenset({403, 429, 503})


def find_challenge_marker(
    html: Optional[str],
    extra_markers: Iterable[str] = (),
) -> Optional[str]:
    """Return the first challenge marker found in ``html`` (case-insensitive)."""
    if not html:
        return None
    haystack = html.lower()
    for marker in (*CHALLENGE_MARKERS, *extra_markers):
        if marker.lower() in haystack:
            return marker
    return None


def is_challenge_page(html: Optional[str], extra_markers: Iterable[str] = ()) -> bool:
    return find_challenge_marker(html, extra_markers) is not None
