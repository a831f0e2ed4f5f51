"""Runtime settings for harvesting jobs.

Values come from ``HARVESTER_*`` environment variables; the CLI loads a
``.env`` file first, so anything set there is picked up as well.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .antibot.proxy import ProxyConfig


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def database_url() -> str:
    """PostgreSQL DSN from ``DATABASE_URL`` or the ``PG_*`` components."""
    if conn_str := os.getenv("DATABASE_URL"):
        return conn_str

    host = os.getenv("PG_HOST", "localhost")
    port = os.getenv("PG_PORT", "5432")
    user = os.getenv("PG_USER", "harvester")
    password = os.getenv("PG_PASS", "harvester")
    database = os.getenv("PG_DB", "harvester")

    return f"postgresql://{user}:{password}@{host}:{port}/{database}"


@dataclass
class HarvesterSettings:
    """Tunables for fetching, discovery, job processing and delivery."""

    work_dir: Path = Path("temp")
    output_dir: Path = Path("downloads")

    # Fetch strategy
    http_timeout: float = 30.0
    render_timeout: float = 60.0  # seconds for navigation
    challenge_timeout: float = 20.0  # seconds to wait for a challenge to clear
    challenge_poll_interval: float = 1.0
    headless: bool = True
    proxy: Optional[ProxyConfig] = None

    # Pagination discovery
    max_pages: int = 50
    max_links: int = 1000
    page_delay: float = 1.5

    # Job loop
    item_timeout: float = 90.0
    product_delay: float = 1.0
    checkpoint_every: int = 5

    # Image pipeline
    image_min_bytes: int = 5000
    max_images: int = 10
    image_timeout: float = 30.0

    # Catalog delivery
    catalog_url: Optional[str] = None
    catalog_api_key: Optional[str] = None
    delivery_attempts: int = 3
    delivery_backoff: float = 1.0

    extra_challenge_markers: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> HarvesterSettings:
        """Build settings from environment variables (unset keys keep defaults)."""
        defaults = cls()
        markers = os.getenv("HARVESTER_CHALLENGE_MARKERS", "")
        return cls(
            work_dir=Path(os.getenv("HARVESTER_WORK_DIR", str(defaults.work_dir))).expanduser(),
            output_dir=Path(os.getenv("HARVESTER_OUTPUT_DIR", str(defaults.output_dir))).expanduser(),
            http_timeout=_env_float("HARVESTER_HTTP_TIMEOUT", defaults.http_timeout),
            render_timeout=_env_float("HARVESTER_RENDER_TIMEOUT", defaults.render_timeout),
            challenge_timeout=_env_float("HARVESTER_CHALLENGE_TIMEOUT", defaults.challenge_timeout),
            challenge_poll_interval=_env_float(
                "HARVESTER_CHALLENGE_POLL_INTERVAL", defaults.challenge_poll_interval
            ),
            headless=_env_bool("HARVESTER_HEADLESS", defaults.headless),
            proxy=ProxyConfig.from_env(),
            max_pages=_env_int("HARVESTER_MAX_PAGES", defaults.max_pages),
            max_links=_env_int("HARVESTER_MAX_LINKS", defaults.max_links),
            page_delay=_env_float("HARVESTER_PAGE_DELAY", defaults.page_delay),
            item_timeout=_env_float("HARVESTER_ITEM_TIMEOUT", defaults.item_timeout),
            product_delay=_env_float("HARVESTER_PRODUCT_DELAY", defaults.product_delay),
            checkpoint_every=_env_int("HARVESTER_CHECKPOINT_EVERY", defaults.checkpoint_every),
            image_min_bytes=_env_int("HARVESTER_IMAGE_MIN_BYTES", defaults.image_min_bytes),
            max_images=_env_int("HARVESTER_MAX_IMAGES", defaults.max_images),
            image_timeout=_env_float("HARVESTER_IMAGE_TIMEOUT", defaults.image_timeout),
            catalog_url=os.getenv("CATALOG_API_URL") or None,
            catalog_api_key=os.getenv("CATALOG_API_KEY") or None,
            delivery_attempts=_env_int("CATALOG_DELIVERY_ATTEMPTS", defaults.delivery_attempts),
            delivery_backoff=_env_float("CATALOG_DELIVERY_BACKOFF", defaults.delivery_backoff),
            extra_challenge_markers=[m.strip() for m in markers.split(",") if m.strip()],
        )
