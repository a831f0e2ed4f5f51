"""Push harvested products to an external product-catalog API."""
from __future__ import annotations

import base64
import logging
import mimetypes
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_incrementing

from .config import HarvesterSettings
from .errors import DeliveryError
from .models import Product

LOGGER = logging.getLogger(__name__)

PRODUCT_ENDPOINT = "/api/scraper/product"
STATUS_ENDPOINT = "/api/scraper/status"
MAX_PAYLOAD_IMAGES = 10

_NUMBER_RE = re.compile(r"\d[\d.,]*")


def parse_price_number(text: Optional[str]) -> Optional[float]:
    """Convert a free-text price into a number.

    The right-most separator followed by one or two digits is the decimal
    mark; every other ``.``/``,`` is a thousands separator.

    >>> parse_price_number("R$ 1.299,90")
    1299.9
    >>> parse_price_number("Gs. 1.500.000")
    1500000.0
    """
    if not text:
        return None
    match = _NUMBER_RE.search(text)
    if not match:
        return None
    number = match.group(0).rstrip(".,")

    last_sep = max(number.rfind("."), number.rfind(","))
    if last_sep == -1:
        return float(number)

    fraction = number[last_sep + 1:]
    if len(fraction) in (1, 2):
        integer = re.sub(r"[.,]", "", number[:last_sep])
        return float(f"{integer}.{fraction}")
    return float(re.sub(r"[.,]", "", number))


def _data_url(path: Path) -> str:
    mime, _ = mimetypes.guess_type(path.name)
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime or 'image/jpeg'};base64,{encoded}"


def build_payload(
    product: Product,
    image_files: Sequence[Path],
    category: Optional[str] = None,
) -> Dict[str, Any]:
    """Catalog payload for one product; unreadable images are left out."""
    images: List[Dict[str, Any]] = []
    for path in list(image_files)[:MAX_PAYLOAD_IMAGES]:
        path = Path(path)
        try:
            data = _data_url(path)
        except OSError as exc:
            LOGGER.warning("Could not read image %s for delivery: %s", path, exc)
            continue
        images.append({"data": data, "filename": path.name, "order": len(images)})

    return {
        "name": product.name,
        "description": product.description,
        "price": parse_price_number(product.price),
        "category": category,
        "originalUrl": product.original_url,
        "images": images,
    }


class CatalogClient:
    """Client for the catalog's scraper endpoints.

    Parameters
    ----------
    base_url : str
        Catalog root URL
    api_key : str
        Sent as ``X-API-Key``; without it the client is disabled
    client : httpx.AsyncClient, optional
        HTTP client (created and owned by the catalog client if not provided)
    attempts : int
        Delivery attempts per product
    backoff : float
        Linear backoff step in seconds (1x, 2x, ...)
    """

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str],
        *,
        client: Optional[httpx.AsyncClient] = None,
        attempts: int = 3,
        backoff: float = 1.0,
        timeout: float = 60.0,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.attempts = max(attempts, 1)
        self.backoff = backoff
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    @classmethod
    def from_settings(cls, settings: HarvesterSettings) -> CatalogClient:
        return cls(
            settings.catalog_url,
            settings.catalog_api_key,
            attempts=settings.delivery_attempts,
            backoff=settings.delivery_backoff,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.api_key or "", "Content-Type": "application/json"}

    async def _post_once(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.client.post(
                f"{self.base_url}{PRODUCT_ENDPOINT}", json=payload, headers=self._headers()
            )
            result = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise DeliveryError(f"Catalog request failed: {exc}") from exc

        if not isinstance(result, dict):
            raise DeliveryError(f"Unexpected catalog response (HTTP {response.status_code}): {result!r}")
        if not result.get("success"):
            message = result.get("message") or result.get("error")
            raise DeliveryError(f"Catalog rejected product (HTTP {response.status_code}): {message}")
        return result

    async def send_product(
        self,
        product: Product,
        image_files: Sequence[Path],
        category: Optional[str] = None,
    ) -> Dict[str, Any]:
        """POST one product, retrying with linear backoff.

        Raises
        ------
        DeliveryError
            Client disabled, or every attempt failed
        """
        if not self.enabled:
            raise DeliveryError("Catalog delivery is not configured (missing URL or API key)")

        payload = build_payload(product, image_files, category)
        LOGGER.info(
            "Delivering %r to catalog (%d image(s), price=%s)",
            product.name,
            len(payload["images"]),
            payload["price"],
        )

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_incrementing(start=self.backoff, increment=self.backoff),
            retry=retry_if_exception_type(DeliveryError),
            reraise=True,
        ):
            with attempt:
                number = attempt.retry_state.attempt_number
                try:
                    result = await self._post_once(payload)
                except DeliveryError as exc:
                    LOGGER.warning("Delivery attempt %d/%d failed: %s", number, self.attempts, exc)
                    raise
                LOGGER.info("Delivered %r on attempt %d", product.name, number)
                return result
        raise DeliveryError("Delivery loop exited without a result")

    async def check_connection(self) -> bool:
        """True when the catalog status endpoint answers ``{"status": "ok"}``."""
        if not self.enabled:
            LOGGER.info("Catalog API key not configured")
            return False
        try:
            response = await self.client.get(
                f"{self.base_url}{STATUS_ENDPOINT}", headers={"X-API-Key": self.api_key}
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.error("Catalog connection check failed: %s", exc)
            return False
        ok = isinstance(data, dict) and data.get("status") == "ok"
        if not ok:
            LOGGER.warning("Unexpected catalog status response: %s", data)
        return ok

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
