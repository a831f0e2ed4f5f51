"""Heuristic extraction of product links and product details from HTML."""

from .detail import ProductDetail, product_detail
from .listing import listing_links, looks_like_product_url
from .strategies import DEFAULT_REGISTRY, SiteStrategy, StrategyRegistry

__all__ = [
    "DEFAULT_REGISTRY",
    "ProductDetail",
    "SiteStrategy",
    "StrategyRegistry",
    "listing_links",
    "looks_like_product_url",
    "product_detail",
]
