"""Per-site extraction strategies keyed by domain pattern."""
from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ..urls import extract_domain


@dataclass(frozen=True)
class SiteStrategy:
    """Selector overrides for one family of sites.

    Every selector list is tried before the generic heuristics; empty
    lists fall straight through to them.
    """

    name: str
    domain_patterns: Tuple[str, ...] = ()
    listing_selectors: Tuple[str, ...] = ()
    next_page_selectors: Tuple[str, ...] = ()
    name_selectors: Tuple[str, ...] = ()
    price_selectors: Tuple[str, ...] = ()
    description_selectors: Tuple[str, ...] = ()
    gallery_selectors: Tuple[str, ...] = ()

    def matches(self, url: str) -> bool:
        domain = extract_domain(url)
        if not domain:
            return False
        return any(
            fnmatch.fnmatch(domain, pattern) or domain == pattern.lstrip("*.")
            for pattern in self.domain_patterns
        )


GENERIC = SiteStrategy(name="generic")

BUILTIN_STRATEGIES: Tuple[SiteStrategy, ...] = (
    SiteStrategy(
        name="shoppingchina",
        domain_patterns=("shoppingchina.com.py", "*.shoppingchina.com.py"),
        listing_selectors=('a[href*="/producto/"]',),
        next_page_selectors=("ul.pagination li.next a", 'a[rel="next"]'),
        name_selectors=("h1.product-title", ".product-info h1"),
        price_selectors=(".product-price .price", ".precio"),
        description_selectors=(".product-description", ".descripcion"),
        gallery_selectors=(".product-gallery", ".product-images"),
    ),
    SiteStrategy(
        name="mercadolibre",
        domain_patterns=(
            "*.mercadolivre.com.br",
            "*.mercadolibre.com",
            "*.mercadolibre.com.ar",
            "*.mercadolibre.com.mx",
        ),
        listing_selectors=("a.poly-component__title", "a.ui-search-link", "a.ui-search-item__group__element"),
        next_page_selectors=("li.andes-pagination__button--next a",),
        name_selectors=("h1.ui-pdp-title",),
        price_selectors=(".ui-pdp-price__second-line .andes-money-amount",),
        description_selectors=(".ui-pdp-description__content",),
        gallery_selectors=(".ui-pdp-gallery",),
    ),
    SiteStrategy(
        name="shopify",
        domain_patterns=("*.myshopify.com",),
        listing_selectors=('a[href*="/products/"]',),
        next_page_selectors=("a.pagination__item--next", ".pagination .next a"),
        name_selectors=("h1.product__title", ".product-single__title"),
        price_selectors=(".price-item--sale", ".price-item--regular", ".product__price"),
        description_selectors=(".product__description", ".product-single__description"),
        gallery_selectors=(".product__media-list", ".product-single__photos"),
    ),
)


@dataclass
class StrategyRegistry:
    """Ordered collection of site strategies with a generic default."""

    strategies: List[SiteStrategy] = field(default_factory=lambda: list(BUILTIN_STRATEGIES))
    default: SiteStrategy = GENERIC

    def register(self, strategy: SiteStrategy) -> None:
        self.strategies.insert(0, strategy)

    def matching(self, url: str) -> List[SiteStrategy]:
        """All strategies whose domain pattern matches ``url``."""
        return [s for s in self.strategies if s.matches(url)]

    def for_url(self, url: str) -> SiteStrategy:
        """First matching strategy, else the generic default."""
        found = self.matching(url)
        return found[0] if found else self.default


DEFAULT_REGISTRY = StrategyRegistry()


def selectors_for(url: str, attr: str, registry: Optional[StrategyRegistry] = None) -> Sequence[str]:
    """Concatenate one selector list over every strategy matching ``url``."""
    registry = registry or DEFAULT_REGISTRY
    selectors: List[str] = []
    for strategy in registry.matching(url):
        selectors.extend(getattr(strategy, attr))
    return selectors
