from harvester.extraction import SiteStrategy, StrategyRegistry, listing_links, looks_like_product_url

BASE = "https://shop.test/categoria/phones"


def test_generic_heuristic_picks_product_paths_and_numeric_ids():
    html = """
    <a href="/produto/phone-a">A</a>
    <a href="https://shop.test/phone-b-123456">B</a>
    <a href="/item/98765.html">C</a>
    <a href="/cart">Cart</a>
    <a href="/categoria/tvs">TVs</a>
    <a href="/login?next=/produto/x">Login</a>
    <a href="https://other.test/produto/z">Elsewhere</a>
    <a href="mailto:sales@shop.test">Mail</a>
    """
    assert listing_links(html, BASE) == [
        "https://shop.test/produto/phone-a",
        "https://shop.test/phone-b-123456",
        "https://shop.test/item/98765.html",
    ]


def test_links_are_deduplicated_without_query_or_fragment():
    html = """
    <a href="/produto/phone-a?color=red">A</a>
    <a href="/produto/phone-a#reviews">A again</a>
    <a href="/produto/phone-a">A once more</a>
    """
    assert listing_links(html, BASE) == ["https://shop.test/produto/phone-a"]


def test_relative_links_resolve_against_final_url():
    html = '<a href="produto-77.html">X</a>'
    links = listing_links(html, "https://www.shop.test/loja/celulares/")
    assert links == ["https://www.shop.test/loja/celulares/produto-77.html"]


def test_strategy_selectors_are_unioned_with_heuristic():
    registry = StrategyRegistry(strategies=[])
    registry.register(
        SiteStrategy(name="shop", domain_patterns=("shop.test",), listing_selectors=("div.tile a",))
    )
    html = """
    <div class="tile"><a href="/fancy/phone-a">A</a></div>
    <a href="/produto/phone-b">B</a>
    """
    assert listing_links(html, BASE, registry=registry) == [
        "https://shop.test/fancy/phone-a",
        "https://shop.test/produto/phone-b",
    ]


def test_image_anchor_fallback_only_when_nothing_else_matches():
    html = """
    <a href="/fancy/phone-a"><img src="a.jpg"></a>
    <a href="/fancy/phone-b">no image</a>
    <a href="/categoria/phones"><img src="banner.jpg"></a>
    """
    assert listing_links(html, BASE) == ["https://shop.test/fancy/phone-a"]

    html_with_product = html + '<a href="/produto/phone-c">C</a>'
    assert listing_links(html_with_product, BASE) == ["https://shop.test/produto/phone-c"]


def test_page_without_product_links_yields_nothing():
    html = '<a href="/about">About</a><a href="/cart">Cart</a>'
    assert listing_links(html, BASE) == []


def test_looks_like_product_url():
    assert looks_like_product_url("https://shop.test/p/abc", BASE)
    assert not looks_like_product_url("https://shop.test/", BASE)
    assert not looks_like_product_url("https://shop.test/checkout/123", BASE)
    assert not looks_like_product_url("https://shop.test/produto/a.jpg", BASE)
