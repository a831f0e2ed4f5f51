from dataclasses import replace

import httpx
import pytest
from playwright.async_api import Error as PlaywrightError

from conftest import FakeRenderer
from harvester.antibot import UserAgentPool, find_challenge_marker
from harvester.errors import NetworkError, RenderError
from harvester.fetcher import BrowserRenderer, FetchMode, FetchSession

CHALLENGE = "<html><head><title>Just a moment...</title></head><body>cf_chl_opt</body></html>"


def make_session(settings, handler, renderer=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)
    return FetchSession(
        settings, client=client, renderer=renderer or FakeRenderer(), user_agents=UserAgentPool(seed=1)
    )


@pytest.mark.asyncio
async def test_plain_http_fetch(settings):
    def handler(request):
        return httpx.Response(200, text="<h1>ok</h1>")

    async with make_session(settings, handler) as session:
        page = await session.fetch("https://shop.test/produto/a")

    assert page.html == "<h1>ok</h1>"
    assert page.mode == FetchMode.HTTP
    assert session.mode_for("https://shop.test/x") == FetchMode.HTTP


@pytest.mark.asyncio
async def test_final_url_follows_redirects(settings):
    def handler(request):
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "https://shop.test/new"})
        return httpx.Response(200, text="<p>moved</p>")

    async with make_session(settings, handler) as session:
        page = await session.fetch("https://shop.test/old")

    assert page.final_url == "https://shop.test/new"


@pytest.mark.asyncio
async def test_challenge_escalates_and_sticks_for_the_domain(settings):
    http_calls = []

    def handler(request):
        http_calls.append(str(request.url))
        return httpx.Response(200, text=CHALLENGE)

    renderer = FakeRenderer({"https://shop.test/a": "<h1>A</h1>", "https://shop.test/b": "<h1>B</h1>"})
    session = make_session(settings, handler, renderer)

    first = await session.fetch("https://shop.test/a")
    second = await session.fetch("https://shop.test/b")
    await session.close()

    assert (first.html, second.html) == ("<h1>A</h1>", "<h1>B</h1>")
    assert first.mode == FetchMode.RENDER
    assert http_calls == ["https://shop.test/a"]
    assert renderer.calls == ["https://shop.test/a", "https://shop.test/b"]
    assert renderer.closed


@pytest.mark.asyncio
async def test_escalation_is_not_shared_between_sessions(settings):
    def challenge(request):
        return httpx.Response(200, text=CHALLENGE)

    def plain(request):
        return httpx.Response(200, text="<h1>plain</h1>")

    async with make_session(settings, challenge) as first:
        await first.fetch("https://shop.test/a")
        assert first.mode_for("https://shop.test/a") == FetchMode.RENDER

    renderer = FakeRenderer()
    async with make_session(settings, plain, renderer) as second:
        page = await second.fetch("https://shop.test/a")

    assert page.mode == FetchMode.HTTP
    assert renderer.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [403, 429, 503])
async def test_block_statuses_escalate(settings, status):
    def handler(request):
        return httpx.Response(status, text="denied")

    renderer = FakeRenderer()
    async with make_session(settings, handler, renderer) as session:
        page = await session.fetch("https://shop.test/a")

    assert page.mode == FetchMode.RENDER
    assert renderer.calls == ["https://shop.test/a"]


@pytest.mark.asyncio
async def test_transport_error_escalates(settings):
    def handler(request):
        raise httpx.ConnectError("connection reset", request=request)

    renderer = FakeRenderer()
    async with make_session(settings, handler, renderer) as session:
        page = await session.fetch("https://shop.test/a")

    assert page.mode == FetchMode.RENDER
    assert session.mode_for("https://shop.test/b") == FetchMode.RENDER


@pytest.mark.asyncio
async def test_not_found_raises_without_escalation(settings):
    def handler(request):
        return httpx.Response(404, text="missing")

    renderer = FakeRenderer()
    async with make_session(settings, handler, renderer) as session:
        with pytest.raises(NetworkError):
            await session.fetch("https://shop.test/gone")

    assert renderer.calls == []
    assert session.mode_for("https://shop.test/gone") == FetchMode.HTTP


def test_challenge_markers_are_case_insensitive():
    assert find_challenge_marker(CHALLENGE) is not None
    assert find_challenge_marker("<div id='PX-CAPTCHA'></div>") == "px-captcha"
    assert find_challenge_marker("<h1>Phone</h1>") is None
    assert find_challenge_marker("<p>custom wall</p>", ["Custom Wall"]) == "Custom Wall"


@pytest.mark.asyncio
async def test_redirect_loop_escalates(settings):
    def handler(request):
        return httpx.Response(302, headers={"Location": str(request.url)})

    renderer = FakeRenderer({"https://shop.test/loop": "<h1>rendered</h1>"})
    async with make_session(settings, handler, renderer) as session:
        page = await session.fetch("https://shop.test/loop")

    assert page.mode == FetchMode.RENDER
    assert page.html == "<h1>rendered</h1>"
    assert session.mode_for("https://shop.test/other") == FetchMode.RENDER


class FakePage:
    """Browser page stand-in returning scripted ``content()`` results."""

    def __init__(self, contents, goto_error=None):
        self.contents = list(contents)
        self.goto_error = goto_error
        self.url = ""
        self.closed = False

    async def goto(self, url, **kwargs):
        if self.goto_error is not None:
            raise self.goto_error
        self.url = url

    async def content(self):
        if len(self.contents) > 1:
            return self.contents.pop(0)
        return self.contents[0]

    async def close(self):
        self.closed = True


def renderer_with(settings, page):
    renderer = BrowserRenderer(settings)
    renderer._page = page
    return renderer


@pytest.mark.asyncio
async def test_renderer_waits_for_challenge_to_clear(settings):
    page = FakePage([CHALLENGE, CHALLENGE, "<h1>ok</h1>"])
    renderer = renderer_with(settings, page)

    result = await renderer.render("https://shop.test/a")

    assert result.html == "<h1>ok</h1>"
    assert result.mode == FetchMode.RENDER
    assert result.final_url == "https://shop.test/a"
    await renderer.close()
    assert page.closed


@pytest.mark.asyncio
async def test_renderer_gives_up_when_challenge_persists(settings):
    renderer = renderer_with(replace(settings, challenge_timeout=0.05), FakePage([CHALLENGE]))

    with pytest.raises(RenderError):
        await renderer.render("https://shop.test/a")


@pytest.mark.asyncio
async def test_renderer_navigation_failure_is_a_network_error(settings):
    page = FakePage(["<h1>never</h1>"], goto_error=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))
    renderer = renderer_with(settings, page)

    with pytest.raises(NetworkError):
        await renderer.render("https://nowhere.test/a")
