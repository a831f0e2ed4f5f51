from dataclasses import replace

import httpx
import pytest

from harvester.images import ImagePipeline

BIG = b"\x89PNG" + b"0" * 8000


def pipeline_for(settings, sizes, failing=()):
    """``sizes`` maps URL path to the advertised Content-Length (None = not sent)."""
    gets = []

    def handler(request):
        path = request.url.path
        if request.method == "HEAD":
            if path == "/head-error.jpg":
                raise httpx.ConnectError("boom", request=request)
            size = sizes.get(path)
            headers = {"Content-Length": str(size)} if size is not None else {}
            return httpx.Response(200, headers=headers)
        gets.append(path)
        if path in failing:
            return httpx.Response(500)
        return httpx.Response(200, content=BIG)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ImagePipeline(settings, client=client), gets


@pytest.mark.asyncio
async def test_small_images_are_excluded_unknown_sizes_included(settings, tmp_path):
    pipeline, gets = pipeline_for(
        settings, {"/small.jpg": 1200, "/big.png": 80000, "/unknown.webp": None}
    )
    urls = [
        "https://cdn.test/small.jpg",
        "https://cdn.test/big.png",
        "https://cdn.test/unknown.webp",
        "https://cdn.test/head-error.jpg",
    ]

    saved = await pipeline.download_all(urls, tmp_path / "p")

    assert saved == ["image_1.png", "image_2.webp", "image_3.jpg"]
    assert "/small.jpg" not in gets
    assert (tmp_path / "p" / "image_1.png").read_bytes() == BIG


@pytest.mark.asyncio
async def test_download_count_is_capped(settings, tmp_path):
    pipeline, gets = pipeline_for(replace(settings, max_images=3), {})
    urls = [f"https://cdn.test/{n}.jpg" for n in range(6)]

    saved = await pipeline.download_all(urls, tmp_path / "p")

    assert saved == ["image_1.jpg", "image_2.jpg", "image_3.jpg"]
    assert gets == ["/0.jpg", "/1.jpg", "/2.jpg"]


@pytest.mark.asyncio
async def test_failed_download_is_skipped_not_retried(settings, tmp_path):
    pipeline, gets = pipeline_for(settings, {}, failing={"/broken.jpg"})
    urls = ["https://cdn.test/broken.jpg", "https://cdn.test/ok.jpg"]

    saved = await pipeline.download_all(urls, tmp_path / "p")

    assert saved == ["image_1.jpg"]
    assert gets.count("/broken.jpg") == 1
    assert not (tmp_path / "p" / "image_2.jpg").exists()
