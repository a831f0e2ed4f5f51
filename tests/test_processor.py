import asyncio
import zipfile
from dataclasses import replace
from pathlib import Path

import pytest

from conftest import FakeImagePipeline, FakeSession, listing_html, product_html
from harvester.errors import DeliveryError
from harvester.models import Job, JobStatus, Product, ProductStatus
from harvester.processor import JobProcessor, unique_folder_name
from harvester.store import InMemoryJobStore

SEED = "https://shop.test/categoria/phones"
LINKS = [
    "https://shop.test/produto/phone-a",
    "https://shop.test/produto/phone-b",
    "https://shop.test/produto/phone-c",
]


def shop_pages(links=LINKS):
    pages = {SEED: listing_html(links)}
    for url, name in zip(LINKS, ["Phone A", "Phone B", "Phone C"]):
        pages[url] = product_html(name)
    return pages


class FailingPackager:
    def __init__(self, result=None):
        self.result = result

    def package(self, job, work_dir):
        if self.result is None:
            raise OSError("disk full")
        return self.result


def make_processor(settings, store, session, **kwargs):
    kwargs.setdefault("image_pipeline", FakeImagePipeline())
    return JobProcessor(store, settings, session_factory=lambda: session, **kwargs)


def new_job(store, **fields):
    return store.create_job(Job(source_url=SEED, category_label="phones", **fields))


@pytest.mark.asyncio
async def test_end_to_end_job_completes(settings):
    store = InMemoryJobStore()
    session = FakeSession(shop_pages())
    job = new_job(store)

    result = await make_processor(settings, store, session).run(job.id)

    assert result.status == JobStatus.COMPLETED
    assert result.total_products == 3
    assert result.processed_products == 3
    assert result.result_artifact_ref
    assert result.can_resume is False
    assert result.completed_at is not None
    assert session.closed

    products = store.list_products(job.id)
    assert [p.original_url for p in products] == LINKS
    assert all(p.status == ProductStatus.COMPLETED for p in products)
    assert products[0].name == "Phone A"
    assert products[0].price == "R$ 1.299,90"
    assert products[0].image_paths == ["image_1.jpg", "image_2.jpg"]

    folder = Path(settings.work_dir) / job.id / products[0].folder_name
    assert (folder / "description.txt").read_text(encoding="utf-8") == "Great Phone A with warranty."
    info = (folder / "info.txt").read_text(encoding="utf-8")
    assert "Name: Phone A" in info
    assert "Images downloaded: 2" in info

    artifact = Path(result.result_artifact_ref)
    assert artifact.name.startswith("phones_")
    with zipfile.ZipFile(artifact) as archive:
        assert "phone_a/info.txt" in archive.namelist()


@pytest.mark.asyncio
async def test_resume_skips_recorded_products(settings):
    store = InMemoryJobStore()
    job = new_job(
        store,
        status=JobStatus.PAUSED,
        total_products=3,
        processed_products=1,
        last_product_index=1,
        can_resume=True,
    )
    store.create_product(
        Product(
            job_id=job.id,
            name="Phone A",
            original_url=LINKS[0],
            folder_name="phone_a",
            status=ProductStatus.COMPLETED,
        )
    )
    # Re-discovery on resume finds fewer links than the first run did.
    session = FakeSession(shop_pages(links=LINKS[1:]))

    result = await make_processor(settings, store, session).run(job.id, resume=True)

    assert result.status == JobStatus.COMPLETED
    assert result.total_products == 3
    assert result.processed_products == 3
    assert LINKS[0] not in session.calls
    urls = [p.original_url for p in store.list_products(job.id)]
    assert sorted(urls) == sorted(LINKS)


@pytest.mark.asyncio
async def test_unnamed_and_unreachable_products_are_skipped(settings):
    store = InMemoryJobStore()
    pages = shop_pages()
    pages[LINKS[0]] = "<html><body><p>Sold out</p></body></html>"
    del pages[LINKS[1]]
    session = FakeSession(pages)
    job = new_job(store)

    result = await make_processor(settings, store, session).run(job.id)

    assert result.status == JobStatus.COMPLETED
    assert result.total_products == 3
    assert result.processed_products == 1
    assert store.product_urls(job.id) == {LINKS[2]}


@pytest.mark.asyncio
async def test_slow_product_times_out_and_is_skipped(settings):
    class SlowSession(FakeSession):
        async def fetch(self, url):
            if url == LINKS[1]:
                await asyncio.sleep(10)
            return await super().fetch(url)

    store = InMemoryJobStore()
    session = SlowSession(shop_pages())
    job = new_job(store)

    result = await make_processor(replace(settings, item_timeout=0.05), store, session).run(job.id)

    assert result.status == JobStatus.COMPLETED
    assert result.processed_products == 2
    assert LINKS[1] not in store.product_urls(job.id)


@pytest.mark.asyncio
@pytest.mark.parametrize("packager", [FailingPackager(), FailingPackager(result="")])
async def test_packaging_failure_never_completes(settings, packager):
    store = InMemoryJobStore()
    session = FakeSession(shop_pages())
    job = new_job(store)

    result = await make_processor(settings, store, session, packager=packager).run(job.id)

    assert result.status == JobStatus.PAUSED
    assert result.can_resume is True
    assert result.processed_products == 3
    assert "Packaging" in result.error_message
    assert result.result_artifact_ref is None
    assert session.closed


@pytest.mark.asyncio
async def test_no_links_fails_job(settings):
    store = InMemoryJobStore()
    session = FakeSession({SEED: "<html><body><a href='/about'>About</a></body></html>"})
    job = new_job(store)

    result = await make_processor(settings, store, session).run(job.id)

    assert result.status == JobStatus.FAILED
    assert result.can_resume is False
    assert "No product links" in result.error_message
    assert session.closed


@pytest.mark.asyncio
async def test_unreachable_seed_fails_job(settings):
    store = InMemoryJobStore()
    session = FakeSession({})
    job = new_job(store)

    result = await make_processor(settings, store, session).run(job.id)

    assert result.status == JobStatus.FAILED
    assert "404" in result.error_message
    assert session.closed


@pytest.mark.asyncio
async def test_session_setup_failure_fails_job(settings):
    store = InMemoryJobStore()
    job = new_job(store)

    def broken_factory():
        raise ValueError("Invalid proxy URL")

    processor = JobProcessor(
        store, settings, session_factory=broken_factory, image_pipeline=FakeImagePipeline()
    )
    result = await processor.run(job.id)

    assert result.status == JobStatus.FAILED
    assert "Invalid proxy URL" in result.error_message
    assert store.get_job(job.id).status == JobStatus.FAILED


@pytest.mark.asyncio
async def test_cancel_is_observed_at_checkpoint(settings):
    store = InMemoryJobStore()
    job = new_job(store)

    class CancellingSession(FakeSession):
        async def fetch(self, url):
            if url == LINKS[1]:
                store.update_job(job.id, status=JobStatus.FAILED, error_message="cancelled by user")
            return await super().fetch(url)

    session = CancellingSession(shop_pages())
    result = await make_processor(settings, store, session).run(job.id)

    assert result.status == JobStatus.FAILED
    assert result.error_message == "cancelled by user"
    assert result.processed_products == 2
    assert LINKS[2] not in session.calls
    assert result.result_artifact_ref is None


@pytest.mark.asyncio
async def test_discover_only_records_links_without_extraction(settings):
    store = InMemoryJobStore()
    session = FakeSession(shop_pages())
    job = new_job(store, discover_only=True)

    result = await make_processor(settings, store, session).run(job.id)

    assert result.status == JobStatus.COMPLETED
    assert result.processed_products == result.total_products == 3
    assert session.calls == [SEED]
    products = store.list_products(job.id)
    assert {p.status for p in products} == {ProductStatus.DISCOVERED}
    links_file = Path(settings.work_dir) / job.id / "links.txt"
    assert links_file.read_text(encoding="utf-8").split() == LINKS


@pytest.mark.asyncio
async def test_delivery_is_best_effort(settings):
    class FakeCatalog:
        enabled = True

        def __init__(self):
            self.sent = []

        async def send_product(self, product, image_files, category=None):
            self.sent.append((product.name, [Path(f).name for f in image_files], category))
            if product.name == "Phone B":
                raise DeliveryError("catalog down")
            return {"success": True}

        async def close(self):
            pass

    store = InMemoryJobStore()
    catalog = FakeCatalog()
    job = new_job(store, deliver=True)

    result = await make_processor(settings, store, FakeSession(shop_pages()), delivery=catalog).run(job.id)

    assert result.status == JobStatus.COMPLETED
    assert result.processed_products == 3
    assert [name for name, _, _ in catalog.sent] == ["Phone A", "Phone B", "Phone C"]
    assert catalog.sent[0] == ("Phone A", ["image_1.jpg", "image_2.jpg"], "phones")


def test_unique_folder_name_adds_suffix():
    used = set()
    assert unique_folder_name("Phone X", used) == "phone_x"
    assert unique_folder_name("Phone X!", used) == "phone_x_2"
    assert unique_folder_name("phone x", used) == "phone_x_3"
    assert len(unique_folder_name("y" * 150, used)) == 100
    assert unique_folder_name("y" * 150, used) == "y" * 98 + "_2"

