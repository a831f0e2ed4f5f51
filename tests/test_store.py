from datetime import datetime, timedelta

import pydantic
import pytest

from harvester.errors import DuplicateProductError, JobNotFoundError
from harvester.models import Job, JobStatus, Product, ProductStatus
from harvester.store import InMemoryJobStore


@pytest.fixture
def store():
    return InMemoryJobStore()


def test_job_defaults():
    job = Job(source_url="https://shop.test/c")
    assert job.status == JobStatus.PENDING
    assert job.processed_products == 0
    assert job.total_products is None
    assert job.progress == 0
    assert not job.is_terminal


def test_job_invariants_are_validated():
    with pytest.raises(pydantic.ValidationError):
        Job(source_url="https://shop.test/c", total_products=2, processed_products=3)
    with pytest.raises(pydantic.ValidationError):
        Job(source_url="https://shop.test/c", can_resume=True)
    with pytest.raises(pydantic.ValidationError):
        Job(source_url="https://shop.test/c", status="running")


def test_update_job_rejects_invariant_violations(store):
    job = store.create_job(Job(source_url="https://shop.test/c"))
    store.update_job(job.id, total_products=2, processed_products=2)

    with pytest.raises(pydantic.ValidationError):
        store.update_job(job.id, processed_products=3)
    assert store.get_job(job.id).processed_products == 2

    with pytest.raises(ValueError):
        store.update_job(job.id, no_such_field=1)


def test_store_returns_copies(store):
    job = store.create_job(Job(source_url="https://shop.test/c"))
    fetched = store.get_job(job.id)
    fetched.processed_products = 99
    assert store.get_job(job.id).processed_products == 0


def test_missing_job_raises(store):
    with pytest.raises(JobNotFoundError):
        store.get_job("nope")
    with pytest.raises(JobNotFoundError):
        store.update_job("nope", status=JobStatus.PROCESSING)


def test_duplicate_product_url_rejected_per_job(store):
    url = "https://shop.test/produto/a"
    store.create_product(Product(job_id="j1", original_url=url))
    store.create_product(Product(job_id="j2", original_url=url))

    with pytest.raises(DuplicateProductError):
        store.create_product(Product(job_id="j1", original_url=url))
    assert store.product_urls("j1") == {url}


def test_update_product(store):
    product = store.create_product(Product(job_id="j1", original_url="https://shop.test/produto/a"))
    updated = store.update_product(
        product.id, status=ProductStatus.COMPLETED, image_paths=["image_1.jpg"]
    )
    assert updated.status == ProductStatus.COMPLETED
    assert store.list_products("j1")[0].image_paths == ["image_1.jpg"]


def test_list_jobs_filters_and_latest(store):
    old = datetime.utcnow() - timedelta(hours=3)
    first = store.create_job(Job(source_url="https://shop.test/a", created_at=old))
    second = store.create_job(Job(source_url="https://shop.test/b"))
    store.update_job(first.id, status=JobStatus.COMPLETED, completed_at=old)
    store.update_job(second.id, status=JobStatus.FAILED, completed_at=datetime.utcnow())

    cutoff = datetime.utcnow() - timedelta(hours=1)
    stale = store.list_jobs(statuses=[JobStatus.COMPLETED, JobStatus.FAILED], completed_before=cutoff)

    assert [job.id for job in stale] == [first.id]
    assert store.latest_job().id == second.id
