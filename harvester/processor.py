"""Job state machine: discovery, per-product extraction, checkpointing, packaging."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Set

from .config import HarvesterSettings
from .delivery import CatalogClient
from .errors import DeliveryError, DuplicateProductError, ExtractionSkip, FetchError, JobFatalError
from .extraction import ProductDetail, StrategyRegistry, product_detail
from .fetcher import FetchedPage, FetchSession
from .images import ImagePipeline
from .models import Job, JobStatus, Product, ProductStatus
from .packaging import Packager, ZipPackager
from .pagination import collect_links
from .store import JobStore
from .urls import sanitize_folder_name

LOGGER = logging.getLogger(__name__)

DESCRIPTION_FILE = "description.txt"
INFO_FILE = "info.txt"
LINKS_FILE = "links.txt"
FOLDER_NAME_MAX = 100


class Session(Protocol):
    async def fetch(self, url: str) -> FetchedPage:
        ...

    async def close(self) -> None:
        ...


@dataclass
class RunStats:
    """Per-run item tally."""

    succeeded: int = 0
    skipped: int = 0
    failed: int = 0


def unique_folder_name(name: str, used: Set[str]) -> str:
    """Slug of ``name`` made unique against ``used`` with a numeric suffix."""
    base = sanitize_folder_name(name)
    candidate = base
    counter = 2
    while candidate in used:
        suffix = f"_{counter}"
        candidate = f"{base[:FOLDER_NAME_MAX - len(suffix)]}{suffix}"
        counter += 1
    used.add(candidate)
    return candidate


def info_text(product: Product, image_count: int, extracted_at: datetime) -> str:
    return "\n".join(
        [
            f"Name: {product.name}",
            f"Price: {product.price or 'not available'}",
            f"Original URL: {product.original_url}",
            f"Images downloaded: {image_count}",
            f"Extracted at: {extracted_at.isoformat(timespec='seconds')}",
        ]
    ) + "\n"


class JobProcessor:
    """Runs one harvest job to a terminal state.

    One sequential loop per job with one fetch session. The session is
    closed on every exit path.

    Parameters
    ----------
    store : JobStore
        Job and product records
    settings : HarvesterSettings
        Timeouts, delays, ceilings and directories
    session_factory : callable, optional
        Returns a fresh fetch session per run (``FetchSession`` by default)
    image_pipeline : ImagePipeline, optional
        Shared image downloader; created per run when omitted
    packager : Packager, optional
        Artifact builder (``ZipPackager`` into ``output_dir`` by default)
    delivery : CatalogClient, optional
        Catalog client used for jobs with ``deliver`` set
    registry : StrategyRegistry, optional
        Site strategies for extraction and pagination
    """

    def __init__(
        self,
        store: JobStore,
        settings: Optional[HarvesterSettings] = None,
        *,
        session_factory: Optional[Callable[[], Session]] = None,
        image_pipeline: Optional[ImagePipeline] = None,
        packager: Optional[Packager] = None,
        delivery: Optional[CatalogClient] = None,
        registry: Optional[StrategyRegistry] = None,
    ) -> None:
        self.store = store
        self.settings = settings or HarvesterSettings()
        self.session_factory = session_factory or (lambda: FetchSession(self.settings))
        self.image_pipeline = image_pipeline
        self.packager = packager or ZipPackager(self.settings.output_dir)
        self.delivery = delivery
        self.registry = registry

    def job_dir(self, job_id: str) -> Path:
        return Path(self.settings.work_dir) / job_id

    async def run(self, job_id: str, resume: bool = False) -> Job:
        """Process ``job_id`` until completed, failed, paused or cancelled.

        Never raises for job-level failures; the outcome is recorded on the
        job and the final record is returned.
        """
        job = self.store.get_job(job_id)
        if resume:
            LOGGER.info(
                "Resuming job %s from checkpoint %d (%d processed)",
                job_id,
                job.last_product_index,
                job.processed_products,
            )
        else:
            LOGGER.info("Starting job %s for %s", job_id, job.source_url)

        job = self.store.update_job(
            job_id, status=JobStatus.PROCESSING, error_message=None, completed_at=None
        )

        session = None
        images = None
        delivery = None
        owns_images = self.image_pipeline is None
        owns_delivery = self.delivery is None and job.deliver
        try:
            session = self.session_factory()
            images = self.image_pipeline or ImagePipeline(self.settings)
            delivery = self.delivery or (CatalogClient.from_settings(self.settings) if job.deliver else None)
            return await self._run(job, session, images, delivery)
        except Exception as exc:
            LOGGER.error("Job %s failed: %s", job_id, exc, exc_info=True)
            return self._fail(job_id, exc)
        finally:
            if session is not None:
                await session.close()
            if owns_images and images is not None:
                await images.close()
            if owns_delivery and delivery is not None:
                await delivery.close()

    async def _run(
        self,
        job: Job,
        session: Session,
        images: ImagePipeline,
        delivery: Optional[CatalogClient],
    ) -> Job:
        job_dir = self.job_dir(job.id)
        job_dir.mkdir(parents=True, exist_ok=True)

        links = await collect_links(session, job.source_url, self.settings, registry=self.registry)
        recorded = self.store.product_urls(job.id)
        total = len(set(links) | recorded)
        if total == 0:
            raise JobFatalError(f"No product links discovered on {job.source_url}")

        job = self.store.update_job(job.id, total_products=total)
        LOGGER.info(
            "Job %s: %d link(s) discovered, %d already recorded, %d total",
            job.id,
            len(links),
            len(recorded),
            total,
        )

        if job.discover_only:
            job = self._record_links(job, links, recorded)
        else:
            if delivery is not None and not delivery.enabled:
                LOGGER.warning("Job %s asked for delivery but the catalog client is not configured", job.id)
                delivery = None
            stats = await self._process_links(job, links, recorded, session, images, delivery)
            if stats is None:
                return self.store.get_job(job.id)
            LOGGER.info(
                "Job %s loop finished: succeeded=%d, skipped=%d, failed=%d",
                job.id,
                stats.succeeded,
                stats.skipped,
                stats.failed,
            )

        current = self.store.get_job(job.id)
        if current.status != JobStatus.PROCESSING:
            LOGGER.info("Job %s is %s, not completing it", job.id, current.status.value)
            return current

        artifact = self._package(current, job_dir)
        job = self.store.update_job(
            job.id,
            status=JobStatus.COMPLETED,
            result_artifact_ref=artifact,
            current_product_label=None,
            can_resume=False,
            completed_at=datetime.utcnow(),
        )
        LOGGER.info(
            "Job %s completed: %d/%d product(s), artifact %s",
            job.id,
            job.processed_products,
            job.total_products,
            artifact,
        )
        return job

    def _record_links(self, job: Job, links: List[str], recorded: Set[str]) -> Job:
        for url in links:
            if url in recorded:
                continue
            try:
                self.store.create_product(
                    Product(job_id=job.id, original_url=url, status=ProductStatus.DISCOVERED)
                )
            except DuplicateProductError:
                LOGGER.debug("Link %s already recorded for job %s", url, job.id)

        all_links = [*links, *sorted(recorded - set(links))]
        (self.job_dir(job.id) / LINKS_FILE).write_text("\n".join(all_links) + "\n", encoding="utf-8")
        return self.store.update_job(
            job.id,
            processed_products=job.total_products,
            last_product_index=len(all_links),
        )

    async def _process_links(
        self,
        job: Job,
        links: List[str],
        recorded: Set[str],
        session: Session,
        images: ImagePipeline,
        delivery: Optional[CatalogClient],
    ) -> Optional[RunStats]:
        """Run the per-product loop; ``None`` means the job was cancelled."""
        stats = RunStats()
        processed = job.processed_products
        used_folders = {p.folder_name for p in self.store.list_products(job.id) if p.folder_name}
        every = max(self.settings.checkpoint_every, 1)
        attempted = 0

        for index, url in enumerate(links, start=1):
            if url in recorded:
                continue
            if attempted and self.settings.product_delay > 0:
                await asyncio.sleep(self.settings.product_delay)
            attempted += 1
            self.store.update_job(job.id, current_product_label=url)

            try:
                detail = await asyncio.wait_for(
                    self._extract(session, url), timeout=self.settings.item_timeout
                )
                await self._save_product(job, url, detail, used_folders, images, delivery)
            except asyncio.TimeoutError:
                LOGGER.warning(
                    "Skipping %s: no result within %.0fs", url, self.settings.item_timeout
                )
                stats.skipped += 1
            except ExtractionSkip as exc:
                LOGGER.info("Skipping %s: %s", url, exc.reason)
                stats.skipped += 1
            except DuplicateProductError as exc:
                LOGGER.info("Skipping %s: %s", url, exc)
                stats.skipped += 1
            except FetchError as exc:
                LOGGER.warning("Fetch failed for %s (job %s): %s", url, job.id, exc)
                stats.failed += 1
            except Exception as exc:
                LOGGER.error("Error processing %s (job %s): %s", url, job.id, exc, exc_info=True)
                stats.failed += 1
            else:
                processed += 1
                stats.succeeded += 1
                self.store.update_job(job.id, processed_products=processed)

            if attempted % every == 0:
                current = self.store.get_job(job.id)
                if current.status != JobStatus.PROCESSING:
                    LOGGER.info("Job %s is %s, stopping at product %d", job.id, current.status.value, index)
                    return None
                self.store.update_job(
                    job.id, last_product_index=index, can_resume=processed > 0
                )
                LOGGER.debug("Checkpoint for job %s at index %d", job.id, index)

        self.store.update_job(job.id, last_product_index=len(links), can_resume=processed > 0)
        return stats

    async def _extract(self, session: Session, url: str) -> ProductDetail:
        page = await session.fetch(url)
        detail = product_detail(page.html, page.final_url, registry=self.registry)
        if detail is None:
            raise ExtractionSkip(url, "no product name found")
        return detail

    async def _save_product(
        self,
        job: Job,
        url: str,
        detail: ProductDetail,
        used_folders: Set[str],
        images: ImagePipeline,
        delivery: Optional[CatalogClient],
    ) -> Product:
        folder = unique_folder_name(detail.name, used_folders)
        product = self.store.create_product(
            Product(
                job_id=job.id,
                name=detail.name,
                description=detail.description,
                price=detail.price,
                original_url=url,
                folder_name=folder,
            )
        )
        product_dir = self.job_dir(job.id) / folder

        try:
            filenames = await images.download_all(detail.images, product_dir)
            (product_dir / DESCRIPTION_FILE).write_text(detail.description, encoding="utf-8")
            now = datetime.utcnow()
            (product_dir / INFO_FILE).write_text(info_text(product, len(filenames), now), encoding="utf-8")
            product = self.store.update_product(
                product.id,
                image_paths=filenames,
                status=ProductStatus.COMPLETED,
                completed_at=now,
            )
        except Exception:
            self.store.update_product(product.id, status=ProductStatus.FAILED)
            raise

        LOGGER.info("Saved %r (%d image(s)) for job %s", product.name, len(filenames), job.id)

        if delivery is not None and job.deliver:
            try:
                await delivery.send_product(
                    product, [product_dir / name for name in filenames], job.category_label
                )
            except DeliveryError as exc:
                LOGGER.warning("Delivery of %r failed: %s", product.name, exc)
        return product

    def _package(self, job: Job, job_dir: Path) -> str:
        try:
            artifact = self.packager.package(job, job_dir)
        except Exception as exc:
            raise JobFatalError(f"Packaging failed: {exc}") from exc
        if not artifact:
            raise JobFatalError("Packaging returned an empty artifact reference")
        return artifact

    def _fail(self, job_id: str, exc: Exception) -> Job:
        job = self.store.get_job(job_id)
        message = str(exc) or type(exc).__name__
        if job.processed_products > 0:
            LOGGER.warning(
                "Job %s paused after %d product(s): %s", job_id, job.processed_products, message
            )
            return self.store.update_job(
                job_id,
                status=JobStatus.PAUSED,
                can_resume=True,
                error_message=message,
                current_product_label=None,
                completed_at=datetime.utcnow(),
            )
        return self.store.update_job(
            job_id,
            status=JobStatus.FAILED,
            can_resume=False,
            error_message=message,
            current_product_label=None,
            completed_at=datetime.utcnow(),
        )
