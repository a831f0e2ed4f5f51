"""CLI for the product harvester."""
from __future__ import annotations

import asyncio
import logging
import sys
from datetime import timedelta
from typing import Optional

import click
from dotenv import load_dotenv

from .config import HarvesterSettings, database_url
from .delivery import CatalogClient
from .errors import HarvesterError
from .models import Job
from .service import HarvestService
from .store import InMemoryJobStore, JobStore, PostgresJobStore

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def _make_store(in_memory: bool) -> JobStore:
    if in_memory:
        return InMemoryJobStore()
    return PostgresJobStore(database_url())


def _service(ctx: click.Context) -> HarvestService:
    obj = ctx.obj
    return HarvestService(_make_store(obj["in_memory"]), obj["settings"])


def _echo_job(job: Job) -> None:
    click.echo(f"Job:        {job.id}")
    click.echo(f"Source:     {job.source_url}")
    click.echo(f"Status:     {job.status.value}")
    total = job.total_products if job.total_products is not None else "?"
    click.echo(f"Progress:   {job.processed_products}/{total} ({job.progress}%)")
    if job.current_product_label:
        click.echo(f"Current:    {job.current_product_label}")
    if job.can_resume:
        click.echo(f"Resumable:  yes (checkpoint {job.last_product_index})")
    if job.error_message:
        click.echo(f"Error:      {job.error_message}")
    if job.result_artifact_ref:
        click.echo(f"Artifact:   {job.result_artifact_ref}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option(
    "--in-memory",
    is_flag=True,
    help="Keep job records in memory instead of PostgreSQL (single run only)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, in_memory: bool) -> None:
    """Harvest product listings from e-commerce category pages."""
    load_dotenv()
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = HarvesterSettings.from_env()
    ctx.obj["in_memory"] = in_memory


@cli.command()
@click.argument("url")
@click.option("--discover-only", is_flag=True, help="Only collect product links")
@click.option("--deliver", is_flag=True, help="Push products to the catalog API")
@click.option("--category", default=None, help="Category label (defaults to the URL's last segment)")
@click.pass_context
def scrape(ctx: click.Context, url: str, discover_only: bool, deliver: bool, category: Optional[str]) -> None:
    """Run a harvest job for a category URL and wait for it to finish."""
    service = _service(ctx)

    async def _run() -> Job:
        job = await service.submit(url, discover_only=discover_only, deliver=deliver, category=category)
        await service.wait()
        return service.status(job.id)

    try:
        job = asyncio.run(_run())
    except HarvesterError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_job(job)


@cli.command()
@click.argument("job_id")
@click.pass_context
def resume(ctx: click.Context, job_id: str) -> None:
    """Resume a paused or failed job from its last checkpoint."""
    service = _service(ctx)

    async def _run() -> Job:
        await service.resume(job_id)
        await service.wait()
        return service.status(job_id)

    try:
        job = asyncio.run(_run())
    except HarvesterError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_job(job)


@cli.command()
@click.argument("job_id")
@click.pass_context
def status(ctx: click.Context, job_id: str) -> None:
    """Show progress of a job."""
    try:
        job = _service(ctx).status(job_id)
    except HarvesterError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_job(job)


@cli.command()
@click.pass_context
def latest(ctx: click.Context) -> None:
    """Show the most recently created job."""
    job = _service(ctx).latest()
    if job is None:
        click.echo("No jobs yet")
        return
    _echo_job(job)


@cli.command()
@click.argument("job_id")
@click.pass_context
def cancel(ctx: click.Context, job_id: str) -> None:
    """Cancel a processing or paused job."""
    try:
        job = _service(ctx).cancel(job_id)
    except HarvesterError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Cancelled job {job.id}")


@cli.command()
@click.option("--hours", default=1.0, type=float, help="Remove directories of jobs finished more than N hours ago")
@click.pass_context
def cleanup(ctx: click.Context, hours: float) -> None:
    """Delete working directories of old completed/failed jobs."""
    removed = _service(ctx).cleanup(timedelta(hours=hours))
    click.echo(f"Removed {removed} job director{'y' if removed == 1 else 'ies'}")


@cli.command("catalog-status")
@click.pass_context
def catalog_status(ctx: click.Context) -> None:
    """Check connectivity to the product catalog API."""
    client = CatalogClient.from_settings(ctx.obj["settings"])

    async def _check() -> bool:
        try:
            return await client.check_connection()
        finally:
            await client.close()

    if not asyncio.run(_check()):
        raise click.ClickException("Catalog API is not reachable or not configured")
    click.echo("Catalog API OK")


if __name__ == "__main__":
    cli()
