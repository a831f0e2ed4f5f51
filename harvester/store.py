"""Persistence of jobs and products.

Two backends share the ``JobStore`` interface: an in-process store used by
tests and one-shot CLI runs, and a PostgreSQL store on ``psycopg2``.
Every job write goes through model validation, so progress invariants hold
whichever backend is used.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, Set

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2.extras import DictCursor, Json

from .errors import DuplicateProductError, JobNotFoundError
from .models import Job, JobStatus, Product

LOGGER = logging.getLogger(__name__)

JOB_COLUMNS = tuple(Job.model_fields)
PRODUCT_COLUMNS = tuple(Product.model_fields)


def apply_job_update(job: Job, fields: Dict[str, Any]) -> Job:
    """Return ``job`` with ``fields`` applied, re-running validation.

    Raises
    ------
    pydantic.ValidationError
        The update would break a job invariant
    """
    unknown = set(fields) - set(JOB_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown job field(s): {', '.join(sorted(unknown))}")
    return Job.model_validate({**job.model_dump(), **fields})


def apply_product_update(product: Product, fields: Dict[str, Any]) -> Product:
    unknown = set(fields) - set(PRODUCT_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown product field(s): {', '.join(sorted(unknown))}")
    return Product.model_validate({**product.model_dump(), **fields})


class JobStore(Protocol):
    """Keyed create/read/update store for jobs and their products."""

    def create_job(self, job: Job) -> Job:
        ...

    def get_job(self, job_id: str) -> Job:
        """Fetch a job.

        Raises
        ------
        JobNotFoundError
            No job with this id
        """
        ...

    def update_job(self, job_id: str, **fields: Any) -> Job:
        ...

    def list_jobs(
        self,
        statuses: Optional[Iterable[JobStatus]] = None,
        completed_before: Optional[datetime] = None,
    ) -> List[Job]:
        ...

    def latest_job(self) -> Optional[Job]:
        ...

    def create_product(self, product: Product) -> Product:
        """Insert a product.

        Raises
        ------
        DuplicateProductError
            The job already has a product with this ``original_url``
        """
        ...

    def update_product(self, product_id: str, **fields: Any) -> Product:
        ...

    def list_products(self, job_id: str) -> List[Product]:
        ...

    def product_urls(self, job_id: str) -> Set[str]:
        ...


class InMemoryJobStore:
    """Thread-safe dict-backed store. Returns copies, never live records."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._products: Dict[str, Product] = {}
        self._lock = threading.Lock()

    def create_job(self, job: Job) -> Job:
        with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)
        LOGGER.debug("Created job %s for %s", job.id, job.source_url)
        return job.model_copy(deep=True)

    def get_job(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job.model_copy(deep=True)

    def update_job(self, job_id: str, **fields: Any) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            updated = apply_job_update(job, fields)
            self._jobs[job_id] = updated
        return updated.model_copy(deep=True)

    def list_jobs(
        self,
        statuses: Optional[Iterable[JobStatus]] = None,
        completed_before: Optional[datetime] = None,
    ) -> List[Job]:
        wanted = {JobStatus(s) for s in statuses} if statuses is not None else None
        with self._lock:
            jobs = [job.model_copy(deep=True) for job in self._jobs.values()]
        if wanted is not None:
            jobs = [job for job in jobs if job.status in wanted]
        if completed_before is not None:
            jobs = [job for job in jobs if job.completed_at and job.completed_at < completed_before]
        return sorted(jobs, key=lambda job: job.created_at)

    def latest_job(self) -> Optional[Job]:
        jobs = self.list_jobs()
        return jobs[-1] if jobs else None

    def create_product(self, product: Product) -> Product:
        with self._lock:
            for existing in self._products.values():
                if existing.job_id == product.job_id and existing.original_url == product.original_url:
                    raise DuplicateProductError(
                        f"Job {product.job_id} already has a product for {product.original_url}"
                    )
            self._products[product.id] = product.model_copy(deep=True)
        return product.model_copy(deep=True)

    def update_product(self, product_id: str, **fields: Any) -> Product:
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                raise KeyError(f"Product {product_id} not found")
            updated = apply_product_update(product, fields)
            self._products[product_id] = updated
        return updated.model_copy(deep=True)

    def list_products(self, job_id: str) -> List[Product]:
        with self._lock:
            products = [p.model_copy(deep=True) for p in self._products.values() if p.job_id == job_id]
        return sorted(products, key=lambda p: p.created_at)

    def product_urls(self, job_id: str) -> Set[str]:
        return {p.original_url for p in self.list_products(job_id)}


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return Json(value)
    return value


class PostgresJobStore:
    """PostgreSQL-backed store (``harvest_jobs`` / ``harvest_products``)."""

    def __init__(self, conn_string: str) -> None:
        """Initialize the store and create its tables.

        Parameters
        ----------
        conn_string : str
            PostgreSQL connection string
        """
        self.conn_string = conn_string
        self._ensure_tables()

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        conn = psycopg2.connect(self.conn_string)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        create_sql = """
        CREATE TABLE IF NOT EXISTS harvest_jobs (
            id VARCHAR(32) PRIMARY KEY,
            source_url TEXT NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            total_products INTEGER,
            processed_products INTEGER NOT NULL DEFAULT 0,
            last_product_index INTEGER NOT NULL DEFAULT 0,
            can_resume BOOLEAN NOT NULL DEFAULT FALSE,
            current_product_label TEXT,
            error_message TEXT,
            result_artifact_ref TEXT,
            created_at TIMESTAMP NOT NULL DEFAULT NOW(),
            completed_at TIMESTAMP,
            category_label TEXT,
            discover_only BOOLEAN NOT NULL DEFAULT FALSE,
            deliver BOOLEAN NOT NULL DEFAULT FALSE
        );

        CREATE TABLE IF NOT EXISTS harvest_products (
            id VARCHAR(32) PRIMARY KEY,
            job_id VARCHAR(32) NOT NULL REFERENCES harvest_jobs(id) ON DELETE CASCADE,
            name TEXT NOT NULL DEFAULT '',
            description TEXT NOT NULL DEFAULT '',
            price TEXT,
            original_url TEXT NOT NULL,
            folder_name VARCHAR(120) NOT NULL DEFAULT '',
            image_paths JSONB NOT NULL DEFAULT '[]'::jsonb,
            status VARCHAR(20) NOT NULL DEFAULT 'processing',
            created_at TIMESTAMP NOT NULL DEFAULT NOW(),
            completed_at TIMESTAMP,

            CONSTRAINT uq_product_job_url UNIQUE (job_id, original_url)
        );

        CREATE INDEX IF NOT EXISTS idx_harvest_jobs_status
            ON harvest_jobs(status, completed_at);
        CREATE INDEX IF NOT EXISTS idx_harvest_products_job
            ON harvest_products(job_id, created_at);
        """

        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(create_sql)

        LOGGER.info("Ensured harvest_jobs/harvest_products tables exist")

    def _insert(self, table: str, columns: Iterable[str], record: Dict[str, Any]) -> None:
        columns = list(columns)
        insert_sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join(['%s'] * len(columns))})"
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(insert_sql, [_db_value(record[c]) for c in columns])

    def _update(self, table: str, record_id: str, fields: Dict[str, Any]) -> None:
        if not fields:
            return
        assignments = ", ".join(f"{column} = %s" for column in fields)
        update_sql = f"UPDATE {table} SET {assignments} WHERE id = %s"
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(update_sql, [*(_db_value(v) for v in fields.values()), record_id])

    def _select(self, select_sql: str, params: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        with self._connection() as conn:
            with conn.cursor(cursor_factory=DictCursor) as cur:
                cur.execute(select_sql, list(params))
                return [dict(row) for row in cur.fetchall()]

    def create_job(self, job: Job) -> Job:
        self._insert("harvest_jobs", JOB_COLUMNS, job.model_dump())
        LOGGER.debug("Created job %s for %s", job.id, job.source_url)
        return job

    def get_job(self, job_id: str) -> Job:
        rows = self._select("SELECT * FROM harvest_jobs WHERE id = %s", (job_id,))
        if not rows:
            raise JobNotFoundError(f"Job {job_id} not found")
        return Job.model_validate(rows[0])

    def update_job(self, job_id: str, **fields: Any) -> Job:
        updated = apply_job_update(self.get_job(job_id), fields)
        self._update("harvest_jobs", job_id, {k: getattr(updated, k) for k in fields})
        return updated

    def list_jobs(
        self,
        statuses: Optional[Iterable[JobStatus]] = None,
        completed_before: Optional[datetime] = None,
    ) -> List[Job]:
        clauses: List[str] = []
        params: List[Any] = []
        if statuses is not None:
            clauses.append("status = ANY(%s)")
            params.append([JobStatus(s).value for s in statuses])
        if completed_before is not None:
            clauses.append("completed_at < %s")
            params.append(completed_before)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._select(f"SELECT * FROM harvest_jobs {where} ORDER BY created_at", params)
        return [Job.model_validate(row) for row in rows]

    def latest_job(self) -> Optional[Job]:
        rows = self._select("SELECT * FROM harvest_jobs ORDER BY created_at DESC LIMIT 1")
        return Job.model_validate(rows[0]) if rows else None

    def create_product(self, product: Product) -> Product:
        try:
            self._insert("harvest_products", PRODUCT_COLUMNS, product.model_dump())
        except pg_errors.UniqueViolation as exc:
            raise DuplicateProductError(
                f"Job {product.job_id} already has a product for {product.original_url}"
            ) from exc
        return product

    def _get_product(self, product_id: str) -> Product:
        rows = self._select("SELECT * FROM harvest_products WHERE id = %s", (product_id,))
        if not rows:
            raise KeyError(f"Product {product_id} not found")
        return Product.model_validate(rows[0])

    def update_product(self, product_id: str, **fields: Any) -> Product:
        updated = apply_product_update(self._get_product(product_id), fields)
        self._update("harvest_products", product_id, {k: getattr(updated, k) for k in fields})
        return updated

    def list_products(self, job_id: str) -> List[Product]:
        rows = self._select(
            "SELECT * FROM harvest_products WHERE job_id = %s ORDER BY created_at", (job_id,)
        )
        return [Product.model_validate(row) for row in rows]

    def product_urls(self, job_id: str) -> Set[str]:
        rows = self._select("SELECT original_url FROM harvest_products WHERE job_id = %s", (job_id,))
        return {row["original_url"] for row in rows}
