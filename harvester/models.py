"""Pydantic models for harvest jobs and the products they collect."""
from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


def _new_id() -> str:
    return uuid.uuid4().hex


class JobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.PAUSED})
RESUMABLE_STATUSES = frozenset({JobStatus.PAUSED, JobStatus.FAILED})


class ProductStatus(str, Enum):
    """Product record states."""

    DISCOVERED = "discovered"  # discover-only jobs, no extraction
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(BaseModel):
    id: str = Field(default_factory=_new_id)
    source_url: str
    status: JobStatus = JobStatus.PENDING
    total_products: Optional[int] = None
    processed_products: int = 0
    last_product_index: int = 0
    can_resume: bool = False
    current_product_label: Optional[str] = None
    error_message: Optional[str] = None
    result_artifact_ref: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    category_label: Optional[str] = None
    discover_only: bool = False
    deliver: bool = False

    @model_validator(mode="after")
    def _check_progress(self) -> "Job":
        if self.total_products is not None and self.processed_products > self.total_products:
            raise ValueError(
                f"processed_products ({self.processed_products}) exceeds "
                f"total_products ({self.total_products})"
            )
        if self.can_resume and self.processed_products <= 0:
            raise ValueError("can_resume requires processed_products > 0")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress(self) -> int:
        """Percent of discovered products processed (0-100)."""
        if not self.total_products:
            return 0
        return round(self.processed_products * 100 / self.total_products)


class Product(BaseModel):
    id: str = Field(default_factory=_new_id)
    job_id: str
    name: str = ""
    description: str = ""
    price: Optional[str] = None
    original_url: str
    folder_name: str = ""
    image_paths: List[str] = Field(default_factory=list)
    status: ProductStatus = ProductStatus.PROCESSING
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
