"""Exception hierarchy shared by the harvesting components."""
from __future__ import annotations

from typing import Optional


class HarvesterError(Exception):
    """Base class for all harvester errors."""


class ValidationError(HarvesterError):
    """Seed URL (or other job input) is malformed."""


class FetchError(HarvesterError):
    """Base class for fetch-layer failures."""

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class NetworkError(FetchError):
    """Host unreachable, timeout or unusable HTTP status."""


class RenderError(FetchError):
    """Headless rendering could not produce usable content."""


class ExtractionSkip(HarvesterError):
    """Item skipped: not a product page or per-item timeout.

    Counted as neither success nor failure.
    """

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class DeliveryError(HarvesterError):
    """Pushing a product to the external catalog failed."""


class JobFatalError(HarvesterError):
    """Control-loop error that terminates a job."""


class JobNotFoundError(HarvesterError):
    """No job with the requested id."""


class DuplicateProductError(HarvesterError):
    """A product with the same original URL already exists for the job."""


class ResumeError(HarvesterError):
    """Job is not in a state that can be resumed or cancelled."""
