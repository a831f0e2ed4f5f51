"""Product-listing harvester.

Discovers product pages across paginated category listings, extracts
name, price, description and images from each, and packages the result:

- HTTP-first fetching with sticky per-domain escalation to Playwright
- Heuristic and per-site extraction of listing links and product details
- Resumable job state machine with checkpoints
- Optional delivery to an external catalog API
"""

from .config import HarvesterSettings
from .models import Job, JobStatus, Product, ProductStatus
from .processor import JobProcessor
from .service import HarvestService
from .store import InMemoryJobStore, PostgresJobStore

__all__ = [
    "HarvesterSettings",
    "HarvestService",
    "InMemoryJobStore",
    "Job",
    "JobProcessor",
    "JobStatus",
    "PostgresJobStore",
    "Product",
    "ProductStatus",
]
