"""Packaging of a job's working directory into a downloadable artifact."""
from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from typing import Protocol

from .models import Job
from .urls import sanitize_folder_name

LOGGER = logging.getLogger(__name__)


class Packager(Protocol):
    def package(self, job: Job, work_dir: Path) -> str:
        """Bundle ``work_dir`` and return a non-empty artifact reference."""
        ...


class ZipPackager:
    """Writes ``<category>_<job-id-prefix>.zip`` under ``output_dir``.

    Product folders keep their relative layout inside the archive.
    """

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = Path(output_dir)

    def archive_name(self, job: Job) -> str:
        label = sanitize_folder_name(job.category_label or "products")
        return f"{label}_{job.id[:8]}.zip"

    def package(self, job: Job, work_dir: Path) -> str:
        work_dir = Path(work_dir)
        if not work_dir.is_dir():
            raise FileNotFoundError(f"Working directory {work_dir} does not exist")

        self.output_dir.mkdir(parents=True, exist_ok=True)
        archive_path = self.output_dir / self.archive_name(job)
        count = 0
        with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in sorted(work_dir.rglob("*")):
                if path.is_file():
                    archive.write(path, path.relative_to(work_dir).as_posix())
                    count += 1

        LOGGER.info("Packaged %d file(s) for job %s into %s", count, job.id, archive_path)
        return str(archive_path)
