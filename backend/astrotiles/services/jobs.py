"""Background execution and tracking of tiling jobs.

Triggering a tile run must not block the HTTP request, and the client needs a
way to find out how the run went. JobExecutor hands jobs to a bounded thread
pool and keeps a TilingJob record per run that can be polled by id.

At most one job per image is active at a time: a trigger for an image whose
job is still queued or running returns that job instead of starting a second
pipeline writing to the same record. There is no cancellation; a started
gdal2tiles run goes to completion or failure.
"""

from __future__ import annotations

import concurrent.futures
import dataclasses
import datetime
import functools
import threading
import uuid
from typing import TYPE_CHECKING, Literal

from astrotiles.core import config
from astrotiles.core.logging import get_logger
from astrotiles.services import tiling_job

if TYPE_CHECKING:
    from astrotiles.db import database
    from astrotiles.services import storage as tile_storage

LOGGER = get_logger(__name__)

JobStatus = Literal["queued", "running", "succeeded", "failed"]


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.UTC)


@dataclasses.dataclass
class TilingJob:
    """One tiling run for one image.

    Attributes:
        id: Job identifier returned to the client.
        image_id: Image being tiled.
        status: "queued", "running", "succeeded" or "failed".
        error: Failure message when status is "failed".
        created_at: When the job was submitted.
        finished_at: When the job reached a terminal status.
    """

    id: str
    image_id: str
    status: JobStatus = "queued"
    error: str | None = None
    created_at: datetime.datetime = dataclasses.field(default_factory=_utcnow)
    finished_at: datetime.datetime | None = None

    @property
    def active(self) -> bool:
        return self.status in ("queued", "running")


class JobExecutor:
    """Runs tiling jobs on a bounded worker pool.

    Args:
        max_workers: Number of jobs allowed to run concurrently.
        history: Number of finished jobs kept for polling.
    """

    def __init__(self, max_workers: int = 2, history: int = 500) -> None:
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="tiling",
        )
        self._history = history
        self._lock = threading.Lock()
        self._jobs: dict[str, TilingJob] = {}
        self._active: dict[str, str] = {}
        self._futures: dict[str, concurrent.futures.Future[None]] = {}

    def submit(
        self,
        image_id: str,
        *,
        repo: database.ImageRepositoryProtocol,
        storage: tile_storage.TileStorage,
        settings: config.Settings,
    ) -> tuple[TilingJob, bool]:
        """Queue a tiling job unless one is already active for the image.

        Returns:
            A snapshot of the job and whether it was newly started. When the
            image already has an active job, that job is returned with False.
        """
        with self._lock:
            active_id = self._active.get(image_id)
            if active_id is not None:
                return dataclasses.replace(self._jobs[active_id]), False

            job = TilingJob(id=str(uuid.uuid4()), image_id=image_id)
            self._jobs[job.id] = job
            self._active[image_id] = job.id
            self._prune()
            self._futures[job.id] = self._pool.submit(
                self._run, job.id, repo, storage, settings
            )
            snapshot = dataclasses.replace(job)

        LOGGER.info(
            "tiling job queued",
            extra={"job_id": job.id, "image_id": image_id},
        )
        return snapshot, True

    def get(self, job_id: str) -> TilingJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return dataclasses.replace(job) if job else None

    def active_job(self, image_id: str) -> TilingJob | None:
        with self._lock:
            job_id = self._active.get(image_id)
            return dataclasses.replace(self._jobs[job_id]) if job_id else None

    def wait(self, job_id: str, timeout: float | None = None) -> TilingJob | None:
        """Block until a job finishes and return its final state."""
        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            concurrent.futures.wait([future], timeout=timeout)
        return self.get(job_id)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def _run(
        self,
        job_id: str,
        repo: database.ImageRepositoryProtocol,
        storage: tile_storage.TileStorage,
        settings: config.Settings,
    ) -> None:
        with self._lock:
            job = self._jobs[job_id]
            job.status = "running"
        try:
            tiling_job.run_tiling_job(
                job.image_id,
                repo=repo,
                storage=storage,
                settings=settings,
            )
        except Exception as exc:
            LOGGER.error(
                "tiling job failed",
                extra={"job_id": job_id, "image_id": job.image_id},
            )
            self._finish(job, "failed", str(exc) or type(exc).__name__)
        else:
            self._finish(job, "succeeded", None)

    def _finish(self, job: TilingJob, status: JobStatus, error: str | None) -> None:
        with self._lock:
            job.status = status
            job.error = error
            job.finished_at = _utcnow()
            if self._active.get(job.image_id) == job.id:
                del self._active[job.image_id]
            self._futures.pop(job.id, None)

    def _prune(self) -> None:
        """Forget the oldest finished jobs beyond the history limit."""
        excess = len(self._jobs) - self._history
        if excess <= 0:
            return
        for job_id in [j.id for j in self._jobs.values() if not j.active][:excess]:
            del self._jobs[job_id]


@functools.lru_cache
def get_job_executor() -> JobExecutor:
    """Process-wide executor sized from settings."""
    return JobExecutor(max_workers=config.get_settings().tile_workers)
