import asyncio
import logging
from collections import OrderedDict
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from receipt_ledger.core.config import settings
from receipt_ledger.core.exceptions import InvalidInputError, QueueFullError
from receipt_ledger.services.identity import derive_receipt_id
from receipt_ledger.services.ingestion import ReceiptIngestionService

# --- Background ingestion ---
# Uploads accepted with 202 are processed by a fixed pool of workers reading
# a bounded queue. Every job's outcome (or error) stays observable through
# get_job() until it is evicted from the bounded job table.

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class IngestionJob(BaseModel):
    id: str                                  # equals the derived receipt id
    status: JobStatus = JobStatus.PENDING
    receipt_id: Optional[str] = None
    created: Optional[bool] = None
    error: Optional[str] = None
    submitted_at: datetime
    finished_at: Optional[datetime] = None

    def is_finished(self) -> bool:
        return self.status in {JobStatus.SUCCEEDED, JobStatus.FAILED}


class IngestionQueue:
    def __init__(
        self,
        service: ReceiptIngestionService,
        maxsize: int = settings.INGESTION_QUEUE_MAXSIZE,
        workers: int = settings.INGESTION_WORKERS,
        max_tracked_jobs: int = settings.INGESTION_MAX_TRACKED_JOBS,
    ):
        self.service = service
        self.maxsize = max(1, maxsize)
        self.worker_count = max(1, workers)
        self.max_tracked_jobs = max(1, max_tracked_jobs)
        self._queue: Optional[asyncio.Queue] = None
        self._workers: list[asyncio.Task] = []
        self._jobs: "OrderedDict[str, IngestionJob]" = OrderedDict()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"ingestion-worker-{index}")
            for index in range(self.worker_count)
        ]
        logger.info("ingestion_queue_started workers=%d maxsize=%d", self.worker_count, self.maxsize)

    async def stop(self) -> None:
        """Cancel the workers. Queued jobs that never ran are marked FAILED."""
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        for job in self._jobs.values():
            if not job.is_finished():
                self._finish(job, error="Ingestion queue stopped before the job completed.")
        self._queue = None
        logger.info("ingestion_queue_stopped")

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def submit(self, image_bytes: bytes, mime_type: str | None = None) -> IngestionJob:
        """
        Queue an image for ingestion and return its job.

        Resubmitting the same bytes while the job is still tracked returns the
        tracked job (finished jobs included) instead of queuing a second run.

        Raises:
            InvalidInputError: empty image.
            QueueFullError: no free slot in the queue.
        """
        if not image_bytes:
            raise InvalidInputError("Image data is empty.")
        await self.start()

        job_id = derive_receipt_id(image_bytes)
        tracked = self._jobs.get(job_id)
        if tracked is not None and tracked.status != JobStatus.FAILED:
            return tracked

        job = IngestionJob(id=job_id, submitted_at=datetime.now())
        try:
            self._queue.put_nowait((job, image_bytes, mime_type))
        except asyncio.QueueFull as exc:
            raise QueueFullError("Ingestion queue is full, try again later.") from exc

        self._track(job)
        logger.info("ingestion_job_queued job_id=%s depth=%d", job_id, self._queue.qsize())
        return job

    def get_job(self, job_id: str) -> Optional[IngestionJob]:
        return self._jobs.get(job_id)

    def _track(self, job: IngestionJob) -> None:
        self._jobs[job.id] = job
        self._jobs.move_to_end(job.id)
        while len(self._jobs) > self.max_tracked_jobs:
            oldest_id = next(
                (job_id for job_id, tracked in self._jobs.items() if tracked.is_finished()),
                None,
            )
            if oldest_id is None:
                break
            del self._jobs[oldest_id]

    def _finish(self, job: IngestionJob, error: Optional[str] = None) -> None:
        job.status = JobStatus.FAILED if error else JobStatus.SUCCEEDED
        job.error = error
        job.finished_at = datetime.now()

    async def _worker(self, index: int) -> None:
        while True:
            job, image_bytes, mime_type = await self._queue.get()
            job.status = JobStatus.RUNNING
            try:
                outcome = await self.service.ingest(image_bytes, mime_type)
            except asyncio.CancelledError:
                self._finish(job, error="Ingestion was cancelled.")
                self._queue.task_done()
                raise
            except Exception as exc:
                logger.error(
                    "ingestion_job_failed job_id=%s worker=%d error=%s", job.id, index, str(exc)
                )
                self._finish(job, error=str(exc))
            else:
                job.receipt_id = outcome.receipt.id
                job.created = outcome.created
                self._finish(job)
                logger.info(
                    "ingestion_job_succeeded job_id=%s worker=%d created=%s",
                    job.id,
                    index,
                    outcome.created,
                )
            self._queue.task_done()
