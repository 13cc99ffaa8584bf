"""
In-memory job queue with a bounded worker pool.

submit() only records the job and enqueues its id, so it returns at once.
A fixed number of worker tasks pull ids in submission order; that worker
budget is the only admission control, and waiting PENDING jobs are the
backpressure. Each job is claimed by exactly one worker, which is the only
writer of that job while it is PROCESSING. The job table and the jobs in it
are touched only from the event loop thread, and no mutation spans an
await, so callers must be coroutines (async endpoints), never threadpool code.

Terminal jobs are dropped from the table JOB_RETENTION_SECONDS after they
finish. Completion order is not submission order: poll jobs by id or await
wait(job_id).
"""

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional

from invoice_intake.core.config import settings
from invoice_intake.core.exceptions import InvalidJobTransition, QueueFullError
from invoice_intake.ml.state import Checkpoint, ProgressReporter
from invoice_intake.schemas.job import JobResult, JobStatus, QueueStats

logger = logging.getLogger(__name__)

CANCELLED_REASON = "cancelled"
SHUTDOWN_REASON = "Worker stopped before the job finished"

# Runs one document: (file_path, filename, report_progress) -> JobResult
JobProcessor = Callable[[str, str, ProgressReporter], Awaitable[JobResult]]

_ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},  # FAILED only via cancel
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: {JobStatus.PENDING},  # operator retry
}

TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}


def _delete_file_sync(file_path: str) -> None:
    """Remove file from disk. Safe if missing (e.g. already deleted)."""
    Path(file_path).unlink(missing_ok=True)


@dataclass
class Job:
    id: str
    file_path: str
    filename: str
    owner_id: str
    created_at: datetime
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    result: Optional[JobResult] = None
    error: Optional[str] = None
    completed_at: Optional[datetime] = None
    attempts: int = 0
    _done: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _transition(self, target: JobStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidJobTransition(self.id, self.status.value, target.value)
        self.status = target

    def advance(self, progress: int) -> None:
        """Progress never goes backwards while the job is processing."""
        if self.status != JobStatus.PROCESSING:
            raise InvalidJobTransition(self.id, self.status.value, f"progress={progress}")
        if progress < self.progress:
            raise InvalidJobTransition(
                self.id, f"progress={self.progress}", f"progress={progress}"
            )
        self.progress = min(100, progress)

    def start(self) -> None:
        self._transition(JobStatus.PROCESSING)
        self.attempts += 1
        self.progress = Checkpoint.DEQUEUED

    def complete(self, result: JobResult, now: datetime) -> None:
        self._transition(JobStatus.COMPLETED)
        self.progress = Checkpoint.STORED
        self.result = result
        self.completed_at = now
        self._done.set()

    def fail(self, reason: str, now: datetime) -> None:
        self._transition(JobStatus.FAILED)
        self.error = reason
        self.result = None
        self.completed_at = now
        self._done.set()

    def reset(self) -> None:
        self._transition(JobStatus.PENDING)
        self.progress = 0
        self.error = None
        self.completed_at = None
        self._done = asyncio.Event()


class JobQueue:

    def __init__(
        self,
        processor: JobProcessor,
        pool_size: int | None = None,
        retention_seconds: float | None = None,
        cleanup_interval_seconds: float | None = None,
        max_queue_depth: int | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        delete_file: Callable[[str], None] = _delete_file_sync,
    ) -> None:
        self.processor = processor
        self.pool_size = pool_size or settings.WORKER_POOL_SIZE
        self.retention = timedelta(
            seconds=retention_seconds
            if retention_seconds is not None
            else settings.JOB_RETENTION_SECONDS
        )
        self.cleanup_interval = (
            cleanup_interval_seconds
            if cleanup_interval_seconds is not None
            else settings.JOB_CLEANUP_INTERVAL_SECONDS
        )
        self.max_queue_depth = (
            max_queue_depth if max_queue_depth is not None else settings.MAX_QUEUE_DEPTH
        )
        self.clock = clock
        self.delete_file = delete_file

        self._jobs: dict[str, Job] = {}
        # (completed_at, job_id) in completion order, for retention purging
        self._finished: deque[tuple[datetime, str]] = deque()
        self._pending_ids: asyncio.Queue[str] = asyncio.Queue()
        self._active = 0
        self._workers: list[asyncio.Task] = []
        self._purger: asyncio.Task | None = None

    # ── Lifecycle ─────────────────────────────────────────

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"intake-worker-{n}")
            for n in range(self.pool_size)
        ]
        if self.cleanup_interval > 0:
            self._purger = asyncio.create_task(self._purge_loop(), name="intake-purger")
        logger.info("Job queue started with %d workers", self.pool_size)

    async def stop(self) -> None:
        tasks = list(self._workers)
        if self._purger is not None:
            tasks.append(self._purger)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._purger = None
        logger.info("Job queue stopped")

    async def join(self) -> None:
        """Wait until every enqueued job has been picked up and finished."""
        await self._pending_ids.join()

    # ── Submission ────────────────────────────────────────

    def submit(self, file_path: str, filename: str, owner_id: str) -> str:
        if self.max_queue_depth > 0:
            in_flight = sum(1 for j in self._jobs.values() if not j.is_terminal)
            if in_flight >= self.max_queue_depth:
                raise QueueFullError(
                    "Job queue is full",
                    {"max_queue_depth": self.max_queue_depth},
                )
        job = Job(
            id=f"job_{uuid.uuid4().hex}",
            file_path=file_path,
            filename=filename,
            owner_id=owner_id,
            created_at=self.clock(),
        )
        self._jobs[job.id] = job
        self._pending_ids.put_nowait(job.id)
        logger.info("Invoice job added to queue: %s (%s)", job.id, filename)
        return job.id

    def submit_batch(self, files: list[tuple[str, str]], owner_id: str) -> list[str]:
        """files: (file_path, filename) pairs."""
        job_ids = [self.submit(path, name, owner_id) for path, name in files]
        logger.info("Batch jobs added to queue: %d for %s", len(job_ids), owner_id)
        return job_ids

    # ── Queries ───────────────────────────────────────────

    def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def get_jobs_for(self, owner_id: str) -> list[Job]:
        jobs = [j for j in self._jobs.values() if j.owner_id == owner_id]
        return sorted(jobs, key=lambda j: j.created_at)

    def stats(self) -> QueueStats:
        counts = {status: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status] += 1
        return QueueStats(
            total=len(self._jobs),
            pending=counts[JobStatus.PENDING],
            processing=counts[JobStatus.PROCESSING],
            completed=counts[JobStatus.COMPLETED],
            failed=counts[JobStatus.FAILED],
            active_workers=self._active,
        )

    async def wait(self, job_id: str, timeout: float | None = None) -> Job:
        """Resolve when the job reaches COMPLETED or FAILED."""
        job = self.get_job(job_id)
        if job is None:
            raise KeyError(job_id)
        if not job.is_terminal:
            await asyncio.wait_for(job._done.wait(), timeout=timeout)
        return job

    # ── Operator actions ──────────────────────────────────

    def cancel(self, job_id: str) -> bool:
        """Only PENDING jobs can be cancelled; there is no preemption."""
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.PENDING:
            return False
        job.fail(CANCELLED_REASON, self.clock())
        self._finished.append((job.completed_at, job.id))
        self._release_upload_now(job)
        logger.info("Job cancelled: %s", job_id)
        return True

    def retry(self, job_id: str) -> bool:
        """Put a FAILED job back in the queue."""
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.FAILED:
            return False
        job.reset()
        self._pending_ids.put_nowait(job_id)
        logger.info("Job queued for retry: %s", job_id)
        return True

    # ── Upload files ──────────────────────────────────────

    def _release_upload_now(self, job: Job) -> None:
        try:
            self.delete_file(job.file_path)
        except OSError as e:
            logger.warning("Failed to delete upload for job %s: %s", job.id, e)

    async def _release_upload(self, job: Job) -> None:
        try:
            await asyncio.to_thread(self.delete_file, job.file_path)
        except OSError as e:
            logger.warning("Failed to delete upload for job %s: %s", job.id, e)

    # ── Workers ───────────────────────────────────────────

    def _claim(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        # Cancelled (or purged) while waiting in the queue
        if job is None or job.status != JobStatus.PENDING:
            return None
        job.start()
        self._active += 1
        return job

    def _finish(self, job: Job) -> None:
        self._active -= 1
        self._finished.append((job.completed_at, job.id))

    async def _worker(self, number: int) -> None:
        while True:
            job_id = await self._pending_ids.get()
            try:
                job = self._claim(job_id)
                if job is not None:
                    await self._process(job)
            finally:
                self._pending_ids.task_done()

    async def _process(self, job: Job) -> None:
        logger.info("Processing invoice job: %s (%s)", job.id, job.filename)
        try:
            result = await self.processor(job.file_path, job.filename, job.advance)
        except asyncio.CancelledError:
            # No awaiting once cancelled
            self._release_upload_now(job)
            job.fail(SHUTDOWN_REASON, self.clock())
            self._finish(job)
            raise
        except Exception as e:
            logger.error("Invoice job failed: %s: %s", job.id, e, exc_info=True)
            # The upload is gone before anyone can observe FAILED
            try:
                await self._release_upload(job)
            finally:
                job.fail(str(e) or e.__class__.__name__, self.clock())
                self._finish(job)
        else:
            job.complete(result, self.clock())
            self._finish(job)
            logger.info("Invoice job completed successfully: %s", job.id)
        self.purge_expired()

    # ── Retention ─────────────────────────────────────────

    def purge_expired(self) -> int:
        cutoff = self.clock() - self.retention
        removed = 0
        while self._finished and self._finished[0][0] < cutoff:
            finished_at, job_id = self._finished.popleft()
            job = self._jobs.get(job_id)
            # Entry is stale when the job was retried after finishing
            if job is None or not job.is_terminal or job.completed_at != finished_at:
                continue
            del self._jobs[job_id]
            removed += 1
        if removed:
            logger.info("Cleaned up old jobs from queue: %d", removed)
        return removed

    async def _purge_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.purge_expired()
