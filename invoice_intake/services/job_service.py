import asyncio
import logging
import uuid
from pathlib import Path

from fastapi import HTTPException, UploadFile

from invoice_intake.core.config import settings
from invoice_intake.core.exceptions import QueueFullError
from invoice_intake.core.file_validation import upload_problem
from invoice_intake.schemas.job import (
    BatchSubmitResponse,
    JobListResponse,
    JobResponse,
    JobSubmitResponse,
    QueueStats,
)
from invoice_intake.services.job_queue import Job, JobQueue

logger = logging.getLogger(__name__)


def _write_file_sync(file_path: Path, contents: bytes) -> None:
    with open(file_path, "wb") as f:
        f.write(contents)


class JobService:
    """
    HTTP-facing side of the job queue: upload validation, file storage and
    operator actions. The queue itself knows nothing about HTTP.
    """

    def __init__(self, queue: JobQueue) -> None:
        self.queue = queue

    async def _read_validated(self, file: UploadFile) -> tuple[str, bytes]:
        """Return (filename, contents) or raise 400."""
        if not file.filename:
            raise HTTPException(status_code=400, detail="No filename provided")

        contents: bytes = await file.read()
        problem = upload_problem(
            file.filename,
            contents,
            settings.ALLOWED_EXTENSIONS,
            settings.MAX_UPLOAD_SIZE_MB,
        )
        if problem:
            logger.info("Upload rejected: %s (%s)", file.filename, problem)
            raise HTTPException(status_code=400, detail=problem)
        return file.filename, contents

    async def _store(self, filename: str, contents: bytes) -> str:
        settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
        file_path = settings.UPLOAD_DIR / f"{uuid.uuid4()}_{Path(filename).name}"
        await asyncio.to_thread(_write_file_sync, file_path, contents)
        return str(file_path)

    def _submit(self, file_path: str, filename: str, owner_id: str) -> str:
        try:
            return self.queue.submit(file_path, filename, owner_id)
        except QueueFullError as e:
            Path(file_path).unlink(missing_ok=True)
            raise HTTPException(status_code=429, detail=str(e)) from e

    # ── Submission ────────────────────────────────────────

    async def upload(self, file: UploadFile, owner_id: str) -> JobSubmitResponse:
        filename, contents = await self._read_validated(file)
        file_path = await self._store(filename, contents)
        job_id = self._submit(file_path, filename, owner_id)
        return JobSubmitResponse(job_id=job_id)

    async def upload_batch(
        self,
        files: list[UploadFile],
        owner_id: str,
    ) -> BatchSubmitResponse:
        """All files are validated before any is queued; one bad file rejects the batch."""
        if not files:
            raise HTTPException(status_code=400, detail="No files provided")
        validated = [await self._read_validated(f) for f in files]

        job_ids: list[str] = []
        for filename, contents in validated:
            file_path = await self._store(filename, contents)
            job_ids.append(self._submit(file_path, filename, owner_id))
        logger.info("Batch upload queued %d jobs for %s", len(job_ids), owner_id)
        return BatchSubmitResponse(total=len(job_ids), job_ids=job_ids)

    # ── Queries ───────────────────────────────────────────

    def get_job(self, job_id: str, owner_id: str) -> JobResponse:
        return JobResponse.model_validate(self._owned_job(job_id, owner_id))

    def list_jobs(self, owner_id: str) -> JobListResponse:
        jobs = self.queue.get_jobs_for(owner_id)
        return JobListResponse(
            total=len(jobs),
            jobs=[JobResponse.model_validate(j) for j in jobs],
        )

    def stats(self) -> QueueStats:
        return self.queue.stats()

    def _owned_job(self, job_id: str, owner_id: str) -> Job:
        job = self.queue.get_job(job_id)
        if job is None or job.owner_id != owner_id:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        return job

    # ── Operator actions ──────────────────────────────────

    def cancel(self, job_id: str, owner_id: str) -> JobResponse:
        job = self._owned_job(job_id, owner_id)
        if not self.queue.cancel(job_id):
            raise HTTPException(
                status_code=409,
                detail=f"Only pending jobs can be cancelled (job is {job.status.value})",
            )
        return JobResponse.model_validate(job)

    def retry(self, job_id: str, owner_id: str) -> JobResponse:
        job = self._owned_job(job_id, owner_id)
        # Failed and cancelled jobs have had their upload deleted
        if not Path(job.file_path).exists():
            raise HTTPException(
                status_code=409,
                detail="The uploaded file is no longer available; submit it again",
            )
        if not self.queue.retry(job_id):
            raise HTTPException(
                status_code=409,
                detail=f"Only failed jobs can be retried (job is {job.status.value})",
            )
        return JobResponse.model_validate(job)
