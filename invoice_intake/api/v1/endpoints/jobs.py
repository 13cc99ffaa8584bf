from fastapi import APIRouter, Body, Depends, File, UploadFile

from invoice_intake.core.dependencies import (
    get_approval_service,
    get_job_service,
    get_owner_id,
)
from invoice_intake.schemas.job import (
    ApprovalRequest,
    ApprovalResponse,
    BatchSubmitResponse,
    JobListResponse,
    JobResponse,
    JobSubmitResponse,
    QueueStats,
)
from invoice_intake.services.approval_service import ApprovalService
from invoice_intake.services.job_service import JobService

router = APIRouter()


@router.post(
    "/upload",
    response_model=JobSubmitResponse,
    summary="Queue one invoice for processing",
    status_code=202,
)
async def upload_invoice(
    file: UploadFile = File(...),
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
) -> JobSubmitResponse:
    """
    Validate and store the file, then return the job id at once.
    Poll GET /jobs/{job_id} for progress and the result.
    """
    return await service.upload(file, owner_id)


@router.post(
    "/batch",
    response_model=BatchSubmitResponse,
    summary="Queue several invoices for processing",
    status_code=202,
)
async def upload_batch(
    files: list[UploadFile] = File(...),
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
) -> BatchSubmitResponse:
    return await service.upload_batch(files, owner_id)


@router.get(
    "/",
    response_model=JobListResponse,
    summary="List the caller's jobs",
)
async def list_jobs(
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
) -> JobListResponse:
    return service.list_jobs(owner_id)


@router.get(
    "/stats",
    response_model=QueueStats,
    summary="Queue statistics",
)
async def queue_stats(
    service: JobService = Depends(get_job_service),
) -> QueueStats:
    return service.stats()


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get a job's status, progress and result",
)
async def get_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
) -> JobResponse:
    return service.get_job(job_id, owner_id)


@router.post(
    "/{job_id}/cancel",
    response_model=JobResponse,
    summary="Cancel a pending job",
)
async def cancel_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
) -> JobResponse:
    return service.cancel(job_id, owner_id)


@router.post(
    "/{job_id}/retry",
    response_model=JobResponse,
    summary="Re-queue a failed job",
)
async def retry_job(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    service: JobService = Depends(get_job_service),
) -> JobResponse:
    return service.retry(job_id, owner_id)


@router.post(
    "/{job_id}/approve",
    response_model=ApprovalResponse,
    summary="Approve a completed job and learn from it",
)
async def approve_job(
    job_id: str,
    data: ApprovalRequest | None = Body(None),
    owner_id: str = Depends(get_owner_id),
    service: ApprovalService = Depends(get_approval_service),
) -> ApprovalResponse:
    """
    Store the reviewed record and update the supplier's template.
    Approving the same job twice is a no-op.
    """
    return await service.approve(job_id, owner_id, data or ApprovalRequest())
