from fastapi import Depends, Header, Request

from invoice_intake.services.approval_service import ApprovalService
from invoice_intake.services.job_queue import JobQueue
from invoice_intake.services.job_service import JobService
from invoice_intake.services.template_service import TemplateService

DEFAULT_OWNER_ID = "anonymous"


# Long-lived components are created once in the lifespan and kept on app.state.

def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def get_template_service(request: Request) -> TemplateService:
    return request.app.state.template_service


def get_approval_service(request: Request) -> ApprovalService:
    return request.app.state.approval_service


def get_job_service(
    queue: JobQueue = Depends(get_job_queue),
) -> JobService:
    return JobService(queue)


def get_owner_id(
    x_user_id: str | None = Header(None, description="Id of the submitting user"),
) -> str:
    return (x_user_id or "").strip() or DEFAULT_OWNER_ID
