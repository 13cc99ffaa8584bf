import logging

from fastapi import HTTPException

from invoice_intake.core.exceptions import PersistenceUnavailable
from invoice_intake.core.locks import KeyedLock
from invoice_intake.core.tax_id import normalize_gstin, validate_gstin_format
from invoice_intake.models.approved_record import ApprovedLineItem, ApprovedRecord
from invoice_intake.models.counterparty import Counterparty
from invoice_intake.repositories.unit_of_work import Repositories, RepositoryProvider
from invoice_intake.schemas.job import ApprovalRequest, ApprovalResponse, JobStatus
from invoice_intake.schemas.record import CandidateRecord
from invoice_intake.services.job_queue import JobQueue
from invoice_intake.services.template_service import TemplateService

logger = logging.getLogger(__name__)


class ApprovalService:
    """
    Reviewer sign-off for a completed job. The approved record is stored
    (once per job) and then folded into the counterparty's template.
    """

    def __init__(
        self,
        queue: JobQueue,
        repositories: RepositoryProvider,
        template_service: TemplateService,
    ) -> None:
        self.queue = queue
        self.repositories = repositories
        self.template_service = template_service
        self._locks = KeyedLock()

    async def approve(
        self,
        job_id: str,
        owner_id: str,
        request: ApprovalRequest,
    ) -> ApprovalResponse:
        job = self.queue.get_job(job_id)
        if job is None or job.owner_id != owner_id:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        if job.status != JobStatus.COMPLETED or job.result is None:
            raise HTTPException(
                status_code=409,
                detail=f"Only completed jobs can be approved (job is {job.status.value})",
            )

        record = request.corrected_record or job.result.record

        async with self._locks.hold(job_id):
            try:
                async with self.repositories() as repos:
                    existing = await repos.records.get_by_job_id(job_id)
                    if existing is not None:
                        logger.info("Job %s already approved as %s", job_id, existing.id)
                        return ApprovalResponse(
                            job_id=job_id,
                            record_id=existing.id,
                            counterparty_id=existing.counterparty_id,
                            learned=False,
                        )

                    counterparty = await self._resolve_counterparty(
                        repos, record, request.counterparty_id
                    )
                    approved = await repos.records.create(
                        ApprovedRecord(
                            job_id=job_id,
                            counterparty_id=counterparty.id,
                            invoice_number=record.invoice_number,
                            counterparty_name=record.counterparty_name or counterparty.name,
                            total_amount=record.total_amount,
                            record=record.model_dump(mode="json"),
                            line_items=[
                                ApprovedLineItem(name=item.name.strip(), hsn_code=item.hsn_code)
                                for item in record.items
                                if item.name.strip()
                            ],
                        )
                    )
            except PersistenceUnavailable as e:
                logger.error("Approval of job %s failed: %s", job_id, e)
                raise HTTPException(status_code=503, detail="Database unavailable") from e

        template = await self.template_service.learn(
            record,
            counterparty.id,
            was_accurate=request.was_accurate,
            record_id=job_id,
        )
        logger.info(
            "Job %s approved as %s for counterparty %s (template learned: %s)",
            job_id,
            approved.id,
            counterparty.id,
            template is not None,
        )
        return ApprovalResponse(
            job_id=job_id,
            record_id=approved.id,
            counterparty_id=counterparty.id,
            learned=template is not None,
        )

    async def _resolve_counterparty(
        self,
        repos: Repositories,
        record: CandidateRecord,
        counterparty_id: str | None,
    ) -> Counterparty:
        if counterparty_id:
            counterparty = await repos.counterparties.get_by_id(counterparty_id)
            if counterparty is None:
                raise HTTPException(
                    status_code=404,
                    detail=f"Counterparty {counterparty_id} not found",
                )
            return counterparty

        tax_id = None
        if record.counterparty_tax_id and validate_gstin_format(record.counterparty_tax_id).valid:
            tax_id = normalize_gstin(record.counterparty_tax_id)

        counterparty = None
        if tax_id:
            counterparty = await repos.counterparties.find_by_tax_id(tax_id)
        if counterparty is None and record.counterparty_name:
            counterparty = await repos.counterparties.find_by_name(record.counterparty_name)
            if counterparty is not None and tax_id and not counterparty.tax_id:
                counterparty.tax_id = tax_id
                counterparty = await repos.counterparties.update(counterparty)
        if counterparty is not None:
            return counterparty

        if not record.counterparty_name:
            raise HTTPException(
                status_code=400,
                detail="Record has no supplier name; pass counterparty_id to approve it",
            )
        counterparty = await repos.counterparties.create(
            Counterparty(name=record.counterparty_name.strip(), tax_id=tax_id)
        )
        logger.info("New counterparty created on approval: %s", counterparty.id)
        return counterparty
