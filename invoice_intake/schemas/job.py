import enum
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict

from invoice_intake.schemas.record import CandidateRecord
from invoice_intake.schemas.template import AnomalyReport
from invoice_intake.schemas.validation import (
    CorrectionSuggestion,
    DuplicateCheck,
    ValidationResult,
)


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobResult(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    filename: str
    record: CandidateRecord
    validation: ValidationResult
    duplicate_check: DuplicateCheck = Field(default_factory=DuplicateCheck)
    # None when the counterparty is not known yet
    template_match: Optional[AnomalyReport] = None
    corrections: list[CorrectionSuggestion] = Field(default_factory=list)
    counterparty_id: Optional[str] = None
    # Checking stages that failed internally; the rest of the result is still usable
    processing_warnings: list[str] = Field(default_factory=list)


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    filename: str
    owner_id: str
    status: JobStatus
    progress: int = Field(ge=0, le=100)
    result: Optional[JobResult] = None
    error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class JobListResponse(BaseModel):
    total: int = Field(ge=0)
    jobs: list[JobResponse]


class JobSubmitResponse(BaseModel):
    job_id: str
    status: JobStatus = JobStatus.PENDING


class BatchSubmitResponse(BaseModel):
    total: int = Field(ge=0)
    job_ids: list[str]


class QueueStats(BaseModel):
    total: int = Field(ge=0)
    pending: int = Field(ge=0)
    processing: int = Field(ge=0)
    completed: int = Field(ge=0)
    failed: int = Field(ge=0)
    active_workers: int = Field(ge=0)


class ApprovalRequest(BaseModel):
    """Schema for approving a completed job's record."""
    counterparty_id: Optional[str] = Field(
        None,
        description="Known counterparty id; resolved from the record's GSTIN or name when omitted",
    )
    was_accurate: bool = Field(
        True,
        description="False when the reviewer had to correct the extracted data",
    )
    corrected_record: Optional[CandidateRecord] = Field(
        None,
        description="Reviewer-corrected record to learn from instead of the extracted one",
    )


class ApprovalResponse(BaseModel):
    job_id: str
    record_id: str
    counterparty_id: str
    learned: bool
