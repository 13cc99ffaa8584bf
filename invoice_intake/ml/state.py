from typing import Callable, Optional, TypedDict

from invoice_intake.schemas.record import CandidateRecord
from invoice_intake.schemas.template import AnomalyReport
from invoice_intake.schemas.validation import (
    CorrectionSuggestion,
    DuplicateCheck,
    ValidationResult,
)

# Called with a checkpoint percentage as the pipeline advances
ProgressReporter = Callable[[int], None]


class Checkpoint:
    """Job progress checkpoints, in pipeline order."""
    DEQUEUED = 10
    EXTRACTION_STARTED = 20
    EXTRACTION_DONE = 50
    VALIDATION_DONE = 70
    CHECKS_DONE = 85
    SUGGESTIONS_DONE = 95
    STORED = 100


class JobPipelineState(TypedDict):
    file_path: str
    filename: str
    record: Optional[CandidateRecord]
    validation: Optional[ValidationResult]
    duplicate_check: Optional[DuplicateCheck]
    counterparty_id: Optional[str]
    template_match: Optional[AnomalyReport]
    corrections: list[CorrectionSuggestion]
    # Internal failures of the checking stages, captured instead of raised
    processing_warnings: list[str]
