import logging

from invoice_intake.ml.state import Checkpoint, JobPipelineState, ProgressReporter
from invoice_intake.schemas.validation import ValidationResult
from invoice_intake.services.validation_service import validate_record

logger = logging.getLogger(__name__)


def make_validation_node(report_progress: ProgressReporter):

    def validation_node(state: JobPipelineState) -> dict:
        record = state["record"]
        try:
            validation = validate_record(record)
        except Exception as e:
            # A scoring bug must not abort an otherwise processable record;
            # it surfaces as a hard error so the record goes to manual review.
            logger.error("Validation crashed for %s: %s", state["filename"], e, exc_info=True)
            validation = ValidationResult(
                valid=False,
                errors=[f"Validation could not be completed: {e}"],
            )

        if validation.errors:
            logger.warning(
                "Validation found %d errors for %s: %s",
                len(validation.errors),
                state["filename"],
                validation.errors,
            )
        else:
            logger.info(
                "Validation passed for %s (confidence=%d, auto_approve=%s)",
                state["filename"],
                validation.confidence_score,
                validation.can_auto_approve,
            )
        report_progress(Checkpoint.VALIDATION_DONE)
        return {"validation": validation}

    return validation_node
