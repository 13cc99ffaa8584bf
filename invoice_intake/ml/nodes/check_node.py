import logging

from invoice_intake.ml.state import Checkpoint, JobPipelineState, ProgressReporter
from invoice_intake.schemas.validation import DuplicateCheck
from invoice_intake.services.correction_service import CorrectionService
from invoice_intake.services.template_service import TemplateService

logger = logging.getLogger(__name__)


def make_check_node(
    template_service: TemplateService,
    correction_service: CorrectionService,
    report_progress: ProgressReporter,
):
    """Duplicate check, then template matching when the counterparty is known."""

    async def check_node(state: JobPipelineState) -> dict:
        record = state["record"]
        warnings = list(state["processing_warnings"])
        duplicate_check = DuplicateCheck()
        counterparty_id = None
        template_match = None

        try:
            duplicate_check = await correction_service.check_duplicate(record)
        except Exception as e:
            logger.error("Duplicate check crashed for %s: %s", state["filename"], e, exc_info=True)
            warnings.append(f"Duplicate check could not be completed: {e}")

        try:
            counterparty_id = await correction_service.resolve_counterparty_id(record)
            if counterparty_id:
                template_match = await template_service.match(record, counterparty_id)
                if not template_match.matches:
                    logger.warning(
                        "Template anomalies for %s (%s): %s",
                        state["filename"],
                        counterparty_id,
                        template_match.anomalies,
                    )
        except Exception as e:
            logger.error("Template match crashed for %s: %s", state["filename"], e, exc_info=True)
            warnings.append(f"Template match could not be completed: {e}")

        report_progress(Checkpoint.CHECKS_DONE)
        return {
            "duplicate_check": duplicate_check,
            "counterparty_id": counterparty_id,
            "template_match": template_match,
            "processing_warnings": warnings,
        }

    return check_node
