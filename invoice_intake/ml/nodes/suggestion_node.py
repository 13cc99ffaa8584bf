import logging

from invoice_intake.ml.state import Checkpoint, JobPipelineState, ProgressReporter
from invoice_intake.services.correction_service import CorrectionService

logger = logging.getLogger(__name__)


def make_suggestion_node(
    correction_service: CorrectionService,
    report_progress: ProgressReporter,
):

    async def suggestion_node(state: JobPipelineState) -> dict:
        warnings = list(state["processing_warnings"])
        corrections = []
        try:
            corrections = await correction_service.suggest(
                state["record"], state["validation"]
            )
        except Exception as e:
            logger.error("Suggestions crashed for %s: %s", state["filename"], e, exc_info=True)
            warnings.append(f"Correction suggestions could not be generated: {e}")

        report_progress(Checkpoint.SUGGESTIONS_DONE)
        return {"corrections": corrections, "processing_warnings": warnings}

    return suggestion_node
