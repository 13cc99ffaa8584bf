import asyncio
import logging

from invoice_intake.core.exceptions import ExtractionFailure
from invoice_intake.ml.state import Checkpoint, JobPipelineState, ProgressReporter
from invoice_intake.services.extraction_service import IExtractionAdapter

logger = logging.getLogger(__name__)


def make_extraction_node(
    adapter: IExtractionAdapter,
    report_progress: ProgressReporter,
    timeout_seconds: float,
):
    """
    Extraction is the only stage whose failure ends the job, so unlike the
    other nodes this one lets ExtractionFailure propagate out of the graph.
    A hung adapter call is cut off after timeout_seconds.
    """

    async def extraction_node(state: JobPipelineState) -> dict:
        report_progress(Checkpoint.EXTRACTION_STARTED)
        logger.info("Starting extraction for %s", state["filename"])
        try:
            record = await asyncio.wait_for(
                adapter.extract(state["file_path"]),
                timeout=timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ExtractionFailure(
                f"Extraction timed out after {timeout_seconds:g}s",
                {"file_path": state["file_path"]},
            ) from e
        report_progress(Checkpoint.EXTRACTION_DONE)
        return {"record": record}

    return extraction_node
