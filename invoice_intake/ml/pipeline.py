import logging

from langgraph.graph import StateGraph, END

from invoice_intake.core.config import settings
from invoice_intake.ml.nodes.check_node import make_check_node
from invoice_intake.ml.nodes.extraction_node import make_extraction_node
from invoice_intake.ml.nodes.suggestion_node import make_suggestion_node
from invoice_intake.ml.nodes.validation_node import make_validation_node
from invoice_intake.ml.state import JobPipelineState, ProgressReporter
from invoice_intake.schemas.job import JobResult
from invoice_intake.services.correction_service import CorrectionService
from invoice_intake.services.extraction_service import IExtractionAdapter
from invoice_intake.services.template_service import TemplateService

logger = logging.getLogger(__name__)


def build_pipeline(
    adapter: IExtractionAdapter,
    template_service: TemplateService,
    correction_service: CorrectionService,
    report_progress: ProgressReporter,
    extraction_timeout: float | None = None,
):
    """
    extract -> validate -> check (duplicates, template match) -> suggest

    Built per job so every node reports progress for that job's reporter.
    Only extraction may raise; the other nodes capture their failures.
    """
    graph = StateGraph(JobPipelineState)

    graph.add_node(
        "extract",
        make_extraction_node(
            adapter,
            report_progress,
            extraction_timeout or settings.EXTRACTION_TIMEOUT_SECONDS,
        ),
    )
    graph.add_node("validate", make_validation_node(report_progress))
    graph.add_node(
        "check",
        make_check_node(template_service, correction_service, report_progress),
    )
    graph.add_node(
        "suggest",
        make_suggestion_node(correction_service, report_progress),
    )

    graph.set_entry_point("extract")
    graph.add_edge("extract", "validate")
    graph.add_edge("validate", "check")
    graph.add_edge("check", "suggest")
    graph.add_edge("suggest", END)

    return graph.compile()


class JobPipeline:
    """Runs one document through the compiled graph and bundles the result."""

    def __init__(
        self,
        adapter: IExtractionAdapter,
        template_service: TemplateService,
        correction_service: CorrectionService,
        extraction_timeout: float | None = None,
    ) -> None:
        self.adapter = adapter
        self.template_service = template_service
        self.correction_service = correction_service
        self.extraction_timeout = extraction_timeout

    async def run(
        self,
        file_path: str,
        filename: str,
        report_progress: ProgressReporter,
    ) -> JobResult:
        logger.info("Starting pipeline for: %s", filename)
        pipeline = build_pipeline(
            self.adapter,
            self.template_service,
            self.correction_service,
            report_progress,
            self.extraction_timeout,
        )
        initial_state: JobPipelineState = {
            "file_path": file_path,
            "filename": filename,
            "record": None,
            "validation": None,
            "duplicate_check": None,
            "counterparty_id": None,
            "template_match": None,
            "corrections": [],
            "processing_warnings": [],
        }
        state: JobPipelineState = await pipeline.ainvoke(initial_state)

        result = JobResult(
            filename=filename,
            record=state["record"],
            validation=state["validation"],
            duplicate_check=state["duplicate_check"],
            template_match=state["template_match"],
            corrections=state["corrections"],
            counterparty_id=state["counterparty_id"],
            processing_warnings=state["processing_warnings"],
        )
        logger.info(
            "Pipeline completed for %s: confidence=%d auto_approve=%s corrections=%d",
            filename,
            result.validation.confidence_score,
            result.validation.can_auto_approve,
            len(result.corrections),
        )
        return result
