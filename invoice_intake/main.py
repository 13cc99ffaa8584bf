import logging
import sys
import uvicorn
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from invoice_intake.core.config import settings
from invoice_intake.core.database import Base, engine

# Send app logs (including Docling) to the terminal; uvicorn often doesn't show them otherwise
_app_log = logging.getLogger("invoice_intake")
_app_log.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
if not _app_log.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    _app_log.addHandler(_handler)

from invoice_intake.models import counterparty  # noqa: F401 - registers models
from invoice_intake.models import approved_record  # noqa: F401 - registers models

from invoice_intake.api.v1.endpoints import jobs as job_endpoints
from invoice_intake.api.v1.endpoints import templates as template_endpoints
from invoice_intake.core.cache import build_cache
from invoice_intake.ml.pipeline import JobPipeline
from invoice_intake.repositories.unit_of_work import open_repositories
from invoice_intake.services.approval_service import ApprovalService
from invoice_intake.services.correction_service import CorrectionService
from invoice_intake.services.extraction_service import LLMExtractionAdapter
from invoice_intake.services.job_queue import JobQueue
from invoice_intake.services.template_service import TemplateService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database connected successfully")
    except (SQLAlchemyError, OSError) as e:
        # Templates, duplicates and suggestions degrade to "no data" until it is back
        logger.error("Database unavailable at startup: %s", e)

    cache = build_cache()
    template_service = TemplateService(open_repositories, cache)
    correction_service = CorrectionService(open_repositories)
    pipeline = JobPipeline(LLMExtractionAdapter(), template_service, correction_service)
    queue = JobQueue(pipeline.run)

    app.state.job_queue = queue
    app.state.template_service = template_service
    app.state.approval_service = ApprovalService(queue, open_repositories, template_service)

    await queue.start()
    yield
    await queue.stop()
    await cache.close()
    await engine.dispose()
    logger.info("Disconnected from the database")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

if settings.CORS_ORIGINS.strip():
    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(
    job_endpoints.router,
    prefix="/api/v1/jobs",
    tags=["jobs"],
)

app.include_router(
    template_endpoints.router,
    prefix="/api/v1/templates",
    tags=["templates"],
)


@app.get("/")
def root():
    return {
        "app_name": settings.APP_NAME,
        "app_version": settings.APP_VERSION,
        "debug": settings.DEBUG,
    }


@app.get("/health")
async def health(request: Request):
    """
    503 when the workers are not running. An unreachable database only
    degrades the service: extraction still runs, approvals fail.
    """
    queue: JobQueue | None = getattr(request.app.state, "job_queue", None)
    workers_ok = queue is not None and queue.running
    body = {
        "status": "ok" if workers_ok else "unhealthy",
        "workers": "ok" if workers_ok else "stopped",
        "database": "ok",
    }
    if queue is not None:
        body["queue"] = queue.stats().model_dump()

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Health check: database unreachable: %s", e)
        body["database"] = "error"
        if workers_ok:
            body["status"] = "degraded"

    return JSONResponse(status_code=200 if workers_ok else 503, content=body)


def start():
    uvicorn.run("invoice_intake.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
