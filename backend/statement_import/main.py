import logging
from contextlib import asynccontextmanager
from typing import Optional, Union

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, Response, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .categorizer import CATEGORIES
from .config import Settings
from .coordinator import ImportCoordinator, UploadedFile
from .exceptions import FileTooLarge, JobNotFound, QueueUnavailable, StructuralError
from .jobs import ImportJobQueue
from .langfuse_tracer import LangfuseTracer
from .models import (
    ColumnMapping,
    ColumnsResponse,
    CommitSummary,
    ImportPreset,
    ImportRule,
    JobStatus,
    PreviewResult,
    QueuedCommit,
    SignConvention,
)
from .repository import JsonPresetStore, JsonRecordRepository, JsonRuleStore, RecordRepository

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    repository: Optional[RecordRepository] = None,
    job_queue: Optional[ImportJobQueue] = None,
    tracer: Optional[LangfuseTracer] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    job_queue = job_queue or ImportJobQueue(
        max_workers=settings.job_workers,
        max_finished=settings.job_max_finished,
        finished_ttl=settings.job_retention_seconds,
    )
    coordinator = ImportCoordinator(
        repository=repository or JsonRecordRepository(settings.data_dir),
        settings=settings,
        tracer=tracer or LangfuseTracer.from_env(),
        job_queue=job_queue,
        presets=JsonPresetStore(settings.data_dir),
        rules=JsonRuleStore(settings.data_dir),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if coordinator.tracer and coordinator.tracer.is_enabled():
            logger.info("Langfuse tracing enabled")
        yield
        job_queue.shutdown(wait=False)

    app = FastAPI(title="Statement Import API", lifespan=lifespan)
    app.state.settings = settings
    app.state.coordinator = coordinator

    # CORS middleware for the web client
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FileTooLarge)
    def _too_large(request: Request, exc: FileTooLarge) -> JSONResponse:
        return JSONResponse(status_code=413, content={"detail": exc.message})

    @app.exception_handler(StructuralError)
    def _structural(request: Request, exc: StructuralError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": exc.message})

    @app.exception_handler(JobNotFound)
    def _job_not_found(request: Request, exc: JobNotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": exc.message})

    @app.exception_handler(QueueUnavailable)
    def _queue_unavailable(request: Request, exc: QueueUnavailable) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": exc.message})

    register_routes(app)
    return app


def get_coordinator(request: Request) -> ImportCoordinator:
    return request.app.state.coordinator


def get_account_id(x_account_id: Optional[str] = Header(None)) -> str:
    """Account identity as established by the upstream auth layer."""
    if not x_account_id or not x_account_id.strip():
        raise HTTPException(status_code=401, detail="Missing account identity")
    return x_account_id.strip()


async def read_upload(
    request: Request, file: UploadFile, sheet_name: Optional[str] = None
) -> UploadedFile:
    """Read at most one byte past the limit so oversize files fail without a full read."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    limit = request.app.state.settings.max_file_bytes
    contents = await file.read(limit + 1)
    return UploadedFile(
        filename=file.filename,
        content=contents,
        content_type=file.content_type,
        sheet_name=sheet_name or None,
    )


def build_mapping(
    date_column: Optional[str],
    description_column: Optional[str],
    amount_column: Optional[str],
    type_column: Optional[str],
    category_column: Optional[str],
    note_column: Optional[str],
) -> ColumnMapping:
    return ColumnMapping(
        date=date_column or "",
        description=description_column or "",
        amount=amount_column or "",
        type=type_column or None,
        category=category_column or None,
        note=note_column or None,
    )


def register_routes(app: FastAPI):
    @app.get("/")
    def read_root():
        return {"message": "Statement Import API"}

    @app.get("/categories")
    def get_categories():
        """Get the fixed category taxonomy used by the categorizer"""
        return {"categories": CATEGORIES}

    @app.post("/import/columns", response_model=ColumnsResponse)
    async def detect_columns(
        request: Request,
        file: UploadFile = File(...),
        sheet_name: Optional[str] = Form(None),
        account_id: str = Depends(get_account_id),
        coordinator: ImportCoordinator = Depends(get_coordinator),
    ):
        """Inspect an uploaded file and suggest a column mapping"""
        upload = await read_upload(request, file, sheet_name)
        return await run_in_threadpool(coordinator.columns, account_id, upload)

    @app.post("/import/preview", response_model=PreviewResult)
    async def preview_import(
        request: Request,
        file: UploadFile = File(...),
        date_column: Optional[str] = Form(None),
        description_column: Optional[str] = Form(None),
        amount_column: Optional[str] = Form(None),
        type_column: Optional[str] = Form(None),
        category_column: Optional[str] = Form(None),
        note_column: Optional[str] = Form(None),
        sheet_name: Optional[str] = Form(None),
        preview_rows: Optional[int] = Form(None),
        sign_convention: Optional[SignConvention] = Form(None),
        account_id: str = Depends(get_account_id),
        coordinator: ImportCoordinator = Depends(get_coordinator),
    ):
        """Validate the whole file and return a capped preview; nothing is written"""
        upload = await read_upload(request, file, sheet_name)
        mapping = build_mapping(
            date_column, description_column, amount_column,
            type_column, category_column, note_column,
        )
        return await run_in_threadpool(
            coordinator.preview, account_id, upload, mapping, preview_rows, sign_convention
        )

    @app.post("/import/commit", response_model=Union[CommitSummary, QueuedCommit])
    async def commit_import(
        request: Request,
        file: UploadFile = File(...),
        date_column: Optional[str] = Form(None),
        description_column: Optional[str] = Form(None),
        amount_column: Optional[str] = Form(None),
        type_column: Optional[str] = Form(None),
        category_column: Optional[str] = Form(None),
        note_column: Optional[str] = Form(None),
        sheet_name: Optional[str] = Form(None),
        skip_duplicates: bool = Form(True),
        overwrite_duplicates: bool = Form(False),
        sign_convention: Optional[SignConvention] = Form(None),
        run_async: bool = False,
        account_id: str = Depends(get_account_id),
        coordinator: ImportCoordinator = Depends(get_coordinator),
    ):
        """Import every valid row; optionally as a background job"""
        upload = await read_upload(request, file, sheet_name)
        mapping = build_mapping(
            date_column, description_column, amount_column,
            type_column, category_column, note_column,
        )
        if run_async:
            job_id = await run_in_threadpool(
                coordinator.submit_commit,
                account_id,
                upload,
                mapping,
                skip_duplicates,
                overwrite_duplicates,
                sign_convention,
            )
            return QueuedCommit(job_id=job_id)
        return await run_in_threadpool(
            coordinator.commit,
            account_id,
            upload,
            mapping,
            skip_duplicates,
            overwrite_duplicates,
            sign_convention,
        )

    @app.get("/import/jobs/{job_id}", response_model=JobStatus)
    def get_job(
        job_id: str,
        account_id: str = Depends(get_account_id),
        coordinator: ImportCoordinator = Depends(get_coordinator),
    ):
        """Poll a background commit"""
        if coordinator.job_queue is None:
            raise QueueUnavailable("Background imports are not configured")
        return coordinator.job_queue.status(job_id, owner=account_id)

    @app.post("/import/presets")
    def save_preset(
        preset: ImportPreset,
        response: Response,
        account_id: str = Depends(get_account_id),
        coordinator: ImportCoordinator = Depends(get_coordinator),
    ):
        """Save a column mapping for files with the same header signature"""
        saved, created = coordinator.save_preset(account_id, preset)
        response.status_code = 201 if created else 200
        return {"preset": saved}

    @app.get("/rules")
    def list_rules(
        account_id: str = Depends(get_account_id),
        coordinator: ImportCoordinator = Depends(get_coordinator),
    ):
        """Rules applied to imported rows, in evaluation order"""
        return {"rules": coordinator.rules.list_rules(account_id)}

    @app.post("/rules")
    def save_rule(
        rule: ImportRule,
        response: Response,
        account_id: str = Depends(get_account_id),
        coordinator: ImportCoordinator = Depends(get_coordinator),
    ):
        """Create a rule, or replace the rule with the same id"""
        saved, created = coordinator.rules.save(account_id, rule)
        response.status_code = 201 if created else 200
        return {"rule": saved}

    @app.delete("/rules/{rule_id}")
    def delete_rule(
        rule_id: str,
        account_id: str = Depends(get_account_id),
        coordinator: ImportCoordinator = Depends(get_coordinator),
    ):
        if not coordinator.rules.delete(account_id, rule_id):
            raise HTTPException(status_code=404, detail="Rule not found")
        return {"deleted": True}


app = create_app()
