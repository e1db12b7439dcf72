from __future__ import annotations

from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional
import asyncio
from contextlib import asynccontextmanager
import json
import time
import uuid

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from src.api.errors import CoreError, ErrorKind, Result
from src.api.importer import ScoreFile, import_scores
from src.api.mixdown import MixdownEngine
from src.api.singers import SingerLibrary
from src.backend.config import Settings
from src.backend.logging_utils import (
    clear_log_context,
    configure_logging,
    get_logger,
    set_log_context,
)
from src.backend.progress import (
    CompositeProgressSink,
    FileProgressSink,
    LoggingProgressSink,
    MemoryProgressSink,
    build_progress_payload,
)
from src.backend.render import RenderCache, RenderOrchestrator
from src.backend.session import SessionStore
from src.phonemizer.registry import PhonemizerRegistry, default_registry
from src.project import ustx
from src.project.models import Project

STATUS_CODES = {
    ErrorKind.MISSING_INPUT: 400,
    ErrorKind.INVALID_PROJECT: 400,
    ErrorKind.NO_ACTIVE_PROJECT: 400,
    ErrorKind.UNSUPPORTED_FORMAT: 400,
    ErrorKind.PERMISSION_DENIED: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.DESTINATION_BUSY: 409,
    ErrorKind.RENDER_IN_PROGRESS: 409,
    ErrorKind.RENDER_CANCELLED: 409,
    ErrorKind.PAYLOAD_TOO_LARGE: 413,
    ErrorKind.EXPORT_WRITE_FAILED: 500,
    ErrorKind.RENDER_FAILED: 500,
}

UPLOAD_CHUNK_BYTES = 1024 * 1024


class FacadeError(Exception):
    """Carries a core failure out of a route handler."""

    def __init__(self, error: CoreError) -> None:
        super().__init__(str(error))
        self.error = error


class LoadRequest(BaseModel):
    filePath: Optional[str] = None
    ustxContent: Optional[str] = None


class ExportRequest(BaseModel):
    outputPath: Optional[str] = None


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    configure_logging()
    settings = settings or Settings.from_env()
    logger = get_logger("backend.api")

    sessions = SessionStore()
    singers = SingerLibrary(settings.singers_dir)
    phonemizers = default_registry()
    engine = MixdownEngine(
        sample_rate=settings.export_sample_rate,
        channels=settings.export_channels,
    )
    memory_progress = MemoryProgressSink()
    sinks = [LoggingProgressSink(), memory_progress]
    if settings.write_progress_file:
        sinks.append(FileProgressSink(settings.progress_path))
    renderer = RenderOrchestrator(
        sessions,
        engine,
        cache=RenderCache(settings.render_cache_dir),
        progress=CompositeProgressSink(sinks),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        logger.info(
            "backend_started data_dir=%s singers_dir=%s phonemizers=%s",
            settings.data_dir,
            settings.singers_dir,
            ",".join(phonemizers.identifiers()),
        )
        try:
            yield
        finally:
            if renderer.cancel_active():
                logger.info("backend_shutdown_cancelled_export")

    app = FastAPI(title="Vocal Session Backend", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.sessions = sessions
    app.state.singers = singers
    app.state.phonemizers = phonemizers
    app.state.renderer = renderer
    app.state.progress = memory_progress

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.monotonic()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        set_log_context(request_id=request_id)
        logger.debug("http_request_start method=%s path=%s", request.method, request.url.path)
        response = None
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
        finally:
            duration_ms = (time.monotonic() - start) * 1000.0
            logger.info(
                "http_request method=%s path=%s status=%s duration_ms=%.2f",
                request.method,
                request.url.path,
                getattr(response, "status_code", "error"),
                duration_ms,
            )
            clear_log_context()
        return response

    @app.exception_handler(FacadeError)
    async def handle_facade_error(request: Request, exc: FacadeError) -> JSONResponse:
        return _error_response(exc.error)

    @app.get("/api/project")
    async def project_status(request: Request) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": "ok", "message": "HTTP API is running"}
        summary = await request.app.state.sessions.status()
        if summary is not None:
            payload["currentProject"] = summary.to_payload()
        return payload

    @app.post("/api/project/load")
    async def load_project(request: Request, payload: LoadRequest) -> Dict[str, Any]:
        store: SessionStore = request.app.state.sessions
        library: SingerLibrary = request.app.state.singers
        if payload.ustxContent is not None:
            project = _unwrap(await asyncio.to_thread(_parse_ustx, payload.ustxContent, library))
        elif payload.filePath:
            project = _unwrap(await asyncio.to_thread(_read_ustx, payload.filePath, library))
        else:
            raise FacadeError(
                CoreError(ErrorKind.MISSING_INPUT, "Either filePath or ustxContent is required.")
            )
        summary = _unwrap(await store.load(project))
        return {"status": "ok", "project": summary.to_payload()}

    @app.post("/api/project/unload")
    async def unload_project(request: Request) -> Dict[str, Any]:
        unloaded = _unwrap(await request.app.state.sessions.unload())
        if not unloaded:
            return {"message": "nothing loaded"}
        return {"status": "ok"}

    @app.post("/api/project/export")
    async def export_project(request: Request, payload: ExportRequest) -> Dict[str, Any]:
        orchestrator: RenderOrchestrator = request.app.state.renderer
        report = _unwrap(await orchestrator.export(payload.outputPath or ""))
        return {"status": "ok", **report.to_payload()}

    @app.post("/api/project/export/cancel")
    async def cancel_export(request: Request) -> Dict[str, Any]:
        cancelled = request.app.state.renderer.cancel_active()
        return {"status": "ok", "cancelled": cancelled}

    @app.get("/api/project/progress")
    async def export_progress(request: Request) -> Dict[str, Any]:
        return build_progress_payload(request.app.state.progress.latest())

    @app.post("/api/project/convert")
    async def convert_scores(
        request: Request,
        files: Optional[List[UploadFile]] = File(None),
        voices: Optional[List[str]] = Form(None),
        phonemizers: Optional[List[str]] = Form(None),
        bpm: Optional[float] = Form(None),
    ) -> Dict[str, Any]:
        max_bytes = request.app.state.settings.max_upload_bytes
        score_files: List[ScoreFile] = []
        try:
            for upload in files or []:
                data = await _read_upload(upload, max_bytes)
                score_files.append(ScoreFile(name=upload.filename or "", data=data))
        finally:
            for upload in files or []:
                await upload.close()
        project = _unwrap(
            await asyncio.to_thread(
                import_scores,
                score_files,
                _form_list(voices),
                _form_list(phonemizers),
                bpm,
                singers=request.app.state.singers,
                phonemizers=request.app.state.phonemizers,
            )
        )
        return {"status": "ok", "serializedProject": ustx.dumps(project)}

    @app.get("/api/singers")
    async def list_singers(request: Request) -> Dict[str, Any]:
        library: SingerLibrary = request.app.state.singers
        return {"status": "ok", "singers": await asyncio.to_thread(library.list_singers)}

    @app.get("/api/phonemizers")
    async def list_phonemizers(request: Request) -> Dict[str, Any]:
        registry: PhonemizerRegistry = request.app.state.phonemizers
        return {"status": "ok", "phonemizers": registry.identifiers()}

    return app


def _unwrap(result: Result[Any]) -> Any:
    if result.error is not None:
        raise FacadeError(result.error)
    return result.value


def _error_response(error: CoreError) -> JSONResponse:
    status_code = STATUS_CODES.get(error.kind, 500)
    logger = get_logger("backend.api")
    if status_code >= 500:
        logger.error("request_failed kind=%s detail=%s", error.kind.value, error.detail)
    else:
        logger.info("request_rejected kind=%s detail=%s", error.kind.value, error.detail)
    return JSONResponse(status_code=status_code, content={"status": "error", **error.to_payload()})


def _parse_ustx(content: str, singers: SingerLibrary) -> Result[Project]:
    try:
        return Result.ok(ustx.loads(content, singers=singers))
    except ustx.ProjectFormatError as exc:
        return Result.fail(ErrorKind.INVALID_PROJECT, str(exc))


def _read_ustx(file_path: str, singers: SingerLibrary) -> Result[Project]:
    path = Path(file_path).expanduser()
    if not path.is_file():
        return Result.fail(ErrorKind.NOT_FOUND, f"Project file not found: {file_path}")
    try:
        return Result.ok(ustx.read(path, singers=singers))
    except ustx.ProjectFormatError as exc:
        return Result.fail(ErrorKind.INVALID_PROJECT, f"{path.name}: {exc}")
    except PermissionError as exc:
        return Result.fail(ErrorKind.PERMISSION_DENIED, f"Cannot read {path}: {exc}")
    except (OSError, UnicodeDecodeError) as exc:
        return Result.fail(ErrorKind.INVALID_PROJECT, f"Cannot read {path}: {exc}")


def _form_list(values: Optional[List[str]]) -> Optional[List[str]]:
    """Accept either repeated form fields or a single JSON array string.

    Empty and null entries are kept as "" so later entries stay bound to
    the same track index.
    """
    if values is None:
        return None
    if len(values) == 1 and values[0].strip().startswith("["):
        try:
            decoded = json.loads(values[0])
        except json.JSONDecodeError as exc:
            raise FacadeError(
                CoreError(ErrorKind.MISSING_INPUT, f"Malformed JSON array: {exc.msg}")
            ) from exc
        if not isinstance(decoded, list):
            raise FacadeError(CoreError(ErrorKind.MISSING_INPUT, "Expected a JSON array."))
        return ["" if item is None else str(item) for item in decoded]
    return list(values)


async def _read_upload(file: UploadFile, max_bytes: int) -> bytes:
    chunks: List[bytes] = []
    total = 0
    while True:
        chunk = await file.read(UPLOAD_CHUNK_BYTES)
        if not chunk:
            break
        total += len(chunk)
        if total > max_bytes:
            raise FacadeError(
                CoreError(
                    ErrorKind.PAYLOAD_TOO_LARGE,
                    f"{file.filename} exceeds the {max_bytes} byte upload limit.",
                )
            )
        chunks.append(chunk)
    return b"".join(chunks)


app = create_app()
