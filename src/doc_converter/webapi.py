import asyncio
import logging
import tempfile
import time
from pathlib import Path

from fastapi import FastAPI, File, HTTPException, Request, UploadFile, WebSocket, WebSocketDisconnect, status
from fastapi.responses import FileResponse, JSONResponse, Response

from doc_converter import __version__
from doc_converter.config import Settings
from doc_converter.conversion import (
    ConversionService,
    ConverterGateway,
    Job,
    JobStatus,
    LibreOfficeConverter,
    LocalWorkspace,
    ObserverRegistry,
    RetentionSweeper,
    SqlJobStore,
    validate_upload,
)
from doc_converter.errors import (
    JobNotDeletable,
    JobNotFound,
    JobStoreError,
    ServiceUnavailable,
    UploadRejected,
    UploadTooLarge,
)
from doc_converter.logging_utils import setup_logging

logger = logging.getLogger(__name__)

CHUNK = 1024 * 1024
# Uploads stay in memory up to this size, then spill to disk
SPOOL_MAX_BYTES = 8 * 1024 * 1024


def _job_links(job: Job) -> list[dict[str, str]]:
    links = [{"href": f"/converts/{job.id}", "rel": "self", "method": "GET"}]
    if job.status == JobStatus.COMPLETE and job.converted_file:
        links.append({"href": f"/convert-outcomes/{job.id}", "rel": "download", "method": "GET"})
    return links


def _not_found(job_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": f"job {job_id} not found"})


async def _spool_upload(file: UploadFile, max_upload_mb: int) -> tempfile.SpooledTemporaryFile:
    """Copy the request body into a spooled file the lifecycle run can read after the response."""
    spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES)
    size_bytes = 0
    max_bytes = max_upload_mb * 1024 * 1024
    try:
        while True:
            chunk = await file.read(CHUNK)
            if not chunk:
                break
            size_bytes += len(chunk)
            if size_bytes > max_bytes:
                raise UploadTooLarge(max_upload_mb)
            spool.write(chunk)
    except BaseException:
        spool.close()
        raise
    spool.seek(0)
    return spool


def create_app(settings: Settings | None = None, converter: ConverterGateway | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)

    app = FastAPI(
        title="Document Converter",
        version=__version__,
        description=(
            "Converts uploaded office documents (DOCX, XLSX, ODT) to HTML and "
            "streams job-status changes to WebSocket observers."
        ),
    )

    store = SqlJobStore(settings.database_url)
    workspace = LocalWorkspace(settings.temp_dir)
    registry = ObserverRegistry()
    service = ConversionService(
        store=store,
        workspace=workspace,
        converter=converter or LibreOfficeConverter(settings.converter_binary, timeout=settings.job_timeout_sec),
        registry=registry,
        recent_limit=settings.recent_jobs_limit,
    )
    sweeper = RetentionSweeper(
        store,
        workspace,
        interval=settings.cleanup_interval,
        retention=settings.retention_period,
        registry=registry,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.registry = registry
    app.state.service = service
    app.state.sweeper = sweeper

    @app.middleware("http")
    async def _access_log(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)
        client = request.client.host if request.client else "-"
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} {duration_ms}ms client={client}"
        )
        return response

    @app.exception_handler(JobStoreError)
    async def _store_error(request: Request, exc: JobStoreError) -> JSONResponse:
        logger.error(f"Job store error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": {"code": "store_error", "message": "internal server error"}})

    @app.on_event("startup")
    async def _startup() -> None:
        workspace.ensure_root()
        await asyncio.to_thread(store.init)
        sweeper.start()
        logger.info(f"Document converter started (temp dir {workspace.root})")

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await sweeper.stop()
        await service.shutdown(settings.shutdown_grace_sec)
        await registry.reset()
        store.close()

    @app.get("/health")
    def health() -> dict[str, str]:
        """Basic health check endpoint."""
        return {"status": "ok"}

    @app.get("/converts")
    async def list_converts() -> JSONResponse:
        jobs = await service.list_jobs()
        return JSONResponse(content=[job.to_dict() for job in jobs])

    @app.post("/converts", status_code=status.HTTP_202_ACCEPTED)
    async def create_convert(file: UploadFile = File(...)) -> JSONResponse:
        """Create a conversion job from an uploaded document.

        Accepts multipart/form-data with a single required part named "file"
        holding a .docx, .xlsx or .odt document with its matching content type.
        Returns 202 Accepted with the job id; progress arrives over /ws.
        """
        try:
            validate_upload(file.filename or "", file.content_type)
        except UploadRejected as e:
            logger.warning(f"Rejected upload {file.filename} ({file.content_type}): {e}")
            raise HTTPException(status_code=400, detail={"code": "invalid_file_type", "message": str(e)})

        try:
            spool = await _spool_upload(file, settings.max_upload_mb)
        except UploadTooLarge as e:
            logger.warning(f"Rejected upload {file.filename}: {e}")
            raise HTTPException(status_code=413, detail={"code": "payload_too_large", "message": str(e)})

        try:
            job = await service.submit(file.filename or "", file.content_type, spool)
        except UploadRejected as e:
            spool.close()
            logger.warning(f"Rejected upload {file.filename} ({file.content_type}): {e}")
            raise HTTPException(status_code=400, detail={"code": "invalid_file_type", "message": str(e)})
        except ServiceUnavailable as e:
            spool.close()
            raise HTTPException(status_code=503, detail={"code": "unavailable", "message": str(e)})
        except BaseException:
            spool.close()
            raise

        headers = {"Location": f"/converts/{job.id}"}
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content={"id": job.id}, headers=headers)

    @app.get("/converts/{job_id}")
    async def get_convert(job_id: str) -> JSONResponse:
        try:
            job = await service.get_job(job_id)
        except JobNotFound:
            raise _not_found(job_id)
        body = job.to_dict()
        body["links"] = _job_links(job)
        return JSONResponse(content=body)

    @app.get("/convert-outcomes/{job_id}")
    async def download_convert(job_id: str) -> FileResponse:
        try:
            job = await service.get_job(job_id)
        except JobNotFound:
            raise _not_found(job_id)
        if job.status != JobStatus.COMPLETE or not job.converted_file:
            raise HTTPException(status_code=404, detail={"code": "not_ready", "message": "conversion not complete"})
        path = Path(job.converted_file)
        if not path.is_file():
            logger.error(f"Converted file for job {job_id} missing at {path}")
            raise HTTPException(status_code=404, detail={"code": "not_found", "message": "file not found"})
        return FileResponse(path, media_type="text/html", filename=path.name)

    @app.delete("/converts/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_convert(job_id: str) -> Response:
        try:
            await service.delete_job(job_id)
        except JobNotFound:
            raise _not_found(job_id)
        except JobNotDeletable as e:
            raise HTTPException(status_code=403, detail={"code": "in_progress", "message": str(e)})
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.websocket("/ws")
    async def observe(websocket: WebSocket) -> None:
        await websocket.accept()
        await registry.register(websocket)
        try:
            while True:
                text = await websocket.receive_text()
                if text.strip().lower() == "ping":
                    await registry.send(websocket, {"type": "pong"})
        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
        finally:
            await registry.unregister(websocket)

    return app


app = create_app()


def run() -> None:
    """Run the ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set HOST, PORT and
    RELOAD env vars to override.
    """
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "doc_converter.webapi:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        timeout_graceful_shutdown=int(settings.shutdown_grace_sec),
    )


if __name__ == "__main__":
    run()
