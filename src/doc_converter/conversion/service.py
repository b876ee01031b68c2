import asyncio
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO

from ..errors import JobNotDeletable, ServiceUnavailable, UploadRejected
from .interfaces import ConverterGateway, JobStoreGateway, WorkspaceGateway
from .models import Job, JobStatus, next_timestamp
from .observers import ObserverRegistry

logger = logging.getLogger(__name__)

# Accepted upload types: extension -> declared content type
ALLOWED_TYPES = {
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".odt": "application/vnd.oasis.opendocument.text",
}

ARTIFACT_MISSING = "Converted file not found after conversion"
DIR_PERMISSIONS_FAILED = "Failed to set directory permissions"
FILE_PERMISSIONS_FAILED = "Failed to set file permissions"


def validate_upload(filename: str, content_type: str | None) -> str:
    """Check an upload against the accepted types and return its safe basename.

    Raises UploadRejected when the extension is not accepted or the declared
    content type does not match the extension.
    """
    name = Path(filename or "").name
    ext = Path(name).suffix.lower()
    expected = ALLOWED_TYPES.get(ext)
    if not name or expected is None:
        raise UploadRejected(
            "Invalid file type. Allowed types: " + ", ".join(ALLOWED_TYPES)
        )
    declared = (content_type or "").split(";", 1)[0].strip().lower()
    if declared != expected:
        raise UploadRejected(f"Invalid content type {content_type or '(none)'} for {ext} file")
    return name


class ConversionService:
    """Core domain service orchestrating conversion jobs.

    This service is framework-agnostic. ``submit`` records a pending job and
    detaches one lifecycle run for it; ``run`` drives that job to ``complete``
    or ``failed``, persisting every transition before broadcasting it to the
    observer registry.
    """

    def __init__(
        self,
        store: JobStoreGateway,
        workspace: WorkspaceGateway,
        converter: ConverterGateway,
        registry: ObserverRegistry,
        *,
        recent_limit: int = 100,
    ) -> None:
        self._store = store
        self._workspace = workspace
        self._converter = converter
        self._registry = registry
        self._recent_limit = recent_limit
        self._tasks: set[asyncio.Task] = set()
        self._accepting = True

    @property
    def registry(self) -> ObserverRegistry:
        return self._registry

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # API used by HTTP controller to create a job from an upload
    async def submit(self, filename: str, content_type: str | None, source: BinaryIO) -> Job:
        """Validate the upload, persist a pending job and start its lifecycle run."""
        if not self._accepting:
            raise ServiceUnavailable("service is shutting down")
        name = validate_upload(filename, content_type)

        job = Job.new(str(uuid.uuid4()), name)
        await asyncio.to_thread(self._store.create, job)
        logger.info(f"Conversion job {job.id} created for {name}")

        task = asyncio.create_task(self.run(job.id, source, name), name=f"job-{job.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job

    async def get_job(self, job_id: str) -> Job:
        return await asyncio.to_thread(self._store.get, job_id)

    async def list_jobs(self) -> list[Job]:
        return await asyncio.to_thread(self._store.list_recent, self._recent_limit)

    async def delete_job(self, job_id: str) -> None:
        """Remove a finished job's files and record, then announce the deletion."""
        job = await asyncio.to_thread(self._store.get, job_id)
        if not job.is_terminal:
            logger.warning(f"Refusing to delete job {job_id} in status {job.status}")
            raise JobNotDeletable(job_id, job.status)

        try:
            await asyncio.to_thread(self._workspace.remove, job_id)
        except OSError as e:
            # Record removal proceeds regardless
            logger.error(f"Failed to remove working directory for job {job_id}: {e}")

        await asyncio.to_thread(self._store.delete, job_id)
        logger.info(f"Deleted job {job_id}")
        await self._registry.broadcast_job_delete(job_id)

    async def run(self, job_id: str, source: BinaryIO, original_filename: str) -> None:
        """Drive one pending job through conversion to a terminal state.

        Errors stay inside this job: anything unexpected is recorded as a
        ``failed`` transition and never propagates to the caller.
        """
        logger.info(f"Starting conversion of {original_filename} for job {job_id}")
        try:
            await self._run(job_id, source, original_filename)
        except Exception as e:
            logger.exception(f"Unexpected error while converting job {job_id}")
            await self._fail(job_id, str(e) or e.__class__.__name__)
        finally:
            try:
                source.close()
            except Exception as e:
                logger.debug(f"Closing upload for job {job_id} failed: {e}")

    async def _run(self, job_id: str, source: BinaryIO, original_filename: str) -> None:
        job = await asyncio.to_thread(self._store.get, job_id)
        await self._registry.broadcast_job_update(job)

        try:
            paths = await asyncio.to_thread(self._workspace.prepare, job_id)
        except OSError as e:
            logger.error(f"Failed to create working directory for job {job_id}: {e}")
            await self._fail(job_id, str(e))
            return

        name = Path(original_filename).name
        original_path = paths.original_path(name)
        try:
            await asyncio.to_thread(_save_upload, source, original_path)
        except OSError as e:
            logger.error(f"Failed to save original file {original_path} for job {job_id}: {e}")
            await self._fail(job_id, str(e))
            return

        outcome = await asyncio.to_thread(self._converter.convert, original_path, paths.converted_dir)
        if not outcome.ok:
            logger.error(f"Conversion failed for job {job_id}: {outcome.diagnostic}")
            await self._fail(job_id, outcome.diagnostic)
            return
        logger.info(f"Conversion completed for job {job_id}")

        converted_path = paths.converted_path(name)
        if not await asyncio.to_thread(converted_path.is_file):
            logger.error(f"{ARTIFACT_MISSING}: expected {converted_path} for job {job_id}")
            await self._fail(job_id, ARTIFACT_MISSING)
            return

        try:
            await asyncio.to_thread(os.chmod, paths.converted_dir, 0o755)
        except OSError as e:
            logger.error(f"Failed to set permissions on {paths.converted_dir} for job {job_id}: {e}")
            await self._fail(job_id, DIR_PERMISSIONS_FAILED)
            return
        try:
            await asyncio.to_thread(os.chmod, converted_path, 0o644)
        except OSError as e:
            logger.error(f"Failed to set permissions on {converted_path} for job {job_id}: {e}")
            await self._fail(job_id, FILE_PERMISSIONS_FAILED)
            return

        await self._finish(job_id, JobStatus.COMPLETE, converted_file=str(converted_path))

    async def _fail(self, job_id: str, diagnostic: str) -> None:
        await self._finish(job_id, JobStatus.FAILED, error=diagnostic or "Conversion failed")

    async def _finish(self, job_id: str, status: str, *, error: str = "", converted_file: str = "") -> None:
        """Persist a terminal transition, then broadcast the stored record.

        Nothing is broadcast when the write fails, so observers only ever see
        committed state.
        """
        try:
            current = await asyncio.to_thread(self._store.get, job_id)
            await asyncio.to_thread(
                self._store.update,
                job_id,
                status=status,
                updated_at=next_timestamp(current.updated_at),
                error=error,
                converted_file=converted_file,
            )
            final = await asyncio.to_thread(self._store.get, job_id)
        except Exception as e:
            logger.error(f"Failed to record {status} for job {job_id}: {e}")
            return
        if status == JobStatus.FAILED:
            logger.info(f"Job {job_id} failed: {error}")
        else:
            logger.info(f"Job {job_id} complete: {converted_file}")
        await self._registry.broadcast_job_update(final)

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight lifecycle runs; returns False if some are still running."""
        pending = set(self._tasks)
        if not pending:
            return True
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(f"{len(still_running)} conversion job(s) still running after {timeout}s")
        return not still_running

    async def shutdown(self, timeout: float | None = None) -> bool:
        """Stop accepting uploads and give running jobs ``timeout`` seconds to finish."""
        self._accepting = False
        logger.info(f"Shutting down; waiting for {self.in_flight} conversion job(s)")
        return await self.drain(timeout)


def _save_upload(source: BinaryIO, dest: Path) -> None:
    with dest.open("wb") as f_out:
        shutil.copyfileobj(source, f_out)
