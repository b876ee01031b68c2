import asyncio
import logging
from datetime import datetime, timedelta

from .interfaces import JobStoreGateway, WorkspaceGateway
from .models import Job, utcnow
from .observers import ObserverRegistry

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Periodically remove jobs older than the retention window.

    Each tick deletes every job created before ``now - retention``, whatever
    its status: first the working directory, then the store record. A stop
    request is honored between jobs and between ticks; a job whose cleanup
    has started is always finished.
    """

    def __init__(
        self,
        store: JobStoreGateway,
        workspace: WorkspaceGateway,
        *,
        interval: float,
        retention: float,
        registry: ObserverRegistry | None = None,
    ) -> None:
        self._store = store
        self._workspace = workspace
        self._interval = interval
        self._retention = timedelta(seconds=retention)
        self._registry = registry
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._loop(), name="retention-sweeper")

    def request_stop(self) -> None:
        """Ask the loop to stop after the job cleanup in progress, if any."""
        self._stop.set()

    async def stop(self) -> None:
        """Request cancellation and wait for the current job cleanup to finish."""
        self.request_stop()
        if self._task is not None:
            await self._task
            self._task = None

    async def _loop(self) -> None:
        logger.info(
            f"Starting cleanup job (interval={self._interval}s, retention={self._retention})"
        )
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            if self._stop.is_set():
                break
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Cleanup cycle failed")
        logger.info("Stopping cleanup job")

    async def sweep_once(self, now: datetime | None = None) -> list[str]:
        """Run one cleanup cycle; returns the ids of the jobs removed."""
        cutoff = (now or utcnow()) - self._retention
        try:
            jobs = await asyncio.to_thread(self._store.list_older_than, cutoff)
        except Exception as e:
            logger.error(f"Failed to get old jobs: {e}")
            return []

        removed: list[str] = []
        for job in jobs:
            if self._stop.is_set():
                logger.info("Cleanup interrupted by shutdown; remaining jobs left for next run")
                break
            # Runs to completion in its worker thread even if this task is cancelled
            if await asyncio.to_thread(self._remove, job):
                removed.append(job.id)
                if self._registry is not None:
                    await self._registry.broadcast_job_delete(job.id)
        return removed

    def _remove(self, job: Job) -> bool:
        try:
            self._workspace.remove(job.id)
        except OSError as e:
            logger.error(f"Failed to remove job directory for {job.id}: {e}")
            return False
        try:
            self._store.delete(job.id)
        except Exception as e:
            logger.error(f"Failed to delete job {job.id} from store: {e}")
            return False
        logger.info(f"Cleaned up old job {job.id} (created {job.created_at.isoformat()})")
        return True
