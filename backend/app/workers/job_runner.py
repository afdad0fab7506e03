"""Background job runner using asyncio."""
import asyncio
import logging
from typing import Callable, Dict, Optional

from app.config import settings

logger = logging.getLogger(__name__)


class JobRunner:
    """
    Async background job runner.

    Jobs run as detached tasks so the request that started them can return
    immediately. Each job is bounded by a wall-clock timeout; handlers own
    their persisted status and cleanup, the runner only schedules, times out
    and logs.
    """

    def __init__(self, timeout_sec: Optional[float] = None):
        self._running_jobs: Dict[str, asyncio.Task] = {}
        self._job_handlers: Dict[str, Callable] = {}
        self.timeout_sec = timeout_sec

    def register_handler(self, job_type: str, handler: Callable):
        """Register a handler for a job type."""
        self._job_handlers[job_type] = handler

    async def start_job(
        self,
        job_key: str,
        job_type: str,
        **kwargs
    ) -> bool:
        """
        Start a background job.

        Args:
            job_key: Unique key of the job (e.g. "montage:12")
            job_type: Type of job to run
            **kwargs: Arguments to pass to the job handler

        Returns:
            True if job started successfully
        """
        if job_key in self._running_jobs:
            logger.warning(f"Job {job_key} is already running")
            return False

        handler = self._job_handlers.get(job_type)
        if not handler:
            logger.error(f"No handler registered for job type: {job_type}")
            return False

        task = asyncio.create_task(
            self._run_job(job_key, handler, **kwargs)
        )
        self._running_jobs[job_key] = task

        return True

    async def _run_job(
        self,
        job_key: str,
        handler: Callable,
        **kwargs
    ):
        """Run a job under the wall-clock timeout."""
        timeout = self.timeout_sec if self.timeout_sec is not None else settings.job_timeout_sec
        try:
            await asyncio.wait_for(handler(**kwargs), timeout=timeout)
            logger.info(f"Job {job_key} finished")

        except asyncio.TimeoutError:
            logger.error(f"Job {job_key} timed out after {timeout:.0f}s")

        except asyncio.CancelledError:
            logger.info(f"Job {job_key} was cancelled")

        except Exception as e:
            logger.exception(f"Job {job_key} failed: {e}")

        finally:
            self._running_jobs.pop(job_key, None)

    async def wait_for(self, job_key: str):
        """Wait until a running job has finished."""
        task = self._running_jobs.get(job_key)
        if task:
            await asyncio.gather(task, return_exceptions=True)

    async def cancel_job(self, job_key: str) -> bool:
        """Cancel a running job."""
        task = self._running_jobs.get(job_key)
        if task:
            task.cancel()
            return True
        return False

    def is_job_running(self, job_key: str) -> bool:
        """Check if a job is currently running."""
        return job_key in self._running_jobs

    async def shutdown(self):
        """Cancel all running jobs."""
        for job_key, task in self._running_jobs.items():
            task.cancel()

        if self._running_jobs:
            await asyncio.gather(
                *self._running_jobs.values(),
                return_exceptions=True
            )

        self._running_jobs.clear()


# Global job runner instance
job_runner = JobRunner()
