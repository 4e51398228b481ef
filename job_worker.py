#!/usr/bin/env python3
"""
Queue-driven job worker.

Each JobWorker consumes one queue and runs one job at a time: it does not
pop the next id until the current handler call has returned. Running several
topics concurrently means running several workers.
"""

from config import get_logger
from errors import JobAlreadyCompletedError
from job_queue import JobQueue
from jobs import JobHandler
from models import JobStatus
from repository import JobRepository
from telemetry import trace_span

# Module-specific logger
logger = get_logger("job_worker")


class JobWorker:
    def __init__(self, queue: JobQueue, job_repository: JobRepository, handler: JobHandler, name: str = "jobs"):
        self.queue = queue
        self.job_repository = job_repository
        self.handler = handler
        self.name = name
        self.processed = 0

    async def run(self) -> None:
        """Process job ids until the queue is closed.

        A job that another delivery already completed is skipped. Any other
        error while moving a job between states ends the loop.
        """
        logger.info(f"🚀 Worker {self.name} started")
        while True:
            job_id = await self.queue.pop()
            if job_id is None:
                break
            await self.process(job_id)
        logger.info(f"🛑 Worker {self.name} stopped after {self.processed} jobs")

    @trace_span(
        "job.process",
        tracer_name="jobs",
        attr_from_args=lambda self, job_id: {"job.id": job_id, "job.worker": self.name},
    )
    async def process(self, job_id: str) -> None:
        try:
            await self.job_repository.update(job_id, JobStatus.RUNNING)
        except JobAlreadyCompletedError:
            logger.info(f"Skipping job {job_id}: already completed")
            return

        job = await self.job_repository.get(job_id)

        try:
            await self.handler(job)
        except Exception as e:
            logger.error(f"❌ Job {job_id} ({job.job_type}) failed: {e}")
            await self.job_repository.update(job_id, JobStatus.FAILED, str(e))
        else:
            logger.debug(f"Job {job_id} ({job.job_type}) completed")
            await self.job_repository.update(job_id, JobStatus.COMPLETED)
        self.processed += 1
