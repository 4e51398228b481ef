#!/usr/bin/env python3
"""
Cron-driven recurring jobs.

A CronWorker wakes up on every occurrence of a cron expression, records a new
job of its type, runs the handler inline and stores the outcome. It is a
process-lifetime loop: failures on one tick are logged and the next tick
fires on schedule regardless.
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from config import get_logger
from jobs import JobHandler
from models import JobStatus
from repository import JobRepository
from telemetry import trace_span
from utils import utc_now

# Module-specific logger
logger = get_logger("cron_worker")


class CronSchedule:
    """A cron expression evaluated in a given timezone."""

    def __init__(self, expression: str, tz: str = "UTC"):
        """Initialize the schedule.

        Args:
            expression: Standard cron expression, e.g. "*/15 * * * *"
            tz: IANA timezone name the expression is evaluated in

        Raises:
            ValueError: If the expression is invalid
        """
        self.expression = expression.strip()
        if not croniter.is_valid(self.expression):
            raise ValueError(f"Invalid cron expression '{expression}'")

        self.timezone_name = tz or "UTC"
        try:
            self.timezone = ZoneInfo(self.timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Invalid timezone '{self.timezone_name}', falling back to UTC")
            self.timezone_name = "UTC"
            self.timezone = timezone.utc

    def next_occurrence(self, from_time: Optional[datetime] = None) -> datetime:
        """Get the first occurrence strictly after `from_time`, in UTC."""
        if from_time is None:
            from_time = utc_now()
        if from_time.tzinfo is None:
            from_time = from_time.replace(tzinfo=timezone.utc)
        local = from_time.astimezone(self.timezone)
        return croniter(self.expression, local).get_next(datetime).astimezone(timezone.utc)

    def __str__(self) -> str:
        return f"CronSchedule({self.expression} {self.timezone_name})"

    def __repr__(self) -> str:
        return self.__str__()


class CronWorker:
    def __init__(self, job_type: str, schedule: CronSchedule, job_repository: JobRepository,
                 handler: JobHandler, now: Callable[[], datetime] = utc_now,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.job_type = job_type
        self.schedule = schedule
        self.job_repository = job_repository
        self.handler = handler
        self.now = now
        self.sleep = sleep
        self.last_fire: Optional[datetime] = None

    async def run(self) -> None:
        """Fire on every schedule occurrence until the task is cancelled."""
        logger.info(f"🚀 Cron worker {self.job_type} started on {self.schedule}")
        try:
            while True:
                reference = self.now()
                if self.last_fire is not None and self.last_fire > reference:
                    reference = self.last_fire
                next_time = self.schedule.next_occurrence(reference)

                seconds_until = (next_time - self.now()).total_seconds()
                logger.debug(f"😴 {self.job_type}: sleeping {max(0.0, seconds_until):.1f}s until {next_time.isoformat()}")
                await self.sleep(max(0.0, seconds_until))

                self.last_fire = next_time
                await self.tick()
        except asyncio.CancelledError:
            logger.info(f"📶 Cron worker {self.job_type} cancelled - shutting down")
            raise

    @trace_span(
        "cron.tick",
        tracer_name="cron",
        attr_from_args=lambda self: {"job.type": self.job_type},
    )
    async def tick(self) -> Optional[str]:
        """Create, run and record one job. Never raises.

        Returns:
            The job id, or None when the job could not be created or started
        """
        try:
            job_id = await self.job_repository.create(self.job_type, {})
            job = await self.job_repository.get(job_id)
            await self.job_repository.update(job_id, JobStatus.RUNNING)
        except Exception as e:
            logger.error(f"💥 {self.job_type}: could not start scheduled job: {e}")
            return None

        status, message = JobStatus.COMPLETED, None
        try:
            await self.handler(job)
        except Exception as e:
            logger.error(f"❌ {self.job_type}: scheduled job {job_id} failed: {e}")
            status, message = JobStatus.FAILED, str(e)

        try:
            await self.job_repository.update(job_id, status, message)
        except Exception as e:
            logger.error(f"💥 {self.job_type}: could not record outcome of job {job_id}: {e}")
            return job_id

        if status == JobStatus.COMPLETED:
            logger.info(f"✅ {self.job_type}: scheduled job {job_id} completed")
        return job_id
