#!/usr/bin/env python3
"""
Job id queues feeding the JobWorker loops.

A queue carries job ids for one topic. `pop()` suspends until an id is
available and returns None once the queue has been closed and drained, which
is the only way a JobWorker loop ends.
"""

from abc import ABC, abstractmethod
from asyncio import Queue
from typing import Optional

from config import get_logger
from errors import QueueClosedError

# Module-specific logger
logger = get_logger("job_queue")

_CLOSED = object()


class JobQueue(ABC):
    @abstractmethod
    async def push(self, job_id: str) -> None:
        ...

    @abstractmethod
    async def pop(self) -> Optional[str]:
        """Next job id, or None once the queue is closed and empty."""

    @abstractmethod
    async def close(self) -> None:
        ...


class AsyncioJobQueue(JobQueue):
    """In-process FIFO queue of job ids."""

    def __init__(self, name: str = "jobs"):
        self.name = name
        self._queue: Queue = Queue()
        self._closed = False

    def qsize(self) -> int:
        return self._queue.qsize()

    async def push(self, job_id: str) -> None:
        if self._closed:
            raise QueueClosedError(f"queue {self.name} is closed")
        await self._queue.put(job_id)

    async def pop(self) -> Optional[str]:
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker in place for any other consumer of this queue
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)
        logger.debug(f"Queue {self.name} closed with {self._queue.qsize() - 1} ids pending")
