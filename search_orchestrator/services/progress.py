from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Protocol

from search_orchestrator.jobs.store import JobStore
from search_orchestrator.models import JobProgress

logger = logging.getLogger(__name__)


class ProgressSink(Protocol):
    async def report(self, message: str, phase: str) -> None: ...


class NullProgressSink:
    async def report(self, message: str, phase: str) -> None:
        return None


class ProgressBroadcaster:
    """Fans job progress events out to any number of per-job subscriber queues."""

    def __init__(self, max_queue_size: int = 100) -> None:
        self.max_queue_size = max_queue_size
        self._subscribers: dict[str, list[asyncio.Queue[dict[str, Any]]]] = defaultdict(list)

    def subscribe(self, job_id: str) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers[job_id].append(queue)
        return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        queues = self._subscribers.get(job_id)
        if not queues:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            del self._subscribers[job_id]

    def publish(self, job_id: str, event: str, data: dict[str, Any]) -> None:
        for queue in list(self._subscribers.get(job_id, [])):
            try:
                queue.put_nowait({'event': event, 'data': data})
            except asyncio.QueueFull:
                logger.warning('Dropping %s event for job %s: subscriber queue full', event, job_id)

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, []))


class JobProgressSink:
    """Writes progress to the job record and pushes it to live subscribers."""

    def __init__(
        self,
        store: JobStore,
        job_id: str,
        job_phase: str,
        completed: int,
        total: int,
        broadcaster: ProgressBroadcaster | None = None,
    ) -> None:
        self.store = store
        self.job_id = job_id
        self.job_phase = job_phase
        self.completed = completed
        self.total = total
        self.broadcaster = broadcaster

    async def report(self, message: str, phase: str) -> None:
        progress = JobProgress(phase=self.job_phase, completed=self.completed, total=self.total, message=message)
        await self.store.update_job(self.job_id, progress=progress)
        if self.broadcaster is not None:
            self.broadcaster.publish(self.job_id, 'progress', {**progress.model_dump(), 'detail': phase})
