from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, List, Optional

from core import deleter, scanner
from core.queue import Job, JobQueue


SCAN_QUEUE = 'maintenance-scan'
DELETION_QUEUE = 'deletion'


class RateLimiter:
    """Allows at most ``max_jobs`` starts in any rolling ``duration`` seconds."""

    def __init__(self, max_jobs: int, duration: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_jobs = max(1, int(max_jobs))
        self.duration = max(0.0, float(duration))
        self.clock = clock
        self._starts: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _trim(self, now: float) -> None:
        while self._starts and now - self._starts[0] >= self.duration:
            self._starts.popleft()

    def try_acquire(self) -> bool:
        now = self.clock()
        self._trim(now)
        if len(self._starts) < self.max_jobs:
            self._starts.append(now)
            return True
        return False

    async def acquire(self) -> None:
        async with self._lock:
            while not self.try_acquire():
                wait = self._starts[0] + self.duration - self.clock()
                await asyncio.sleep(max(wait, 0.01))


@dataclass
class WorkerDeps:
    scanner: scanner.ScannerDeps
    deleter: deleter.DeleterDeps
    event_bus: Any  # expects .log(event, **fields)
    debug_logging: bool
    # Called with (rule_id, ScanResult) after a successful scan
    after_scan: Optional[Callable[[str, Any], Awaitable[None]]] = None


def _forward(job: Job) -> Callable[[int], None]:
    def _on_progress(percent: int) -> None:
        job.update_progress(10 + percent * 0.9)
    return _on_progress


async def process_scan_job(job: Job, deps: WorkerDeps) -> dict:
    rule_id = job.data['ruleId']
    trigger = job.data.get('trigger') or 'manual'
    job.update_progress(10)
    result = await scanner.scan(rule_id, deps.scanner, on_progress=_forward(job), trigger=trigger)
    job.update_progress(100)
    if deps.after_scan is not None:
        try:
            await deps.after_scan(rule_id, result)
        except Exception as e:
            logging.error(f'Worker: post-scan handling failed for rule {rule_id}: {e}')
            deps.event_bus.log('post_scan_failed', rule_id=rule_id, scan_id=result.scan_id, error=str(e))
    return {'scanId': result.scan_id, 'itemsScanned': result.items_scanned, 'itemsFlagged': result.items_flagged}


async def process_deletion_job(job: Job, deps: WorkerDeps) -> dict:
    job.update_progress(10)
    outcome = await deleter.execute(
        list(job.data.get('candidateIds') or []),
        bool(job.data.get('deleteFiles', True)),
        str(job.data.get('actorId') or 'system'),
        deps.deleter,
        on_progress=_forward(job),
    )
    job.update_progress(100)
    return {'success': outcome.success, 'failed': outcome.failed, 'errors': outcome.errors}


class Worker:
    def __init__(
        self,
        queue: JobQueue,
        handler: Callable[[Job], Awaitable[Any]],
        *,
        concurrency: int = 1,
        limiter: Optional[RateLimiter] = None,
        event_bus: Any = None,
        debug_logging: bool = False,
    ) -> None:
        self.queue = queue
        self.handler = handler
        self.concurrency = max(1, int(concurrency))
        self.limiter = limiter
        self.event_bus = event_bus
        self.debug_logging = debug_logging
        self._tasks: List[asyncio.Task] = []

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [asyncio.create_task(self._consume()) for _ in range(self.concurrency)]
        if self.debug_logging:
            logging.info(f'Worker {self.queue.name}: started with concurrency {self.concurrency}')

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _consume(self) -> None:
        while True:
            await self.process_next()

    async def process_next(self) -> Job:
        while True:
            job = await self.queue.take()
            # Held jobs stay waiting (and removable) until the limiter lets them start
            if self.limiter is not None:
                await self.limiter.acquire()
            if self.queue.activate(job):
                break
        await self._run(job)
        return job

    async def _run(self, job: Job) -> None:
        if self.debug_logging:
            logging.info(f'Worker {self.queue.name}: job {job.id} attempt {job.attempts_made}/{job.max_attempts}')
        try:
            result = await self.handler(job)
        except Exception as e:
            retrying = self.queue.fail(job, e)
            logging.error(
                f'Worker {self.queue.name}: job {job.id} failed (attempt {job.attempts_made}/{job.max_attempts}): {e}'
            )
            if self.event_bus is not None:
                self.event_bus.log(
                    'job_failed', queue=self.queue.name, job_id=job.id, error=job.failed_reason, retrying=retrying
                )
            return
        self.queue.complete(job, result)
        if self.event_bus is not None:
            self.event_bus.log('job_completed', queue=self.queue.name, job_id=job.id)
