from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.utils import new_id


WAITING = 'waiting'
DELAYED = 'delayed'
ACTIVE = 'active'
COMPLETED = 'completed'
FAILED = 'failed'

PENDING_STATES = (WAITING, DELAYED)
UNFINISHED_STATES = (WAITING, DELAYED, ACTIVE)


@dataclass
class Job:
    id: str
    name: str
    data: Dict[str, Any]
    priority: int = 0
    max_attempts: int = 1
    backoff_seconds: float = 0.0
    state: str = WAITING
    progress: float = 0.0
    attempts_made: int = 0
    result: Any = None
    failed_reason: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    processed_at: Optional[float] = None
    finished_at: Optional[float] = None

    def update_progress(self, value: float) -> None:
        self.progress = max(0.0, min(100.0, float(value)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'data': self.data,
            'state': self.state,
            'progress': self.progress,
            'attemptsMade': self.attempts_made,
            'maxAttempts': self.max_attempts,
            'result': self.result,
            'failedReason': self.failed_reason,
            'createdAt': self.created_at,
            'processedAt': self.processed_at,
            'finishedAt': self.finished_at,
        }


class JobQueue:
    """In-process priority job queue with delays, retries and id-based dedupe.

    Lower priority numbers run first. A job id that is still waiting, delayed or
    active is never enqueued twice; ``add`` returns the existing job instead.
    """

    def __init__(
        self,
        name: str,
        *,
        default_attempts: int = 1,
        backoff_seconds: float = 0.0,
        keep_finished: int = 100,
    ) -> None:
        self.name = name
        self.default_attempts = max(1, int(default_attempts))
        self.backoff_seconds = max(0.0, float(backoff_seconds))
        self.keep_finished = keep_finished
        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._seq = itertools.count()
        self._jobs: Dict[str, Job] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def add(
        self,
        name: str,
        data: Dict[str, Any],
        *,
        job_id: Optional[str] = None,
        priority: int = 0,
        delay: float = 0.0,
        attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ) -> Job:
        job_id = job_id or new_id()
        existing = self._jobs.get(job_id)
        if existing is not None and existing.state in UNFINISHED_STATES:
            return existing
        job = Job(
            id=job_id,
            name=name,
            data=dict(data),
            priority=priority,
            max_attempts=max(1, int(attempts if attempts is not None else self.default_attempts)),
            backoff_seconds=self.backoff_seconds if backoff_seconds is None else max(0.0, float(backoff_seconds)),
        )
        self._jobs[job_id] = job
        if delay and delay > 0:
            self._delay(job, delay)
        else:
            self._push(job)
        return job

    def _push(self, job: Job) -> None:
        job.state = WAITING
        self._queue.put_nowait((job.priority, next(self._seq), job.id))

    def _delay(self, job: Job, delay: float) -> None:
        job.state = DELAYED
        loop = asyncio.get_running_loop()
        self._timers[job.id] = loop.call_later(delay, self._promote, job.id)

    def _promote(self, job_id: str) -> None:
        self._timers.pop(job_id, None)
        job = self._jobs.get(job_id)
        if job is not None and job.state == DELAYED:
            self._push(job)

    async def take(self) -> Job:
        """Dequeues the next waiting job without starting it; it stays ``waiting`` until ``activate``."""
        while True:
            _, _, job_id = await self._queue.get()
            job = self._jobs.get(job_id)
            # Entries for removed or re-queued jobs are stale
            if job is None or job.state != WAITING:
                continue
            return job

    def activate(self, job: Job) -> bool:
        """Marks a taken job active. False when it was removed while held."""
        if self._jobs.get(job.id) is not job or job.state != WAITING:
            return False
        job.state = ACTIVE
        job.attempts_made += 1
        job.processed_at = time.time()
        return True

    async def next_job(self) -> Job:
        while True:
            job = await self.take()
            if self.activate(job):
                return job

    def complete(self, job: Job, result: Any = None) -> None:
        job.state = COMPLETED
        job.result = result
        job.failed_reason = None
        job.finished_at = time.time()
        self._prune()

    def fail(self, job: Job, error: BaseException) -> bool:
        """Records a failed attempt. Returns True when a retry has been scheduled."""
        job.failed_reason = str(error) or error.__class__.__name__
        if job.attempts_made < job.max_attempts:
            wait = job.backoff_seconds * (2 ** (job.attempts_made - 1))
            if wait > 0:
                self._delay(job, wait)
            else:
                self._push(job)
            return True
        job.state = FAILED
        job.finished_at = time.time()
        self._prune()
        return False

    def remove(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.state not in PENDING_STATES:
            return False
        timer = self._timers.pop(job_id, None)
        if timer is not None:
            timer.cancel()
        del self._jobs[job_id]
        return True

    def get_job(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def jobs(self, states: Optional[tuple] = None) -> List[Job]:
        return [j for j in self._jobs.values() if states is None or j.state in states]

    def counts(self) -> Dict[str, int]:
        out = {WAITING: 0, DELAYED: 0, ACTIVE: 0, COMPLETED: 0, FAILED: 0}
        for j in self._jobs.values():
            out[j.state] = out.get(j.state, 0) + 1
        return out

    def _prune(self) -> None:
        finished = [j for j in self._jobs.values() if j.state in (COMPLETED, FAILED)]
        if len(finished) <= self.keep_finished:
            return
        finished.sort(key=lambda j: j.finished_at or 0)
        for j in finished[: len(finished) - self.keep_finished]:
            self._jobs.pop(j.id, None)

    def close(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
