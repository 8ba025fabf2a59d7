"""Intake queue: validated, deduplicated admission of order jobs."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Mapping, Optional, Set

from ..database.session_store import SessionStore
from ..errors import OrderEngineError, QueueClosedError, ValidationError
from ..execution.schemas import OrderSubmission
from ..execution.types import ExecutionResult, OrderRequest, utc_now
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def _order_key(order_id: str) -> str:
    return f'order:{order_id}'


class JobState(str, enum.Enum):
    WAITING = 'waiting'
    DELAYED = 'delayed'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    FAILED = 'failed'


@dataclass
class Job:
    """Queue-side record of one order and its attempts."""

    order_id: str
    request: OrderRequest
    max_attempts: int
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    last_error: Optional[str] = None
    result: Optional[ExecutionResult] = None
    error: Optional[OrderEngineError] = None
    enqueued_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    done: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def is_finished(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)

    @property
    def is_pending(self) -> bool:
        return self.state in (JobState.WAITING, JobState.DELAYED)


@dataclass(frozen=True)
class QueueMetrics:
    waiting: int
    active: int
    completed: int
    failed: int

    @property
    def total(self) -> int:
        return self.waiting + self.active

    def to_dict(self) -> Dict[str, int]:
        return {
            'waiting': self.waiting,
            'active': self.active,
            'completed': self.completed,
            'failed': self.failed,
            'total': self.total,
        }


@dataclass(frozen=True)
class SubmitResult:
    order_id: str
    accepted: bool
    duplicate: bool
    state: JobState


class OrderQueue:
    """Holds order jobs keyed by order identifier.

    At most one job exists per identifier while it is pending, active or
    retained after finishing, which guarantees a single active execution per
    order. Finished jobs are retained up to ``retention`` per outcome.
    """

    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        *,
        retention: int = 100,
        store: Optional[SessionStore] = None,
        session_ttl_s: int = 24 * 3600,
    ) -> None:
        self.retry_policy = retry_policy or RetryPolicy()
        self._retention = retention
        self._store = store
        self._session_ttl_s = session_ttl_s
        self._jobs: Dict[str, Job] = {}
        self._ready: Deque[Job] = deque()
        self._has_ready = asyncio.Event()
        self._completed_ids: Deque[str] = deque()
        self._failed_ids: Deque[str] = deque()
        self._retry_timers: Set[asyncio.Task[None]] = set()
        self._completed_total = 0
        self._failed_total = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def submit(self, order_id: str, request: OrderRequest | Mapping[str, Any]) -> SubmitResult:
        """Validate and enqueue; a repeated identifier is a no-op.

        Raises :class:`ValidationError` for malformed input and
        :class:`QueueClosedError` once shutdown started.
        """
        if not order_id or not isinstance(order_id, str):
            raise ValidationError('orderId must be a non-empty string', {'field': 'orderId'})
        if isinstance(request, OrderRequest):
            request.validate()
        else:
            request = OrderSubmission.parse(request).to_request()
        if self._closed:
            raise QueueClosedError()

        existing = self._jobs.get(order_id)
        if existing is not None:
            logger.info('Order %s already queued (%s); ignoring duplicate submission', order_id, existing.state.value)
            return SubmitResult(order_id=order_id, accepted=True, duplicate=True, state=existing.state)

        job = Job(order_id=order_id, request=request, max_attempts=self.retry_policy.max_attempts)
        self._jobs[order_id] = job
        if self._store is not None:
            self._store.set(_order_key(order_id), request.to_payload(), ttl=self._session_ttl_s)
        self._push(job)
        logger.info('Order %s added to queue', order_id)
        return SubmitResult(order_id=order_id, accepted=True, duplicate=False, state=job.state)

    async def next_job(self) -> Job:
        """Wait for and pop the next ready job. Single consumer."""
        while not self._ready:
            self._has_ready.clear()
            await self._has_ready.wait()
        return self._ready.popleft()

    def requeue(self, job: Job) -> None:
        """Return a popped but never started job to the head of the queue."""
        if job.is_finished:
            return
        job.state = JobState.WAITING
        self._ready.appendleft(job)
        self._has_ready.set()

    def mark_active(self, job: Job) -> None:
        job.state = JobState.ACTIVE
        job.attempts_made += 1

    def mark_completed(self, job: Job, result: Optional[ExecutionResult]) -> None:
        job.state = JobState.COMPLETED
        job.result = result
        self._completed_total += 1
        self._finish(job, self._completed_ids)

    def mark_failed(self, job: Job, error: OrderEngineError, result: Optional[ExecutionResult] = None) -> None:
        job.state = JobState.FAILED
        job.error = error
        job.result = result
        job.last_error = error.message
        self._failed_total += 1
        self._finish(job, self._failed_ids)

    def abandon(self, job: Job, reason: str) -> None:
        """Fail a job that will not run again because the queue shut down."""
        error = OrderEngineError(
            f'Order {job.order_id} abandoned at shutdown after {job.attempts_made} attempt(s)',
            'SHUTDOWN',
            {'order_id': job.order_id, 'attempts': job.attempts_made, 'last_reason': reason},
        )
        self.mark_failed(job, error, job.result)

    def schedule_retry(self, job: Job, delay: float, reason: str) -> None:
        """Park the job until ``delay`` seconds pass, then make it ready again."""
        job.state = JobState.DELAYED
        job.last_error = reason
        timer = asyncio.create_task(self._release_after(job, delay), name=f'retry-{job.order_id}')
        self._retry_timers.add(timer)
        timer.add_done_callback(self._retry_timers.discard)

    def get_job(self, order_id: str) -> Optional[Job]:
        return self._jobs.get(order_id)

    async def wait_for(self, order_id: str, timeout: Optional[float] = None) -> Job:
        """Wait until the job for ``order_id`` reaches a final state."""
        job = self._jobs.get(order_id)
        if job is None:
            raise KeyError(order_id)
        await asyncio.wait_for(job.done.wait(), timeout)
        return job

    def metrics(self) -> QueueMetrics:
        waiting = active = 0
        for job in self._jobs.values():
            if job.is_pending:
                waiting += 1
            elif job.state is JobState.ACTIVE:
                active += 1
        return QueueMetrics(
            waiting=waiting,
            active=active,
            completed=self._completed_total,
            failed=self._failed_total,
        )

    async def close(self) -> int:
        """Stop admissions, cancel retry timers and fail every job that has not started.

        Returns the number of jobs failed this way. Active jobs are left to finish.
        """
        self._closed = True
        timers = list(self._retry_timers)
        for timer in timers:
            timer.cancel()
        for timer in timers:
            with contextlib.suppress(asyncio.CancelledError):
                await timer
        self._ready.clear()
        pending = [job for job in self._jobs.values() if job.is_pending]
        for job in pending:
            self.abandon(job, job.last_error or 'not started')
        if pending:
            logger.warning('Order queue closed; failed %d jobs that had not started', len(pending))
        return len(pending)

    def _push(self, job: Job) -> None:
        job.state = JobState.WAITING
        self._ready.append(job)
        self._has_ready.set()

    async def _release_after(self, job: Job, delay: float) -> None:
        await asyncio.sleep(delay)
        if not self._closed:
            self._push(job)

    def _finish(self, job: Job, retained: Deque[str]) -> None:
        job.finished_at = utc_now()
        job.done.set()
        if self._store is not None:
            self._store.delete(_order_key(job.order_id))
        retained.append(job.order_id)
        while len(retained) > self._retention:
            evicted = retained.popleft()
            evicted_job = self._jobs.get(evicted)
            if evicted_job is not None and evicted_job.is_finished:
                del self._jobs[evicted]


__all__ = ['Job', 'JobState', 'OrderQueue', 'QueueMetrics', 'SubmitResult']
