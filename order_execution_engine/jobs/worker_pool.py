"""Bounded worker pool that drains the order queue through the pipeline."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional, Set

from ..errors import ExhaustedRetriesError, OrderEngineError
from ..execution.pipeline import OrderPipeline, OutcomeKind, RunOutcome
from .order_queue import Job, OrderQueue
from .rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)


class WorkerPool:
    """Runs at most ``concurrency`` pipeline attempts at once.

    Run starts are additionally admitted through the rate limiter. Retry
    decisions follow the queue's :class:`RetryPolicy`.
    """

    def __init__(
        self,
        queue: OrderQueue,
        pipeline: OrderPipeline,
        *,
        concurrency: int = 10,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f'concurrency must be positive: {concurrency}')
        self._queue = queue
        self._pipeline = pipeline
        self._concurrency = concurrency
        self._semaphore = asyncio.Semaphore(concurrency)
        self._rate_limiter = rate_limiter
        self._runs: Set[asyncio.Task[None]] = set()
        self._dispatcher: Optional[asyncio.Task[None]] = None
        self._active = 0
        self._peak_active = 0

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def active_runs(self) -> int:
        return self._active

    @property
    def peak_active(self) -> int:
        return self._peak_active

    @property
    def running(self) -> bool:
        return self._dispatcher is not None and not self._dispatcher.done()

    async def start(self) -> None:
        if self.running:
            return
        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name='order-dispatcher')
        logger.info('Order worker pool started with %d concurrent workers', self._concurrency)

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop starting new runs, then wait for in-flight runs to drain."""
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._dispatcher
            self._dispatcher = None

        runs = list(self._runs)
        if not runs:
            return
        logger.info('Waiting for %d in-flight orders to finish', len(runs))
        _, still_running = await asyncio.wait(runs, timeout=timeout)
        if still_running:
            logger.warning('Cancelling %d orders still running after %.1fs', len(still_running), timeout or 0)
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

    async def _dispatch_loop(self) -> None:
        while True:
            job = await self._queue.next_job()
            try:
                await self._semaphore.acquire()
            except asyncio.CancelledError:
                self._queue.requeue(job)
                raise
            try:
                if self._rate_limiter is not None:
                    await self._rate_limiter.acquire()
            except asyncio.CancelledError:
                self._semaphore.release()
                self._queue.requeue(job)
                raise

            if job.is_finished:
                # Failed by queue.close() while we waited for a slot.
                self._semaphore.release()
                continue
            self._queue.mark_active(job)
            self._active += 1
            run = asyncio.create_task(self._run(job), name=f'order-{job.order_id}')
            self._runs.add(run)
            run.add_done_callback(self._runs.discard)
            self._peak_active = max(self._peak_active, self._active)

    async def _run(self, job: Job) -> None:
        try:
            outcome = await self._pipeline.run(
                job.order_id,
                job.request,
                attempt=job.attempts_made,
                max_attempts=job.max_attempts,
            )
        except asyncio.CancelledError:
            self._queue.mark_failed(job, OrderEngineError('Cancelled during shutdown', 'CANCELLED'))
            raise
        except Exception as exc:
            logger.exception('Pipeline crashed for order %s', job.order_id)
            outcome = RunOutcome(OutcomeKind.RETRYABLE, error=exc)
        finally:
            self._active -= 1
            self._semaphore.release()
        self._settle(job, outcome)

    def _settle(self, job: Job, outcome: RunOutcome) -> None:
        policy = self._queue.retry_policy
        if outcome.succeeded:
            self._queue.mark_completed(job, outcome.result)
            logger.info('Job %s completed after %d attempt(s)', job.order_id, job.attempts_made)
            return

        if policy.should_retry(outcome, job.attempts_made):
            if self._queue.closed:
                self._queue.abandon(job, outcome.reason)
                logger.warning(
                    'Job %s attempt %d/%d failed (%s) after shutdown began; not retrying',
                    job.order_id,
                    job.attempts_made,
                    job.max_attempts,
                    outcome.reason,
                )
                return
            delay = policy.delay_for(job.attempts_made)
            logger.warning(
                'Job %s attempt %d/%d failed (%s); retrying in %.1fs',
                job.order_id,
                job.attempts_made,
                job.max_attempts,
                outcome.reason,
                delay,
            )
            self._queue.schedule_retry(job, delay, outcome.reason)
            return

        if outcome.kind is OutcomeKind.RETRYABLE:
            error: OrderEngineError = ExhaustedRetriesError(job.order_id, job.attempts_made, outcome.reason)
        elif isinstance(outcome.error, OrderEngineError):
            error = outcome.error
        else:
            error = OrderEngineError(outcome.reason, 'EXECUTION_FAILED')
        self._queue.mark_failed(job, error, outcome.result)
        logger.error('Job %s failed after %d attempts: %s', job.order_id, job.attempts_made, error.message)


__all__ = ['WorkerPool']
