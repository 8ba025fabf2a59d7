"""Tests for :mod:`order_execution_engine.jobs.worker_pool`."""

from __future__ import annotations

import asyncio

from conftest import FakeClock, order_payload
from order_execution_engine.errors import ExhaustedRetriesError, ValidationError
from order_execution_engine.execution import OutcomeKind, RunOutcome
from order_execution_engine.jobs import JobState, OrderQueue, RetryPolicy, SlidingWindowRateLimiter, WorkerPool


class ScriptedPipeline:
    """Returns queued outcomes in order; repeats the last one once exhausted."""

    def __init__(self, *outcomes, delay: float = 0.0) -> None:
        self.outcomes = list(outcomes)
        self.delay = delay
        self.calls: list[tuple[str, int, int]] = []
        self.in_flight = 0
        self.peak = 0

    async def run(self, order_id, request, *, attempt=1, max_attempts=1):
        self.calls.append((order_id, attempt, max_attempts))
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


async def _drain(queue: OrderQueue, pool: WorkerPool, order_ids) -> list:
    await pool.start()
    try:
        return [await queue.wait_for(order_id, timeout=5.0) for order_id in order_ids]
    finally:
        await pool.stop()


def test_success_completes_job_on_first_attempt() -> None:
    queue = OrderQueue(RetryPolicy(max_attempts=3, base_delay_ms=0))
    pipeline = ScriptedPipeline(RunOutcome(OutcomeKind.SUCCESS))
    pool = WorkerPool(queue, pipeline, concurrency=2)

    async def _exercise():
        await queue.submit('o1', order_payload())
        return await _drain(queue, pool, ['o1'])

    [job] = asyncio.run(_exercise())

    assert job.state is JobState.COMPLETED
    assert pipeline.calls == [('o1', 1, 3)]
    assert queue.metrics().completed == 1


def test_retryable_failures_are_retried_until_exhausted() -> None:
    queue = OrderQueue(RetryPolicy(max_attempts=3, base_delay_ms=0))
    pipeline = ScriptedPipeline(RunOutcome(OutcomeKind.RETRYABLE, error=RuntimeError('Insufficient liquidity')))
    pool = WorkerPool(queue, pipeline)

    async def _exercise():
        await queue.submit('o1', order_payload())
        return await _drain(queue, pool, ['o1'])

    [job] = asyncio.run(_exercise())

    assert job.state is JobState.FAILED
    assert job.attempts_made == 3
    assert [attempt for _, attempt, _ in pipeline.calls] == [1, 2, 3]
    assert isinstance(job.error, ExhaustedRetriesError)
    assert job.error.attempts == 3
    assert job.error.last_reason == 'Insufficient liquidity'
    assert queue.metrics().failed == 1


def test_retry_succeeds_after_transient_failure() -> None:
    queue = OrderQueue(RetryPolicy(max_attempts=3, base_delay_ms=0))
    pipeline = ScriptedPipeline(
        RunOutcome(OutcomeKind.RETRYABLE, error=RuntimeError('timeout')),
        RunOutcome(OutcomeKind.SUCCESS),
    )
    pool = WorkerPool(queue, pipeline)

    async def _exercise():
        await queue.submit('o1', order_payload())
        return await _drain(queue, pool, ['o1'])

    [job] = asyncio.run(_exercise())

    assert job.state is JobState.COMPLETED
    assert job.attempts_made == 2
    assert job.last_error == 'timeout'


def test_fatal_outcome_is_not_retried() -> None:
    queue = OrderQueue(RetryPolicy(max_attempts=3, base_delay_ms=0))
    error = ValidationError('amountIn must be greater than 0')
    pipeline = ScriptedPipeline(RunOutcome(OutcomeKind.FATAL, error=error))
    pool = WorkerPool(queue, pipeline)

    async def _exercise():
        await queue.submit('o1', order_payload())
        return await _drain(queue, pool, ['o1'])

    [job] = asyncio.run(_exercise())

    assert job.state is JobState.FAILED
    assert job.attempts_made == 1
    assert job.error is error


def test_pipeline_crash_counts_as_retryable() -> None:
    queue = OrderQueue(RetryPolicy(max_attempts=2, base_delay_ms=0))
    pipeline = ScriptedPipeline(KeyError('boom'))
    pool = WorkerPool(queue, pipeline)

    async def _exercise():
        await queue.submit('o1', order_payload())
        return await _drain(queue, pool, ['o1'])

    [job] = asyncio.run(_exercise())

    assert job.attempts_made == 2
    assert isinstance(job.error, ExhaustedRetriesError)


def test_concurrency_is_bounded() -> None:
    queue = OrderQueue(RetryPolicy(max_attempts=1, base_delay_ms=0))
    pipeline = ScriptedPipeline(RunOutcome(OutcomeKind.SUCCESS), delay=0.01)
    pool = WorkerPool(queue, pipeline, concurrency=2)
    order_ids = [f'o{index}' for index in range(6)]

    async def _exercise():
        for order_id in order_ids:
            await queue.submit(order_id, order_payload())
        return await _drain(queue, pool, order_ids)

    jobs = asyncio.run(_exercise())

    assert all(job.state is JobState.COMPLETED for job in jobs)
    assert pipeline.peak == 2
    assert pool.peak_active == 2
    assert pool.active_runs == 0


def test_rate_limiter_gates_run_starts() -> None:
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(2, 60.0, clock=clock, sleep=clock.sleep)
    queue = OrderQueue(RetryPolicy(max_attempts=1, base_delay_ms=0))
    pool = WorkerPool(queue, ScriptedPipeline(RunOutcome(OutcomeKind.SUCCESS)), rate_limiter=limiter)

    async def _exercise():
        for order_id in ('a', 'b', 'c'):
            await queue.submit(order_id, order_payload())
        return await _drain(queue, pool, ['a', 'b', 'c'])

    jobs = asyncio.run(_exercise())

    assert all(job.state is JobState.COMPLETED for job in jobs)
    assert clock.sleeps == [60.0]
    assert limiter.get_stats().admitted_total == 3


def test_stop_cancels_runs_past_timeout() -> None:
    queue = OrderQueue(RetryPolicy(max_attempts=3, base_delay_ms=0))
    pool = WorkerPool(queue, ScriptedPipeline(RunOutcome(OutcomeKind.SUCCESS), delay=10.0))

    async def _exercise():
        await queue.submit('o1', order_payload())
        await pool.start()
        while pool.active_runs == 0:
            await asyncio.sleep(0)
        await pool.stop(timeout=0.01)
        return queue.get_job('o1')

    job = asyncio.run(_exercise())

    assert job.state is JobState.FAILED
    assert job.error.error_code == 'CANCELLED'
    assert not pool.running


def test_failure_while_draining_fails_job_instead_of_retrying() -> None:
    queue = OrderQueue(RetryPolicy(max_attempts=3, base_delay_ms=0))
    pipeline = ScriptedPipeline(RunOutcome(OutcomeKind.RETRYABLE, error=RuntimeError('Slippage exceeded')), delay=0.05)
    pool = WorkerPool(queue, pipeline)

    async def _exercise():
        await queue.submit('o1', order_payload())
        await pool.start()
        while pool.active_runs == 0:
            await asyncio.sleep(0)
        await queue.close()
        await pool.stop()
        return await queue.wait_for('o1', timeout=1.0)

    job = asyncio.run(_exercise())

    assert job.state is JobState.FAILED
    assert job.error.error_code == 'SHUTDOWN'
    assert job.error.details['last_reason'] == 'Slippage exceeded'
    assert len(pipeline.calls) == 1
    assert queue.metrics().to_dict() == {'waiting': 0, 'active': 0, 'completed': 0, 'failed': 1, 'total': 0}


def test_job_failed_at_close_is_not_started() -> None:
    queue = OrderQueue(RetryPolicy(max_attempts=1, base_delay_ms=0))
    pipeline = ScriptedPipeline(RunOutcome(OutcomeKind.SUCCESS), delay=0.05)
    pool = WorkerPool(queue, pipeline, concurrency=1)

    async def _exercise():
        await queue.submit('a', order_payload())
        await queue.submit('b', order_payload())
        await pool.start()
        while pool.active_runs == 0:
            await asyncio.sleep(0)
        # Let the dispatcher pop 'b' and block on the single slot.
        await asyncio.sleep(0.01)
        await queue.close()
        await queue.wait_for('a', timeout=1.0)
        await asyncio.sleep(0.01)
        await pool.stop()
        return queue.get_job('a'), queue.get_job('b')

    first, second = asyncio.run(_exercise())

    assert first.state is JobState.COMPLETED
    assert second.state is JobState.FAILED
    assert second.error.error_code == 'SHUTDOWN'
    assert [order_id for order_id, _, _ in pipeline.calls] == ['a']
