"""End-to-end tests for :class:`order_execution_engine.engine.OrderExecutionEngine`."""

from __future__ import annotations

import asyncio

import pytest

from conftest import fast_queue_config, fast_venue_config, order_payload
from order_execution_engine.errors import ExhaustedRetriesError, QueueClosedError
from order_execution_engine.execution import OrderStatus
from order_execution_engine.jobs import JobState
from order_execution_engine.streaming import QueueChannel


def test_order_flows_from_submission_to_confirmation(make_engine) -> None:
    engine = make_engine()

    async def _exercise():
        await engine.start()
        channel = QueueChannel()
        await engine.subscribe('order-1', channel)
        result = await engine.submit(order_payload(), order_id='order-1')
        job = await engine.queue.wait_for('order-1', timeout=5.0)
        messages = [message async for message in channel.updates()]
        order = await engine.get_order('order-1')
        executions = await engine.get_executions('order-1')
        metrics = engine.get_metrics()
        await engine.stop()
        return result, job, messages, order, executions, metrics

    result, job, messages, order, executions, metrics = asyncio.run(_exercise())

    assert result.accepted and not result.duplicate
    assert job.state is JobState.COMPLETED
    assert [message['status'] for message in messages] == [
        'connected', 'pending', 'routing', 'building', 'submitted', 'confirmed',
    ]
    assert messages[-1]['data']['amountOut'] > 0
    assert order.status is OrderStatus.CONFIRMED
    assert len(executions) == 1
    assert metrics == {'waiting': 0, 'active': 0, 'completed': 1, 'failed': 0, 'total': 0}


def test_exhausted_retries_leave_order_failed(make_engine) -> None:
    engine = make_engine(
        queue=fast_queue_config(max_retry_attempts=3),
        venue=fast_venue_config(failure_rate=1.0),
    )

    async def _exercise():
        await engine.start()
        channel = QueueChannel()
        await engine.subscribe('order-1', channel)
        await engine.submit(order_payload(), order_id='order-1')
        job = await engine.queue.wait_for('order-1', timeout=5.0)
        history = await engine.get_order_history('user-1')
        executions = await engine.get_executions('order-1')
        await engine.stop()
        return job, channel, history, executions

    job, channel, history, executions = asyncio.run(_exercise())

    assert job.state is JobState.FAILED
    assert isinstance(job.error, ExhaustedRetriesError)
    assert channel.statuses.count('failed') == 1
    assert channel.statuses[-1] == 'failed'
    assert len(history) == 1
    assert history[0].status is OrderStatus.FAILED
    assert [execution.attempt for execution in executions] == [1, 2, 3]
    assert all('Insufficient liquidity' in execution.failure_reason for execution in executions)
    assert engine.get_metrics()['failed'] == 1


def test_concurrent_orders_respect_worker_limit(make_engine) -> None:
    engine = make_engine(
        queue=fast_queue_config(max_concurrent_orders=2),
        venue=fast_venue_config(execution_delay_ms=10),
    )
    order_ids = [f'order-{index}' for index in range(5)]

    async def _exercise():
        await engine.start()
        for index, order_id in enumerate(order_ids):
            await engine.submit(order_payload(amountIn=1 + index * 0.5), order_id=order_id)
        jobs = [await engine.queue.wait_for(order_id, timeout=5.0) for order_id in order_ids]
        await engine.stop()
        return jobs

    jobs = asyncio.run(_exercise())

    assert all(job.state is JobState.COMPLETED for job in jobs)
    assert engine.workers.peak_active == 2


def test_duplicate_submission_runs_once(make_engine) -> None:
    engine = make_engine()

    async def _exercise():
        await engine.start()
        first = await engine.submit(order_payload(), order_id='order-1')
        second = await engine.submit(order_payload(), order_id='order-1')
        await engine.queue.wait_for('order-1', timeout=5.0)
        third = await engine.submit(order_payload(), order_id='order-1')
        executions = await engine.get_executions('order-1')
        await engine.stop()
        return first, second, third, executions

    first, second, third, executions = asyncio.run(_exercise())

    assert not first.duplicate
    assert second.duplicate
    assert third.duplicate and third.state is JobState.COMPLETED
    assert len(executions) == 1


def test_submissions_refused_after_shutdown(make_engine) -> None:
    engine = make_engine()

    async def _exercise():
        await engine.start()
        await engine.stop()
        with pytest.raises(QueueClosedError):
            await engine.submit(order_payload())

    asyncio.run(_exercise())
    assert not engine.started


def test_stop_during_failing_attempt_finishes_job(make_engine) -> None:
    engine = make_engine(
        queue=fast_queue_config(max_retry_attempts=3),
        venue=fast_venue_config(failure_rate=1.0, execution_delay_ms=200),
    )

    async def _exercise():
        await engine.start()
        await engine.submit(order_payload(), order_id='order-1')
        await asyncio.sleep(0.05)
        await engine.stop()
        job = await engine.queue.wait_for('order-1', timeout=1.0)
        return job, engine.get_metrics()

    job, metrics = asyncio.run(_exercise())

    assert job.state is JobState.FAILED
    assert job.error.error_code == 'SHUTDOWN'
    assert job.attempts_made == 1
    assert metrics == {'waiting': 0, 'active': 0, 'completed': 0, 'failed': 1, 'total': 0}
