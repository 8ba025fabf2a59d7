"""Tests for :mod:`order_execution_engine.execution.pipeline`."""

from __future__ import annotations

import asyncio
import random

from conftest import fast_queue_config, fast_venue_config
from order_execution_engine.errors import PersistenceError, ValidationError, VenueExecutionError
from order_execution_engine.execution import (
    OrderPipeline,
    OrderRequest,
    OrderStatus,
    OrderType,
    OutcomeKind,
    Venue,
    VenueRouter,
)
from order_execution_engine.streaming import QueueChannel, StatusBroadcaster

LIFECYCLE = ['connected', 'pending', 'routing', 'building', 'submitted', 'confirmed']


class UnavailableStore:
    """Storage collaborator that rejects every call."""

    def __init__(self) -> None:
        self.calls = 0

    def _fail(self, *_args, **_kwargs):
        self.calls += 1
        raise PersistenceError('database is locked')

    create_order_if_absent = update_status = append_execution_result = _fail

    def get_order(self, order_id):
        return None

    def list_order_history(self, user_id, limit=50):
        return []


class FlakyConfirmStore:
    """Wraps a real store; the first ``failures`` CONFIRMED status writes raise."""

    def __init__(self, inner, failures: int = 1) -> None:
        self.inner = inner
        self.failures = failures
        self.statuses: list[str] = []

    def update_status(self, order_id, status):
        if status is OrderStatus.CONFIRMED and self.failures > 0:
            self.failures -= 1
            raise PersistenceError('database is locked')
        self.statuses.append(status.value)
        self.inner.update_status(order_id, status)

    def __getattr__(self, name):
        return getattr(self.inner, name)


def _request(**overrides) -> OrderRequest:
    values = {
        'user_id': 'user-1',
        'order_type': OrderType.MARKET,
        'token_in': 'SOL',
        'token_out': 'USDC',
        'amount_in': 2.0,
        'slippage': 0.5,
    }
    values.update(overrides)
    return OrderRequest(**values)


def _pipeline(store, *, failure_rate: float = 0.0):
    broadcaster = StatusBroadcaster()
    router = VenueRouter(fast_venue_config(failure_rate=failure_rate), rng=random.Random(7))
    return OrderPipeline(router, store, broadcaster, fast_queue_config()), broadcaster


def _run(pipeline, broadcaster, order_id: str, request: OrderRequest, **kwargs):
    async def _exercise():
        channel = QueueChannel()
        await broadcaster.attach(order_id, channel)
        outcome = await pipeline.run(order_id, request, **kwargs)
        return outcome, channel

    return asyncio.run(_exercise())


def test_successful_run_publishes_full_lifecycle(database) -> None:
    pipeline, broadcaster = _pipeline(database)

    outcome, channel = _run(pipeline, broadcaster, 'o1', _request())

    assert outcome.kind is OutcomeKind.SUCCESS
    assert channel.statuses == LIFECYCLE
    assert not channel.is_open

    routing = channel.messages[2]
    assert routing['data']['venue'] in {venue.value for venue in Venue}
    assert routing['data']['estimatedOutput'] > 0

    confirmed = channel.messages[-1]
    assert confirmed['message'] == 'Order executed successfully'
    assert len(confirmed['data']['txHash']) == 88
    assert confirmed['data']['amountOut'] > 0
    assert confirmed['data']['venue'] == routing['data']['venue']
    assert 'error' not in confirmed

    stored = database.get_order('o1')
    assert stored.status is OrderStatus.CONFIRMED
    [execution] = database.list_executions('o1')
    assert execution.tx_hash == outcome.result.tx_hash
    assert execution.failure_reason is None


def test_run_without_subscriber_still_executes(database) -> None:
    pipeline, _ = _pipeline(database)

    outcome = asyncio.run(pipeline.run('o1', _request()))

    assert outcome.succeeded
    assert database.get_order('o1').status is OrderStatus.CONFIRMED


def test_venue_failure_is_retryable_and_persisted(database) -> None:
    pipeline, broadcaster = _pipeline(database, failure_rate=1.0)

    outcome, channel = _run(pipeline, broadcaster, 'o1', _request(), attempt=1, max_attempts=3)

    assert outcome.kind is OutcomeKind.RETRYABLE
    assert isinstance(outcome.error, VenueExecutionError)
    assert channel.statuses == ['connected', 'pending', 'routing', 'building', 'submitted', 'failed']
    failed = channel.messages[-1]
    assert 'Insufficient liquidity' in failed['error']
    assert failed['message'] == 'Order execution failed (attempt 1/3), retrying'
    assert not channel.is_open

    assert database.get_order('o1').status is OrderStatus.FAILED
    [execution] = database.list_executions('o1')
    assert 'Insufficient liquidity' in execution.failure_reason
    assert execution.tx_hash is None


def test_last_attempt_failure_message_is_final(database) -> None:
    pipeline, broadcaster = _pipeline(database, failure_rate=1.0)

    _, channel = _run(pipeline, broadcaster, 'o1', _request(), attempt=3, max_attempts=3)

    assert channel.messages[-1]['message'] == 'Order execution failed'


def test_invalid_request_fails_fatally(database) -> None:
    pipeline, broadcaster = _pipeline(database)

    outcome, channel = _run(pipeline, broadcaster, 'o1', _request(amount_in=-1.0))

    assert outcome.kind is OutcomeKind.FATAL
    assert isinstance(outcome.error, ValidationError)
    assert channel.statuses == ['connected', 'failed']
    assert database.get_order('o1') is None


def test_storage_failure_becomes_failed_transition() -> None:
    store = UnavailableStore()
    pipeline, broadcaster = _pipeline(store)

    outcome, channel = _run(pipeline, broadcaster, 'o1', _request(), attempt=1, max_attempts=2)

    assert outcome.kind is OutcomeKind.RETRYABLE
    assert isinstance(outcome.error, PersistenceError)
    assert channel.statuses == ['connected', 'pending', 'failed']
    assert channel.messages[-1]['error'] == 'database is locked'
    assert store.calls == 2


def test_retry_reuses_existing_order_record(database) -> None:
    failing, broadcaster = _pipeline(database, failure_rate=1.0)
    _run(failing, broadcaster, 'o1', _request(), attempt=1, max_attempts=2)

    succeeding, broadcaster = _pipeline(database)
    outcome, _ = _run(succeeding, broadcaster, 'o1', _request(), attempt=2, max_attempts=2)

    assert outcome.succeeded
    assert len(database.list_order_history('user-1')) == 1
    assert [execution.attempt for execution in database.list_executions('o1')] == [1, 2]
    assert database.get_order('o1').status is OrderStatus.CONFIRMED


def test_status_write_failure_after_fill_still_confirms(database) -> None:
    store = FlakyConfirmStore(database, failures=1)
    pipeline, broadcaster = _pipeline(store)

    outcome, channel = _run(pipeline, broadcaster, 'o1', _request(), attempt=1, max_attempts=3)

    assert outcome.kind is OutcomeKind.SUCCESS
    assert channel.statuses == LIFECYCLE
    assert store.statuses == ['confirmed']
    assert database.get_order('o1').status is OrderStatus.CONFIRMED
    [execution] = database.list_executions('o1')
    assert execution.attempt == 1
    assert execution.tx_hash == outcome.result.tx_hash


def test_filled_order_is_not_retried_when_status_cannot_be_stored(database) -> None:
    store = FlakyConfirmStore(database, failures=10)
    pipeline, broadcaster = _pipeline(store)

    outcome, channel = _run(pipeline, broadcaster, 'o1', _request(), attempt=1, max_attempts=3)

    assert outcome.kind is OutcomeKind.SUCCESS
    assert channel.statuses[-1] == 'confirmed'
    assert 'failed' not in channel.statuses
    assert len(database.list_executions('o1')) == 1


def test_failed_update_reports_retry_intent(database) -> None:
    pipeline, broadcaster = _pipeline(database, failure_rate=1.0)
    _, first = _run(pipeline, broadcaster, 'o1', _request(), attempt=1, max_attempts=3)

    pipeline, broadcaster = _pipeline(database, failure_rate=1.0)
    _, last = _run(pipeline, broadcaster, 'o2', _request(), attempt=3, max_attempts=3)

    assert first.messages[-1]['data']['willRetry'] is True
    assert first.messages[-1]['data']['attempt'] == 1
    assert first.messages[-1]['data']['maxAttempts'] == 3
    assert last.messages[-1]['data']['willRetry'] is False
    assert last.messages[-1]['data']['attempt'] == 3


def test_confirmed_update_carries_attempt(database) -> None:
    pipeline, broadcaster = _pipeline(database)

    _, channel = _run(pipeline, broadcaster, 'o1', _request(), attempt=2, max_attempts=3)

    assert channel.messages[-1]['data']['attempt'] == 2
