"""Shared fixtures: fast configs with the simulated latencies switched off."""

from __future__ import annotations

import random
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from order_execution_engine.config import BroadcastConfig, QueueConfig, VenueConfig  # noqa: E402
from order_execution_engine.database import DatabaseManager  # noqa: E402
from order_execution_engine.engine import OrderExecutionEngine  # noqa: E402


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records requested durations."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def fast_queue_config(**overrides) -> QueueConfig:
    values = {'subscriber_grace_ms': 0, 'build_delay_ms': 0, 'retry_base_delay_ms': 0}
    values.update(overrides)
    return QueueConfig(**values)


def fast_venue_config(**overrides) -> VenueConfig:
    values = {
        'quote_delay_ms': 0,
        'quote_jitter_ms': 0,
        'execution_delay_ms': 0,
        'execution_jitter_ms': 0,
        'wrap_delay_ms': 0,
        'failure_rate': 0.0,
    }
    values.update(overrides)
    return VenueConfig(**values)


@pytest.fixture
def database(tmp_path: Path) -> DatabaseManager:
    manager = DatabaseManager(f'sqlite:///{tmp_path / "orders.db"}')
    yield manager
    manager.close()


@pytest.fixture
def make_engine(database: DatabaseManager):
    def factory(queue: QueueConfig | None = None, venue: VenueConfig | None = None) -> OrderExecutionEngine:
        return OrderExecutionEngine(
            database,
            queue_config=queue or fast_queue_config(),
            venue_config=venue or fast_venue_config(),
            broadcast_config=BroadcastConfig(heartbeat_interval_s=60.0),
            rng=random.Random(42),
        )

    return factory


def order_payload(**overrides) -> dict:
    payload = {
        'userId': 'user-1',
        'orderType': 'MARKET',
        'tokenIn': 'SOL',
        'tokenOut': 'USDC',
        'amountIn': 1.5,
        'slippage': 0.5,
    }
    payload.update(overrides)
    return payload
