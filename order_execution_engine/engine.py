"""Wires the intake queue, worker pool, pipeline and broadcaster together."""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from typing import Any, Dict, List, Mapping, Optional

from .config import BroadcastConfig, QueueConfig, Settings, VenueConfig
from .database import DatabaseManager, SessionStore
from .execution import ExecutionResult, Order, OrderPipeline, OrderRequest, VenueRouter
from .jobs import OrderQueue, RetryPolicy, SlidingWindowRateLimiter, SubmitResult, WorkerPool
from .streaming import Channel, StatusBroadcaster, Subscription

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 60.0


def generate_order_id() -> str:
    return str(uuid.uuid4())


class OrderExecutionEngine:
    """Owns every component of the execution pipeline and their lifecycle."""

    def __init__(
        self,
        database: DatabaseManager,
        *,
        queue_config: Optional[QueueConfig] = None,
        venue_config: Optional[VenueConfig] = None,
        broadcast_config: Optional[BroadcastConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.queue_config = queue_config or QueueConfig()
        self.venue_config = venue_config or VenueConfig()
        self.broadcast_config = broadcast_config or BroadcastConfig()
        self.database = database
        self.sessions = SessionStore()
        self.router = VenueRouter(self.venue_config, rng=rng)
        self.broadcaster = StatusBroadcaster(self.broadcast_config, store=self.sessions)
        self.pipeline = OrderPipeline(self.router, self.database, self.broadcaster, self.queue_config)
        self.queue = OrderQueue(
            RetryPolicy.from_config(self.queue_config),
            retention=self.queue_config.job_retention,
            store=self.sessions,
            session_ttl_s=self.broadcast_config.session_ttl_s,
        )
        self.workers = WorkerPool(
            self.queue,
            self.pipeline,
            concurrency=self.queue_config.max_concurrent_orders,
            rate_limiter=SlidingWindowRateLimiter(self.queue_config.orders_per_minute, RATE_LIMIT_WINDOW_SECONDS),
        )
        self._started = False

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> 'OrderExecutionEngine':
        return cls(
            DatabaseManager(settings.database_url),
            queue_config=QueueConfig.from_env(settings),
            venue_config=VenueConfig.from_env(settings),
            broadcast_config=BroadcastConfig.from_env(settings),
            **kwargs,
        )

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        await self.broadcaster.start()
        await self.workers.start()
        self._started = True
        logger.info(
            'Order execution engine running: max_concurrent=%d rate_limit=%d/min retries=%d',
            self.queue_config.max_concurrent_orders,
            self.queue_config.orders_per_minute,
            self.queue_config.max_retry_attempts,
        )

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Graceful shutdown: refuse submissions, drain in-flight runs, release resources."""
        logger.info('Shutting down order execution engine')
        await self.queue.close()
        await self.workers.stop(timeout)
        await self.broadcaster.stop()
        self.database.close()
        self._started = False
        logger.info('Shutdown complete')

    async def submit(self, request: OrderRequest | Mapping[str, Any], order_id: Optional[str] = None) -> SubmitResult:
        return await self.queue.submit(order_id or generate_order_id(), request)

    async def subscribe(self, order_id: str, channel: Channel) -> Subscription:
        return await self.broadcaster.attach(order_id, channel)

    def get_metrics(self) -> Dict[str, int]:
        return self.queue.metrics().to_dict()

    async def get_order(self, order_id: str) -> Optional[Order]:
        return await asyncio.to_thread(self.database.get_order, order_id)

    async def get_executions(self, order_id: str) -> List[ExecutionResult]:
        return await asyncio.to_thread(self.database.list_executions, order_id)

    async def get_order_history(self, user_id: str, limit: int = 50) -> List[Order]:
        return await asyncio.to_thread(self.database.list_order_history, user_id, limit)


__all__ = ['OrderExecutionEngine', 'generate_order_id']
