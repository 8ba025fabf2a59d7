"""Delivers order status transitions to at most one live subscriber per order."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from ..config import BroadcastConfig
from ..database.session_store import SessionStore
from ..execution.types import StatusUpdate, utc_now
from .channels import Channel

logger = logging.getLogger(__name__)


def _session_key(order_id: str) -> str:
    return f'ws:{order_id}'


@dataclass
class Subscription:
    order_id: str
    channel: Channel
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    is_alive: bool = True
    attached_at: datetime = field(default_factory=utc_now)


class StatusBroadcaster:
    """Registry of subscriber channels keyed by order identifier.

    Updates for an order with no open subscriber are dropped; late subscribers
    do not receive earlier transitions. A periodic sweep detaches channels
    that did not acknowledge the previous ping.
    """

    def __init__(
        self,
        config: Optional[BroadcastConfig] = None,
        *,
        store: Optional[SessionStore] = None,
    ) -> None:
        self._config = config or BroadcastConfig()
        self._store = store
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = asyncio.Lock()
        self._heartbeat_task: Optional[asyncio.Task[None]] = None

    @property
    def active_connections(self) -> int:
        return len(self._subscriptions)

    def is_subscribed(self, order_id: str) -> bool:
        return order_id in self._subscriptions

    async def attach(self, order_id: str, channel: Channel) -> Subscription:
        """Register ``channel`` as the sole subscriber and acknowledge it.

        The acknowledgment is sent while the registry lock is held, so no
        pipeline update can reach the channel before it.
        """
        subscription = Subscription(order_id=order_id, channel=channel)
        async with self._lock:
            previous = self._subscriptions.get(order_id)
            self._subscriptions[order_id] = subscription
            try:
                await channel.send_json(StatusUpdate.connected(order_id).to_message())
            except Exception:
                del self._subscriptions[order_id]
                if previous is not None:
                    self._subscriptions[order_id] = previous
                logger.warning('Failed to acknowledge subscriber for order %s', order_id)
                raise
        if self._store is not None:
            self._store.set(_session_key(order_id), subscription.connection_id, ttl=self._config.session_ttl_s)
        if previous is not None and previous.channel is not channel:
            logger.info('Replacing subscriber for order %s', order_id)
            await self._close_channel(previous.channel)
        logger.info('Subscriber connected for order %s', order_id)
        return subscription

    async def publish(self, order_id: str, update: StatusUpdate) -> bool:
        """Deliver ``update``; returns False when it was dropped."""
        async with self._lock:
            subscription = self._subscriptions.get(order_id)
        if subscription is None:
            logger.debug('No active subscriber for order %s, dropping %s', order_id, update.status_value)
            return False
        if not subscription.channel.is_open:
            logger.debug('Subscriber for order %s already closed, dropping %s', order_id, update.status_value)
            await self.detach(order_id, subscription.channel)
            return False
        try:
            await subscription.channel.send_json(update.to_message())
        except Exception as exc:
            logger.warning('Delivery to order %s failed (%s); detaching subscriber', order_id, exc)
            await self.detach(order_id, subscription.channel)
            return False
        logger.debug('Status update sent for order %s: %s', order_id, update.status_value)
        return True

    async def detach(self, order_id: str, channel: Optional[Channel] = None) -> bool:
        """Remove the subscriber; with ``channel`` only if it is still the registered one."""
        async with self._lock:
            subscription = self._subscriptions.get(order_id)
            if subscription is None:
                return False
            if channel is not None and subscription.channel is not channel:
                return False
            del self._subscriptions[order_id]
        if self._store is not None and self._store.get(_session_key(order_id)) == subscription.connection_id:
            self._store.delete(_session_key(order_id))
        logger.info('Subscriber disconnected for order %s', order_id)
        return True

    async def close(self, order_id: str) -> None:
        """Detach and close the subscriber channel, if any."""
        async with self._lock:
            subscription = self._subscriptions.get(order_id)
        if subscription is None:
            return
        await self.detach(order_id, subscription.channel)
        await self._close_channel(subscription.channel)

    def acknowledge(self, order_id: str) -> None:
        subscription = self._subscriptions.get(order_id)
        if subscription is not None:
            subscription.is_alive = True

    async def sweep(self) -> int:
        """Run one liveness pass; returns the number of detached subscribers."""
        stale: List[Subscription] = []
        live: List[Subscription] = []
        async with self._lock:
            for order_id, subscription in list(self._subscriptions.items()):
                if not subscription.is_alive or not subscription.channel.is_open:
                    del self._subscriptions[order_id]
                    stale.append(subscription)
                else:
                    subscription.is_alive = False
                    live.append(subscription)

        for subscription in stale:
            logger.info('Terminating stale connection for order %s', subscription.order_id)
            if self._store is not None:
                self._store.delete(_session_key(subscription.order_id))
            await self._close_channel(subscription.channel)

        for subscription in live:
            try:
                await subscription.channel.ping()
            except Exception as exc:
                logger.warning('Ping for order %s failed (%s)', subscription.order_id, exc)
                await self.detach(subscription.order_id, subscription.channel)
                stale.append(subscription)

        if self._store is not None:
            self._store.purge_expired()
        return len(stale)

    async def start(self) -> None:
        if self._heartbeat_task is None or self._heartbeat_task.done():
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name='status-heartbeat')

    async def stop(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._heartbeat_task
            self._heartbeat_task = None
        async with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for subscription in subscriptions:
            await self._close_channel(subscription.channel)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.heartbeat_interval_s)
            detached = await self.sweep()
            if detached:
                logger.info('Heartbeat detached %d stale subscribers', detached)

    async def _close_channel(self, channel: Channel) -> None:
        try:
            await channel.close()
        except Exception as exc:
            logger.debug('Ignoring error while closing channel: %s', exc)


__all__ = ['StatusBroadcaster', 'Subscription']
