"""Per-order state machine: PENDING -> ROUTING -> BUILDING -> SUBMITTED -> CONFIRMED | FAILED."""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from ..config import QueueConfig
from ..errors import ValidationError
from .types import (
    ExecutionResult,
    Order,
    OrderRequest,
    OrderStatus,
    RoutingDecision,
    StatusUpdate,
    Venue,
)
from .venue_router import VenueRouter

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

_STATUS_WRITE_ATTEMPTS = 3


class OrderStore(Protocol):
    """Storage collaborator consumed by the pipeline."""

    def create_order_if_absent(self, order: Order) -> bool: ...

    def update_status(self, order_id: str, status: OrderStatus) -> None: ...

    def append_execution_result(self, result: ExecutionResult, failure_reason: Optional[str] = None) -> None: ...

    def get_order(self, order_id: str) -> Optional[Order]: ...

    def list_order_history(self, user_id: str, limit: int = 50) -> List[Order]: ...


class StatusPublisher(Protocol):
    async def publish(self, order_id: str, update: StatusUpdate) -> bool: ...

    async def close(self, order_id: str) -> None: ...


class OutcomeKind(str, enum.Enum):
    SUCCESS = 'success'
    RETRYABLE = 'retryable'
    FATAL = 'fatal'


@dataclass(frozen=True)
class RunOutcome:
    """Result of one pipeline attempt, consumed by the queue's retry policy."""

    kind: OutcomeKind
    result: Optional[ExecutionResult] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def reason(self) -> str:
        return str(self.error) if self.error is not None else ''


class OrderPipeline:
    """Drives a single order attempt through its stages.

    Every stage publishes exactly one update, in state-machine order. Stage
    failures are converted into a persisted FAILED transition and reported
    through :class:`RunOutcome`; they are never re-raised.
    """

    def __init__(
        self,
        router: VenueRouter,
        store: OrderStore,
        publisher: StatusPublisher,
        config: Optional[QueueConfig] = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._router = router
        self._store = store
        self._publisher = publisher
        self._config = config or QueueConfig()
        self._sleep = sleep

    async def run(
        self,
        order_id: str,
        request: OrderRequest,
        *,
        attempt: int = 1,
        max_attempts: int = 1,
    ) -> RunOutcome:
        venue: Optional[Venue] = None
        try:
            request.validate()
            await self._emit(order_id, OrderStatus.PENDING, 'Order received and queued')
            await self._sleep(self._config.subscriber_grace_ms / 1000)
            await self._ensure_order_record(order_id, request)

            decision = await self._route(order_id, request)
            venue = decision.best.venue
            await self._emit(
                order_id,
                OrderStatus.ROUTING,
                f'Routing to {venue.value} (best of {len(decision.quotes)} venues)',
                data={'venue': venue.value, 'estimatedOutput': decision.best.estimated_output},
            )

            await self._emit(
                order_id,
                OrderStatus.BUILDING,
                f'Building transaction for {venue.value}',
                data={'venue': venue.value},
            )
            await self._sleep(self._config.build_delay_ms / 1000)

            await self._emit(order_id, OrderStatus.SUBMITTED, 'Transaction submitted to network', data={'venue': venue.value})
            execution = await self._router.execute(
                venue,
                request.token_in,
                request.token_out,
                request.amount_in,
                request.slippage,
                quoted_price=decision.best.effective_price,
            )
        except Exception as exc:
            return await self._fail(order_id, exc, venue=venue, attempt=attempt, max_attempts=max_attempts)

        # The venue has filled; from here on the attempt can only end CONFIRMED.
        result = ExecutionResult(
            order_id=order_id,
            tx_hash=execution.tx_hash,
            executed_price=execution.executed_price,
            amount_out=execution.amount_out,
            venue=venue,
            gas_fee=execution.gas_fee,
            attempt=attempt,
        )
        await self._record_fill(result)

        logger.info(
            'Order %s confirmed on %s: out=%.6f price=%.6f tx=%s',
            order_id,
            venue.value,
            result.amount_out,
            result.executed_price,
            result.tx_hash[:12],
        )
        await self._emit(
            order_id,
            OrderStatus.CONFIRMED,
            'Order executed successfully',
            data={**result.to_payload(), 'attempt': result.attempt},
        )
        await self._publisher.close(order_id)
        return RunOutcome(OutcomeKind.SUCCESS, result=result)

    async def _record_fill(self, result: ExecutionResult) -> None:
        """Persist a filled attempt. Storage errors are logged, never turned into a retry."""
        try:
            await asyncio.to_thread(self._store.append_execution_result, result)
        except Exception:
            logger.exception('Order %s filled (tx=%s) but its execution row was not stored', result.order_id, result.tx_hash)

        for write in range(1, _STATUS_WRITE_ATTEMPTS + 1):
            try:
                await asyncio.to_thread(self._store.update_status, result.order_id, OrderStatus.CONFIRMED)
                return
            except Exception as exc:
                logger.warning(
                    'Status write %d/%d for filled order %s failed: %s',
                    write,
                    _STATUS_WRITE_ATTEMPTS,
                    result.order_id,
                    exc,
                )
        logger.error('Order %s filled but its status could not be marked confirmed', result.order_id)

    async def _ensure_order_record(self, order_id: str, request: OrderRequest) -> None:
        existing = await asyncio.to_thread(self._store.get_order, order_id)
        if existing is None:
            await asyncio.to_thread(self._store.create_order_if_absent, Order.from_request(order_id, request))

    async def _route(self, order_id: str, request: OrderRequest) -> RoutingDecision:
        decision = await self._router.get_best_quote(request.token_in, request.token_out, request.amount_in)
        logger.info(
            'Order %s routing decision: %s selected=%s',
            order_id,
            ', '.join(
                f'{quote.venue.value}(price={quote.effective_price:.6f}, out={quote.estimated_output:.6f})'
                for quote in decision.quotes
            ),
            decision.best.venue.value,
        )
        return decision

    async def _fail(
        self,
        order_id: str,
        exc: Exception,
        *,
        venue: Optional[Venue],
        attempt: int,
        max_attempts: int,
    ) -> RunOutcome:
        reason = str(exc) or exc.__class__.__name__
        kind = OutcomeKind.FATAL if isinstance(exc, ValidationError) else OutcomeKind.RETRYABLE
        logger.error('Order %s failed on attempt %d/%d: %s', order_id, attempt, max_attempts, reason)

        failure = ExecutionResult.failure(order_id, reason, venue=venue, attempt=attempt)
        try:
            await asyncio.to_thread(self._store.update_status, order_id, OrderStatus.FAILED)
            await asyncio.to_thread(self._store.append_execution_result, failure, reason)
        except Exception as persist_exc:
            logger.exception('Could not persist failure for order %s: %s', order_id, persist_exc)

        will_retry = kind is OutcomeKind.RETRYABLE and attempt < max_attempts
        message = 'Order execution failed'
        if will_retry:
            message = f'Order execution failed (attempt {attempt}/{max_attempts}), retrying'
        data: Dict[str, Any] = {'attempt': attempt, 'maxAttempts': max_attempts, 'willRetry': will_retry}
        if venue is not None:
            data['venue'] = venue.value
        await self._emit(order_id, OrderStatus.FAILED, message, data=data, error=reason)
        await self._publisher.close(order_id)
        return RunOutcome(kind, result=failure, error=exc)

    async def _emit(
        self,
        order_id: str,
        status: OrderStatus,
        message: str,
        *,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        await self._publisher.publish(
            order_id,
            StatusUpdate(order_id=order_id, status=status, message=message, data=data, error=error),
        )


__all__ = ['OrderPipeline', 'OrderStore', 'OutcomeKind', 'RunOutcome', 'StatusPublisher']
