"""Domain types shared by the intake queue, the pipeline and the broadcaster."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..errors import ValidationError

DEFAULT_SLIPPAGE = 1.0
CONNECTED_STATUS = 'connected'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OrderType(str, enum.Enum):
    MARKET = 'MARKET'
    LIMIT = 'LIMIT'
    SNIPER = 'SNIPER'


class OrderStatus(str, enum.Enum):
    PENDING = 'pending'
    ROUTING = 'routing'
    BUILDING = 'building'
    SUBMITTED = 'submitted'
    CONFIRMED = 'confirmed'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.CONFIRMED, OrderStatus.FAILED)


class Venue(str, enum.Enum):
    """Simulated venues; declaration order is the routing tie-break order."""

    RAYDIUM = 'RAYDIUM'
    METEORA = 'METEORA'


@dataclass(frozen=True)
class OrderRequest:
    """A validated order submission."""

    user_id: str
    order_type: OrderType
    token_in: str
    token_out: str
    amount_in: float
    slippage: float = DEFAULT_SLIPPAGE

    def validate(self) -> None:
        if self.amount_in <= 0:
            raise ValidationError('amountIn must be greater than 0', {'field': 'amountIn', 'value': self.amount_in})
        if not 0.0 <= self.slippage <= 100.0:
            raise ValidationError('slippage must be within [0, 100]', {'field': 'slippage', 'value': self.slippage})
        if not self.user_id or not self.token_in or not self.token_out:
            raise ValidationError('userId, tokenIn and tokenOut must not be empty')

    def to_payload(self) -> Dict[str, Any]:
        return {
            'userId': self.user_id,
            'orderType': self.order_type.value,
            'tokenIn': self.token_in,
            'tokenOut': self.token_out,
            'amountIn': self.amount_in,
            'slippage': self.slippage,
        }


@dataclass
class Order:
    order_id: str
    user_id: str
    order_type: OrderType
    token_in: str
    token_out: str
    amount_in: float
    slippage: float
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_request(cls, order_id: str, request: OrderRequest) -> 'Order':
        return cls(
            order_id=order_id,
            user_id=request.user_id,
            order_type=request.order_type,
            token_in=request.token_in,
            token_out=request.token_out,
            amount_in=request.amount_in,
            slippage=request.slippage,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'orderId': self.order_id,
            'userId': self.user_id,
            'orderType': self.order_type.value,
            'tokenIn': self.token_in,
            'tokenOut': self.token_out,
            'amountIn': self.amount_in,
            'slippage': self.slippage,
            'status': self.status.value,
            'createdAt': self.created_at.isoformat(),
            'updatedAt': self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class Quote:
    venue: Venue
    price: float
    fee: float
    liquidity: float
    effective_price: float
    estimated_output: float


@dataclass(frozen=True)
class RoutingDecision:
    best: Quote
    quotes: tuple[Quote, ...]


@dataclass(frozen=True)
class ExecutionOutcome:
    """What a venue reports back for a successful fill."""

    tx_hash: str
    executed_price: float
    amount_out: float
    gas_fee: float | None = None


@dataclass
class ExecutionResult:
    """One terminal attempt; success carries ``tx_hash``, failure carries ``failure_reason``."""

    order_id: str
    executed_at: datetime = field(default_factory=utc_now)
    tx_hash: str | None = None
    executed_price: float | None = None
    amount_out: float | None = None
    venue: Venue | None = None
    gas_fee: float | None = None
    failure_reason: str | None = None
    attempt: int = 1

    def __post_init__(self) -> None:
        if self.tx_hash and self.failure_reason:
            raise ValueError('An execution result cannot carry both a tx hash and a failure reason')

    @property
    def succeeded(self) -> bool:
        return bool(self.tx_hash) and self.failure_reason is None

    @classmethod
    def failure(cls, order_id: str, reason: str, *, venue: Venue | None = None, attempt: int = 1) -> 'ExecutionResult':
        return cls(order_id=order_id, venue=venue, failure_reason=reason, attempt=attempt)

    def to_payload(self) -> Dict[str, Any]:
        """Partial wire payload holding only the fields that are known."""
        payload: Dict[str, Any] = {}
        if self.tx_hash:
            payload['txHash'] = self.tx_hash
        if self.executed_price is not None:
            payload['executedPrice'] = self.executed_price
        if self.amount_out is not None:
            payload['amountOut'] = self.amount_out
        if self.venue is not None:
            payload['venue'] = self.venue.value
        if self.gas_fee is not None:
            payload['gasFee'] = self.gas_fee
        if self.succeeded:
            payload['executedAt'] = self.executed_at.isoformat()
        return payload


@dataclass(frozen=True)
class StatusUpdate:
    order_id: str
    status: OrderStatus | str
    message: str
    timestamp: datetime = field(default_factory=utc_now)
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def connected(cls, order_id: str) -> 'StatusUpdate':
        return cls(order_id=order_id, status=CONNECTED_STATUS, message='WebSocket connected successfully')

    @property
    def status_value(self) -> str:
        return self.status.value if isinstance(self.status, OrderStatus) else str(self.status)

    @property
    def is_terminal(self) -> bool:
        return isinstance(self.status, OrderStatus) and self.status.is_terminal

    def to_message(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {
            'orderId': self.order_id,
            'status': self.status_value,
            'timestamp': self.timestamp.isoformat(),
            'message': self.message,
        }
        if self.data:
            message['data'] = dict(self.data)
        if self.error is not None:
            message['error'] = self.error
        return message


__all__ = [
    'CONNECTED_STATUS',
    'DEFAULT_SLIPPAGE',
    'ExecutionOutcome',
    'ExecutionResult',
    'Order',
    'OrderRequest',
    'OrderStatus',
    'OrderType',
    'Quote',
    'RoutingDecision',
    'StatusUpdate',
    'Venue',
    'utc_now',
]
