"""Error taxonomy for order intake and execution."""

from __future__ import annotations

from typing import Any, Dict, Optional


class OrderEngineError(Exception):
    """Base exception carrying a stable error code and structured details."""

    def __init__(
        self,
        message: str,
        error_code: str = 'UNKNOWN',
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(OrderEngineError):
    """Malformed order submission; rejected before it reaches the queue."""

    def __init__(self, message: str = 'Validation failed', details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, 'VALIDATION_ERROR', details)


class VenueExecutionError(OrderEngineError):
    """Simulated liquidity or network failure while executing on a venue."""

    def __init__(self, message: str = 'Venue execution failed', details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, 'VENUE_EXECUTION_ERROR', details)


class PersistenceError(OrderEngineError):
    """The storage collaborator rejected or could not complete a call."""

    def __init__(self, message: str = 'Persistence failed', details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, 'PERSISTENCE_ERROR', details)


class ExhaustedRetriesError(OrderEngineError):
    """Every allowed attempt failed; the order stays FAILED."""

    def __init__(
        self,
        order_id: str,
        attempts: int,
        last_reason: str,
    ) -> None:
        super().__init__(
            f'Order {order_id} failed after {attempts} attempts: {last_reason}',
            'EXHAUSTED_RETRIES',
            {'order_id': order_id, 'attempts': attempts, 'last_reason': last_reason},
        )
        self.order_id = order_id
        self.attempts = attempts
        self.last_reason = last_reason


class QueueClosedError(OrderEngineError):
    """Submission attempted after shutdown started."""

    def __init__(self, message: str = 'Order queue is closed', details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, 'QUEUE_CLOSED', details)


__all__ = [
    'OrderEngineError',
    'ValidationError',
    'VenueExecutionError',
    'PersistenceError',
    'ExhaustedRetriesError',
    'QueueClosedError',
]
