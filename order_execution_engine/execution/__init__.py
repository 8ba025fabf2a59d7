"""Order execution layer."""

from .types import (
    ExecutionOutcome,
    ExecutionResult,
    Order,
    OrderRequest,
    OrderStatus,
    OrderType,
    Quote,
    RoutingDecision,
    StatusUpdate,
    Venue,
)
from .schemas import OrderSubmission, to_validation_error
from .venue_router import VenueRouter, compare_quotes
from .pipeline import OrderPipeline, OutcomeKind, RunOutcome

__all__ = [
    'ExecutionOutcome',
    'ExecutionResult',
    'Order',
    'OrderPipeline',
    'OrderRequest',
    'OrderStatus',
    'OrderSubmission',
    'OrderType',
    'OutcomeKind',
    'Quote',
    'RoutingDecision',
    'RunOutcome',
    'StatusUpdate',
    'Venue',
    'VenueRouter',
    'compare_quotes',
    'to_validation_error',
]
