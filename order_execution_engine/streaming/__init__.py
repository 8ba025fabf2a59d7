"""Status streaming to order subscribers."""

from .broadcaster import StatusBroadcaster, Subscription
from .channels import Channel, QueueChannel, WebSocketChannel

__all__ = ['Channel', 'QueueChannel', 'StatusBroadcaster', 'Subscription', 'WebSocketChannel']
