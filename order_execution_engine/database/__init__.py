"""Persistence layer exports."""

from .db_manager import DatabaseManager
from .models import Base, OrderExecution, StoredOrder
from .session_store import SessionStore

__all__ = [
    'DatabaseManager',
    'Base',
    'OrderExecution',
    'StoredOrder',
    'SessionStore',
]
