"""SQLAlchemy-backed persistence for orders and execution history."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from sqlalchemy import Select, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import PersistenceError
from ..execution.types import ExecutionResult, Order, OrderStatus, OrderType, Venue
from .models import Base, OrderExecution, StoredOrder


def _as_utc(value: datetime) -> datetime:
    """Ensure datetimes are timezone-aware in UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_order(row: StoredOrder) -> Order:
    return Order(
        order_id=row.order_id,
        user_id=row.user_id,
        order_type=OrderType(row.order_type),
        token_in=row.token_in,
        token_out=row.token_out,
        amount_in=row.amount_in,
        slippage=row.slippage,
        status=OrderStatus(row.status),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def _to_result(row: OrderExecution) -> ExecutionResult:
    return ExecutionResult(
        order_id=row.order_id,
        executed_at=_as_utc(row.executed_at),
        tx_hash=row.tx_hash,
        executed_price=row.executed_price,
        amount_out=row.amount_out,
        venue=Venue(row.venue) if row.venue else None,
        gas_fee=row.gas_fee,
        failure_reason=row.failure_reason,
        attempt=row.attempt,
    )


class DatabaseManager:
    """High level helper around a SQLAlchemy engine and session factory.

    Methods are synchronous; async callers run them through
    :func:`asyncio.to_thread`. Every SQLAlchemy failure surfaces as
    :class:`PersistenceError`.
    """

    def __init__(self, database_url: str, *, echo: bool = False) -> None:
        self._database_url = database_url
        connect_args: dict[str, object] = {}
        if database_url.startswith('sqlite:///'):
            db_path = Path(database_url.replace('sqlite:///', '', 1))
            db_path.parent.mkdir(parents=True, exist_ok=True)
            connect_args['check_same_thread'] = False
        self._engine: Engine = create_engine(
            database_url,
            echo=echo,
            future=True,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
        self._session_factory = sessionmaker(
            self._engine,
            expire_on_commit=False,
            future=True,
        )
        self.create_schema()

    def create_schema(self) -> None:
        """Create database tables if they do not already exist."""

        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f'Failed to initialize schema: {exc}') from exc

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager returning a database session with automatic commit."""

        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError(str(exc)) from exc
        except Exception:  # pragma: no cover - re-raise after rollback
            session.rollback()
            raise
        finally:
            session.close()

    def create_order_if_absent(self, order: Order) -> bool:
        """Insert the order unless a row with its identifier exists. Returns True on insert."""

        with self.session() as session:
            if session.get(StoredOrder, order.order_id) is not None:
                return False
            session.add(
                StoredOrder(
                    order_id=order.order_id,
                    user_id=order.user_id,
                    order_type=order.order_type.value,
                    token_in=order.token_in,
                    token_out=order.token_out,
                    amount_in=order.amount_in,
                    slippage=order.slippage,
                    status=order.status.value,
                    created_at=_as_utc(order.created_at),
                    updated_at=_as_utc(order.updated_at),
                )
            )
            return True

    def update_status(self, order_id: str, status: OrderStatus) -> None:
        with self.session() as session:
            row = session.get(StoredOrder, order_id)
            if row is None:
                return
            row.status = status.value
            row.updated_at = datetime.now(timezone.utc)

    def append_execution_result(self, result: ExecutionResult, failure_reason: Optional[str] = None) -> None:
        """Append one attempt to the order's execution history."""

        with self.session() as session:
            session.add(
                OrderExecution(
                    order_id=result.order_id,
                    attempt=result.attempt,
                    tx_hash=result.tx_hash or None,
                    executed_price=result.executed_price,
                    amount_out=result.amount_out,
                    venue=result.venue.value if result.venue else None,
                    gas_fee=result.gas_fee,
                    failure_reason=failure_reason or result.failure_reason,
                    executed_at=_as_utc(result.executed_at),
                )
            )

    def get_order(self, order_id: str) -> Optional[Order]:
        with self.session() as session:
            row = session.get(StoredOrder, order_id)
            return _to_order(row) if row is not None else None

    def list_order_history(self, user_id: str, limit: int = 50) -> List[Order]:
        """Return a user's orders, newest first."""

        if limit <= 0:
            return []
        stmt: Select[tuple[StoredOrder]] = (
            select(StoredOrder)
            .where(StoredOrder.user_id == user_id)
            .order_by(StoredOrder.created_at.desc())
            .limit(limit)
        )
        with self.session() as session:
            rows = session.execute(stmt).scalars().all()
            return [_to_order(row) for row in rows]

    def list_executions(self, order_id: str) -> List[ExecutionResult]:
        """Return the execution history of an order, oldest attempt first."""

        stmt: Select[tuple[OrderExecution]] = (
            select(OrderExecution)
            .where(OrderExecution.order_id == order_id)
            .order_by(OrderExecution.id)
        )
        with self.session() as session:
            rows = session.execute(stmt).scalars().all()
            return [_to_result(row) for row in rows]

    def close(self) -> None:
        """Dispose of the underlying engine and connection pool."""

        self._engine.dispose()


__all__ = ['DatabaseManager']
