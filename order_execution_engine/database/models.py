"""SQLAlchemy ORM models for orders and their execution history."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class StoredOrder(Base):
    """Durable order row; one per order identifier."""

    __tablename__ = 'orders'
    __table_args__ = (
        Index('idx_orders_user_created', 'user_id', 'created_at'),
    )

    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    order_type: Mapped[str] = mapped_column(String(20))
    token_in: Mapped[str] = mapped_column(String(255))
    token_out: Mapped[str] = mapped_column(String(255))
    amount_in: Mapped[float] = mapped_column(Float)
    slippage: Mapped[float] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String(20), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class OrderExecution(Base):
    """Append-only record of a single terminal attempt."""

    __tablename__ = 'order_executions'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(64), ForeignKey('orders.order_id'), index=True)
    attempt: Mapped[int] = mapped_column(Integer, default=1)
    tx_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    executed_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    amount_out: Mapped[float | None] = mapped_column(Float, nullable=True)
    venue: Mapped[str | None] = mapped_column(String(20), nullable=True)
    gas_fee: Mapped[float | None] = mapped_column(Float, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


__all__ = ['Base', 'StoredOrder', 'OrderExecution']
