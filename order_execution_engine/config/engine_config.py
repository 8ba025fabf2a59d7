"""Tunables for the queue, the venue simulator and the status broadcaster."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .config import Settings


def _environ(settings: Settings | None, environ: Mapping[str, str] | None) -> Mapping[str, str]:
    if environ is not None:
        return environ
    if settings is not None and settings.environ:
        return settings.environ
    return os.environ


@dataclass
class QueueConfig:
    """Admission, concurrency and retry limits for order execution."""

    max_concurrent_orders: int = 10
    orders_per_minute: int = 100
    max_retry_attempts: int = 3
    retry_base_delay_ms: int = 2_000
    job_retention: int = 100
    subscriber_grace_ms: int = 500
    build_delay_ms: int = 500

    def __post_init__(self) -> None:
        if self.max_concurrent_orders < 1:
            raise ValueError(f'max_concurrent_orders must be positive: {self.max_concurrent_orders}')
        if self.orders_per_minute < 1:
            raise ValueError(f'orders_per_minute must be positive: {self.orders_per_minute}')
        if self.max_retry_attempts < 1:
            raise ValueError(f'max_retry_attempts must be positive: {self.max_retry_attempts}')
        if self.retry_base_delay_ms < 0 or self.subscriber_grace_ms < 0 or self.build_delay_ms < 0:
            raise ValueError('Delays must not be negative')
        if self.job_retention < 0:
            raise ValueError(f'job_retention must not be negative: {self.job_retention}')

    @classmethod
    def from_env(
        cls,
        settings: Settings | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> 'QueueConfig':
        env = _environ(settings, environ)
        return cls(
            max_concurrent_orders=int(env.get('MAX_CONCURRENT_ORDERS', cls.max_concurrent_orders)),
            orders_per_minute=int(env.get('ORDERS_PER_MINUTE', cls.orders_per_minute)),
            max_retry_attempts=int(env.get('MAX_RETRY_ATTEMPTS', cls.max_retry_attempts)),
            retry_base_delay_ms=int(env.get('RETRY_BASE_DELAY_MS', cls.retry_base_delay_ms)),
            job_retention=int(env.get('JOB_RETENTION', cls.job_retention)),
            subscriber_grace_ms=int(env.get('SUBSCRIBER_GRACE_MS', cls.subscriber_grace_ms)),
            build_delay_ms=int(env.get('BUILD_DELAY_MS', cls.build_delay_ms)),
        )


@dataclass
class VenueConfig:
    """Latency and failure injection for the simulated venues."""

    quote_delay_ms: int = 200
    quote_jitter_ms: int = 50
    execution_delay_ms: int = 2_000
    execution_jitter_ms: int = 1_000
    wrap_delay_ms: int = 200
    failure_rate: float = 0.05
    native_token: str = 'SOL'
    base_price: float = 1.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.failure_rate <= 1.0:
            raise ValueError(f'failure_rate must be within [0, 1]: {self.failure_rate}')
        delays = (
            self.quote_delay_ms,
            self.quote_jitter_ms,
            self.execution_delay_ms,
            self.execution_jitter_ms,
            self.wrap_delay_ms,
        )
        if any(delay < 0 for delay in delays):
            raise ValueError('Delays must not be negative')
        if self.base_price <= 0:
            raise ValueError(f'base_price must be positive: {self.base_price}')
        self.native_token = self.native_token.upper()

    @classmethod
    def from_env(
        cls,
        settings: Settings | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> 'VenueConfig':
        env = _environ(settings, environ)
        return cls(
            quote_delay_ms=int(env.get('MOCK_QUOTE_DELAY_MS', cls.quote_delay_ms)),
            quote_jitter_ms=int(env.get('MOCK_QUOTE_JITTER_MS', cls.quote_jitter_ms)),
            execution_delay_ms=int(env.get('MOCK_EXECUTION_DELAY_MS', cls.execution_delay_ms)),
            execution_jitter_ms=int(env.get('MOCK_EXECUTION_JITTER_MS', cls.execution_jitter_ms)),
            wrap_delay_ms=int(env.get('MOCK_WRAP_DELAY_MS', cls.wrap_delay_ms)),
            failure_rate=float(env.get('MOCK_FAILURE_RATE', cls.failure_rate)),
            native_token=env.get('NATIVE_TOKEN', cls.native_token),
        )


@dataclass
class BroadcastConfig:
    """Subscriber liveness and connection bookkeeping."""

    heartbeat_interval_s: float = 30.0
    session_ttl_s: int = 24 * 3600

    def __post_init__(self) -> None:
        if self.heartbeat_interval_s <= 0:
            raise ValueError(f'heartbeat_interval_s must be positive: {self.heartbeat_interval_s}')
        if self.session_ttl_s <= 0:
            raise ValueError(f'session_ttl_s must be positive: {self.session_ttl_s}')

    @classmethod
    def from_env(
        cls,
        settings: Settings | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> 'BroadcastConfig':
        env = _environ(settings, environ)
        return cls(
            heartbeat_interval_s=float(env.get('WS_HEARTBEAT_SECONDS', cls.heartbeat_interval_s)),
            session_ttl_s=int(env.get('SESSION_TTL_SECONDS', cls.session_ttl_s)),
        )


__all__ = ['QueueConfig', 'VenueConfig', 'BroadcastConfig']
