"""Exponential backoff policy applied between order attempts."""

from __future__ import annotations

from dataclasses import dataclass

from ..config import QueueConfig
from ..execution.pipeline import OutcomeKind, RunOutcome


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_ms: int = 2_000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f'max_attempts must be positive: {self.max_attempts}')
        if self.base_delay_ms < 0:
            raise ValueError(f'base_delay_ms must not be negative: {self.base_delay_ms}')

    @classmethod
    def from_config(cls, config: QueueConfig) -> 'RetryPolicy':
        return cls(max_attempts=config.max_retry_attempts, base_delay_ms=config.retry_base_delay_ms)

    def delay_for(self, attempts_made: int) -> float:
        """Seconds to wait after ``attempts_made`` failed attempts (2s, 4s, 8s, ... by default)."""
        if attempts_made < 1:
            return 0.0
        return self.base_delay_ms * (2 ** (attempts_made - 1)) / 1000

    def should_retry(self, outcome: RunOutcome, attempts_made: int) -> bool:
        return outcome.kind is OutcomeKind.RETRYABLE and attempts_made < self.max_attempts


__all__ = ['RetryPolicy']
