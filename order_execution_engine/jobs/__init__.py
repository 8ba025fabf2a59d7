"""Order intake, admission control and retry scheduling."""

from .order_queue import Job, JobState, OrderQueue, QueueMetrics, SubmitResult
from .rate_limiter import RateLimitStats, SlidingWindowRateLimiter
from .retry import RetryPolicy
from .worker_pool import WorkerPool

__all__ = [
    'Job',
    'JobState',
    'OrderQueue',
    'QueueMetrics',
    'RateLimitStats',
    'RetryPolicy',
    'SlidingWindowRateLimiter',
    'SubmitResult',
    'WorkerPool',
]
