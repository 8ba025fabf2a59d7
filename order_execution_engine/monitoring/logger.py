"""Logging helpers."""

from __future__ import annotations

import logging
from typing import Iterable

_NOISY_LOGGERS = ('sqlalchemy.engine', 'uvicorn.access')


def configure_logging(
    level: str = 'INFO',
    *,
    include_timestamp: bool = True,
    quiet: Iterable[str] = _NOISY_LOGGERS,
) -> None:
    """Configure root logging handlers and tone down chatty third-party loggers."""
    fmt = '%(asctime)s - %(name)s - %(levelname)s - %(message)s' if include_timestamp else '%(name)s - %(levelname)s - %(message)s'
    resolved = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=resolved, format=fmt)
    for name in quiet:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))


__all__ = ['configure_logging']
