"""Core package for the order execution engine."""

from importlib import metadata

try:
    __version__ = metadata.version('order-execution-engine')
except metadata.PackageNotFoundError:  # pragma: no cover
    __version__ = '0.1.0-dev'

__all__ = ['__version__']
