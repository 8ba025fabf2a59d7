"""HTTP interface for order intake and status streaming."""

from .server import create_app

__all__ = ['create_app']
