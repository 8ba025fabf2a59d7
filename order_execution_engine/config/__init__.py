"""Configuration utilities for the order execution engine."""

from .config import Settings, load_settings
from .engine_config import BroadcastConfig, QueueConfig, VenueConfig

__all__ = ['Settings', 'BroadcastConfig', 'QueueConfig', 'VenueConfig', 'load_settings']
