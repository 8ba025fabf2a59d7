"""Application settings resolved from the environment and an optional .env file."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

logger = logging.getLogger(__name__)

_LOG_LEVELS = {'CRITICAL', 'ERROR', 'WARNING', 'INFO', 'DEBUG'}


def _parse_env_line(line: str) -> Optional[tuple[str, str]]:
    line = line.strip()
    if not line or line.startswith('#') or '=' not in line:
        return None
    if line.startswith('export '):
        line = line[len('export '):]
    key, value = line.split('=', 1)
    value = value.strip()
    if value[:1] in {'"', "'"} and value.endswith(value[0]) and len(value) > 1:
        value = value[1:-1]
    elif ' #' in value:
        value = value.split(' #', 1)[0].rstrip()
    return key.strip(), value


def read_env_file(path: Path) -> Dict[str, str]:
    """Parse KEY=VALUE lines; a missing file yields an empty mapping."""
    if not path.is_file():
        return {}
    values: Dict[str, str] = {}
    for raw_line in path.read_text().splitlines():
        parsed = _parse_env_line(raw_line)
        if parsed is not None:
            values[parsed[0]] = parsed[1]
    return values


def _normalize_database_url(url: str) -> str:
    # SQLAlchemy only recognises the postgresql:// scheme.
    if url.startswith('postgres://'):
        return 'postgresql://' + url[len('postgres://'):]
    return url


@dataclass
class Settings:
    """Process-wide settings.

    Process environment takes precedence over the ``.env`` file, which takes
    precedence over the defaults below. The merged mapping stays on
    ``environ`` so the component configs read the same view.
    """

    environment: str = 'development'
    database_url: str = 'sqlite:///data/order_execution.db'
    data_directory: Path = field(default_factory=lambda: Path('data'))
    log_level: str = 'INFO'
    host: str = '0.0.0.0'
    port: int = 3000
    environ: Dict[str, str] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self.data_directory = Path(self.data_directory)
        self.log_level = self.log_level.upper()
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f'Unknown log level: {self.log_level}')
        if not 0 < self.port < 65536:
            raise ValueError(f'port out of range: {self.port}')

    @classmethod
    def from_env(
        cls,
        env_file: str | Path = '.env',
        environ: Optional[Mapping[str, str]] = None,
    ) -> 'Settings':
        merged = {**read_env_file(Path(env_file)), **(os.environ if environ is None else environ)}
        settings = cls(
            environment=merged.get('APP_ENV', cls.environment),
            database_url=_normalize_database_url(merged.get('DATABASE_URL', cls.database_url)),
            data_directory=Path(merged.get('DATA_DIRECTORY', 'data')),
            log_level=merged.get('LOG_LEVEL', cls.log_level),
            host=merged.get('HOST', cls.host),
            port=int(merged.get('PORT', cls.port)),
            environ=merged,
        )
        settings.ensure_directories()
        logger.debug('Loaded settings for %s environment', settings.environment)
        return settings

    @property
    def is_production(self) -> bool:
        return self.environment == 'production'

    def ensure_directories(self) -> None:
        self.data_directory.mkdir(parents=True, exist_ok=True)


load_settings = Settings.from_env

__all__ = ['Settings', 'load_settings', 'read_env_file']
