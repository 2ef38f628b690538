"""Environment driven settings consumed by create_app().

Every key can be overridden through the config dict passed to create_app,
which is how the test-suite swaps in an in-memory database.
"""
from __future__ import annotations
from typing import Any, Dict
import os

DEFAULT_LOW_STOCK_THRESHOLD = 5
DEFAULT_DEDUP_HOURS = 24
DEFAULT_RETENTION_DAYS = 30


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f'{name} must be an integer, got {raw!r}')


def load_settings() -> Dict[str, Any]:
    return {
        'JWT_SECRET_KEY': os.getenv('JWT_SECRET_KEY', 'dev-secret'),
        'DATABASE_URL': os.getenv('DATABASE_URL', 'sqlite:///dev.db'),
        'LOG_LEVEL': os.getenv('LOG_LEVEL', 'INFO').upper(),
        'SCHEDULER_ENABLED': _env_bool('SCHEDULER_ENABLED', False),
        'LOW_STOCK_THRESHOLD': _env_int('LOW_STOCK_THRESHOLD', DEFAULT_LOW_STOCK_THRESHOLD),
        'NOTIFICATION_DEDUP_HOURS': _env_int('NOTIFICATION_DEDUP_HOURS', DEFAULT_DEDUP_HOURS),
        'NOTIFICATION_RETENTION_DAYS': _env_int('NOTIFICATION_RETENTION_DAYS', DEFAULT_RETENTION_DAYS),
        'SUPER_ADMIN_EMAIL': os.getenv('SUPER_ADMIN_EMAIL'),
        'SUPER_ADMIN_PASSWORD': os.getenv('SUPER_ADMIN_PASSWORD'),
    }
