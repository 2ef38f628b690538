"""Request body helpers giving consistent 400 errors."""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from shopadmin.errors import ValidationError


def require_fields(data: Dict[str, Any], fields: Iterable[str]) -> None:
    missing = [f for f in fields if data.get(f) in (None, '')]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required")


def parse_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ('true', 'false', '1', '0'):
        return value.lower() in ('true', '1')
    raise ValidationError(f'{field_name} must be a boolean')


def parse_int(value: Any, field_name: str, minimum: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise ValidationError(f'{field_name} must be an integer')
    try:
        out = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field_name} must be an integer')
    if minimum is not None and out < minimum:
        raise ValidationError(f'{field_name} must be >= {minimum}')
    return out


def parse_datetime(value: Any, field_name: str) -> Optional[datetime]:
    """ISO-8601 string to naive UTC datetime; None passes through."""
    if value in (None, ''):
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f'{field_name} must be an ISO-8601 timestamp')
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


__all__ = ['require_fields', 'parse_bool', 'parse_int', 'parse_datetime']
