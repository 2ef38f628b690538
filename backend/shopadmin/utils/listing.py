from __future__ import annotations
from typing import Any, Tuple

from flask import request

from shopadmin.errors import ValidationError

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def normalize_pagination(limit_raw: Any, offset_raw: Any) -> Tuple[int, int]:
    """Clamp limit to [1, MAX_LIMIT] and offset to >= 0; non-integers raise ValueError."""
    try:
        limit = int(limit_raw) if limit_raw not in (None, '') else DEFAULT_LIMIT
        offset = int(offset_raw) if offset_raw not in (None, '') else 0
    except ValueError:
        raise ValueError('limit/offset must be int')
    return max(1, min(limit, MAX_LIMIT)), max(0, offset)


def pagination_params() -> Tuple[int, int]:
    try:
        return normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        raise ValidationError(str(e))


def build_list_payload(rows: list, total: int, limit: int, offset: int, **extra: Any):
    payload = {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }
    payload.update(extra)
    return payload
