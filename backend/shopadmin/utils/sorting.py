from __future__ import annotations
from shopadmin.errors import ValidationError


def sort_clauses(sort_expr: str | None, allowed: dict, tie_breaker) -> list:
    """Translate ``?sort=-stock,name`` into ORDER BY clauses.

    sort_expr: comma-separated tokens, each optionally prefixed with '-'.
    allowed: mapping of field key -> column object.
    tie_breaker: column appended for deterministic ordering.
    """
    clauses = []
    for raw in (sort_expr or '').split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token[1:] if desc else token
        col = allowed.get(key)
        if col is None:
            raise ValidationError(f'Invalid sort field {key}')
        clauses.append(col.desc() if desc else col.asc())
    clauses.append(tie_breaker.asc())
    return clauses
