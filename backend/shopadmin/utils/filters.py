from __future__ import annotations
from typing import Any, Dict, List

from shopadmin.errors import ValidationError


def build_filters(specs: Dict[str, Dict[str, Any]], params: Dict[str, Any]) -> List[Any]:
    """Turn query-string params into SQL criteria.

    specs: { param_name: { 'clause': callable(value)->criterion, 'coerce': type/func, 'validate': callable(optional) } }
    Params that are absent or empty are ignored.
    """
    criteria = []
    for name, meta in specs.items():
        val = params.get(name)
        if val is None or val == '':
            continue
        if 'coerce' in meta:
            try:
                val = meta['coerce'](val)
            except (TypeError, ValueError, ValidationError):
                raise ValidationError(f'{name} invalid')
        if 'validate' in meta and not meta['validate'](val):
            raise ValidationError(f'{name} invalid')
        criteria.append(meta['clause'](val))
    return criteria


def as_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    lowered = str(raw).lower()
    if lowered in ('true', '1', 'yes'):
        return True
    if lowered in ('false', '0', 'no'):
        return False
    raise ValueError(raw)
