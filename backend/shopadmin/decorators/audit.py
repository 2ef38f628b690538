"""Audit logging decorator for route handlers.

@audit_log('USER.ROLE.ASSIGN', entity='User', entity_id_arg='user_id',
           meta_builder=lambda data, args, kwargs: {'role': data.get('role')})
def assign_user_role(user_id): ...

Only successful responses (status < 400) are recorded. The handler's payload
(first element of a tuple return) feeds entity_id_key / meta_keys / meta_builder.
"""
from __future__ import annotations
from functools import wraps
from typing import Any, Callable, Iterable, Optional
import logging

from shopadmin import get_db
from shopadmin.services.audit import add_audit

logger = logging.getLogger(__name__)


def _split_return(rv: Any):
    if isinstance(rv, tuple) and rv:
        status = rv[1] if len(rv) > 1 and isinstance(rv[1], int) else 200
        return rv[0], status
    return rv, 200


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, tuple, dict], dict]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            rv = fn(*args, **kwargs)
            data, status = _split_return(rv)
            if status >= 400:
                return rv
            if not isinstance(data, dict):
                data = {}
            entity_id = None
            if entity_id_key and entity_id_key in data:
                entity_id = data.get(entity_id_key)
            elif entity_id_arg and entity_id_arg in kwargs:
                entity_id = kwargs.get(entity_id_arg)
            if meta_builder:
                meta = meta_builder(data, args, kwargs)
            elif meta_keys:
                meta = {k: data.get(k) for k in meta_keys if k in data}
            else:
                meta = None
            session = get_db()
            try:
                add_audit(action, entity, entity_id, meta, session=session)
                session.commit()
            except Exception:
                # the handler already committed its own work; losing the audit row must not turn it into a 500
                session.rollback()
                logger.exception('Failed to record audit entry %s', action)
            return rv
        return wrapper
    return outer
