from __future__ import annotations
from typing import Any, Dict, Optional

from flask import g, has_request_context

from shopadmin import get_db
from shopadmin.models.audit import AuditLog


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[Any] = None,
              meta: Optional[Dict[str, Any]] = None, session=None) -> AuditLog:
    """Stage an audit entry in the current session.

    Parameters:
      action: short action code e.g. ROLE.PERM.REPLACE, USER.ROLE.ASSIGN, STOCK.UPDATE
      entity: optional entity name (Role, User, Product)
      entity_id: optional primary key
      meta: additional JSON-safe dictionary (shallow copied)
    The actor is the request's authenticated user, or 0 outside a request (CLI, scheduler).
    """
    session = session or get_db()
    actor = g.get('current_user') if has_request_context() else None
    log = AuditLog(
        actor_user_id=actor.id if actor is not None else 0,
        actor_role=actor.primary_role if actor is not None else None,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=dict(meta or {}),
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log
