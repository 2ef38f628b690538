"""Grant/deny decisions for (user, module, action, resource).

Evaluation order, first match wins:
  super admin bypass -> binding present/unexpired -> time window ->
  module override -> individual permission entry -> role permissions -> deny.

Lookup failures surface as AccessCheckError so callers can tell an
infrastructure fault (500) from a legitimate denial (403).
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from shopadmin.constants.permissions import ROLE_SUPER_ADMIN, WILDCARD_RESOURCE
from shopadmin.errors import AccessCheckError
from shopadmin.models.authz import (
    User, UserRoleBinding, Permission, RolePermission, SOURCE_INDIVIDUAL, SOURCE_ROLE,
)
from shopadmin.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    granted: bool
    source: str
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.granted


def active_binding(session, user_id: int) -> Optional[UserRoleBinding]:
    stmt = (
        select(UserRoleBinding)
        .where(UserRoleBinding.user_id == user_id, UserRoleBinding.is_active.is_(True))
        .order_by(UserRoleBinding.assigned_at.desc(), UserRoleBinding.id.desc())
    )
    return session.execute(stmt).scalars().first()


def _parse_hhmm(raw: str) -> int:
    hours, minutes = raw.split(':', 1)
    return int(hours) * 60 + int(minutes)


def is_access_time_allowed(binding: UserRoleBinding, now: datetime) -> bool:
    """Check every timeRestriction attached to the binding's permission entries.

    days uses 0=Sunday..6=Saturday; startTime/endTime are "HH:MM" in UTC.
    """
    weekday = (now.weekday() + 1) % 7
    minute_of_day = now.hour * 60 + now.minute
    for entry in binding.permissions:
        window = (entry.restrictions or {}).get('timeRestriction')
        if not window:
            continue
        days = window.get('days')
        if days and weekday not in days:
            return False
        start, end = window.get('startTime'), window.get('endTime')
        if start and end:
            try:
                lo, hi = _parse_hhmm(start), _parse_hhmm(end)
            except (ValueError, AttributeError):
                logger.warning('Ignoring malformed time restriction on binding %s: %r', binding.id, window)
                continue
            if not lo <= minute_of_day <= hi:
                return False
    return True


def _role_grants(session, role_id: int, module: str, action: Optional[str], resource: str) -> bool:
    stmt = (
        select(Permission.id)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(
            RolePermission.role_id == role_id,
            Permission.module == module,
            Permission.is_active.is_(True),
            Permission.resource.in_([resource, WILDCARD_RESOURCE]),
        )
    )
    if action is not None:
        stmt = stmt.where(Permission.action == action)
    return session.execute(stmt.limit(1)).first() is not None


def resolve_access(session, user: Optional[User], module: str, action: Optional[str] = None,
                   resource: str = WILDCARD_RESOURCE, now: Optional[datetime] = None) -> AccessDecision:
    if user is None:
        return AccessDecision(False, 'anonymous', 'No authenticated user')
    if user.primary_role == ROLE_SUPER_ADMIN:
        return AccessDecision(True, 'super_admin')
    now = now or utcnow()
    try:
        binding = active_binding(session, user.id)
        if binding is None:
            return AccessDecision(False, 'no_binding', 'No active role assignment')
        if binding.is_expired(now):
            return AccessDecision(False, 'expired_binding', 'Role assignment expired')
        if not is_access_time_allowed(binding, now):
            return AccessDecision(False, 'time_restricted', 'Access not allowed at this time')

        override = binding.module_override(module)
        if override is not None:
            return AccessDecision(override, 'module_override')

        individual = [
            entry for entry in binding.permissions
            if entry.source == SOURCE_INDIVIDUAL and entry.permission is not None
            and entry.permission.matches(module, action, resource)
        ]
        if individual:
            return AccessDecision(any(e.granted for e in individual), 'individual')

        role = binding.role
        if role is None or not role.is_active:
            return AccessDecision(False, 'inactive_role', 'Assigned role is inactive')
        if _role_grants(session, role.id, module, action, resource):
            return AccessDecision(True, 'role')
        return AccessDecision(False, 'no_match', 'Permission not granted')
    except SQLAlchemyError as exc:
        logger.exception('Access check failed for user %s on %s:%s', user.id, module, action)
        raise AccessCheckError('Permission check failed') from exc


def effective_permissions(session, user: User) -> List[Dict[str, Any]]:
    """Merged permission view for a user; individual entries override role-derived ones."""
    try:
        if user.primary_role == ROLE_SUPER_ADMIN:
            perms = session.execute(
                select(Permission).where(Permission.is_active.is_(True)).order_by(Permission.id)
            ).scalars().all()
            return [_perm_entry(p, True, ROLE_SUPER_ADMIN) for p in perms]
        binding = active_binding(session, user.id)
        if binding is None or binding.is_expired():
            return []
        merged: Dict[int, Dict[str, Any]] = {}
        if binding.role is not None and binding.role.is_active:
            for rp in binding.role.permissions:
                if rp.permission.is_active:
                    merged[rp.permission_id] = _perm_entry(rp.permission, True, SOURCE_ROLE)
        for entry in binding.permissions:
            if entry.source == SOURCE_INDIVIDUAL and entry.permission.is_active:
                merged[entry.permission_id] = _perm_entry(entry.permission, bool(entry.granted), SOURCE_INDIVIDUAL)
        denied_modules = {m.module for m in binding.module_access if not m.has_access}
        out = [e for e in merged.values() if e['module'] not in denied_modules]
        return sorted(out, key=lambda e: e['key'])
    except SQLAlchemyError as exc:
        logger.exception('Failed to compute permissions for user %s', user.id)
        raise AccessCheckError('Permission lookup failed') from exc


def _perm_entry(p: Permission, granted: bool, source: str) -> Dict[str, Any]:
    return {
        'id': p.id,
        'key': p.key,
        'module': p.module,
        'action': p.action,
        'resource': p.resource,
        'granted': granted,
        'source': source,
    }
