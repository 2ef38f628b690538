"""User-role binding administration.

The active binding is the single source of truth for a staff account's role;
User.primary_role is a cached copy refreshed only by sync_primary_role().
"""
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlalchemy import select, update

from shopadmin.constants.permissions import ADMIN_ROLES, MODULES, ROLE_CUSTOMER, ROLE_SUPER_ADMIN
from shopadmin.errors import ForbiddenError, NotFoundError, ValidationError
from shopadmin.models.authz import (
    User, Role, Permission, UserRoleBinding, BindingModuleAccess, BindingPermission,
    SOURCE_INDIVIDUAL, SOURCE_ROLE,
)
from shopadmin.services.access import active_binding
from shopadmin.services.roles import get_role
from shopadmin.utils.clock import utcnow

logger = logging.getLogger(__name__)


def _require_binding(session, user: User) -> UserRoleBinding:
    binding = active_binding(session, user.id)
    if binding is None:
        raise NotFoundError('User has no active role assignment')
    return binding


def sync_primary_role(session, user: User) -> str:
    """Copy the active binding's role name onto the user.

    Staff accounts left without a binding fall back to customer so the cached
    role never claims privileges the bindings do not back.
    """
    binding = active_binding(session, user.id)
    if binding is not None and binding.role is not None:
        new_role = binding.role.name
    elif user.primary_role in ADMIN_ROLES:
        new_role = ROLE_CUSTOMER
    else:
        new_role = user.primary_role
    if new_role != user.primary_role:
        logger.info('User %s primary role %s -> %s', user.id, user.primary_role, new_role)
        user.primary_role = new_role
    return new_role


def _role_of(session, user: User) -> Optional[Role]:
    """The role a user currently holds: the active binding's, else the cached name."""
    binding = active_binding(session, user.id)
    if binding is not None and binding.role is not None:
        return binding.role
    if user.primary_role not in ADMIN_ROLES:
        return None
    return session.execute(
        select(Role).where(Role.name == user.primary_role, Role.is_active.is_(True))
    ).scalar_one_or_none()


def _check_manager(session, actor: Optional[User], user: User, role: Optional[Role] = None):
    """Raise ForbiddenError unless actor may change user's role or permissions.

    A caller may only act on accounts ranked strictly below them and assign
    roles ranked strictly below them; nobody edits their own access. actor is
    None for system callers (seeding, backfill).
    """
    if actor is None:
        return
    if actor.id == user.id:
        raise ForbiddenError('Cannot change your own role or permissions')
    actor_role = _role_of(session, actor)
    if actor_role is None or not actor_role.is_active:
        raise ForbiddenError('Insufficient privileges to manage users')
    if actor_role.name == ROLE_SUPER_ADMIN:
        return
    target_role = _role_of(session, user)
    if target_role is not None and not actor_role.can_manage(target_role):
        raise ForbiddenError('Insufficient privileges to manage this user')
    if role is not None and not actor_role.can_manage(role):
        raise ForbiddenError('Insufficient privileges to assign this role')


def _deactivate_all(session, user_id: int) -> int:
    result = session.execute(
        update(UserRoleBinding)
        .where(UserRoleBinding.user_id == user_id, UserRoleBinding.is_active.is_(True))
        .values(is_active=False)
    )
    return result.rowcount or 0


def assign_role(session, user: User, role_name: str, assigned_by: Optional[User] = None,
                expires_at: Optional[datetime] = None) -> UserRoleBinding:
    role = get_role(session, role_name)
    _check_manager(session, assigned_by, user, role)
    if expires_at is not None and expires_at <= utcnow():
        raise ValidationError('expires_at must be in the future')
    _deactivate_all(session, user.id)
    binding = UserRoleBinding(
        user_id=user.id,
        role_id=role.id,
        is_active=True,
        assigned_by=assigned_by.id if assigned_by is not None else None,
        assigned_at=utcnow(),
        expires_at=expires_at,
    )
    for pid in sorted(role.permission_ids):
        binding.permissions.append(BindingPermission(permission_id=pid, granted=True, source=SOURCE_ROLE))
    session.add(binding)
    session.flush()
    sync_primary_role(session, user)
    return binding


def deactivate_binding(session, user: User, changed_by: Optional[User] = None) -> int:
    _check_manager(session, changed_by, user)
    count = _deactivate_all(session, user.id)
    session.flush()
    sync_primary_role(session, user)
    return count


def set_module_access(session, user: User, module: str, has_access: Optional[bool],
                      changed_by: Optional[User] = None) -> UserRoleBinding:
    """Set (True/False) or clear (None) a module override on the active binding."""
    _check_manager(session, changed_by, user)
    if module not in MODULES:
        raise ValidationError(f'Unknown module {module!r}')
    binding = _require_binding(session, user)
    row = next((m for m in binding.module_access if m.module == module), None)
    if has_access is None:
        if row is not None:
            binding.module_access.remove(row)
    elif row is None:
        binding.module_access.append(BindingModuleAccess(module=module, has_access=bool(has_access)))
    else:
        row.has_access = bool(has_access)
    session.flush()
    return binding


def set_individual_permission(session, user: User, permission: Permission, granted: bool,
                              restrictions: Optional[Dict[str, Any]] = None,
                              changed_by: Optional[User] = None) -> BindingPermission:
    _check_manager(session, changed_by, user)
    binding = _require_binding(session, user)
    if not permission.is_active:
        raise ValidationError('Permission is inactive')
    entry = next((p for p in binding.permissions if p.permission_id == permission.id), None)
    if entry is None:
        entry = BindingPermission(permission_id=permission.id, permission=permission)
        binding.permissions.append(entry)
    entry.granted = bool(granted)
    entry.source = SOURCE_INDIVIDUAL
    entry.restrictions = dict(restrictions or {})
    session.flush()
    return entry


def backfill_bindings(session, assigned_by: Optional[User] = None) -> int:
    """Create bindings for staff accounts that predate them, keyed off their stored role."""
    bound_ids = select(UserRoleBinding.user_id).where(UserRoleBinding.is_active.is_(True))
    users = session.execute(
        select(User).where(User.primary_role.in_(ADMIN_ROLES), User.id.not_in(bound_ids)).order_by(User.id)
    ).scalars().all()
    created = 0
    for user in users:
        try:
            binding = assign_role(session, user, user.primary_role)
        except NotFoundError:
            logger.warning('Cannot backfill user %s: role %s not initialized', user.id, user.primary_role)
            continue
        if assigned_by is not None:
            binding.assigned_by = assigned_by.id
        created += 1
    session.flush()
    logger.info('Backfilled %d binding(s)', created)
    return created


def binding_summary(binding: Optional[UserRoleBinding]) -> Optional[Dict[str, Any]]:
    if binding is None:
        return None
    return {
        'id': binding.id,
        'role': binding.role.name if binding.role is not None else None,
        'is_active': binding.is_active,
        'assigned_by': binding.assigned_by,
        'assigned_at': binding.assigned_at.isoformat() if binding.assigned_at else None,
        'expires_at': binding.expires_at.isoformat() if binding.expires_at else None,
        'last_accessed_at': binding.last_accessed_at.isoformat() if binding.last_accessed_at else None,
        'module_access': {m.module: m.has_access for m in binding.module_access},
        'permissions': [
            {
                'permission_id': p.permission_id,
                'key': p.permission.key if p.permission is not None else None,
                'granted': p.granted,
                'source': p.source,
                'restrictions': p.restrictions or {},
            }
            for p in binding.permissions
        ],
    }
