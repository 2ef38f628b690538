from __future__ import annotations
from typing import Iterable, Optional
import logging

from sqlalchemy import select

from shopadmin.constants.permissions import (
    ALL_PERMISSION_SPECS, ROLE_DEFINITIONS, ROLE_PRESETS, WILDCARD_RESOURCE,
)
from shopadmin.errors import NotFoundError, ValidationError
from shopadmin.models.authz import (
    Permission, Role, RolePermission, UserRoleBinding, BindingPermission, SOURCE_INDIVIDUAL, SOURCE_ROLE,
)

logger = logging.getLogger(__name__)


def initialize_permissions(session) -> int:
    """Create any missing catalog permission; safe to run repeatedly. Returns how many were created."""
    existing = {
        (p.module, p.action, p.resource)
        for p in session.execute(select(Permission)).scalars()
    }
    created = 0
    for module, action in ALL_PERMISSION_SPECS:
        if (module, action, WILDCARD_RESOURCE) in existing:
            continue
        session.add(Permission(
            module=module,
            action=action,
            resource=WILDCARD_RESOURCE,
            description=f'{action.replace("_", " ").capitalize()} access to {module.replace("_", " ")}',
        ))
        created += 1
    session.flush()
    if created:
        logger.info('Created %d permission(s)', created)
    return created


def _permission_by_code(session, code: str) -> Optional[Permission]:
    module, action = code.split(':', 1)
    return session.execute(
        select(Permission).where(
            Permission.module == module,
            Permission.action == action,
            Permission.resource == WILDCARD_RESOURCE,
        )
    ).scalar_one_or_none()


def initialize_roles(session, created_by: Optional[int] = None) -> int:
    """Create missing system roles with their preset permissions. Existing roles are left untouched."""
    existing = {r.name for r in session.execute(select(Role)).scalars()}
    created = 0
    for name, definition in ROLE_DEFINITIONS.items():
        if name in existing:
            continue
        role = Role(
            name=name,
            display_name=definition['display_name'],
            description=definition['description'],
            level=definition['level'],
            is_active=True,
            created_by=created_by,
        )
        session.add(role)
        session.flush()
        for code in ROLE_PRESETS.get(name, []):
            perm = _permission_by_code(session, code)
            if perm is None:
                logger.warning('Preset permission %s missing for role %s; run initialize_permissions first', code, name)
                continue
            session.add(RolePermission(role_id=role.id, permission_id=perm.id))
        created += 1
    session.flush()
    if created:
        logger.info('Created %d role(s)', created)
    return created


def get_role(session, name: str, active_only: bool = True) -> Role:
    stmt = select(Role).where(Role.name == name)
    if active_only:
        stmt = stmt.where(Role.is_active.is_(True))
    role = session.execute(stmt).scalar_one_or_none()
    if role is None:
        raise NotFoundError(f'Role {name} not found')
    return role


def set_role_permission(session, role: Role, permission: Permission, granted: bool) -> bool:
    """Add or remove one permission; returns True when the role changed."""
    link = next((rp for rp in role.permissions if rp.permission_id == permission.id), None)
    if granted and link is None:
        if not permission.is_active:
            raise ValidationError('Permission is inactive')
        role.permissions.append(RolePermission(permission_id=permission.id, permission=permission))
    elif not granted and link is not None:
        role.permissions.remove(link)
    else:
        return False
    session.flush()
    sync_role_permissions_to_bindings(session, role)
    return True


def replace_role_permissions(session, role: Role, permission_ids: Iterable[int]) -> Role:
    wanted = set(permission_ids)
    if wanted:
        found = session.execute(
            select(Permission).where(Permission.id.in_(wanted), Permission.is_active.is_(True))
        ).scalars().all()
        missing = wanted - {p.id for p in found}
        if missing:
            raise ValidationError('Unknown or inactive permission ids', missing=sorted(missing))
    current = {rp.permission_id: rp for rp in role.permissions}
    for pid, link in current.items():
        if pid not in wanted:
            role.permissions.remove(link)
    for pid in wanted - set(current):
        role.permissions.append(RolePermission(permission_id=pid))
    session.flush()
    sync_role_permissions_to_bindings(session, role)
    return role


def sync_role_permissions_to_bindings(session, role: Role) -> int:
    """Rebuild role-sourced entries on every active binding of ``role``; individual entries stay."""
    session.expire(role, ['permissions'])
    role_perm_ids = role.permission_ids
    bindings = session.execute(
        select(UserRoleBinding).where(UserRoleBinding.role_id == role.id, UserRoleBinding.is_active.is_(True))
    ).scalars().all()
    for binding in bindings:
        for entry in list(binding.permissions):
            if entry.source != SOURCE_INDIVIDUAL:
                binding.permissions.remove(entry)
    # deletes must hit the table before re-inserting the same (binding, permission) pairs
    session.flush()
    for binding in bindings:
        individual_ids = {e.permission_id for e in binding.permissions}
        for pid in sorted(role_perm_ids - individual_ids):
            binding.permissions.append(BindingPermission(permission_id=pid, granted=True, source=SOURCE_ROLE))
    session.flush()
    logger.info('Synced permissions of role %s to %d binding(s)', role.name, len(bindings))
    return len(bindings)
