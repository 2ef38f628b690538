from datetime import timedelta

import pytest
from sqlalchemy import select

from shopadmin.errors import ForbiddenError, NotFoundError, ValidationError
from shopadmin.models.authz import Permission, Role, UserRoleBinding, SOURCE_INDIVIDUAL, SOURCE_ROLE
from shopadmin.services.access import active_binding, resolve_access
from shopadmin.services.bindings import (
    assign_role, backfill_bindings, binding_summary, deactivate_binding, set_individual_permission,
    set_module_access, sync_primary_role,
)
from shopadmin.services.roles import (
    get_role, initialize_permissions, initialize_roles, replace_role_permissions, set_role_permission,
)
from shopadmin.utils.clock import utcnow
from tests.test_utils_seed import ensure_user, get_permission, unique


def _active_bindings(session, user):
    return session.execute(
        select(UserRoleBinding).where(UserRoleBinding.user_id == user.id, UserRoleBinding.is_active.is_(True))
    ).scalars().all()


def test_initialize_is_idempotent(session):
    assert initialize_permissions(session) == 0
    assert initialize_roles(session) == 0
    total = session.execute(select(Permission)).scalars().all()
    assert len({p.key for p in total}) == len(total)
    names = {r.name for r in session.execute(select(Role)).scalars()}
    assert {'super_admin', 'admin', 'sub_admin'} <= names


def test_assign_role_keeps_single_active_binding(session):
    user = ensure_user(f"{unique('bind')}@example.com")
    assign_role(session, user, 'sub_admin')
    assign_role(session, user, 'admin')
    session.commit()
    bindings = _active_bindings(session, user)
    assert len(bindings) == 1
    assert bindings[0].role.name == 'admin'
    assert user.primary_role == 'admin'
    role_ids = get_role(session, 'admin').permission_ids
    assert {p.permission_id for p in bindings[0].permissions} == role_ids
    assert {p.source for p in bindings[0].permissions} == {SOURCE_ROLE}


def test_assign_unknown_role(session):
    user = ensure_user(f"{unique('nobody')}@example.com")
    with pytest.raises(NotFoundError):
        assign_role(session, user, 'seller')


def test_assign_requires_future_expiry(session):
    user = ensure_user(f"{unique('expiry')}@example.com")
    with pytest.raises(ValidationError):
        assign_role(session, user, 'sub_admin', expires_at=utcnow() - timedelta(hours=1))
    session.rollback()
    binding = assign_role(session, user, 'sub_admin', expires_at=utcnow() + timedelta(days=1))
    session.commit()
    assert binding.expires_at is not None
    assert binding_summary(binding)['expires_at'] == binding.expires_at.isoformat()


def test_assigner_needs_higher_level(session):
    admin = ensure_user(f"{unique('assigner')}@example.com", role='admin')
    boss = ensure_user(f"{unique('assignerboss')}@example.com", role='super_admin')
    target = ensure_user(f"{unique('target')}@example.com")
    with pytest.raises(ForbiddenError):
        assign_role(session, target, 'admin', assigned_by=admin)
    session.rollback()
    binding = assign_role(session, target, 'sub_admin', assigned_by=admin)
    assert binding.assigned_by == admin.id
    assign_role(session, target, 'admin', assigned_by=boss)
    session.commit()
    assert target.primary_role == 'admin'


def test_changes_need_rank_over_target_user(session):
    admin = ensure_user(f"{unique('rankadm')}@example.com", role='admin')
    peer = ensure_user(f"{unique('rankpeer')}@example.com", role='admin')
    boss = ensure_user(f"{unique('rankboss')}@example.com", role='super_admin')
    junior = ensure_user(f"{unique('rankjr')}@example.com", role='sub_admin')
    perm = get_permission('settings', 'edit')
    attempts = [
        lambda: assign_role(session, boss, 'sub_admin', assigned_by=admin),
        lambda: deactivate_binding(session, boss, changed_by=admin),
        lambda: deactivate_binding(session, peer, changed_by=admin),
        lambda: set_module_access(session, peer, 'orders', False, changed_by=admin),
        lambda: set_individual_permission(session, peer, perm, True, changed_by=admin),
        lambda: set_individual_permission(session, admin, perm, True, changed_by=admin),
        lambda: assign_role(session, boss, 'admin', assigned_by=boss),
    ]
    for attempt in attempts:
        with pytest.raises(ForbiddenError):
            attempt()
        session.rollback()
    assert boss.primary_role == 'super_admin'
    assert not resolve_access(session, admin, 'settings', 'edit')

    set_module_access(session, junior, 'orders', False, changed_by=admin)
    set_individual_permission(session, junior, perm, False, changed_by=admin)
    assert deactivate_binding(session, junior, changed_by=admin) == 1
    session.commit()
    assert junior.primary_role == 'customer'


def test_sync_primary_role_demotes_unbound_staff(session):
    user = ensure_user(f"{unique('stale')}@example.com")
    user.primary_role = 'admin'
    session.commit()
    assert sync_primary_role(session, user) == 'customer'
    seller = ensure_user(f"{unique('keepseller')}@example.com", role='seller')
    assert sync_primary_role(session, seller) == 'seller'
    session.commit()


def test_backfill_creates_bindings_for_legacy_staff(session):
    legacy = ensure_user(f"{unique('legacy')}@example.com")
    legacy.primary_role = 'sub_admin'
    session.commit()
    boss = ensure_user(f"{unique('backfillboss')}@example.com", role='super_admin')
    assert backfill_bindings(session, assigned_by=boss) >= 1
    session.commit()
    binding = active_binding(session, legacy.id)
    assert binding.role.name == 'sub_admin'
    assert binding.assigned_by == boss.id
    assert backfill_bindings(session) == 0


def test_role_permission_change_reaches_bindings_but_keeps_individual(session):
    user = ensure_user(f"{unique('sync')}@example.com", role='sub_admin')
    role = get_role(session, 'sub_admin')
    original = set(role.permission_ids)
    coupons_read = get_permission('coupons', 'read')
    products_read = get_permission('products', 'read')
    set_individual_permission(session, user, products_read, granted=False)
    session.commit()
    try:
        assert set_role_permission(session, role, coupons_read, True) is True
        assert set_role_permission(session, role, coupons_read, True) is False
        session.commit()
        assert resolve_access(session, user, 'coupons', 'read').source == 'role'
        binding = active_binding(session, user.id)
        entries = {p.permission_id: p for p in binding.permissions}
        assert entries[coupons_read.id].source == SOURCE_ROLE
        # the individual denial survives the resync
        assert entries[products_read.id].source == SOURCE_INDIVIDUAL
        assert entries[products_read.id].granted is False
    finally:
        replace_role_permissions(session, role, original)
        session.commit()
    assert not resolve_access(session, user, 'coupons', 'read')
    assert get_role(session, 'sub_admin').permission_ids == original


def test_replace_rejects_unknown_ids(session):
    role = get_role(session, 'sub_admin')
    before = set(role.permission_ids)
    with pytest.raises(ValidationError) as exc:
        replace_role_permissions(session, role, [999999])
    assert exc.value.extra['missing'] == [999999]
    session.rollback()
    assert get_role(session, 'sub_admin').permission_ids == before


def test_module_access_rejects_unknown_module(session):
    user = ensure_user(f"{unique('modx')}@example.com", role='sub_admin')
    with pytest.raises(ValidationError):
        set_module_access(session, user, 'payroll', True)


def test_overrides_need_active_binding(session):
    user = ensure_user(f"{unique('nobind')}@example.com")
    with pytest.raises(NotFoundError):
        set_module_access(session, user, 'products', True)
    with pytest.raises(NotFoundError):
        set_individual_permission(session, user, get_permission('products', 'read'), True)
