from flask import Blueprint, request
from flask_jwt_extended import create_access_token
from sqlalchemy import select, func

from shopadmin import get_db
from shopadmin.decorators.audit import audit_log
from shopadmin.decorators.auth import require_access, require_auth, current_user
from shopadmin.errors import NotFoundError, UnauthenticatedError, ValidationError
from shopadmin.models.audit import AuditLog
from shopadmin.models.authz import User, Role, Permission
from shopadmin.services.access import active_binding, effective_permissions, resolve_access
from shopadmin.services.bindings import (
    assign_role, binding_summary, deactivate_binding, set_individual_permission, set_module_access,
)
from shopadmin.services.roles import (
    initialize_permissions, initialize_roles, replace_role_permissions, set_role_permission,
)
from shopadmin.services.visibility import ENTITY_USER, ScopedRepository
from shopadmin.utils.clock import utcnow
from shopadmin.utils.filters import build_filters, as_bool
from shopadmin.utils.listing import build_list_payload, pagination_params
from shopadmin.utils.validation import parse_bool, parse_datetime, parse_int, require_fields

iam_bp = Blueprint('iam', __name__)


def _permission_json(p: Permission):
    return {
        'id': p.id,
        'key': p.key,
        'module': p.module,
        'action': p.action,
        'resource': p.resource,
        'description': p.description,
        'is_active': p.is_active,
    }


def _role_json(r: Role):
    return {
        'id': r.id,
        'name': r.name,
        'display_name': r.display_name,
        'description': r.description,
        'level': r.level,
        'is_active': r.is_active,
        'permission_ids': sorted(r.permission_ids),
    }


def _user_json(u: User):
    return {
        'id': u.id,
        'name': u.name,
        'email': u.email,
        'role': u.primary_role,
        'is_active': u.is_active,
    }


def _get_user(session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError('User not found')
    return user


def _get_role(session, role_id: int) -> Role:
    role = session.get(Role, role_id)
    if role is None:
        raise NotFoundError('Role not found')
    return role


# --- Authentication ---

@iam_bp.post('/auth/login')
def login():
    data = request.get_json(silent=True) or {}
    require_fields(data, ['email', 'password'])
    session = get_db()
    user = session.execute(select(User).where(User.email == data['email'])).scalar_one_or_none()
    if not user or not user.is_active or not user.verify_password(data['password']):
        raise UnauthenticatedError('invalid credentials')
    binding = active_binding(session, user.id)
    if binding is not None:
        binding.last_accessed_at = utcnow()
        session.commit()
    # JWT identity must be a string (flask-jwt-extended v4 requirement).
    # The role claim is informational; every request re-resolves access from the database.
    token = create_access_token(identity=str(user.id), additional_claims={'role': user.primary_role})
    return {'access_token': token, 'user': _user_json(user)}


@iam_bp.get('/auth/me')
@require_auth
def me():
    user = current_user()
    payload = _user_json(user)
    payload['binding'] = binding_summary(active_binding(get_db(), user.id))
    return payload


@iam_bp.get('/auth/permissions')
@require_auth
def my_permissions():
    user = current_user()
    return {'role': user.primary_role, 'permissions': effective_permissions(get_db(), user)}


@iam_bp.get('/access/check')
@require_auth
def check_access():
    module = request.args.get('module')
    if not module:
        raise ValidationError('module required')
    decision = resolve_access(
        get_db(), current_user(), module, request.args.get('action') or None, request.args.get('resource') or '*'
    )
    return {'module': module, 'action': request.args.get('action'), 'granted': decision.granted,
            'source': decision.source, 'reason': decision.reason}


# --- Permission catalog ---

@iam_bp.get('/permissions')
@require_access('admin_management', 'read')
def list_permissions():
    session = get_db()
    limit, offset = pagination_params()
    criteria = build_filters({
        'module': {'clause': lambda v: Permission.module == v},
        'action': {'clause': lambda v: Permission.action == v},
        'is_active': {'coerce': as_bool, 'clause': lambda v: Permission.is_active.is_(v)},
    }, request.args)
    stmt = select(Permission).where(*criteria)
    total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = session.execute(
        stmt.order_by(Permission.module, Permission.id).offset(offset).limit(limit)
    ).scalars().all()
    return build_list_payload([_permission_json(p) for p in rows], total, limit, offset)


@iam_bp.post('/permissions/initialize')
@require_access('admin_management', 'edit')
@audit_log('PERMISSION.INITIALIZE', entity='Permission', meta_keys=['created'])
def init_permissions():
    session = get_db()
    created = initialize_permissions(session)
    session.commit()
    return {'created': created}, 201 if created else 200


# --- Roles ---

@iam_bp.get('/roles')
@require_access('admin_management', 'read')
def list_roles():
    session = get_db()
    roles = session.execute(select(Role).order_by(Role.level, Role.id)).scalars().all()
    return {'data': [_role_json(r) for r in roles]}


@iam_bp.post('/roles/initialize')
@require_access('admin_management', 'edit')
@audit_log('ROLE.INITIALIZE', entity='Role', meta_keys=['created'])
def init_roles():
    session = get_db()
    initialize_permissions(session)
    created = initialize_roles(session, created_by=current_user().id)
    session.commit()
    return {'created': created}, 201 if created else 200


@iam_bp.put('/roles/<int:role_id>/permissions')
@require_access('admin_management', 'edit')
@audit_log('ROLE.PERM.REPLACE', entity='Role', entity_id_key='id',
           meta_builder=lambda data, args, kwargs: {'count': len(data.get('permission_ids', []))})
def replace_permissions(role_id: int):
    session = get_db()
    role = _get_role(session, role_id)
    data = request.get_json(silent=True) or {}
    ids = data.get('permission_ids')
    if not isinstance(ids, list):
        raise ValidationError('permission_ids must be a list')
    replace_role_permissions(session, role, [parse_int(i, 'permission_ids') for i in ids])
    session.commit()
    return _role_json(role)


@iam_bp.patch('/roles/<int:role_id>/permissions')
@require_access('admin_management', 'edit')
@audit_log('ROLE.PERM.SET', entity='Role', entity_id_key='id', meta_keys=['permission_id', 'granted', 'changed'])
def patch_permission(role_id: int):
    session = get_db()
    role = _get_role(session, role_id)
    data = request.get_json(silent=True) or {}
    require_fields(data, ['permission_id', 'granted'])
    permission = session.get(Permission, parse_int(data['permission_id'], 'permission_id'))
    if permission is None:
        raise NotFoundError('Permission not found')
    granted = parse_bool(data['granted'], 'granted')
    changed = set_role_permission(session, role, permission, granted)
    session.commit()
    payload = _role_json(role)
    payload.update({'permission_id': permission.id, 'granted': granted, 'changed': changed})
    return payload


# --- User bindings ---

@iam_bp.put('/users/<int:user_id>/role')
@require_access('admin_management', 'edit')
@audit_log('USER.ROLE.ASSIGN', entity='User', entity_id_arg='user_id',
           meta_builder=lambda data, args, kwargs: {'role': data.get('role')})
def assign_user_role(user_id: int):
    session = get_db()
    user = _get_user(session, user_id)
    data = request.get_json(silent=True) or {}
    role_name = data.get('role')
    if role_name is None:
        deactivate_binding(session, user, changed_by=current_user())
    else:
        assign_role(session, user, role_name, assigned_by=current_user(),
                    expires_at=parse_datetime(data.get('expires_at'), 'expires_at'))
    session.commit()
    payload = _user_json(user)
    payload['binding'] = binding_summary(active_binding(session, user.id))
    return payload


@iam_bp.put('/users/<int:user_id>/module-access')
@require_access('admin_management', 'edit')
@audit_log('USER.MODULE_ACCESS.SET', entity='User', entity_id_arg='user_id',
           meta_builder=lambda data, args, kwargs: {'module_access': data.get('module_access')})
def update_module_access(user_id: int):
    session = get_db()
    user = _get_user(session, user_id)
    data = request.get_json(silent=True) or {}
    require_fields(data, ['module'])
    raw = data.get('has_access')
    has_access = None if raw is None else parse_bool(raw, 'has_access')
    binding = set_module_access(session, user, data['module'], has_access, changed_by=current_user())
    session.commit()
    return binding_summary(binding)


@iam_bp.put('/users/<int:user_id>/permissions')
@require_access('admin_management', 'edit')
@audit_log('USER.PERM.SET', entity='User', entity_id_arg='user_id', meta_keys=['permission_id', 'granted'])
def update_user_permission(user_id: int):
    session = get_db()
    user = _get_user(session, user_id)
    data = request.get_json(silent=True) or {}
    require_fields(data, ['permission_id', 'granted'])
    permission = session.get(Permission, parse_int(data['permission_id'], 'permission_id'))
    if permission is None:
        raise NotFoundError('Permission not found')
    restrictions = data.get('restrictions')
    if restrictions is not None and not isinstance(restrictions, dict):
        raise ValidationError('restrictions must be an object')
    entry = set_individual_permission(session, user, permission, parse_bool(data['granted'], 'granted'),
                                      restrictions, changed_by=current_user())
    session.commit()
    return {'permission_id': entry.permission_id, 'granted': entry.granted, 'source': entry.source,
            'restrictions': entry.restrictions}


# --- Users (scoped) ---

@iam_bp.get('/users')
@require_access('users', 'read')
def list_users():
    limit, offset = pagination_params()
    criteria = build_filters({
        'role': {'clause': lambda v: User.primary_role == v},
        'email': {'clause': lambda v: User.email == v},
        'is_active': {'coerce': as_bool, 'clause': lambda v: User.is_active.is_(v)},
    }, request.args)
    repo = ScopedRepository(get_db(), current_user())
    rows, total = repo.list(ENTITY_USER, *criteria, limit=limit, offset=offset)
    return build_list_payload([_user_json(u) for u in rows], total, limit, offset)


@iam_bp.get('/users/<int:user_id>')
@require_access('users', 'read')
def get_user(user_id: int):
    repo = ScopedRepository(get_db(), current_user())
    return _user_json(repo.get(ENTITY_USER, user_id))


# --- Audit trail ---

@iam_bp.get('/audit/logs')
@require_access('admin_management', 'read')
def list_audit_logs():
    session = get_db()
    limit, offset = pagination_params()
    criteria = build_filters({
        'action': {'clause': lambda v: AuditLog.action == v},
        'entity': {'clause': lambda v: AuditLog.entity == v},
        'actor_user_id': {'coerce': int, 'clause': lambda v: AuditLog.actor_user_id == v},
    }, request.args)
    stmt = select(AuditLog).where(*criteria)
    total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = session.execute(stmt.order_by(AuditLog.id.desc()).offset(offset).limit(limit)).scalars().all()
    data = [
        {
            'id': r.id,
            'actor_user_id': r.actor_user_id,
            'actor_role': r.actor_role,
            'action': r.action,
            'entity': r.entity,
            'entity_id': r.entity_id,
            'meta': r.meta,
            'created_at': r.created_at.isoformat() if r.created_at else None,
        }
        for r in rows
    ]
    return build_list_payload(data, total, limit, offset)
