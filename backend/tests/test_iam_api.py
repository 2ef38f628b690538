from shopadmin.services.access import active_binding
from tests.test_utils_seed import ensure_user, get_permission, login, unique


def _boss(client):
    boss = ensure_user(f"{unique('iamboss')}@example.com", role='super_admin')
    return boss, login(client, boss.email)


def test_login_rejects_bad_password(client):
    user = ensure_user(f"{unique('badpw')}@example.com")
    resp = client.post('/iam/auth/login', json={'email': user.email, 'password': 'nope'})
    assert resp.status_code == 401
    assert client.post('/iam/auth/login', json={'email': user.email}).status_code == 400


def test_login_touches_binding(client, session):
    admin = ensure_user(f"{unique('touch')}@example.com", role='admin')
    assert active_binding(session, admin.id).last_accessed_at is None
    headers = login(client, admin.email)
    me = client.get('/iam/auth/me', headers=headers).get_json()
    assert me['role'] == 'admin'
    assert me['binding']['role'] == 'admin'
    assert me['binding']['last_accessed_at'] is not None


def test_my_permissions_and_access_check(client):
    sub = ensure_user(f"{unique('mine')}@example.com", role='sub_admin')
    headers = login(client, sub.email)
    perms = client.get('/iam/auth/permissions', headers=headers).get_json()
    keys = {p['key'] for p in perms['permissions']}
    assert 'support:edit:*' in keys and 'products:edit:*' not in keys

    ok = client.get('/iam/access/check?module=support&action=edit', headers=headers).get_json()
    assert ok['granted'] is True and ok['source'] == 'role'
    no = client.get('/iam/access/check?module=settings&action=edit', headers=headers).get_json()
    assert no['granted'] is False and no['source'] == 'no_match'
    assert client.get('/iam/access/check', headers=headers).status_code == 400


def test_admin_management_requires_super_admin(client):
    admin = ensure_user(f"{unique('notboss')}@example.com", role='admin')
    headers = login(client, admin.email)
    assert client.get('/iam/roles', headers=headers).status_code == 403
    assert client.get('/iam/permissions', headers=headers).status_code == 403


def test_catalog_listing_and_initialize(client):
    _, headers = _boss(client)
    listing = client.get('/iam/permissions?module=dashboard', headers=headers).get_json()
    assert {p['action'] for p in listing['data']} == {'read', 'export'}
    again = client.post('/iam/permissions/initialize', headers=headers)
    assert again.status_code == 200 and again.get_json() == {'created': 0}
    roles = client.post('/iam/roles/initialize', headers=headers)
    assert roles.get_json() == {'created': 0}
    names = [r['name'] for r in client.get('/iam/roles', headers=headers).get_json()['data']]
    assert names[:3] == ['super_admin', 'admin', 'sub_admin']


def test_assign_and_revoke_role(client):
    boss, headers = _boss(client)
    target = ensure_user(f"{unique('promote')}@example.com")
    resp = client.put(f'/iam/users/{target.id}/role', json={'role': 'sub_admin'}, headers=headers)
    assert resp.status_code == 200, resp.get_json()
    body = resp.get_json()
    assert body['role'] == 'sub_admin'
    assert body['binding']['assigned_by'] == boss.id

    target_headers = login(client, target.email)
    assert client.get('/inventory/products', headers=target_headers).status_code == 200

    revoked = client.put(f'/iam/users/{target.id}/role', json={'role': None}, headers=headers).get_json()
    assert revoked['role'] == 'customer' and revoked['binding'] is None
    # the old token keeps working for authentication but access is re-resolved
    assert client.get('/inventory/products', headers=target_headers).status_code == 403

    bad = client.put(f'/iam/users/{target.id}/role',
                     json={'role': 'admin', 'expires_at': '2001-01-01T00:00:00Z'}, headers=headers)
    assert bad.status_code == 400
    assert client.put('/iam/users/999999/role', json={'role': 'admin'}, headers=headers).status_code == 404


def test_module_access_and_individual_permission_endpoints(client):
    _, headers = _boss(client)
    sub = ensure_user(f"{unique('ovrapi')}@example.com", role='sub_admin')
    sub_headers = login(client, sub.email)
    assert client.get('/sales/orders', headers=sub_headers).status_code == 200

    summary = client.put(f'/iam/users/{sub.id}/module-access',
                         json={'module': 'orders', 'has_access': False}, headers=headers).get_json()
    assert summary['module_access'] == {'orders': False}
    assert client.get('/sales/orders', headers=sub_headers).status_code == 403

    cleared = client.put(f'/iam/users/{sub.id}/module-access', json={'module': 'orders'}, headers=headers)
    assert cleared.get_json()['module_access'] == {}
    assert client.get('/sales/orders', headers=sub_headers).status_code == 200

    perm = get_permission('categories', 'read')
    entry = client.put(f'/iam/users/{sub.id}/permissions',
                       json={'permission_id': perm.id, 'granted': True}, headers=headers).get_json()
    assert entry == {'permission_id': perm.id, 'granted': True, 'source': 'individual', 'restrictions': {}}
    assert client.get('/catalog/categories', headers=sub_headers).status_code == 200

    assert client.put(f'/iam/users/{sub.id}/permissions',
                      json={'permission_id': perm.id, 'granted': True, 'restrictions': 'soon'},
                      headers=headers).status_code == 400

def test_user_administration_respects_rank(client):
    boss, boss_headers = _boss(client)
    manager = ensure_user(f"{unique('rankmgr')}@example.com", role='admin')
    peer = ensure_user(f"{unique('rankpeer')}@example.com", role='admin')
    junior = ensure_user(f"{unique('rankjr')}@example.com", role='sub_admin')
    granted = client.put(f'/iam/users/{manager.id}/permissions',
                         json={'permission_id': get_permission('admin_management', 'edit').id, 'granted': True},
                         headers=boss_headers)
    assert granted.status_code == 200
    headers = login(client, manager.email)

    # super admins and peers are out of reach
    assert client.put(f'/iam/users/{boss.id}/role', json={'role': None}, headers=headers).status_code == 403
    assert client.put(f'/iam/users/{boss.id}/role', json={'role': 'sub_admin'}, headers=headers).status_code == 403
    assert client.put(f'/iam/users/{peer.id}/module-access',
                      json={'module': 'orders', 'has_access': False}, headers=headers).status_code == 403
    assert client.put(f'/iam/users/{peer.id}/role', json={'role': None}, headers=headers).status_code == 403

    # no self service
    settings_edit = get_permission('settings', 'edit')
    assert client.put(f'/iam/users/{manager.id}/permissions',
                      json={'permission_id': settings_edit.id, 'granted': True}, headers=headers).status_code == 403
    assert client.put(f'/iam/users/{manager.id}/module-access',
                      json={'module': 'settings', 'has_access': True}, headers=headers).status_code == 403

    # cannot lift a junior to their own level
    assert client.put(f'/iam/users/{junior.id}/role', json={'role': 'admin'}, headers=headers).status_code == 403

    assert client.put(f'/iam/users/{junior.id}/module-access',
                      json={'module': 'orders', 'has_access': False}, headers=headers).status_code == 200
    assert client.put(f'/iam/users/{junior.id}/permissions',
                      json={'permission_id': get_permission('categories', 'read').id, 'granted': True},
                      headers=headers).status_code == 200
    revoked = client.put(f'/iam/users/{junior.id}/role', json={'role': None}, headers=headers)
    assert revoked.status_code == 200 and revoked.get_json()['role'] == 'customer'

    assert client.get('/iam/auth/me', headers=boss_headers).get_json()['role'] == 'super_admin'
    assert client.get('/iam/access/check?module=settings&action=edit', headers=headers).get_json()['granted'] is False
    assert client.put(f'/iam/users/{boss.id}/role', json={'role': 'admin'}, headers=boss_headers).status_code == 403



def test_role_permission_endpoints(client):
    _, headers = _boss(client)
    roles = client.get('/iam/roles', headers=headers).get_json()['data']
    sub_role = next(r for r in roles if r['name'] == 'sub_admin')
    original = sub_role['permission_ids']
    perm = get_permission('banners', 'read')
    sub = ensure_user(f"{unique('rolepatch')}@example.com", role='sub_admin')
    sub_headers = login(client, sub.email)

    try:
        patched = client.patch(f"/iam/roles/{sub_role['id']}/permissions",
                               json={'permission_id': perm.id, 'granted': True}, headers=headers).get_json()
        assert patched['changed'] is True and perm.id in patched['permission_ids']
        check = client.get('/iam/access/check?module=banners&action=read', headers=sub_headers).get_json()
        assert check['granted'] is True

        bad = client.put(f"/iam/roles/{sub_role['id']}/permissions",
                         json={'permission_ids': original + [999999]}, headers=headers)
        assert bad.status_code == 400
        assert bad.get_json()['error']['missing'] == [999999]
    finally:
        restored = client.put(f"/iam/roles/{sub_role['id']}/permissions",
                              json={'permission_ids': original}, headers=headers)
        assert restored.get_json()['permission_ids'] == sorted(original)
    check = client.get('/iam/access/check?module=banners&action=read', headers=sub_headers).get_json()
    assert check['granted'] is False


def test_user_listing_is_scoped(client):
    admin = ensure_user(f"{unique('ulist')}@example.com", role='admin')
    headers = login(client, admin.email)
    listing = client.get('/iam/users?limit=200', headers=headers).get_json()
    assert {u['role'] for u in listing['data']} == {'customer'}
    boss, boss_headers = _boss(client)
    assert client.get(f'/iam/users/{boss.id}', headers=headers).status_code == 404
    assert client.get(f'/iam/users/{admin.id}', headers=boss_headers).get_json()['email'] == admin.email


def test_audit_trail_records_admin_changes(client):
    boss, headers = _boss(client)
    target = ensure_user(f"{unique('audited')}@example.com")
    client.put(f'/iam/users/{target.id}/role', json={'role': 'sub_admin'}, headers=headers)
    logs = client.get(f'/iam/audit/logs?action=USER.ROLE.ASSIGN&actor_user_id={boss.id}',
                      headers=headers).get_json()
    assert logs['pagination']['total'] == 1
    row = logs['data'][0]
    assert row['entity'] == 'User' and row['entity_id'] == str(target.id)
    assert row['meta'] == {'role': 'sub_admin'}
