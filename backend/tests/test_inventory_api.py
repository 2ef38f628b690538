from sqlalchemy import select

from shopadmin.models.audit import AuditLog
from shopadmin.models.notification import Notification
from tests.test_utils_seed import ensure_user, ensure_product, login, unique


def _admin(client, prefix='inv'):
    user = ensure_user(f"{unique(prefix)}@example.com", role='admin')
    return user, login(client, user.email)


def test_create_product_and_read_back(client):
    owner, headers = _admin(client)
    sku_a, sku_b = unique('NEW-A-'), unique('NEW-B-')
    resp = client.post('/inventory/products', json={
        'name': 'Linen Shirt', 'brand': 'Acme',
        'variants': [
            {'sku': sku_a, 'color': 'White', 'size': 'M', 'price_cents': 3900, 'stock': 4},
            {'sku': sku_b, 'color': 'Blue', 'size': 'L', 'price_cents': 3900, 'stock': 0},
        ],
    }, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    body = resp.get_json()
    assert body['created_by'] == owner.id
    assert body['total_stock'] == 4 and body['is_active'] is True
    assert {v['sku']: v['level'] for v in body['variants']} == {sku_a: 'critical', sku_b: 'out_of_stock'}

    fetched = client.get(f"/inventory/products/{body['id']}", headers=headers).get_json()
    assert fetched['name'] == 'Linen Shirt'


def test_create_product_validation(client):
    _, headers = _admin(client)
    assert client.post('/inventory/products', json={'name': 'No variants'}, headers=headers).status_code == 400
    dup = unique('DUPSKU-')
    bad = client.post('/inventory/products', json={
        'name': 'Dup', 'variants': [{'sku': dup}, {'sku': dup}]}, headers=headers)
    assert bad.status_code == 400
    neg = client.post('/inventory/products', json={
        'name': 'Neg', 'variants': [{'sku': unique('NEG-'), 'stock': -2}]}, headers=headers)
    assert neg.status_code == 400


def test_product_created_without_stock_is_inactive(client):
    _, headers = _admin(client)
    body = client.post('/inventory/products', json={
        'name': 'Empty', 'variants': [{'sku': unique('EMPTY-'), 'stock': 0}]}, headers=headers).get_json()
    assert body['is_active'] is False
    assert body['inactive_reason'] == 'out_of_stock'


def test_stock_update_endpoint(client, session):
    owner, headers = _admin(client)
    sku = unique('API-STOCK-')
    product = ensure_product(owner, [(sku, 6)])
    url = f'/inventory/products/{product.id}/variants/{sku}/stock'

    low = client.put(url, json={'operation': 'decrease', 'amount': 1}, headers=headers)
    assert low.status_code == 200, low.get_json()
    body = low.get_json()
    assert (body['previous_stock'], body['new_stock']) == (6, 5)
    assert body['notification_type'] == 'low_stock'

    out = client.put(url, json={'operation': 'set', 'amount': 0}, headers=headers).get_json()
    assert out['activation_change'] == 'deactivated'
    assert out['product_active'] is False

    assert client.put(url, json={'operation': 'set', 'amount': -1}, headers=headers).status_code == 400
    assert client.put(url, json={'operation': 'set', 'amount': '3'}, headers=headers).status_code == 400
    missing = f'/inventory/products/{product.id}/variants/nope/stock'
    assert client.put(missing, json={'operation': 'set', 'amount': 3}, headers=headers).status_code == 404

    back = client.put(url, json={'amount': 7}, headers=headers).get_json()
    assert back['operation'] == 'set' and back['activation_change'] == 'reactivated'

    kinds = session.execute(
        select(Notification.type).where(Notification.product_id == product.id).order_by(Notification.id)
    ).scalars().all()
    assert kinds == ['low_stock', 'out_of_stock']

    audit = session.execute(
        select(AuditLog).where(AuditLog.action == 'STOCK.UPDATE', AuditLog.entity_id == str(product.id))
    ).scalars().all()
    assert len(audit) == 3
    assert audit[0].actor_user_id == owner.id


def test_stock_update_on_foreign_product_is_404(client):
    owner, _ = _admin(client, 'invowner')
    _, other_headers = _admin(client, 'invother')
    sku = unique('FOREIGN-')
    product = ensure_product(owner, [(sku, 6)])
    resp = client.put(f'/inventory/products/{product.id}/variants/{sku}/stock',
                      json={'operation': 'set', 'amount': 1}, headers=other_headers)
    assert resp.status_code == 404


def test_sub_admin_cannot_edit_stock(client):
    owner, _ = _admin(client)
    sub = ensure_user(f"{unique('invsub')}@example.com", role='sub_admin')
    sku = unique('SUBSTOCK-')
    product = ensure_product(owner, [(sku, 6)])
    resp = client.put(f'/inventory/products/{product.id}/variants/{sku}/stock',
                      json={'operation': 'set', 'amount': 1}, headers=login(client, sub.email))
    assert resp.status_code == 403


def test_status_toggle_and_manual_hold(client):
    owner, headers = _admin(client)
    sku = unique('HOLDAPI-')
    product = ensure_product(owner, [(sku, 3)])
    held = client.put(f'/inventory/products/{product.id}/status', json={'is_active': False}, headers=headers)
    assert held.get_json()['inactive_reason'] == 'manual_hold'
    restock = client.put(f'/inventory/products/{product.id}/variants/{sku}/stock',
                         json={'operation': 'increase', 'amount': 5}, headers=headers).get_json()
    assert restock['product_active'] is False
    active = client.put(f'/inventory/products/{product.id}/status', json={'is_active': 'true'}, headers=headers)
    assert active.get_json()['is_active'] is True

    empty = ensure_product(owner, [(unique('EMPTYAPI-'), 0)])
    resp = client.put(f'/inventory/products/{empty.id}/status', json={'is_active': True}, headers=headers)
    assert resp.status_code == 400


def test_alerts_report_and_reorder(client):
    owner, headers = _admin(client)
    out_sku, crit_sku, low_sku, ok_sku = (unique(p) for p in ('R-OUT-', 'R-CRIT-', 'R-LOW-', 'R-OK-'))
    ensure_product(owner, [(out_sku, 0), (crit_sku, 2), (low_sku, 8), (ok_sku, 30)])

    alerts = client.get('/inventory/alerts', headers=headers).get_json()
    assert [a['sku'] for a in alerts['data']] == [out_sku, crit_sku, low_sku]
    assert alerts['threshold'] == 10

    report = client.get('/inventory/report', headers=headers).get_json()
    assert report['total_products'] == 1
    assert report['total_stock'] == 40
    assert report['levels'] == {'out_of_stock': 1, 'critical': 1, 'low': 1, 'in_stock': 1}

    rows = client.get('/inventory/reorder-suggestions?threshold=5', headers=headers).get_json()['data']
    assert [(r['sku'], r['suggested_quantity'], r['priority']) for r in rows] == [
        (out_sku, 50, 'urgent'),
        (crit_sku, 10, 'high'),
    ]


def test_categories(client):
    boss = ensure_user(f"{unique('catboss')}@example.com", role='super_admin')
    headers = login(client, boss.email)
    name = unique('Shoes ')
    created = client.post('/catalog/categories', json={'name': name}, headers=headers)
    assert created.status_code == 201
    assert client.post('/catalog/categories', json={'name': name}, headers=headers).status_code == 400

    admin, admin_headers = _admin(client, 'catadm')
    listing = client.get('/catalog/categories?limit=200', headers=admin_headers).get_json()
    assert name in {c['name'] for c in listing['data']}
    # admins can read categories but not create them
    assert client.post('/catalog/categories', json={'name': unique('Hats ')}, headers=admin_headers).status_code == 403

    buyer = ensure_user(f"{unique('catbuyer')}@example.com")
    assert client.get('/catalog/categories', headers=login(client, buyer.email)).status_code == 403
