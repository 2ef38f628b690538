import pytest
from sqlalchemy import select, text

from shopadmin.errors import StockConflictError, StockValidationError, ValidationError
from shopadmin.models.notification import Notification
from shopadmin.models.order import Order
from shopadmin.services import orders as orders_mod
from shopadmin.services.orders import place_order, transition_order
from shopadmin.services.stock import OP_DECREASE
from tests.test_utils_seed import ensure_user, ensure_product, login, unique


def _order_notes(session, order, kind):
    notes = session.execute(select(Notification).where(Notification.type == kind)).scalars().all()
    return [n for n in notes if (n.data or {}).get('orderId') == order.id]


@pytest.fixture()
def shop(session):
    seller = ensure_user(f"{unique('oseller')}@example.com", role='admin')
    buyer = ensure_user(f"{unique('obuyer')}@example.com", name='Dana Buyer')
    sku = unique('ORD-')
    product = ensure_product(seller, [(sku, 10)], price_cents=2500)
    return seller, buyer, product, sku


def test_place_order_reserves_stock_and_notifies(session, shop):
    seller, buyer, product, sku = shop
    order = place_order(session, buyer, [{'product_id': product.id, 'sku': sku, 'quantity': 3}])
    assert order.status == Order.STATUS_PENDING
    assert order.total_cents == 7500
    assert order.items[0].seller_id == seller.id
    assert product.variant_by_sku(sku).stock == 7
    notes = _order_notes(session, order, Notification.TYPE_NEW_ORDER)
    assert len(notes) == 1
    assert notes[0].data['customerName'] == 'Dana Buyer'
    assert notes[0].data['itemCount'] == 3


def test_order_crossing_threshold_raises_stock_alert(session, shop):
    _, buyer, product, sku = shop
    place_order(session, buyer, [{'product_id': product.id, 'sku': sku, 'quantity': 6}])
    kinds = session.execute(
        select(Notification.type).where(Notification.product_id == product.id)
    ).scalars().all()
    assert kinds == [Notification.TYPE_LOW_STOCK]


def test_insufficient_stock_rejected_without_changes(session, shop):
    _, buyer, product, sku = shop
    with pytest.raises(StockValidationError) as exc:
        place_order(session, buyer, [{'product_id': product.id, 'sku': sku, 'quantity': 11}])
    assert exc.value.extra['unavailable'] == [{'sku': sku, 'requested': 11, 'available': 10}]
    session.rollback()
    assert product.variant_by_sku(sku).stock == 10

def test_repeated_sku_lines_are_summed(session, shop):
    _, buyer, product, sku = shop
    with pytest.raises(StockValidationError) as exc:
        place_order(session, buyer, [
            {'product_id': product.id, 'sku': sku, 'quantity': 6},
            {'product_id': product.id, 'sku': sku, 'quantity': 6},
        ])
    assert exc.value.extra['unavailable'] == [{'sku': sku, 'requested': 12, 'available': 10}]
    session.rollback()
    assert product.variant_by_sku(sku).stock == 10

    order = place_order(session, buyer, [
        {'product_id': product.id, 'sku': sku, 'quantity': 3},
        {'product_id': product.id, 'sku': sku, 'quantity': 4},
    ])
    assert len(order.items) == 2 and order.total_cents == 7 * 2500
    assert product.variant_by_sku(sku).stock == 3


def test_failed_reservation_puts_stock_back(session, monkeypatch):
    seller = ensure_user(f"{unique('oseller')}@example.com", role='admin')
    buyer = ensure_user(f"{unique('obuyer')}@example.com")
    first, second = unique('RSV-A-'), unique('RSV-B-')
    product = ensure_product(seller, [(first, 10), (second, 10)])
    real = orders_mod.apply_stock_delta

    def conflict_on_second(session, product, sku, operation, amount, **kwargs):
        if operation == OP_DECREASE and sku == second:
            raise StockConflictError(f'Stock for {sku} kept changing; retry the request')
        return real(session, product, sku, operation, amount, **kwargs)

    monkeypatch.setattr(orders_mod, 'apply_stock_delta', conflict_on_second)
    with pytest.raises(StockConflictError):
        place_order(session, buyer, [
            {'product_id': product.id, 'sku': first, 'quantity': 3},
            {'product_id': product.id, 'sku': second, 'quantity': 2},
        ])
    assert product.variant_by_sku(first).stock == 10
    assert product.variant_by_sku(second).stock == 10
    assert session.execute(select(Order).where(Order.user_id == buyer.id)).scalars().all() == []


def test_stock_drained_after_check_is_not_oversold(session, shop):
    _, buyer, product, sku = shop
    variant = product.variant_by_sku(sku)
    assert variant.stock == 10
    # another checkout takes most of it; the loaded variant still says 10
    session.execute(text('UPDATE product_variants SET stock = 2 WHERE id = :id'), {'id': variant.id})
    session.commit()
    with pytest.raises(StockValidationError) as exc:
        place_order(session, buyer, [{'product_id': product.id, 'sku': sku, 'quantity': 5}])
    assert exc.value.extra['unavailable'] == [{'sku': sku, 'requested': 5, 'available': 2}]
    assert product.variant_by_sku(sku).stock == 2
    assert product.is_active is True
    assert session.execute(select(Order).where(Order.user_id == buyer.id)).scalars().all() == []



@pytest.mark.parametrize('items', [
    [],
    [{'product_id': 1, 'sku': 'x', 'quantity': 0}],
    [{'product_id': 1, 'sku': 'x', 'quantity': True}],
])
def test_malformed_items(session, shop, items):
    _, buyer, _, _ = shop
    with pytest.raises(ValidationError):
        place_order(session, buyer, items)


def test_cancel_releases_stock(session, shop):
    _, buyer, product, sku = shop
    order = place_order(session, buyer, [{'product_id': product.id, 'sku': sku, 'quantity': 4}])
    transition_order(session, order, Order.STATUS_CANCELLED, reason='changed mind')
    assert order.cancel_reason == 'changed mind'
    assert product.variant_by_sku(sku).stock == 10
    notes = _order_notes(session, order, Notification.TYPE_ORDER_CANCELLED)
    assert len(notes) == 1 and notes[0].data['reason'] == 'changed mind'


def test_full_lifecycle_and_return(session, shop):
    _, buyer, product, sku = shop
    order = place_order(session, buyer, [{'product_id': product.id, 'sku': sku, 'quantity': 1}])
    for status in (Order.STATUS_CONFIRMED, Order.STATUS_SHIPPED, Order.STATUS_DELIVERED, Order.STATUS_RETURNED):
        transition_order(session, order, status)
    assert order.status == Order.STATUS_RETURNED
    assert len(_order_notes(session, order, Notification.TYPE_ORDER_DELIVERED)) == 1
    assert len(_order_notes(session, order, Notification.TYPE_RETURN_REQUESTED)) == 1
    # a return does not restock automatically
    assert product.variant_by_sku(sku).stock == 9
    with pytest.raises(ValidationError):
        transition_order(session, order, Order.STATUS_CANCELLED)

    transition_order(session, order, Order.STATUS_RETURN_PICKED)
    picked = _order_notes(session, order, Notification.TYPE_RETURN_PICKED)
    assert len(picked) == 1 and picked[0].title == 'Return Picked Up'
    assert product.variant_by_sku(sku).stock == 9
    with pytest.raises(ValidationError):
        transition_order(session, order, Order.STATUS_RETURNED)


def test_order_api_scoping(client, shop):
    seller, buyer, product, sku = shop
    stranger = ensure_user(f"{unique('ostranger')}@example.com", role='admin')
    headers = login(client, seller.email)
    created = client.post('/sales/orders', json={'user_id': buyer.id, 'items': [
        {'product_id': product.id, 'sku': sku, 'quantity': 2}]}, headers=headers)
    assert created.status_code == 201
    order_id = created.get_json()['id']
    assert created.get_json()['items'][0]['sku'] == sku

    other = login(client, stranger.email)
    assert client.get(f'/sales/orders/{order_id}', headers=other).status_code == 404
    assert client.post(f'/sales/orders/{order_id}/confirm', headers=other).status_code == 404

    assert client.post(f'/sales/orders/{order_id}/teleport', headers=headers).status_code == 404
    assert client.post(f'/sales/orders/{order_id}/deliver', headers=headers).status_code == 400
    confirmed = client.post(f'/sales/orders/{order_id}/confirm', headers=headers)
    assert confirmed.get_json()['status'] == 'confirmed'

    too_many = client.post('/sales/orders', json={'user_id': buyer.id, 'items': [
        {'product_id': product.id, 'sku': sku, 'quantity': 999}]}, headers=headers)
    assert too_many.status_code == 400
    assert too_many.get_json()['error']['unavailable'][0]['requested'] == 999
