from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional
import logging

from sqlalchemy import select

from shopadmin.errors import NotFoundError, ShopAdminError, StockValidationError, ValidationError
from shopadmin.models.authz import User
from shopadmin.models.notification import Notification
from shopadmin.models.order import Order, OrderItem
from shopadmin.models.product import Product
from shopadmin.services.notifications import notify_order_event
from shopadmin.services.stock import OP_DECREASE, OP_INCREASE, apply_stock_delta
from shopadmin.utils.fsm import TransitionValidator

logger = logging.getLogger(__name__)

ORDER_FSM = TransitionValidator({
    Order.STATUS_PENDING: {Order.STATUS_CONFIRMED, Order.STATUS_CANCELLED},
    Order.STATUS_CONFIRMED: {Order.STATUS_SHIPPED, Order.STATUS_CANCELLED},
    Order.STATUS_SHIPPED: {Order.STATUS_DELIVERED},
    Order.STATUS_DELIVERED: {Order.STATUS_RETURNED},
    Order.STATUS_CANCELLED: set(),
    Order.STATUS_RETURNED: {Order.STATUS_RETURN_PICKED},
    Order.STATUS_RETURN_PICKED: set(),
})

# URL verb -> target status
TRANSITIONS = {
    'confirm': Order.STATUS_CONFIRMED,
    'ship': Order.STATUS_SHIPPED,
    'deliver': Order.STATUS_DELIVERED,
    'cancel': Order.STATUS_CANCELLED,
    'return': Order.STATUS_RETURNED,
    'pickup': Order.STATUS_RETURN_PICKED,
}

_EVENT_FOR_STATUS = {
    Order.STATUS_CANCELLED: Notification.TYPE_ORDER_CANCELLED,
    Order.STATUS_DELIVERED: Notification.TYPE_ORDER_DELIVERED,
    Order.STATUS_RETURNED: Notification.TYPE_RETURN_REQUESTED,
    Order.STATUS_RETURN_PICKED: Notification.TYPE_RETURN_PICKED,
}


def _parse_lines(session, items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    lines = []
    for raw in items or []:
        if not isinstance(raw, dict):
            raise ValidationError('items must be objects')
        qty = raw.get('quantity')
        if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
            raise ValidationError('quantity must be a positive integer')
        product = session.get(Product, raw.get('product_id'))
        if product is None:
            raise NotFoundError(f"Product {raw.get('product_id')} not found")
        variant = product.variant_by_sku(raw.get('sku'))
        if variant is None:
            raise NotFoundError(f"Variant {raw.get('sku')} not found")
        lines.append({'product': product, 'variant': variant, 'quantity': qty})
    if not lines:
        raise ValidationError('Order must contain at least one item')
    return lines


def _requested_by_variant(lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Collapse lines naming the same variant so stock is checked against their sum."""
    wanted: Dict[int, Dict[str, Any]] = {}
    for ln in lines:
        key = ln['variant'].id
        if key in wanted:
            wanted[key]['quantity'] += ln['quantity']
        else:
            wanted[key] = dict(ln)
    return list(wanted.values())


def _shortfall(entry: Dict[str, Any], available: int) -> Dict[str, Any]:
    return {'sku': entry['variant'].sku, 'requested': entry['quantity'], 'available': available}


def place_order(session, customer: User, items: Iterable[Dict[str, Any]]) -> Order:
    """Reserve stock for every line, then create the pending order.

    Either the order and all of its reservations are committed, or every
    reservation already taken is put back and the error propagates.
    """
    lines = _parse_lines(session, items)
    wanted = _requested_by_variant(lines)
    unavailable = [
        _shortfall(w, w['variant'].stock)
        for w in wanted
        if not w['product'].is_active or w['variant'].stock < w['quantity']
    ]
    if unavailable:
        raise StockValidationError('Insufficient stock', unavailable=unavailable)

    reserved = []
    try:
        for w in wanted:
            change = apply_stock_delta(session, w['product'], w['variant'].sku, OP_DECREASE, w['quantity'])
            reserved.append((w['product'].id, w['variant'].sku, change.previous_stock - change.new_stock))
            # a concurrent sale can drain the variant between the check and the write
            if change.previous_stock < w['quantity']:
                raise StockValidationError('Insufficient stock',
                                           unavailable=[_shortfall(w, change.previous_stock)])

        order = Order(user_id=customer.id, status=Order.STATUS_PENDING, total_cents=0)
        for ln in lines:
            order.items.append(OrderItem(
                product_id=ln['product'].id,
                variant_id=ln['variant'].id,
                seller_id=ln['product'].created_by,
                quantity=ln['quantity'],
                price_cents=ln['variant'].price_cents,
            ))
        order.total_cents = sum(i.price_cents * i.quantity for i in order.items)
        session.add(order)
        session.commit()
    except Exception:
        session.rollback()
        _undo_reservations(session, reserved)
        raise

    _notify(session, Notification.TYPE_NEW_ORDER, order, customer)
    return order


def _undo_reservations(session, reserved) -> None:
    for product_id, sku, quantity in reserved:
        product = session.get(Product, product_id)
        if product is None or quantity == 0:
            continue
        try:
            apply_stock_delta(session, product, sku, OP_INCREASE, quantity)
        except ShopAdminError:
            logger.exception('Could not put back %s unit(s) of %s after a failed order', quantity, sku)


def _release_stock(session, order: Order) -> None:
    for item in order.items:
        product = session.get(Product, item.product_id)
        if product is None or item.variant is None:
            logger.warning('Cannot restock item %s of order %s: product gone', item.id, order.id)
            continue
        apply_stock_delta(session, product, item.variant.sku, OP_INCREASE, item.quantity)


def transition_order(session, order: Order, target: str, reason: Optional[str] = None) -> Order:
    ORDER_FSM.assert_can_transition(order.status, target)
    order.status = target
    if target == Order.STATUS_CANCELLED:
        order.cancel_reason = reason
    session.commit()
    if target == Order.STATUS_CANCELLED:
        _release_stock(session, order)
    kind = _EVENT_FOR_STATUS.get(target)
    if kind is not None:
        _notify(session, kind, order, order.customer, reason)
    return order


def _notify(session, kind: str, order: Order, customer: Optional[User], reason: Optional[str] = None) -> None:
    name = customer.name if customer is not None else 'Customer'
    try:
        notify_order_event(session, kind, order, name, reason)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception('Failed to create %s notification for order %s', kind, order.id)


def order_lines(session, order: Order) -> List[Dict[str, Any]]:
    rows = []
    for item in order.items:
        rows.append({
            'id': item.id,
            'product_id': item.product_id,
            'variant_id': item.variant_id,
            'sku': item.variant.sku if item.variant is not None else None,
            'seller_id': item.seller_id,
            'quantity': item.quantity,
            'price_cents': item.price_cents,
        })
    return rows
