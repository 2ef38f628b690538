from __future__ import annotations
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple
import logging

from sqlalchemy import select, func, or_, delete, update

from shopadmin.config.settings import DEFAULT_DEDUP_HOURS, DEFAULT_LOW_STOCK_THRESHOLD, DEFAULT_RETENTION_DAYS
from shopadmin.constants.permissions import ROLE_SUPER_ADMIN, ROLE_ADMIN
from shopadmin.errors import NotFoundError, ValidationError
from shopadmin.models.authz import User
from shopadmin.models.notification import Notification
from shopadmin.models.order import Order
from shopadmin.models.product import Product, ProductVariant
from shopadmin.utils.clock import utcnow

logger = logging.getLogger(__name__)


def create_notification(session, type: str, title: str, message: str, data: Optional[Dict[str, Any]] = None,
                        target_user_id: Optional[int] = None, is_seller_specific: bool = False,
                        product_id: Optional[int] = None, variant_id: Optional[int] = None) -> Notification:
    if type not in Notification.ALL_TYPES:
        raise ValidationError(f'Unknown notification type {type!r}')
    if not title or not message:
        raise ValidationError('title and message required')
    note = Notification(
        type=type,
        title=title,
        message=message,
        data=dict(data or {}),
        target_user_id=target_user_id,
        is_seller_specific=is_seller_specific,
        product_id=product_id,
        variant_id=variant_id,
        is_read=False,
    )
    session.add(note)
    session.flush()
    return note


def find_recent_duplicate(session, type: str, product_id: int, variant_id: int,
                          now: Optional[datetime] = None, hours: int = DEFAULT_DEDUP_HOURS) -> Optional[Notification]:
    since = (now or utcnow()) - timedelta(hours=hours)
    stmt = (
        select(Notification)
        .where(
            Notification.type == type,
            Notification.product_id == product_id,
            Notification.variant_id == variant_id,
            Notification.created_at >= since,
        )
        .order_by(Notification.created_at.desc())
    )
    return session.execute(stmt).scalars().first()


def create_stock_notification(session, kind: str, product: Product, variant: ProductVariant, stock: int,
                              now: Optional[datetime] = None,
                              dedup_hours: int = DEFAULT_DEDUP_HOURS) -> Optional[Notification]:
    """Create a LOW_STOCK / OUT_OF_STOCK notification unless one exists inside the dedup window."""
    if kind not in Notification.STOCK_TYPES:
        raise ValidationError(f'{kind!r} is not a stock notification type')
    if find_recent_duplicate(session, kind, product.id, variant.id, now=now, hours=dedup_hours) is not None:
        logger.debug('Skipping duplicate %s for product %s variant %s', kind, product.id, variant.id)
        return None
    if kind == Notification.TYPE_OUT_OF_STOCK:
        title = 'Out of Stock Alert'
        message = f'{product.name} ({variant.label}) is now out of stock'
    else:
        title = 'Low Stock Alert'
        message = f'{product.name} ({variant.label}) has only {stock} items left in stock'
    return create_notification(
        session,
        kind,
        title,
        message,
        data={
            'productId': product.id,
            'productName': product.name,
            'variantId': variant.id,
            'sku': variant.sku,
            'currentStock': stock,
        },
        product_id=product.id,
        variant_id=variant.id,
    )


def _order_data(order: Order, customer_name: str) -> Dict[str, Any]:
    return {
        'orderId': order.id,
        'customerName': customer_name,
        'totalCents': order.total_cents,
        'itemCount': sum(i.quantity for i in order.items),
    }


def notify_order_event(session, kind: str, order: Order, customer_name: str,
                       reason: Optional[str] = None) -> Notification:
    messages = {
        Notification.TYPE_NEW_ORDER: ('New Order Received', f'New order #{order.id} placed by {customer_name}'),
        Notification.TYPE_ORDER_CANCELLED: ('Order Cancelled', f'Order #{order.id} was cancelled by {customer_name}'),
        Notification.TYPE_ORDER_DELIVERED: ('Order Delivered', f'Order #{order.id} has been delivered to {customer_name}'),
        Notification.TYPE_RETURN_REQUESTED: ('Return Requested', f'{customer_name} requested a return for order #{order.id}'),
        Notification.TYPE_RETURN_PICKED: ('Return Picked Up', f'Return for order #{order.id} has been picked up'),
    }
    if kind not in messages:
        raise ValidationError(f'{kind!r} is not an order notification type')
    title, message = messages[kind]
    data = _order_data(order, customer_name)
    if reason:
        data['reason'] = reason
        message = f'{message}. Reason: {reason}'
    return create_notification(session, kind, title, message, data=data)


def visibility_clause(user: User):
    """super_admin sees all; admin sees global plus targeted-to-self; others global only."""
    if user.primary_role == ROLE_SUPER_ADMIN:
        return None
    if user.primary_role == ROLE_ADMIN:
        return or_(Notification.target_user_id.is_(None), Notification.target_user_id == user.id)
    return Notification.target_user_id.is_(None)


def _visible(stmt, user: User):
    clause = visibility_clause(user)
    return stmt if clause is None else stmt.where(clause)


def list_for_user(session, user: User, limit: int, offset: int, unread_only: bool = False,
                  type: Optional[str] = None) -> Tuple[list, int]:
    stmt = _visible(select(Notification), user)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    if type:
        stmt = stmt.where(Notification.type == type)
    total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = session.execute(
        stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(offset).limit(limit)
    ).scalars().all()
    return rows, total


def unread_count(session, user: User) -> int:
    stmt = _visible(select(func.count(Notification.id)).where(Notification.is_read.is_(False)), user)
    return session.execute(stmt).scalar_one()


def get_visible(session, user: User, notification_id: int) -> Notification:
    stmt = _visible(select(Notification).where(Notification.id == notification_id), user)
    note = session.execute(stmt).scalars().first()
    if note is None:
        raise NotFoundError('Notification not found')
    return note


def mark_read(session, user: User, notification_id: int) -> Notification:
    note = get_visible(session, user, notification_id)
    note.is_read = True
    return note


def mark_all_read(session, user: User) -> int:
    stmt = update(Notification).where(Notification.is_read.is_(False))
    clause = visibility_clause(user)
    if clause is not None:
        stmt = stmt.where(clause)
    result = session.execute(stmt.values(is_read=True))
    return result.rowcount or 0


def delete_notification(session, user: User, notification_id: int) -> None:
    note = get_visible(session, user, notification_id)
    session.delete(note)


def sweep_stock_levels(session, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD, now: Optional[datetime] = None,
                       dedup_hours: int = DEFAULT_DEDUP_HOURS) -> int:
    """Scan active products and emit stock notifications; returns how many were created."""
    created = 0
    stmt = (
        select(ProductVariant)
        .join(Product, Product.id == ProductVariant.product_id)
        .where(Product.is_active.is_(True), ProductVariant.stock <= threshold)
        .order_by(ProductVariant.id)
    )
    for variant in session.execute(stmt).scalars().all():
        kind = Notification.TYPE_OUT_OF_STOCK if variant.stock == 0 else Notification.TYPE_LOW_STOCK
        note = create_stock_notification(session, kind, variant.product, variant, variant.stock,
                                         now=now, dedup_hours=dedup_hours)
        if note is not None:
            created += 1
    logger.info('Stock sweep created %d notification(s)', created)
    return created


def cleanup_old_notifications(session, days: int = DEFAULT_RETENTION_DAYS, now: Optional[datetime] = None) -> int:
    cutoff = (now or utcnow()) - timedelta(days=days)
    result = session.execute(
        delete(Notification).where(Notification.created_at < cutoff)
    )
    deleted = result.rowcount or 0
    logger.info('Removed %d notification(s) older than %d days', deleted, days)
    return deleted
