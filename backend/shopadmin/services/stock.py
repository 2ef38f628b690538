"""Variant stock mutation and the rules hanging off it.

apply_stock_delta() validates, writes the new stock with a compare-and-swap
UPDATE, recomputes product activation from the aggregate stock and commits.
Threshold notifications are emitted afterwards in their own transaction so a
failure there never undoes a committed stock change.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import logging

from sqlalchemy import select, update, func
from sqlalchemy.orm.attributes import set_committed_value

from shopadmin.config.settings import DEFAULT_LOW_STOCK_THRESHOLD
from shopadmin.errors import NotFoundError, StockConflictError, StockValidationError, ValidationError
from shopadmin.models.notification import Notification
from shopadmin.models.product import Product, ProductVariant
from shopadmin.services.notifications import create_stock_notification

logger = logging.getLogger(__name__)

OP_SET = 'set'
OP_INCREASE = 'increase'
OP_DECREASE = 'decrease'
STOCK_OPERATIONS = (OP_SET, OP_INCREASE, OP_DECREASE)

MAX_CAS_ATTEMPTS = 5

Notifier = Callable[..., Optional[Notification]]


@dataclass
class StockChange:
    product_id: int
    variant_id: int
    sku: str
    operation: str
    amount: int
    previous_stock: int
    new_stock: int
    total_stock: int
    product_active: bool
    activation_change: Optional[str] = None
    notification: Optional[Notification] = None
    notification_skipped: bool = False
    notification_failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'variant_id': self.variant_id,
            'sku': self.sku,
            'operation': self.operation,
            'amount': self.amount,
            'previous_stock': self.previous_stock,
            'new_stock': self.new_stock,
            'total_stock': self.total_stock,
            'product_active': self.product_active,
            'activation_change': self.activation_change,
            'notification_id': self.notification.id if self.notification is not None else None,
            'notification_type': self.notification.type if self.notification is not None else None,
            'notification_skipped': self.notification_skipped,
        }


def validate_stock_request(operation: Any, amount: Any) -> int:
    if operation not in STOCK_OPERATIONS:
        raise StockValidationError(f'operation must be one of {", ".join(STOCK_OPERATIONS)}')
    # bool is an int subclass; True must not read as 1
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise StockValidationError('amount must be an integer')
    if amount < 0:
        raise StockValidationError('Stock cannot be negative')
    return amount


def compute_new_stock(operation: str, current: int, amount: int) -> int:
    if operation == OP_SET:
        return amount
    if operation == OP_INCREASE:
        return current + amount
    return max(0, current - amount)


def evaluate_threshold(previous: int, new: int, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> Optional[str]:
    """Notification type for a downward crossing, or None."""
    if new == 0 and previous > 0:
        return Notification.TYPE_OUT_OF_STOCK
    if 0 < new <= threshold and previous > threshold:
        return Notification.TYPE_LOW_STOCK
    return None


def refresh_product_activity(product: Product, total_stock: int) -> Optional[str]:
    """Toggle activation from aggregate stock; returns 'deactivated', 'reactivated' or None."""
    if total_stock == 0 and product.is_active:
        product.is_active = False
        product.inactive_reason = Product.INACTIVE_OUT_OF_STOCK
        logger.info('Product %s auto-deactivated: out of stock', product.id)
        return 'deactivated'
    if total_stock > 0 and not product.is_active:
        if product.inactive_reason == Product.INACTIVE_MANUAL_HOLD:
            logger.info('Product %s restocked but kept inactive (manual hold)', product.id)
            return None
        product.is_active = True
        product.inactive_reason = None
        logger.info('Product %s auto-reactivated: stock restored', product.id)
        return 'reactivated'
    return None


def set_product_active(product: Product, active: bool, reason: str = Product.INACTIVE_MANUAL_HOLD) -> Product:
    """Explicit operator toggle; deactivation records why so restocks know whether to lift it."""
    if active:
        product.is_active = True
        product.inactive_reason = None
        return product
    if reason not in Product.INACTIVE_REASONS:
        raise ValidationError(f'reason must be one of {", ".join(Product.INACTIVE_REASONS)}')
    product.is_active = False
    product.inactive_reason = reason
    return product


def _aggregate_stock(session, product_id: int) -> int:
    return session.execute(
        select(func.coalesce(func.sum(ProductVariant.stock), 0)).where(ProductVariant.product_id == product_id)
    ).scalar_one()


def _compare_and_swap(session, variant: ProductVariant, operation: str, amount: int):
    previous = variant.stock
    for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
        new = compute_new_stock(operation, previous, amount)
        result = session.execute(
            update(ProductVariant)
            .where(ProductVariant.id == variant.id, ProductVariant.stock == previous)
            .values(stock=new)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            set_committed_value(variant, 'stock', new)
            return previous, new
        fresh = session.execute(select(ProductVariant.stock).where(ProductVariant.id == variant.id)).scalar_one_or_none()
        if fresh is None:
            raise NotFoundError(f'Variant {variant.sku} not found')
        logger.warning('Stock changed under us for %s (expected %s, found %s); retry %d',
                       variant.sku, previous, fresh, attempt)
        previous = fresh
    session.rollback()
    raise StockConflictError(f'Stock for {variant.sku} kept changing; retry the request')


def apply_stock_delta(session, product: Product, variant_sku: str, operation: str, amount: Any,
                      notifier: Optional[Notifier] = None,
                      threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> StockChange:
    amount = validate_stock_request(operation, amount)
    variant = product.variant_by_sku(variant_sku)
    if variant is None:
        raise NotFoundError('Variant not found')

    previous, new = _compare_and_swap(session, variant, operation, amount)
    total = _aggregate_stock(session, product.id)
    activation_change = refresh_product_activity(product, total)
    session.commit()

    change = StockChange(
        product_id=product.id,
        variant_id=variant.id,
        sku=variant.sku,
        operation=operation,
        amount=amount,
        previous_stock=previous,
        new_stock=new,
        total_stock=total,
        product_active=product.is_active,
        activation_change=activation_change,
    )
    kind = evaluate_threshold(previous, new, threshold)
    if kind is not None:
        _emit_threshold_notification(session, change, kind, product, variant, notifier or create_stock_notification)
    return change


def _emit_threshold_notification(session, change: StockChange, kind: str, product: Product,
                                 variant: ProductVariant, notifier: Notifier) -> None:
    try:
        note = notifier(session, kind, product, variant, change.new_stock)
        session.commit()
    except Exception:
        session.rollback()
        change.notification_failed = True
        logger.exception('Failed to create %s notification for product %s variant %s',
                         kind, product.id, variant.id)
        return
    change.notification = note
    change.notification_skipped = note is None
