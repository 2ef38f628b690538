"""Read-only inventory reporting over the products a user is allowed to see."""
from __future__ import annotations
from typing import Any, Dict, List

from shopadmin.config.settings import DEFAULT_LOW_STOCK_THRESHOLD
from shopadmin.services.visibility import ENTITY_PRODUCT, ScopedRepository

LEVEL_OUT_OF_STOCK = 'out_of_stock'
LEVEL_CRITICAL = 'critical'
LEVEL_LOW = 'low'
LEVEL_IN_STOCK = 'in_stock'
STOCK_LEVELS = (LEVEL_OUT_OF_STOCK, LEVEL_CRITICAL, LEVEL_LOW, LEVEL_IN_STOCK)

ALERT_THRESHOLD = 10
REORDER_WHEN_EMPTY = 50
REORDER_MULTIPLIER = 5

_LEVEL_ORDER = {level: i for i, level in enumerate(STOCK_LEVELS)}


def classify_stock(stock: int, critical: int = DEFAULT_LOW_STOCK_THRESHOLD, low: int = ALERT_THRESHOLD) -> str:
    if stock <= 0:
        return LEVEL_OUT_OF_STOCK
    if stock <= critical:
        return LEVEL_CRITICAL
    if stock <= low:
        return LEVEL_LOW
    return LEVEL_IN_STOCK


def _variant_row(product, variant) -> Dict[str, Any]:
    return {
        'product_id': product.id,
        'product_name': product.name,
        'brand': product.brand,
        'variant_id': variant.id,
        'sku': variant.sku,
        'color': variant.color,
        'size': variant.size,
        'stock': variant.stock,
        'level': classify_stock(variant.stock),
    }


def low_stock_alerts(repo: ScopedRepository, threshold: int = ALERT_THRESHOLD) -> List[Dict[str, Any]]:
    """Variants at or below ``threshold``, most urgent first."""
    alerts = []
    for product in repo.all(ENTITY_PRODUCT):
        for variant in product.variants:
            if variant.stock <= threshold:
                alerts.append(_variant_row(product, variant))
    alerts.sort(key=lambda a: (_LEVEL_ORDER[a['level']], a['stock'], a['variant_id']))
    return alerts


def inventory_report(repo: ScopedRepository) -> Dict[str, Any]:
    products = repo.all(ENTITY_PRODUCT)
    levels = {level: 0 for level in STOCK_LEVELS}
    total_variants = 0
    total_stock = 0
    for product in products:
        for variant in product.variants:
            total_variants += 1
            total_stock += variant.stock
            levels[classify_stock(variant.stock)] += 1
    return {
        'total_products': len(products),
        'active_products': sum(1 for p in products if p.is_active),
        'inactive_products': sum(1 for p in products if not p.is_active),
        'total_variants': total_variants,
        'total_stock': total_stock,
        'levels': levels,
    }


def _priority(stock: int) -> str:
    if stock == 0:
        return 'urgent'
    if stock <= DEFAULT_LOW_STOCK_THRESHOLD:
        return 'high'
    return 'medium'


def reorder_suggestions(repo: ScopedRepository, threshold: int = ALERT_THRESHOLD) -> List[Dict[str, Any]]:
    suggestions = []
    for alert in low_stock_alerts(repo, threshold):
        stock = alert['stock']
        row = dict(alert)
        row['suggested_quantity'] = REORDER_WHEN_EMPTY if stock == 0 else stock * REORDER_MULTIPLIER
        row['priority'] = _priority(stock)
        suggestions.append(row)
    return suggestions
