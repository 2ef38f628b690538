from __future__ import annotations
from functools import partial

from flask import Blueprint, request, current_app
from sqlalchemy import select

from shopadmin import get_db
from shopadmin.decorators.audit import audit_log
from shopadmin.decorators.auth import require_access, current_user
from shopadmin.errors import ValidationError
from shopadmin.models.product import Product, ProductVariant
from shopadmin.services.inventory import (
    ALERT_THRESHOLD, classify_stock, inventory_report, low_stock_alerts, reorder_suggestions,
)
from shopadmin.services.notifications import create_stock_notification
from shopadmin.services.stock import apply_stock_delta, set_product_active
from shopadmin.services.visibility import ENTITY_PRODUCT, ENTITY_CATEGORY, ScopedRepository
from shopadmin.utils.filters import build_filters, as_bool
from shopadmin.utils.listing import build_list_payload, pagination_params
from shopadmin.utils.sorting import sort_clauses
from shopadmin.utils.validation import parse_bool, parse_int, require_fields

inv_bp = Blueprint('inventory', __name__)

PRODUCT_SORT_FIELDS = {
    'name': Product.name,
    'created_at': Product.created_at,
    'updated_at': Product.updated_at,
}


def _variant_json(v: ProductVariant):
    return {
        'id': v.id,
        'sku': v.sku,
        'color': v.color,
        'size': v.size,
        'price_cents': v.price_cents,
        'stock': v.stock,
        'level': classify_stock(v.stock),
    }


def _product_json(p: Product):
    return {
        'id': p.id,
        'name': p.name,
        'brand': p.brand,
        'category_id': p.category_id,
        'created_by': p.created_by,
        'is_active': p.is_active,
        'inactive_reason': p.inactive_reason,
        'total_stock': p.total_stock,
        'variants': [_variant_json(v) for v in p.variants],
    }


def _repo() -> ScopedRepository:
    return ScopedRepository(get_db(), current_user())


@inv_bp.get('/products')
@require_access('products', 'read')
def list_products():
    limit, offset = pagination_params()
    criteria = build_filters({
        'name': {'clause': lambda v: Product.name.ilike(f'%{v}%')},
        'brand': {'clause': lambda v: Product.brand == v},
        'category_id': {'coerce': int, 'clause': lambda v: Product.category_id == v},
        'is_active': {'coerce': as_bool, 'clause': lambda v: Product.is_active.is_(v)},
    }, request.args)
    order_by = sort_clauses(request.args.get('sort'), PRODUCT_SORT_FIELDS, Product.id)
    rows, total = _repo().list(ENTITY_PRODUCT, *criteria, order_by=order_by, limit=limit, offset=offset)
    return build_list_payload([_product_json(p) for p in rows], total, limit, offset)


@inv_bp.get('/products/<int:product_id>')
@require_access('products', 'read')
def get_product(product_id: int):
    return _product_json(_repo().get(ENTITY_PRODUCT, product_id))


@inv_bp.post('/products')
@require_access('products', 'create_assets')
@audit_log('PRODUCT.CREATE', entity='Product', entity_id_key='id', meta_keys=['name', 'total_stock'])
def create_product():
    session = get_db()
    data = request.get_json(silent=True) or {}
    require_fields(data, ['name'])
    variants = data.get('variants') or []
    if not isinstance(variants, list) or not variants:
        raise ValidationError('at least one variant required')
    category_id = data.get('category_id')
    if category_id is not None:
        # category must be visible to the creator
        _repo().get(ENTITY_CATEGORY, parse_int(category_id, 'category_id'))
    product = Product(name=data['name'], brand=data.get('brand'), category_id=category_id,
                      created_by=current_user().id, is_active=True)
    seen = set()
    for raw in variants:
        if not isinstance(raw, dict):
            raise ValidationError('variants must be objects')
        require_fields(raw, ['sku'])
        sku = raw['sku']
        if sku in seen or session.execute(select(ProductVariant.id).where(ProductVariant.sku == sku)).first():
            raise ValidationError(f'sku {sku} exists')
        seen.add(sku)
        product.variants.append(ProductVariant(
            sku=sku,
            color=raw.get('color') or '',
            size=raw.get('size') or '',
            price_cents=parse_int(raw.get('price_cents', 0), 'price_cents', minimum=0),
            stock=parse_int(raw.get('stock', 0), 'stock', minimum=0),
        ))
    if product.total_stock == 0:
        product.is_active = False
        product.inactive_reason = Product.INACTIVE_OUT_OF_STOCK
    session.add(product)
    session.commit()
    return _product_json(product), 201


@inv_bp.put('/products/<int:product_id>/variants/<sku>/stock')
@require_access('inventory', 'edit')
@audit_log('STOCK.UPDATE', entity='Product', entity_id_arg='product_id',
           meta_keys=['sku', 'operation', 'amount', 'previous_stock', 'new_stock'])
def update_stock(product_id: int, sku: str):
    session = get_db()
    product = _repo().get(ENTITY_PRODUCT, product_id)
    data = request.get_json(silent=True) or {}
    cfg = current_app.config
    notifier = partial(create_stock_notification, dedup_hours=cfg['NOTIFICATION_DEDUP_HOURS'])
    change = apply_stock_delta(
        session, product, sku, data.get('operation', 'set'), data.get('amount'),
        notifier=notifier, threshold=cfg['LOW_STOCK_THRESHOLD'],
    )
    return change.to_dict()


@inv_bp.put('/products/<int:product_id>/status')
@require_access('products', 'edit')
@audit_log('PRODUCT.STATUS', entity='Product', entity_id_key='id', meta_keys=['is_active', 'inactive_reason'])
def update_status(product_id: int):
    session = get_db()
    product = _repo().get(ENTITY_PRODUCT, product_id)
    data = request.get_json(silent=True) or {}
    require_fields(data, ['is_active'])
    active = parse_bool(data['is_active'], 'is_active')
    if active and product.total_stock == 0:
        raise ValidationError('Cannot activate a product without stock')
    set_product_active(product, active, reason=data.get('reason') or Product.INACTIVE_MANUAL_HOLD)
    session.commit()
    return _product_json(product)


@inv_bp.get('/alerts')
@require_access('inventory', 'read')
def stock_alerts():
    threshold = parse_int(request.args.get('threshold', ALERT_THRESHOLD), 'threshold', minimum=0)
    alerts = low_stock_alerts(_repo(), threshold)
    return {'data': alerts, 'count': len(alerts), 'threshold': threshold}


@inv_bp.get('/report')
@require_access('inventory', 'read')
def report():
    return inventory_report(_repo())


@inv_bp.get('/reorder-suggestions')
@require_access('inventory', 'read')
def reorder():
    threshold = parse_int(request.args.get('threshold', ALERT_THRESHOLD), 'threshold', minimum=0)
    rows = reorder_suggestions(_repo(), threshold)
    return {'data': rows, 'count': len(rows)}
