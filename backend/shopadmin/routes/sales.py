from flask import Blueprint, request

from shopadmin import get_db
from shopadmin.decorators.audit import audit_log
from shopadmin.decorators.auth import require_access, current_user
from shopadmin.errors import NotFoundError
from shopadmin.models.authz import User
from shopadmin.models.order import Order
from shopadmin.services.orders import TRANSITIONS, order_lines, place_order, transition_order
from shopadmin.services.visibility import ENTITY_ORDER, ScopedRepository
from shopadmin.utils.filters import build_filters
from shopadmin.utils.listing import build_list_payload, pagination_params
from shopadmin.utils.sorting import sort_clauses
from shopadmin.utils.validation import parse_int, require_fields

sales_bp = Blueprint('sales', __name__)

ORDER_SORT_FIELDS = {
    'created_at': Order.created_at,
    'total_cents': Order.total_cents,
    'status': Order.status,
}


def _order_json(session, o: Order):
    return {
        'id': o.id,
        'user_id': o.user_id,
        'status': o.status,
        'total_cents': o.total_cents,
        'cancel_reason': o.cancel_reason,
        'created_at': o.created_at.isoformat() if o.created_at else None,
        'items': order_lines(session, o),
    }


@sales_bp.get('/orders')
@require_access('orders', 'read')
def list_orders():
    session = get_db()
    limit, offset = pagination_params()
    criteria = build_filters({
        'status': {'validate': lambda v: v in Order.ALL_STATUSES, 'clause': lambda v: Order.status == v},
        'user_id': {'coerce': int, 'clause': lambda v: Order.user_id == v},
    }, request.args)
    order_by = sort_clauses(request.args.get('sort'), ORDER_SORT_FIELDS, Order.id)
    repo = ScopedRepository(session, current_user())
    rows, total = repo.list(ENTITY_ORDER, *criteria, order_by=order_by, limit=limit, offset=offset)
    return build_list_payload([_order_json(session, o) for o in rows], total, limit, offset)


@sales_bp.get('/orders/<int:order_id>')
@require_access('orders', 'read')
def get_order(order_id: int):
    session = get_db()
    order = ScopedRepository(session, current_user()).get(ENTITY_ORDER, order_id)
    return _order_json(session, order)


@sales_bp.post('/orders')
@require_access('orders', 'edit')
@audit_log('ORDER.CREATE', entity='Order', entity_id_key='id', meta_keys=['total_cents'])
def create_order():
    session = get_db()
    data = request.get_json(silent=True) or {}
    require_fields(data, ['user_id', 'items'])
    customer = session.get(User, parse_int(data['user_id'], 'user_id'))
    if customer is None:
        raise NotFoundError('Customer not found')
    order = place_order(session, customer, data['items'])
    return _order_json(session, order), 201


@sales_bp.post('/orders/<int:order_id>/<transition>')
@require_access('orders', 'edit')
@audit_log('ORDER.TRANSITION', entity='Order', entity_id_arg='order_id', meta_keys=['status'])
def change_status(order_id: int, transition: str):
    if transition not in TRANSITIONS:
        raise NotFoundError(f'Unknown transition {transition}')
    session = get_db()
    order = ScopedRepository(session, current_user()).get(ENTITY_ORDER, order_id)
    data = request.get_json(silent=True) or {}
    transition_order(session, order, TRANSITIONS[transition], reason=data.get('reason'))
    return _order_json(session, order)
