from flask import Blueprint, request
from sqlalchemy import select

from shopadmin import get_db
from shopadmin.decorators.audit import audit_log
from shopadmin.decorators.auth import require_access, current_user
from shopadmin.errors import ValidationError
from shopadmin.models.product import Category
from shopadmin.services.visibility import ENTITY_CATEGORY, ScopedRepository
from shopadmin.utils.filters import build_filters, as_bool
from shopadmin.utils.listing import build_list_payload, pagination_params
from shopadmin.utils.validation import require_fields

cat_bp = Blueprint('catalog', __name__)


def _category_json(c: Category):
    return {'id': c.id, 'name': c.name, 'is_active': c.is_active, 'created_by': c.created_by}


@cat_bp.get('/categories')
@require_access('categories', 'read')
def list_categories():
    limit, offset = pagination_params()
    criteria = build_filters({
        'is_active': {'coerce': as_bool, 'clause': lambda v: Category.is_active.is_(v)},
    }, request.args)
    repo = ScopedRepository(get_db(), current_user())
    rows, total = repo.list(ENTITY_CATEGORY, *criteria, order_by=(Category.name.asc(), Category.id.asc()),
                            limit=limit, offset=offset)
    return build_list_payload([_category_json(c) for c in rows], total, limit, offset)


@cat_bp.post('/categories')
@require_access('categories', 'create_assets')
@audit_log('CATEGORY.CREATE', entity='Category', entity_id_key='id', meta_keys=['name'])
def create_category():
    session = get_db()
    data = request.get_json(silent=True) or {}
    require_fields(data, ['name'])
    name = data['name'].strip()
    if session.execute(select(Category.id).where(Category.name == name)).first():
        raise ValidationError('category exists')
    category = Category(name=name, created_by=current_user().id, is_active=True)
    session.add(category)
    session.commit()
    return _category_json(category), 201
