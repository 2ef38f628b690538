"""Role based row visibility and the repository every scoped read goes through.

filter_for() is a pure table lookup; ScopedRepository applies the result to
SQLAlchemy selects so handlers never build unscoped list/detail queries.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
import logging

from sqlalchemy import select, func

from shopadmin.constants.permissions import (
    ROLE_SUPER_ADMIN, ROLE_ADMIN, ROLE_SUB_ADMIN, ROLE_SELLER, ROLE_CUSTOMER,
)
from shopadmin.errors import NotFoundError, UnauthenticatedError
from shopadmin.models.authz import User
from shopadmin.models.product import Product, Category
from shopadmin.models.order import Order

logger = logging.getLogger(__name__)

ENTITY_PRODUCT = 'Product'
ENTITY_ORDER = 'Order'
ENTITY_CATEGORY = 'Category'
ENTITY_USER = 'User'

ENTITY_MODELS = {
    ENTITY_PRODUCT: Product,
    ENTITY_ORDER: Order,
    ENTITY_CATEGORY: Category,
    ENTITY_USER: User,
}


class _Self:
    def __repr__(self):
        return '<self>'

SELF = _Self()
ALL = None

# role -> entity -> ALL or (field, value); missing pairs deny everything
VISIBILITY_RULES: Dict[str, Dict[str, Optional[Tuple[str, Any]]]] = {
    ROLE_SUPER_ADMIN: {
        ENTITY_PRODUCT: ALL,
        ENTITY_ORDER: ALL,
        ENTITY_CATEGORY: ALL,
        ENTITY_USER: ALL,
    },
    ROLE_ADMIN: {
        ENTITY_PRODUCT: ('created_by', SELF),
        ENTITY_ORDER: ('items.seller_id', SELF),
        ENTITY_CATEGORY: ALL,
        ENTITY_USER: ('primary_role', ROLE_CUSTOMER),
    },
    ROLE_SUB_ADMIN: {
        ENTITY_PRODUCT: ALL,
        ENTITY_ORDER: ALL,
        ENTITY_CATEGORY: ALL,
        ENTITY_USER: ('primary_role', ROLE_CUSTOMER),
    },
    ROLE_SELLER: {
        ENTITY_PRODUCT: ('created_by', SELF),
        ENTITY_ORDER: ('items.seller_id', SELF),
        ENTITY_USER: ('id', SELF),
    },
    ROLE_CUSTOMER: {
        ENTITY_ORDER: ('user_id', SELF),
        ENTITY_USER: ('id', SELF),
    },
}


@dataclass(frozen=True)
class Scope:
    field: Optional[str] = None
    value: Any = None
    deny: bool = False

    @classmethod
    def everything(cls) -> 'Scope':
        return cls()

    @classmethod
    def nothing(cls) -> 'Scope':
        return cls(deny=True)

    @classmethod
    def where(cls, field: str, value: Any) -> 'Scope':
        return cls(field=field, value=value)

    @property
    def matches_all(self) -> bool:
        return not self.deny and self.field is None

    @property
    def denies_all(self) -> bool:
        return self.deny

    def clause(self, model):
        """SQL criterion for ``model`` or None when no narrowing applies."""
        if self.deny:
            # primary keys are never NULL
            return model.id.is_(None)
        if self.field is None:
            return None
        if '.' in self.field:
            rel_name, attr = self.field.split('.', 1)
            rel = getattr(model, rel_name)
            target = rel.property.mapper.class_
            return rel.any(getattr(target, attr) == self.value)
        return getattr(model, self.field) == self.value

    def apply(self, query, model):
        criterion = self.clause(model)
        if criterion is None:
            return query
        return query.where(criterion)

    def to_dict(self) -> Dict[str, Any]:
        if self.deny:
            return {'deny': True}
        if self.field is None:
            return {}
        return {self.field: self.value}


def filter_for(role: Optional[str], user_id: Optional[int], entity_type: str) -> Scope:
    rules = VISIBILITY_RULES.get(role or '')
    if rules is None or entity_type not in rules:
        return Scope.nothing()
    rule = rules[entity_type]
    if rule is ALL:
        return Scope.everything()
    field, value = rule
    if value is SELF:
        if user_id is None:
            return Scope.nothing()
        value = user_id
    return Scope.where(field, value)


class ScopedRepository:
    """Read access to scoped entities for one authenticated user."""

    def __init__(self, session, user: Optional[User]):
        if user is None:
            raise UnauthenticatedError('Authentication required')
        self.session = session
        self.user = user

    def scope(self, entity_type: str) -> Scope:
        return filter_for(self.user.primary_role, self.user.id, entity_type)

    def select(self, entity_type: str, *criteria):
        model = ENTITY_MODELS[entity_type]
        stmt = select(model)
        if criteria:
            stmt = stmt.where(*criteria)
        return self.scope(entity_type).apply(stmt, model)

    def list(self, entity_type: str, *criteria, order_by=(), limit: Optional[int] = None, offset: int = 0):
        """Return (rows, total) honoring the caller's scope."""
        model = ENTITY_MODELS[entity_type]
        stmt = self.select(entity_type, *criteria)
        total = self.session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        stmt = stmt.order_by(*(order_by or (model.id.asc(),)))
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.execute(stmt).scalars().unique().all(), total

    def all(self, entity_type: str, *criteria):
        rows, _ = self.list(entity_type, *criteria)
        return rows

    def count(self, entity_type: str, *criteria) -> int:
        stmt = self.select(entity_type, *criteria)
        return self.session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()

    def get(self, entity_type: str, entity_id: int):
        model = ENTITY_MODELS[entity_type]
        obj = self.session.execute(self.select(entity_type, model.id == entity_id)).scalars().first()
        if obj is None:
            # Out-of-scope rows look exactly like missing ones
            logger.debug('%s %s not visible to user %s', entity_type, entity_id, self.user.id)
            raise NotFoundError(f'{entity_type} not found')
        return obj
