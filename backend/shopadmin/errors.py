"""Domain exceptions rendered by the unified error handler in create_app().

Each class carries its HTTP status; the handler turns them into the
standard ``{'error': {'status', 'title', 'detail'}}`` envelope.
"""
from __future__ import annotations
from typing import Any, Dict, Optional


class ShopAdminError(Exception):
    status_code = 500
    title = 'Internal Server Error'

    def __init__(self, detail: Optional[str] = None, **extra: Any):
        self.detail = detail or self.title
        self.extra = extra
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        payload = {'status': self.status_code, 'title': self.title, 'detail': self.detail}
        payload.update(self.extra)
        return payload


class UnauthenticatedError(ShopAdminError):
    status_code = 401
    title = 'Unauthorized'


class ForbiddenError(ShopAdminError):
    status_code = 403
    title = 'Forbidden'


class NotFoundError(ShopAdminError):
    status_code = 404
    title = 'Not Found'


class ValidationError(ShopAdminError):
    status_code = 400
    title = 'Bad Request'


class StockValidationError(ValidationError):
    pass


class StockConflictError(ShopAdminError):
    status_code = 409
    title = 'Conflict'


class AccessCheckError(ShopAdminError):
    """The permission lookup itself failed; never treated as a denial."""


__all__ = [
    'ShopAdminError', 'UnauthenticatedError', 'ForbiddenError', 'NotFoundError',
    'ValidationError', 'StockValidationError', 'StockConflictError', 'AccessCheckError',
]
