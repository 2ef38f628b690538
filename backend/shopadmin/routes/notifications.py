from flask import Blueprint, request

from shopadmin import get_db
from shopadmin.decorators.auth import require_access, current_user
from shopadmin.models.notification import Notification
from shopadmin.services import notifications as notification_service
from shopadmin.utils.listing import build_list_payload, pagination_params
from shopadmin.utils.validation import parse_bool, parse_int, require_fields

notif_bp = Blueprint('notifications', __name__)


def _notification_json(n: Notification):
    return {
        'id': n.id,
        'type': n.type,
        'title': n.title,
        'message': n.message,
        'data': n.data or {},
        'is_read': n.is_read,
        'target_user_id': n.target_user_id,
        'is_seller_specific': n.is_seller_specific,
        'product_id': n.product_id,
        'variant_id': n.variant_id,
        'created_at': n.created_at.isoformat() if n.created_at else None,
    }


@notif_bp.get('/')
@require_access('notifications', 'read')
def list_notifications():
    session = get_db()
    user = current_user()
    limit, offset = pagination_params()
    unread_only = parse_bool(request.args.get('unread_only', 'false'), 'unread_only')
    rows, total = notification_service.list_for_user(
        session, user, limit, offset, unread_only=unread_only, type=request.args.get('type') or None
    )
    return build_list_payload([_notification_json(n) for n in rows], total, limit, offset,
                              unread_count=notification_service.unread_count(session, user))


@notif_bp.get('/unread-count')
@require_access('notifications', 'read')
def unread():
    return {'unread_count': notification_service.unread_count(get_db(), current_user())}


@notif_bp.post('/')
@require_access('notifications', 'edit')
def create():
    session = get_db()
    data = request.get_json(silent=True) or {}
    require_fields(data, ['type', 'title', 'message'])
    target = data.get('target_user_id')
    note = notification_service.create_notification(
        session,
        data['type'],
        data['title'],
        data['message'],
        data=data.get('data') if isinstance(data.get('data'), dict) else None,
        target_user_id=parse_int(target, 'target_user_id') if target is not None else None,
        is_seller_specific=parse_bool(data.get('is_seller_specific', False), 'is_seller_specific'),
    )
    session.commit()
    return _notification_json(note), 201


@notif_bp.put('/<int:notification_id>/read')
@require_access('notifications', 'read')
def mark_read(notification_id: int):
    session = get_db()
    note = notification_service.mark_read(session, current_user(), notification_id)
    session.commit()
    return _notification_json(note)


@notif_bp.put('/read-all')
@require_access('notifications', 'read')
def mark_all_read():
    session = get_db()
    updated = notification_service.mark_all_read(session, current_user())
    session.commit()
    return {'updated': updated}


@notif_bp.delete('/<int:notification_id>')
@require_access('notifications', 'delete')
def delete(notification_id: int):
    session = get_db()
    notification_service.delete_notification(session, current_user(), notification_id)
    session.commit()
    return {'deleted': notification_id}
