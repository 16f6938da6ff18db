"""
Notification Service
Records notifications for users and hands them to registered transports
(socket rooms, push, WhatsApp). Dispatch is fire-and-forget: failures are
logged and never reach the caller.
"""

import logging

from aqua_ledger.models import db, Notification, User

logger = logging.getLogger(__name__)


class NotificationKind:
    """Notification kind constants"""
    ORDER_ASSIGNED = 'ORDER_ASSIGNED'
    NEW_ORDER = 'NEW_ORDER'
    ORDER_DELIVERED = 'ORDER_DELIVERED'
    ORDER_CANCELLED = 'ORDER_CANCELLED'
    DAILY_CLOSING = 'DAILY_CLOSING'


TEMPLATES = {
    NotificationKind.ORDER_ASSIGNED: ('New delivery assigned', 'Order #{order_id} for {customer} has been assigned to you'),
    NotificationKind.NEW_ORDER: ('New order', 'Order #{order_id} created for {customer}'),
    NotificationKind.ORDER_DELIVERED: ('Order delivered', 'Order #{order_id} for {customer} was delivered, paid {paid_amount}'),
    NotificationKind.ORDER_CANCELLED: ('Order cancelled', 'Order #{order_id} for {customer} was cancelled'),
    NotificationKind.DAILY_CLOSING: ('Daily closing saved', 'Counter closed for {date}'),
}


class _SafeDict(dict):
    def __missing__(self, key):
        return '?'


def _json_safe(payload):
    # Decimal, date and similar values are stored as strings
    return {key: value if isinstance(value, (str, int, float, bool, type(None))) else str(value)
            for key, value in payload.items()}


class NotificationService:
    """Dispatcher for order and closing notifications"""

    def __init__(self, transports=None):
        self.transports = list(transports or [])

    def register_transport(self, transport):
        """
        Register a delivery callable.

        Args:
            transport: callable(user_id, kind, notification_dict)
        """
        self.transports.append(transport)

    def _render(self, kind, payload):
        title, template = TEMPLATES.get(kind, (kind.replace('_', ' ').title(), kind))
        return title, template.format_map(_SafeDict(payload))

    def notify(self, user_id, kind, payload=None):
        """
        Persist and dispatch a notification.

        Args:
            user_id: Target user (None for a broadcast)
            kind: NotificationKind value
            payload: JSON-serializable dict

        Returns:
            Notification or None if it could not be recorded
        """
        payload = payload or {}
        try:
            title, message = self._render(kind, payload)
            notification = Notification(
                user_id=user_id,
                kind=kind,
                title=title,
                message=message,
                payload=_json_safe(payload)
            )
            db.session.add(notification)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error recording {kind} notification for user {user_id}: {e}")
            return None

        data = notification.to_dict()
        for transport in self.transports:
            try:
                transport(user_id, kind, data)
            except Exception as e:
                logger.error(f"Notification transport failed for {kind} -> user {user_id}: {e}")

        logger.info(f"Notification {kind} dispatched to user {user_id}")
        return notification

    def notify_admins(self, kind, payload=None):
        """Dispatch a notification to every active admin"""
        try:
            admin_ids = [u.id for u in User.query.filter_by(role='ADMIN', is_active=True).all()]
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error loading admins for {kind} notification: {e}")
            return []
        return [n for n in (self.notify(uid, kind, payload) for uid in admin_ids) if n]

    @staticmethod
    def get_notifications(user_id=None, limit=50):
        """Latest notifications, optionally for one user"""
        query = Notification.query
        if user_id is not None:
            query = query.filter_by(user_id=user_id)
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()

    @staticmethod
    def mark_as_read(notification_id):
        """Mark a notification as read; returns None when it does not exist"""
        notification = db.session.get(Notification, notification_id)
        if not notification:
            return None
        notification.is_read = True
        db.session.commit()
        return notification
