"""
Tests for the Notification Dispatcher

Run with: pytest tests/test_notification_service.py -v
"""

import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock, patch

from sqlalchemy.orm import Session

from aqua_ledger.models import db, Notification, User
from aqua_ledger.services.notification_service import NotificationKind, NotificationService


@pytest.mark.integration
class TestNotify:
    """Tests for recording and dispatching notifications"""

    def test_notification_recorded(self, rider):
        service = NotificationService()
        notification = service.notify(rider.user_id, NotificationKind.ORDER_ASSIGNED,
                                      {'order_id': 7, 'customer': 'Ali Raza'})

        assert notification.id is not None
        assert notification.title == 'New delivery assigned'
        assert notification.message == 'Order #7 for Ali Raza has been assigned to you'
        assert notification.data == {'order_id': 7, 'customer': 'Ali Raza'}
        assert notification.is_read is False

    def test_payload_stored_as_json(self, rider):
        """Payload survives a reload as a dict; Decimal and date values become strings"""
        notification = NotificationService().notify(
            rider.user_id, NotificationKind.ORDER_DELIVERED,
            {'order_id': 3, 'paid_amount': Decimal('150.50'), 'date': date(2026, 1, 15), 'urgent': True}
        )
        db.session.expire_all()

        reloaded = db.session.get(Notification, notification.id)
        assert reloaded.payload == {'order_id': 3, 'paid_amount': '150.50', 'date': '2026-01-15', 'urgent': True}
        assert reloaded.to_dict()['data']['paid_amount'] == '150.50'
        assert reloaded.message == 'Order #3 for ? was delivered, paid 150.50'

    def test_missing_template_values(self, rider):
        notification = NotificationService().notify(rider.user_id, NotificationKind.ORDER_DELIVERED, {})
        assert notification.message == 'Order #? for ? was delivered, paid ?'

    def test_unknown_kind(self, rider):
        notification = NotificationService().notify(rider.user_id, 'STOCK_LOW', {'x': 1})
        assert notification.title == 'Stock Low'

    def test_transports_receive_record(self, rider):
        transport = MagicMock()
        service = NotificationService()
        service.register_transport(transport)

        service.notify(rider.user_id, NotificationKind.NEW_ORDER, {'order_id': 1})

        user_id, kind, data = transport.call_args[0]
        assert user_id == rider.user_id
        assert kind == NotificationKind.NEW_ORDER
        assert data['data'] == {'order_id': 1}

    def test_failing_transport_does_not_stop_others(self, rider):
        broken = MagicMock(side_effect=ConnectionError('socket closed'))
        working = MagicMock()
        service = NotificationService(transports=[broken, working])

        notification = service.notify(rider.user_id, NotificationKind.NEW_ORDER, {'order_id': 1})

        assert notification is not None
        working.assert_called_once()

    def test_store_failure_returns_none(self, rider):
        with patch.object(Session, 'commit', side_effect=RuntimeError('db down')):
            result = NotificationService().notify(rider.user_id, NotificationKind.NEW_ORDER, {})
        assert result is None
        assert Notification.query.count() == 0

    def test_notify_admins(self, admin, rider):
        other_admin = User(email='boss@test.com', role='ADMIN', is_active=True)
        retired_admin = User(email='old@test.com', role='ADMIN', is_active=False)
        db.session.add_all([other_admin, retired_admin])
        db.session.commit()

        sent = NotificationService().notify_admins(NotificationKind.DAILY_CLOSING, {'date': '2026-01-15'})

        assert {n.user_id for n in sent} == {admin.id, other_admin.id}
        assert sent[0].message == 'Counter closed for 2026-01-15'


@pytest.mark.integration
class TestNotificationReads:
    """Tests for reading and acknowledging notifications"""

    def test_get_notifications_for_user(self, admin, rider):
        service = NotificationService()
        service.notify(rider.user_id, NotificationKind.ORDER_ASSIGNED, {'order_id': 1})
        service.notify(rider.user_id, NotificationKind.ORDER_CANCELLED, {'order_id': 1})
        service.notify(admin.id, NotificationKind.NEW_ORDER, {'order_id': 1})

        rider_notifications = NotificationService.get_notifications(rider.user_id)
        assert [n.kind for n in rider_notifications] == [
            NotificationKind.ORDER_CANCELLED, NotificationKind.ORDER_ASSIGNED
        ]
        assert len(NotificationService.get_notifications()) == 3
        assert len(NotificationService.get_notifications(limit=1)) == 1

    def test_mark_as_read(self, rider):
        notification = NotificationService().notify(rider.user_id, NotificationKind.NEW_ORDER, {})

        assert NotificationService.mark_as_read(notification.id).is_read is True
        assert NotificationService.mark_as_read(999) is None
