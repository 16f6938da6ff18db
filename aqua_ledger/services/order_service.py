"""
Order Ledger Service
Handles the order lifecycle and the customer running balance:
- Order creation (delivery and walk-in)
- Delivery and walk-in completion with payment
- Cancellation and amendment by snapshot reversal
- Bill clearing

Each operation locks the customer row and commits the order and the
customer balance together or not at all.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import or_

from aqua_ledger.models import db, Customer, Order, RiderProfile
from aqua_ledger.services.customer_service import CustomerService
from aqua_ledger.services.notification_service import NotificationKind, NotificationService
from aqua_ledger.utils.db_utils import customer_lock, run_in_transaction
from aqua_ledger.utils.exceptions import InvalidRequest, InvalidState, NotFound
from aqua_ledger.utils.ledger import (
    ZERO, PaymentMethod, PaymentStatus, balance_after_payment, order_amount,
    settle, settle_balance, to_money
)
from aqua_ledger.utils.order_states import (
    OrderPriority, OrderStatus, OrderType, check_can_amend, check_can_assign,
    check_can_cancel, check_can_complete_walkin, check_can_deliver, check_can_start,
    initial_status, normalize_choice
)
from aqua_ledger.utils.timezone import utc_now

logger = logging.getLogger(__name__)


def _bottles(value):
    if isinstance(value, bool):
        raise InvalidRequest('number_of_bottles must be a whole number', field='number_of_bottles')
    try:
        count = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidRequest('number_of_bottles must be a whole number', field='number_of_bottles')
    if not count.is_finite() or count != count.to_integral_value() or count < 1:
        raise InvalidRequest('number_of_bottles must be a positive whole number', field='number_of_bottles')
    return int(count)


def _unit_price(value):
    price = to_money(value, 'unit_price')
    if price < 0:
        raise InvalidRequest('unit_price cannot be negative', field='unit_price')
    return price


def _record_id(value, label):
    if isinstance(value, bool):
        raise NotFound(f'{label} not found', id=value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise NotFound(f'{label} not found', id=value)


class OrderService:
    """Order lifecycle and customer ledger operations"""

    def __init__(self, notifier=None):
        self.notifier = notifier or NotificationService()

    # ============================================================
    # Loading and locking
    # ============================================================

    @staticmethod
    def _lock_customer(customer_id) -> Customer:
        customer = db.session.get(Customer, customer_id, with_for_update=True, populate_existing=True)
        if not customer:
            raise NotFound('Customer not found', customer_id=customer_id)
        return customer

    @staticmethod
    def _lock_order(order_id) -> Order:
        order = db.session.get(Order, order_id, with_for_update=True, populate_existing=True)
        if not order:
            raise NotFound('Order not found', order_id=order_id)
        return order

    @staticmethod
    def _customer_id_for_order(order_id) -> int:
        customer_id = db.session.query(Order.customer_id).filter(Order.id == order_id).scalar()
        if customer_id is None:
            raise NotFound('Order not found', order_id=order_id)
        return customer_id

    @staticmethod
    def _active_rider(rider_id) -> RiderProfile:
        rider = db.session.get(RiderProfile, _record_id(rider_id, 'Rider'))
        if not rider:
            raise NotFound('Rider not found', rider_id=rider_id)
        if not rider.is_active:
            raise InvalidRequest('Rider is not active', field='rider_id')
        return rider

    @staticmethod
    def _check_latest_ledger_entry(order):
        """
        Snapshot reversal is only exact while nothing has been layered on top
        of this order: no newer live order and no payment taken on an older
        order since this one was created.
        """
        later = Order.query.filter(
            Order.customer_id == order.customer_id,
            Order.id != order.id,
            Order.status != OrderStatus.CANCELLED,
            or_(Order.id > order.id, Order.delivered_at > order.created_at)
        ).count()
        if later:
            raise InvalidState(
                f'Order #{order.id} is not the latest ledger entry for this customer; '
                f'{later} later order(s) must be settled or cancelled first',
                later_orders=later
            )

    # ============================================================
    # Notifications (after commit, never fail the operation)
    # ============================================================

    @staticmethod
    def _payload(order):
        return {
            'order_id': order.id,
            'customer_id': order.customer_id,
            'customer': order.customer.name if order.customer else None,
            'order_type': order.order_type,
            'status': order.status,
            'number_of_bottles': order.number_of_bottles,
            'total_amount': str(order.total_amount),
            'paid_amount': str(order.paid_amount),
            'priority': order.priority,
        }

    def _notify_rider(self, order, kind):
        try:
            if order.rider:
                self.notifier.notify(order.rider.user_id, kind, self._payload(order))
        except Exception as e:
            logger.error(f"Error notifying rider for order {order.id}: {e}")

    def _notify_admins(self, order, kind):
        try:
            self.notifier.notify_admins(kind, self._payload(order))
        except Exception as e:
            logger.error(f"Error notifying admins for order {order.id}: {e}")

    # ============================================================
    # Reads
    # ============================================================

    @staticmethod
    def get_order(order_id) -> Order:
        order = db.session.get(Order, _record_id(order_id, 'Order'))
        if not order:
            raise NotFound('Order not found', order_id=order_id)
        return order

    @staticmethod
    def list_orders(status: Optional[str] = None, customer_id: Optional[int] = None) -> List[Order]:
        """Orders newest first, optionally filtered by status ('all' for every status) and customer"""
        query = Order.query
        if status and status.lower() != 'all':
            query = query.filter(Order.status == normalize_choice(status, OrderStatus.ALL, 'status'))
        if customer_id is not None:
            query = query.filter(Order.customer_id == customer_id)
        return query.order_by(Order.created_at.desc(), Order.id.desc()).all()

    # ============================================================
    # Creation
    # ============================================================

    def create_order(self, customer_id, number_of_bottles, unit_price,
                     order_type=OrderType.DELIVERY, rider_id=None,
                     priority=None, notes=None) -> Order:
        """
        Create a delivery or walk-in order and charge it to the customer.

        Args:
            customer_id: Customer id, or 'walkin' for the walk-in customer
            number_of_bottles: Bottles ordered
            unit_price: Price per bottle
            order_type: DELIVERY or WALKIN
            rider_id: Required for DELIVERY, forbidden for WALKIN
            priority: LOW, NORMAL, HIGH or URGENT (default NORMAL)
            notes: Free text

        Returns:
            Order: the committed order
        """
        resolved_id = CustomerService.resolve_customer_id(customer_id)

        with customer_lock(resolved_id):
            order = run_in_transaction(
                self._create, resolved_id, number_of_bottles, unit_price,
                order_type, rider_id, priority, notes
            )

        logger.info(
            f"Order {order.id} created: {order.order_type} for customer {order.customer_id}, "
            f"amount {order.current_order_amount}, balance {order.customer_balance} -> {order.total_amount}"
        )
        if order.rider_id:
            self._notify_rider(order, NotificationKind.ORDER_ASSIGNED)
        self._notify_admins(order, NotificationKind.NEW_ORDER)
        return order

    def _create(self, customer_id, number_of_bottles, unit_price, order_type, rider_id, priority, notes):
        customer = self._lock_customer(customer_id)

        order_type = normalize_choice(order_type, OrderType.ALL, 'order_type')
        status = initial_status(order_type, rider_id)
        priority = normalize_choice(priority, OrderPriority.ALL, 'priority', default=OrderPriority.NORMAL)
        bottles = _bottles(number_of_bottles)
        price = _unit_price(unit_price)

        if not customer.is_active:
            raise InvalidState('Customer is not active', customer_id=customer.id)
        rider = self._active_rider(rider_id) if rider_id else None

        snapshot = to_money(customer.current_balance or 0)
        amount = order_amount(bottles, price)
        total = to_money(snapshot + amount, 'total_amount')

        order = Order(
            customer_id=customer.id,
            rider_id=rider.id if rider else None,
            order_type=order_type,
            status=status,
            priority=priority,
            number_of_bottles=bottles,
            unit_price=price,
            current_order_amount=amount,
            customer_balance=snapshot,
            total_amount=total,
            paid_amount=ZERO,
            payment_status=PaymentStatus.NOT_PAID,
            payment_method=PaymentMethod.CASH,
            receivable=ZERO,
            payable=ZERO,
            notes=notes,
            created_at=utc_now()
        )
        db.session.add(order)
        db.session.flush()

        customer.current_balance = total
        return order

    # ============================================================
    # Delivery and walk-in completion
    # ============================================================

    def deliver_order(self, order_id, payment_amount, payment_method=None, notes=None) -> Order:
        """Mark a delivery order delivered and take the rider's collection"""
        order = self._settle(order_id, payment_amount, payment_method, notes,
                             check_can_deliver, OrderStatus.DELIVERED)
        self._notify_admins(order, NotificationKind.ORDER_DELIVERED)
        return order

    def complete_walkin_order(self, order_id, payment_amount, payment_method=None, notes=None) -> Order:
        """Complete a walk-in order at the counter"""
        order = self._settle(order_id, payment_amount, payment_method, notes,
                             check_can_complete_walkin, OrderStatus.COMPLETED)
        self._notify_admins(order, NotificationKind.ORDER_DELIVERED)
        return order

    def _settle(self, order_id, payment_amount, payment_method, notes, check, target_status):
        payment = to_money(payment_amount, 'payment_amount')
        method = normalize_choice(payment_method, PaymentMethod.ALL, 'payment_method', default=PaymentMethod.CASH)
        order_id = _record_id(order_id, 'Order')
        customer_id = self._customer_id_for_order(order_id)

        def _apply_payment():
            customer = self._lock_customer(customer_id)
            order = self._lock_order(order_id)
            check(order)

            settlement = settle(order.total_amount, payment)
            new_balance = balance_after_payment(customer.current_balance or 0, payment)

            order.status = target_status
            order.paid_amount = payment
            order.payment_status = settlement.payment_status
            order.payment_method = method
            order.payment_notes = notes
            order.receivable = settlement.receivable
            order.payable = settlement.payable
            order.delivered_at = utc_now()

            customer.current_balance = new_balance
            return order

        with customer_lock(customer_id):
            order = run_in_transaction(_apply_payment)

        logger.info(
            f"Order {order.id} {target_status.lower()}: paid {order.paid_amount} ({order.payment_status}), "
            f"customer {customer_id} balance now {order.customer.current_balance}"
        )
        return order

    # ============================================================
    # Cancellation and amendment
    # ============================================================

    def cancel_order(self, order_id) -> Order:
        """
        Cancel an order and restore the customer's balance to the snapshot
        taken when the order was created.
        """
        order_id = _record_id(order_id, 'Order')
        customer_id = self._customer_id_for_order(order_id)

        def _cancel():
            customer = self._lock_customer(customer_id)
            order = self._lock_order(order_id)
            check_can_cancel(order)
            self._check_latest_ledger_entry(order)

            order.status = OrderStatus.CANCELLED
            customer.current_balance = order.customer_balance
            return order

        with customer_lock(customer_id):
            order = run_in_transaction(_cancel)

        logger.info(f"Order {order.id} cancelled, customer {customer_id} balance restored to {order.customer_balance}")
        self._notify_rider(order, NotificationKind.ORDER_CANCELLED)
        self._notify_admins(order, NotificationKind.ORDER_CANCELLED)
        return order

    def amend_order(self, order_id, number_of_bottles, unit_price,
                    notes=None, priority=None, rider_id=None) -> Order:
        """
        Change quantity and price of an open order in place.

        The order is reversed to its balance snapshot and re-applied with the
        new amounts; the snapshot itself does not change.
        """
        order_id = _record_id(order_id, 'Order')
        customer_id = self._customer_id_for_order(order_id)
        changes = {}

        def _amend():
            customer = self._lock_customer(customer_id)
            order = self._lock_order(order_id)
            check_can_amend(order)
            self._check_latest_ledger_entry(order)

            bottles = _bottles(number_of_bottles)
            price = _unit_price(unit_price)
            new_priority = normalize_choice(priority, OrderPriority.ALL, 'priority', default=order.priority)

            if rider_id and order.order_type != OrderType.DELIVERY:
                raise InvalidRequest('Only delivery orders can be assigned to a rider', field='rider_id')
            rider = self._active_rider(rider_id) if rider_id else None

            # Reverse this order, then re-apply it from the same snapshot
            customer.current_balance = order.customer_balance
            amount = order_amount(bottles, price)
            total = to_money(to_money(order.customer_balance) + amount, 'total_amount')

            order.number_of_bottles = bottles
            order.unit_price = price
            order.current_order_amount = amount
            order.total_amount = total
            order.priority = new_priority
            if notes is not None:
                order.notes = notes
            if rider and rider.id != order.rider_id:
                order.rider_id = rider.id
                changes['rider_changed'] = True
                if order.status == OrderStatus.PENDING:
                    order.status = OrderStatus.ASSIGNED

            customer.current_balance = total
            return order

        with customer_lock(customer_id):
            order = run_in_transaction(_amend)

        logger.info(
            f"Order {order.id} amended: {order.number_of_bottles} x {order.unit_price} = "
            f"{order.current_order_amount}, customer {customer_id} balance now {order.total_amount}"
        )
        if changes.get('rider_changed'):
            self._notify_rider(order, NotificationKind.ORDER_ASSIGNED)
        return order

    # ============================================================
    # Rider workflow (no ledger effect)
    # ============================================================

    def assign_rider(self, order_id, rider_id) -> Order:
        """Assign or reassign the rider of a delivery order that has not left"""
        order_id = _record_id(order_id, 'Order')

        def _assign():
            order = self._lock_order(order_id)
            check_can_assign(order)
            if not rider_id:
                raise InvalidRequest('Rider is required for delivery orders', field='rider_id')
            rider = self._active_rider(rider_id)
            order.rider_id = rider.id
            order.status = OrderStatus.ASSIGNED
            return order

        order = run_in_transaction(_assign)
        logger.info(f"Order {order.id} assigned to rider {order.rider_id}")
        self._notify_rider(order, NotificationKind.ORDER_ASSIGNED)
        return order

    @staticmethod
    def start_delivery(order_id) -> Order:
        """Rider has picked up the order"""
        order_id = _record_id(order_id, 'Order')

        def _start():
            order = OrderService._lock_order(order_id)
            check_can_start(order)
            order.status = OrderStatus.IN_PROGRESS
            return order

        order = run_in_transaction(_start)
        logger.info(f"Order {order.id} in progress")
        return order

    # ============================================================
    # Bill clearing
    # ============================================================

    def clear_bill(self, customer_id, paid_amount, payment_method=None,
                   payment_notes=None, priority=None) -> Order:
        """
        Settle (part of) a customer's outstanding balance without new bottles.

        A positive balance is collected from the customer; a negative balance
        is paid out to the customer. Either way a completed CLEARBILL order
        records the movement.
        """
        paid = to_money(paid_amount, 'paid_amount')
        if paid <= 0:
            raise InvalidRequest('paid_amount must be greater than zero', field='paid_amount')
        method = normalize_choice(payment_method, PaymentMethod.ALL, 'payment_method', default=PaymentMethod.CASH)
        priority = normalize_choice(priority, OrderPriority.ALL, 'priority', default=OrderPriority.NORMAL)
        resolved_id = CustomerService.resolve_customer_id(customer_id)

        def _clear():
            customer = self._lock_customer(resolved_id)
            balance = to_money(customer.current_balance or 0)
            if balance == 0:
                raise InvalidState('Customer has no outstanding balance to clear', customer_id=customer.id)

            settlement, adjusted_paid = settle_balance(balance, paid)
            now = utc_now()

            order = Order(
                customer_id=customer.id,
                order_type=OrderType.CLEARBILL,
                status=OrderStatus.COMPLETED,
                priority=priority,
                number_of_bottles=0,
                unit_price=ZERO,
                current_order_amount=ZERO,
                customer_balance=balance,
                total_amount=balance,
                paid_amount=adjusted_paid,
                payment_status=settlement.payment_status,
                payment_method=method,
                payment_notes=payment_notes,
                receivable=settlement.receivable,
                payable=settlement.payable,
                delivered_at=now,
                created_at=now
            )
            db.session.add(order)
            db.session.flush()

            customer.current_balance = balance - adjusted_paid
            return order

        with customer_lock(resolved_id):
            order = run_in_transaction(_clear)

        logger.info(
            f"Bill cleared for customer {order.customer_id}: {order.payment_status}, "
            f"balance {order.customer_balance} -> {order.customer.current_balance}"
        )
        return order
