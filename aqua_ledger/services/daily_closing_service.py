"""
Daily Closing Service
Computes the end-of-day counter summary and persists it once every order
of the day has been settled.
"""

import logging
from collections import OrderedDict
from typing import Dict, List

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import case, func

from aqua_ledger.models import db, Customer, DailyClosing, DailyClosingPayment, DailyClosingRider, Order
from aqua_ledger.services.notification_service import NotificationKind, NotificationService
from aqua_ledger.utils.db_utils import run_in_transaction
from aqua_ledger.utils.exceptions import InvalidState, NotFound
from aqua_ledger.utils.ledger import ZERO, to_money
from aqua_ledger.utils.order_states import OrderStatus, OrderType
from aqua_ledger.utils.timezone import business_day_range_utc, parse_business_date, today_business_date

logger = logging.getLogger(__name__)

SETTLED_STATUSES = (OrderStatus.DELIVERED, OrderStatus.COMPLETED)


class DailyClosingService:
    """Service for daily closing summaries and the automatic end-of-day close"""

    def __init__(self, app=None, notifier=None):
        self.app = app
        self.notifier = notifier or NotificationService()
        self.scheduler = None

    # ============================================================
    # Aggregation
    # ============================================================

    @staticmethod
    def _blocking_count():
        return Order.query.filter(Order.status.in_(sorted(OrderStatus.OPEN))).count()

    @staticmethod
    def _customer_position():
        """Receivable and payable across active customers"""
        receivable, payable = db.session.query(
            func.sum(case((Customer.current_balance > 0, Customer.current_balance), else_=0)),
            func.sum(case((Customer.current_balance < 0, -Customer.current_balance), else_=0))
        ).filter(Customer.is_active.is_(True)).one()
        return to_money(receivable or 0), to_money(payable or 0)

    @staticmethod
    def _day_orders(day):
        start, end = business_day_range_utc(day)
        return Order.query.filter(
            Order.created_at >= start,
            Order.created_at < end,
            Order.status != OrderStatus.CANCELLED
        ).order_by(Order.id).all()

    @staticmethod
    def _rider_breakdown(orders) -> List[Dict]:
        riders = OrderedDict()
        for order in sorted((o for o in orders if o.rider_id), key=lambda o: o.rider_id):
            row = riders.setdefault(order.rider_id, {
                'rider_id': order.rider_id,
                'rider_name': order.rider.name if order.rider else None,
                'total_orders': 0,
                'total_bottles': 0,
                'total_current_order_amount': ZERO,
                'total_paid_amount': ZERO,
            })
            row['total_orders'] += 1
            row['total_bottles'] += order.number_of_bottles or 0
            row['total_current_order_amount'] += to_money(order.current_order_amount or 0)
            row['total_paid_amount'] += to_money(order.paid_amount or 0)
        return list(riders.values())

    @staticmethod
    def _payment_breakdown(orders) -> List[Dict]:
        methods = {}
        for order in orders:
            if order.status not in SETTLED_STATUSES:
                continue
            row = methods.setdefault(order.payment_method, {
                'payment_method': order.payment_method,
                'total_orders': 0,
                'total_paid_amount': ZERO,
            })
            row['total_orders'] += 1
            row['total_paid_amount'] += to_money(order.paid_amount or 0)
        return [methods[key] for key in sorted(methods)]

    def get_summary(self, day=None) -> Dict:
        """
        Preview the closing for a business day.

        Args:
            day: Business date, date string or None for today

        Returns:
            dict: aggregates, rider and payment breakdowns, can_close flag
        """
        day = parse_business_date(day) or today_business_date()
        blocking = self._blocking_count()
        receivable, payable = self._customer_position()
        orders = self._day_orders(day)

        paid = sum((to_money(o.paid_amount or 0) for o in orders), ZERO)
        charged = sum((to_money(o.current_order_amount or 0) for o in orders), ZERO)

        return {
            'date': day.isoformat(),
            'can_close': blocking == 0,
            'blocking_orders': blocking,
            'already_exists': DailyClosing.query.filter_by(date=day).first() is not None,
            'customer_payable': payable,
            'customer_receivable': receivable,
            'total_paid_amount': paid,
            'total_current_order_amount': charged,
            'walk_in_amount': sum((to_money(o.paid_amount or 0) for o in orders
                                   if o.order_type == OrderType.WALKIN), ZERO),
            'clear_bill_amount': sum((to_money(o.paid_amount or 0) for o in orders
                                      if o.order_type == OrderType.CLEARBILL), ZERO),
            'balance_cleared_today': charged - paid,
            'total_bottles': sum(o.number_of_bottles or 0 for o in orders),
            'total_orders': len(orders),
            'riders': self._rider_breakdown(orders),
            'payments': self._payment_breakdown(orders),
        }

    # ============================================================
    # Persistence
    # ============================================================

    def save_closing(self, day=None) -> DailyClosing:
        """
        Save (or refresh) the closing for a business day.

        Raises:
            InvalidState: orders are still open
        """
        day = parse_business_date(day) or today_business_date()

        def _save():
            summary = self.get_summary(day)
            if not summary['can_close']:
                raise InvalidState(
                    f"Cannot close the day: {summary['blocking_orders']} order(s) still in progress",
                    blocking_orders=summary['blocking_orders']
                )

            closing = DailyClosing.query.filter_by(date=day).first()
            if not closing:
                closing = DailyClosing(date=day)
                db.session.add(closing)

            for key in ('customer_payable', 'customer_receivable', 'total_paid_amount',
                        'total_current_order_amount', 'walk_in_amount', 'clear_bill_amount',
                        'balance_cleared_today', 'total_bottles', 'total_orders'):
                setattr(closing, key, summary[key])

            # Replacing the collections deletes the previous breakdown rows
            closing.riders = [DailyClosingRider(**row) for row in summary['riders']]
            closing.payments = [DailyClosingPayment(**row) for row in summary['payments']]
            db.session.flush()
            return closing

        closing = run_in_transaction(_save)
        logger.info(
            f"Daily closing saved for {day}: {closing.total_orders} orders, "
            f"paid {closing.total_paid_amount}, receivable {closing.customer_receivable}"
        )

        try:
            self.notifier.notify_admins(NotificationKind.DAILY_CLOSING, {'date': day.isoformat()})
        except Exception as e:
            logger.error(f"Error notifying daily closing for {day}: {e}")
        return closing

    @staticmethod
    def get_closing(day) -> DailyClosing:
        """Reload a saved closing by business date"""
        day = parse_business_date(day)
        closing = DailyClosing.query.filter_by(date=day).first()
        if not closing:
            raise NotFound('Daily closing not found', date=day.isoformat() if day else None)
        return closing

    @staticmethod
    def list_closings() -> List[DailyClosing]:
        """All saved closings, newest first"""
        return DailyClosing.query.order_by(DailyClosing.date.desc()).all()

    # ============================================================
    # Automatic end-of-day close
    # ============================================================

    def run_scheduled_closing(self):
        """Scheduler job: close today if nothing is still open"""
        with self.app.app_context():
            try:
                self.save_closing()
            except InvalidState as e:
                logger.warning(f"Automatic daily closing skipped: {e.message}")
            except Exception as e:
                logger.error(f"Automatic daily closing failed: {e}")
            finally:
                db.session.remove()

    def start_scheduler(self):
        """Start background scheduler for the automatic daily closing"""
        if self.scheduler:
            logger.warning("Scheduler already running")
            return
        if self.app is None:
            raise RuntimeError('DailyClosingService needs an app to run the scheduler')

        self.scheduler = BackgroundScheduler()

        # Parse time from config (e.g., "23:30"), server local time
        closing_time = self.app.config.get('DAILY_CLOSING_TIME', '23:30')
        hour, minute = map(int, closing_time.split(':'))

        self.scheduler.add_job(
            func=self.run_scheduled_closing,
            trigger='cron',
            hour=hour,
            minute=minute,
            id='daily_closing'
        )

        self.scheduler.start()
        logger.info(f"Daily closing scheduler started. Counter will close at {closing_time}")

    def stop_scheduler(self):
        """Stop the scheduler"""
        if self.scheduler:
            self.scheduler.shutdown()
            self.scheduler = None
            logger.info("Daily closing scheduler stopped")
